"""
Tests for the Final-Read Retry Policy.
"""

import pytest

from cluster_chaos import (
    AggressiveReadPolicy,
    ClusterRecoveryTimeoutError,
    RetryDecision,
    wait_for_recovery,
)


QUORUM = "QUORUM"


@pytest.fixture
def pauses():
    return []


@pytest.fixture
def policy(pauses):
    return AggressiveReadPolicy(sleep=pauses.append)


class TestAggressiveReadPolicy:
    """Test the escalation table."""

    def test_read_timeout_retries(self, policy):
        """Test read timeouts retry at the same consistency level."""
        assert policy.on_read_timeout(QUORUM, 0) == (RetryDecision.RETRY, QUORUM)
        assert policy.on_read_timeout(QUORUM, 100) == (RetryDecision.RETRY, QUORUM)

    def test_read_timeout_rethrows_after_limit(self, policy):
        """Test reads give up after 100 retries."""
        assert policy.on_read_timeout(QUORUM, 101) == (RetryDecision.RETHROW, None)

    def test_write_timeout_never_retries(self, policy):
        """Test writes are never blindly retried."""
        assert policy.on_write_timeout(QUORUM, 0) == (RetryDecision.RETHROW, None)
        assert policy.on_write_timeout(QUORUM, 0, write_type="SIMPLE") == (
            RetryDecision.RETHROW, None,
        )

    def test_unavailable_pauses_then_retries(self, policy, pauses):
        """Test unavailable replicas pause before retrying."""
        assert policy.on_unavailable(QUORUM, 100) == (RetryDecision.RETRY, QUORUM)
        assert pauses == [2.0]

    def test_unavailable_rethrows_after_limit(self, policy, pauses):
        """Test unavailable follows the read limit after pausing."""
        assert policy.on_unavailable(QUORUM, 101) == (RetryDecision.RETHROW, None)
        assert pauses == [2.0]


class TestWaitForRecovery:
    """Test the bounded recovery wait."""

    @pytest.mark.asyncio
    async def test_returns_once_healthy(self):
        """Test the wait ends when the check passes."""
        answers = iter([False, False, True])
        calls = []

        def all_up():
            calls.append(1)
            return next(answers)

        await wait_for_recovery(1, all_up, interval=0.001)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_async_check(self):
        """Test coroutine checks are awaited."""

        async def all_up():
            return True

        await wait_for_recovery(1, all_up, interval=0.001)

    @pytest.mark.asyncio
    async def test_timeout_is_fatal(self):
        """Test a cluster that stays degraded fails the run."""
        with pytest.raises(ClusterRecoveryTimeoutError) as exc_info:
            await wait_for_recovery(0.05, lambda: False, interval=0.01)

        assert exc_info.value.fatal
        assert exc_info.value.waited_seconds == 0.05
