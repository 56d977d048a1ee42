"""
Final-Read Retry Policy.

============================================================
PURPOSE
============================================================
Escalation rules for the verification reads issued after fault
injection has stopped. The cluster may still be settling, so
reads are retried hard; writes are never retried because a
blind retry of a non-idempotent write could mask or fabricate
an inconsistency.

    read timeout    -> retry, rethrow after 100 retries
    write timeout   -> rethrow immediately
    unavailable     -> sleep 2s, then as read timeout

This policy must only be used for final reads, never for
steady-state workload traffic.

============================================================
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

from .exceptions import ClusterRecoveryTimeoutError
from .models import RetryDecision, RetryVerdict


logger = logging.getLogger(__name__)


MAX_RETRIES = 100
UNAVAILABLE_PAUSE_SECONDS = 2.0
RECOVERY_POLL_INTERVAL = 0.5


class AggressiveReadPolicy:
    """Retry policy for the post-fault verification phase."""

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        unavailable_pause: float = UNAVAILABLE_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.unavailable_pause = unavailable_pause
        self._sleep = sleep

    def _retry_or_rethrow(self, consistency: Any, attempts: int) -> RetryVerdict:
        if attempts > self.max_retries:
            return RetryDecision.RETHROW, None
        return RetryDecision.RETRY, consistency

    def on_read_timeout(
        self,
        consistency: Any,
        attempts: int,
        required_responses: int = 0,
        received_responses: int = 0,
        data_retrieved: bool = False,
    ) -> RetryVerdict:
        return self._retry_or_rethrow(consistency, attempts)

    def on_write_timeout(
        self,
        consistency: Any,
        attempts: int,
        write_type: Optional[str] = None,
        required_acks: int = 0,
        received_acks: int = 0,
    ) -> RetryVerdict:
        return RetryDecision.RETHROW, None

    def on_unavailable(
        self,
        consistency: Any,
        attempts: int,
        required_replicas: int = 0,
        alive_replicas: int = 0,
    ) -> RetryVerdict:
        logger.info(
            f"Caught unavailable replicas in driver - sleeping {self.unavailable_pause}s"
        )
        self._sleep(self.unavailable_pause)
        return self._retry_or_rethrow(consistency, attempts)


# ============================================================
# RECOVERY WAIT
# ============================================================

HealthCheck = Callable[[], Union[bool, Awaitable[bool]]]


async def wait_for_recovery(
    timeout_seconds: float,
    all_hosts_up: HealthCheck,
    interval: float = RECOVERY_POLL_INTERVAL,
) -> None:
    """
    Wait until the health check reports every host up.

    Raises ClusterRecoveryTimeoutError (fatal) when the cluster
    is still degraded after timeout_seconds.
    """

    async def poll() -> None:
        while True:
            result = all_hosts_up()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return
            await asyncio.sleep(interval)

    try:
        await asyncio.wait_for(poll(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise ClusterRecoveryTimeoutError(timeout_seconds) from None
    logger.info("All nodes reported up")
