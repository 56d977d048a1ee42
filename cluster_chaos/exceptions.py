"""
Cluster Chaos - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy for the chaos harness.

- Transport failures carry the node and command involved
- Bounded polling loops raise distinguishable timeouts
- Fatal errors abort the run and leave the cluster as-is

============================================================
EXCEPTION HIERARCHY
============================================================
ChaosException (base)
├── RemoteCommandError
├── ManagementQueryError
├── UnroutableOperationError
└── PollTimeoutError
    ├── BootstrapTimeoutError
    ├── ProcessStopTimeoutError
    └── ClusterRecoveryTimeoutError (fatal)

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence


# ============================================================
# BASE EXCEPTION
# ============================================================

class ChaosException(Exception):
    """
    Base exception for all chaos harness errors.

    All exceptions carry:
    - context: for debugging
    - fatal: whether the run must abort
    - timestamp: when the error occurred
    """

    default_fatal: bool = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        fatal: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.context = context or {}
        self.fatal = fatal if fatal is not None else self.default_fatal
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging and history records."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "fatal": self.fatal,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# TRANSPORT ERRORS
# ============================================================

class RemoteCommandError(ChaosException):
    """A remote administrative command failed or could not be delivered."""

    def __init__(
        self,
        node: str,
        command: Sequence[str],
        message: str = "Remote command failed",
        exit_status: Optional[int] = None,
        output: str = "",
        cause: Optional[Exception] = None,
    ):
        self.node = node
        self.command = list(command)
        self.exit_status = exit_status
        self.output = output
        super().__init__(
            f"{node}: {message}: {' '.join(self.command)}",
            context={
                "node": node,
                "command": self.command,
                "exit_status": exit_status,
            },
            cause=cause,
        )


class ManagementQueryError(ChaosException):
    """The management interface of one node could not be queried."""

    def __init__(
        self,
        node: str,
        attribute: str,
        message: str = "Management query failed",
        cause: Optional[Exception] = None,
    ):
        self.node = node
        self.attribute = attribute
        super().__init__(
            f"{node}: {message} ({attribute})",
            context={"node": node, "attribute": attribute},
            cause=cause,
        )


class UnroutableOperationError(ChaosException):
    """No nemesis is registered for an operation's action."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(
            f"No nemesis handles action '{action}'",
            context={"action": action},
        )


# ============================================================
# POLLING TIMEOUTS
# ============================================================

class PollTimeoutError(ChaosException):
    """A bounded polling loop gave up waiting for a condition."""

    def __init__(
        self,
        message: str,
        waited_seconds: float,
        node: Optional[str] = None,
    ):
        self.waited_seconds = waited_seconds
        self.node = node
        super().__init__(
            message,
            context={"waited_seconds": waited_seconds, "node": node},
        )


class BootstrapTimeoutError(PollTimeoutError):
    """A bootstrapping node never left the joining state."""

    def __init__(self, node: str, waited_seconds: float):
        super().__init__(
            f"{node} still joining after {waited_seconds}s",
            waited_seconds=waited_seconds,
            node=node,
        )


class ProcessStopTimeoutError(PollTimeoutError):
    """The database process survived the kill signal."""

    def __init__(self, node: str, waited_seconds: float):
        super().__init__(
            f"{node} database process still running after {waited_seconds}s",
            waited_seconds=waited_seconds,
            node=node,
        )


class ClusterRecoveryTimeoutError(PollTimeoutError):
    """
    The cluster did not report all members up after fault injection.

    Always fatal: an unresponsive cluster once faults have ceased is a
    genuine failure, not something to retry past.
    """

    default_fatal = True

    def __init__(self, waited_seconds: float):
        super().__init__(
            f"Driver didn't report all nodes were up in {waited_seconds}s - failing",
            waited_seconds=waited_seconds,
        )
