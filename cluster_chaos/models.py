"""
Cluster Chaos Models.

============================================================
PURPOSE
============================================================
Data models exchanged between the fault schedule, the nemesis
dispatcher, the workload client and the history store.

An Operation is the unit of work: the schedule emits it, a
nemesis or client completes it, the history records both.

============================================================
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ============================================================
# OPERATION TYPES
# ============================================================

class OperationType(str, Enum):
    """Lifecycle type of an operation record."""
    INVOKE = "invoke"    # Client request about to be issued
    INFO = "info"        # Nemesis op, or client outcome unknown
    OK = "ok"            # Client request completed
    FAIL = "fail"        # Client request definitely did not happen


class Action(str, Enum):
    """Nemesis actions recognized by the dispatcher."""
    START = "start"
    STOP = "stop"
    BOOTSTRAP = "bootstrap"
    DECOMMISSION = "decommission"
    REPLAY_BATCHLOG = "replay-batchlog"
    FLUSH_COMPACT = "flush-compact"

    # Owned by the clock nemesis
    CLOCK_RESET = "reset"
    CLOCK_BUMP = "bump"
    CLOCK_STROBE = "strobe"


CLOCK_ACTIONS = (Action.CLOCK_RESET, Action.CLOCK_BUMP, Action.CLOCK_STROBE)


class ProcessKind(str, Enum):
    """Which logical process a scheduled operation is meant for."""
    NEMESIS = "nemesis"
    CLIENT = "client"


class NemesisKind(Enum):
    """Closed set of fault actions."""
    BOOTSTRAP = "bootstrap"
    DECOMMISSION = "decommission"
    REPLAY = "replay"
    FLUSH_COMPACT = "flush_compact"
    CLOCK = "clock"


# ============================================================
# OPERATIONS
# ============================================================

@dataclass(frozen=True)
class Operation:
    """
    A single operation record.

    `action` is a plain string so client workloads can use their
    own vocabulary; nemesis actions compare equal to `Action` members.
    """
    type: OperationType
    action: str
    value: Any = None
    process: Optional[str] = None
    time: Optional[float] = None

    def with_value(self, value: Any) -> "Operation":
        """Copy of this operation carrying a result value."""
        return dataclasses.replace(self, value=value)

    def with_type(self, op_type: OperationType) -> "Operation":
        return dataclasses.replace(self, type=op_type)

    def to_dict(self) -> Dict[str, Any]:
        action = self.action.value if isinstance(self.action, Action) else self.action
        return {
            "type": self.type.value,
            "action": action,
            "value": self.value,
            "process": self.process,
            "time": self.time,
        }


def info(action: str, value: Any = None) -> Operation:
    """Build an informational (nemesis) operation."""
    return Operation(type=OperationType.INFO, action=action, value=value)


def invoke(action: str, value: Any = None) -> Operation:
    """Build a client invocation."""
    return Operation(type=OperationType.INVOKE, action=action, value=value)


@dataclass(frozen=True)
class Sleep:
    """Pause the nemesis for the given number of (unscaled) seconds."""
    seconds: float


@dataclass(frozen=True)
class ScheduledStep:
    """One element of the merged schedule."""
    process: ProcessKind
    operation: Operation


# ============================================================
# RETRY DECISIONS
# ============================================================

class RetryDecision(Enum):
    """Outcome of the final-read retry policy."""
    RETRY = "retry"        # Retry at the given consistency level
    RETHROW = "rethrow"    # Escalate the error to the caller


RetryVerdict = Tuple[RetryDecision, Optional[Any]]


# ============================================================
# NODE STATE LAYOUT
# ============================================================

@dataclass(frozen=True)
class NodePaths:
    """On-node filesystem layout of one database installation."""
    root: str = "/root/cassandra"

    @property
    def bin_dir(self) -> str:
        return f"{self.root}/bin"

    @property
    def conf_dir(self) -> str:
        return f"{self.root}/conf"

    @property
    def logs_dir(self) -> str:
        return f"{self.root}/logs"

    def state_dirs(self) -> List[str]:
        """Every persisted state directory, removed together on wipe."""
        return [
            self.logs_dir,
            f"{self.root}/data/data",
            f"{self.root}/data/hints",
            f"{self.root}/data/commitlog",
            f"{self.root}/data/saved_caches",
        ]


# ============================================================
# RUN RESULTS
# ============================================================

@dataclass
class RunResult:
    """Outcome of one harness run."""
    run_id: str
    name: str
    history: List[Operation] = field(default_factory=list)
    nemesis_errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[float] = None
    ended_at: Optional[float] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.ended_at is None:
            return 0.0
        return self.ended_at - self.started_at

    def nemesis_operations(self) -> List[Operation]:
        return [op for op in self.history if op.process == ProcessKind.NEMESIS.value]
