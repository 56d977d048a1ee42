"""
Cluster Chaos Testing Harness.

============================================================
REPLICATED DATABASE CHAOS HARNESS
Fault Injection Scheduler & Membership Coordinator
============================================================

PURPOSE:
--------
Drives client workload against a live peer-to-peer database
cluster while concurrently injecting failures, so that the
database's consistency guarantees can be checked under
adversarial conditions.

============================================================
FAULT ACTIONS
============================================================

1. BOOTSTRAP       - bring a decommissioned node back
2. DECOMMISSION    - remove a live node, keeping >= rf
3. REPLAY          - replay batch logs on live nodes
4. FLUSH_COMPACT   - flush + major compaction everywhere
5. CLOCK           - reset / bump / strobe node clocks

============================================================
SAFETY
============================================================

- Never fewer than rf nodes in the ring
- Never decommission a node twice
- Only decommissioned nodes are bootstrapped
- Decommissioned nodes are never started by setup
- Every polling loop is bounded

============================================================
USAGE
============================================================

    from cluster_chaos import (
        ClusterConfig,
        FaultOptions,
        create_runner,
        adds,
    )

    config = ClusterConfig(nodes=["n1", "n2", "n3", "n4", "n5"], rf=3)
    opts = FaultOptions(decommission=True, bootstrap=True, time_limit=600)

    runner = create_runner("counter", config, opts, client=MyCounterClient())
    result = await runner.run([adds()])

============================================================
"""

# Models
from .models import (
    OperationType,
    Action,
    ProcessKind,
    NemesisKind,
    Operation,
    Sleep,
    ScheduledStep,
    RetryDecision,
    NodePaths,
    RunResult,
    info,
    invoke,
)

# Schemas and configuration
from .schemas import ClusterConfig, FaultOptions
from .config import HarnessSettings, load_settings, scaled

# Exceptions
from .exceptions import (
    ChaosException,
    RemoteCommandError,
    ManagementQueryError,
    UnroutableOperationError,
    PollTimeoutError,
    BootstrapTimeoutError,
    ProcessStopTimeoutError,
    ClusterRecoveryTimeoutError,
)

# Transports
from .transport import (
    RemoteExecutor,
    ManagementClient,
    SSHRemoteExecutor,
    JolokiaManagementClient,
    MockRemoteExecutor,
    MockManagementClient,
)

# Membership and lifecycle
from .membership import DecommissionedSet, AddressResolver, MembershipTracker
from .lifecycle import NodeLifecycleController

# Retry policy
from .retry_policy import AggressiveReadPolicy, wait_for_recovery

# Nemesis
from .nemesis import (
    Nemesis,
    NemesisContext,
    NemesisDispatcher,
    bootstrapper,
    decommissioner,
    replayer,
    flush_compacter,
    clock_nemesis,
)

# Schedule
from .schedule import (
    fault_window,
    fault_stream,
    terminate_sequence,
    mix,
    Schedule,
    schedule,
)

# Workloads
from .workloads import (
    add_op,
    sub_op,
    read_op,
    write_op,
    cas_op,
    adds,
    assocs,
    read_once,
)

# History and runner
from .history import HistoryStore, OperationRecord
from .runner import WorkloadClient, ChaosRunner, create_runner


__all__ = [
    # Models
    "OperationType",
    "Action",
    "ProcessKind",
    "NemesisKind",
    "Operation",
    "Sleep",
    "ScheduledStep",
    "RetryDecision",
    "NodePaths",
    "RunResult",
    "info",
    "invoke",

    # Schemas and configuration
    "ClusterConfig",
    "FaultOptions",
    "HarnessSettings",
    "load_settings",
    "scaled",

    # Exceptions
    "ChaosException",
    "RemoteCommandError",
    "ManagementQueryError",
    "UnroutableOperationError",
    "PollTimeoutError",
    "BootstrapTimeoutError",
    "ProcessStopTimeoutError",
    "ClusterRecoveryTimeoutError",

    # Transports
    "RemoteExecutor",
    "ManagementClient",
    "SSHRemoteExecutor",
    "JolokiaManagementClient",
    "MockRemoteExecutor",
    "MockManagementClient",

    # Membership and lifecycle
    "DecommissionedSet",
    "AddressResolver",
    "MembershipTracker",
    "NodeLifecycleController",

    # Retry policy
    "AggressiveReadPolicy",
    "wait_for_recovery",

    # Nemesis
    "Nemesis",
    "NemesisContext",
    "NemesisDispatcher",
    "bootstrapper",
    "decommissioner",
    "replayer",
    "flush_compacter",
    "clock_nemesis",

    # Schedule
    "fault_window",
    "fault_stream",
    "terminate_sequence",
    "mix",
    "Schedule",
    "schedule",

    # Workloads
    "add_op",
    "sub_op",
    "read_op",
    "write_op",
    "cas_op",
    "adds",
    "assocs",
    "read_once",

    # History and runner
    "HistoryStore",
    "OperationRecord",
    "WorkloadClient",
    "ChaosRunner",
    "create_runner",
]
