"""
Nemesis Base.

============================================================
PURPOSE
============================================================
Common contract for every fault action:

    setup(context) -> handle
    invoke(handle, op) -> completed op
    teardown(handle)

The set of actions is closed (NemesisKind). A Nemesis is a
plain value tagged with its kind; invoke looks the kind up in
a handler table filled by the action modules.

============================================================
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

from ..config import HarnessSettings
from ..lifecycle import NodeLifecycleController
from ..membership import DecommissionedSet, MembershipTracker
from ..models import NemesisKind, Operation
from ..schemas import ClusterConfig
from ..transport import RemoteExecutor


logger = logging.getLogger(__name__)


# ============================================================
# CONTEXT (HANDLE)
# ============================================================

@dataclass
class NemesisContext:
    """Everything a fault action may touch during a run."""
    config: ClusterConfig
    decommissioned: DecommissionedSet
    tracker: MembershipTracker
    lifecycle: NodeLifecycleController
    executor: RemoteExecutor
    settings: HarnessSettings
    rng: random.Random = field(default_factory=random.Random)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


NemesisHandler = Callable[[NemesisContext, Operation], Awaitable[Operation]]

_HANDLERS: Dict[NemesisKind, NemesisHandler] = {}


def nemesis_handler(kind: NemesisKind):
    """
    Register the invoke handler for a nemesis kind.

    Usage:
        @nemesis_handler(NemesisKind.REPLAY)
        async def replay(context, op):
            ...
    """
    def decorator(func: NemesisHandler) -> NemesisHandler:
        _HANDLERS[kind] = func
        return func
    return decorator


def get_handler(kind: NemesisKind) -> NemesisHandler:
    # Import action modules lazily so their handlers are registered
    from . import clock_faults, maintenance_faults, membership_faults  # noqa: F401

    return _HANDLERS[kind]


# ============================================================
# NEMESIS
# ============================================================

class Nemesis:
    """A fault action of a given kind."""

    def __init__(self, kind: NemesisKind):
        self.kind = kind

    async def setup(self, context: NemesisContext) -> NemesisContext:
        logger.debug(f"CHAOS: Setting up {self.kind.value} nemesis")
        return context

    async def invoke(self, handle: NemesisContext, op: Operation) -> Operation:
        handler = get_handler(self.kind)
        return await handler(handle, op)

    async def teardown(self, handle: NemesisContext) -> None:
        if self.kind is NemesisKind.CLOCK:
            from .clock_faults import reset_clocks

            await reset_clocks(handle, handle.config.nodes)
        logger.debug(f"CHAOS: Tore down {self.kind.value} nemesis")

    def __repr__(self) -> str:
        return f"Nemesis({self.kind.value})"


def bootstrapper() -> Nemesis:
    return Nemesis(NemesisKind.BOOTSTRAP)


def decommissioner() -> Nemesis:
    return Nemesis(NemesisKind.DECOMMISSION)


def replayer() -> Nemesis:
    return Nemesis(NemesisKind.REPLAY)


def flush_compacter() -> Nemesis:
    """Flushes to sstables and forces a major compaction on all nodes."""
    return Nemesis(NemesisKind.FLUSH_COMPACT)


def clock_nemesis() -> Nemesis:
    return Nemesis(NemesisKind.CLOCK)
