"""
Nemesis Package.

Fault actions for cluster chaos testing.
"""

from .base import (
    Nemesis,
    NemesisContext,
    nemesis_handler,
    get_handler,
    bootstrapper,
    decommissioner,
    replayer,
    flush_compacter,
    clock_nemesis,
)

from .membership_faults import bootstrap, decommission
from .maintenance_faults import replay_batchlog, flush_and_compact
from .clock_faults import reset_op, bump_op, strobe_op, reset_clocks
from .dispatcher import NemesisDispatcher


__all__ = [
    # Base
    "Nemesis",
    "NemesisContext",
    "nemesis_handler",
    "get_handler",

    # Constructors
    "bootstrapper",
    "decommissioner",
    "replayer",
    "flush_compacter",
    "clock_nemesis",

    # Handlers
    "bootstrap",
    "decommission",
    "replay_batchlog",
    "flush_and_compact",

    # Clock operations
    "reset_op",
    "bump_op",
    "strobe_op",
    "reset_clocks",

    # Dispatch
    "NemesisDispatcher",
]
