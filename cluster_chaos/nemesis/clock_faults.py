"""
Clock Fault Actions.

============================================================
PURPOSE
============================================================
Perturbs node wall clocks:
- reset: resync clocks from an NTP server
- bump: shift clocks forward or backward once
- strobe: flip clocks back and forth rapidly

Also provides the randomized operation generators the fault
schedule mixes into its windows.

============================================================
"""

import logging
import random
import shlex
from typing import Dict, Iterable, List

from ..exceptions import UnroutableOperationError
from ..models import Action, NemesisKind, Operation, info
from .base import NemesisContext, nemesis_handler


logger = logging.getLogger(__name__)


MAX_BUMP_SECONDS = 262          # ~2^18 ms
MAX_STROBE_DELTA_SECONDS = 64
STROBE_PERIODS = (0.01, 0.1, 0.5, 1.0)
MAX_STROBE_DURATION_SECONDS = 32


# ============================================================
# OPERATION GENERATORS
# ============================================================

def _random_targets(nodes: List[str], rng: random.Random) -> List[str]:
    """A random non-empty subset of the nodes."""
    count = rng.randint(1, len(nodes))
    return sorted(rng.sample(list(nodes), count))


def reset_op(nodes: List[str], rng: random.Random) -> Operation:
    return info(Action.CLOCK_RESET, _random_targets(nodes, rng))


def bump_op(nodes: List[str], rng: random.Random) -> Operation:
    """Shift each target's clock by up to ~4 minutes either way."""
    deltas = {
        node: rng.choice((-1, 1)) * rng.randint(1, MAX_BUMP_SECONDS)
        for node in _random_targets(nodes, rng)
    }
    return info(Action.CLOCK_BUMP, deltas)


def strobe_op(nodes: List[str], rng: random.Random) -> Operation:
    strobes = {
        node: {
            "delta": rng.randint(1, MAX_STROBE_DELTA_SECONDS),
            "period": rng.choice(STROBE_PERIODS),
            "duration": rng.randint(1, MAX_STROBE_DURATION_SECONDS),
        }
        for node in _random_targets(nodes, rng)
    }
    return info(Action.CLOCK_STROBE, strobes)


# ============================================================
# EXECUTION
# ============================================================

def _set_relative(seconds: int) -> str:
    return f"date -s {shlex.quote(f'{seconds} seconds')} > /dev/null"


async def reset_clocks(context: NemesisContext, nodes: Iterable[str]) -> None:
    server = shlex.quote(context.settings.ntp_server)
    for node in nodes:
        await context.executor.execute(node, f"ntpdate -p 1 -b {server}", sudo=True)


async def bump_clocks(context: NemesisContext, deltas: Dict[str, int]) -> None:
    for node, delta in deltas.items():
        logger.warning(f"CHAOS: {node} bumping clock by {delta}s")
        await context.executor.execute(node, _set_relative(delta), sudo=True)


async def strobe_clocks(context: NemesisContext, strobes: Dict[str, Dict]) -> None:
    for node, spec in strobes.items():
        delta, period = spec["delta"], spec["period"]
        flips = max(1, int(spec["duration"] / (2 * period)))
        logger.warning(
            f"CHAOS: {node} strobing clock by {delta}s every {period}s, {flips} times"
        )
        script = (
            f"for i in $(seq {flips}); do "
            f"{_set_relative(delta)}; sleep {period}; "
            f"{_set_relative(-delta)}; sleep {period}; done"
        )
        await context.executor.execute(node, script, sudo=True)


@nemesis_handler(NemesisKind.CLOCK)
async def perturb_clock(context: NemesisContext, op: Operation) -> Operation:
    if op.action == Action.CLOCK_RESET:
        nodes = op.value or context.config.nodes
        await reset_clocks(context, nodes)
        return op.with_value(list(nodes))
    if op.action == Action.CLOCK_BUMP:
        await bump_clocks(context, op.value or {})
        return op
    if op.action == Action.CLOCK_STROBE:
        await strobe_clocks(context, op.value or {})
        return op
    raise UnroutableOperationError(str(op.action))
