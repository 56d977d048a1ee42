"""
Membership Fault Actions.

============================================================
PURPOSE
============================================================
Faults that change ring membership:
- Decommission: permanently remove one live node
- Bootstrap: bring one decommissioned node back

SAFETY:
- At least rf nodes always stay in the ring
- A node is never decommissioned twice
- Only decommissioned nodes are bootstrapped

============================================================
"""

import logging
import math

from ..exceptions import BootstrapTimeoutError, RemoteCommandError
from ..models import NemesisKind, Operation
from .base import NemesisContext, nemesis_handler


logger = logging.getLogger(__name__)


BOOTSTRAP_POLL_SECONDS = 1


@nemesis_handler(NemesisKind.DECOMMISSION)
async def decommission(context: NemesisContext, op: Operation) -> Operation:
    """
    Decommission a random live node, keeping at least rf in the ring.

    The node at index rf of the shuffled eligible nodes is picked,
    which only exists while more than rf nodes are live.
    """
    rf = context.config.rf
    live = await context.tracker.live_nodes()
    eligible = sorted(live - context.decommissioned.snapshot())
    context.rng.shuffle(eligible)

    if len(eligible) <= rf:
        return op.with_value("no nodes eligible for decommission")

    node = eligible[rf]
    logger.info(f"{context.decommissioned!r} already decommissioned")
    if not context.decommissioned.try_add(node):
        return op.with_value("no nodes eligible for decommission")

    logger.warning(f"CHAOS: {node} decommissioning")
    await context.lifecycle.nodetool(node, "decommission")
    return op.with_value(f"{node} decommissioned")


@nemesis_handler(NemesisKind.BOOTSTRAP)
async def bootstrap(context: NemesisContext, op: Operation) -> Operation:
    """
    Restart one decommissioned node and wait for it to finish joining.

    The node leaves the decommissioned set before it is started.
    Raises BootstrapTimeoutError if it is still joining after the
    configured bound.
    """
    node = context.decommissioned.pop()
    if node is None:
        return op.with_value("no nodes left to bootstrap")

    logger.warning(f"CHAOS: {node} starting bootstrapping")
    try:
        await context.lifecycle.start(node)
    except RemoteCommandError:
        if not context.decommissioned.try_add(node):
            logger.error(f"{node} failed to start and could not be marked decommissioned")
        raise

    settings = context.settings
    interval = settings.scaled(BOOTSTRAP_POLL_SECONDS)
    timeout = settings.scaled(settings.bootstrap_timeout)

    for _ in range(max(1, math.ceil(timeout / interval))):
        if node not in await context.tracker.joining_nodes():
            return op.with_value(f"{node} bootstrapped")
        logger.info(f"{node} still joining")
        await context.sleep(interval)

    raise BootstrapTimeoutError(node, timeout)
