"""
Maintenance Fault Actions.

Administrative operations that stress durability paths:
- batch log replay on every live node
- flush + major compaction on every node

Both walk their nodes one at a time.
"""

import logging

from ..exceptions import UnroutableOperationError
from ..models import Action, NemesisKind, Operation
from .base import NemesisContext, nemesis_handler


logger = logging.getLogger(__name__)


@nemesis_handler(NemesisKind.REPLAY)
async def replay_batchlog(context: NemesisContext, op: Operation) -> Operation:
    live = sorted(await context.tracker.live_nodes())
    for node in live:
        logger.warning(f"CHAOS: {node} replaying batch log")
        await context.lifecycle.nodetool(node, "replaybatchlog")
    return op.with_value(f"{live} batch logs replayed")


@nemesis_handler(NemesisKind.FLUSH_COMPACT)
async def flush_and_compact(context: NemesisContext, op: Operation) -> Operation:
    """
    Flush memtables and force a major compaction on every node.

    Liveness is not checked; the whole configured cluster is hit.
    Stop has nothing to undo.
    """
    if op.action == Action.STOP:
        return op.with_value("stop is a no-op with this nemesis")
    if op.action not in (Action.START, Action.FLUSH_COMPACT):
        raise UnroutableOperationError(str(op.action))

    nodes = list(context.config.nodes)
    for node in nodes:
        logger.warning(f"CHAOS: {node} flushing and compacting")
        await context.lifecycle.nodetool(node, "flush")
        await context.lifecycle.nodetool(node, "compact")
    return op.with_value(f"{nodes} nodes flushed and compacted")
