"""
Nemesis Dispatcher.

Routes each scheduled nemesis operation to the nemesis that owns
its action:

    start / stop       -> primary fault (flush + compact by default)
    bootstrap          -> bootstrapper
    decommission       -> decommissioner
    replay-batchlog    -> replayer
    flush-compact      -> flush + compact
    reset/bump/strobe  -> clock nemesis (only when clock faults are on)
"""

import logging
from typing import Dict, List, Optional

from ..exceptions import UnroutableOperationError
from ..models import Action, CLOCK_ACTIONS, Operation
from .base import (
    Nemesis,
    NemesisContext,
    bootstrapper,
    clock_nemesis,
    decommissioner,
    flush_compacter,
    replayer,
)


logger = logging.getLogger(__name__)


class NemesisDispatcher:
    """Composes the nemeses of a run behind one invoke()."""

    def __init__(
        self,
        context: NemesisContext,
        primary: Optional[Nemesis] = None,
        clock: bool = False,
    ):
        self._context = context
        flush = flush_compacter()
        self._primary = primary or flush

        self._routes: Dict[Action, Nemesis] = {
            Action.START: self._primary,
            Action.STOP: self._primary,
            Action.BOOTSTRAP: bootstrapper(),
            Action.DECOMMISSION: decommissioner(),
            Action.REPLAY_BATCHLOG: replayer(),
            Action.FLUSH_COMPACT: flush,
        }
        if clock:
            clock_faults = clock_nemesis()
            for action in CLOCK_ACTIONS:
                self._routes[action] = clock_faults

        self._handles: Dict[int, NemesisContext] = {}

    @property
    def context(self) -> NemesisContext:
        return self._context

    def nemeses(self) -> List[Nemesis]:
        """Distinct nemeses, in routing order."""
        seen: Dict[int, Nemesis] = {}
        for nemesis in self._routes.values():
            seen.setdefault(id(nemesis), nemesis)
        return list(seen.values())

    def route(self, action: str) -> Nemesis:
        try:
            return self._routes[Action(action)]
        except (KeyError, ValueError):
            raise UnroutableOperationError(str(action)) from None

    async def setup_all(self) -> None:
        for nemesis in self.nemeses():
            self._handles[id(nemesis)] = await nemesis.setup(self._context)

    async def invoke(self, op: Operation) -> Operation:
        nemesis = self.route(op.action)
        handle = self._handles.get(id(nemesis), self._context)
        logger.info(f"CHAOS: {nemesis!r} handling {op.action}")
        return await nemesis.invoke(handle, op)

    async def teardown_all(self) -> None:
        for nemesis in self.nemeses():
            handle = self._handles.pop(id(nemesis), self._context)
            await nemesis.teardown(handle)
