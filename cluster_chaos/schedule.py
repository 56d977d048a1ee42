"""
Fault Schedule Generator.

============================================================
PURPOSE
============================================================
Builds the two operation streams handed to the runner:

    client ops (mixed)  ──> client process  ─┐
                                             ├─> time limit ─> terminate
    fault windows ...   ──> nemesis process ─┘


A fault window is one start/stop bracket of a sustained fault,
optionally followed by one extra instantaneous fault:

    sleep(60..89) start sleep(60..89) stop [sleep(60..89) extra]

The fault stream is an infinite generator; windows are built
one at a time as the stream is consumed.

============================================================
ORDERING
============================================================
- start always precedes its stop
- the extra op, if any, strictly follows stop
- the terminate sequence always runs, even after truncation

============================================================
"""

import logging
import random
import time
from typing import Callable, Iterable, Iterator, List, Optional, Union

from .config import HarnessSettings, load_settings
from .models import Action, Operation, ProcessKind, ScheduledStep, Sleep, info
from .nemesis.clock_faults import bump_op, reset_op, strobe_op
from .schemas import FaultOptions


logger = logging.getLogger(__name__)


FaultElement = Union[Sleep, Operation]
ClientSource = Union[Iterable[Operation], Callable[[], Operation]]

WINDOW_BASE_SECONDS = 60
WINDOW_JITTER_SECONDS = 30


# ============================================================
# FAULT WINDOWS
# ============================================================

def window_sleep(rng: random.Random) -> Sleep:
    return Sleep(WINDOW_BASE_SECONDS + rng.randrange(WINDOW_JITTER_SECONDS))


def extra_candidates(
    opts: FaultOptions,
    rng: random.Random,
) -> List[Callable[[], Operation]]:
    """Builders for the optional extra ops enabled by the options."""
    candidates: List[Callable[[], Operation]] = []
    if opts.decommission:
        candidates.append(lambda: info(Action.DECOMMISSION))
    if opts.bootstrap:
        candidates.append(lambda: info(Action.BOOTSTRAP))
    if opts.clock_bump:
        candidates.append(lambda: reset_op(opts.nodes, rng))
        candidates.append(lambda: bump_op(opts.nodes, rng))
    if opts.clock_strobe:
        candidates.append(lambda: strobe_op(opts.nodes, rng))
    return candidates


def fault_window(
    opts: FaultOptions,
    rng: Optional[random.Random] = None,
) -> List[FaultElement]:
    """
    One start/stop bracket, plus at most one extra op.

    With no optional category enabled this is exactly
    [sleep, start, sleep, stop].
    """
    rng = rng or random.Random()
    window: List[FaultElement] = [
        window_sleep(rng),
        info(Action.START),
        window_sleep(rng),
        info(Action.STOP),
    ]

    candidates = extra_candidates(opts, rng)
    if candidates:
        window.append(window_sleep(rng))
        window.append(rng.choice(candidates)())
    return window


def fault_stream(
    opts: FaultOptions,
    rng: Optional[random.Random] = None,
) -> Iterator[FaultElement]:
    """Endless concatenation of fresh, independent fault windows."""
    rng = rng or random.Random()
    while True:
        yield from fault_window(opts, rng)


def terminate_sequence(opts: FaultOptions) -> List[Operation]:
    """Final stop, plus a clock reset on every node when clocks were touched."""
    ops = [info(Action.STOP)]
    if opts.clock_enabled:
        ops.append(info(Action.CLOCK_RESET, list(opts.nodes)))
    return ops


# ============================================================
# CLIENT MIX
# ============================================================

def mix(
    sources: List[ClientSource],
    rng: Optional[random.Random] = None,
) -> Iterator[Operation]:
    """
    Draw each client op from a uniformly chosen source.

    Sources are iterables of ops or zero-argument op builders.
    Exhausted iterables drop out; the mix ends when all have.
    """
    rng = rng or random.Random()
    live: List[Union[Iterator[Operation], Callable[[], Operation]]] = [
        source if callable(source) and not hasattr(source, "__next__") else iter(source)
        for source in sources
    ]

    while live:
        source = rng.choice(live)
        if hasattr(source, "__next__"):
            try:
                yield next(source)
            except StopIteration:
                live.remove(source)
        else:
            yield source()


# ============================================================
# TIME-BOUNDED SCHEDULE
# ============================================================

class Schedule:
    """
    Client traffic and the fault stream, bounded by the time limit.

    The two streams are consumed by independent processes. Fault-stream
    sleeps come out already scaled and clipped to the time left, and
    the consumer sleeps them after its previous op has completed, so a
    slow nemesis op never shortens the following pause. A slow client
    op never holds back the nemesis, and the nemesis keeps firing until
    the time limit even after the client ops run out. The terminate
    sequence follows once both streams are done.
    """

    def __init__(
        self,
        opts: FaultOptions,
        client_ops: Iterable[Operation],
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        settings: Optional[HarnessSettings] = None,
    ):
        self.opts = opts
        self._client_ops = client_ops
        self._rng = rng or random.Random()
        self._clock = clock
        self._settings = settings or load_settings()
        self._started: Optional[float] = None

    def start(self) -> None:
        """Start the time limit; later calls are no-ops."""
        if self._started is None:
            self._started = self._clock()

    def remaining(self) -> float:
        """Seconds left before the time limit."""
        self.start()
        return self.opts.time_limit - (self._clock() - self._started)

    def expired(self) -> bool:
        return self.remaining() <= 0

    def fault_steps(self) -> Iterator[Union[Sleep, ScheduledStep]]:
        """
        Nemesis ops and the (scaled) pauses between them.

        Ends at the time limit. A pause never runs past the limit.
        """
        faults = fault_stream(self.opts, self._rng)
        while not self.expired():
            element = next(faults)
            if isinstance(element, Sleep):
                seconds = self._settings.scaled(element.seconds)
                yield Sleep(min(seconds, max(0.0, self.remaining())))
                continue
            yield ScheduledStep(ProcessKind.NEMESIS, element)
        logger.info(f"Time limit of {self.opts.time_limit}s reached, fault stream done")

    def client_steps(self) -> Iterator[ScheduledStep]:
        """Client ops until the time limit or until they run out."""
        clients = iter(self._client_ops)
        while not self.expired():
            try:
                op = next(clients)
            except StopIteration:
                logger.info("Client operations exhausted")
                return
            yield ScheduledStep(ProcessKind.CLIENT, op)

    def terminate_steps(self) -> List[ScheduledStep]:
        return [
            ScheduledStep(ProcessKind.NEMESIS, op)
            for op in terminate_sequence(self.opts)
        ]


def schedule(
    opts: FaultOptions,
    client_sources: List[ClientSource],
    rng: Optional[random.Random] = None,
    clock: Callable[[], float] = time.monotonic,
    settings: Optional[HarnessSettings] = None,
) -> Schedule:
    """Pair mixed client sources with the fault stream."""
    rng = rng or random.Random()
    return Schedule(
        opts,
        mix(client_sources, rng),
        rng=rng,
        clock=clock,
        settings=settings,
    )
