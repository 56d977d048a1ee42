"""
Client Workload Operations.

Builders for the client operations of the counter, register and
map workloads. What the operations mean to the database is the
workload client's business; this module only shapes them.
"""

import itertools
import random
from typing import Any, Callable, Iterator, List, Optional

from .models import Operation, invoke


def add_op() -> Operation:
    return invoke("add", 1)


def sub_op() -> Operation:
    return invoke("add", -1)


def read_op() -> Operation:
    return invoke("read")


def write_op(rng: Optional[random.Random] = None) -> Operation:
    rng = rng or random.Random()
    return invoke("write", rng.randrange(5))


def cas_op(rng: Optional[random.Random] = None) -> Operation:
    """Compare-and-set from one random value to another."""
    rng = rng or random.Random()
    return invoke("cas", [rng.randrange(5), rng.randrange(5)])


def adds() -> Iterator[Operation]:
    """Add operations for sequential integers."""
    for x in itertools.count():
        yield invoke("add", x)


def assocs(f: Callable[[int], Any]) -> Iterator[Operation]:
    """Assoc operations mapping each sequential integer x to f(x)."""
    for x in itertools.count():
        yield invoke("assoc", {"k": x, "v": f(x)})


def read_once() -> List[Operation]:
    """A single final read."""
    return [read_op()]
