"""
Cluster Membership.

============================================================
PURPOSE
============================================================
Tracks which nodes belong to the ring while faults are being
injected.

- DecommissionedSet: the one piece of shared mutable state
- AddressResolver: maps management addresses back to hostnames
- MembershipTracker: live / joining views, computed on demand

INVARIANTS:
- decommissioned ⊆ configured nodes
- |nodes| - |decommissioned| >= rf
- live/joining views are never cached between calls

============================================================
"""

import logging
import random
import socket
import threading
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from .exceptions import ManagementQueryError
from .schemas import ClusterConfig
from .transport import ManagementClient


logger = logging.getLogger(__name__)


LIVE_NODES_ATTRIBUTE = "LiveNodes"
JOINING_NODES_ATTRIBUTE = "JoiningNodes"


# ============================================================
# DECOMMISSIONED SET
# ============================================================

class DecommissionedSet:
    """
    Nodes removed from the ring by the decommission nemesis.

    Every mutation is one indivisible step under a lock; callers
    never hold the lock across a multi-step sequence.
    """

    def __init__(self, config: ClusterConfig):
        self._config = config
        self._nodes: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """How many nodes may be out at once without dropping below rf."""
        return max(0, len(self._config.nodes) - self._config.rf)

    def pop(self) -> Optional[str]:
        """Remove and return an arbitrary member, or None when empty."""
        with self._lock:
            if not self._nodes:
                return None
            return self._nodes.pop()

    def try_add(self, node: str) -> bool:
        """
        Add a node if doing so keeps every invariant.

        Refuses unknown nodes, nodes already present, and any add
        that would leave fewer than rf members in the ring.
        """
        with self._lock:
            if node not in self._config.nodes or node in self._nodes:
                return False
            if len(self._nodes) >= self.capacity:
                return False
            self._nodes.add(node)
            return True

    def snapshot(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._nodes)

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()

    def __contains__(self, node: object) -> bool:
        with self._lock:
            return node in self._nodes

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def __repr__(self) -> str:
        return f"DecommissionedSet({sorted(self.snapshot())})"


# ============================================================
# ADDRESS RESOLUTION
# ============================================================

class AddressResolver:
    """
    Translates between configured hostnames and network addresses.

    Addresses come from the static table in the cluster config when
    present, otherwise from DNS, resolved once per hostname.
    """

    def __init__(
        self,
        config: ClusterConfig,
        resolve: Callable[[str], str] = socket.gethostbyname,
    ):
        self._config = config
        self._resolve = resolve
        self._addresses: Dict[str, str] = dict(config.addresses or {})

    def address_of(self, node: str) -> str:
        if node not in self._addresses:
            self._addresses[node] = self._resolve(node)
        return self._addresses[node]

    def hostnames(self, addresses: Iterable[str]) -> Set[str]:
        """Configured hostnames for the given addresses; strangers are dropped."""
        by_address = {self.address_of(node): node for node in self._config.nodes}
        names = set()
        for address in addresses:
            # JMX reports addresses as "/10.0.0.1" on some versions
            node = by_address.get(address.lstrip("/"))
            if node is None:
                logger.debug(f"Ignoring unknown address {address}")
                continue
            names.add(node)
        return names


# ============================================================
# MEMBERSHIP TRACKER
# ============================================================

class MembershipTracker:
    """Computes live and joining node sets from management queries."""

    def __init__(
        self,
        config: ClusterConfig,
        decommissioned: DecommissionedSet,
        management: ManagementClient,
        resolver: Optional[AddressResolver] = None,
        rng: Optional[random.Random] = None,
    ):
        self._config = config
        self._decommissioned = decommissioned
        self._management = management
        self._resolver = resolver or AddressResolver(config)
        self._rng = rng or random.Random()

    @property
    def resolver(self) -> AddressResolver:
        return self._resolver

    def candidates(self) -> List[str]:
        """Non-decommissioned nodes in random order."""
        out = self._decommissioned.snapshot()
        pool = [node for node in self._config.nodes if node not in out]
        self._rng.shuffle(pool)
        return pool

    async def live_nodes(self) -> Set[str]:
        """
        Live nodes as seen by the first candidate that answers.

        An empty set means no candidate could be queried.
        """
        for node in self.candidates():
            try:
                addresses = await self._management.read_attribute(
                    node, LIVE_NODES_ATTRIBUTE
                )
            except ManagementQueryError as e:
                logger.info(f"Couldn't get status from node {node}: {e.message}")
                continue
            return self._resolver.hostnames(addresses)

        logger.warning("No node answered the live nodes query")
        return set()

    async def joining_nodes(self) -> Set[str]:
        """
        Union of the joining nodes reported by every reachable candidate.

        A joining node is not necessarily visible from every peer yet,
        so no single answer is trusted.
        """
        joining: Set[str] = set()
        for node in self.candidates():
            try:
                addresses = await self._management.read_attribute(
                    node, JOINING_NODES_ATTRIBUTE
                )
            except ManagementQueryError as e:
                logger.info(f"Couldn't get status from node {node}: {e.message}")
                continue
            joining |= self._resolver.hostnames(addresses)
        return joining
