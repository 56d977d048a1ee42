"""
Pydantic Schemas for the Chaos Harness.

Cluster shape and fault options, validated once at test start.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================
# CLUSTER SCHEMAS
# =============================================================

class ClusterConfig(BaseModel):
    """
    Fixed cluster shape for one test run.

    The node order is significant: it is the startup stagger order
    and the seed selection order.
    """
    nodes: List[str] = Field(min_length=1)
    rf: int = Field(default=3, ge=1)

    # Optional static hostname -> address table; DNS is used when absent
    addresses: Optional[Dict[str, str]] = None

    @field_validator("nodes")
    @classmethod
    def nodes_unique(cls, nodes: List[str]) -> List[str]:
        if len(set(nodes)) != len(nodes):
            raise ValueError("cluster nodes must be unique")
        return nodes

    @model_validator(mode="after")
    def addresses_cover_nodes(self) -> "ClusterConfig":
        if self.addresses is not None:
            missing = [n for n in self.nodes if n not in self.addresses]
            if missing:
                raise ValueError(f"no address configured for {missing}")
        return self

    def index_of(self, node: str) -> int:
        """Position of a node in the configured order."""
        return self.nodes.index(node)


# =============================================================
# FAULT OPTIONS
# =============================================================

class FaultOptions(BaseModel):
    """Which optional fault categories are mixed into each window."""
    decommission: bool = False
    bootstrap: bool = False
    clock_bump: bool = False
    clock_strobe: bool = False

    # Seconds of mixed client/nemesis traffic before termination
    time_limit: float = Field(default=60.0, gt=0)

    # Clock faults pick their targets from these
    nodes: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def clock_faults_have_targets(self) -> "FaultOptions":
        if self.clock_enabled and not self.nodes:
            raise ValueError("clock faults need the cluster nodes")
        return self

    @property
    def clock_enabled(self) -> bool:
        return self.clock_bump or self.clock_strobe

    @property
    def extras_enabled(self) -> bool:
        return self.decommission or self.bootstrap or self.clock_enabled
