"""
Cluster Chaos - Configuration.

============================================================
PURPOSE
============================================================
Environment-level knobs for the harness.

Values are read from the process environment (and a local
.env file when present). Every duration used by the harness
passes through scaled() so the whole suite can be slowed
down or sped up with a single multiplier.

============================================================
"""

import math
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


DEFAULT_TARBALL = (
    "https://archive.apache.org/dist/cassandra/3.11.4/"
    "apache-cassandra-3.11.4-bin.tar.gz"
)


# ============================================================
# HARNESS SETTINGS
# ============================================================

@dataclass
class HarnessSettings:
    """Snapshot of the environment knobs."""

    scale: float = 1.0
    """
    Multiplier applied to every duration.
    Default: 1 (real time)
    """

    commitlog_compression: bool = False
    """Enable LZ4 commit log compression on every node."""

    coordinator_batchlog_disabled: bool = False
    """Disable the coordinator batchlog for materialized views."""

    phi_level: int = 8
    """Failure detector phi_convict_threshold."""

    hints_enabled: bool = True
    """Whether hinted handoff stays enabled."""

    leave_cluster_running: bool = False
    """
    Skip the wipe at teardown so the cluster can be inspected.
    The next setup wipes instead.
    """

    ssh_user: str = "root"
    ssh_key_path: Optional[str] = None
    ssh_port: int = 22

    jolokia_port: int = 8778
    """Port of the JMX-over-HTTP agent on every node."""

    ntp_server: str = "time.google.com"
    tarball: str = DEFAULT_TARBALL

    bootstrap_timeout: float = 1800.0
    """Upper bound on waiting for a bootstrapping node to finish joining."""

    process_stop_timeout: float = 120.0
    """Upper bound on waiting for the database process to exit."""

    def scaled(self, value: float) -> float:
        """Apply the scale factor to a duration."""
        return math.ceil(value * self.scale)


def _flag(name: str) -> bool:
    """True when the variable is set to anything non-empty."""
    return bool(os.getenv(name))


def load_settings() -> HarnessSettings:
    """Read all harness knobs from the environment."""
    scale = os.getenv("CHAOS_SCALE")
    key_path = os.getenv("CHAOS_SSH_KEY")

    return HarnessSettings(
        scale=float(scale) if scale else 1.0,
        commitlog_compression=(
            os.getenv("CHAOS_COMMITLOG_COMPRESSION", "").lower() == "true"
        ),
        coordinator_batchlog_disabled=_flag("CHAOS_DISABLE_COORDINATOR_BATCHLOG"),
        phi_level=int(os.getenv("CHAOS_PHI_VALUE", "8")),
        hints_enabled=not _flag("CHAOS_DISABLE_HINTS"),
        leave_cluster_running=_flag("LEAVE_CLUSTER_RUNNING"),
        ssh_user=os.getenv("CHAOS_SSH_USER", "root"),
        ssh_key_path=key_path or None,
        ssh_port=int(os.getenv("CHAOS_SSH_PORT", "22")),
        jolokia_port=int(os.getenv("CHAOS_JOLOKIA_PORT", "8778")),
        ntp_server=os.getenv("CHAOS_NTP_SERVER", "time.google.com"),
        tarball=os.getenv("CHAOS_TARBALL", DEFAULT_TARBALL),
    )


def scaled(value: float) -> float:
    """Scale a duration by the current CHAOS_SCALE factor."""
    return load_settings().scaled(value)
