"""
Node Lifecycle Controller.

============================================================
PURPOSE
============================================================
Drives one database node through its lifecycle:

    install -> configure -> wait turn -> guarded start
    ...
    stop -> wipe

The order of the setup steps is a hard contract. Nodes start
staggered, one minute apart in configured order, so they do not
race to negotiate the initial ring. Decommissioned nodes skip
the stagger and are never started here; only the bootstrap
nemesis brings them back.

============================================================
"""

import asyncio
import logging
import math
import shlex
from typing import Awaitable, Callable, List, Optional

from .config import HarnessSettings
from .exceptions import ProcessStopTimeoutError, RemoteCommandError
from .membership import AddressResolver, DecommissionedSet
from .models import NodePaths
from .schemas import ClusterConfig
from .transport import RemoteExecutor


logger = logging.getLogger(__name__)


SleepFn = Callable[[float], Awaitable[None]]

STAGGER_SECONDS = 60
STOP_POLL_INTERVAL = 0.1

JOLOKIA_AGENT_URL = (
    "https://repo1.maven.org/maven2/org/jolokia/jolokia-jvm/1.6.2/"
    "jolokia-jvm-1.6.2-agent.jar"
)


class NodeLifecycleController:
    """Installs, configures, starts, stops and wipes database nodes."""

    def __init__(
        self,
        config: ClusterConfig,
        decommissioned: DecommissionedSet,
        executor: RemoteExecutor,
        settings: HarnessSettings,
        resolver: Optional[AddressResolver] = None,
        paths: NodePaths = NodePaths(),
        sleep: SleepFn = asyncio.sleep,
    ):
        self._config = config
        self._decommissioned = decommissioned
        self._executor = executor
        self._settings = settings
        self._resolver = resolver or AddressResolver(config)
        self._paths = paths
        self._sleep = sleep

    @property
    def paths(self) -> NodePaths:
        return self._paths

    # ========================================================
    # ADMINISTRATION
    # ========================================================

    async def nodetool(self, node: str, *args: str) -> str:
        """Run a nodetool command on a node."""
        command = shlex.join([f"{self._paths.bin_dir}/nodetool", *args])
        return await self._executor.execute(node, command)

    def seed_nodes(self) -> List[str]:
        """First node for rf=1, else the first rf-1 nodes."""
        if self._config.rf == 1:
            return self._config.nodes[:1]
        return self._config.nodes[: self._config.rf - 1]

    def log_files(self, node: str) -> List[str]:
        return [f"{self._paths.logs_dir}/system.log"]

    # ========================================================
    # INSTALL / CONFIGURE
    # ========================================================

    async def install(self, node: str) -> None:
        """Install a JRE and unpack the database tarball on a node."""
        url = self._settings.tarball
        root = self._paths.root
        logger.info(f"{node} installing Cassandra from {url}")

        await self._executor.execute(
            node,
            "DEBIAN_FRONTEND=noninteractive apt-get install -y openjdk-8-jre-headless curl",
            sudo=True,
        )
        await self._executor.execute(
            node,
            f"mkdir -p {root} && curl -fsSL {shlex.quote(url)} "
            f"| tar -xz --strip-components=1 -C {root}",
            sudo=True,
        )
        await self._executor.execute(
            node,
            f"curl -fsSL -o {root}/lib/jolokia-agent.jar {JOLOKIA_AGENT_URL}",
            sudo=True,
        )

    def env_edits(self, node: str) -> List[str]:
        """sed expressions applied to cassandra-env.sh."""
        return [
            "s/#MAX_HEAP_SIZE=.*/MAX_HEAP_SIZE='1G'/g",
            "s/#HEAP_NEWSIZE=.*/HEAP_NEWSIZE='256M'/g",
            "s/LOCAL_JMX=yes/LOCAL_JMX=no/g",
            (
                's/# JVM_OPTS="$JVM_OPTS -Djava.rmi.server.hostname=<public name>"/'
                f'JVM_OPTS="$JVM_OPTS -Djava.rmi.server.hostname={node}"/g'
            ),
            (
                's/JVM_OPTS="$JVM_OPTS -Dcom.sun.management.jmxremote.authenticate=true"/'
                'JVM_OPTS="$JVM_OPTS -Dcom.sun.management.jmxremote.authenticate=false"/g'
            ),
            '/JVM_OPTS="$JVM_OPTS -Dcassandra.mv_disable_coordinator_batchlog=.*"/d',
            '/JVM_OPTS="$JVM_OPTS -javaagent:.*jolokia.*"/d',
        ]

    def yaml_edits(self, node: str) -> List[str]:
        """sed expressions applied to cassandra.yaml."""
        settings = self._settings
        address = self._resolver.address_of(node)
        seeds = ",".join(self.seed_nodes())

        edits = [
            "s/cluster_name: .*/cluster_name: 'chaos'/g",
            f"s/seeds: .*/seeds: '{seeds}'/g",
            f"s/listen_address: .*/listen_address: {address}/g",
            f"s/rpc_address: .*/rpc_address: {address}/g",
            (
                "s/hinted_handoff_enabled:.*/hinted_handoff_enabled: "
                f"{str(settings.hints_enabled).lower()}/g"
            ),
            "s/commitlog_sync: .*/commitlog_sync: batch/g",
            "s/# commitlog_sync_batch_window_in_ms: .*/commitlog_sync_batch_window_in_ms: 1.0/g",
            "s/commitlog_sync_period_in_ms: .*/#/g",
            f"s/# phi_convict_threshold: .*/phi_convict_threshold: {settings.phi_level}/g",
            "/auto_bootstrap: .*/d",
        ]
        if settings.commitlog_compression:
            edits += [
                "s/#commitlog_compression.*/commitlog_compression:/g",
                "s/#   - class_name: LZ4Compressor/    - class_name: LZ4Compressor/g",
            ]
        return edits

    async def configure(self, node: str) -> None:
        """Rewrite the node's configuration files in place."""
        logger.info(f"{node} configuring Cassandra")
        conf = self._paths.conf_dir
        env_file = f"{conf}/cassandra-env.sh"

        for expr in self.env_edits(node):
            await self._sed(node, expr, env_file)
        for expr in self.yaml_edits(node):
            await self._sed(node, expr, f"{conf}/cassandra.yaml")

        batchlog = str(self._settings.coordinator_batchlog_disabled).lower()
        extra_opts = [
            f"-Dcassandra.mv_disable_coordinator_batchlog={batchlog}",
            (
                f"-javaagent:{self._paths.root}/lib/jolokia-agent.jar="
                f"port={self._settings.jolokia_port},host=0.0.0.0"
            ),
        ]
        for opt in extra_opts:
            line = shlex.quote(f'JVM_OPTS="$JVM_OPTS {opt}"')
            await self._executor.execute(
                node, f"echo {line} >> {env_file}", sudo=True
            )

        await self._sed(node, "s/INFO/DEBUG/g", f"{conf}/logback.xml")

    async def _sed(self, node: str, expr: str, path: str) -> None:
        await self._executor.execute(
            node, f"sed -i {shlex.quote(expr)} {path}", sudo=True
        )

    # ========================================================
    # START / STOP
    # ========================================================

    def wait_turn_delay(self, node: str) -> float:
        """Seconds a node waits before starting; zero when rejoining."""
        if node in self._decommissioned:
            return 0
        index = self._config.index_of(node)
        return self._settings.scaled(STAGGER_SECONDS * index)

    async def wait_turn(self, node: str) -> None:
        delay = self.wait_turn_delay(node)
        if delay > 0:
            logger.info(f"{node} waiting {delay}s for its turn to start")
            await self._sleep(delay)

    async def start(self, node: str) -> None:
        logger.info(f"{node} starting Cassandra")
        await self._executor.execute(
            node, f"{self._paths.bin_dir}/cassandra -R", sudo=True
        )

    async def guarded_start(self, node: str) -> bool:
        """
        Start a node unless it is decommissioned.

        Returns whether the node was started.
        """
        if node in self._decommissioned:
            logger.info(f"{node} is decommissioned, not starting")
            return False
        await self.start(node)
        return True

    async def stop(self, node: str, timeout: Optional[float] = None) -> None:
        """
        Kill the database process and wait until it is gone.

        Raises ProcessStopTimeoutError if it outlives the timeout.
        """
        logger.info(f"{node} stopping Cassandra")
        try:
            await self._executor.execute(node, "killall java", sudo=True)
        except RemoteCommandError:
            # Nothing to kill
            logger.debug(f"{node} had no java process to kill")

        timeout = timeout if timeout is not None else self._settings.scaled(
            self._settings.process_stop_timeout
        )
        polls = max(1, math.ceil(timeout / STOP_POLL_INTERVAL))
        for _ in range(polls):
            processes = await self._executor.execute(node, "ps -ef", sudo=True)
            if "java" not in processes:
                logger.info(f"{node} has stopped Cassandra")
                return
            await self._sleep(STOP_POLL_INTERVAL)

        raise ProcessStopTimeoutError(node, timeout)

    async def wipe(self, node: str) -> None:
        """Stop the node and delete every persisted state directory."""
        await self.stop(node)
        logger.info(f"{node} deleting data files")
        for path in self._paths.state_dirs():
            try:
                await self._executor.execute(node, f"rm -r {path}", sudo=True)
            except RemoteCommandError:
                logger.debug(f"{node} had no {path} to delete")

    # ========================================================
    # DB SETUP / TEARDOWN
    # ========================================================

    async def setup_node(self, node: str) -> None:
        """install -> configure -> wait turn -> guarded start."""
        if self._settings.leave_cluster_running:
            # The previous run skipped its wipe
            await self.wipe(node)
        await self.install(node)
        await self.configure(node)
        await self.wait_turn(node)
        await self.guarded_start(node)

    async def teardown_node(self, node: str) -> None:
        if self._settings.leave_cluster_running:
            logger.info(f"{node} left running for inspection")
            return
        await self.wipe(node)
