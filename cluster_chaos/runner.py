"""
Chaos Runner.

============================================================
PURPOSE
============================================================
Runs one chaos test end to end:

1. Sets up every node (staggered by the lifecycle controller)
2. Sets up the workload client and the nemeses
3. Runs two independent processes until the time limit:
   - the nemesis process walks the fault stream, sleeping
     each window pause after its previous op completes
   - the client process feeds client ops to the workload client
4. Runs the terminate sequence once both are done
5. Optional final phase: wait for recovery, run final reads
6. Tears everything down and closes the transports

Every invocation and completion is appended to the history.

============================================================
FAILURE HANDLING
============================================================
- Non-fatal nemesis errors are folded into the op's value
- Client errors complete the op as info (outcome unknown)
- Fatal errors abort the run and leave the cluster as-is

============================================================
"""

import asyncio
import dataclasses
import logging
import random
import time
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .config import HarnessSettings, load_settings
from .exceptions import ChaosException
from .history import HistoryStore
from .lifecycle import NodeLifecycleController
from .membership import AddressResolver, DecommissionedSet, MembershipTracker
from .models import Operation, OperationType, ProcessKind, RunResult, Sleep
from .nemesis.base import NemesisContext
from .nemesis.dispatcher import NemesisDispatcher
from .retry_policy import HealthCheck, wait_for_recovery
from .schedule import ClientSource, Schedule, schedule
from .schemas import ClusterConfig, FaultOptions
from .transport import (
    JolokiaManagementClient,
    ManagementClient,
    RemoteExecutor,
    SSHRemoteExecutor,
)


logger = logging.getLogger(__name__)


DEFAULT_RECOVERY_TIMEOUT = 120.0


# ============================================================
# WORKLOAD CLIENT
# ============================================================

class WorkloadClient(ABC):
    """Executes client operations against the database."""

    async def setup(self, config: ClusterConfig) -> None:
        pass

    @abstractmethod
    async def invoke(self, op: Operation) -> Operation:
        """Return the completion (ok, fail or info) of an invocation."""
        pass

    async def teardown(self) -> None:
        pass


# ============================================================
# RUNNER
# ============================================================

class ChaosRunner:
    """Drives a workload and the nemeses against one cluster."""

    def __init__(
        self,
        name: str,
        config: ClusterConfig,
        opts: FaultOptions,
        dispatcher: NemesisDispatcher,
        lifecycle: NodeLifecycleController,
        client: WorkloadClient,
        history: Optional[HistoryStore] = None,
        settings: Optional[HarnessSettings] = None,
        rng: Optional[random.Random] = None,
        clock=time.monotonic,
        sleep=asyncio.sleep,
        manage_nodes: bool = True,
        executor: Optional[RemoteExecutor] = None,
        management: Optional[ManagementClient] = None,
    ):
        """
        Initialize the runner.

        Args:
            name: Test name, prefixed with "cassandra-" in results
            sleep: Used for the fault-window pauses
            manage_nodes: Whether to set up and tear down the nodes
            executor, management: Transports owned by the runner,
                closed when the run ends
        """
        self.name = f"cassandra-{name}"
        self._config = config
        self._opts = opts
        self._dispatcher = dispatcher
        self._lifecycle = lifecycle
        self._client = client
        self._history = history
        self._settings = settings or load_settings()
        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self._manage_nodes = manage_nodes
        self._transports = [t for t in (executor, management) if t is not None]
        self._started: float = 0.0

    @property
    def dispatcher(self) -> NemesisDispatcher:
        return self._dispatcher

    # ========================================================
    # RUN
    # ========================================================

    async def run(
        self,
        client_sources: List[ClientSource],
        final_ops: Iterable[Operation] = (),
        recovery_check: Optional[HealthCheck] = None,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
    ) -> RunResult:
        result = RunResult(run_id=str(uuid.uuid4()), name=self.name)
        self._started = self._clock()
        result.started_at = self._started
        logger.info(f"Starting chaos run {self.name} ({result.run_id})")

        try:
            await self._setup()
            await self._run_schedule(client_sources, result)

            if recovery_check is not None:
                await wait_for_recovery(
                    self._settings.scaled(recovery_timeout), recovery_check
                )
            for op in final_ops:
                await self._invoke_client(op, result)

            await self._teardown()
        except ChaosException as e:
            if e.fatal:
                logger.critical(f"Run {self.name} aborted, cluster left as-is: {e.message}")
            raise
        finally:
            await self.close()

        result.ended_at = self._clock()
        logger.info(
            f"Finished chaos run {self.name}: {len(result.history)} ops, "
            f"{len(result.nemesis_errors)} nemesis errors"
        )
        return result

    async def close(self) -> None:
        """Release the transports owned by this runner."""
        for transport in self._transports:
            await transport.close()

    async def _setup(self) -> None:
        if self._manage_nodes:
            await asyncio.gather(
                *(self._lifecycle.setup_node(node) for node in self._config.nodes)
            )
        await self._client.setup(self._config)
        await self._dispatcher.setup_all()

    async def _teardown(self) -> None:
        await self._dispatcher.teardown_all()
        await self._client.teardown()
        if self._manage_nodes:
            await asyncio.gather(
                *(self._lifecycle.teardown_node(node) for node in self._config.nodes)
            )

    async def _run_schedule(
        self,
        client_sources: List[ClientSource],
        result: RunResult,
    ) -> None:
        steps = schedule(
            self._opts,
            client_sources,
            rng=self._rng,
            clock=self._clock,
            settings=self._settings,
        )
        steps.start()

        nemesis = asyncio.create_task(self._nemesis_process(steps, result))
        clients = asyncio.create_task(self._client_process(steps, result))
        try:
            await asyncio.gather(nemesis, clients)
        finally:
            for task in (nemesis, clients):
                if not task.done():
                    task.cancel()

        for step in steps.terminate_steps():
            await self._invoke_nemesis(step.operation, result)

    # ========================================================
    # PROCESSES
    # ========================================================

    async def _nemesis_process(self, steps: Schedule, result: RunResult) -> None:
        """Executes nemesis ops one at a time, pausing between them."""
        for step in steps.fault_steps():
            if isinstance(step, Sleep):
                if step.seconds > 0:
                    await self._sleep(step.seconds)
                continue
            await self._invoke_nemesis(step.operation, result)

    async def _client_process(self, steps: Schedule, result: RunResult) -> None:
        for step in steps.client_steps():
            await self._invoke_client(step.operation, result)
            # Yield to the nemesis process
            await asyncio.sleep(0)

    async def _invoke_nemesis(self, op: Operation, result: RunResult) -> None:
        process = ProcessKind.NEMESIS.value
        op = dataclasses.replace(op, process=process)
        self._record(result, op)
        try:
            completed = await self._dispatcher.invoke(op)
        except ChaosException as e:
            if e.fatal:
                raise
            logger.error(f"CHAOS: nemesis {op.action} failed: {e.message}")
            result.nemesis_errors.append(e.to_dict())
            completed = op.with_value({"error": e.to_dict()})
        self._record(result, dataclasses.replace(completed, process=process))

    async def _invoke_client(self, op: Operation, result: RunResult) -> None:
        process = ProcessKind.CLIENT.value
        op = dataclasses.replace(op, process=process)
        self._record(result, op)
        try:
            completed = await self._client.invoke(op)
        except Exception as e:
            logger.exception(f"Client {op.action} failed: {e}")
            completed = op.with_type(OperationType.INFO).with_value({"error": str(e)})
        self._record(result, dataclasses.replace(completed, process=process))

    def _record(self, result: RunResult, op: Operation) -> None:
        op = dataclasses.replace(op, time=self._clock() - self._started)
        result.history.append(op)
        if self._history is not None:
            self._history.record(result.run_id, op)


# ============================================================
# FACTORY FUNCTIONS
# ============================================================

def create_runner(
    name: str,
    config: ClusterConfig,
    opts: FaultOptions,
    client: WorkloadClient,
    executor: Optional[RemoteExecutor] = None,
    management: Optional[ManagementClient] = None,
    settings: Optional[HarnessSettings] = None,
    history: Optional[HistoryStore] = None,
    resolver: Optional[AddressResolver] = None,
    rng: Optional[random.Random] = None,
    sleep=asyncio.sleep,
    clock=time.monotonic,
    manage_nodes: bool = True,
) -> ChaosRunner:
    """
    Wire up a runner with the shared membership state.

    SSH and Jolokia transports are used unless others are given.
    """
    settings = settings or load_settings()
    rng = rng or random.Random()
    executor = executor or SSHRemoteExecutor(
        username=settings.ssh_user,
        key_path=settings.ssh_key_path,
        port=settings.ssh_port,
    )
    management = management or JolokiaManagementClient(port=settings.jolokia_port)
    resolver = resolver or AddressResolver(config)

    decommissioned = DecommissionedSet(config)
    tracker = MembershipTracker(config, decommissioned, management, resolver, rng)
    lifecycle = NodeLifecycleController(
        config, decommissioned, executor, settings, resolver=resolver, sleep=sleep
    )
    context = NemesisContext(
        config=config,
        decommissioned=decommissioned,
        tracker=tracker,
        lifecycle=lifecycle,
        executor=executor,
        settings=settings,
        rng=rng,
        sleep=sleep,
    )
    dispatcher = NemesisDispatcher(context, clock=opts.clock_enabled)

    return ChaosRunner(
        name,
        config,
        opts,
        dispatcher,
        lifecycle,
        client,
        history=history,
        settings=settings,
        rng=rng,
        clock=clock,
        sleep=sleep,
        manage_nodes=manage_nodes,
        executor=executor,
        management=management,
    )
