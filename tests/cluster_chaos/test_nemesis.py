"""
Tests for the Nemesis Package.

============================================================
TEST COVERAGE
============================================================
1. Decommission and bootstrap safety
2. Replay and flush/compact actions
3. Clock actions
4. Dispatcher routing
5. Five node, rf=3 membership scenario
============================================================
"""

import random

import pytest

from cluster_chaos import (
    Action,
    BootstrapTimeoutError,
    ClusterConfig,
    DecommissionedSet,
    HarnessSettings,
    MembershipTracker,
    MockManagementClient,
    MockRemoteExecutor,
    NemesisContext,
    NemesisDispatcher,
    NemesisKind,
    NodeLifecycleController,
    OperationType,
    RemoteCommandError,
    UnroutableOperationError,
    bootstrapper,
    clock_nemesis,
    decommissioner,
    flush_compacter,
    info,
    replayer,
)
from cluster_chaos.nemesis import bump_op, reset_op, strobe_op


NODES = ["n1", "n2", "n3", "n4", "n5"]
ADDRESSES = {node: f"10.0.0.{i + 1}" for i, node in enumerate(NODES)}


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def config():
    return ClusterConfig(nodes=NODES, rf=3, addresses=ADDRESSES)


@pytest.fixture
def executor():
    return MockRemoteExecutor()


@pytest.fixture
def management():
    return MockManagementClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def context(config, executor, management, sleeps):
    """Nemesis context over mock transports and a recording sleep."""

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    rng = random.Random(11)
    settings = HarnessSettings(bootstrap_timeout=5, ntp_server="ntp.test")
    decommissioned = DecommissionedSet(config)
    tracker = MembershipTracker(config, decommissioned, management, rng=rng)
    lifecycle = NodeLifecycleController(
        config, decommissioned, executor, settings, sleep=fake_sleep
    )
    return NemesisContext(
        config=config,
        decommissioned=decommissioned,
        tracker=tracker,
        lifecycle=lifecycle,
        executor=executor,
        settings=settings,
        rng=rng,
        sleep=fake_sleep,
    )


@pytest.fixture
def live_ring(context, management):
    """Every node reports the nodes that are not decommissioned as live."""

    def live():
        return [
            ADDRESSES[node] for node in NODES if node not in context.decommissioned
        ]

    for node in NODES:
        management.set_live_nodes(node, live)
    return live


@pytest.fixture
def nobody_joining(management):
    for node in NODES:
        management.set_joining_nodes(node, [])


# ============================================================
# DECOMMISSION TESTS
# ============================================================

class TestDecommissioner:
    """Test the decommission nemesis."""

    @pytest.mark.asyncio
    async def test_decommissions_one_live_node(self, context, executor, live_ring):
        """Test one live node is picked and decommissioned."""
        nemesis = decommissioner()
        op = await nemesis.invoke(context, info(Action.DECOMMISSION))

        assert len(context.decommissioned) == 1
        (node,) = context.decommissioned.snapshot()
        assert op.value == f"{node} decommissioned"
        assert executor.commands_for(node) == [
            "/root/cassandra/bin/nodetool decommission"
        ]

    @pytest.mark.asyncio
    async def test_no_op_at_replication_factor(self, context, executor, management):
        """Test nothing happens with only rf nodes live."""
        for node in NODES:
            management.set_live_nodes(node, [ADDRESSES[n] for n in ("n1", "n2", "n3")])

        op = await decommissioner().invoke(context, info(Action.DECOMMISSION))

        assert op.value == "no nodes eligible for decommission"
        assert len(context.decommissioned) == 0
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_never_picks_decommissioned_node(self, context, executor, management):
        """Test a node still reported live is not decommissioned twice."""
        context.decommissioned.try_add("n5")
        for node in NODES:
            management.set_live_nodes(node, list(ADDRESSES.values()))

        for _ in range(10):
            await decommissioner().invoke(context, info(Action.DECOMMISSION))

        assert "n5" not in executor.nodes_running("decommission")
        assert len(executor.nodes_running("decommission")) == 1
        assert len(context.decommissioned) == 2

    @pytest.mark.asyncio
    async def test_no_op_when_cluster_unreachable(self, context, executor):
        """Test an empty live view decommissions nothing."""
        op = await decommissioner().invoke(context, info(Action.DECOMMISSION))
        assert op.value == "no nodes eligible for decommission"
        assert executor.calls == []


# ============================================================
# BOOTSTRAP TESTS
# ============================================================

class TestBootstrapper:
    """Test the bootstrap nemesis."""

    @pytest.mark.asyncio
    async def test_nothing_to_bootstrap(self, context, executor):
        """Test an empty set is a no-op."""
        op = await bootstrapper().invoke(context, info(Action.BOOTSTRAP))
        assert op.value == "no nodes left to bootstrap"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_bootstraps_decommissioned_node(
        self, context, executor, nobody_joining
    ):
        """Test the node leaves the set and is started."""
        context.decommissioned.try_add("n4")

        op = await bootstrapper().invoke(context, info(Action.BOOTSTRAP))

        assert op.value == "n4 bootstrapped"
        assert "n4" not in context.decommissioned
        assert executor.commands_for("n4") == ["/root/cassandra/bin/cassandra -R"]
        assert executor.nodes_running("cassandra -R") == ["n4"]

    @pytest.mark.asyncio
    async def test_node_removed_before_start(self, context, executor, nobody_joining):
        """Test the set no longer holds the node when it starts."""
        context.decommissioned.try_add("n4")
        seen = []
        executor.set_response(
            "cassandra -R",
            lambda node: seen.append(node in context.decommissioned) or "",
        )

        await bootstrapper().invoke(context, info(Action.BOOTSTRAP))

        assert seen == [False]

    @pytest.mark.asyncio
    async def test_waits_while_joining(self, context, management, sleeps):
        """Test joining is polled until the node has joined."""
        context.decommissioned.try_add("n5")

        def joining():
            return [ADDRESSES["n5"]] if len(sleeps) < 2 else []

        for node in NODES:
            management.set_joining_nodes(node, joining)

        op = await bootstrapper().invoke(context, info(Action.BOOTSTRAP))

        assert op.value == "n5 bootstrapped"
        assert sleeps == [1, 1]

    @pytest.mark.asyncio
    async def test_bootstrap_timeout(self, context, management, sleeps):
        """Test a node stuck joining raises a distinguishable error."""
        context.decommissioned.try_add("n5")
        for node in NODES:
            management.set_joining_nodes(node, [ADDRESSES["n5"]])

        with pytest.raises(BootstrapTimeoutError) as exc_info:
            await bootstrapper().invoke(context, info(Action.BOOTSTRAP))

        assert exc_info.value.node == "n5"
        assert exc_info.value.fatal is False
        assert sleeps == [1] * 5

    @pytest.mark.asyncio
    async def test_failed_start_keeps_node_decommissioned(self, context, executor):
        """Test a node that fails to start stays bootstrappable."""
        context.decommissioned.try_add("n4")
        executor.set_response("cassandra -R", OSError("connection reset"))

        with pytest.raises(RemoteCommandError):
            await bootstrapper().invoke(context, info(Action.BOOTSTRAP))

        assert "n4" in context.decommissioned


# ============================================================
# MAINTENANCE TESTS
# ============================================================

class TestMaintenanceNemeses:
    """Test batch log replay and flush/compact."""

    @pytest.mark.asyncio
    async def test_replay_on_live_nodes(self, context, executor, management):
        """Test every live node replays its batch log."""
        for node in NODES:
            management.set_live_nodes(node, [ADDRESSES["n1"], ADDRESSES["n3"]])

        op = await replayer().invoke(context, info(Action.REPLAY_BATCHLOG))

        assert executor.nodes_running("replaybatchlog") == ["n1", "n3"]
        assert op.value == "['n1', 'n3'] batch logs replayed"

    @pytest.mark.asyncio
    async def test_flush_compact_on_start(self, context, executor):
        """Test start flushes then compacts every configured node."""
        op = await flush_compacter().invoke(context, info(Action.START))

        assert executor.nodes_running("nodetool flush") == NODES
        assert executor.nodes_running("nodetool compact") == NODES
        assert executor.commands_for("n1") == [
            "/root/cassandra/bin/nodetool flush",
            "/root/cassandra/bin/nodetool compact",
        ]
        assert op.value == f"{NODES} nodes flushed and compacted"
        assert op.type is OperationType.INFO

    @pytest.mark.asyncio
    async def test_flush_compact_stop_is_no_op(self, context, executor):
        """Test stop has nothing to undo."""
        op = await flush_compacter().invoke(context, info(Action.STOP))
        assert op.value == "stop is a no-op with this nemesis"
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_flush_compact_ignores_liveness(self, context, executor):
        """Test decommissioned nodes are still flushed."""
        context.decommissioned.try_add("n5")
        await flush_compacter().invoke(context, info(Action.FLUSH_COMPACT))
        assert "n5" in executor.nodes_running("nodetool flush")

    @pytest.mark.asyncio
    async def test_remote_failure_propagates(self, context, executor):
        """Test a failing nodetool surfaces as a remote command error."""
        executor.set_response("nodetool flush", RuntimeError("exit 2"))
        with pytest.raises(RemoteCommandError) as exc_info:
            await flush_compacter().invoke(context, info(Action.START))
        assert exc_info.value.node == "n1"


# ============================================================
# CLOCK TESTS
# ============================================================

class TestClockNemesis:
    """Test clock perturbation."""

    def test_reset_op_targets_subset(self):
        """Test reset picks a non-empty subset of the nodes."""
        op = reset_op(NODES, random.Random(1))
        assert op.action == Action.CLOCK_RESET
        assert op.value and set(op.value) <= set(NODES)

    def test_bump_op_deltas(self):
        """Test bump deltas are non-zero and bounded."""
        op = bump_op(NODES, random.Random(2))
        assert op.value
        for node, delta in op.value.items():
            assert node in NODES
            assert 1 <= abs(delta) <= 262

    def test_strobe_op_shape(self):
        """Test strobe specs carry delta, period and duration."""
        op = strobe_op(NODES, random.Random(3))
        for spec in op.value.values():
            assert 1 <= spec["delta"] <= 64
            assert spec["period"] in (0.01, 0.1, 0.5, 1.0)
            assert 1 <= spec["duration"] <= 32

    @pytest.mark.asyncio
    async def test_reset_runs_ntpdate(self, context, executor):
        """Test reset resyncs each target against the NTP server."""
        op = await clock_nemesis().invoke(context, info(Action.CLOCK_RESET, ["n2"]))
        assert executor.calls == [("n2", "ntpdate -p 1 -b ntp.test")]
        assert op.value == ["n2"]

    @pytest.mark.asyncio
    async def test_bump_sets_relative_date(self, context, executor):
        """Test bump shifts each clock by its delta."""
        await clock_nemesis().invoke(context, info(Action.CLOCK_BUMP, {"n1": -30}))
        assert executor.calls == [("n1", "date -s '-30 seconds' > /dev/null")]

    @pytest.mark.asyncio
    async def test_strobe_loops(self, context, executor):
        """Test strobe flips the clock back and forth."""
        spec = {"delta": 5, "period": 0.5, "duration": 4}
        await clock_nemesis().invoke(context, info(Action.CLOCK_STROBE, {"n3": spec}))

        ((node, script),) = executor.calls
        assert node == "n3"
        assert "seq 4" in script
        assert "'5 seconds'" in script
        assert "'-5 seconds'" in script

    @pytest.mark.asyncio
    async def test_teardown_resets_all_clocks(self, context, executor):
        """Test teardown resyncs every node."""
        await clock_nemesis().teardown(context)
        assert executor.nodes_running("ntpdate") == NODES


# ============================================================
# DISPATCHER TESTS
# ============================================================

class TestNemesisDispatcher:
    """Test routing of nemesis operations."""

    def test_routes(self, context):
        """Test each action reaches the nemesis that owns it."""
        dispatcher = NemesisDispatcher(context)
        assert dispatcher.route(Action.START).kind is NemesisKind.FLUSH_COMPACT
        assert dispatcher.route("stop") is dispatcher.route("start")
        assert dispatcher.route("bootstrap").kind is NemesisKind.BOOTSTRAP
        assert dispatcher.route("decommission").kind is NemesisKind.DECOMMISSION
        assert dispatcher.route("replay-batchlog").kind is NemesisKind.REPLAY
        assert dispatcher.route("flush-compact") is dispatcher.route("start")

    def test_custom_primary(self, context):
        """Test start/stop can be bound to another nemesis."""
        primary = replayer()
        dispatcher = NemesisDispatcher(context, primary=primary)
        assert dispatcher.route("start") is primary
        assert dispatcher.route("flush-compact").kind is NemesisKind.FLUSH_COMPACT

    def test_unknown_action(self, context):
        """Test unknown actions are rejected."""
        dispatcher = NemesisDispatcher(context)
        with pytest.raises(UnroutableOperationError) as exc_info:
            dispatcher.route("partition")
        assert exc_info.value.action == "partition"

    def test_clock_routes_need_clock_faults(self, context):
        """Test clock actions are only routed when enabled."""
        with pytest.raises(UnroutableOperationError):
            NemesisDispatcher(context).route("bump")
        dispatcher = NemesisDispatcher(context, clock=True)
        assert dispatcher.route("bump").kind is NemesisKind.CLOCK
        assert dispatcher.route("reset") is dispatcher.route("strobe")

    def test_nemeses_are_distinct(self, context):
        """Test shared nemeses are set up once."""
        kinds = [n.kind for n in NemesisDispatcher(context, clock=True).nemeses()]
        assert len(kinds) == len(set(kinds)) == 5

    @pytest.mark.asyncio
    async def test_setup_invoke_teardown(self, context, executor):
        """Test the full nemesis lifecycle through the dispatcher."""
        dispatcher = NemesisDispatcher(context, clock=True)
        await dispatcher.setup_all()

        op = await dispatcher.invoke(info(Action.STOP))
        assert op.value == "stop is a no-op with this nemesis"

        await dispatcher.teardown_all()
        assert executor.nodes_running("ntpdate") == NODES


# ============================================================
# SCENARIO TESTS
# ============================================================

class TestMembershipScenario:
    """Five nodes, rf=3: decommission down to rf, then bootstrap back."""

    @pytest.mark.asyncio
    async def test_decommission_then_bootstrap(
        self, context, executor, live_ring, nobody_joining
    ):
        """Test the ring never drops below rf and rejoins cleanly."""
        dispatcher = NemesisDispatcher(context)

        first = await dispatcher.invoke(info(Action.DECOMMISSION))
        assert first.value.endswith("decommissioned")
        assert len(context.decommissioned) == 1

        second = await dispatcher.invoke(info(Action.DECOMMISSION))
        assert second.value.endswith("decommissioned")
        assert len(context.decommissioned) == 2

        third = await dispatcher.invoke(info(Action.DECOMMISSION))
        assert third.value == "no nodes eligible for decommission"
        assert len(context.decommissioned) == 2
        assert len(live_ring()) == context.config.rf

        out = context.decommissioned.snapshot()
        decommissioned_nodes = executor.nodes_running("nodetool decommission")
        assert sorted(decommissioned_nodes) == sorted(out)

        op = await dispatcher.invoke(info(Action.BOOTSTRAP))
        (node,) = out - context.decommissioned.snapshot()
        assert op.value == f"{node} bootstrapped"
        assert len(context.decommissioned) == 1
        assert executor.nodes_running("cassandra -R") == [node]
