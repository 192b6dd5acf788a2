import asyncio
import unittest
from unittest import mock

import pytest

from glustermgmt.aio import pool as gm_pool
from glustermgmt.aio.executor import CommandOutput
from glustermgmt.aio.pool import NodePool, backoff
from glustermgmt.errors import (
    ClusterRejected,
    CommandTimeoutError,
    NodeUnreachableError,
    NoNodesError,
    SemanticRejection,
)
from glustermgmt.protocol import command as prot_command
from tests.utils import FakeExecutor, async_test, rejected


class BackoffTest(unittest.TestCase):

    def test_doubles_up_to_max(self):
        self.assertEqual(backoff(0, 0.5, 5, 0), 0.5)
        self.assertEqual(backoff(1, 0.5, 5, 0), 1.0)
        self.assertEqual(backoff(3, 0.5, 5, 0), 4.0)
        self.assertEqual(backoff(4, 0.5, 5, 0), 5)
        self.assertEqual(backoff(30, 0.5, 5, 0), 5)

    def test_jitter_bounds(self):
        for attempt in range(6):
            base = min(0.5 * 2**attempt, 5)
            for _ in range(20):
                delay = backoff(attempt, 0.5, 5, 0.1)
                self.assertGreaterEqual(delay, base * 0.9)
                self.assertLessEqual(delay, base * 1.1)

    def test_defaults(self):
        self.assertEqual(gm_pool.DEFAULT_MAX_ATTEMPTS, 3)
        self.assertEqual(gm_pool.DEFAULT_RETRY_TIME_WAIT, 0.5)
        self.assertEqual(gm_pool.DEFAULT_MAX_RETRY_TIME_WAIT, 5)
        self.assertEqual(gm_pool.DEFAULT_COMMAND_TIMEOUT, 30)


class NodePoolTest(unittest.TestCase):

    def setUp(self):
        self.loop = asyncio.new_event_loop()

    def tearDown(self):
        self.loop.close()

    def pool(self, executor, nodes=("n1", "n2", "n3"), **kw):
        kw.setdefault("retry_time_wait", 0)
        kw.setdefault("retry_jitter", 0)
        return NodePool(list(nodes), executor, dont_randomize=True, **kw)

    def test_no_nodes(self):
        with pytest.raises(NoNodesError):
            NodePool([], FakeExecutor())

    def test_single_node_string(self):
        self.assertEqual(NodePool("n1", FakeExecutor()).nodes, ["n1"])

    def test_randomized_order_keeps_nodes(self):
        nodes = [f"n{i}" for i in range(10)]
        with mock.patch("random.shuffle") as shuffle:
            p = NodePool(nodes, FakeExecutor())
        shuffle.assert_called_once()
        self.assertEqual(sorted(p.nodes), sorted(nodes))

    @async_test
    async def test_run(self):
        ex = FakeExecutor({"pool list": "UUID Hostname State\n"})
        p = self.pool(ex)
        out = await p.run(prot_command.pool_list_cmd())
        self.assertEqual(out.stdout, "UUID Hostname State\n")
        self.assertEqual(out.node, "n1")
        self.assertEqual(ex.calls[0][0], "n1")

    @async_test
    async def test_rotates_on_transport_error(self):
        errors = []

        async def error_cb(e):
            errors.append(e)

        ex = FakeExecutor({"pool list": "ok"}, unreachable=["n1", "n2"])
        p = self.pool(ex, error_cb=error_cb)
        out = await p.run(prot_command.pool_list_cmd())
        self.assertEqual(out.node, "n3")
        self.assertEqual([node for node, _ in ex.calls], ["n1", "n2", "n3"])
        self.assertEqual(len(errors), 2)
        self.assertTrue(all(isinstance(e, NodeUnreachableError) for e in errors))
        # The responsive node stays first for the following commands.
        self.assertEqual(p.current.address, "n3")
        self.assertEqual(p.current.failures, 0)

    @async_test
    async def test_all_nodes_unreachable(self):
        ex = FakeExecutor({"pool list": "ok"}, unreachable=["n1", "n2", "n3"])
        p = self.pool(ex, max_attempts=5)
        with pytest.raises(NodeUnreachableError):
            await p.run(prot_command.pool_list_cmd())
        self.assertEqual(len(ex.calls), 5)
        self.assertEqual(
            [node for node, _ in ex.calls], ["n1", "n2", "n3", "n1", "n2"]
        )

    @async_test
    async def test_waits_between_attempts(self):
        ex = FakeExecutor({"pool list": "ok"}, unreachable=["n1"])
        p = self.pool(ex, retry_time_wait=0.25, retry_jitter=0)
        with mock.patch("asyncio.sleep", new=mock.AsyncMock()) as sleep:
            await p.run(prot_command.pool_list_cmd())
        sleep.assert_any_await(0.25)

    @async_test
    async def test_rejection_is_not_retried(self):
        ex = FakeExecutor({
            "volume start v1": rejected("volume start: v1: failed: Volume v1 does not exist")
        })
        p = self.pool(ex)
        with pytest.raises(SemanticRejection) as err:
            await p.run(prot_command.volume_start_cmd("v1"))
        self.assertEqual(err.value.reason, "Volume v1 does not exist")
        self.assertEqual(err.value.returncode, 1)
        self.assertEqual(len(ex.calls), 1)

    @async_test
    async def test_create_rejection(self):
        ex = FakeExecutor({
            "volume create v1 transport tcp 10.0.0.1:/b1":
            rejected("volume create: v1: failed: Volume v1 already exists")
        })
        p = self.pool(ex)
        cmd = prot_command.volume_create_cmd("v1", ["10.0.0.1:/b1"])
        with pytest.raises(ClusterRejected):
            await p.run(cmd)

    @async_test
    async def test_execute_returns_failures(self):
        ex = FakeExecutor({"volume info v1": rejected("Volume v1 does not exist")})
        p = self.pool(ex)
        out = await p.execute(prot_command.volume_info_cmd("v1"))
        self.assertFalse(out.ok)
        self.assertEqual(out.stderr, "Volume v1 does not exist")

    @async_test
    async def test_read_retried_after_timeout(self):
        ex = FakeExecutor({"pool list": [CommandTimeoutError("n1"), "ok"]})
        p = self.pool(ex)
        out = await p.run(prot_command.pool_list_cmd())
        self.assertEqual(out.stdout, "ok")
        self.assertEqual(len(ex.calls), 2)

    @async_test
    async def test_mutation_not_retried_after_timeout(self):
        ex = FakeExecutor({
            "volume stop v1": [CommandTimeoutError("n1"), "volume stop: v1: success"]
        })
        p = self.pool(ex)
        with pytest.raises(CommandTimeoutError):
            await p.run(prot_command.volume_stop_cmd("v1"))
        self.assertEqual(len(ex.calls), 1)

    @async_test
    async def test_mutation_retried_when_unreachable(self):
        ex = FakeExecutor({"volume stop v1": "volume stop: v1: success"},
                          unreachable=["n1"])
        p = self.pool(ex)
        out = await p.run(prot_command.volume_stop_cmd("v1"))
        self.assertEqual(out.node, "n2")

    @async_test
    async def test_timeout_passed_to_executor(self):
        ex = FakeExecutor()
        ex.execute = mock.AsyncMock(return_value=CommandOutput("ok"))
        p = self.pool(ex, command_timeout=7)
        await p.run(prot_command.pool_list_cmd())
        await p.run(prot_command.pool_list_cmd(), timeout=2)
        self.assertEqual(ex.execute.await_args_list[0].args[2], 7)
        self.assertEqual(ex.execute.await_args_list[1].args[2], 2)
