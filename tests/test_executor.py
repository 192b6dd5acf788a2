import asyncio
import json
import shutil
import ssl
import unittest

import pytest

from glustermgmt.aio.executor import (
    DEFAULT_HTTP_PORT,
    DEFAULT_TCP_PORT,
    CommandOutput,
    HttpExecutor,
    LocalExecutor,
    TcpExecutor,
)
from glustermgmt.errors import (
    CommandTimeoutError,
    NodeUnreachableError,
    TransportError,
)
from glustermgmt.protocol import command as prot_command
from tests.utils import async_test

try:
    import aiohttp
    from aiohttp import web
    from aiohttp import test_utils
    aiohttp_installed = True
except ModuleNotFoundError:
    aiohttp_installed = False


class CommandOutputTest(unittest.TestCase):

    def test_ok(self):
        self.assertTrue(CommandOutput("x").ok)
        self.assertFalse(CommandOutput("", "failed", 1).ok)

    def test_default_ports(self):
        self.assertEqual(DEFAULT_HTTP_PORT, 24010)
        self.assertEqual(DEFAULT_TCP_PORT, 24011)


class LocalExecutorTest(unittest.TestCase):

    def setUp(self):
        self.loop = asyncio.new_event_loop()

    def tearDown(self):
        self.loop.close()

    def test_argv(self):
        cmd = prot_command.volume_info_cmd()
        ex = LocalExecutor()
        self.assertEqual(
            ex.argv("localhost", cmd),
            ("gluster", "--mode=script", "volume", "info", "all")
        )
        ex = LocalExecutor(sudo=True)
        self.assertEqual(
            ex.argv("127.0.0.1", cmd),
            ("sudo", "-n", "gluster", "--mode=script", "volume", "info", "all")
        )

    def test_argv_over_ssh(self):
        cmd = prot_command.volume_set_cmd("v1", "auth.allow", "10.0.0.*")
        ex = LocalExecutor(ssh_user="root")
        self.assertEqual(
            ex.argv("10.0.0.2", cmd), (
                "ssh",
                "-o",
                "BatchMode=yes",
                "root@10.0.0.2",
                "--",
                "gluster --mode=script volume set v1 auth.allow '10.0.0.*'",
            )
        )
        ex = LocalExecutor(local_nodes=["node-a"], ssh_options=())
        self.assertEqual(ex.argv("node-a", cmd)[0], "gluster")
        self.assertEqual(ex.argv("node-b", cmd)[:2], ("ssh", "node-b"))

    @async_test
    async def test_execute(self):
        if shutil.which("echo") is None:
            pytest.skip("echo not available")
        ex = LocalExecutor(binary="echo")
        out = await ex.execute("localhost", prot_command.pool_list_cmd(), 5)
        self.assertTrue(out.ok)
        self.assertEqual(out.stdout.strip(), "--mode=script pool list")
        self.assertEqual(out.node, "localhost")

    @async_test
    async def test_execute_failure_status(self):
        if shutil.which("false") is None:
            pytest.skip("false not available")
        ex = LocalExecutor(binary="false")
        out = await ex.execute("localhost", prot_command.pool_list_cmd(), 5)
        self.assertFalse(out.ok)
        self.assertNotEqual(out.exit_code, 0)

    @async_test
    async def test_missing_binary(self):
        ex = LocalExecutor(binary="/nonexistent/gluster")
        with pytest.raises(NodeUnreachableError) as err:
            await ex.execute("localhost", prot_command.pool_list_cmd(), 5)
        self.assertEqual(err.value.node, "localhost")


class TcpExecutorTest(unittest.TestCase):

    def setUp(self):
        self.loop = asyncio.new_event_loop()
        self.received = []

    def tearDown(self):
        self.loop.close()

    async def serve(self, reply):

        async def handler(r, w):
            line = await r.readline()
            self.received.append(json.loads(line))
            data = await reply()
            if data is not None:
                w.write(data)
                await w.drain()
            w.close()

        server = await asyncio.start_server(handler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        return server, f"127.0.0.1:{port}"

    @async_test
    async def test_execute(self):

        async def reply():
            return b'{"stdout": "UUID Hostname State\\n", "stderr": "", "exit_code": 0}\n'

        server, node = await self.serve(reply)
        ex = TcpExecutor()
        out = await ex.execute(node, prot_command.pool_list_cmd(), 5)
        server.close()
        self.assertEqual(out.stdout, "UUID Hostname State\n")
        self.assertEqual(out.exit_code, 0)
        self.assertEqual(out.node, node)
        self.assertEqual(self.received, [{"args": ["pool", "list"]}])

    @async_test
    async def test_rejected_command(self):

        async def reply():
            return json.dumps({
                "stdout": "",
                "stderr": "volume start: v1: failed: Volume v1 does not exist",
                "exit_code": 1,
            }).encode() + b"\n"

        server, node = await self.serve(reply)
        out = await TcpExecutor().execute(
            node, prot_command.volume_start_cmd("v1"), 5
        )
        server.close()
        self.assertFalse(out.ok)
        self.assertIn("does not exist", out.stderr)

    @async_test
    async def test_eof(self):

        async def reply():
            return None

        server, node = await self.serve(reply)
        with pytest.raises(TransportError) as err:
            await TcpExecutor().execute(node, prot_command.pool_list_cmd(), 5)
        server.close()
        self.assertEqual(err.value.description, "unexpected EOF")

    @async_test
    async def test_malformed_response(self):

        async def reply():
            return b"garbage\n"

        server, node = await self.serve(reply)
        with pytest.raises(TransportError):
            await TcpExecutor().execute(node, prot_command.pool_list_cmd(), 5)
        with pytest.raises(TransportError):
            await TcpExecutor().execute(node, prot_command.pool_list_cmd(), 5)
        server.close()

    @async_test
    async def test_timeout(self):

        async def reply():
            await asyncio.sleep(10)

        server, node = await self.serve(reply)
        with pytest.raises(CommandTimeoutError) as err:
            await TcpExecutor().execute(node, prot_command.pool_list_cmd(), 0.1)
        server.close()
        self.assertEqual(err.value.node, node)

    @async_test
    async def test_unreachable(self):
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        with pytest.raises(NodeUnreachableError):
            await TcpExecutor().execute(
                f"127.0.0.1:{port}", prot_command.pool_list_cmd(), 5
            )

    @async_test
    async def test_invalid_node(self):
        with pytest.raises(TransportError):
            await TcpExecutor().execute(
                "10.0.0.1:notaport", prot_command.pool_list_cmd(), 5
            )


class HttpExecutorTest(unittest.TestCase):

    def setUp(self):
        self.loop = asyncio.new_event_loop()
        self.requests = []

    def tearDown(self):
        self.loop.close()

    async def serve(self, respond):

        async def handler(request):
            self.requests.append((dict(request.headers), await request.json()))
            return await respond(request)

        app = web.Application()
        app.router.add_post("/v1/commands", handler)
        server = test_utils.TestServer(app, host="127.0.0.1")
        await server.start_server()
        return server, f"127.0.0.1:{server.port}"

    def test_url(self):
        if not aiohttp_installed:
            pytest.skip("aiohttp not installed")
        ex = HttpExecutor()
        self.assertEqual(ex.url("10.0.0.1"), "http://10.0.0.1:24010/v1/commands")
        self.assertEqual(
            ex.url("node-a:8080"), "http://node-a:8080/v1/commands"
        )
        self.assertEqual(
            ex.url("[fe80::1]:8080"), "http://[fe80::1]:8080/v1/commands"
        )
        ex = HttpExecutor(tls=ssl.create_default_context())
        self.assertEqual(ex.url("10.0.0.1"), "https://10.0.0.1:24010/v1/commands")

    @async_test
    async def test_execute(self):
        if not aiohttp_installed:
            pytest.skip("aiohttp not installed")

        async def respond(request):
            return web.json_response({
                "stdout": "volume start: v1: success",
                "stderr": "",
                "exit_code": 0
            })

        server, node = await self.serve(respond)
        ex = HttpExecutor(token="s3cr3t")
        try:
            out = await ex.execute(node, prot_command.volume_start_cmd("v1"), 5)
        finally:
            await ex.close()
            await server.close()
        self.assertTrue(out.ok)
        self.assertEqual(out.stdout, "volume start: v1: success")
        headers, body = self.requests[0]
        self.assertEqual(body, {"args": ["volume", "start", "v1"]})
        self.assertEqual(headers["Authorization"], "Bearer s3cr3t")

    @async_test
    async def test_http_error(self):
        if not aiohttp_installed:
            pytest.skip("aiohttp not installed")

        async def respond(request):
            return web.Response(status=503, text="unavailable")

        server, node = await self.serve(respond)
        ex = HttpExecutor()
        try:
            with pytest.raises(TransportError) as err:
                await ex.execute(node, prot_command.pool_list_cmd(), 5)
        finally:
            await ex.close()
            await server.close()
        self.assertEqual(err.value.description, "http status 503")

    @async_test
    async def test_malformed_response(self):
        if not aiohttp_installed:
            pytest.skip("aiohttp not installed")

        async def respond(request):
            return web.Response(text="not json")

        server, node = await self.serve(respond)
        ex = HttpExecutor()
        try:
            with pytest.raises(TransportError):
                await ex.execute(node, prot_command.pool_list_cmd(), 5)
        finally:
            await ex.close()
            await server.close()

    @async_test
    async def test_shared_session_not_closed(self):
        if not aiohttp_installed:
            pytest.skip("aiohttp not installed")
        session = aiohttp.ClientSession()
        ex = HttpExecutor(session=session)
        await ex.close()
        self.assertFalse(session.closed)
        await session.close()
