# Copyright 2026 The glustermgmt Authors
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

from __future__ import annotations

import abc
import asyncio
import json
import logging
import shlex
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple
from urllib.parse import urlparse

try:
    import aiohttp
except ImportError:
    aiohttp = None  # type: ignore[assignment]

from glustermgmt.errors import (
    CommandTimeoutError,
    NodeUnreachableError,
    TransportError,
)
from glustermgmt.protocol.command import GLUSTER_BIN, Command

_logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 24010
DEFAULT_TCP_PORT = 24011
DEFAULT_BUFFER_SIZE = 4 * 1024 * 1024
COMMANDS_PATH = "/v1/commands"
LOCAL_NODES = ("localhost", "127.0.0.1", "::1")
SSH_UNREACHABLE = 255


@dataclass
class CommandOutput:
    """
    What a node answered to a command. ``node`` is the node that ran it.
    """
    stdout: str
    stderr: str = ""
    exit_code: int = 0
    node: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _split_node(node: str, default_port: int) -> Tuple[str, int]:
    uri = urlparse(f"//{node}")
    if uri.hostname is None:
        raise TransportError(node, "invalid node address")
    try:
        port = uri.port or default_port
    except ValueError:
        raise TransportError(node, "invalid node port")
    return uri.hostname, port


def _output_from_json(node: str, data: Any) -> CommandOutput:
    try:
        return CommandOutput(
            stdout=data.get("stdout") or "",
            stderr=data.get("stderr") or "",
            exit_code=int(data["exit_code"]),
            node=node,
        )
    except (AttributeError, KeyError, TypeError, ValueError):
        raise TransportError(node, "malformed command response")


class NodeExecutor(abc.ABC):

    @abc.abstractmethod
    async def execute(
        self, node: str, command: Command, timeout: float
    ) -> CommandOutput:
        """
        Runs a management command on the given node and returns its output,
        whatever its exit status. Failing to deliver the command or to read
        its output back raises a TransportError, which includes exceeding
        ``timeout`` seconds.
        """
        pass

    async def close(self) -> None:
        """
        Releases the resources held by the executor.
        """
        pass


class LocalExecutor(NodeExecutor):
    """
    Runs the gluster CLI as a subprocess. Commands for local nodes run
    directly, the rest are sent through ssh.
    """

    def __init__(
        self,
        binary: str = GLUSTER_BIN,
        sudo: bool = False,
        ssh_user: Optional[str] = None,
        ssh_options: Sequence[str] = ("-o", "BatchMode=yes"),
        local_nodes: Sequence[str] = LOCAL_NODES,
    ) -> None:
        self._binary = binary
        self._sudo = sudo
        self._ssh_user = ssh_user
        self._ssh_options = tuple(ssh_options)
        self._local_nodes = set(local_nodes)

    def argv(self, node: str, command: Command) -> Tuple[str, ...]:
        argv = command.argv(self._binary)
        if self._sudo:
            argv = ("sudo", "-n") + argv
        if node in self._local_nodes:
            return argv
        target = f"{self._ssh_user}@{node}" if self._ssh_user else node
        remote = " ".join(shlex.quote(arg) for arg in argv)
        return ("ssh", ) + self._ssh_options + (target, "--", remote)

    async def execute(
        self, node: str, command: Command, timeout: float
    ) -> CommandOutput:
        argv = self.argv(node, command)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise NodeUnreachableError(node, str(e))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandTimeoutError(node)
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        if argv[0] == "ssh" and proc.returncode == SSH_UNREACHABLE:
            raise NodeUnreachableError(
                node, stderr.decode(errors="replace").strip()
            )
        return CommandOutput(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else -1,
            node=node,
        )


class HttpExecutor(NodeExecutor):
    """
    Sends commands to an agent on each node that runs them and answers
    with their output::

        POST /v1/commands {"args": ["volume", "info", "all"]}
        200 {"stdout": "...", "stderr": "", "exit_code": 0}
    """

    def __init__(
        self,
        port: int = DEFAULT_HTTP_PORT,
        token: Optional[str] = None,
        tls: Optional[ssl.SSLContext] = None,
        session: Optional["aiohttp.ClientSession"] = None,
    ) -> None:
        if not aiohttp:
            raise ImportError(
                "Could not import aiohttp executor, please install it with `pip install aiohttp`"
            )
        self._port = port
        self._token = token
        self._tls = tls
        self._session = session
        self._owns_session = session is None

    def url(self, node: str) -> str:
        host, port = _split_node(node, self._port)
        scheme = "https" if self._tls else "http"
        if ":" in host:
            host = f"[{host}]"
        return f"{scheme}://{host}:{port}{COMMANDS_PATH}"

    async def execute(
        self, node: str, command: Command, timeout: float
    ) -> CommandOutput:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        headers: Dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            async with self._session.post(
                self.url(node),
                json={"args": list(command.args)},
                headers=headers,
                ssl=self._tls if self._tls else True,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status != 200:
                    raise TransportError(node, f"http status {resp.status}")
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            raise CommandTimeoutError(node)
        except aiohttp.ClientConnectionError as e:
            raise NodeUnreachableError(node, str(e))
        except (aiohttp.ClientError, ValueError) as e:
            raise TransportError(node, str(e))
        return _output_from_json(node, data)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


class TcpExecutor(NodeExecutor):
    """
    Talks to a control daemon over a plain or TLS connection, one
    connection per command. Requests and responses are single lines of
    JSON::

        {"args": ["peer", "status"]}
        {"stdout": "...", "stderr": "", "exit_code": 0}
    """

    def __init__(
        self,
        port: int = DEFAULT_TCP_PORT,
        tls: Optional[ssl.SSLContext] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self._port = port
        self._tls = tls
        self._buffer_size = buffer_size

    async def execute(
        self, node: str, command: Command, timeout: float
    ) -> CommandOutput:
        host, port = _split_node(node, self._port)
        try:
            return await asyncio.wait_for(
                self._roundtrip(node, host, port, command), timeout
            )
        except asyncio.TimeoutError:
            raise CommandTimeoutError(node)

    async def _roundtrip(
        self, node: str, host: str, port: int, command: Command
    ) -> CommandOutput:
        try:
            r, w = await asyncio.open_connection(
                host=host,
                port=port,
                ssl=self._tls,
                limit=self._buffer_size,
            )
        except OSError as e:
            raise NodeUnreachableError(node, str(e))

        try:
            payload = json.dumps({"args": list(command.args)}).encode()
            w.write(payload + b"\n")
            await w.drain()
            line = await r.readline()
        except (OSError, ValueError) as e:
            raise TransportError(node, str(e))
        finally:
            w.close()
            try:
                await w.wait_closed()
            except OSError:
                pass

        if not line:
            raise TransportError(node, "unexpected EOF")
        try:
            data = json.loads(line)
        except ValueError:
            raise TransportError(node, "malformed command response")
        return _output_from_json(node, data)
