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

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from glustermgmt.aio.executor import CommandOutput, NodeExecutor
from glustermgmt.errors import (
    CommandTimeoutError,
    Error,
    NoNodesError,
    SemanticRejection,
    TransportError,
)
from glustermgmt.protocol.command import Command

_logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_TIME_WAIT = 0.5  # in seconds
DEFAULT_MAX_RETRY_TIME_WAIT = 5  # in seconds
DEFAULT_RETRY_JITTER = 0.1
DEFAULT_COMMAND_TIMEOUT = 30  # in seconds

ErrorCallback = Callable[[Exception], Awaitable[None]]


@dataclass
class Node:
    """
    Node is a helper data structure to hold state of a cluster node.
    """
    address: str
    failures: int = 0
    last_attempt: Optional[float] = None
    last_error: Optional[Exception] = None


def backoff(
    attempt: int,
    time_wait: float = DEFAULT_RETRY_TIME_WAIT,
    max_time_wait: float = DEFAULT_MAX_RETRY_TIME_WAIT,
    jitter: float = DEFAULT_RETRY_JITTER,
) -> float:
    """
    Delay before retry number ``attempt`` (starting at zero), doubling each
    time up to ``max_time_wait`` and spread by ``jitter`` either way.
    """
    delay = min(time_wait * (2**attempt), max_time_wait)
    if jitter:
        delay *= 1 + random.uniform(-jitter, jitter)
    return max(delay, 0)


class NodePool:
    """
    NodePool sends commands to one node of the cluster at a time. Transport
    failures are retried with exponential backoff, moving to the next node
    on every retry. A command that ran and exited with a non-zero status is
    never retried: its output is turned into a SemanticRejection.
    """

    def __init__(
        self,
        nodes: Union[str, Sequence[str]],
        executor: NodeExecutor,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_time_wait: float = DEFAULT_RETRY_TIME_WAIT,
        max_retry_time_wait: float = DEFAULT_MAX_RETRY_TIME_WAIT,
        retry_jitter: float = DEFAULT_RETRY_JITTER,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        dont_randomize: bool = False,
        error_cb: Optional[ErrorCallback] = None,
    ) -> None:
        if isinstance(nodes, str):
            nodes = [nodes]
        if not nodes:
            raise NoNodesError
        self._pool: List[Node] = [Node(address) for address in nodes]
        if not dont_randomize:
            random.shuffle(self._pool)
        self._executor = executor
        self._max_attempts = max(1, max_attempts)
        self._retry_time_wait = retry_time_wait
        self._max_retry_time_wait = max_retry_time_wait
        self._retry_jitter = retry_jitter
        self._command_timeout = command_timeout
        self._error_cb = error_cb

    @property
    def nodes(self) -> List[str]:
        return [n.address for n in self._pool]

    @property
    def current(self) -> Node:
        return self._pool[0]

    @property
    def executor(self) -> NodeExecutor:
        return self._executor

    def _rotate(self) -> None:
        self._pool.append(self._pool.pop(0))

    async def run(
        self, command: Command, timeout: Optional[float] = None
    ) -> CommandOutput:
        """
        Runs a command on the current node, returning its output or raising
        SemanticRejection when it exited with a non-zero status. Transport
        errors that persist after every attempt are raised as is.
        """
        output = await self.execute(command, timeout)
        if not output.ok:
            err = SemanticRejection.from_output(command, output)
            _logger.debug(
                "command '%s' rejected by %s: %s", command, output.node,
                err.reason
            )
            raise err
        return output

    async def execute(
        self, command: Command, timeout: Optional[float] = None
    ) -> CommandOutput:
        """
        Like :meth:`run` but returns the output whatever its exit status.
        """
        if timeout is None:
            timeout = self._command_timeout
        last_err: Optional[Error] = None
        for attempt in range(self._max_attempts):
            if attempt > 0:
                delay = backoff(
                    attempt - 1,
                    self._retry_time_wait,
                    self._max_retry_time_wait,
                    self._retry_jitter,
                )
                _logger.warning(
                    "retrying '%s' on %s in %.2fs (attempt %d/%d): %s",
                    command, self.current.address, delay, attempt + 1,
                    self._max_attempts, last_err
                )
                await asyncio.sleep(delay)

            node = self.current
            node.last_attempt = time.monotonic()
            _logger.debug("running '%s' on %s", command, node.address)
            try:
                output = await self._executor.execute(
                    node.address, command, timeout
                )
            except TransportError as e:
                node.failures += 1
                node.last_error = e
                last_err = e
                if self._error_cb is not None:
                    await self._error_cb(e)
                self._rotate()
                if command.mutating and isinstance(e, CommandTimeoutError):
                    # May have taken effect already.
                    break
                continue

            node.failures = 0
            node.last_error = None
            if output.node is None:
                output.node = node.address
            return output

        assert last_err is not None
        raise last_err
