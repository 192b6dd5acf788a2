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

from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from glustermgmt.aio.executor import CommandOutput
    from glustermgmt.protocol.command import Command

# Exit codes follow sysexits(3) where one fits.
EX_OK = 0
EX_REJECTED = 1
EX_USAGE = 64
EX_DATAERR = 65
EX_UNAVAILABLE = 69
EX_TEMPFAIL = 75
EX_TIMEOUT = 124


class Error(Exception):
    """
    Base class of every error raised by glustermgmt.
    """
    exit_code: int = EX_REJECTED


class TransportError(Error):
    """
    The command could not be delivered to a node or its output could not be
    read back. Transport errors are retried by the node pool.
    """
    exit_code = EX_UNAVAILABLE

    def __init__(
        self, node: Optional[str] = None, description: Optional[str] = None
    ) -> None:
        self.node = node
        self.description = description
        super().__init__(node, description)

    def __str__(self) -> str:
        desc = f": {self.description}" if self.description else ''
        return f"glustermgmt: transport error on {self.node}{desc}"


class CommandTimeoutError(TransportError):

    def __str__(self) -> str:
        return f"glustermgmt: command timed out on {self.node}"


class NodeUnreachableError(TransportError):

    def __str__(self) -> str:
        desc = f": {self.description}" if self.description else ''
        return f"glustermgmt: node {self.node} unreachable{desc}"


class NoNodesError(Error):
    exit_code = EX_UNAVAILABLE

    def __str__(self) -> str:
        return "glustermgmt: no nodes available"


class ParseError(Error):
    """
    Output of a node did not match the expected grammar. Indicates format
    drift between this client and the cluster, never retried.
    """
    exit_code = EX_DATAERR

    def __init__(self, kind: str, fragment: Any) -> None:
        self.kind = kind
        self.fragment = fragment
        super().__init__(kind, fragment)

    def __str__(self) -> str:
        return f"glustermgmt: cannot parse {self.kind}: {self.fragment!r}"


class SemanticRejection(Error):
    """
    The cluster refused the request. The reason is the verbatim message
    reported by the management daemon.
    """

    def __init__(
        self,
        reason: str,
        returncode: Optional[int] = None,
        command: Optional[Command] = None,
    ) -> None:
        self.reason = reason
        self.returncode = returncode
        self.command = command
        super().__init__(reason, returncode)

    def __str__(self) -> str:
        return f"glustermgmt: {type(self).__name__}: {self.reason}"

    @classmethod
    def from_output(
        cls,
        command: Command,
        output: CommandOutput,
    ) -> SemanticRejection:
        # Imported here since the parser raises errors from this module.
        from glustermgmt.protocol.parser import parse_rejection

        reason = parse_rejection(output.stderr or output.stdout)
        if command.kind == "volume.create":
            return ClusterRejected(reason, output.exit_code, command)
        if command.kind == "peer.probe":
            return PeerUnreachable(reason, output.exit_code, command)
        return cls(reason, output.exit_code, command)


class ClusterRejected(SemanticRejection):
    pass


class PeerUnreachable(SemanticRejection):
    pass


class InvalidTransition(Error):
    """
    A lifecycle operation is not allowed from the volume's current state.
    Raised before contacting the cluster.
    """
    exit_code = EX_USAGE

    def __init__(self, volume: str, state: Any, operation: str) -> None:
        self.volume = volume
        self.state = state
        self.operation = operation
        super().__init__(volume, state, operation)

    def __str__(self) -> str:
        return (
            f"glustermgmt: cannot {self.operation} volume "
            f"'{self.volume}' in state {self.state}"
        )


class InvalidTopology(Error):
    exit_code = EX_USAGE

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)

    def __str__(self) -> str:
        return f"glustermgmt: invalid topology: {self.reason}"


class InvalidOption(Error):
    exit_code = EX_USAGE

    def __init__(self, option: str, value: Any, reason: str) -> None:
        self.option = option
        self.value = value
        self.reason = reason
        super().__init__(option, value, reason)

    def __str__(self) -> str:
        return (
            f"glustermgmt: invalid value '{self.value}' for "
            f"{self.option}: {self.reason}"
        )


class BrickConflict(Error):
    exit_code = EX_USAGE

    def __init__(self, brick: str, volume: str) -> None:
        self.brick = brick
        self.volume = volume
        super().__init__(brick, volume)

    def __str__(self) -> str:
        return (
            f"glustermgmt: brick {self.brick} already belongs to "
            f"volume '{self.volume}'"
        )


class PartialFailure(Error):
    """
    A multi-step operation stopped partway. Nothing was rolled back: the
    cluster is left after the last completed step.
    """
    exit_code = EX_TEMPFAIL

    def __init__(
        self,
        operation: str,
        completed_steps: Sequence[str],
        failed_step: str,
        cause: BaseException,
    ) -> None:
        self.operation = operation
        self.completed_steps: List[str] = list(completed_steps)
        self.failed_step = failed_step
        self.cause = cause
        super().__init__(operation, self.completed_steps, failed_step, cause)

    def __str__(self) -> str:
        done = ', '.join(self.completed_steps) or 'none'
        return (
            f"glustermgmt: {self.operation} failed at step "
            f"'{self.failed_step}' (completed: {done}): {self.cause}"
        )


class OperationTimedOut(Error):
    """
    The poll budget of an operation was exceeded before the cluster confirmed
    the expected state. ``last_state`` is the last state observed.
    """
    exit_code = EX_TIMEOUT

    def __init__(self, operation: str, last_state: Any = None) -> None:
        self.operation = operation
        self.last_state = last_state
        super().__init__(operation, last_state)

    def __str__(self) -> str:
        return (
            f"glustermgmt: {self.operation} timed out, "
            f"last known state: {self.last_state}"
        )


class ProbeTimeout(OperationTimedOut):

    def __init__(self, address: str, last_state: Any = None) -> None:
        self.address = address
        super().__init__(f"probe {address}", last_state)


class InvalidCallbackTypeError(Error):
    exit_code = EX_USAGE

    def __str__(self) -> str:
        return "glustermgmt: callbacks must be coroutine functions"
