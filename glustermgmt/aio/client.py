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
import math
import time
from contextlib import asynccontextmanager, contextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from glustermgmt import errors, lifecycle, options as gm_options
from glustermgmt.aio.executor import LocalExecutor, NodeExecutor
from glustermgmt.aio.pool import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_RETRY_TIME_WAIT,
    DEFAULT_RETRY_JITTER,
    DEFAULT_RETRY_TIME_WAIT,
    NodePool,
)
from glustermgmt.aio.reconciler import Reconciler
from glustermgmt.api import (
    Brick,
    BrickSpec,
    BrickStatus,
    Change,
    Peer,
    PeerState,
    Quota,
    RebalanceState,
    RebalanceStatus,
    Snapshot,
    Transport,
    Volume,
    VolumeState,
    VolumeType,
)
from glustermgmt.protocol import command as prot_command
from glustermgmt.protocol.parser import (
    NO_QUOTA,
    parse_quota_list,
    parse_rebalance_status,
)
from glustermgmt.topology import TopologyModel

__version__ = '0.1.0'
_logger = logging.getLogger(__name__)

DEFAULT_OPERATION_TIMEOUT = 60  # in seconds
DEFAULT_PROBE_TIMEOUT = 5  # in seconds
DEFAULT_POLL_INTERVAL = 1  # in seconds

ErrorCallback = Callable[[Exception], Awaitable[None]]
ChangeCallback = Callable[[List[Change]], Awaitable[None]]
BrickArg = Union[str, BrickSpec]


async def _default_error_callback(ex: Exception) -> None:
    """
    Provides a default way to handle async errors if the user
    does not provide one.
    """
    _logger.error('glustermgmt: encountered error', exc_info=ex)


@contextmanager
def _remote_effect(operation: str) -> Iterator[None]:
    try:
        yield
    except asyncio.CancelledError:
        _logger.warning(
            "%s cancelled, the command already sent may still take effect",
            operation
        )
        raise


def check_layout(
    volume_type: VolumeType,
    bricks: Sequence[BrickSpec],
    replica_count: Optional[int] = None,
    arbiter_count: Optional[int] = None,
    disperse_count: Optional[int] = None,
    redundancy_count: Optional[int] = None,
    stripe_count: Optional[int] = None,
) -> None:
    """
    Checks that a brick list can make a volume of the given type, raising
    InvalidTopology otherwise.
    """
    if not bricks:
        raise errors.InvalidTopology("the brick list is empty")
    seen: Set[str] = set()
    for brick in bricks:
        if brick.key in seen:
            raise errors.InvalidTopology(f"brick {brick} given more than once")
        seen.add(brick.key)

    vt = volume_type.value
    if replica_count is not None and not volume_type.is_replicated:
        raise errors.InvalidTopology(f"replica count given for a {vt} volume")
    if arbiter_count and not volume_type.is_replicated:
        raise errors.InvalidTopology(f"arbiter count given for a {vt} volume")
    if (disperse_count is not None or redundancy_count is not None) \
            and not volume_type.is_dispersed:
        raise errors.InvalidTopology(f"disperse count given for a {vt} volume")
    if stripe_count is not None and not volume_type.is_striped:
        raise errors.InvalidTopology(f"stripe count given for a {vt} volume")

    n = len(bricks)
    group = 1
    if volume_type.is_replicated:
        if replica_count is None:
            raise errors.InvalidTopology(f"a {vt} volume needs a replica count")
        if replica_count < 2:
            raise errors.InvalidTopology("replica count must be at least 2")
        if volume_type == VolumeType.ARBITER and not arbiter_count:
            raise errors.InvalidTopology("an arbiter volume needs an arbiter count")
        if arbiter_count and (arbiter_count != 1 or replica_count != 3):
            raise errors.InvalidTopology("arbiter is only supported as replica 3 arbiter 1")
        group *= replica_count
    if volume_type.is_striped:
        if stripe_count is None or stripe_count < 2:
            raise errors.InvalidTopology(f"a {vt} volume needs a stripe count of at least 2")
        group *= stripe_count
    if volume_type.is_dispersed:
        disperse = disperse_count or n
        if redundancy_count is not None and not 0 < 2 * redundancy_count < disperse:
            raise errors.InvalidTopology(
                f"redundancy {redundancy_count} is invalid for disperse {disperse}"
            )
        group *= disperse
    if n % group != 0:
        raise errors.InvalidTopology(
            f"{n} bricks is not a multiple of the {group} bricks per subvolume"
        )


class RebalanceHandle:
    """
    Handle on a rebalance running on the cluster. The rebalance keeps going
    whatever happens to the handle; it is only stopped by :meth:`stop`.
    """

    def __init__(self, client: Client, volume: str) -> None:
        self._client = client
        self.volume = volume

    def __repr__(self) -> str:
        return f"<glustermgmt rebalance volume={self.volume}>"

    async def status(self) -> RebalanceStatus:
        out = await self._client._pool.run(
            prot_command.volume_rebalance_cmd(self.volume, "status")
        )
        return parse_rebalance_status(out.stdout, self.volume)

    async def wait(
        self,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> RebalanceStatus:
        """
        Polls until the rebalance reached a terminal status on every node.
        Raises OperationTimedOut after ``timeout`` seconds if one is given.
        """
        operation = f"rebalance volume {self.volume}"

        async def check() -> Tuple[Optional[RebalanceStatus], Any]:
            st = await self.status()
            agg = st.status
            if isinstance(agg, RebalanceState) and agg.is_terminal:
                return st, agg
            return None, agg

        with _remote_effect(operation):
            return await self._client._poll(
                operation,
                check,
                math.inf if timeout is None else timeout,
                poll_interval,
            )

    async def stop(self) -> RebalanceStatus:
        await self._client._pool.run(
            prot_command.volume_rebalance_cmd(self.volume, "stop")
        )
        return await self.status()


class Client:
    """
    Asyncio based client for managing a GlusterFS cluster.
    """

    def __repr__(self) -> str:
        return f"<glustermgmt client v{__version__}>"

    def __init__(self) -> None:
        self._pool: Optional[NodePool] = None
        self._executor: Optional[NodeExecutor] = None
        self._topology = TopologyModel(listener=self._on_changes)
        self._reconciler: Optional[Reconciler] = None

        # One lock per volume name, serializing the operations on it. A
        # lock is dropped once no operation holds or awaits it.
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

        # callbacks
        self._error_cb: ErrorCallback = _default_error_callback
        self._change_cb: Optional[ChangeCallback] = None
        self._pending_cbs: Set[asyncio.Task] = set()

        self.options: Dict[str, Any] = {}

    async def connect(
        self,
        nodes: Union[str, List[str]] = ["localhost"],
        executor: Optional[NodeExecutor] = None,
        error_cb: Optional[ErrorCallback] = None,
        change_cb: Optional[ChangeCallback] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_time_wait: float = DEFAULT_RETRY_TIME_WAIT,
        max_retry_time_wait: float = DEFAULT_MAX_RETRY_TIME_WAIT,
        retry_jitter: float = DEFAULT_RETRY_JITTER,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        dont_randomize: bool = False,
        refresh: bool = True,
    ) -> None:
        """
        Sets up the pool of nodes commands are sent to and, unless
        ``refresh`` is False, fetches the cluster topology.

        :param nodes: Addresses of the cluster nodes to send commands to.
        :param executor: How commands reach a node, runs the gluster CLI locally by default.
        :param error_cb: Callback to report errors, such as failed attempts on a node.
        :param change_cb: Callback receiving the changes of every topology update.
        :param operation_timeout: Max duration to wait for the cluster to confirm an operation.
        :param probe_timeout: Max duration to wait for a probed peer to connect.

        ::

            import asyncio
            import glustermgmt

            async def main():
                gm = await glustermgmt.connect(["10.0.0.1", "10.0.0.2"])
                await gm.probe_peer("10.0.0.3")
                await gm.create_volume(
                    "v1", "replicate",
                    ["10.0.0.1:/bricks/b1", "10.0.0.2:/bricks/b1"],
                    replica_count=2,
                    start=True,
                )
                await gm.close()

            if __name__ == '__main__':
                asyncio.run(main())

        """
        for cb in [error_cb, change_cb]:
            if cb and not asyncio.iscoroutinefunction(cb):
                raise errors.InvalidCallbackTypeError

        self._error_cb = error_cb or _default_error_callback
        self._change_cb = change_cb

        # Customizable options
        self.options["max_attempts"] = max_attempts
        self.options["retry_time_wait"] = retry_time_wait
        self.options["max_retry_time_wait"] = max_retry_time_wait
        self.options["retry_jitter"] = retry_jitter
        self.options["command_timeout"] = command_timeout
        self.options["operation_timeout"] = operation_timeout
        self.options["probe_timeout"] = probe_timeout
        self.options["poll_interval"] = poll_interval
        self.options["dont_randomize"] = dont_randomize

        self._executor = executor or LocalExecutor()
        self._pool = NodePool(
            nodes,
            self._executor,
            max_attempts=max_attempts,
            retry_time_wait=retry_time_wait,
            max_retry_time_wait=max_retry_time_wait,
            retry_jitter=retry_jitter,
            command_timeout=command_timeout,
            dont_randomize=dont_randomize,
            error_cb=self._error_cb,
        )
        self._reconciler = Reconciler(self._pool, self._topology)
        if refresh:
            await self.refresh()

    async def close(self) -> None:
        if self._pending_cbs:
            await asyncio.gather(*self._pending_cbs, return_exceptions=True)
        if self._executor is not None:
            await self._executor.close()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def nodes(self) -> List[str]:
        assert self._pool, "Client.connect must be called first"
        return self._pool.nodes

    def topology(self) -> Snapshot:
        return self._topology.current()

    def peers(self) -> List[Peer]:
        return sorted(self.topology().peers.values(), key=lambda p: p.key)

    def volumes(self) -> List[Volume]:
        return sorted(self.topology().volumes.values(), key=lambda v: v.name)

    async def refresh(self) -> List[Change]:
        """
        Fetches the whole topology of the cluster and merges it.
        """
        assert self._reconciler, "Client.connect must be called first"
        return await self._reconciler.refresh()

    def _on_changes(self, changes: List[Change]) -> None:
        if self._change_cb is None:
            return
        task = asyncio.get_running_loop().create_task(
            self._dispatch_changes(changes)
        )
        self._pending_cbs.add(task)
        task.add_done_callback(self._pending_cbs.discard)

    async def _dispatch_changes(self, changes: List[Change]) -> None:
        assert self._change_cb
        try:
            await self._change_cb(changes)
        except Exception as e:
            await self._error_cb(e)

    @asynccontextmanager
    async def _volume_lock(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]

    async def _poll(
        self,
        operation: str,
        check: Callable[[], Awaitable[Tuple[Any, Any]]],
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> Any:
        """
        Calls ``check`` until it returns a result other than None, sleeping
        ``poll_interval`` in between. ``check`` returns the result together
        with the last state it observed, attached to OperationTimedOut when
        the ``timeout`` budget is exhausted.

        A check still running when the budget runs out is cancelled. A check
        failing with a transport error, once the node pool gave up on it,
        counts as one more poll without news.
        """
        if timeout is None:
            timeout = self.options["operation_timeout"]
        if interval is None:
            interval = self.options["poll_interval"]
        deadline = time.monotonic() + timeout
        last_state: Any = None
        last_err: Optional[errors.TransportError] = None
        while True:
            left = deadline - time.monotonic()
            if left <= 0:
                raise errors.OperationTimedOut(operation, last_state) from last_err
            try:
                result, last_state = await asyncio.wait_for(
                    check(), None if math.isinf(left) else left
                )
            except asyncio.TimeoutError:
                raise errors.OperationTimedOut(operation, last_state) from last_err
            except errors.TransportError as e:
                _logger.warning("%s: %s", operation, e)
                last_err = e
            else:
                if result is not None:
                    return result
            left = deadline - time.monotonic()
            if left <= 0:
                raise errors.OperationTimedOut(operation, last_state) from last_err
            await asyncio.sleep(min(interval, left))

    async def _wait_for_state(
        self,
        name: str,
        target: VolumeState,
        operation: str,
        wait_bricks: bool = False,
    ) -> Volume:
        assert self._reconciler

        async def check() -> Tuple[Optional[Volume], Any]:
            vol = await self._reconciler.refresh_volume(name)
            if vol is None:
                return None, None
            if vol.state != target:
                return None, vol.state
            if wait_bricks:
                bricks = self.topology().volume_bricks(name)
                if any(b.status != BrickStatus.ONLINE for b in bricks):
                    return None, vol.state
            return vol, vol.state

        return await self._poll(operation, check)

    async def _fetch_state(self, name: str) -> Optional[lifecycle.State]:
        assert self._reconciler
        vol = await self._reconciler.refresh_volume(name)
        return vol.state if vol is not None else None

    def _check_conflicts(self, name: str, bricks: Sequence[BrickSpec]) -> None:
        snap = self.topology()
        for brick in bricks:
            owner = snap.brick_owner(brick.key)
            if owner is not None and owner != name:
                raise errors.BrickConflict(brick.key, owner)
            if snap.peer_by_address(brick.peer) is None:
                _logger.warning(
                    "brick %s is on %s, which is not a known peer",
                    brick.key, brick.peer
                )

    async def probe_peer(self, address: str) -> Peer:
        """
        Adds a node to the cluster and waits until it reports connected.
        The peer only enters the topology once it is connected.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        known = self.topology().peer_by_address(address)
        if known is not None and known.state == PeerState.CONNECTED:
            return known
        await self._reconciler.refresh_peers()
        known = self.topology().peer_by_address(address)
        if known is not None and known.state == PeerState.CONNECTED:
            return known

        operation = f"probe {address}"
        _logger.debug("probing peer %s", address)
        await self._pool.run(prot_command.peer_probe_cmd(address))

        async def check() -> Tuple[Optional[Peer], Any]:
            assert self._reconciler
            peers = await self._reconciler.fetch_peers()
            snap = Snapshot(peers={p.key: p for p in peers})
            peer = snap.peer_by_address(address)
            if peer is None:
                return None, None
            if peer.state != PeerState.CONNECTED:
                return None, peer.state
            self._reconciler.merge_peers(peers)
            return peer, peer.state

        with _remote_effect(operation):
            try:
                return await self._poll(
                    operation, check, self.options["probe_timeout"]
                )
            except errors.OperationTimedOut as e:
                raise errors.ProbeTimeout(address, e.last_state) from e

    async def detach_peer(self, address: str, force: bool = False) -> None:
        """
        Removes a node from the cluster. Refused while bricks of a known
        volume live on it, unless forced.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        await self.refresh()
        snap = self.topology()
        peer = snap.peer_by_address(address)
        if peer is None:
            raise errors.InvalidTopology(f"{address} is not a peer of the cluster")
        names = {peer.uuid, peer.address} | set(peer.aliases)
        used = sorted(
            b.key for b in snap.bricks.values()
            if b.peer in names and b.volume is not None
        )
        if used and not force:
            raise errors.InvalidTopology(
                f"peer {address} still hosts bricks: {', '.join(used)}"
            )

        operation = f"detach {address}"
        await self._pool.run(prot_command.peer_detach_cmd(address, force))

        async def check() -> Tuple[Optional[bool], Any]:
            assert self._reconciler
            peers = await self._reconciler.fetch_peers()
            for p in peers:
                if p.key == peer.key:
                    return None, p.state
            return True, None

        with _remote_effect(operation):
            await self._poll(operation, check)
        self._reconciler.remove_peer(peer.key)

    async def create_volume(
        self,
        name: str,
        volume_type: Union[str, VolumeType],
        bricks: Sequence[BrickArg],
        options: Optional[Mapping[str, str]] = None,
        *,
        replica_count: Optional[int] = None,
        arbiter_count: Optional[int] = None,
        disperse_count: Optional[int] = None,
        redundancy_count: Optional[int] = None,
        stripe_count: Optional[int] = None,
        transport: Union[str, Transport] = Transport.TCP,
        force: bool = False,
        start: bool = False,
    ) -> Volume:
        """
        Creates a volume, sets its options and optionally starts it.

        The layout is checked before anything is sent to the cluster. Brick
        conflicts are checked against a fresh fetch, since the topology held
        may be stale. Nothing is rolled back when a step after the creation
        fails: PartialFailure tells which steps were completed.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        vtype = VolumeType.from_token(volume_type) \
            if isinstance(volume_type, str) else volume_type
        vtransport = Transport.from_token(transport) \
            if isinstance(transport, str) else transport
        if not isinstance(vtype, VolumeType):
            raise errors.InvalidTopology(f"unknown volume type '{volume_type}'")
        if not isinstance(vtransport, Transport):
            raise errors.InvalidTopology(f"unknown transport '{transport}'")
        specs = [BrickSpec.parse(b) for b in bricks]
        check_layout(
            vtype,
            specs,
            replica_count=replica_count,
            arbiter_count=arbiter_count,
            disperse_count=disperse_count,
            redundancy_count=redundancy_count,
            stripe_count=stripe_count,
        )
        opts = gm_options.check_options(options or {})

        async with self._volume_lock(name):
            try:
                self._check_conflicts(name, specs)
            except errors.BrickConflict as e:
                _logger.debug("%s, checking against the cluster", e)

            await self.refresh()
            self._check_conflicts(name, specs)
            existing = self.topology().volumes.get(name)
            if existing is not None and existing.state != VolumeState.UNKNOWN:
                raise errors.InvalidTransition(name, existing.state, "create")

            operation = f"create volume {name}"
            await self._pool.run(
                prot_command.volume_create_cmd(
                    name,
                    specs,
                    volume_type=vtype,
                    replica_count=replica_count,
                    arbiter_count=arbiter_count,
                    disperse_count=disperse_count,
                    redundancy_count=redundancy_count,
                    stripe_count=stripe_count,
                    transport=vtransport,
                    force=force,
                )
            )
            completed = ["create"]
            step = "create"
            with _remote_effect(operation):
                try:
                    for cmd in prot_command.volume_set_all_cmd(name, opts):
                        step = f"set {cmd.args[3]}"
                        await self._pool.run(cmd)
                        completed.append(step)
                    target = VolumeState.CREATED
                    if start:
                        step = "start"
                        await self._pool.run(prot_command.volume_start_cmd(name))
                        completed.append(step)
                        target = VolumeState.STARTED
                    step = "confirm"
                    return await self._wait_for_state(
                        name, target, operation, wait_bricks=start
                    )
                except errors.Error as e:
                    raise errors.PartialFailure(
                        operation, completed, step, e
                    ) from e

    async def start_volume(
        self, name: str, force: bool = False, wait_bricks: bool = True
    ) -> Volume:
        """
        Starts a volume and waits until the cluster reports it started and,
        with ``wait_bricks``, every brick online.
        """
        assert self._pool, "Client.connect must be called first"
        async with self._volume_lock(name):
            state = await self._fetch_state(name)
            lifecycle.check_transition(name, state, lifecycle.START, force)
            operation = f"start volume {name}"
            with _remote_effect(operation):
                await self._pool.run(prot_command.volume_start_cmd(name, force))
                return await self._wait_for_state(
                    name, VolumeState.STARTED, operation, wait_bricks
                )

    async def stop_volume(self, name: str, force: bool = False) -> Volume:
        assert self._pool, "Client.connect must be called first"
        async with self._volume_lock(name):
            state = await self._fetch_state(name)
            lifecycle.check_transition(name, state, lifecycle.STOP, force)
            operation = f"stop volume {name}"
            with _remote_effect(operation):
                await self._pool.run(prot_command.volume_stop_cmd(name, force))
                return await self._wait_for_state(
                    name, VolumeState.STOPPED, operation
                )

    async def delete_volume(self, name: str) -> None:
        """
        Deletes a created or stopped volume. The volume shows as deleting
        until the cluster no longer reports it, then it is removed from the
        topology. When the delete fails its state is unknown until fetched
        again.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        async with self._volume_lock(name):
            state = await self._fetch_state(name)
            lifecycle.check_transition(name, state, lifecycle.DELETE)
            operation = f"delete volume {name}"

            async def check() -> Tuple[Optional[bool], Any]:
                assert self._reconciler
                vol = await self._reconciler.refresh_volume(name)
                if vol is None:
                    return True, None
                return None, vol.state

            self._topology.begin(name, VolumeState.DELETING)
            try:
                with _remote_effect(operation):
                    await self._pool.run(prot_command.volume_delete_cmd(name))
                    await self._poll(operation, check)
                    self._reconciler.remove_volume(name)
            except asyncio.CancelledError:
                self._reconciler.mark_unknown(name)
                raise
            except errors.Error:
                self._reconciler.mark_unknown(name)
                self._topology.end(name)
                try:
                    await self._reconciler.refresh_volume(name)
                except errors.Error as e:
                    await self._error_cb(e)
                raise
            finally:
                self._topology.end(name)

    async def rebalance_volume(
        self, name: str, fix_layout: bool = False, force: bool = False
    ) -> RebalanceHandle:
        """
        Starts a rebalance of a started volume and returns right away. The
        returned handle is used to follow it.
        """
        assert self._pool, "Client.connect must be called first"
        async with self._volume_lock(name):
            state = await self._fetch_state(name)
            lifecycle.check_transition(name, state, lifecycle.REBALANCE)
            await self._pool.run(
                prot_command.volume_rebalance_cmd(
                    name, "start", fix_layout=fix_layout, force=force
                )
            )
        return RebalanceHandle(self, name)

    async def set_volume_options(
        self, name: str, options: Mapping[str, str]
    ) -> Volume:
        """
        Sets volume options, one command each. Stops at the first option
        the cluster refuses.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        opts = gm_options.check_options(options)
        async with self._volume_lock(name):
            state = await self._fetch_state(name)
            lifecycle.check_transition(name, state, lifecycle.SET_OPTIONS)
            completed: List[str] = []
            for cmd in prot_command.volume_set_all_cmd(name, opts):
                step = f"set {cmd.args[3]}"
                try:
                    await self._pool.run(cmd)
                except errors.Error as e:
                    if not completed:
                        raise
                    raise errors.PartialFailure(
                        f"set options of volume {name}", completed, step, e
                    ) from e
                completed.append(step)
            vol = await self._reconciler.refresh_volume(name)
            if vol is None:
                raise errors.SemanticRejection(f"Volume {name} does not exist")
            return vol

    async def add_bricks(
        self,
        name: str,
        bricks: Sequence[BrickArg],
        replica_count: Optional[int] = None,
        force: bool = False,
    ) -> Volume:
        assert self._pool and self._reconciler, "Client.connect must be called first"
        specs = [BrickSpec.parse(b) for b in bricks]
        if not specs:
            raise errors.InvalidTopology("the brick list is empty")
        async with self._volume_lock(name):
            await self.refresh()
            vol = self.topology().volumes.get(name)
            lifecycle.check_transition(
                name, vol.state if vol else None, lifecycle.ADD_BRICKS
            )
            assert vol is not None
            self._check_conflicts(name, specs)
            already = set(vol.bricks).intersection(b.key for b in specs)
            if already:
                raise errors.BrickConflict(sorted(already)[0], name)
            self._check_expansion(vol, specs, replica_count)

            await self._pool.run(
                prot_command.volume_add_brick_cmd(
                    name, specs, replica_count=replica_count, force=force
                )
            )
            wanted = {b.key for b in specs}

            async def check() -> Tuple[Optional[Volume], Any]:
                assert self._reconciler
                fresh = await self._reconciler.refresh_volume(name)
                if fresh is None:
                    return None, None
                if not wanted.issubset(fresh.bricks):
                    return None, fresh.state
                return fresh, fresh.state

            with _remote_effect(f"add bricks to volume {name}"):
                return await self._poll(f"add bricks to volume {name}", check)

    def _check_expansion(
        self,
        vol: Volume,
        specs: Sequence[BrickSpec],
        replica_count: Optional[int],
    ) -> None:
        n = len(specs)
        if replica_count is not None:
            # Raising the replica count adds one brick per subvolume.
            if replica_count <= vol.replica_count:
                raise errors.InvalidTopology(
                    f"replica count {replica_count} does not grow {vol.replica_count}"
                )
            subvolumes = len(vol.bricks) // max(vol.replica_count, 1)
            if n != subvolumes * (replica_count - vol.replica_count):
                raise errors.InvalidTopology(
                    f"{n} bricks do not raise {subvolumes} subvolumes to replica {replica_count}"
                )
            return
        group = max(vol.replica_count, 1) * max(vol.stripe_count, 1)
        if vol.disperse_count:
            group = vol.disperse_count
        if n % group != 0:
            raise errors.InvalidTopology(
                f"{n} bricks is not a multiple of the {group} bricks per subvolume"
            )

    async def remove_bricks(
        self,
        name: str,
        bricks: Sequence[BrickArg],
        force: bool = True,
    ) -> Volume:
        """
        Removes bricks from a volume. Forced removal drops them right away.
        Otherwise their data is first migrated to the remaining bricks, then
        the removal is committed.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        specs = [BrickSpec.parse(b) for b in bricks]
        if not specs:
            raise errors.InvalidTopology("the brick list is empty")
        async with self._volume_lock(name):
            vol = await self._reconciler.refresh_volume(name)
            lifecycle.check_transition(
                name, vol.state if vol else None, lifecycle.REMOVE_BRICKS
            )
            assert vol is not None
            keys = [b.key for b in specs]
            for key in keys:
                if key not in vol.bricks:
                    raise errors.InvalidTopology(
                        f"brick {key} is not part of volume '{name}'"
                    )
            remaining = len(vol.bricks) - len(set(keys))
            if remaining <= 0:
                raise errors.InvalidTopology(
                    f"cannot remove every brick of volume '{name}'"
                )
            group = vol.disperse_count or vol.replica_count * vol.stripe_count
            if remaining % max(group, 1) != 0:
                raise errors.InvalidTopology(
                    f"{remaining} bricks left is not a multiple of the {group} bricks per subvolume"
                )

            operation = f"remove bricks from volume {name}"
            with _remote_effect(operation):
                if force:
                    await self._pool.run(
                        prot_command.volume_remove_brick_cmd(name, specs, "force")
                    )
                else:
                    await self._migrate_and_commit(name, specs, operation)

                gone = set(keys)

                async def check() -> Tuple[Optional[Volume], Any]:
                    assert self._reconciler
                    fresh = await self._reconciler.refresh_volume(name)
                    if fresh is None:
                        return None, None
                    if gone.intersection(fresh.bricks):
                        return None, fresh.state
                    return fresh, fresh.state

                return await self._poll(operation, check)

    async def _migrate_and_commit(
        self, name: str, specs: Sequence[BrickSpec], operation: str
    ) -> None:
        assert self._pool
        await self._pool.run(prot_command.volume_remove_brick_cmd(name, specs, "start"))
        completed = ["start"]
        step = "migrate"

        async def check() -> Tuple[Optional[RebalanceStatus], Any]:
            assert self._pool
            out = await self._pool.run(
                prot_command.volume_remove_brick_cmd(name, specs, "status")
            )
            st = parse_rebalance_status(out.stdout, name)
            if st.status == RebalanceState.COMPLETED:
                return st, st.status
            if st.status in (RebalanceState.FAILED, RebalanceState.STOPPED):
                raise errors.SemanticRejection(
                    f"data migration {st.status.value}", None
                )
            return None, st.status

        try:
            await self._poll(operation, check)
            completed.append(step)
            step = "commit"
            await self._pool.run(
                prot_command.volume_remove_brick_cmd(name, specs, "commit")
            )
        except errors.Error as e:
            raise errors.PartialFailure(operation, completed, step, e) from e

    async def volume_status(self, name: str) -> Tuple[Volume, List[Brick]]:
        """
        Fetches a volume with the health and disk usage of its bricks.
        """
        assert self._reconciler, "Client.connect must be called first"
        vol = await self._reconciler.refresh_volume(name, detail=True)
        if vol is None:
            raise errors.SemanticRejection(f"Volume {name} does not exist")
        return vol, self.topology().volume_bricks(name)

    async def quota_list(self, name: str) -> List[Quota]:
        assert self._pool, "Client.connect must be called first"
        cmd = prot_command.volume_quota_list_cmd(name)
        out = await self._pool.execute(cmd)
        if NO_QUOTA in out.stdout or NO_QUOTA in out.stderr:
            return []
        if not out.ok:
            raise errors.SemanticRejection.from_output(cmd, out)
        return parse_quota_list(out.stdout)

    async def quota_usage(self, name: str, path: str = "/") -> Optional[int]:
        """
        Bytes used under a directory with a quota limit, None when the
        directory has no limit.
        """
        for quota in await self.quota_list(name):
            if quota.path == path:
                return quota.used
        return None

    async def quota_enabled(self, name: str) -> bool:
        assert self._reconciler, "Client.connect must be called first"
        vol = await self._reconciler.refresh_volume(name)
        if vol is None:
            raise errors.SemanticRejection(f"Volume {name} does not exist")
        return gm_options.is_enabled(
            gm_options.QUOTA_OPTION, vol.options.get(gm_options.QUOTA_OPTION)
        )

    async def _manage(
        self,
        name: str,
        operation: str,
        command: prot_command.Command,
        done: Optional[Callable[[Volume], bool]] = None,
    ) -> Volume:
        """
        Runs a quota or bitrot command on a started volume, unless ``done``
        tells the volume is already as wanted, then fetches the volume again.
        """
        assert self._pool and self._reconciler, "Client.connect must be called first"
        async with self._volume_lock(name):
            vol = await self._reconciler.refresh_volume(name)
            lifecycle.check_transition(
                name, vol.state if vol else None, operation
            )
            assert vol is not None
            if done is not None and done(vol):
                _logger.debug("'%s' has nothing to do on volume '%s'", command, name)
                return vol
            await self._pool.run(command)
            fresh = await self._reconciler.refresh_volume(name)
            if fresh is None:
                raise errors.SemanticRejection(f"Volume {name} does not exist")
            return fresh

    @staticmethod
    def _toggled(option: str, on: bool) -> Callable[[Volume], bool]:

        def done(vol: Volume) -> bool:
            return gm_options.is_enabled(option, vol.options.get(option)) == on

        return done

    async def enable_quota(self, name: str) -> Volume:
        return await self._manage(
            name,
            lifecycle.QUOTA,
            prot_command.volume_quota_cmd(name, "enable"),
            self._toggled(gm_options.QUOTA_OPTION, True),
        )

    async def disable_quota(self, name: str) -> Volume:
        return await self._manage(
            name,
            lifecycle.QUOTA,
            prot_command.volume_quota_cmd(name, "disable"),
            self._toggled(gm_options.QUOTA_OPTION, False),
        )

    async def set_quota_limit(
        self, name: str, path: str, size: Union[int, str]
    ) -> Volume:
        """
        Limits the space used under ``path``, in bytes or with a unit as in
        ``10GB``. Quota has to be enabled on the volume first.
        """
        if not path.startswith("/"):
            raise errors.InvalidOption("quota path", path, "expected an absolute path")
        limit = gm_options.check_size("quota limit", size)
        return await self._manage(
            name,
            lifecycle.QUOTA,
            prot_command.volume_quota_cmd(name, "limit-usage", path, limit),
        )

    async def remove_quota(self, name: str, path: str) -> Volume:
        if not path.startswith("/"):
            raise errors.InvalidOption("quota path", path, "expected an absolute path")
        return await self._manage(
            name,
            lifecycle.QUOTA,
            prot_command.volume_quota_cmd(name, "remove", path),
        )

    async def enable_bitrot(self, name: str) -> Volume:
        return await self._manage(
            name,
            lifecycle.BITROT,
            prot_command.volume_bitrot_cmd(name, "enable"),
            self._toggled(gm_options.BITROT_OPTION, True),
        )

    async def disable_bitrot(self, name: str) -> Volume:
        return await self._manage(
            name,
            lifecycle.BITROT,
            prot_command.volume_bitrot_cmd(name, "disable"),
            self._toggled(gm_options.BITROT_OPTION, False),
        )

    async def set_bitrot_option(self, name: str, option: str, value: str) -> Volume:
        """
        Tunes the bitrot scrubber. ``option`` is one of
        :data:`glustermgmt.options.BITROT_OPTIONS`, the ``scrub`` option
        controls the scrubber itself, as in ``scrub ondemand``.
        """
        checked = gm_options.check_bitrot_option(option, value)
        return await self._manage(
            name,
            lifecycle.BITROT,
            prot_command.volume_bitrot_cmd(name, option, checked),
        )
