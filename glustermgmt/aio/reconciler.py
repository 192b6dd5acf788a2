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

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, Set, Tuple

from glustermgmt.aio.pool import NodePool
from glustermgmt.api import (
    Brick,
    Change,
    Delta,
    Peer,
    PeerState,
    Tombstone,
    Volume,
    VolumeState,
)
from glustermgmt.errors import SemanticRejection
from glustermgmt.protocol import command as prot_command
from glustermgmt.protocol.parser import (
    NOT_EXIST_RE,
    NOT_STARTED_RE,
    parse_pool_list,
    parse_rejection,
    parse_volume_info,
    parse_volume_status,
    parse_volume_status_detail,
)
from glustermgmt.topology import BRICK, PEER, VOLUME, TopologyModel

_logger = logging.getLogger(__name__)

LOCALHOST = "localhost"


def merge_brick_status(info: Iterable[Brick],
                       status: Iterable[Brick]) -> List[Brick]:
    """
    Combines the bricks listed by ``volume info`` with the health reported
    by ``volume status``, giving one record per brick.
    """
    by_key = {b.key: b for b in status}
    merged = []
    for brick in info:
        st = by_key.pop(brick.key, None)
        if st is None:
            merged.append(brick)
            continue
        merged.append(
            brick.evolve(
                status=st.status,
                tcp_port=st.tcp_port,
                rdma_port=st.rdma_port,
                pid=st.pid,
                size_total=st.size_total
                if st.size_total is not None else brick.size_total,
                size_free=st.size_free
                if st.size_free is not None else brick.size_free,
            )
        )
    merged.extend(by_key.values())
    return merged


class Reconciler:
    """
    Reconciler fetches the cluster state through the node pool and merges
    it into the topology model. Volumes that a fetch no longer reports are
    marked unknown, never removed: only a confirmed delete removes them.

    Tombstones are kept until no fetch that started before the removal is
    still running, then forgotten on the next full refresh.
    """

    def __init__(
        self,
        pool: NodePool,
        model: TopologyModel,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._pool = pool
        self._model = model
        self._clock = clock
        self._last = 0.0
        self._inflight: Set[float] = set()

    def now(self) -> float:
        # Strictly increasing so later fetches always win.
        now = max(self._clock(), self._last + 1e-6)
        self._last = now
        return now

    @contextmanager
    def _fetching(self) -> Iterator[None]:
        mark = self.now()
        self._inflight.add(mark)
        try:
            yield
        finally:
            self._inflight.discard(mark)

    def prune(self) -> int:
        """
        Drops the tombstones older than every fetch still running.
        """
        horizon = min(self._inflight, default=self.now())
        pruned = self._model.prune(horizon)
        if pruned:
            _logger.debug("forgot %d tombstones older than %f", pruned, horizon)
        return pruned

    async def fetch_peers(self) -> List[Peer]:
        with self._fetching():
            out = await self._pool.run(prot_command.pool_list_cmd())
        peers = []
        for peer in parse_pool_list(out.stdout, self.now()):
            if peer.address == LOCALHOST and out.node:
                peer = peer.evolve(
                    address=out.node, aliases=peer.aliases + (LOCALHOST, )
                )
            peers.append(peer)
        return peers

    def _missing_peers(self, peers: List[Peer], fetched_at: float) -> List[Peer]:
        seen = {p.key for p in peers}
        return [
            p.evolve(state=PeerState.UNKNOWN, fetched_at=fetched_at)
            for key, p in self._model.current().peers.items()
            if key not in seen and p.state != PeerState.UNKNOWN
        ]

    async def refresh_peers(self) -> List[Change]:
        peers = await self.fetch_peers()
        fetched_at = self.now()
        missing = self._missing_peers(peers, fetched_at)
        return self._model.apply(
            Delta(peers=tuple(peers) + tuple(missing), fetched_at=fetched_at)
        )

    async def _fetch_status(self, name: str, detail: bool = False) -> List[Brick]:
        out = await self._pool.execute(
            prot_command.volume_status_cmd(name, detail=detail)
        )
        if not out.ok:
            reason = parse_rejection(out.stderr or out.stdout)
            if NOT_STARTED_RE.search(reason):
                return []
            raise SemanticRejection.from_output(
                prot_command.volume_status_cmd(name, detail=detail), out
            )
        if detail:
            return parse_volume_status_detail(out.stdout, self.now(), name)
        return parse_volume_status(out.stdout, self.now(), name)

    def _stale_bricks(self, volume: Volume, fetched_at: float) -> List[Tombstone]:
        """
        Bricks the model still assigns to the volume but the cluster no
        longer lists for it.
        """
        current = set(volume.bricks)
        return [
            Tombstone(BRICK, key, fetched_at)
            for key, brick in self._model.current().bricks.items()
            if brick.volume == volume.name and key not in current
        ]

    async def refresh(self) -> List[Change]:
        """
        Fetches peers, every volume and the brick health of the started
        ones, then merges all of it as one write.
        """
        self.prune()
        with self._fetching():
            peers = await self.fetch_peers()
            out = await self._pool.run(prot_command.volume_info_cmd())
            volumes, bricks = parse_volume_info(out.stdout, self.now())

            status: List[Brick] = []
            for vol in volumes:
                if vol.state == VolumeState.STARTED:
                    status.extend(await self._fetch_status(vol.name))
        bricks = merge_brick_status(bricks, status)

        fetched_at = self.now()
        snap = self._model.current()
        seen = {v.name for v in volumes}
        missing = [
            v.evolve(state=VolumeState.UNKNOWN, fetched_at=fetched_at)
            for name, v in snap.volumes.items()
            if name not in seen and v.state != VolumeState.UNKNOWN
        ]
        for vol in missing:
            _logger.warning(
                "volume '%s' not reported by the cluster, marking unknown",
                vol.name
            )
        removed: List[Tombstone] = []
        for vol in volumes:
            removed.extend(self._stale_bricks(vol, fetched_at))

        changes = self._model.apply(
            Delta(
                peers=tuple(peers) + tuple(self._missing_peers(peers, fetched_at)),
                volumes=tuple(volumes) + tuple(missing),
                bricks=tuple(bricks),
                removed=tuple(removed),
                fetched_at=fetched_at,
            )
        )
        for brick in self._model.current().dangling_bricks():
            _logger.warning(
                "brick %s of volume '%s' is on a peer outside the topology",
                brick.key, brick.volume
            )
        return changes

    async def fetch_volume(
        self, name: str, detail: bool = False
    ) -> Tuple[Optional[Volume], List[Brick]]:
        with self._fetching():
            return await self._fetch_volume(name, detail)

    async def _fetch_volume(
        self, name: str, detail: bool
    ) -> Tuple[Optional[Volume], List[Brick]]:
        cmd = prot_command.volume_info_cmd(name)
        out = await self._pool.execute(cmd)
        if not out.ok:
            reason = parse_rejection(out.stderr or out.stdout)
            if NOT_EXIST_RE.search(reason):
                return None, []
            raise SemanticRejection.from_output(cmd, out)
        volumes, bricks = parse_volume_info(out.stdout, self.now())
        vol = next((v for v in volumes if v.name == name), None)
        if vol is None:
            return None, []
        if vol.state == VolumeState.STARTED or detail:
            status = await self._fetch_status(name, detail=detail)
            bricks = merge_brick_status(bricks, status)
        return vol, bricks

    async def refresh_volume(
        self, name: str, detail: bool = False
    ) -> Optional[Volume]:
        """
        Fetches one volume and its bricks. Returns None when the cluster does
        not report the volume, which is then marked unknown in the model.
        """
        vol, bricks = await self.fetch_volume(name, detail=detail)
        if vol is None:
            self.mark_unknown(name)
            return None

        fetched_at = self.now()
        vol = vol.evolve(fetched_at=fetched_at)
        bricks = [b.evolve(fetched_at=fetched_at) for b in bricks]
        self._model.apply(
            Delta(
                volumes=(vol, ),
                bricks=tuple(bricks),
                removed=tuple(self._stale_bricks(vol, fetched_at)),
                fetched_at=fetched_at,
            )
        )
        return vol

    def remove_volume(self, name: str) -> List[Change]:
        """
        Removes a volume whose deletion was confirmed, with its bricks.
        """
        fetched_at = self.now()
        snap = self._model.current()
        removed = [Tombstone(VOLUME, name, fetched_at)]
        removed.extend(
            Tombstone(BRICK, key, fetched_at)
            for key, brick in snap.bricks.items() if brick.volume == name
        )
        return self._model.apply(Delta(removed=tuple(removed), fetched_at=fetched_at))

    def remove_peer(self, key: str) -> List[Change]:
        fetched_at = self.now()
        return self._model.apply(
            Delta(
                removed=(Tombstone(PEER, key, fetched_at), ),
                fetched_at=fetched_at
            )
        )

    def merge_peers(self, peers: Iterable[Peer]) -> List[Change]:
        peers = tuple(peers)
        fetched_at = max((p.fetched_at for p in peers), default=self.now())
        return self._model.apply(Delta(peers=peers, fetched_at=fetched_at))

    def mark_unknown(self, name: str) -> List[Change]:
        """
        Marks a volume whose state could not be confirmed as unknown.
        """
        known = self._model.current().volumes.get(name)
        if known is None:
            return []
        fetched_at = self.now()
        return self._model.apply(
            Delta(
                volumes=(
                    known.evolve(state=VolumeState.UNKNOWN, fetched_at=fetched_at),
                ),
                fetched_at=fetched_at,
            )
        )
