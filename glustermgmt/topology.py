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
"""
In-memory picture of the cluster: peers, volumes and bricks merged from the
records fetched by the reconciler.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from glustermgmt.api import (
    Brick,
    Change,
    ChangeKind,
    Delta,
    Record,
    Snapshot,
    Tombstone,
    Volume,
    VolumeState,
)

_logger = logging.getLogger(__name__)

PEER = "peer"
VOLUME = "volume"
BRICK = "brick"

Listener = Callable[[List[Change]], None]


def _sort_key(record: Record) -> str:
    return json.dumps(record.as_dict(), sort_keys=True, default=str)


def _newer(a: Record, b: Record) -> bool:
    """
    Whether ``a`` wins against ``b`` under last-write-wins. Records fetched
    at the same instant are ordered by content so that the outcome does not
    depend on the order in which they were merged.
    """
    if a.fetched_at != b.fetched_at:
        return a.fetched_at > b.fetched_at
    return _sort_key(a) > _sort_key(b)


def _status(record: Record):
    if isinstance(record, Brick):
        return record.status
    return record.state


def _same_content(a: Record, b: Record) -> bool:
    return a.evolve(fetched_at=0.0) == b.evolve(fetched_at=0.0)


def _diff_table(kind: str, old: Mapping[str, Record],
                new: Mapping[str, Record]) -> List[Change]:
    changes = []
    for key in sorted(set(old) | set(new)):
        before, after = old.get(key), new.get(key)
        if before is None:
            changes.append(Change(kind, key, ChangeKind.ADDED, None, after))
        elif after is None:
            changes.append(Change(kind, key, ChangeKind.REMOVED, before, None))
        elif _status(before) != _status(after):
            changes.append(
                Change(kind, key, ChangeKind.STATUS_CHANGED, before, after)
            )
        elif not _same_content(before, after):
            changes.append(Change(kind, key, ChangeKind.UPDATED, before, after))
    return changes


def diff(old: Snapshot, new: Snapshot) -> List[Change]:
    """
    Changes between two snapshots: peers first, then volumes, then bricks,
    each ordered by key. Records that differ only in their fetch time are
    not reported.
    """
    return (
        _diff_table(PEER, old.peers, new.peers) +
        _diff_table(VOLUME, old.volumes, new.volumes) +
        _diff_table(BRICK, old.bricks, new.bricks)
    )


class TopologyModel:
    """
    TopologyModel holds the merged topology and publishes it as immutable
    snapshots. Writers are serialized by a lock, readers only take a
    reference to the latest snapshot.

    ::

        model = TopologyModel()
        model.apply(Delta(peers=peers, fetched_at=time.time()))
        snap = model.current()

    Local intents (such as a delete in flight) are kept apart from the
    fetched records and overlaid on them when publishing, so a newer fetch
    never erases an intent and an intent never changes what merges win.
    """

    def __init__(self, listener: Optional[Listener] = None) -> None:
        self._lock = threading.Lock()
        self._listener = listener
        self._fetched = Snapshot()
        self._snapshot = Snapshot()
        self._tombstones: Dict[Tuple[str, str], Tombstone] = {}
        self._intents: Dict[str, VolumeState] = {}

    def current(self) -> Snapshot:
        return self._snapshot

    @property
    def intents(self) -> Mapping[str, VolumeState]:
        return dict(self._intents)

    def tombstone(self, kind: str, key: str) -> Optional[Tombstone]:
        return self._tombstones.get((kind, key))

    def prune(self, before: float) -> int:
        """
        Forgets the tombstones of removals older than ``before``. Only safe
        once no record fetched before that time can be applied anymore.
        """
        with self._lock:
            stale = [
                ident for ident, tomb in self._tombstones.items()
                if tomb.fetched_at < before
            ]
            for ident in stale:
                del self._tombstones[ident]
        return len(stale)

    def apply(self, delta: Delta) -> List[Change]:
        """
        Merges the records of a delta. Each record replaces the stored one
        only when it is newer, and tombstones remove every record fetched no
        later than the removal. Applying the same delta twice changes
        nothing the second time.
        """
        with self._lock:
            tables = {
                PEER: dict(self._fetched.peers),
                VOLUME: dict(self._fetched.volumes),
                BRICK: dict(self._fetched.bricks),
            }
            self._merge(tables, delta)
            changes = self._publish(
                tables, max(self._fetched.fetched_at, delta.fetched_at)
            )
        self._notify(changes)
        return changes

    def replace(self, delta: Delta) -> List[Change]:
        """
        Drops every fetched record and loads the delta in their place.
        Tombstones are kept.
        """
        with self._lock:
            tables: Dict[str, Dict[str, Record]] = {PEER: {}, VOLUME: {}, BRICK: {}}
            self._merge(tables, delta)
            changes = self._publish(tables, delta.fetched_at)
        self._notify(changes)
        return changes

    def begin(self, name: str, state: VolumeState) -> List[Change]:
        """
        Records a local intent on a volume, shown as its state in every
        snapshot until :meth:`end` is called.
        """
        with self._lock:
            self._intents[name] = state
            changes = self._publish(self._tables(), self._fetched.fetched_at)
        self._notify(changes)
        return changes

    def end(self, name: str) -> List[Change]:
        with self._lock:
            if self._intents.pop(name, None) is None:
                return []
            changes = self._publish(self._tables(), self._fetched.fetched_at)
        self._notify(changes)
        return changes

    def _tables(self) -> Dict[str, Dict[str, Record]]:
        return {
            PEER: dict(self._fetched.peers),
            VOLUME: dict(self._fetched.volumes),
            BRICK: dict(self._fetched.bricks),
        }

    def _merge(self, tables: Dict[str, Dict[str, Record]], delta: Delta) -> None:
        for tomb in delta.removed:
            ident = (tomb.kind, tomb.key)
            prev = self._tombstones.get(ident)
            if prev is None or tomb.fetched_at > prev.fetched_at:
                self._tombstones[ident] = tomb
            table = tables[tomb.kind]
            existing = table.get(tomb.key)
            if existing is not None and existing.fetched_at <= tomb.fetched_at:
                del table[tomb.key]

        for kind, records in (
            (PEER, delta.peers),
            (VOLUME, delta.volumes),
            (BRICK, delta.bricks),
        ):
            table = tables[kind]
            for record in records:
                tomb = self._tombstones.get((kind, record.key))
                if tomb is not None and tomb.fetched_at >= record.fetched_at:
                    continue
                existing = table.get(record.key)
                if existing is None or _newer(record, existing):
                    table[record.key] = record

    def _publish(self, tables: Dict[str, Dict[str, Record]],
                 fetched_at: float) -> List[Change]:
        self._fetched = Snapshot(
            peers=tables[PEER],
            volumes=tables[VOLUME],
            bricks=tables[BRICK],
            fetched_at=fetched_at,
        )
        volumes: Dict[str, Volume] = dict(self._fetched.volumes)
        for name, state in self._intents.items():
            vol = volumes.get(name)
            if vol is not None:
                volumes[name] = vol.evolve(state=state)
        snap = Snapshot(
            peers=self._fetched.peers,
            volumes=volumes,
            bricks=self._fetched.bricks,
            fetched_at=fetched_at,
        )
        changes = diff(self._snapshot, snap)
        self._snapshot = snap
        return changes

    def _notify(self, changes: List[Change]) -> None:
        if not changes:
            return
        for change in changes:
            _logger.debug("topology: %s", change)
        if self._listener is not None:
            self._listener(changes)
