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

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from glustermgmt.errors import InvalidTopology

_B = TypeVar("_B", bound="Base")
_E = TypeVar("_E", bound=Enum)


@dataclass(frozen=True)
class Unrecognized:
    """
    A status token reported by the cluster that this client does not know.
    Kept verbatim instead of being coerced into a known state.
    """
    value: str

    def __str__(self) -> str:
        return f"unrecognized({self.value})"


def _from_token(enum: Type[_E], token: str,
                aliases: Mapping[str, _E]) -> Union[_E, Unrecognized]:
    key = token.strip().lower()
    if key in aliases:
        return aliases[key]
    try:
        return enum(key)
    except ValueError:
        return Unrecognized(token.strip())


class PeerState(str, Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    REJECTED = "rejected"

    @classmethod
    def from_token(cls, token: str) -> Union[PeerState, Unrecognized]:
        return _from_token(cls, token, _PEER_STATE_ALIASES)


_PEER_STATE_ALIASES = {
    "peer in cluster": PeerState.CONNECTED,
    "peer is connected and accepted": PeerState.CONNECTED,
    "peer rejected": PeerState.REJECTED,
    "establishing connection": PeerState.PROBING,
    "probe sent to peer": PeerState.PROBING,
    "probe received from peer": PeerState.PROBING,
    "accepted peer request": PeerState.PROBING,
    "sent and received peer request": PeerState.PROBING,
    "connected to peer": PeerState.PROBING,
}


class VolumeState(str, Enum):
    UNKNOWN = "unknown"
    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"
    DELETING = "deleting"

    @classmethod
    def from_token(cls, token: str) -> Union[VolumeState, Unrecognized]:
        # The cluster never reports the local-only states.
        state = _from_token(cls, token, {})
        if state in (cls.UNKNOWN, cls.DELETING):
            return Unrecognized(token.strip())
        return state


class VolumeType(str, Enum):
    DISTRIBUTE = "distribute"
    REPLICATE = "replicate"
    DISPERSE = "disperse"
    ARBITER = "arbiter"
    STRIPE = "stripe"
    DISTRIBUTE_REPLICATE = "distribute-replicate"
    DISTRIBUTE_DISPERSE = "distribute-disperse"
    DISTRIBUTE_STRIPE = "distribute-stripe"
    STRIPED_REPLICATE = "striped-replicate"
    DISTRIBUTE_STRIPED_REPLICATE = "distribute-striped-replicate"

    @classmethod
    def from_token(cls, token: str) -> Union[VolumeType, Unrecognized]:
        return _from_token(cls, token, _VOLUME_TYPE_ALIASES)

    @property
    def is_replicated(self) -> bool:
        return self in (
            VolumeType.REPLICATE,
            VolumeType.ARBITER,
            VolumeType.DISTRIBUTE_REPLICATE,
            VolumeType.STRIPED_REPLICATE,
            VolumeType.DISTRIBUTE_STRIPED_REPLICATE,
        )

    @property
    def is_dispersed(self) -> bool:
        return self in (VolumeType.DISPERSE, VolumeType.DISTRIBUTE_DISPERSE)

    @property
    def is_striped(self) -> bool:
        return self in (
            VolumeType.STRIPE,
            VolumeType.DISTRIBUTE_STRIPE,
            VolumeType.STRIPED_REPLICATE,
            VolumeType.DISTRIBUTE_STRIPED_REPLICATE,
        )


_VOLUME_TYPE_ALIASES = {
    "distributed-replicate": VolumeType.DISTRIBUTE_REPLICATE,
    "distributed-disperse": VolumeType.DISTRIBUTE_DISPERSE,
    "distributed-stripe": VolumeType.DISTRIBUTE_STRIPE,
    "distributed-striped-replicate": VolumeType.DISTRIBUTE_STRIPED_REPLICATE,
}


class Transport(str, Enum):
    TCP = "tcp"
    RDMA = "rdma"
    TCP_RDMA = "tcp,rdma"

    @classmethod
    def from_token(cls, token: str) -> Union[Transport, Unrecognized]:
        return _from_token(cls, token.replace(" ", ""), {})


class BrickStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"

    @classmethod
    def from_token(cls, token: str) -> Union[BrickStatus, Unrecognized]:
        return _from_token(
            cls, token, {
                "y": cls.ONLINE,
                "n": cls.OFFLINE,
                "1": cls.ONLINE,
                "0": cls.OFFLINE,
            }
        )


class RebalanceState(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @classmethod
    def from_token(cls, token: str) -> Union[RebalanceState, Unrecognized]:
        return _from_token(
            cls, token.replace(" ", "-"), {"fix-layout-in-progress": cls.IN_PROGRESS}
        )

    @property
    def is_terminal(self) -> bool:
        return self in (
            RebalanceState.COMPLETED,
            RebalanceState.STOPPED,
            RebalanceState.FAILED,
        )


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    STATUS_CHANGED = "status-changed"
    UPDATED = "updated"


@dataclass(frozen=True)
class Base:
    """
    Helper dataclass shared by every topology record.
    """

    def evolve(self: _B, **params) -> _B:
        """Return a copy of the instance with the passed values replaced.
        """
        return replace(self, **params)

    def as_dict(self) -> Dict[str, object]:
        """Return the record converted into a JSON-friendly dict.
        """
        result: Dict[str, object] = {}
        for f in fields(self):
            val = getattr(self, f.name)
            if val is None:
                continue
            result[f.name] = _plain(val)
        return result


def _plain(val: Any) -> Any:
    if isinstance(val, Base):
        return val.as_dict()
    if isinstance(val, Enum):
        return val.value
    if isinstance(val, Unrecognized):
        return val.value
    if isinstance(val, Mapping):
        return {k: _plain(v) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [_plain(v) for v in val]
    return val


@dataclass(frozen=True)
class Peer(Base):
    """
    A node participating in the cluster membership. ``uuid`` is the identity,
    the address may change without the identity changing.
    """
    uuid: str
    address: str
    state: Union[PeerState, Unrecognized] = PeerState.UNKNOWN
    aliases: Tuple[str, ...] = ()
    fetched_at: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.aliases, tuple):
            object.__setattr__(self, "aliases", tuple(self.aliases))

    @property
    def key(self) -> str:
        return self.uuid


def brick_id(peer: str, path: str) -> str:
    path = path.rstrip("/") or "/"
    return f"{peer}:{path}"


@dataclass(frozen=True)
class BrickSpec(Base):
    """
    A requested brick placement: a directory on a peer.
    """
    peer: str
    path: str

    @classmethod
    def parse(cls, value: Union[str, BrickSpec]) -> BrickSpec:
        if isinstance(value, BrickSpec):
            return value
        peer, sep, path = value.partition(":")
        if not sep or not peer or not path.startswith("/"):
            raise InvalidTopology(f"malformed brick '{value}', want host:/path")
        return cls(peer=peer, path=path)

    @property
    def key(self) -> str:
        return brick_id(self.peer, self.path)

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Brick(Base):
    """
    A directory on a peer exported to a volume. ``peer`` is a weak reference:
    the owning peer may be missing from the topology.
    """
    peer: str
    path: str
    volume: Optional[str] = None
    status: Union[BrickStatus, Unrecognized] = BrickStatus.UNKNOWN
    tcp_port: Optional[int] = None
    rdma_port: Optional[int] = None
    pid: Optional[int] = None
    size_total: Optional[int] = None
    size_free: Optional[int] = None
    fetched_at: float = 0.0

    @property
    def key(self) -> str:
        return brick_id(self.peer, self.path)


@dataclass(frozen=True)
class Volume(Base):
    name: str
    id: Optional[str] = None
    type: Union[VolumeType, Unrecognized, None] = None
    state: Union[VolumeState, Unrecognized] = VolumeState.UNKNOWN
    transport: Union[Transport, Unrecognized, None] = None
    bricks: Tuple[str, ...] = ()
    replica_count: int = 1
    arbiter_count: int = 0
    disperse_count: int = 0
    redundancy_count: int = 0
    stripe_count: int = 1
    options: Mapping[str, str] = field(default_factory=dict)
    fetched_at: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.options, MappingProxyType):
            object.__setattr__(
                self, "options", MappingProxyType(dict(self.options))
            )
        if not isinstance(self.bricks, tuple):
            object.__setattr__(self, "bricks", tuple(self.bricks))

    @property
    def key(self) -> str:
        return self.name


Record = Union[Peer, Volume, Brick]


@dataclass(frozen=True)
class Tombstone(Base):
    """
    Confirmed removal of an entity, kept so that an older record arriving
    later does not bring it back.
    """
    kind: str
    key: str
    fetched_at: float


@dataclass(frozen=True)
class Delta(Base):
    """
    A batch of records fetched from the cluster, merged into the topology as
    one write.
    """
    peers: Tuple[Peer, ...] = ()
    volumes: Tuple[Volume, ...] = ()
    bricks: Tuple[Brick, ...] = ()
    removed: Tuple[Tombstone, ...] = ()
    fetched_at: float = 0.0

    def __post_init__(self) -> None:
        for name in ("peers", "volumes", "bricks", "removed"):
            val = getattr(self, name)
            if not isinstance(val, tuple):
                object.__setattr__(self, name, tuple(val))


@dataclass(frozen=True)
class Snapshot(Base):
    """
    Immutable view of the topology at a point in time.
    """
    peers: Mapping[str, Peer] = field(default_factory=dict)
    volumes: Mapping[str, Volume] = field(default_factory=dict)
    bricks: Mapping[str, Brick] = field(default_factory=dict)
    fetched_at: float = 0.0

    def __post_init__(self) -> None:
        for name in ("peers", "volumes", "bricks"):
            val = getattr(self, name)
            if not isinstance(val, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(val)))

    def peer_by_address(self, address: str) -> Optional[Peer]:
        if address in self.peers:
            return self.peers[address]
        for peer in self.peers.values():
            if peer.address == address or address in peer.aliases:
                return peer
        return None

    def volume_bricks(self, name: str) -> List[Brick]:
        """
        The bricks of a volume in volume order. Bricks the topology has no
        record of yet are returned with an unknown status.
        """
        vol = self.volumes.get(name)
        if vol is None:
            return []
        result = []
        for bid in vol.bricks:
            brick = self.bricks.get(bid)
            if brick is None:
                peer, _, path = bid.partition(":")
                brick = Brick(peer=peer, path=path, volume=name)
            result.append(brick)
        return result

    def brick_owner(self, bid: str) -> Optional[str]:
        """
        Name of the volume a brick id is assigned to, if any.
        """
        peer, _, path = bid.partition(":")
        aliases = {bid}
        known = self.peer_by_address(peer)
        if known is not None:
            for name in (known.uuid, known.address) + known.aliases:
                aliases.add(brick_id(name, path))
        for vol in self.volumes.values():
            if aliases.intersection(vol.bricks):
                return vol.name
        return None

    def dangling_bricks(self) -> List[Brick]:
        """
        Bricks referenced by a volume whose owning peer is not part of the
        topology.
        """
        result = []
        for vol in self.volumes.values():
            for brick in self.volume_bricks(vol.name):
                if self.peer_by_address(brick.peer) is None:
                    result.append(brick)
        return result


@dataclass(frozen=True)
class Change(Base):
    kind: str
    key: str
    change: ChangeKind
    old: Optional[Record] = None
    new: Optional[Record] = None

    def __str__(self) -> str:
        if self.change == ChangeKind.STATUS_CHANGED:
            return (
                f"{self.kind} {self.key}: {_status_of(self.old)} -> "
                f"{_status_of(self.new)}"
            )
        return f"{self.kind} {self.key}: {self.change.value}"


def _status_of(record: Optional[Record]) -> Any:
    if record is None:
        return None
    if isinstance(record, Brick):
        return record.status
    return record.state


@dataclass(frozen=True)
class Quota(Base):
    path: str
    hard_limit: Optional[int] = None
    soft_limit: Optional[str] = None
    used: Optional[int] = None
    available: Optional[int] = None


@dataclass(frozen=True)
class RebalanceNode(Base):
    node: str
    files: Optional[int] = None
    size: Optional[int] = None
    scanned: Optional[int] = None
    failures: Optional[int] = None
    skipped: Optional[int] = None
    status: Union[RebalanceState, Unrecognized] = RebalanceState.NOT_STARTED
    run_time: Optional[float] = None


@dataclass(frozen=True)
class RebalanceStatus(Base):
    volume: str
    nodes: Tuple[RebalanceNode, ...] = ()

    @property
    def status(self) -> Union[RebalanceState, Unrecognized]:
        """
        Aggregate status: any failure or unrecognized token wins, then any
        node still running, then the common terminal state.
        """
        states = [n.status for n in self.nodes]
        if not states:
            return RebalanceState.NOT_STARTED
        for st in states:
            if isinstance(st, Unrecognized):
                return st
        if RebalanceState.FAILED in states:
            return RebalanceState.FAILED
        if RebalanceState.IN_PROGRESS in states:
            return RebalanceState.IN_PROGRESS
        if RebalanceState.STOPPED in states:
            return RebalanceState.STOPPED
        if all(st == RebalanceState.COMPLETED for st in states):
            return RebalanceState.COMPLETED
        return RebalanceState.IN_PROGRESS
