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
Argument vectors of the gluster management CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple

from glustermgmt.api import BrickSpec, Transport, VolumeType

GLUSTER_BIN = "gluster"
SCRIPT_MODE = "--mode=script"
XML_FLAG = "--xml"

PEER_OP = "peer"
POOL_OP = "pool"
VOLUME_OP = "volume"


@dataclass(frozen=True)
class Command:
    """
    One management command, independent of the transport delivering it.
    ``kind`` names the operation for logging and error mapping, ``mutating``
    tells whether the command changes cluster state.
    """
    kind: str
    args: Tuple[str, ...]
    mutating: bool = False

    def argv(self, binary: str = GLUSTER_BIN) -> Tuple[str, ...]:
        return (binary, SCRIPT_MODE) + self.args

    def __str__(self) -> str:
        return " ".join(self.args)


def peer_status_cmd() -> Command:
    return Command("peer.status", (PEER_OP, "status"))


def pool_list_cmd() -> Command:
    return Command("pool.list", (POOL_OP, "list"))


def peer_probe_cmd(address: str) -> Command:
    return Command("peer.probe", (PEER_OP, "probe", address), mutating=True)


def peer_detach_cmd(address: str, force: bool = False) -> Command:
    args: Tuple[str, ...] = (PEER_OP, "detach", address)
    if force:
        args += ("force", )
    return Command("peer.detach", args, mutating=True)


def volume_list_cmd() -> Command:
    return Command("volume.list", (VOLUME_OP, "list"))


def volume_info_cmd(name: str = "all", xml: bool = False) -> Command:
    args: Tuple[str, ...] = (VOLUME_OP, "info", name)
    if xml:
        args += (XML_FLAG, )
    return Command("volume.info", args)


def volume_status_cmd(name: str = "all", detail: bool = False) -> Command:
    args: Tuple[str, ...] = (VOLUME_OP, "status", name)
    if detail:
        args += ("detail", )
    return Command("volume.status", args)


def volume_create_cmd(
    name: str,
    bricks: Iterable[BrickSpec],
    volume_type: VolumeType = VolumeType.DISTRIBUTE,
    replica_count: Optional[int] = None,
    arbiter_count: Optional[int] = None,
    disperse_count: Optional[int] = None,
    redundancy_count: Optional[int] = None,
    stripe_count: Optional[int] = None,
    transport: Transport = Transport.TCP,
    force: bool = False,
) -> Command:
    args = [VOLUME_OP, "create", name]
    if stripe_count and volume_type.is_striped:
        args += ["stripe", str(stripe_count)]
    if replica_count and volume_type.is_replicated:
        args += ["replica", str(replica_count)]
    if arbiter_count and volume_type.is_replicated:
        args += ["arbiter", str(arbiter_count)]
    if disperse_count and volume_type.is_dispersed:
        args += ["disperse", str(disperse_count)]
    if redundancy_count and volume_type.is_dispersed:
        args += ["redundancy", str(redundancy_count)]
    args += ["transport", transport.value]
    args += [str(b) for b in bricks]
    if force:
        args.append("force")
    return Command("volume.create", tuple(args), mutating=True)


def volume_start_cmd(name: str, force: bool = False) -> Command:
    args: Tuple[str, ...] = (VOLUME_OP, "start", name)
    if force:
        args += ("force", )
    return Command("volume.start", args, mutating=True)


def volume_stop_cmd(name: str, force: bool = False) -> Command:
    args: Tuple[str, ...] = (VOLUME_OP, "stop", name)
    if force:
        args += ("force", )
    return Command("volume.stop", args, mutating=True)


def volume_delete_cmd(name: str) -> Command:
    return Command("volume.delete", (VOLUME_OP, "delete", name), mutating=True)


def volume_set_cmd(name: str, option: str, value: str) -> Command:
    return Command(
        "volume.set", (VOLUME_OP, "set", name, option, value), mutating=True
    )


def volume_set_all_cmd(name: str, options: Mapping[str, str]) -> Tuple[Command, ...]:
    return tuple(volume_set_cmd(name, k, v) for k, v in options.items())


def volume_add_brick_cmd(
    name: str,
    bricks: Iterable[BrickSpec],
    replica_count: Optional[int] = None,
    force: bool = False,
) -> Command:
    args = [VOLUME_OP, "add-brick", name]
    if replica_count:
        args += ["replica", str(replica_count)]
    args += [str(b) for b in bricks]
    if force:
        args.append("force")
    return Command("volume.add-brick", tuple(args), mutating=True)


def volume_remove_brick_cmd(
    name: str,
    bricks: Iterable[BrickSpec],
    action: str = "force",
    replica_count: Optional[int] = None,
) -> Command:
    args = [VOLUME_OP, "remove-brick", name]
    if replica_count:
        args += ["replica", str(replica_count)]
    args += [str(b) for b in bricks]
    args.append(action)
    return Command(
        f"volume.remove-brick.{action}", tuple(args), mutating=(action != "status")
    )


def volume_rebalance_cmd(
    name: str,
    action: str = "start",
    fix_layout: bool = False,
    force: bool = False,
) -> Command:
    args: Tuple[str, ...] = (VOLUME_OP, "rebalance", name)
    if fix_layout:
        args += ("fix-layout", )
    args += (action, )
    if force and action == "start":
        args += ("force", )
    return Command(
        f"volume.rebalance.{action}", args, mutating=(action != "status")
    )


def volume_quota_cmd(name: str, action: str, *args: str) -> Command:
    return Command(
        f"volume.quota.{action}",
        (VOLUME_OP, "quota", name, action) + args,
        mutating=(action != "list"),
    )


def volume_quota_list_cmd(name: str) -> Command:
    return volume_quota_cmd(name, "list")


def volume_bitrot_cmd(
    name: str, action: str, value: Optional[str] = None
) -> Command:
    args: Tuple[str, ...] = (VOLUME_OP, "bitrot", name, action)
    if value is not None:
        args += (value, )
    return Command(
        f"volume.bitrot.{action}", args, mutating=(value != "status")
    )
