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
Parsers for the output of the gluster management CLI.

Every function here is pure: it only looks at its input. Optional fields that
are missing default to unknown or empty values and status tokens that are not
known become :class:`glustermgmt.api.Unrecognized`. Only output that cannot
identify the entity it describes raises :class:`glustermgmt.errors.ParseError`.
"""

from __future__ import annotations

import re
import uuid
import xml.etree.ElementTree as etree
from typing import Dict, List, Optional, Tuple, Union

from glustermgmt.api import (
    Brick,
    BrickStatus,
    Peer,
    PeerState,
    Quota,
    RebalanceNode,
    RebalanceState,
    RebalanceStatus,
    Transport,
    Unrecognized,
    Volume,
    VolumeState,
    VolumeType,
    brick_id,
)
from glustermgmt.errors import ParseError, SemanticRejection

Text = Union[str, bytes]

PEER_FIELD_RE = re.compile(
    r'(Number of Peers|Hostname|Uuid|State|Other names):[ \t]*'
)
PEER_STATE_RE = re.compile(r'\A(?P<detail>[^()]*?)\s*(\((?P<conn>[^()]*)\))?\s*\Z')
BRICK_COUNT_RE = {
    "redundant": re.compile(r'(\d+)\s*x\s*\(\s*(\d+)\s*\+\s*(\d+)\s*\)\s*=\s*(\d+)'),
    "striped": re.compile(r'(\d+)\s*x\s*(\d+)\s*x\s*(\d+)\s*=\s*(\d+)'),
    "plain": re.compile(r'(\d+)\s*x\s*(\d+)\s*=\s*(\d+)'),
}
BRICK_LINE_RE = re.compile(r'\ABrick\d+\s*:\s*(?P<brick>\S+)(\s*\((?P<role>\w+)\))?')
STATUS_VOLUME_RE = re.compile(r'\AStatus of volume:\s*(?P<name>\S+)')
FAILED_RE = re.compile(r'failed:\s*(?P<reason>.+)', re.DOTALL)
SIZE_RE = re.compile(r'\A\s*(?P<num>\d+(\.\d+)?)\s*(?P<unit>PB|TB|GB|MB|KB|Bytes)\s*\Z')

NO_VOLUMES = "No volumes present"
NOT_STARTED_RE = re.compile(r'Volume \S+ is not started')
NOT_EXIST_RE = re.compile(r'Volume \S+ does not exist')
NO_QUOTA = "No quota configured"

_UNITS = {
    "Bytes": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
    "PB": 1024**5,
}

# volInfo/transport numeric codes of the XML output.
_XML_TRANSPORT = {"0": Transport.TCP, "1": Transport.RDMA, "2": Transport.TCP_RDMA}


def _text(data: Text) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _blocks(text: str) -> List[str]:
    """Split output into blank-line separated blocks."""
    blocks = []
    current: List[str] = []
    for line in text.splitlines():
        if line.strip():
            current.append(line.rstrip())
        elif current:
            blocks.append("\n".join(current))
            current = []
    if current:
        blocks.append("\n".join(current))
    return blocks


def _int_or_none(token: Optional[str]) -> Optional[int]:
    if token is None:
        return None
    try:
        return int(token)
    except ValueError:
        return None


def _check_uuid(kind: str, value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ParseError(kind, value)


def translate_to_bytes(value: str) -> Optional[int]:
    """
    Converts the human readable sizes gluster prints into bytes.

    >>> translate_to_bytes("100.0MB")
    104857600
    """
    m = SIZE_RE.match(value)
    if not m:
        return None
    return int(float(m.group("num")) * _UNITS[m.group("unit")])


def parse_peer_state(token: str) -> Union[PeerState, Unrecognized]:
    """
    Maps ``Peer in Cluster (Connected)`` style tokens. The part in
    parentheses is the connection state, the rest the membership state.
    """
    token = token.strip()
    if not token:
        return PeerState.UNKNOWN
    m = PEER_STATE_RE.match(token)
    if not m:
        return Unrecognized(token)
    detail = PeerState.from_token(m.group("detail")) if m.group("detail") else None
    conn = m.group("conn")
    if conn is None:
        return detail if detail is not None else PeerState.UNKNOWN
    conn_state = PeerState.from_token(conn)
    if conn_state == PeerState.DISCONNECTED:
        return PeerState.DISCONNECTED
    if isinstance(detail, Unrecognized) or isinstance(conn_state, Unrecognized):
        return Unrecognized(token)
    if detail == PeerState.REJECTED:
        return PeerState.REJECTED
    if detail is None or detail == PeerState.CONNECTED:
        return conn_state
    return detail


def parse_peer_status(data: Text, fetched_at: float = 0.0) -> List[Peer]:
    """
    Parses ``gluster peer status``::

        Number of Peers: 1

        Hostname: 10.0.3.207
        Uuid: afbd338e-881b-4557-8764-52e259885ca3
        State: Peer in Cluster (Connected)

    Fields may come in any order and several of them may share one line.
    """
    peers = []
    for block in _blocks(_text(data)):
        record: Dict[str, str] = {}
        matches = list(PEER_FIELD_RE.finditer(block))
        for i, m in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(block)
            key, value = m.group(1), block[m.end():end].strip()
            if key == "Number of Peers":
                continue
            if key in record:
                peers.append(_peer_from_fields(record, fetched_at))
                record = {}
            record[key] = value
        if record:
            peers.append(_peer_from_fields(record, fetched_at))
    return peers


def _peer_from_fields(record: Dict[str, str], fetched_at: float) -> Peer:
    hostname = record.get("Hostname", "")
    peer_uuid = record.get("Uuid", "")
    if not hostname and not peer_uuid:
        raise ParseError("peer", record)
    if peer_uuid:
        peer_uuid = _check_uuid("peer uuid", peer_uuid)
    aliases = tuple(
        name.strip() for name in record.get("Other names", "").splitlines()
        if name.strip()
    )
    return Peer(
        uuid=peer_uuid or hostname,
        address=hostname or peer_uuid,
        state=parse_peer_state(record.get("State", "")),
        aliases=aliases,
        fetched_at=fetched_at,
    )


def parse_pool_list(data: Text, fetched_at: float = 0.0) -> List[Peer]:
    """
    Parses ``gluster pool list``, which unlike ``peer status`` also lists
    the local node (as ``localhost``)::

        UUID                                    Hostname        State
        afbd338e-881b-4557-8764-52e259885ca3    10.0.3.207      Connected
    """
    peers = []
    for line in _text(data).splitlines():
        cols = line.split()
        if not cols or cols[0] == "UUID":
            continue
        if len(cols) < 2:
            raise ParseError("pool list", line)
        peer_uuid = _check_uuid("peer uuid", cols[0])
        state = " ".join(cols[2:])
        peers.append(
            Peer(
                uuid=peer_uuid,
                address=cols[1],
                state=PeerState.from_token(state) if state else PeerState.UNKNOWN,
                fetched_at=fetched_at,
            )
        )
    return peers


def parse_volume_list(data: Text) -> List[str]:
    text = _text(data)
    if NO_VOLUMES in text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def _brick_counts(vol_type: Union[VolumeType, Unrecognized, None],
                  value: str) -> Dict[str, int]:
    """
    Reads the replica/disperse/stripe counts from the ``Number of Bricks``
    field: ``4``, ``2 x 2 = 4``, ``1 x (2 + 1) = 3`` or ``1 x 2 x 2 = 4``.
    """
    known = isinstance(vol_type, VolumeType)
    m = BRICK_COUNT_RE["redundant"].search(value)
    if m:
        data, extra = int(m.group(2)), int(m.group(3))
        if known and vol_type.is_dispersed:
            return {"disperse_count": data + extra, "redundancy_count": extra}
        return {"replica_count": data + extra, "arbiter_count": extra}
    m = BRICK_COUNT_RE["striped"].search(value)
    if m:
        return {
            "stripe_count": int(m.group(2)),
            "replica_count": int(m.group(3)),
        }
    m = BRICK_COUNT_RE["plain"].search(value)
    if m and known:
        n = int(m.group(2))
        if vol_type.is_dispersed:
            return {"disperse_count": n}
        if vol_type.is_striped:
            return {"stripe_count": n}
        if vol_type.is_replicated:
            return {"replica_count": n}
    return {}


def _split_brick(value: str) -> Tuple[str, str]:
    host, sep, path = value.partition(":")
    if not sep or not host or not path:
        raise ParseError("brick", value)
    return host, path


def parse_volume_info(data: Text,
                      fetched_at: float = 0.0) -> Tuple[List[Volume], List[Brick]]:
    """
    Parses the text form of ``gluster volume info``::

        Volume Name: test
        Type: Replicate
        Volume ID: cae6868d-b080-4ea3-927b-93b5f1e3fe69
        Status: Started
        Number of Bricks: 1 x 2 = 2
        Transport-type: tcp
        Bricks:
        Brick1: 172.31.41.135:/mnt/xvdf
        Brick2: 172.31.26.65:/mnt/xvdf
        Options Reconfigured:
        nfs.disable: on

    Bricks of volumes that are not started carry no process and are reported
    offline; bricks of started volumes stay unknown until their status is
    fetched.
    """
    text = _text(data)
    if NO_VOLUMES in text or NOT_EXIST_RE.search(text):
        return [], []

    volumes: List[Volume] = []
    bricks: List[Brick] = []
    sections: List[List[str]] = []
    for line in text.splitlines():
        if line.strip().startswith("Volume Name:") or not sections:
            sections.append([])
        sections[-1].append(line)

    for lines in sections:
        if not any(line.strip() for line in lines):
            continue
        vol, vol_bricks = _parse_volume_section(lines, fetched_at)
        volumes.append(vol)
        bricks.extend(vol_bricks)
    return volumes, bricks


def _parse_volume_section(lines: List[str],
                          fetched_at: float) -> Tuple[Volume, List[Brick]]:
    fields: Dict[str, str] = {}
    brick_refs: List[Tuple[str, str]] = []
    options: Dict[str, str] = {}
    section = "root"
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        if line == "Bricks:":
            section = "bricks"
            continue
        if line == "Options Reconfigured:":
            section = "options"
            continue
        if section == "bricks" and line.startswith("Brick"):
            m = BRICK_LINE_RE.match(line)
            if not m:
                raise ParseError("brick", line)
            brick_refs.append(_split_brick(m.group("brick")))
            continue
        name, sep, value = line.partition(":")
        if not sep:
            # Unknown free-form line.
            continue
        if section == "options":
            options[name.strip()] = value.strip()
        else:
            section = "root"
            fields[name.strip().lower()] = value.strip()

    name = fields.get("volume name")
    if not name:
        raise ParseError("volume", "\n".join(lines).strip())
    vol_type = VolumeType.from_token(fields["type"]) if "type" in fields else None
    state = VolumeState.from_token(fields["status"]) if "status" in fields \
        else VolumeState.UNKNOWN
    vol_id = fields.get("volume id")
    transport = fields.get("transport-type")
    counts = _brick_counts(vol_type, fields.get("number of bricks", ""))

    brick_status = BrickStatus.UNKNOWN
    if state in (VolumeState.CREATED, VolumeState.STOPPED):
        brick_status = BrickStatus.OFFLINE
    bricks = [
        Brick(
            peer=host,
            path=path,
            volume=name,
            status=brick_status,
            fetched_at=fetched_at
        ) for host, path in brick_refs
    ]
    vol = Volume(
        name=name,
        id=_check_uuid("volume id", vol_id) if vol_id else None,
        type=vol_type,
        state=state,
        transport=Transport.from_token(transport) if transport else None,
        bricks=tuple(b.key for b in bricks),
        options=options,
        fetched_at=fetched_at,
        **counts,
    )
    return vol, bricks


def check_cli_xml(data: Text) -> etree.Element:
    """
    Parses the XML envelope of a ``--xml`` command and raises
    SemanticRejection when the CLI reports a failure inside it.
    """
    try:
        raw = data if isinstance(data, bytes) else data.encode()
        tree = etree.fromstring(raw)
        ret = int(tree.findtext("opRet", "0"))
        errno = int(tree.findtext("opErrno", "0"))
    except (etree.ParseError, ValueError):
        raise ParseError("cli xml", _text(data)[:200])
    if ret != 0:
        reason = tree.findtext("opErrstr") or "command failed"
        raise SemanticRejection(reason, errno or ret)
    return tree


def parse_volume_info_xml(data: Text,
                          fetched_at: float = 0.0) -> Tuple[List[Volume], List[Brick]]:
    tree = check_cli_xml(data)
    volumes: List[Volume] = []
    bricks: List[Brick] = []
    for el in tree.findall("volInfo/volumes/volume"):
        name = el.findtext("name")
        if not name:
            raise ParseError("volume", etree.tostring(el, encoding="unicode"))
        type_str = el.findtext("typeStr")
        vol_type = VolumeType.from_token(type_str) if type_str else None
        status_str = el.findtext("statusStr")
        state = VolumeState.from_token(status_str) if status_str \
            else VolumeState.UNKNOWN
        brick_status = BrickStatus.UNKNOWN
        if state in (VolumeState.CREATED, VolumeState.STOPPED):
            brick_status = BrickStatus.OFFLINE

        vol_bricks = []
        for b in el.findall("bricks/brick"):
            ref = b.findtext("name") or (b.text or "").strip()
            host, path = _split_brick(ref)
            vol_bricks.append(
                Brick(
                    peer=host,
                    path=path,
                    volume=name,
                    status=brick_status,
                    fetched_at=fetched_at,
                )
            )
        options = {
            opt.findtext("name", ""): opt.findtext("value", "")
            for opt in el.findall("options/option")
            if opt.findtext("name")
        }
        counts = {
            key: n
            for key, n in (
                ("replica_count", _int_or_none(el.findtext("replicaCount"))),
                ("arbiter_count", _int_or_none(el.findtext("arbiterCount"))),
                ("disperse_count", _int_or_none(el.findtext("disperseCount"))),
                ("redundancy_count", _int_or_none(el.findtext("redundancyCount"))),
                ("stripe_count", _int_or_none(el.findtext("stripeCount"))),
            ) if n is not None
        }
        vol_id = el.findtext("id")
        transport = el.findtext("transport")
        volumes.append(
            Volume(
                name=name,
                id=_check_uuid("volume id", vol_id) if vol_id else None,
                type=vol_type,
                state=state,
                transport=(
                    _XML_TRANSPORT.get(transport, Unrecognized(transport))
                    if transport else None
                ),
                bricks=tuple(b.key for b in vol_bricks),
                options=options,
                fetched_at=fetched_at,
                **counts,
            )
        )
        bricks.extend(vol_bricks)
    return volumes, bricks


def parse_volume_status(data: Text,
                        fetched_at: float = 0.0,
                        volume: Optional[str] = None) -> List[Brick]:
    """
    Parses the brick rows of ``gluster volume status``::

        Status of volume: test
        Gluster process                             TCP Port  RDMA Port  Online  Pid
        ------------------------------------------------------------------------------
        Brick 172.31.46.33:/mnt/xvdf                49152     0          Y       14228
        Self-heal Daemon on localhost               N/A       N/A        Y       14248

    Long brick names wrap onto the next line; the pieces are joined back.
    Rows of daemons other than bricks are skipped.
    """
    text = _text(data)
    if NOT_STARTED_RE.search(text) or NO_VOLUMES in text:
        return []
    bricks: List[Brick] = []
    columns = 4
    pending: Optional[str] = None
    for raw in text.splitlines():
        line = raw.strip()
        m = STATUS_VOLUME_RE.match(line)
        if m:
            volume = m.group("name")
            continue
        if line.startswith("Gluster process"):
            columns = 4 if "RDMA" in line else 3
            continue
        if pending is not None:
            line = f"{pending} {line}"
            pending = None
        elif not line.startswith("Brick "):
            continue
        tokens = line.split()
        if len(tokens) < columns + 2:
            pending = line
            continue
        bricks.append(_status_row(tokens, columns, volume, fetched_at))
    if pending is not None:
        raise ParseError("volume status", pending)
    return bricks


def _status_row(tokens: List[str], columns: int, volume: Optional[str],
                fetched_at: float) -> Brick:
    ref = "".join(tokens[1:len(tokens) - columns])
    host, path = _split_brick(ref)
    values = tokens[-columns:]
    if columns == 4:
        tcp, rdma, online, pid = values
    else:
        tcp, online, pid = values
        rdma = None
    return Brick(
        peer=host,
        path=path,
        volume=volume,
        status=BrickStatus.from_token(online),
        tcp_port=_int_or_none(tcp),
        rdma_port=_int_or_none(rdma),
        pid=_int_or_none(pid),
        fetched_at=fetched_at,
    )


def parse_volume_status_detail(data: Text,
                               fetched_at: float = 0.0,
                               volume: Optional[str] = None) -> List[Brick]:
    """
    Parses ``gluster volume status <name> detail``, one ``key : value``
    block per brick. This is the only output carrying disk usage.
    """
    text = _text(data)
    if NOT_STARTED_RE.search(text) or NO_VOLUMES in text:
        return []
    bricks: List[Brick] = []
    record: Dict[str, str] = {}

    def flush() -> None:
        if not record:
            return
        ref = record.get("brick", "")
        if ref.startswith("Brick "):
            ref = ref[len("Brick "):]
        host, path = _split_brick(ref.strip())
        free = record.get("disk space free")
        total = record.get("total disk space")
        bricks.append(
            Brick(
                peer=host,
                path=path,
                volume=volume,
                status=BrickStatus.from_token(record["online"])
                if "online" in record else BrickStatus.UNKNOWN,
                tcp_port=_int_or_none(record.get("tcp port")),
                rdma_port=_int_or_none(record.get("rdma port")),
                pid=_int_or_none(record.get("pid")),
                size_total=translate_to_bytes(total) if total else None,
                size_free=translate_to_bytes(free) if free else None,
                fetched_at=fetched_at,
            )
        )
        record.clear()

    for raw in text.splitlines():
        line = raw.strip()
        m = STATUS_VOLUME_RE.match(line)
        if m:
            flush()
            volume = m.group("name")
            continue
        key, sep, value = line.partition(" : ")
        if not sep:
            key, sep, value = line.partition(":")
            if not sep or key.strip().lower() != "brick":
                continue
        key = key.strip().lower()
        if key == "brick":
            flush()
        record[key] = value.strip()
    flush()
    return bricks


def _run_time(token: str) -> Optional[float]:
    if ":" in token:
        total = 0.0
        for part in token.split(":"):
            try:
                total = total * 60 + float(part)
            except ValueError:
                return None
        return total
    try:
        return float(token)
    except ValueError:
        return None


def parse_rebalance_status(data: Text, volume: str) -> RebalanceStatus:
    """
    Parses ``gluster volume rebalance <name> status``::

        Node Rebalanced-files    size  scanned  failures  skipped   status  run time in h:m:s
        ---------  -----------  -----  -------  --------  -------  -------  --------------
        localhost            0  0Bytes       0         0        0  completed        0:00:01
    """
    nodes = []
    for raw in _text(data).splitlines():
        line = raw.strip()
        if not line or line.startswith("-") or "Rebalanced-files" in line:
            continue
        if line.startswith("volume rebalance:"):
            continue
        tokens = line.split()
        if len(tokens) < 8:
            continue
        size = tokens[2]
        nodes.append(
            RebalanceNode(
                node=tokens[0],
                files=_int_or_none(tokens[1]),
                size=translate_to_bytes(size) if not size.isdigit() else int(size),
                scanned=_int_or_none(tokens[3]),
                failures=_int_or_none(tokens[4]),
                skipped=_int_or_none(tokens[5]),
                status=RebalanceState.from_token(" ".join(tokens[6:-1])),
                run_time=_run_time(tokens[-1]),
            )
        )
    return RebalanceStatus(volume=volume, nodes=tuple(nodes))


def parse_quota_list(data: Text) -> List[Quota]:
    """
    Parses ``gluster volume quota <name> list``::

        Path   Hard-limit  Soft-limit     Used  Available  Soft-limit exceeded? Hard-limit exceeded?
        -------------------------------------------------------------------------------------------
        /          1.0KB  80%(819Bytes)  0Bytes     1.0KB                   No                   No
    """
    text = _text(data)
    if NO_QUOTA in text:
        return []
    quotas = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("-") or line.startswith("Path"):
            continue
        parts = line.split()
        if len(parts) < 4 or not parts[0].startswith("/"):
            continue
        quotas.append(
            Quota(
                path=parts[0],
                hard_limit=translate_to_bytes(parts[1]),
                soft_limit=parts[2],
                used=translate_to_bytes(parts[3]),
                available=translate_to_bytes(parts[4]) if len(parts) > 4 else None,
            )
        )
    return quotas


def parse_rejection(data: Text) -> str:
    """
    Extracts the reason of a refused command, e.g. ``volume create: v1:
    failed: Volume v1 already exists`` gives ``Volume v1 already exists``.
    """
    text = _text(data).strip()
    m = FAILED_RE.search(text)
    if m:
        return m.group("reason").strip()
    return text or "command failed"
