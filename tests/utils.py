import asyncio
import unittest
import uuid
from functools import wraps
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from glustermgmt.aio.client import Client
from glustermgmt.aio.executor import CommandOutput, NodeExecutor
from glustermgmt.errors import NodeUnreachableError
from glustermgmt.protocol.command import Command

LOCAL_UUID = "5f1b4f7c-1a2b-4c3d-9e8f-0a1b2c3d4e5f"
PEER2_UUID = "8ea98e3c-d9b5-4d2d-a1a6-0f2d2e4b0a11"
PEER3_UUID = "c1d2e3f4-a5b6-4789-8abc-def012345678"

Response = Union[str, CommandOutput, BaseException]
Handler = Callable[[str, Command], Awaitable[CommandOutput]]


def async_test(test_case_fun, timeout=5):

    @wraps(test_case_fun)
    def wrapper(test_case, *args, **kw):
        asyncio.set_event_loop(test_case.loop)
        return asyncio.run(
            asyncio.wait_for(test_case_fun(test_case, *args, **kw), timeout)
        )

    return wrapper


def rejected(message: str, exit_code: int = 1) -> CommandOutput:
    return CommandOutput(stdout="", stderr=message, exit_code=exit_code)


class FakeExecutor(NodeExecutor):
    """
    Replays recorded outputs keyed by command arguments, e.g.
    ``'volume info all'``. A list of responses is consumed in order and the
    last one repeats. With a handler, every command goes to it instead.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Union[Response, List[Response]]]] = None,
        handler: Optional[Handler] = None,
        unreachable: Sequence[str] = (),
    ):
        self.responses: Dict[str, List[Response]] = {}
        for key, value in (responses or {}).items():
            self.add(key, *(value if isinstance(value, list) else [value]))
        self.handler = handler
        self.unreachable = set(unreachable)
        self.calls: List[Tuple[str, Command]] = []
        self.closed = False

    def add(self, key: str, *outputs: Response) -> None:
        self.responses[key] = list(outputs)

    async def execute(self, node, command, timeout):
        self.calls.append((node, command))
        # Let concurrent operations interleave as they would on a network.
        await asyncio.sleep(0)
        if node in self.unreachable:
            raise NodeUnreachableError(node, "connection refused")
        if self.handler is not None:
            out = await self.handler(node, command)
        else:
            queue = self.responses.get(str(command))
            if not queue:
                raise AssertionError(f"unexpected command: {command}")
            out = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(out, BaseException):
            raise out
        if isinstance(out, str):
            out = CommandOutput(stdout=out)
        return CommandOutput(out.stdout, out.stderr, out.exit_code, node)

    async def close(self):
        self.closed = True

    @property
    def issued(self) -> List[str]:
        return [str(c) for _, c in self.calls]

    @property
    def mutations(self) -> List[str]:
        return [str(c) for _, c in self.calls if c.mutating]


class FakeCluster:
    """
    A small stand-in for the gluster management daemon, answering CLI
    commands from its own state so that operations can be followed
    through several steps.
    """

    def __init__(self, local: str = "10.0.0.1"):
        self.local = local
        self.peers: Dict[str, Tuple[str, str]] = {LOCAL_UUID: ("localhost", "Connected")}
        self.volumes: Dict[str, dict] = {}
        self.scripted: Dict[str, List[CommandOutput]] = {}
        self.joining: Dict[str, Tuple[str, str]] = {}
        self.brick_online = True

    def add_volume(
        self,
        name: str,
        bricks: Sequence[str],
        state: str = "Created",
        vol_type: str = "Distribute",
        replica: int = 1,
        options: Optional[Dict[str, str]] = None,
    ) -> None:
        self.volumes[name] = {
            "id": str(uuid.uuid4()),
            "type": vol_type,
            "state": state,
            "bricks": list(bricks),
            "replica": replica,
            "options": dict(options or {}),
            "quotas": {},
        }

    def script(self, key: str, *outputs: Union[str, CommandOutput]) -> None:
        """Answers the command ``key`` with the given outputs, in order."""
        self.scripted[key] = [
            o if isinstance(o, CommandOutput) else CommandOutput(o) for o in outputs
        ]

    def executor(self, **kw) -> FakeExecutor:
        return FakeExecutor(handler=self.handle, **kw)

    async def handle(self, node: str, command: Command) -> CommandOutput:
        key = str(command)
        queue = self.scripted.get(key)
        if queue:
            return queue[0] if len(queue) == 1 else queue.pop(0)
        args = command.args
        op = args[:2]
        if op == ("pool", "list"):
            return CommandOutput(self.render_pool_list())
        if op == ("volume", "info"):
            name = args[2]
            if name == "all":
                if not self.volumes:
                    return CommandOutput("No volumes present")
                return CommandOutput(self.render_info(sorted(self.volumes)))
            if name not in self.volumes:
                return rejected(f"Volume {name} does not exist")
            return CommandOutput(self.render_info([name]))
        if op == ("volume", "status"):
            name = args[2]
            if name not in self.volumes:
                return rejected(f"Volume {name} does not exist")
            if self.volumes[name]["state"] != "Started":
                return rejected(f"Volume {name} is not started")
            if "detail" in args:
                return CommandOutput(self.render_status_detail(name))
            return CommandOutput(self.render_status(name))
        if op == ("volume", "create"):
            return self._create(args)
        if op == ("volume", "start"):
            return self._transition(args[2], "start", ("Created", "Stopped"), "Started",
                                    force="force" in args)
        if op == ("volume", "stop"):
            return self._transition(args[2], "stop", ("Started", ), "Stopped")
        if op == ("volume", "delete"):
            name = args[2]
            out = self._transition(name, "delete", ("Created", "Stopped"), "Created")
            if out.ok:
                del self.volumes[name]
            return out
        if op == ("volume", "set"):
            name = args[2]
            if name not in self.volumes:
                return rejected(f"volume set: failed: Volume {name} does not exist")
            self.volumes[name]["options"][args[3]] = args[4]
            return CommandOutput("volume set: success")
        if op == ("volume", "add-brick"):
            vol = self.volumes[args[2]]
            vol["bricks"] += [a for a in args[3:] if ":/" in a]
            return CommandOutput("volume add-brick: success")
        if op == ("volume", "remove-brick"):
            vol = self.volumes[args[2]]
            action = args[-1]
            if action in ("force", "commit"):
                gone = {a for a in args[3:-1] if ":/" in a}
                vol["bricks"] = [b for b in vol["bricks"] if b not in gone]
            if action == "status":
                return CommandOutput(self.render_rebalance("completed"))
            return CommandOutput(f"volume remove-brick {action}: success")
        if op == ("volume", "rebalance"):
            if args[-1] == "status":
                return CommandOutput(self.render_rebalance("completed"))
            return CommandOutput(f"volume rebalance: {args[2]}: success")
        if op == ("volume", "quota"):
            return self._quota(args)
        if op == ("volume", "bitrot"):
            return self._bitrot(args)
        if op == ("peer", "probe"):
            if args[2] in self.joining:
                peer_uuid, state = self.joining[args[2]]
                self.peers[peer_uuid] = (args[2], state)
            return CommandOutput("peer probe: success.")
        if op == ("peer", "detach"):
            for peer_uuid, (address, _) in list(self.peers.items()):
                if address == args[2]:
                    del self.peers[peer_uuid]
                    return CommandOutput("peer detach: success")
            return rejected(f"peer detach: failed: {args[2]} is not part of cluster")
        raise AssertionError(f"unexpected command: {command}")

    def _create(self, args: Tuple[str, ...]) -> CommandOutput:
        name = args[2]
        if name in self.volumes:
            return rejected(f"volume create: {name}: failed: Volume {name} already exists")
        bricks = [a for a in args[3:] if ":/" in a]
        for vol in self.volumes.values():
            for b in bricks:
                if b in vol["bricks"]:
                    return rejected(
                        f"volume create: {name}: failed: {b} is already part of a volume"
                    )
        replica = int(args[args.index("replica") + 1]) if "replica" in args else 1
        vol_type = "Distribute"
        if replica > 1:
            vol_type = "Replicate" if len(bricks) == replica else "Distributed-Replicate"
        self.add_volume(name, bricks, vol_type=vol_type, replica=replica)
        return CommandOutput(f"volume create: {name}: success: please start the volume to access data")

    def _quota(self, args: Tuple[str, ...]) -> CommandOutput:
        name, action = args[2], args[3]
        vol = self.volumes.get(name)
        if vol is None:
            return rejected(f"quota command failed : Volume {name} does not exist")
        opts, quotas = vol["options"], vol["quotas"]
        enabled = opts.get("features.quota") == "on"
        if action == "list":
            if not enabled or not quotas:
                return CommandOutput(f"quota: No quota configured on volume {name}")
            return CommandOutput(self.render_quota(name))
        if vol["state"] != "Started":
            return rejected(f"quota command failed : Volume {name} is not started")
        if action in ("enable", "disable"):
            if enabled == (action == "enable"):
                return rejected(f"quota command failed : Quota is already {action}d")
            toggle = "on" if action == "enable" else "off"
            opts["features.quota"] = opts["features.inode-quota"] = toggle
            quotas.clear()
            return CommandOutput("volume quota : success")
        if not enabled:
            return rejected("quota command failed : Quota is disabled, please enable quota")
        path = args[4]
        if action == "limit-usage":
            quotas[path] = [args[5], "0Bytes"]
        elif action == "remove":
            if quotas.pop(path, None) is None:
                return rejected(f"quota command failed : No limit set on {path}")
        else:
            raise AssertionError(f"unexpected quota action: {action}")
        return CommandOutput("volume quota : success")

    def _bitrot(self, args: Tuple[str, ...]) -> CommandOutput:
        name, action = args[2], args[3]
        vol = self.volumes.get(name)
        if vol is None:
            return rejected(f"volume bitrot: failed: Volume {name} does not exist")
        if vol["state"] != "Started":
            return rejected(f"volume bitrot: failed: Volume {name} is not started")
        opts = vol["options"]
        enabled = opts.get("features.bitrot") == "on"
        if action in ("enable", "disable"):
            if enabled == (action == "enable"):
                return rejected(f"volume bitrot: failed: Bitrot is already {action}d")
            opts["features.bitrot"] = "on" if action == "enable" else "off"
            opts["features.scrub"] = "Active" if action == "enable" else "Inactive"
            return CommandOutput("volume bitrot: success")
        if not enabled:
            return rejected(f"volume bitrot: failed: Bitrot is not enabled on volume {name}")
        value = args[4]
        if action == "scrub":
            if value in ("pause", "resume"):
                opts["features.scrub"] = "Inactive" if value == "pause" else "Active"
        else:
            opts[f"features.{action}"] = value
        return CommandOutput("volume bitrot: success")

    def _transition(self, name, verb, allowed, target, force=False) -> CommandOutput:
        vol = self.volumes.get(name)
        if vol is None:
            return rejected(f"volume {verb}: {name}: failed: Volume {name} does not exist")
        if vol["state"] not in allowed and not (force and verb == "start"):
            return rejected(
                f"volume {verb}: {name}: failed: Volume {name} is {vol['state'].lower()}"
            )
        vol["state"] = target
        return CommandOutput(f"volume {verb}: {name}: success")

    def render_pool_list(self) -> str:
        lines = ["UUID\t\t\t\t\tHostname \tState"]
        for peer_uuid, (address, state) in self.peers.items():
            lines.append(f"{peer_uuid}\t{address}\t{state}")
        return "\n".join(lines) + "\n"

    def render_info(self, names: Sequence[str]) -> str:
        lines: List[str] = []
        for name in names:
            vol = self.volumes[name]
            n = len(vol["bricks"])
            count = str(n)
            if vol["replica"] > 1:
                count = f"{n // vol['replica']} x {vol['replica']} = {n}"
            lines += [
                "",
                f"Volume Name: {name}",
                f"Type: {vol['type']}",
                f"Volume ID: {vol['id']}",
                f"Status: {vol['state']}",
                "Snapshot Count: 0",
                f"Number of Bricks: {count}",
                "Transport-type: tcp",
                "Bricks:",
            ]
            lines += [f"Brick{i}: {b}" for i, b in enumerate(vol["bricks"], 1)]
            if vol["options"]:
                lines.append("Options Reconfigured:")
                lines += [f"{k}: {v}" for k, v in vol["options"].items()]
        return "\n".join(lines) + "\n"

    def render_quota(self, name: str) -> str:
        lines = [
            "                  Path                   Hard-limit  Soft-limit      Used  Available  Soft-limit exceeded? Hard-limit exceeded?",
            "-" * 124,
        ]
        for path, (limit, used) in sorted(self.volumes[name]["quotas"].items()):
            if limit.isdigit():
                limit += "Bytes"
            lines.append(f"{path}  {limit}  80%(0Bytes)  {used}  {limit}  No  No")
        return "\n".join(lines) + "\n"

    def render_rebalance(self, *states: str) -> str:
        lines = [
            "Node Rebalanced-files size scanned failures skipped status run time in h:m:s",
            "--------- ----------- ----------- ----------- ----------- ----------- ------------ --------------",
        ]
        for i, state in enumerate(states):
            node = "localhost" if i == 0 else f"10.0.0.{i + 1}"
            lines.append(f"{node} 1 1.0KB 2 0 0 {state} 0:00:01")
        lines.append("volume rebalance: success")
        return "\n".join(lines) + "\n"

    def render_status_detail(self, name: str) -> str:
        online = "Y" if self.brick_online else "N"
        lines = [f"Status of volume: {name}"]
        for i, brick in enumerate(self.volumes[name]["bricks"]):
            lines += [
                "-" * 78,
                f"Brick                : Brick {brick}",
                f"TCP Port             : {49152 + i}",
                "RDMA Port            : 0",
                f"Online               : {online}",
                f"Pid                  : {4000 + i}",
                "File System          : xfs",
                "Disk Space Free      : 9.5GB",
                "Total Disk Space     : 10.0GB",
            ]
        return "\n".join(lines) + "\n"

    def render_status(self, name: str) -> str:
        online = "Y" if self.brick_online else "N"
        lines = [
            f"Status of volume: {name}",
            "Gluster process                             TCP Port  RDMA Port  Online  Pid",
            "-" * 78,
        ]
        for i, brick in enumerate(self.volumes[name]["bricks"]):
            pid = str(4000 + i) if self.brick_online else "N/A"
            port = str(49152 + i) if self.brick_online else "N/A"
            lines.append(f"Brick {brick:<38} {port:<9} 0          {online}       {pid}")
        lines += [
            f"Self-heal Daemon on {self.local}             N/A       N/A        Y       5001",
            "",
            f"Task Status of Volume {name}",
            "-" * 78,
            "There are no active volume tasks",
        ]
        return "\n".join(lines) + "\n"


class ClientTestCase(unittest.TestCase):

    def setUp(self):
        self.loop = asyncio.new_event_loop()

    def tearDown(self):
        self.loop.close()

    async def connect(self, executor: NodeExecutor, nodes=None, **options) -> Client:
        opts = dict(
            dont_randomize=True,
            retry_time_wait=0,
            retry_jitter=0,
            poll_interval=0.01,
            probe_timeout=0.2,
            operation_timeout=0.5,
            refresh=False,
        )
        opts.update(options)
        gm = Client()
        await gm.connect(nodes or ["10.0.0.1"], executor=executor, **opts)
        return gm
