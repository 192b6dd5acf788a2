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

import argparse
import asyncio
import sys

import glustermgmt
from glustermgmt.aio.executor import HttpExecutor, LocalExecutor, TcpExecutor
from glustermgmt.errors import EX_OK, EX_USAGE, Error, PartialFailure


def show_usage():
    usage = """
gluster-volume [-n NODE ...] <command> [args]

Example:

gluster-volume -n 10.0.0.1 create v1 10.0.0.1:/bricks/b1 10.0.0.2:/bricks/b1 --type replicate --replica 2 --start
gluster-volume -n 10.0.0.1 status v1
gluster-volume -n 10.0.0.1 quota v1 limit /data 10GB
"""
    print(usage)


def parse_options(values):
    options = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"option '{value}' is not key=value")
        options[key] = val
    return options


def build_parser():
    parser = argparse.ArgumentParser(prog="gluster-volume")
    parser.add_argument('-n', '--nodes', nargs='*', default=["localhost"])
    parser.add_argument(
        '-e', '--executor', default="local", choices=["local", "http", "tcp"]
    )
    parser.add_argument('--sudo', action='store_true')
    parser.add_argument('--token', default="")
    parser.add_argument('--timeout', type=float, default=60)
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('list')
    status = sub.add_parser('status')
    status.add_argument('name')

    create = sub.add_parser('create')
    create.add_argument('name')
    create.add_argument('bricks', nargs='+')
    create.add_argument('--type', default="distribute")
    create.add_argument('--replica', type=int)
    create.add_argument('--arbiter', type=int)
    create.add_argument('--disperse', type=int)
    create.add_argument('--redundancy', type=int)
    create.add_argument('--transport', default="tcp")
    create.add_argument('-o', '--option', action='append')
    create.add_argument('--start', action='store_true')
    create.add_argument('--force', action='store_true')

    for name in ('start', 'stop'):
        p = sub.add_parser(name)
        p.add_argument('name')
        p.add_argument('--force', action='store_true')

    delete = sub.add_parser('delete')
    delete.add_argument('name')

    rebalance = sub.add_parser('rebalance')
    rebalance.add_argument('name')
    rebalance.add_argument('--fix-layout', action='store_true')
    rebalance.add_argument('--wait', action='store_true')

    set_opts = sub.add_parser('set')
    set_opts.add_argument('name')
    set_opts.add_argument('option', nargs='+')

    quota = sub.add_parser('quota')
    quota.add_argument('name')
    quota.add_argument('action', choices=["enable", "disable", "limit", "remove", "list"])
    quota.add_argument('path', nargs='?', default="/")
    quota.add_argument('size', nargs='?')

    bitrot = sub.add_parser('bitrot')
    bitrot.add_argument('name')
    bitrot.add_argument('action', help="enable, disable or a scrubber option")
    bitrot.add_argument('value', nargs='?')

    probe = sub.add_parser('probe')
    probe.add_argument('address')
    return parser


def get_executor(args):
    if args.executor == "http":
        return HttpExecutor(token=args.token or None)
    if args.executor == "tcp":
        return TcpExecutor()
    return LocalExecutor(sudo=args.sudo)


def print_volume(vol, bricks=()):
    print(f"{vol.name}: {vol.state} ({vol.type}, {len(vol.bricks)} bricks)")
    for brick in bricks:
        print(f"  {brick.key}: {brick.status}")
    for key, value in sorted(vol.options.items()):
        print(f"  {key} = {value}")


async def run_quota(gm, args):
    if args.action == "enable":
        print_volume(await gm.enable_quota(args.name))
    elif args.action == "disable":
        print_volume(await gm.disable_quota(args.name))
    elif args.action == "limit":
        if not args.size:
            raise argparse.ArgumentTypeError("quota limit needs a path and a size")
        print_volume(await gm.set_quota_limit(args.name, args.path, args.size))
    elif args.action == "remove":
        print_volume(await gm.remove_quota(args.name, args.path))
    else:
        for quota in await gm.quota_list(args.name):
            print(f"  {quota.path}: {quota.used} of {quota.hard_limit} bytes used")


async def run(args):

    async def error_cb(e):
        print("Error:", e, file=sys.stderr)

    gm = await glustermgmt.connect(
        args.nodes,
        executor=get_executor(args),
        error_cb=error_cb,
        operation_timeout=args.timeout,
        refresh=False,
    )
    try:
        if args.command == 'list':
            await gm.refresh()
            for vol in gm.volumes():
                print_volume(vol)
        elif args.command == 'status':
            vol, bricks = await gm.volume_status(args.name)
            print_volume(vol, bricks)
        elif args.command == 'create':
            vol = await gm.create_volume(
                args.name,
                args.type,
                args.bricks,
                parse_options(args.option),
                replica_count=args.replica,
                arbiter_count=args.arbiter,
                disperse_count=args.disperse,
                redundancy_count=args.redundancy,
                transport=args.transport,
                force=args.force,
                start=args.start,
            )
            print_volume(vol)
        elif args.command == 'start':
            print_volume(await gm.start_volume(args.name, force=args.force))
        elif args.command == 'stop':
            print_volume(await gm.stop_volume(args.name, force=args.force))
        elif args.command == 'delete':
            await gm.delete_volume(args.name)
            print(f"{args.name}: deleted")
        elif args.command == 'rebalance':
            handle = await gm.rebalance_volume(args.name, fix_layout=args.fix_layout)
            st = await handle.wait(args.timeout) if args.wait else await handle.status()
            for node in st.nodes:
                print(f"  {node.node}: {node.status} ({node.files} files)")
            print(f"{args.name}: rebalance {st.status}")
        elif args.command == 'set':
            print_volume(
                await gm.set_volume_options(args.name, parse_options(args.option))
            )
        elif args.command == 'quota':
            await run_quota(gm, args)
        elif args.command == 'bitrot':
            if args.action == "enable":
                vol = await gm.enable_bitrot(args.name)
            elif args.action == "disable":
                vol = await gm.disable_bitrot(args.name)
            else:
                vol = await gm.set_bitrot_option(args.name, args.action, args.value or "")
            print_volume(vol)
        elif args.command == 'probe':
            peer = await gm.probe_peer(args.address)
            print(f"{peer.address}: {peer.state} ({peer.uuid})")
    finally:
        await gm.close()
    return EX_OK


def main():
    parser = build_parser()
    args = parser.parse_args()
    if args.command is None:
        show_usage()
        sys.exit(EX_USAGE)
    try:
        code = asyncio.run(run(args))
    except PartialFailure as e:
        print(e, file=sys.stderr)
        print(f"completed: {', '.join(e.completed_steps)}", file=sys.stderr)
        code = e.exit_code
    except Error as e:
        print(e, file=sys.stderr)
        code = e.exit_code
    except argparse.ArgumentTypeError as e:
        print(e, file=sys.stderr)
        code = EX_USAGE
    sys.exit(code)


if __name__ == '__main__':
    main()
