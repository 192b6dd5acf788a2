import asyncio

import glustermgmt
from glustermgmt.errors import PeerUnreachable, ProbeTimeout

from common import args


async def main():
    async def error_cb(e):
        print(f'There was an error: {e}')

    parser_args, rest = args.get_args(
        "Add nodes to the cluster.", "Example: probe.py -n 10.0.0.1 10.0.0.2 10.0.0.3"
    )
    gm = await glustermgmt.connect(
        parser_args.nodes,
        executor=args.get_executor(parser_args),
        error_cb=error_cb,
    )

    for address in rest:
        try:
            peer = await gm.probe_peer(address)
            print(f'{address}: {peer.state.value} ({peer.uuid})')
        except ProbeTimeout as e:
            print(f'{address}: not connected yet, last state {e.last_state}')
        except PeerUnreachable as e:
            print(f'{address}: refused: {e.reason}')

    for peer in gm.peers():
        print(peer.uuid, peer.address, peer.state)
    await gm.close()

if __name__ == '__main__':
    asyncio.run(main())
