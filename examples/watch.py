import asyncio
import signal

import glustermgmt
from glustermgmt.errors import Error

from common import args


async def main():
    async def change_cb(changes):
        for change in changes:
            print(change)

    async def error_cb(e):
        print(f'There was an error: {e}')

    arguments, _ = args.get_args("Print topology changes as they happen.")
    gm = await glustermgmt.connect(
        arguments.nodes,
        executor=args.get_executor(arguments),
        change_cb=change_cb,
        error_cb=error_cb,
    )

    stop = asyncio.Event()
    for sig in ('SIGINT', 'SIGTERM'):
        asyncio.get_running_loop().add_signal_handler(getattr(signal, sig), stop.set)

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), 10)
        except asyncio.TimeoutError:
            try:
                await gm.refresh()
            except Error as e:
                print(e)
    await gm.close()

if __name__ == '__main__':
    asyncio.run(main())
