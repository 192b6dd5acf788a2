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
from typing import List, Union

from .aio.client import Client


async def connect(
    nodes: Union[str, List[str]] = ["localhost"], **options
) -> Client:
    """
    :param nodes: Cluster nodes commands are sent to.
    :param options: Client connect options.

    ::

        import asyncio
        import glustermgmt

        async def main():
            gm = await glustermgmt.connect(['10.0.0.1', '10.0.0.2'])
            for vol in gm.volumes():
                print(vol.name, vol.state.value)
            await gm.close()

        if __name__ == '__main__':
            asyncio.run(main())

    """
    gm = Client()
    await gm.connect(nodes, **options)
    return gm
