# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
This is an example script demonstrating how concurrent updates to the same
cloud config are serialized. It starts several "workers" that each add a VM
extension to one cloud config at the same time; every extension survives
because each read-modify-write cycle runs under the cloud config's lock.

**Prerequisites (BOSH director mode only):**

Set the director connection variables, for example:
    ```bash
    export BOSH_DIRECTOR_URL="https://10.0.0.6:25555"
    export BOSH_DIRECTOR_USERNAME="admin"
    export BOSH_DIRECTOR_PASSWORD="..."
    export BOSH_DIRECTOR_SKIP_SSL_VALIDATION=true
    ```

Without these variables the script uses an in-memory store.

**To Run:**

```bash
python3 example/concurrent_updates.py
```
"""
import asyncio
import logging

# Configure logging to see the lock's queueing messages
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

from src.cloudconfig.config import ServiceConfig
from src.cloudconfig.manager import CloudConfigManager
from src.cloudconfig.store.factory import DocumentStoreFactory

CONFIG_NAME = "example-vm-extensions"


async def worker(manager: CloudConfigManager, director_name: str, index: int):
    async def add_extension(cloud_config):
        cloud_config = cloud_config or {}
        extensions = cloud_config.setdefault("vm_extensions", [])
        extensions.append({"name": f"example-sg-{index}", "cloud_properties": {}})
        # Simulate slow work while holding the lock
        await asyncio.sleep(0.1)
        return cloud_config

    result = await manager.fetch_cloud_config_and_update(director_name, CONFIG_NAME, add_extension)
    print(f"Worker {index}: cloud config now has {len(result['vm_extensions'])} extensions")


async def main():
    config = ServiceConfig.from_env()
    manager = CloudConfigManager(store=DocumentStoreFactory(config).create_store(), config=config)
    director_name = config.directors[0].name if config.directors else "local"

    await asyncio.gather(*[worker(manager, director_name, i) for i in range(5)])

    print("\nFinal cloud config:")
    print(await manager.get_cloud_config(director_name, CONFIG_NAME))
    await manager.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
