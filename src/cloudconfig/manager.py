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

import logging
from typing import Any, Dict, List, Optional

from .config import ServiceConfig
from .lock.data import DEFAULT_CLOUD_CONFIG_NAME, CloudConfigKey
from .lock.interface import Document, InvalidArgumentError, Transform
from .lock.keyed import KeyedUpdateLock, LockRegistry
from .store.fake import FakeDocumentStore
from .store.interface import DocumentStore

logger = logging.getLogger(__name__)

class CloudConfigManager:
    """
    Serializes updates to BOSH cloud configs.

    Every update is a read-modify-write cycle run under a per-config lock, so
    concurrent callers touching the same cloud config never overwrite each
    other's changes.
    """
    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        config: Optional[ServiceConfig] = None,
        registry: Optional[LockRegistry] = None,
    ):
        self.config = config or ServiceConfig()
        self.store = store or FakeDocumentStore()
        self.lock = KeyedUpdateLock(
            self.store,
            registry=registry,
            transform_timeout_sec=self.config.transform_timeout_sec,
        )

    def _key(self, director_name: str, config_name: Optional[str]) -> CloudConfigKey:
        if not director_name:
            raise InvalidArgumentError("Director name required for this operation.")
        return CloudConfigKey(director_name, config_name or DEFAULT_CLOUD_CONFIG_NAME)

    async def fetch_cloud_config_and_update(
        self,
        director_name: str,
        config_name: Optional[str],
        update_handler: Transform,
    ) -> Document:
        """
        Fetches the cloud config, applies `update_handler` to it and writes the
        result back, all under the lock for that cloud config.

        Returns the value produced by `update_handler`.
        """
        key = self._key(director_name, config_name)
        return await self.lock.with_lock(key, update_handler)

    async def get_cloud_config(self, director_name: str, config_name: Optional[str] = None) -> Optional[Document]:
        """Reads the latest cloud config without taking the lock."""
        return await self.store.fetch(self._key(director_name, config_name))

    async def merge_cloud_config(
        self, director_name: str, config_name: Optional[str], patch: Dict[str, Any]
    ) -> Document:
        """Shallow-merges `patch` into the cloud config under the lock."""
        if not isinstance(patch, dict):
            raise InvalidArgumentError("Cloud config patch must be a mapping.")
        key = self._key(director_name, config_name)

        def apply_patch(current: Optional[Document]) -> Document:
            if current is None:
                current = {}
            if not isinstance(current, dict):
                raise InvalidArgumentError(
                    f"Cloud config {key} is not a mapping and cannot be merged."
                )
            merged = dict(current)
            merged.update(patch)
            return merged

        return await self.fetch_cloud_config_and_update(director_name, config_name, apply_patch)

    def lock_status(self) -> List[Dict[str, Any]]:
        """Diagnostic snapshot of every cloud config lock seen so far."""
        return [state.describe(identity) for identity, state in self.lock.registry.items()]

    async def shutdown(self):
        """Lets queued updates finish and releases store resources."""
        await self.lock.wait_for_outstanding()
        aclose = getattr(self.store, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Cloud config manager shut down.")
