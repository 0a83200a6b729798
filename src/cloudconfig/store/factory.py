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

from typing import Optional
from google.cloud import storage

from ..config import STORE_BOSH, STORE_GCS, STORE_MEMORY, ServiceConfig
from .interface import DocumentStore
from .bosh import BoshDirectorStore
from .gcs import GCSDocumentStore
from .fake import FakeDocumentStore

class DocumentStoreFactory:
    def __init__(self, config: ServiceConfig, client: Optional[storage.Client] = None):
        self._config = config
        self._client = client

    def create_store(self) -> DocumentStore:
        if self._config.store == STORE_BOSH:
            if not self._config.directors:
                raise ValueError("The bosh store requires at least one configured director.")
            return BoshDirectorStore(self._config.directors)
        if self._config.store == STORE_GCS:
            if not self._config.bucket:
                raise ValueError("The gcs store requires CLOUD_CONFIG_BUCKET to be set.")
            client = self._client or storage.Client()
            return GCSDocumentStore(client.bucket(self._config.bucket), prefix=self._config.prefix)
        if self._config.store == STORE_MEMORY:
            # Local development only, documents are lost on restart
            return FakeDocumentStore()
        raise ValueError(f"Unknown cloud config store '{self._config.store}'.")
