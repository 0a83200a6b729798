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
Implementation of the document store using Google Cloud Storage.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml
from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from ..lock.data import CloudConfigKey
from ..lock.interface import Document
from .interface import DocumentStore, TransportError, UnauthorizedError

logger = logging.getLogger(__name__)


class GCSDocumentStore(DocumentStore):
    """
    Keeps each cloud config as a YAML object in a GCS bucket.

    The object for a key lives at `<prefix>/<director_name>/<config_name>.yml`.
    GCS only provides the storage; serialization of concurrent updates is the
    job of the lock in front of this store.
    """

    def __init__(self, bucket: storage.Bucket, prefix: str = "cloud-configs"):
        """
        Initializes the GCSDocumentStore.

        Args:
            bucket: The GCS bucket holding the documents.
            prefix: Object name prefix under which documents are stored.
        """
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    @classmethod
    def from_path(
        cls, gcs_path: str, client: Optional[storage.Client] = None
    ) -> "GCSDocumentStore":
        """
        Creates a GCSDocumentStore from a GCS path string.

        Example:
            store = GCSDocumentStore.from_path("gs://my-bucket/cloud-configs")
        """
        if not client:
            client = storage.Client()

        parsed_path = urlparse(gcs_path)
        bucket_name = parsed_path.netloc
        prefix = parsed_path.path.strip("/")

        if parsed_path.scheme != "gs" or not bucket_name:
            raise ValueError(
                f'Invalid GCS path "{gcs_path}". Path must be in the format "gs://<bucket_name>[/<prefix>]".'
            )

        return cls(bucket=client.bucket(bucket_name), prefix=prefix)

    def blob_name(self, key: CloudConfigKey) -> str:
        name = f"{key.director_name}/{key.config_name}.yml"
        return f"{self._prefix}/{name}" if self._prefix else name

    def _translate_error(self, key: CloudConfigKey, e: Exception) -> Exception:
        if isinstance(e, (gcs_exceptions.Unauthorized, gcs_exceptions.Forbidden)):
            return UnauthorizedError(f"Access to cloud config {key} denied: {e}")
        return TransportError(f"Error accessing cloud config {key} in GCS: {e}")

    async def fetch(self, key: CloudConfigKey) -> Optional[Document]:
        blob = self._bucket.blob(self.blob_name(key))
        try:
            content = blob.download_as_bytes()
        except gcs_exceptions.NotFound:
            # No version written yet.
            return None
        except gcs_exceptions.GoogleAPICallError as e:
            raise self._translate_error(key, e)

        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise TransportError(f"Cloud config {key} in GCS is not valid YAML: {e}")

    async def write(self, key: CloudConfigKey, document: Document) -> Dict[str, Any]:
        content = document if isinstance(document, str) else yaml.safe_dump(document)
        blob = self._bucket.blob(self.blob_name(key))
        try:
            blob.upload_from_string(content, content_type="application/x-yaml")
        except gcs_exceptions.GoogleAPICallError as e:
            raise self._translate_error(key, e)
        logger.info(f"Stored cloud config {key} at generation {blob.generation}")
        return {"name": key.config_name, "generation": blob.generation}
