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
Defines the abstract interface for the remote store holding cloud configs.

Stores know nothing about lock tokens; token validation happens in the lock
before `write()` is ever called. This allows for pluggable backends (the BOSH
director itself, a GCS bucket, or an in-memory fake for testing).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..lock.data import CloudConfigKey
from ..lock.interface import Document


class StoreError(Exception):
    """Base exception for all document store errors."""
    pass


class UpstreamFailureError(StoreError):
    """Raised when the remote store rejects or fails a request."""
    pass


class UnauthorizedError(UpstreamFailureError):
    """Raised when the remote store rejects our credentials."""
    pass


class TransportError(UpstreamFailureError):
    """Raised on network failures or unexpected responses from the remote store."""
    pass


class DocumentNotFoundError(UpstreamFailureError):
    """Raised when the remote store reports that the target does not exist."""
    pass


class DocumentStore(ABC):
    """
    An interface for reading and writing named cloud config documents.
    """

    @abstractmethod
    async def fetch(self, key: CloudConfigKey) -> Optional[Document]:
        """
        Returns the latest version of the document for `key`.

        Returns:
            The parsed document, or None if no version exists yet.

        Raises:
            UpstreamFailureError: If the store cannot be read.
        """
        pass

    @abstractmethod
    async def write(self, key: CloudConfigKey, document: Document) -> Dict[str, Any]:
        """
        Persists a new version of the document for `key`.

        Returns:
            The store's acknowledgement of the write.

        Raises:
            UpstreamFailureError: If the store rejects the write.
        """
        pass
