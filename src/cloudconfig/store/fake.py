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
In-memory implementation of the document store for testing purposes.
"""
import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..lock.data import CloudConfigKey
from ..lock.interface import Document
from .interface import DocumentStore

logger = logging.getLogger(__name__)


class FakeDocumentStore(DocumentStore):
    """
    A fake, in-memory document store that records every call it receives.
    """

    def __init__(
        self,
        documents: Optional[Dict[str, Document]] = None,
        fetch_delay_sec: float = 0,
        write_delay_sec: float = 0,
    ):
        self._documents: Dict[str, Document] = dict(documents or {})
        self._versions: Dict[str, int] = {}
        self.fetch_delay_sec = fetch_delay_sec
        self.write_delay_sec = write_delay_sec
        self.fetch_calls: List[str] = []
        self.write_calls: List[Tuple[str, Document]] = []
        # Ordered log of ("fetch" | "write", key identity) events.
        self.events: List[Tuple[str, str]] = []
        self._fail_next_fetch: Optional[Exception] = None
        self._fail_next_write: Optional[Exception] = None

    def fail_next_fetch(self, error: Exception):
        """Force the next fetch to raise `error`."""
        self._fail_next_fetch = error

    def fail_next_write(self, error: Exception):
        """Force the next write to raise `error`."""
        self._fail_next_write = error

    def get(self, identity: str) -> Optional[Document]:
        return copy.deepcopy(self._documents.get(identity))

    def version(self, identity: str) -> int:
        return self._versions.get(identity, 0)

    async def fetch(self, key: CloudConfigKey) -> Optional[Document]:
        self.fetch_calls.append(key.identity)
        self.events.append(("fetch", key.identity))
        if self.fetch_delay_sec:
            await asyncio.sleep(self.fetch_delay_sec)
        if self._fail_next_fetch is not None:
            error, self._fail_next_fetch = self._fail_next_fetch, None
            raise error
        return copy.deepcopy(self._documents.get(key.identity))

    async def write(self, key: CloudConfigKey, document: Document) -> Dict[str, Any]:
        self.write_calls.append((key.identity, copy.deepcopy(document)))
        self.events.append(("write", key.identity))
        if self.write_delay_sec:
            await asyncio.sleep(self.write_delay_sec)
        if self._fail_next_write is not None:
            error, self._fail_next_write = self._fail_next_write, None
            raise error
        self._documents[key.identity] = copy.deepcopy(document)
        self._versions[key.identity] = self.version(key.identity) + 1
        logger.debug(f"Stored cloud config {key} version {self._versions[key.identity]}")
        return {"name": key.config_name, "version": self._versions[key.identity]}
