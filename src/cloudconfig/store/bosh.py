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
Implementation of the document store using the BOSH director configs API.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
import yaml

from ..config import DirectorConfig
from ..lock.data import CloudConfigKey
from ..lock.interface import Document, InvalidArgumentError
from .interface import (
    DocumentNotFoundError,
    DocumentStore,
    TransportError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

CLOUD_CONFIG_TYPE = "cloud"


class DirectorNotFoundError(InvalidArgumentError):
    """Raised when a cloud config names a director that is not configured."""
    pass


class BoshDirectorStore(DocumentStore):
    """
    Reads and writes cloud configs through the `/configs` endpoint of one or
    more BOSH directors.

    Documents are exchanged as YAML inside the JSON envelope the director
    expects: `{"type": "cloud", "name": ..., "content": "<yaml>"}`. Each
    director gets its own HTTP client so that credentials and TLS settings
    never leak between directors.
    """

    def __init__(
        self,
        directors: List[DirectorConfig],
        timeout_sec: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initializes the BoshDirectorStore.

        Args:
            directors: The directors this store may talk to, looked up by name.
            timeout_sec: Timeout applied to every director request.
            transport: An optional httpx transport, used by tests.
        """
        self._directors = {d.name: d for d in directors}
        self._timeout_sec = timeout_sec
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}

    def get_director(self, name: str) -> DirectorConfig:
        director = self._directors.get(name)
        if director is None:
            raise DirectorNotFoundError(f"Director '{name}' is not configured.")
        return director

    def _client_for(self, director: DirectorConfig) -> httpx.AsyncClient:
        client = self._clients.get(director.name)
        if client is None:
            auth = None
            if director.username is not None:
                auth = httpx.BasicAuth(director.username, director.password or "")
            client = httpx.AsyncClient(
                base_url=director.url,
                auth=auth,
                verify=not director.skip_ssl_validation,
                timeout=self._timeout_sec,
                transport=self._transport,
            )
            self._clients[director.name] = client
        return client

    async def _request(
        self, director: DirectorConfig, method: str, url: str, expected_status: int, **kwargs
    ) -> httpx.Response:
        client = self._client_for(director)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise TransportError(f"Network error talking to director {director.name}: {e}")

        if response.status_code == expected_status:
            return response
        if response.status_code in (401, 403):
            raise UnauthorizedError(
                f"Director {director.name} rejected the request: HTTP {response.status_code}"
            )
        if response.status_code == 404:
            raise DocumentNotFoundError(f"Director {director.name} returned HTTP 404 for {url}")
        raise TransportError(
            f"Director {director.name} returned HTTP {response.status_code} "
            f"(expected {expected_status}): {response.text}"
        )

    async def fetch(self, key: CloudConfigKey) -> Optional[Document]:
        director = self.get_director(key.director_name)
        response = await self._request(
            director,
            "GET",
            "/configs",
            200,
            params={"type": CLOUD_CONFIG_TYPE, "name": key.config_name, "latest": "true"},
        )
        try:
            configs = response.json()
            if not configs:
                return None
            return yaml.safe_load(configs[0]["content"])
        except (ValueError, KeyError, IndexError, yaml.YAMLError) as e:
            raise TransportError(f"Malformed cloud config response from director {director.name}: {e}")

    async def write(self, key: CloudConfigKey, document: Document) -> Dict[str, Any]:
        director = self.get_director(key.director_name)
        content = document if isinstance(document, str) else yaml.safe_dump(document)
        logger.info(f"Updating cloud config {key} with:\n{content}")
        response = await self._request(
            director,
            "POST",
            "/configs",
            201,
            params={"redact": "false"},
            json={"type": CLOUD_CONFIG_TYPE, "name": key.config_name, "content": content},
        )
        try:
            return response.json() if response.content else {}
        except ValueError:
            return {"raw": response.text}

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
