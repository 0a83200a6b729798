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

from dataclasses import dataclass, field
import os
from typing import Any, Dict, List, Optional

import yaml

STORE_BOSH = "bosh"
STORE_GCS = "gcs"
STORE_MEMORY = "memory"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ["true", "1"]


@dataclass
class DirectorConfig:
    """
    Connection settings for a single BOSH director.
    """
    name: str
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    skip_ssl_validation: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "DirectorConfig":
        if not raw.get("name") or not raw.get("url"):
            raise ValueError(f"Director config requires a name and a url, got: {sorted(raw)}")
        return cls(
            name=raw["name"],
            url=raw["url"],
            username=raw.get("username"),
            password=raw.get("password"),
            skip_ssl_validation=bool(raw.get("skip_ssl_validation", False)),
        )


def load_directors(path: str) -> List[DirectorConfig]:
    """Loads director definitions from the `directors:` list of a YAML file."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return [DirectorConfig.from_dict(entry) for entry in raw.get("directors", [])]


@dataclass
class ServiceConfig:
    """
    Configuration for the cloud config update service.
    """
    store: str = STORE_MEMORY
    directors: List[DirectorConfig] = field(default_factory=list)
    bucket: Optional[str] = None
    prefix: str = "cloud-configs"
    transform_timeout_sec: Optional[float] = None

    def get_director(self, name: str) -> Optional[DirectorConfig]:
        return next((d for d in self.directors if d.name == name), None)

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """
        Creates a ServiceConfig instance from environment variables.
        """
        directors: List[DirectorConfig] = []
        directors_path = os.environ.get("BOSH_DIRECTORS_CONFIG")
        if directors_path:
            directors.extend(load_directors(directors_path))
        if os.environ.get("BOSH_DIRECTOR_URL"):
            directors.append(DirectorConfig(
                name=os.environ.get("BOSH_DIRECTOR_NAME", "bosh"),
                url=os.environ["BOSH_DIRECTOR_URL"],
                username=os.environ.get("BOSH_DIRECTOR_USERNAME"),
                password=os.environ.get("BOSH_DIRECTOR_PASSWORD"),
                skip_ssl_validation=_env_flag("BOSH_DIRECTOR_SKIP_SSL_VALIDATION"),
            ))

        timeout = os.environ.get("CLOUD_CONFIG_TRANSFORM_TIMEOUT_SEC")
        return cls(
            store=os.environ.get("CLOUD_CONFIG_STORE", STORE_BOSH if directors else STORE_MEMORY).lower(),
            directors=directors,
            bucket=os.environ.get("CLOUD_CONFIG_BUCKET"),
            prefix=os.environ.get("CLOUD_CONFIG_PREFIX", "cloud-configs"),
            transform_timeout_sec=float(timeout) if timeout else None,
        )
