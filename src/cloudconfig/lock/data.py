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
Data classes describing lock keys and the in-memory state of a keyed lock.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from .interface import Transform

DEFAULT_CLOUD_CONFIG_NAME = "default"


@dataclass(frozen=True)
class CloudConfigKey:
    """
    Names a single serializable update stream: one cloud config on one director.
    """

    director_name: str
    config_name: str = DEFAULT_CLOUD_CONFIG_NAME

    @property
    def identity(self) -> str:
        return f"{self.director_name}_{self.config_name}"

    def __str__(self) -> str:
        return self.identity


@dataclass
class PendingRequest:
    """A queued caller: its transform and the one-shot channel for its result."""

    transform: Transform
    future: asyncio.Future


@dataclass
class LockState:
    """
    Mutable lock state for one key. Created on first use and reused for the
    lifetime of the owning lock; never removed.
    """

    locked: bool = False
    lock_token: Optional[str] = None
    lock_created_at: Optional[float] = None
    waiters: Deque[PendingRequest] = field(default_factory=deque)

    @property
    def queued_count(self) -> int:
        return len(self.waiters)

    def describe(self, identity: str) -> Dict[str, Any]:
        """Diagnostic view of the state, excluding the lock token."""
        return {
            "key": identity,
            "locked": self.locked,
            "lockCreatedAt": self.lock_created_at,
            "queued": self.queued_count,
        }
