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
Defines the abstract interface for a keyed, asynchronous update lock.

This module provides the `UpdateLockInterface` abstract base class, the
contract for serializing read-modify-write cycles against a shared remote
document. Callers never touch lock state directly; they hand a transform to
`with_lock()` and receive the transform's result once their turn has come.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

Document = Any
Transform = Callable[[Optional[Document]], Union[Document, Awaitable[Document]]]


class LockError(Exception):
    """Base exception for all lock-related errors."""
    pass


class InvalidArgumentError(LockError):
    """Raised when a caller passes a bad key or a non-callable transform."""
    pass


class LockNotHeldError(LockError):
    """Raised when a write is attempted with a stale or missing lock token."""
    pass


class LockTimeoutError(LockError):
    """Raised when a transform does not complete within the configured timeout."""
    pass


class UpdateLockInterface(ABC):
    """
    An interface for a per-key update lock with a FIFO queue of waiters.

    For a given key at most one fetch-transform-write cycle is in flight at any
    time. Concurrent callers for the same key are queued and served in arrival
    order; callers for different keys never wait on each other.
    """

    @abstractmethod
    async def with_lock(self, key, transform: Transform) -> Document:
        """
        Runs `transform` against the current document for `key` under the lock.

        If the key is free, the current document is fetched, passed to
        `transform`, and the transform's result is written back. If the key is
        locked, the call is queued and completes once its own cycle has run.

        Invalid arguments are rejected before the first suspension point, so a
        failing call never touches lock state or the store.

        Args:
            key: Identifies the document and the update stream to serialize.
            transform: A function (sync or async) mapping the current document
                       (or None if none exists yet) to the new document.

        Returns:
            The value returned by `transform`.

        Raises:
            InvalidArgumentError: If `key` or `transform` is invalid.
            LockNotHeldError: If the lock token was invalidated before the write.
            LockTimeoutError: If a transform timeout is configured and exceeded.
        """
        pass
