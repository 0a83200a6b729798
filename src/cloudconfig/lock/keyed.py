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
In-process implementation of the keyed update lock.
"""
import asyncio
import inspect
import logging
import time
from typing import Callable, Dict, Iterator, Optional, Set, Tuple
from uuid import uuid4

from .data import CloudConfigKey, LockState, PendingRequest
from .interface import (
    Document,
    InvalidArgumentError,
    LockNotHeldError,
    LockTimeoutError,
    Transform,
    UpdateLockInterface,
)

logger = logging.getLogger(__name__)


def _new_token() -> str:
    return str(uuid4())


class LockRegistry:
    """
    Maps key identities to their LockState. Entries are created on first use
    and never evicted.
    """

    def __init__(self):
        self._states: Dict[str, LockState] = {}

    def get_or_create(self, identity: str) -> LockState:
        state = self._states.get(identity)
        if state is None:
            state = LockState()
            self._states[identity] = state
        return state

    def get(self, identity: str) -> Optional[LockState]:
        return self._states.get(identity)

    def items(self) -> Iterator[Tuple[str, LockState]]:
        return iter(list(self._states.items()))

    def __contains__(self, identity: str) -> bool:
        return identity in self._states

    def __len__(self) -> int:
        return len(self._states)


class KeyedUpdateLock(UpdateLockInterface):
    """
    Serializes fetch-transform-write cycles per key against a DocumentStore.

    **Core Mechanism**

    Each key owns a LockState in the registry. A caller that finds the key
    free takes the lock, stamps it with a fresh token and runs its cycle. The
    write is only forwarded to the store if the token captured at acquisition
    still matches the state's token.

    **Queueing and Drain**

    Callers that find the key locked are appended to the key's FIFO queue and
    wait on a future. After a successful write the lock is released and the
    head of the queue is locked for immediately, in the same synchronous step,
    so no new arrival can overtake it. A background task then runs queued
    cycles one after another until the queue is empty.

    A failed cycle (fetch, transform or write) releases the lock and raises to
    its own caller only. It does not advance the queue: waiters stay queued
    until a later successful cycle for the same key drains them.
    """

    def __init__(
        self,
        store,
        registry: Optional[LockRegistry] = None,
        id_generator: Callable[[], str] = _new_token,
        transform_timeout_sec: Optional[float] = None,
    ):
        """
        Initializes the KeyedUpdateLock.

        Args:
            store: The DocumentStore holding the documents being updated.
            registry: The lock state registry. A private one is created if omitted.
            id_generator: Produces a fresh, unique lock token per acquisition.
            transform_timeout_sec: Upper bound on a single transform. None means
                                   transforms may run indefinitely.
        """
        self._store = store
        self._registry = registry if registry is not None else LockRegistry()
        self._id_generator = id_generator
        self._transform_timeout_sec = transform_timeout_sec
        self._drain_tasks: Set[asyncio.Task] = set()

    @property
    def registry(self) -> LockRegistry:
        return self._registry

    async def with_lock(self, key: CloudConfigKey, transform: Transform) -> Document:
        self._validate(key, transform)
        state = self._registry.get_or_create(key.identity)

        if state.locked:
            logger.info(
                f"Cloud config {key} currently locked, queueing update request "
                f"(queued: {state.queued_count + 1})."
            )
            future = asyncio.get_running_loop().create_future()
            state.waiters.append(PendingRequest(transform=transform, future=future))
            return await future

        token = self._acquire(state)
        try:
            result = await self._run_cycle(key, state, token, transform)
        except BaseException:
            self._unlock(state)
            raise

        next_request, next_token = self._release_and_dequeue(key, state)
        if next_request is not None:
            self._start_drain(key, state, next_request, next_token)
        return result

    async def wait_for_outstanding(self) -> None:
        """Waits until every queued request that has been dequeued has completed."""
        while self._drain_tasks:
            await asyncio.gather(*list(self._drain_tasks), return_exceptions=True)

    def _validate(self, key, transform) -> None:
        if not isinstance(key, CloudConfigKey) or not key.director_name:
            raise InvalidArgumentError("Director name required for this operation.")
        if not key.config_name:
            raise InvalidArgumentError("Cloud config name required for this operation.")
        if not callable(transform):
            raise InvalidArgumentError(
                "Transform must be a function returning the modified cloud config."
            )

    def _acquire(self, state: LockState) -> str:
        token = self._id_generator()
        state.locked = True
        state.lock_created_at = time.time()
        state.lock_token = token
        return token

    def _unlock(self, state: LockState) -> None:
        state.locked = False
        state.lock_token = None

    async def _run_cycle(
        self, key: CloudConfigKey, state: LockState, token: str, transform: Transform
    ) -> Document:
        document = await self._store.fetch(key)
        result = await self._apply_transform(key, transform, document)
        await self._write_with_token(key, state, token, result)
        return result

    async def _apply_transform(
        self, key: CloudConfigKey, transform: Transform, document: Optional[Document]
    ) -> Document:
        result = transform(document)
        if not inspect.isawaitable(result):
            return result
        if self._transform_timeout_sec is None:
            return await result
        try:
            return await asyncio.wait_for(result, timeout=self._transform_timeout_sec)
        except asyncio.TimeoutError:
            raise LockTimeoutError(
                f"Transform for cloud config {key} did not complete within "
                f"{self._transform_timeout_sec} seconds."
            )

    async def _write_with_token(
        self, key: CloudConfigKey, state: LockState, token: str, document: Document
    ):
        if not state.locked or state.lock_token != token:
            if state.locked:
                message = (
                    f"Lock token {token} does not match the current lock token "
                    f"{state.lock_token} for cloud config {key}."
                )
            else:
                message = f"Updating cloud config {key} without holding the lock is not permitted."
            logger.error(f"Lock not held, cannot update cloud config: {message}")
            raise LockNotHeldError(message)

        logger.info(f"Updating cloud config {key}.")
        return await self._store.write(key, document)

    def _release_and_dequeue(
        self, key: CloudConfigKey, state: LockState
    ) -> Tuple[Optional[PendingRequest], Optional[str]]:
        """
        Releases the lock and, if a live waiter is queued, re-acquires it on
        that waiter's behalf. Returns the waiter and the token issued for it.
        """
        logger.info(
            f"Processing outstanding requests for {key}. Queued count: {state.queued_count}"
        )
        self._unlock(state)
        while state.waiters:
            request = state.waiters.popleft()
            # The caller stopped waiting (e.g. it was cancelled).
            if request.future.done():
                continue
            return request, self._acquire(state)
        return None, None

    def _start_drain(
        self, key: CloudConfigKey, state: LockState, request: PendingRequest, token: str
    ) -> None:
        task = asyncio.create_task(self._drain(key, state, request, token))
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def _drain(
        self,
        key: CloudConfigKey,
        state: LockState,
        request: Optional[PendingRequest],
        token: Optional[str],
    ) -> None:
        """Runs dequeued requests one after another until the queue is empty."""
        while request is not None:
            logger.info(f"Processing queued up request for cloud config {key}.")
            try:
                result = await self._run_cycle(key, state, token, request.transform)
            except asyncio.CancelledError:
                self._unlock(state)
                request.future.cancel()
                raise
            except Exception as e:
                logger.warning(f"Queued update for cloud config {key} failed: {e}")
                self._unlock(state)
                if not request.future.done():
                    request.future.set_exception(e)
                return

            if not request.future.done():
                request.future.set_result(result)
            request, token = self._release_and_dequeue(key, state)
