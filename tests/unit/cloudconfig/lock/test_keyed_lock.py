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

import asyncio
import pytest

from src.cloudconfig.lock.data import CloudConfigKey
from src.cloudconfig.lock.interface import (
    InvalidArgumentError,
    LockNotHeldError,
    LockTimeoutError,
)
from src.cloudconfig.lock.keyed import KeyedUpdateLock, LockRegistry
from src.cloudconfig.store.fake import FakeDocumentStore
from src.cloudconfig.store.interface import TransportError

KEY = CloudConfigKey("dirA", "cfgX")


def _counter_transform(doc):
    count = (doc or {}).get("count", 0)
    return {"count": count + 1}


async def _start_blocking_holder(lock, release: asyncio.Event, outcome=None):
    """Starts a holder whose transform blocks until `release` is set."""
    async def blocking(doc):
        await release.wait()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome if outcome is not None else {"holder": True}

    task = asyncio.create_task(lock.with_lock(KEY, blocking))
    await asyncio.sleep(0)  # let the holder take the lock
    assert lock.registry.get(KEY.identity).locked
    return task


@pytest.mark.asyncio
async def test_with_lock_fetches_transforms_and_writes():
    store = FakeDocumentStore({"dirA_cfgX": {"a": 1}})
    lock = KeyedUpdateLock(store, id_generator=lambda: "token-1")
    seen = {}

    async def transform(doc):
        seen["doc"] = doc
        seen["token"] = lock.registry.get(KEY.identity).lock_token
        return {"a": 2}

    result = await lock.with_lock(KEY, transform)

    assert result == {"a": 2}
    assert seen == {"doc": {"a": 1}, "token": "token-1"}
    assert store.fetch_calls == ["dirA_cfgX"]
    assert store.write_calls == [("dirA_cfgX", {"a": 2})]
    assert store.get("dirA_cfgX") == {"a": 2}


@pytest.mark.asyncio
async def test_sync_transform_and_missing_document():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)

    result = await lock.with_lock(KEY, _counter_transform)

    assert result == {"count": 1}
    assert store.get(KEY.identity) == {"count": 1}


@pytest.mark.asyncio
async def test_release_with_empty_queue_clears_token_and_reuses_state():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)

    await lock.with_lock(KEY, _counter_transform)
    state = lock.registry.get(KEY.identity)
    assert state.locked is False
    assert state.lock_token is None
    assert state.queued_count == 0
    assert state.lock_created_at is not None

    await lock.with_lock(KEY, _counter_transform)
    assert lock.registry.get(KEY.identity) is state
    assert len(lock.registry) == 1
    assert store.get(KEY.identity) == {"count": 2}


@pytest.mark.asyncio
async def test_cycles_for_same_key_are_serialized():
    store = FakeDocumentStore(fetch_delay_sec=0.01, write_delay_sec=0.01)
    lock = KeyedUpdateLock(store)
    active = 0
    max_active = 0

    async def transform(doc):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        active -= 1
        return _counter_transform(doc)

    results = await asyncio.gather(*[lock.with_lock(KEY, transform) for _ in range(5)])

    assert max_active == 1
    assert [r["count"] for r in results] == [1, 2, 3, 4, 5]
    assert store.events == [("fetch", KEY.identity), ("write", KEY.identity)] * 5
    assert store.get(KEY.identity) == {"count": 5}


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)

    other = CloudConfigKey("dirB", "cfgX")
    result = await asyncio.wait_for(lock.with_lock(other, _counter_transform), timeout=1)

    assert result == {"count": 1}
    assert not holder.done()
    release.set()
    assert await holder == {"holder": True}


@pytest.mark.asyncio
async def test_queued_requests_run_in_arrival_order():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)
    order = []

    def make_transform(name):
        async def transform(doc):
            order.append(name)
            return {"last": name}
        return transform

    waiters = [asyncio.create_task(lock.with_lock(KEY, make_transform(n))) for n in ("t1", "t2", "t3")]
    await asyncio.sleep(0)
    assert lock.registry.get(KEY.identity).queued_count == 3
    assert order == []

    release.set()
    await holder
    results = await asyncio.gather(*waiters)

    assert order == ["t1", "t2", "t3"]
    assert results == [{"last": "t1"}, {"last": "t2"}, {"last": "t3"}]
    assert store.get(KEY.identity) == {"last": "t3"}
    state = lock.registry.get(KEY.identity)
    assert state.locked is False
    assert state.lock_token is None


@pytest.mark.asyncio
async def test_new_arrival_does_not_overtake_queued_waiter():
    store = FakeDocumentStore(fetch_delay_sec=0.01)
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)
    order = []

    async def queued(doc):
        order.append("queued")
        return {}

    async def late(doc):
        order.append("late")
        return {}

    waiter = asyncio.create_task(lock.with_lock(KEY, queued))
    await asyncio.sleep(0)
    release.set()
    await holder
    # The lock is already held on behalf of the dequeued waiter.
    assert lock.registry.get(KEY.identity).locked
    await lock.with_lock(KEY, late)
    await waiter

    assert order == ["queued", "late"]


@pytest.mark.asyncio
async def test_stale_token_is_rejected_without_writing():
    store = FakeDocumentStore({"dirA_cfgX": {"a": 1}})
    lock = KeyedUpdateLock(store)

    async def steal(doc):
        lock.registry.get(KEY.identity).lock_token = "stolen"
        return {"a": 2}

    with pytest.raises(LockNotHeldError, match="does not match"):
        await lock.with_lock(KEY, steal)

    assert store.write_calls == []
    assert store.get(KEY.identity) == {"a": 1}
    state = lock.registry.get(KEY.identity)
    assert state.locked is False
    assert state.lock_token is None


@pytest.mark.asyncio
async def test_dequeued_waiter_with_replaced_token_is_rejected():
    class TokenReplacingLock(KeyedUpdateLock):
        def _start_drain(self, key, state, request, token):
            super()._start_drain(key, state, request, token)
            # Replace the token issued for the waiter before its cycle starts.
            state.lock_token = "stolen"

    store = FakeDocumentStore()
    tokens = iter(["holder", "waiter"])
    lock = TokenReplacingLock(store, id_generator=lambda: next(tokens))
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)
    waiter = asyncio.create_task(lock.with_lock(KEY, lambda doc: {"waiter": True}))
    await asyncio.sleep(0)

    release.set()
    assert await holder == {"holder": True}
    with pytest.raises(LockNotHeldError, match="does not match"):
        await asyncio.wait_for(waiter, timeout=1)

    assert store.write_calls == [(KEY.identity, {"holder": True})]
    assert store.get(KEY.identity) == {"holder": True}
    state = lock.registry.get(KEY.identity)
    assert state.locked is False
    assert state.lock_token is None


@pytest.mark.asyncio
async def test_write_after_lock_reset_is_rejected():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)

    async def reset(doc):
        state = lock.registry.get(KEY.identity)
        state.locked = False
        state.lock_token = None
        return {"a": 2}

    with pytest.raises(LockNotHeldError, match="without holding the lock"):
        await lock.with_lock(KEY, reset)
    assert store.write_calls == []


@pytest.mark.asyncio
async def test_holder_transform_failure_does_not_advance_queue():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release, outcome=RuntimeError("transform failed"))
    waiter = asyncio.create_task(lock.with_lock(KEY, _counter_transform))
    await asyncio.sleep(0)

    release.set()
    with pytest.raises(RuntimeError, match="transform failed"):
        await holder
    await asyncio.sleep(0.05)

    # Expected but fragile: the waiter stays queued after the holder failed.
    state = lock.registry.get(KEY.identity)
    assert not waiter.done()
    assert state.locked is False
    assert state.lock_token is None
    assert state.queued_count == 1
    assert store.write_calls == []

    # The next successful cycle drains it.
    assert await lock.with_lock(KEY, _counter_transform) == {"count": 1}
    assert await asyncio.wait_for(waiter, timeout=1) == {"count": 2}


@pytest.mark.asyncio
async def test_write_failure_propagates_and_leaves_waiter_queued():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)
    waiter = asyncio.create_task(lock.with_lock(KEY, _counter_transform))
    await asyncio.sleep(0)

    store.fail_next_write(TransportError("director unavailable"))
    release.set()
    with pytest.raises(TransportError, match="director unavailable"):
        await holder
    await asyncio.sleep(0.05)

    assert not waiter.done()
    assert lock.registry.get(KEY.identity).queued_count == 1

    await lock.with_lock(KEY, _counter_transform)
    await asyncio.wait_for(waiter, timeout=1)


@pytest.mark.asyncio
async def test_fetch_failure_propagates_to_caller():
    store = FakeDocumentStore()
    store.fail_next_fetch(TransportError("connection refused"))
    lock = KeyedUpdateLock(store)

    with pytest.raises(TransportError):
        await lock.with_lock(KEY, _counter_transform)

    assert lock.registry.get(KEY.identity).locked is False
    assert store.write_calls == []


@pytest.mark.asyncio
async def test_failed_waiter_gets_its_error_and_stops_the_drain():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)

    async def failing(doc):
        raise ValueError("bad update")

    first = asyncio.create_task(lock.with_lock(KEY, failing))
    second = asyncio.create_task(lock.with_lock(KEY, _counter_transform))
    await asyncio.sleep(0)

    release.set()
    await holder
    with pytest.raises(ValueError, match="bad update"):
        await first
    await lock.wait_for_outstanding()

    assert not second.done()
    assert lock.registry.get(KEY.identity).queued_count == 1

    await lock.with_lock(KEY, _counter_transform)
    await asyncio.wait_for(second, timeout=1)


@pytest.mark.asyncio
async def test_cancelled_waiter_is_skipped():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    release = asyncio.Event()
    holder = await _start_blocking_holder(lock, release)
    calls = []

    async def record(doc):
        calls.append("cancelled")
        return {}

    cancelled = asyncio.create_task(lock.with_lock(KEY, record))
    survivor = asyncio.create_task(lock.with_lock(KEY, _counter_transform))
    await asyncio.sleep(0)
    cancelled.cancel()

    release.set()
    await holder
    assert await asyncio.wait_for(survivor, timeout=1) == {"count": 1}
    assert calls == []
    assert cancelled.cancelled()


@pytest.mark.asyncio
async def test_transform_timeout_releases_lock():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store, transform_timeout_sec=0.05)

    async def slow(doc):
        await asyncio.sleep(1)
        return {}

    with pytest.raises(LockTimeoutError):
        await lock.with_lock(KEY, slow)

    assert lock.registry.get(KEY.identity).locked is False
    assert store.write_calls == []


@pytest.mark.asyncio
async def test_each_acquisition_gets_a_fresh_token():
    store = FakeDocumentStore()
    tokens = iter(["first", "second"])
    lock = KeyedUpdateLock(store, id_generator=lambda: next(tokens))
    seen = []

    def record(doc):
        seen.append(lock.registry.get(KEY.identity).lock_token)
        return {}

    await lock.with_lock(KEY, record)
    await lock.with_lock(KEY, record)

    assert seen == ["first", "second"]


@pytest.mark.asyncio
@pytest.mark.parametrize("key, transform", [
    (CloudConfigKey("", "cfgX"), _counter_transform),
    (CloudConfigKey("dirA", ""), _counter_transform),
    ("dirA_cfgX", _counter_transform),
    (KEY, {"count": 1}),
    (KEY, None),
])
async def test_invalid_arguments_fail_fast(key, transform):
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)

    with pytest.raises(InvalidArgumentError):
        await lock.with_lock(key, transform)

    assert len(lock.registry) == 0
    assert store.fetch_calls == []


@pytest.mark.asyncio
async def test_invalid_arguments_raise_on_first_step():
    store = FakeDocumentStore()
    lock = KeyedUpdateLock(store)
    call = lock.with_lock(KEY, None)

    with pytest.raises(InvalidArgumentError):
        call.send(None)

    assert len(lock.registry) == 0
    assert store.fetch_calls == []


@pytest.mark.asyncio
async def test_injected_registry_is_shared():
    registry = LockRegistry()
    lock = KeyedUpdateLock(FakeDocumentStore(), registry=registry)

    await lock.with_lock(KEY, _counter_transform)

    assert lock.registry is registry
    assert KEY.identity in registry
