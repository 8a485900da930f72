import asyncio

import pytest

from services.auth.credential_store import CredentialStore
from services.auth.exceptions import RenewalFailedError
from services.auth.models import CredentialPair, RefreshState
from services.auth.refresh_coordinator import RefreshCoordinator
from tests.mocks.fake_cosmos_api import REFRESH_PATH, wait_until


@pytest.mark.asyncio
async def test_acquire_renews_and_stores_rotated_pair(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))

    pair = await coordinator.acquire()

    assert pair == CredentialPair("access-1", "refresh-1")
    assert await store.get() == pair
    assert fake_api.refresh_calls == 1
    # Renewal body carries the stored refresh token and no bearer header
    renewal = fake_api.requests_to(REFRESH_PATH)[0]
    assert renewal.body == {"refresh_token": "refresh-0"}
    assert renewal.authorization is None
    assert coordinator.state == RefreshState.IDLE


@pytest.mark.asyncio
async def test_concurrent_acquires_share_one_renewal(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    assert coordinator.state == RefreshState.REFRESHING

    waiters = [asyncio.create_task(coordinator.acquire()) for _ in range(4)]
    await wait_until(lambda: coordinator.waiter_count == 4)

    release.set()
    results = await asyncio.gather(initiator, *waiters)

    assert fake_api.refresh_calls == 1
    assert all(pair == CredentialPair("access-1", "refresh-1") for pair in results)
    assert coordinator.state == RefreshState.IDLE
    assert coordinator.waiter_count == 0
    assert coordinator.stats()["renewals_started"] == 1


@pytest.mark.asyncio
async def test_waiters_are_settled_in_arrival_order(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait
    order = []

    async def waiter(n):
        await coordinator.acquire()
        order.append(n)

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    tasks = []
    for n in range(5):
        tasks.append(asyncio.create_task(waiter(n)))
        await wait_until(lambda: coordinator.waiter_count == n + 1)

    release.set()
    await asyncio.gather(initiator, *tasks)

    assert order == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_failed_renewal_fails_every_waiter_and_clears_store(fake_api, store, memory_backend, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait
    fake_api.refresh_status = 500

    tasks = [asyncio.create_task(coordinator.acquire())]
    await wait_until(lambda: fake_api.refresh_calls == 1)
    tasks += [asyncio.create_task(coordinator.acquire()) for _ in range(3)]
    await wait_until(lambda: coordinator.waiter_count == 3)

    release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(r, RenewalFailedError) for r in results)
    # Same outcome for everyone
    assert all(r is results[0] for r in results)
    assert results[0].status_code == 500
    assert await store.get() is None
    assert memory_backend.data == {}
    assert coordinator.state == RefreshState.IDLE
    assert coordinator.renewals_failed == 1



class BrokenClearStore(CredentialStore):
    """Store whose clear() fails with something other than a storage error."""

    def __init__(self, backend, clear_error):
        super().__init__(backend)
        self.clear_error = clear_error
        self.clear_calls = 0

    async def clear(self):
        self.clear_calls += 1
        raise self.clear_error


@pytest.mark.asyncio
async def test_unexpected_clear_error_still_releases_waiters(fake_api, memory_backend, transport):
    store = BrokenClearStore(memory_backend, OSError("disk gone"))
    coordinator = RefreshCoordinator(store, transport, refresh_path=REFRESH_PATH, timeout_seconds=2.0)
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait
    fake_api.refresh_status = 500
    reasons = []
    coordinator.set_auth_failed_callback(reasons.append)

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    waiter = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: coordinator.waiter_count == 1)

    release.set()
    results = await asyncio.wait_for(
        asyncio.gather(initiator, waiter, return_exceptions=True), timeout=2.0
    )

    assert all(isinstance(r, RenewalFailedError) for r in results)
    assert results[0].status_code == 500
    assert store.clear_calls == 1
    assert len(reasons) == 1
    assert coordinator.state == RefreshState.IDLE
    assert coordinator.renewals_failed == 1

    # The coordinator is usable again for the next 401
    fake_api.refresh_status = 200
    assert (await coordinator.acquire()).access_token == "access-1"


@pytest.mark.asyncio
async def test_cancelled_clear_still_releases_waiters(fake_api, memory_backend, transport):
    clearing = asyncio.Event()

    class HangingClearStore(CredentialStore):
        async def clear(self):
            clearing.set()
            await asyncio.sleep(10)

    store = HangingClearStore(memory_backend)
    coordinator = RefreshCoordinator(store, transport, refresh_path=REFRESH_PATH, timeout_seconds=2.0)
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait
    fake_api.refresh_status = 500

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    waiter = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: coordinator.waiter_count == 1)

    release.set()
    await asyncio.wait_for(clearing.wait(), timeout=2.0)
    await coordinator.aclose()

    with pytest.raises(RenewalFailedError) as exc_info:
        await asyncio.wait_for(waiter, timeout=2.0)
    assert exc_info.value.status_code == 500
    with pytest.raises(asyncio.CancelledError):
        await initiator
    assert coordinator.state == RefreshState.IDLE

@pytest.mark.asyncio
async def test_renewal_rejected_with_401_is_a_failure(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "revoked-refresh"))

    with pytest.raises(RenewalFailedError) as exc_info:
        await coordinator.acquire()

    assert exc_info.value.status_code == 401
    assert await store.get() is None


@pytest.mark.asyncio
async def test_missing_refresh_token_fails_without_calling_backend(fake_api, memory_backend, store, coordinator):
    memory_backend.data[store.access_key] = "access-0"

    with pytest.raises(RenewalFailedError, match="No refresh token"):
        await coordinator.acquire()

    assert fake_api.refresh_calls == 0
    assert memory_backend.data == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"access_token": "only-access"},
        {"access_token": "", "refresh_token": "r"},
        ["not", "an", "object"],
    ],
)
async def test_malformed_renewal_body_is_a_failure(fake_api, store, coordinator, body):
    await store.set(CredentialPair("access-0", "refresh-0"))
    fake_api.refresh_body = body

    with pytest.raises(RenewalFailedError, match="malformed"):
        await coordinator.acquire()

    assert await store.get() is None


@pytest.mark.asyncio
async def test_non_json_renewal_body_is_a_failure(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    fake_api.refresh_content = b"<html>gateway</html>"

    with pytest.raises(RenewalFailedError):
        await coordinator.acquire()

    assert await store.get() is None


@pytest.mark.asyncio
async def test_renewal_timeout_fails_waiters(fake_api, store, transport):
    coordinator = RefreshCoordinator(store, transport, refresh_path=REFRESH_PATH, timeout_seconds=0.05)
    await store.set(CredentialPair("access-0", "refresh-0"))

    async def hang():
        await asyncio.sleep(10)

    fake_api.refresh_gate = hang

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    waiter = asyncio.create_task(coordinator.acquire())
    results = await asyncio.gather(initiator, waiter, return_exceptions=True)

    assert all(isinstance(r, RenewalFailedError) for r in results)
    assert "timed out" in results[0].message
    assert isinstance(results[0].__cause__, asyncio.TimeoutError)
    assert await store.get() is None
    assert coordinator.state == RefreshState.IDLE


@pytest.mark.asyncio
async def test_cancelling_initiator_does_not_abort_renewal(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    waiter = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: coordinator.waiter_count == 1)

    initiator.cancel()
    with pytest.raises(asyncio.CancelledError):
        await initiator

    assert coordinator.state == RefreshState.REFRESHING
    release.set()

    assert await waiter == CredentialPair("access-1", "refresh-1")
    assert await store.get() == CredentialPair("access-1", "refresh-1")
    assert fake_api.refresh_calls == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_is_skipped(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    gone = asyncio.create_task(coordinator.acquire())
    stays = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: coordinator.waiter_count == 2)

    gone.cancel()
    with pytest.raises(asyncio.CancelledError):
        await gone
    assert coordinator.waiter_count == 1

    release.set()
    assert await initiator == await stays


@pytest.mark.asyncio
async def test_later_failure_starts_a_new_episode(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))

    first = await coordinator.acquire()
    second = await coordinator.acquire()

    assert first.access_token == "access-1"
    assert second.access_token == "access-2"
    assert fake_api.refresh_calls == 2
    assert fake_api.requests_to(REFRESH_PATH)[1].body == {"refresh_token": "refresh-1"}


@pytest.mark.asyncio
async def test_episode_after_failure_starts_fresh(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    fake_api.refresh_status = 503

    with pytest.raises(RenewalFailedError):
        await coordinator.acquire()

    # New login; the next episode is unaffected by the old failure
    fake_api.refresh_status = 200
    await store.set(CredentialPair("access-0", "refresh-0"))
    pair = await coordinator.acquire()

    assert pair.access_token == "access-1"
    assert coordinator.stats() == {
        "state": "idle",
        "waiters": 0,
        "renewals_started": 2,
        "renewals_succeeded": 1,
        "renewals_failed": 1,
    }


@pytest.mark.asyncio
async def test_auth_failed_listener_notified_once_per_failed_episode(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait
    fake_api.refresh_status = 500
    reasons = []
    coordinator.set_auth_failed_callback(reasons.append)

    tasks = [asyncio.create_task(coordinator.acquire())]
    await wait_until(lambda: fake_api.refresh_calls == 1)
    tasks += [asyncio.create_task(coordinator.acquire()) for _ in range(2)]
    await wait_until(lambda: coordinator.waiter_count == 2)
    release.set()
    await asyncio.gather(*tasks, return_exceptions=True)

    assert len(reasons) == 1
    assert isinstance(reasons[0], RenewalFailedError)


@pytest.mark.asyncio
async def test_async_listener_is_awaited_and_its_errors_swallowed(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    fake_api.refresh_status = 500
    seen = []

    async def listener(reason):
        seen.append(reason)
        raise RuntimeError("listener bug")

    coordinator.set_auth_failed_callback(listener)

    with pytest.raises(RenewalFailedError):
        await coordinator.acquire()

    assert len(seen) == 1
    assert coordinator.state == RefreshState.IDLE


@pytest.mark.asyncio
async def test_success_does_not_notify_listener(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    reasons = []
    coordinator.set_auth_failed_callback(reasons.append)

    await coordinator.acquire()

    assert reasons == []


@pytest.mark.asyncio
async def test_aclose_releases_waiters_but_keeps_credentials(fake_api, store, coordinator):
    await store.set(CredentialPair("access-0", "refresh-0"))
    release = asyncio.Event()
    fake_api.refresh_gate = release.wait

    initiator = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: fake_api.refresh_calls == 1)
    waiter = asyncio.create_task(coordinator.acquire())
    await wait_until(lambda: coordinator.waiter_count == 1)

    await coordinator.aclose()

    with pytest.raises(RenewalFailedError, match="cancelled"):
        await waiter
    with pytest.raises(asyncio.CancelledError):
        await initiator
    assert coordinator.state == RefreshState.IDLE
    assert await store.get() == CredentialPair("access-0", "refresh-0")


@pytest.mark.asyncio
async def test_aclose_when_idle_is_a_no_op(coordinator):
    await coordinator.aclose()
    assert coordinator.state == RefreshState.IDLE
