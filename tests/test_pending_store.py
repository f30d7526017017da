import pytest

from auth.models import PendingAuth
from auth.pending_store import MemoryPendingAuthStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _pending(state: str, created_at: float) -> PendingAuth:
    return PendingAuth(state=state, code_verifier=f"verifier-{state}", session_id="s", created_at=created_at)


@pytest.mark.asyncio
async def test_consume_returns_entry_once() -> None:
    clock = FakeClock()
    store = MemoryPendingAuthStore(clock=clock)
    await store.put(_pending("a", clock.now))

    first = await store.consume("a")
    second = await store.consume("a")

    assert first is not None
    assert first.code_verifier == "verifier-a"
    assert second is None


@pytest.mark.asyncio
async def test_duplicate_state_rejected() -> None:
    clock = FakeClock()
    store = MemoryPendingAuthStore(clock=clock)

    assert await store.put(_pending("a", clock.now)) is True
    assert await store.put(_pending("a", clock.now)) is False
    assert await store.size() == 1


@pytest.mark.asyncio
async def test_expired_entry_not_returned() -> None:
    clock = FakeClock()
    store = MemoryPendingAuthStore(ttl_seconds=600, clock=clock)
    await store.put(_pending("a", clock.now))

    clock.now += 601

    assert await store.consume("a") is None


@pytest.mark.asyncio
async def test_expired_entries_purged_on_put() -> None:
    clock = FakeClock()
    store = MemoryPendingAuthStore(ttl_seconds=600, clock=clock)
    await store.put(_pending("stale", clock.now))

    clock.now += 700
    await store.put(_pending("fresh", clock.now))

    assert await store.size() == 1
    assert await store.consume("fresh") is not None


@pytest.mark.asyncio
async def test_cap_evicts_oldest() -> None:
    clock = FakeClock()
    store = MemoryPendingAuthStore(max_entries=2, clock=clock)

    await store.put(_pending("a", clock.now))
    await store.put(_pending("b", clock.now))
    await store.put(_pending("c", clock.now))

    assert await store.size() == 2
    assert await store.consume("a") is None
    assert await store.consume("c") is not None
