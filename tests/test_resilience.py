"""Test keyed locks and the best-effort side-channel policy."""
import asyncio

import pytest
from structlog.testing import capture_logs

from core.integrations.adapter_base import GatewayError
from core.resilience.best_effort import best_effort
from core.resilience.locks import KeyedLock, order_key, product_key


def test_lock_keys():
    assert product_key("p-1") == "product:p-1"
    assert order_key("o-1") == "order:o-1"


@pytest.mark.asyncio
async def test_hold_locks_every_key_and_releases():
    locks = KeyedLock()
    async with locks.hold("product:b", "product:a"):
        assert locks.locked("product:a")
        assert locks.locked("product:b")
        assert locks.size == 2
    assert not locks.locked("product:a")
    assert not locks.locked("product:b")
    assert locks.size == 0


@pytest.mark.asyncio
async def test_duplicate_keys_are_acquired_once():
    locks = KeyedLock()
    async with locks.hold("product:a", "product:a"):
        assert locks.locked("product:a")
    assert not locks.locked("product:a")


@pytest.mark.asyncio
async def test_locks_released_on_error():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("order:1"):
            raise RuntimeError("boom")
    assert not locks.locked("order:1")


@pytest.mark.asyncio
async def test_same_key_serializes():
    locks = KeyedLock()
    events = []

    async def worker(name):
        async with locks.hold("product:x"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert events in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )
    assert locks.size == 0


@pytest.mark.asyncio
async def test_overlapping_key_sets_do_not_deadlock():
    locks = KeyedLock()
    done = []

    async def worker(name, *keys):
        for _ in range(20):
            async with locks.hold(*keys):
                await asyncio.sleep(0)
        done.append(name)

    await asyncio.wait_for(
        asyncio.gather(
            worker("ab", "product:a", "product:b"),
            worker("ba", "product:b", "product:a"),
        ),
        timeout=2,
    )
    assert sorted(done) == ["ab", "ba"]


@pytest.mark.asyncio
async def test_waiting_caller_keeps_the_lock_alive():
    locks = KeyedLock()
    release = asyncio.Event()

    async def first():
        async with locks.hold("order:1"):
            await release.wait()

    async def second():
        async with locks.hold("order:1"):
            assert locks.size == 1

    tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
    await asyncio.sleep(0)
    assert locks.locked("order:1")
    release.set()
    await asyncio.gather(*tasks)
    assert locks.size == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_is_dropped():
    locks = KeyedLock()
    async with locks.hold("order:1"):
        waiter = asyncio.create_task(_hold_once(locks, "order:1"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
    assert locks.size == 0


async def _hold_once(locks, key):
    async with locks.hold(key):
        pass


@pytest.mark.asyncio
async def test_unrelated_keys_do_not_block():
    locks = KeyedLock()
    async with locks.hold("product:a"):
        async with locks.hold("product:b"):
            assert locks.locked("product:a") and locks.locked("product:b")


@pytest.mark.asyncio
async def test_best_effort_absorbs_gateway_errors():
    async def failing():
        raise GatewayError("smtp down", status_code=502, adapter="sendgrid")

    with capture_logs() as logs:
        ok = await best_effort("order_notification", failing(), order_id="o-1")

    assert ok is False
    [entry] = logs
    assert entry["event"] == "side channel call failed"
    assert entry["log_level"] == "error"
    assert entry["action"] == "order_notification"
    assert entry["order_id"] == "o-1"


@pytest.mark.asyncio
async def test_best_effort_reports_success():
    async def fine():
        return None

    assert await best_effort("erp_mirror", fine()) is True


@pytest.mark.asyncio
async def test_best_effort_propagates_other_errors():
    async def broken():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await best_effort("erp_mirror", broken())
