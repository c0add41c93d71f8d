"""Test the delivery queue backends."""
import json
from datetime import datetime, timedelta, timezone

import pytest
from structlog.testing import capture_logs

from core.resilience.delivery_queue import (
    DeliveryJob,
    FileDeliveryQueue,
    InMemoryDeliveryQueue,
    QueueCollection,
)


def make_job(order_id: str = "o-1", age_minutes: int = 0, **kwargs) -> DeliveryJob:
    created = datetime.now(timezone.utc) - timedelta(minutes=age_minutes)
    return DeliveryJob(
        order={"id": order_id, "email": "a@b.ch"},
        digital_count=1,
        created_at=created,
        updated_at=created,
        **kwargs,
    )


@pytest.fixture(params=["file", "memory"])
def queue(request, tmp_path):
    if request.param == "file":
        return FileDeliveryQueue(tmp_path / "ebooks")
    return InMemoryDeliveryQueue()


def test_job_defaults():
    job = make_job()
    assert job.retry_budget == 25
    assert job.order_id == "o-1"
    assert not job.exhausted


def test_consume_retry_counts_down_to_zero():
    job = make_job(retry_budget=2)
    assert job.consume_retry() == 1
    assert job.consume_retry() == 0
    assert job.exhausted
    with pytest.raises(ValueError):
        job.consume_retry()


def test_job_dict_roundtrip_keeps_bookkeeping():
    job = make_job(retry_budget=7, external_order_id="ext-9", last_error="boom")
    restored = DeliveryJob.from_dict(json.loads(json.dumps(job.to_dict())))
    assert restored.id == job.id
    assert restored.retry_budget == 7
    assert restored.external_order_id == "ext-9"
    assert restored.created_at == job.created_at


@pytest.mark.asyncio
async def test_pending_jobs_come_back_oldest_first(queue):
    newer = make_job("o-new", age_minutes=1)
    older = make_job("o-old", age_minutes=10)
    await queue.enqueue(newer)
    await queue.enqueue(older)

    pending = await queue.list_pending()
    assert [job.order_id for job in pending] == ["o-old", "o-new"]


@pytest.mark.asyncio
async def test_save_persists_mutation(queue):
    job = make_job()
    await queue.enqueue(job)
    job.consume_retry()
    await queue.save(job)

    [stored] = await queue.list_pending()
    assert stored.retry_budget == 24


@pytest.mark.asyncio
async def test_listing_returns_copies(queue):
    job = make_job()
    await queue.enqueue(job)
    [stored] = await queue.list_pending()
    stored.retry_budget = 0

    [again] = await queue.list_pending()
    assert again.retry_budget == 25


@pytest.mark.asyncio
async def test_remove_drops_pending_job(queue):
    job = make_job()
    await queue.enqueue(job)
    await queue.remove(job)
    assert await queue.list_pending() == []
    # Removing twice is harmless
    await queue.remove(job)


@pytest.mark.asyncio
async def test_move_to_dead_letter(queue):
    job = make_job(retry_budget=0)
    await queue.enqueue(job)
    await queue.move_to_dead_letter(job)

    assert await queue.list_pending() == []
    [dead] = await queue.list_dead_letters()
    assert dead.id == job.id


@pytest.mark.asyncio
async def test_interrupted_move_is_repeated_idempotently(queue):
    job = make_job(retry_budget=0)
    await queue.enqueue(job)
    # Crash after the dead-letter write, before the pending removal
    await queue.dead_letter(job)
    assert len(await queue.list_pending()) == 1

    await queue.move_to_dead_letter(job)
    assert await queue.list_pending() == []
    assert len(await queue.list_dead_letters()) == 1


@pytest.mark.asyncio
async def test_stats(queue):
    assert (await queue.stats()).pending == 0

    old = make_job("o-1", age_minutes=5)
    await queue.enqueue(old)
    await queue.enqueue(make_job("o-2"))
    await queue.dead_letter(make_job("o-3"))

    stats = await queue.stats()
    assert stats.pending == 2
    assert stats.dead_lettered == 1
    assert stats.oldest_pending == old.created_at
    assert stats.to_dict()["pending"] == 2


@pytest.mark.asyncio
async def test_file_layout(tmp_path):
    queue = FileDeliveryQueue(tmp_path / "ebooks")
    job = make_job()
    await queue.enqueue(job)

    path = tmp_path / "ebooks" / "pending" / f"{job.id}.json"
    assert path.exists()
    assert json.loads(path.read_text())["order"]["id"] == "o-1"
    assert (tmp_path / "ebooks" / "dead_letter").is_dir()
    assert queue.path_for(QueueCollection.DEAD_LETTER, job.id).parent.name == "dead_letter"


@pytest.mark.asyncio
async def test_file_queue_survives_restart(tmp_path):
    job = make_job()
    await FileDeliveryQueue(tmp_path / "q").enqueue(job)

    [stored] = await FileDeliveryQueue(tmp_path / "q").list_pending()
    assert stored.id == job.id


@pytest.mark.asyncio
async def test_unreadable_record_is_skipped(tmp_path):
    queue = FileDeliveryQueue(tmp_path / "q")
    await queue.enqueue(make_job())
    (tmp_path / "q" / "pending" / "broken.json").write_text("{not json")
    (tmp_path / "q" / "pending" / ".half-written.json.tmp").write_text("{")

    with capture_logs() as logs:
        pending = await queue.list_pending()

    assert len(pending) == 1
    assert any(entry["event"] == "unreadable delivery job skipped" for entry in logs)
