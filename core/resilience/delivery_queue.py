"""
Bookbox Delivery Queue — Durable work queue with a dead-letter store.

Delivery jobs are self-contained snapshots: the order is stored by value,
so later catalog or order edits cannot corrupt an in-flight job. Two
disjoint collections hold them:

- pending: jobs the worker still has to process
- dead_letter: jobs that exhausted their retry budget or could not start,
  kept for manual inspection and never processed again

Two backends implement the same interface:
- FileDeliveryQueue: one JSON file per job, atomic rename on every write
- InMemoryDeliveryQueue: for tests and single-process development
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any
import asyncio
import json
import os
import uuid

import structlog

log = structlog.get_logger(__name__)

DEFAULT_RETRY_BUDGET = 25


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueCollection(str, Enum):
    PENDING = "pending"
    DEAD_LETTER = "dead_letter"


@dataclass
class DeliveryJob:
    """A queued digital delivery: order snapshot plus retry bookkeeping."""
    order: dict[str, Any]
    digital_count: int = 0
    retry_budget: int = DEFAULT_RETRY_BUDGET
    external_order_id: str | None = None
    last_error: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def order_id(self) -> str:
        return str(self.order.get("id", ""))

    @property
    def exhausted(self) -> bool:
        return self.retry_budget <= 0

    def consume_retry(self) -> int:
        """Spend one retry before an attempt. Returns the remaining budget."""
        if self.exhausted:
            raise ValueError(f"Delivery job {self.id} has no retries left")
        self.retry_budget -= 1
        self.updated_at = _utcnow()
        return self.retry_budget

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order": self.order,
            "digital_count": self.digital_count,
            "retry_budget": self.retry_budget,
            "external_order_id": self.external_order_id,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryJob":
        return cls(
            id=data["id"],
            order=data["order"],
            digital_count=int(data.get("digital_count", 0)),
            retry_budget=int(data["retry_budget"]),
            external_order_id=data.get("external_order_id"),
            last_error=data.get("last_error"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass
class QueueStats:
    """Aggregate counts for both collections."""
    pending: int = 0
    dead_lettered: int = 0
    oldest_pending: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "dead_lettered": self.dead_lettered,
            "oldest_pending": self.oldest_pending.isoformat() if self.oldest_pending else None,
        }


def _ordered(jobs: list[DeliveryJob]) -> list[DeliveryJob]:
    return sorted(jobs, key=lambda job: (job.created_at, job.id))


class DeliveryQueue(ABC):
    """Persistent pending/dead-letter store for delivery jobs.

    Single consumer: only one worker may drain the pending collection.
    """

    @abstractmethod
    async def enqueue(self, job: DeliveryJob) -> None:
        """Add a new job to the pending collection."""

    @abstractmethod
    async def save(self, job: DeliveryJob) -> None:
        """Persist an in-place change (retry budget, download links)."""

    @abstractmethod
    async def list_pending(self) -> list[DeliveryJob]:
        """All pending jobs, oldest first."""

    @abstractmethod
    async def remove(self, job: DeliveryJob) -> None:
        """Drop a pending job after successful delivery."""

    @abstractmethod
    async def dead_letter(self, job: DeliveryJob) -> None:
        """Write a job directly into the dead-letter collection."""

    @abstractmethod
    async def list_dead_letters(self) -> list[DeliveryJob]:
        """All dead-lettered jobs, oldest first."""

    async def move_to_dead_letter(self, job: DeliveryJob) -> None:
        """Relocate a pending job: dead-letter write first, then removal.

        A crash between both steps leaves the job in both collections under
        the same name; the next pass repeats the move idempotently.
        """
        await self.dead_letter(job)
        await self.remove(job)

    async def stats(self) -> QueueStats:
        pending = await self.list_pending()
        dead = await self.list_dead_letters()
        return QueueStats(
            pending=len(pending),
            dead_lettered=len(dead),
            oldest_pending=pending[0].created_at if pending else None,
        )


class InMemoryDeliveryQueue(DeliveryQueue):
    """In-memory queue. Stores serialized copies, like a real backend would."""

    def __init__(self):
        self._collections: dict[QueueCollection, dict[str, dict[str, Any]]] = {
            QueueCollection.PENDING: {},
            QueueCollection.DEAD_LETTER: {},
        }

    async def enqueue(self, job: DeliveryJob) -> None:
        self._collections[QueueCollection.PENDING][job.id] = job.to_dict()

    async def save(self, job: DeliveryJob) -> None:
        self._collections[QueueCollection.PENDING][job.id] = job.to_dict()

    async def list_pending(self) -> list[DeliveryJob]:
        records = self._collections[QueueCollection.PENDING].values()
        return _ordered([DeliveryJob.from_dict(r) for r in records])

    async def remove(self, job: DeliveryJob) -> None:
        self._collections[QueueCollection.PENDING].pop(job.id, None)

    async def dead_letter(self, job: DeliveryJob) -> None:
        self._collections[QueueCollection.DEAD_LETTER][job.id] = job.to_dict()

    async def list_dead_letters(self) -> list[DeliveryJob]:
        records = self._collections[QueueCollection.DEAD_LETTER].values()
        return _ordered([DeliveryJob.from_dict(r) for r in records])


class FileDeliveryQueue(DeliveryQueue):
    """Directory-backed queue: ``<root>/pending`` and ``<root>/dead_letter``.

    Each job is one ``<job id>.json`` file. Writes go to a hidden temp file
    in the target directory and are renamed into place, so a reader never
    sees a half-written record. Disk I/O runs in a worker thread.
    """

    SUFFIX = ".json"

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root)
        self._dirs = {
            collection: self.root / collection.value
            for collection in QueueCollection
        }
        for path in self._dirs.values():
            path.mkdir(parents=True, exist_ok=True)

    def path_for(self, collection: QueueCollection, job_id: str) -> Path:
        return self._dirs[collection] / f"{job_id}{self.SUFFIX}"

    # --- Sync helpers (run via asyncio.to_thread) ---

    def _write(self, collection: QueueCollection, job: DeliveryJob) -> None:
        target = self.path_for(collection, job.id)
        tmp = target.with_name(f".{target.name}.tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(job.to_dict(), fh, sort_keys=True)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)

    def _read_all(self, collection: QueueCollection) -> list[DeliveryJob]:
        jobs = []
        for path in self._dirs[collection].iterdir():
            if path.name.startswith(".") or path.suffix != self.SUFFIX:
                continue
            try:
                with open(path, encoding="utf-8") as fh:
                    jobs.append(DeliveryJob.from_dict(json.load(fh)))
            except (OSError, ValueError, KeyError) as exc:
                log.warning(
                    "unreadable delivery job skipped",
                    path=str(path),
                    collection=collection.value,
                    error=str(exc),
                )
        return _ordered(jobs)

    def _unlink(self, collection: QueueCollection, job_id: str) -> None:
        self.path_for(collection, job_id).unlink(missing_ok=True)

    # --- Interface ---

    async def enqueue(self, job: DeliveryJob) -> None:
        await asyncio.to_thread(self._write, QueueCollection.PENDING, job)

    async def save(self, job: DeliveryJob) -> None:
        await asyncio.to_thread(self._write, QueueCollection.PENDING, job)

    async def list_pending(self) -> list[DeliveryJob]:
        return await asyncio.to_thread(self._read_all, QueueCollection.PENDING)

    async def remove(self, job: DeliveryJob) -> None:
        await asyncio.to_thread(self._unlink, QueueCollection.PENDING, job.id)

    async def dead_letter(self, job: DeliveryJob) -> None:
        await asyncio.to_thread(self._write, QueueCollection.DEAD_LETTER, job)

    async def list_dead_letters(self) -> list[DeliveryJob]:
        return await asyncio.to_thread(self._read_all, QueueCollection.DEAD_LETTER)
