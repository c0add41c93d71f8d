"""Digital delivery worker.

A single long-lived loop polls the pending queue. Each pass walks every
pending job, oldest first:

- budget 0: the job moves to the dead-letter collection, the customer gets
  the failure email and the order is marked failed
- budget > 0: one retry is spent and persisted *before* the attempt, then
  the download links are requested; on failure the job stays pending
- on success: links are stored on the job, the customer is emailed, the
  order rows are updated and the job is removed

Spending the retry first means a crash mid-attempt can never hand a job
more than its budget.
"""

import asyncio

import structlog

from core.integrations.adapter_base import GatewayError
from core.observability.otel_setup import get_tracer
from core.resilience.delivery_queue import DeliveryJob, DeliveryQueue
from patterns.workflow_states import DeliveryState
from verticals.bookstore.errors import DeliveryAttemptFailed, RetryExhausted
from verticals.bookstore.fulfillment import DeliveryRecorder
from verticals.bookstore.integrations.ebooks import EbooksGateway
from verticals.bookstore.models.schemas import OrderSnapshot
from verticals.bookstore.notifications import NotificationDispatcher

log = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class DeliveryWorker:
    """Single consumer of the delivery queue."""

    def __init__(
        self,
        queue: DeliveryQueue,
        ebooks: EbooksGateway,
        notifier: NotificationDispatcher,
        recorder: DeliveryRecorder,
        poll_interval: float = 5.0,
    ):
        self.queue = queue
        self.ebooks = ebooks
        self.notifier = notifier
        self.recorder = recorder
        self.poll_interval = poll_interval
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --- Lifecycle ---

    def start(self) -> asyncio.Task:
        """Start the polling loop. Only one loop may run per worker."""
        if self.running:
            raise RuntimeError("delivery worker is already running")
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self.run_forever(), name="delivery-worker")
        log.info("delivery worker started", poll_interval=self.poll_interval)
        return self._task

    async def stop(self) -> None:
        """Finish the current pass, then stop."""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
            log.info("delivery worker stopped")

    async def run_forever(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                log.exception("delivery pass failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    # --- One pass ---

    async def run_once(self) -> dict[str, int]:
        """Process every pending job once. Returns a count per outcome.

        A job that fails in an unexpected way is logged and counted as a
        retry; the pass continues with the next job.
        """
        counts = {state.value: 0 for state in DeliveryState if state != DeliveryState.PENDING}
        for job in await self.queue.list_pending():
            try:
                state = await self.process(job)
            except Exception:
                log.exception(
                    "delivery job failed unexpectedly",
                    job_id=job.id,
                    order_id=job.order_id,
                    retry_budget=job.retry_budget,
                )
                state = DeliveryState.RETRY
            counts[state.value] += 1
        return counts

    async def process(self, job: DeliveryJob) -> DeliveryState:
        if job.exhausted:
            return await self._dead_letter(job)

        job.consume_retry()
        await self.queue.save(job)
        snapshot = OrderSnapshot.model_validate(job.order)

        with tracer.start_as_current_span("delivery.attempt") as span:
            span.set_attribute("delivery.job_id", job.id)
            span.set_attribute("delivery.retry_budget", job.retry_budget)
            try:
                await self.ebooks.get_download_urls(snapshot, job.digital_count)
            except GatewayError as exc:
                error = DeliveryAttemptFailed(str(exc))
                job.last_error = f"{type(error).__name__}: {error}"
                await self.queue.save(job)
                log.warning(
                    "delivery attempt failed",
                    job_id=job.id,
                    order_id=job.order_id,
                    retry_budget=job.retry_budget,
                    error=str(error),
                )
                return DeliveryState.RETRY

        job.order = snapshot.model_dump(mode="json")
        job.last_error = None
        await self.queue.save(job)

        await self.notifier.send_delivered(snapshot)
        await self.recorder.mark_delivered(snapshot)
        await self.queue.remove(job)
        log.info("order delivered", job_id=job.id, order_id=job.order_id)
        return DeliveryState.DELIVERED

    async def _dead_letter(self, job: DeliveryJob) -> DeliveryState:
        error = RetryExhausted(f"retry budget exhausted for job {job.id}")
        job.last_error = f"{type(error).__name__}: {error}"
        await self.queue.move_to_dead_letter(job)
        log.error("delivery job dead-lettered", job_id=job.id, order_id=job.order_id)

        snapshot = OrderSnapshot.model_validate(job.order)
        await self.notifier.send_failed(snapshot)
        await self.recorder.mark_failed(snapshot.id)
        return DeliveryState.DEAD_LETTERED
