"""Paid-order handoff.

When an order becomes paid, FulfillmentService snapshots it and decides its
delivery path:

- no digital lines: confirmation email right away, no delivery job
- digital lines: one bulk order at the fulfillment gateway, then a
  DeliveryJob in the pending queue; if the gateway refuses, the job goes
  straight to the dead-letter collection and the customer is told

The ERP mirror runs afterwards for every paid order, best-effort.
"""

from enum import Enum

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.integrations.adapter_base import GatewayError
from core.observability.otel_setup import get_tracer
from core.resilience.best_effort import best_effort
from core.resilience.delivery_queue import DEFAULT_RETRY_BUDGET, DeliveryJob, DeliveryQueue
from verticals.bookstore.errors import GatewayUnavailable, NotFound
from verticals.bookstore.integrations.ebooks import EbooksGateway
from verticals.bookstore.integrations.xentral import XentralGateway
from verticals.bookstore.models.db_models import Order
from verticals.bookstore.models.schemas import (
    DeliveryStatus,
    OrderItemSnapshot,
    OrderSnapshot,
)
from verticals.bookstore.notifications import NotificationDispatcher
from verticals.bookstore.repository import OrderRepository

log = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class HandoffResult(str, Enum):
    NO_DIGITAL_ITEMS = "no_digital_items"
    ENQUEUED = "enqueued"
    DEAD_LETTERED = "dead_lettered"


def snapshot_from_order(order: Order) -> OrderSnapshot:
    """By-value copy of an order; lines keep their locked-in price."""
    return OrderSnapshot(
        id=order.id,
        user_id=order.user_id,
        sales_channel_id=order.sales_channel_id,
        email=order.email,
        first_name=order.first_name,
        last_name=order.last_name,
        delivery_address=order.delivery_address,
        invoice_address=order.invoice_address,
        payment_method=order.payment_method,
        total_price=order.total_price,
        external_order_id=order.external_order_id,
        created_at=order.created_at,
        items=[
            OrderItemSnapshot(
                id=item.id,
                product_id=item.product_id,
                title=item.product.title,
                subtitle=item.product.subtitle,
                ean=item.product.ean,
                publisher=item.product.publisher,
                description=item.product.description,
                quantity=item.quantity,
                current_price=item.current_price,
                is_download_title=item.product.is_download_title,
                download_url=item.download_url,
            )
            for item in order.items
        ],
    )


# ---------------------------------------------------------------------------
# Delivery status bookkeeping
# ---------------------------------------------------------------------------

class DeliveryRecorder:
    """Writes delivery outcomes back onto the order row.

    The queue is the source of truth for delivery progress; these updates
    are informational and a database failure is only logged.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _update(self, order_id: str, snapshot: OrderSnapshot | None, **values) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                order = await OrderRepository(session).get_with_items(order_id, for_update=True)
                if order is None:
                    log.warning("order vanished before delivery update", order_id=order_id)
                    return
                for key, value in values.items():
                    setattr(order, key, value)
                if snapshot is not None:
                    urls = {item.id: item.download_url for item in snapshot.items}
                    for item in order.items:
                        if urls.get(item.id):
                            item.download_url = urls[item.id]

    async def set_external_order_id(self, order_id: str, external_order_id: str) -> bool:
        return await best_effort(
            "record_external_order_id",
            self._update(order_id, None, external_order_id=external_order_id),
            errors=(SQLAlchemyError,),
            order_id=order_id,
        )

    async def mark_delivered(self, snapshot: OrderSnapshot) -> bool:
        return await best_effort(
            "record_delivery",
            self._update(snapshot.id, snapshot, delivery_status=DeliveryStatus.DELIVERED.value),
            errors=(SQLAlchemyError,),
            order_id=snapshot.id,
        )

    async def mark_failed(self, order_id: str) -> bool:
        return await best_effort(
            "record_delivery_failure",
            self._update(order_id, None, delivery_status=DeliveryStatus.FAILED.value),
            errors=(SQLAlchemyError,),
            order_id=order_id,
        )


# ---------------------------------------------------------------------------
# Handoff
# ---------------------------------------------------------------------------

class FulfillmentService:
    """Routes a freshly paid order to its delivery path."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: DeliveryQueue,
        ebooks: EbooksGateway,
        notifier: NotificationDispatcher,
        erp: XentralGateway | None = None,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        recorder: DeliveryRecorder | None = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.ebooks = ebooks
        self.notifier = notifier
        self.erp = erp
        self.retry_budget = retry_budget
        self.recorder = recorder or DeliveryRecorder(session_factory)

    async def load_snapshot(self, order_id: str) -> OrderSnapshot | None:
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_with_items(order_id)
            if order is None:
                return None
            return snapshot_from_order(order)

    async def handle_paid_order(self, order_id: str) -> HandoffResult:
        """Run the handoff once per paid order.

        Queue write failures propagate; gateway and email failures do not.
        """
        with tracer.start_as_current_span("fulfillment.handoff") as span:
            span.set_attribute("order.id", order_id)
            snapshot = await self.load_snapshot(order_id)
            if snapshot is None:
                raise NotFound(f"order {order_id} not found")

            digital = snapshot.digital_items
            if not digital:
                await self.notifier.send_order_confirmation(snapshot)
                result = HandoffResult.NO_DIGITAL_ITEMS
            else:
                result = await self._start_delivery(snapshot)

            span.set_attribute("handoff.result", result.value)
            await self.mirror(snapshot)

        log.info("paid order handed off", order_id=order_id, result=result.value)
        return result

    async def _start_delivery(self, snapshot: OrderSnapshot) -> HandoffResult:
        digital = snapshot.digital_items
        try:
            external_order_id = await self.ebooks.create_order(
                [item.product_id for item in digital]
            )
        except GatewayError as exc:
            error = GatewayUnavailable(str(exc))
            log.error(
                "fulfillment gateway refused order, dead-lettering",
                order_id=snapshot.id,
                error=str(error),
            )
            job = DeliveryJob(
                order=snapshot.model_dump(mode="json"),
                digital_count=len(digital),
                retry_budget=self.retry_budget,
                last_error=f"{type(error).__name__}: {error}",
            )
            await self.notifier.send_failed(snapshot)
            await self.queue.dead_letter(job)
            await self.recorder.mark_failed(snapshot.id)
            return HandoffResult.DEAD_LETTERED

        snapshot.external_order_id = external_order_id
        await self.recorder.set_external_order_id(snapshot.id, external_order_id)

        job = DeliveryJob(
            order=snapshot.model_dump(mode="json"),
            digital_count=len(digital),
            retry_budget=self.retry_budget,
            external_order_id=external_order_id,
        )
        await self.queue.enqueue(job)
        log.info(
            "delivery job enqueued",
            order_id=snapshot.id,
            job_id=job.id,
            digital_count=job.digital_count,
            retry_budget=job.retry_budget,
        )
        return HandoffResult.ENQUEUED

    async def mirror(self, snapshot: OrderSnapshot) -> bool:
        """Mirror the order into the ERP, if one is configured."""
        if self.erp is None:
            return False
        return await best_effort(
            "erp_mirror",
            self.erp.mirror_order(snapshot),
            order_id=snapshot.id,
        )
