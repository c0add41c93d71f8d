"""Bookstore order service.

Single entry point for the HTTP layer. Wires the validator, committer and
paid-order handoff together, and guards catalog writes with the same
product locks the committer uses.
"""

from typing import Any

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.integrations.sendgrid import SendGridGateway
from core.models.base import new_id
from core.resilience.delivery_queue import DeliveryQueue, FileDeliveryQueue
from core.resilience.locks import KeyedLock, order_key, product_key
from patterns.domain_config import BookstoreConfig
from patterns.workflow_states import (
    PAYMENT_TRANSITIONS,
    PaymentState,
    TransitionError,
    ensure_transition,
)
from verticals.bookstore.committer import OrderCommitter
from verticals.bookstore.errors import Forbidden, InvalidTransition, NotFound
from verticals.bookstore.fulfillment import DeliveryRecorder, FulfillmentService
from verticals.bookstore.integrations.ebooks import EbooksGateway
from verticals.bookstore.integrations.xentral import XentralGateway
from verticals.bookstore.models.schemas import (
    ChannelOverride,
    OrderCreate,
    OrderCreated,
    PaymentResult,
    PaymentStatus,
    ProductCreate,
    ProductUpdate,
    SalesChannelCreate,
)
from verticals.bookstore.notifications import NotificationDispatcher
from verticals.bookstore.repository import (
    OrderRepository,
    ProductRepository,
    SalesChannelRepository,
)
from verticals.bookstore.validator import OrderValidator
from verticals.bookstore.worker import DeliveryWorker

log = structlog.get_logger(__name__)

_CONTACT_FIELDS = {
    "email",
    "first_name",
    "last_name",
    "delivery_address",
    "invoice_address",
}


class OrderService:
    """Order submission, payment confirmation and catalog administration."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        validator: OrderValidator,
        committer: OrderCommitter,
        fulfillment: FulfillmentService,
        locks: KeyedLock,
        queue: DeliveryQueue,
    ):
        self.session_factory = session_factory
        self.validator = validator
        self.committer = committer
        self.fulfillment = fulfillment
        self.locks = locks
        self.queue = queue

    def require_privileged(self, role: str | None) -> None:
        if not self.validator.is_privileged(role):
            raise Forbidden("insufficient permissions")

    # --- Orders ---

    async def submit(
        self,
        payload: OrderCreate,
        user_id: str | None = None,
        role: str | None = None,
    ) -> OrderCreated:
        """Validate, commit and, for orders created as paid, hand off."""
        validated = await self.validator.validate(
            payload.sales_channel_id,
            payload.products,
            issuer_role=role,
            payment_status=payload.payment_status,
            delivery_status=payload.delivery_status,
            order_status=payload.order_status,
        )

        order_fields: dict[str, Any] = payload.model_dump(include=_CONTACT_FIELDS)
        order_fields["payment_method"] = payload.payment_method.value
        order_fields["user_id"] = user_id
        order_id = await self.committer.commit(validated, order_fields)

        if validated.payment_status == PaymentStatus.PAID:
            await self.fulfillment.handle_paid_order(order_id)

        return OrderCreated(
            id=order_id,
            total_price=validated.total_price,
            payment_status=validated.payment_status,
        )

    async def get_order(self, order_id: str) -> dict:
        async with self.session_factory() as session:
            data = await OrderRepository(session).get_display(order_id)
        if data is None:
            raise NotFound(f"order {order_id} not found")
        return data

    async def confirm_payment(
        self, order_id: str, status: PaymentStatus, role: str | None
    ) -> PaymentResult:
        """Move a pending order to paid or failed, exactly once.

        Only the payment backend, acting with a privileged role, may report
        the outcome; customers cannot mark their own orders paid.
        """
        self.require_privileged(role)
        async with self.locks.hold(order_key(order_id)):
            async with self.session_factory() as session:
                async with session.begin():
                    order = await OrderRepository(session).get(order_id)
                    if order is None:
                        raise NotFound(f"order {order_id} not found")
                    try:
                        ensure_transition(
                            PAYMENT_TRANSITIONS,
                            PaymentState(order.payment_status),
                            PaymentState(status.value),
                        )
                    except TransitionError as exc:
                        raise InvalidTransition(str(exc)) from exc
                    order.payment_status = status.value

        log.info("payment status changed", order_id=order_id, payment_status=status.value)

        handoff = None
        if status == PaymentStatus.PAID:
            handoff = (await self.fulfillment.handle_paid_order(order_id)).value
        return PaymentResult(id=order_id, payment_status=status, handoff=handoff)

    # --- Catalog ---

    async def create_product(self, payload: ProductCreate, role: str | None) -> dict:
        self.require_privileged(role)
        product_id = new_id()
        async with self.locks.hold(product_key(product_id)):
            async with self.session_factory() as session:
                async with session.begin():
                    data = payload.model_dump()
                    data["id"] = product_id
                    product = await ProductRepository(session).create(data)
                    await session.refresh(product)
                    return product.to_dict()

    async def get_product(self, product_id: str, sales_channel_id: str | None = None) -> dict:
        async with self.session_factory() as session:
            data = await ProductRepository(session).get_with_override(product_id, sales_channel_id)
        if data is None:
            raise NotFound(f"product {product_id} not found")
        return data

    async def update_product(
        self, product_id: str, payload: ProductUpdate, role: str | None
    ) -> dict:
        self.require_privileged(role)
        async with self.locks.hold(product_key(product_id)):
            async with self.session_factory() as session:
                async with session.begin():
                    product = await ProductRepository(session).update(
                        product_id, payload.model_dump(exclude_unset=True)
                    )
                    if product is None:
                        raise NotFound(f"product {product_id} not found")
                    await session.refresh(product)
                    return product.to_dict()

    async def deactivate_product(self, product_id: str, role: str | None) -> None:
        """Soft delete: order lines keep referencing the product row."""
        self.require_privileged(role)
        async with self.locks.hold(product_key(product_id)):
            async with self.session_factory() as session:
                async with session.begin():
                    product = await ProductRepository(session).update(
                        product_id, {"active": False}
                    )
                    if product is None:
                        raise NotFound(f"product {product_id} not found")
        log.info("product deactivated", product_id=product_id)

    async def create_sales_channel(self, payload: SalesChannelCreate, role: str | None) -> dict:
        self.require_privileged(role)
        async with self.session_factory() as session:
            async with session.begin():
                channel = await SalesChannelRepository(session).create(payload.model_dump())
                return channel.to_dict()

    async def set_channel_override(
        self,
        sales_channel_id: str,
        product_id: str,
        payload: ChannelOverride,
        role: str | None,
    ) -> dict:
        self.require_privileged(role)
        async with self.locks.hold(product_key(product_id)):
            async with self.session_factory() as session:
                async with session.begin():
                    if await SalesChannelRepository(session).get(sales_channel_id) is None:
                        raise NotFound(f"sales channel {sales_channel_id} not found")
                    products = ProductRepository(session)
                    if await products.get(product_id) is None:
                        raise NotFound(f"product {product_id} not found")
                    override = await products.set_override(
                        product_id,
                        sales_channel_id,
                        changed_price=payload.changed_price,
                        changed_title=payload.changed_title,
                    )
                    return override.to_dict()

    # --- Health ---

    def integration_health(self) -> list[dict]:
        """Circuit and latency figures of every external gateway in use."""
        gateways = [
            self.fulfillment.notifier.gateway,
            self.fulfillment.ebooks,
            self.fulfillment.erp,
        ]
        return [g.get_health().to_dict() for g in gateways if g is not None]

    # --- Delivery inspection ---

    async def delivery_stats(self, role: str | None) -> dict:
        self.require_privileged(role)
        return (await self.queue.stats()).to_dict()

    async def dead_letters(self, role: str | None) -> list[dict]:
        self.require_privileged(role)
        return [job.to_dict() for job in await self.queue.list_dead_letters()]


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_pipeline(
    config: BookstoreConfig,
    session_factory: async_sessionmaker[AsyncSession],
    queue: DeliveryQueue | None = None,
    sendgrid_transport: httpx.AsyncBaseTransport | None = None,
    ebooks_transport: httpx.AsyncBaseTransport | None = None,
    erp_transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[OrderService, DeliveryWorker]:
    """Build the order service and its delivery worker from config.

    Transports are injected by tests; production uses the network.
    """
    queue = queue or FileDeliveryQueue(config.delivery.queue_path)
    locks = KeyedLock()

    notifier = NotificationDispatcher(
        SendGridGateway(
            api_key=config.notifications.api_key,
            sender_email=config.notifications.sender_email,
            sender_name=config.notifications.sender_name,
            base_url=config.notifications.base_url,
            transport=sendgrid_transport,
        ),
        config.notifications,
    )
    ebooks = EbooksGateway(
        base_url=config.ebooks.base_url,
        api_key=config.ebooks.api_key,
        timeout=config.ebooks.timeout_seconds,
        transport=ebooks_transport,
    )
    erp = (
        XentralGateway(config.erp, transport=erp_transport)
        if config.erp.enabled
        else None
    )
    recorder = DeliveryRecorder(session_factory)

    fulfillment = FulfillmentService(
        session_factory,
        queue,
        ebooks,
        notifier,
        erp=erp,
        retry_budget=config.delivery.retry_budget,
        recorder=recorder,
    )
    service = OrderService(
        session_factory,
        OrderValidator(session_factory, config.pricing, config.privileged_roles),
        OrderCommitter(session_factory, locks),
        fulfillment,
        locks,
        queue,
    )
    worker = DeliveryWorker(
        queue,
        ebooks,
        notifier,
        recorder,
        poll_interval=config.delivery.poll_interval_seconds,
    )
    return service, worker
