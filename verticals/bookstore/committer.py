"""Atomic order commit.

Stock decrement and order insert happen in one database transaction while
the product locks of every line are held. Either the whole order is written
and stock is reduced, or nothing changes.
"""

from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.models.base import new_id
from core.observability.otel_setup import get_tracer
from core.resilience.locks import KeyedLock, product_key
from patterns.rules_engine import check_stock_availability
from verticals.bookstore.errors import CommitConflict, PersistenceError
from verticals.bookstore.models.db_models import Order, OrderItem
from verticals.bookstore.repository import ProductRepository
from verticals.bookstore.validator import ValidatedOrder

log = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

ORDER_FIELDS = (
    "user_id",
    "email",
    "first_name",
    "last_name",
    "delivery_address",
    "invoice_address",
    "payment_method",
)


class OrderCommitter:
    """Write a validated order and decrement stock, all or nothing."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock,
    ):
        self.session_factory = session_factory
        self.locks = locks

    async def commit(self, validated: ValidatedOrder, order_fields: dict[str, Any]) -> str:
        """Persist the order and return its id.

        Raises CommitConflict if stock changed since validation and
        PersistenceError if the database write fails.
        """
        keys = [product_key(line.product_id) for line in validated.lines]
        with tracer.start_as_current_span("order.commit") as span:
            span.set_attribute("order.lines", len(validated.lines))
            async with self.locks.hold(*keys):
                try:
                    async with self.session_factory() as session:
                        async with session.begin():
                            order_id = await self._write(session, validated, order_fields)
                except SQLAlchemyError as exc:
                    log.error("order commit failed", error=str(exc))
                    raise PersistenceError("order could not be saved") from exc
            span.set_attribute("order.id", order_id)

        log.info(
            "order committed",
            order_id=order_id,
            total_price=str(validated.total_price),
            payment_status=validated.payment_status.value,
        )
        return order_id

    async def _write(
        self,
        session: AsyncSession,
        validated: ValidatedOrder,
        order_fields: dict[str, Any],
    ) -> str:
        products = ProductRepository(session)

        for product_id in sorted(validated.quantities):
            quantity = validated.quantities[product_id]
            product = await products.get_for_update(product_id)
            if product is None or not product.active:
                raise CommitConflict(f"product {product_id} is no longer available")
            check = check_stock_availability(product.title, product.stock, quantity)
            if not check.passed:
                raise CommitConflict(check.message)
            product.stock -= quantity

        order = Order(
            id=new_id(),
            sales_channel_id=validated.sales_channel_id,
            total_price=validated.total_price,
            payment_status=validated.payment_status.value,
            delivery_status=validated.delivery_status.value,
            order_status=validated.order_status.value,
            **{name: order_fields.get(name) for name in ORDER_FIELDS if name in order_fields},
        )
        order.items = [
            OrderItem(
                id=new_id(),
                product_id=line.product_id,
                position=position,
                quantity=line.quantity,
                current_price=line.current_price,
            )
            for position, line in enumerate(validated.lines)
        ]
        session.add(order)
        await session.flush()
        return order.id
