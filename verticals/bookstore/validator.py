"""Order validation and pricing.

OrderValidator checks a submitted order against the live catalog and prices
it. It only reads: stock is decremented later by the OrderCommitter, which
re-checks every line under the product locks.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patterns.domain_config import PricingConfig
from patterns.rules_engine import (
    check_in_stock,
    check_product_active,
    check_stock_availability,
    evaluate_rules,
    order_total,
    resolve_unit_price,
)
from verticals.bookstore.errors import (
    Inactive,
    InsufficientStock,
    InvalidInput,
    NotFound,
    OutOfStock,
)
from verticals.bookstore.models.schemas import (
    DeliveryStatus,
    LineItemRequest,
    OrderStatus,
    PaymentStatus,
)
from verticals.bookstore.repository import ProductRepository, SalesChannelRepository

log = structlog.get_logger(__name__)

_RULE_ERRORS = {
    "product_active": Inactive,
    "in_stock": OutOfStock,
    "stock_availability": InsufficientStock,
}


@dataclass
class ValidatedLine:
    product_id: str
    title: str
    quantity: int
    current_price: Decimal
    is_download_title: bool


@dataclass
class ValidatedOrder:
    """A priced order ready to be committed."""

    sales_channel_id: str
    lines: list[ValidatedLine]
    total_price: Decimal
    all_digital: bool
    payment_status: PaymentStatus = PaymentStatus.PENDING
    delivery_status: DeliveryStatus = DeliveryStatus.OPEN
    order_status: OrderStatus = OrderStatus.IN_PROGRESS
    # Cumulative quantity per product, for the commit-time re-check
    quantities: dict[str, int] = field(default_factory=dict)


def _check_shape(sales_channel_id: str, line_items: list[LineItemRequest]) -> None:
    if not sales_channel_id:
        raise InvalidInput("sales channel cannot be unspecified")
    if not line_items:
        raise InvalidInput("no products present in order")
    for item in line_items:
        if not item.product_id:
            raise InvalidInput("product id cannot be unspecified")
        if item.quantity <= 0:
            raise InvalidInput("quantity must be a positive integer")


class OrderValidator:
    """Validate line items, lock in unit prices and compute the total."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pricing: PricingConfig | None = None,
        privileged_roles: Iterable[str] = ("admin",),
    ):
        self.session_factory = session_factory
        self.pricing = pricing or PricingConfig()
        self.privileged_roles = frozenset(privileged_roles)

    def is_privileged(self, issuer_role: str | None) -> bool:
        return issuer_role in self.privileged_roles

    async def validate(
        self,
        sales_channel_id: str,
        line_items: list[LineItemRequest],
        issuer_role: str | None = None,
        payment_status: PaymentStatus | None = None,
        delivery_status: DeliveryStatus | None = None,
        order_status: OrderStatus | None = None,
    ) -> ValidatedOrder:
        """Raise an OrderError subclass on the first failing line."""
        _check_shape(sales_channel_id, line_items)

        async with self.session_factory() as session:
            channel = await SalesChannelRepository(session).get(sales_channel_id)
            if channel is None:
                raise NotFound(f"sales channel {sales_channel_id} not found")

            products = ProductRepository(session)
            requested: dict[str, int] = {}
            lines: list[ValidatedLine] = []

            for item in line_items:
                product = await products.get(item.product_id)
                if product is None:
                    raise NotFound(f"product {item.product_id} not found")

                # Repeated lines draw on the same stock
                cumulative = requested.get(product.id, 0) + item.quantity
                result = evaluate_rules(
                    check_product_active(product.title, product.active),
                    check_in_stock(product.title, product.stock),
                    check_stock_availability(product.title, product.stock, cumulative),
                )
                if not result.all_passed:
                    failure = result.first_failure
                    log.info(
                        "order line rejected",
                        product_id=product.id,
                        rule=failure.rule_name,
                        requested=cumulative,
                        stock=product.stock,
                    )
                    raise _RULE_ERRORS[failure.rule_name](failure.message)
                requested[product.id] = cumulative

                override = await products.get_override(product.id, sales_channel_id)
                unit_price = resolve_unit_price(
                    product.selling_price,
                    override.changed_price if override is not None else None,
                )
                lines.append(ValidatedLine(
                    product_id=product.id,
                    title=product.title,
                    quantity=item.quantity,
                    current_price=unit_price,
                    is_download_title=product.is_download_title,
                ))

        all_digital = all(line.is_download_title for line in lines)
        total = order_total(
            [(line.current_price, line.quantity) for line in lines],
            all_digital,
            threshold=self.pricing.free_shipping_threshold,
            surcharge=self.pricing.shipping_surcharge,
        )

        validated = ValidatedOrder(
            sales_channel_id=sales_channel_id,
            lines=lines,
            total_price=total,
            all_digital=all_digital,
            quantities=dict(requested),
        )
        if self.is_privileged(issuer_role):
            validated.payment_status = payment_status or PaymentStatus.PENDING
            validated.delivery_status = delivery_status or DeliveryStatus.OPEN
            validated.order_status = order_status or OrderStatus.IN_PROGRESS
        return validated
