"""Bookstore repositories — async database access for the catalog and orders.

Extends BaseRepository with the queries the order pipeline needs: locked
product reads, sales-channel overrides, and orders with their lines.
"""

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from patterns.repository import BaseRepository
from verticals.bookstore.models.db_models import (
    Order,
    OrderItem,
    Product,
    SalesChannel,
    SalesChannelProduct,
)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class ProductRepository(BaseRepository[Product]):
    """Repository for catalog products and their channel overrides."""

    model = Product

    async def get_for_update(self, product_id: str) -> Product | None:
        """Read a product row locked for the rest of the transaction."""
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_override(
        self, product_id: str, sales_channel_id: str
    ) -> SalesChannelProduct | None:
        """The channel-specific price/title override, if any."""
        return await self.session.get(SalesChannelProduct, (sales_channel_id, product_id))

    async def set_override(
        self,
        product_id: str,
        sales_channel_id: str,
        changed_price=None,
        changed_title: str | None = None,
    ) -> SalesChannelProduct:
        override = await self.get_override(product_id, sales_channel_id)
        if override is None:
            override = SalesChannelProduct(
                product_id=product_id, sales_channel_id=sales_channel_id
            )
            self.session.add(override)
        override.changed_price = changed_price
        override.changed_title = changed_title
        await self.session.flush()
        return override

    async def get_with_override(
        self, product_id: str, sales_channel_id: str | None = None
    ) -> dict | None:
        """Product as displayed in a channel: overridden price and title."""
        product = await self.get(product_id)
        if product is None:
            return None

        data = product.to_dict()
        if sales_channel_id:
            override = await self.get_override(product_id, sales_channel_id)
            if override is not None:
                if override.changed_price:
                    data["selling_price"] = f"{override.changed_price:.2f}"
                if override.changed_title:
                    data["title"] = override.changed_title
        return data


class SalesChannelRepository(BaseRepository[SalesChannel]):
    """Repository for sales channels."""

    model = SalesChannel


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderRepository(BaseRepository[Order]):
    """Repository for orders and their line items."""

    model = Order

    async def get_with_items(self, order_id: str, for_update: bool = False) -> Order | None:
        """Order with lines and their products eagerly loaded."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Order)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_display(self, order_id: str) -> dict | None:
        """Order as shown to the customer, with channel title overrides.

        Line prices are the locked-in current_price and are never replaced.
        """
        order = await self.get_with_items(order_id)
        if order is None:
            return None

        data = order.to_dict()
        for line, item in zip(data["products"], order.items):
            title = item.product.title
            override = await self.session.get(
                SalesChannelProduct, (order.sales_channel_id, item.product_id)
            )
            if override is not None and override.changed_title:
                title = override.changed_title
            line["title"] = title
            line["subtitle"] = item.product.subtitle
        return data
