"""SQLAlchemy models for the bookstore vertical.

Each model inherits from Base and uses EntityMixin for identity and audit
columns. The to_dict() method provides a standard serialisation interface used
by repositories and routers.

Money columns are Numeric(10, 2) and surface as Decimal.
"""

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import Base, EntityMixin


def _money(value: Decimal | None) -> str | None:
    return None if value is None else f"{value:.2f}"


class Product(EntityMixin, Base):
    """A title in the catalog, physical or downloadable."""

    __tablename__ = "products"

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ean: Mapped[str | None] = mapped_column(String(13), nullable=True, index=True)
    publisher: Mapped[str | None] = mapped_column(String(200), nullable=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    selling_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_download_title: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    channel_overrides: Mapped[list["SalesChannelProduct"]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "subtitle": self.subtitle,
            "description": self.description,
            "ean": self.ean,
            "publisher": self.publisher,
            "stock": self.stock,
            "selling_price": _money(self.selling_price),
            "is_download_title": self.is_download_title,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SalesChannel(EntityMixin, Base):
    """A distribution channel (shop front) with its own price/title overrides."""

    __tablename__ = "sales_channels"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "active": self.active,
        }


class SalesChannelProduct(Base):
    """Per-channel substitute price and title for a product.

    A zero/null changed_price or an empty changed_title means no override.
    """

    __tablename__ = "sales_channel_products"

    sales_channel_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sales_channels.id", ondelete="CASCADE"), primary_key=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    changed_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    changed_title: Mapped[str | None] = mapped_column(String(500), nullable=True)

    product: Mapped["Product"] = relationship(back_populates="channel_overrides")

    def to_dict(self) -> dict:
        return {
            "sales_channel_id": self.sales_channel_id,
            "product_id": self.product_id,
            "changed_price": _money(self.changed_price),
            "changed_title": self.changed_title,
        }


class Order(EntityMixin, Base):
    """A customer order. Line prices are locked in at creation."""

    __tablename__ = "orders"

    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    sales_channel_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sales_channels.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="card")
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    delivery_status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    order_status: Mapped[str] = mapped_column(String(20), nullable=False, default="in_progress")
    external_order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.position"
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "sales_channel_id": self.sales_channel_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "delivery_address": self.delivery_address,
            "invoice_address": self.invoice_address,
            "total_price": _money(self.total_price),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "delivery_status": self.delivery_status,
            "order_status": self.order_status,
            "external_order_id": self.external_order_id,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data["products"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(Base):
    """A line of an order: product, quantity and the locked-in unit price."""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    download_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "current_price": _money(self.current_price),
            "download_url": self.download_url,
        }
