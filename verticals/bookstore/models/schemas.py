"""Pydantic schemas for API request/response validation and order snapshots."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    OPEN = "open"
    DELIVERED = "delivered"
    FAILED = "failed"


class OrderStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK = "bank"
    INVOICE = "invoice"


class UserRole(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    GUEST = "guest"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class LineItemRequest(BaseModel):
    product_id: str = ""
    quantity: int = 1


class OrderCreate(BaseModel):
    sales_channel_id: str = ""
    products: list[LineItemRequest] = Field(default_factory=list)
    email: str = Field(..., min_length=3, max_length=320)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    delivery_address: Optional[str] = None
    invoice_address: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    # Honoured for privileged issuers only
    payment_status: Optional[PaymentStatus] = None
    delivery_status: Optional[DeliveryStatus] = None
    order_status: Optional[OrderStatus] = None


class PaymentConfirmation(BaseModel):
    status: PaymentStatus


class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    ean: Optional[str] = Field(None, pattern=r"^\d{8,13}$")
    publisher: Optional[str] = None
    stock: int = Field(0, ge=0)
    selling_price: Decimal = Field(..., ge=0, decimal_places=2)
    is_download_title: bool = False
    active: bool = True


class ProductUpdate(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    is_download_title: Optional[bool] = None
    active: Optional[bool] = None


class SalesChannelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    domain: Optional[str] = None


class ChannelOverride(BaseModel):
    changed_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    changed_title: Optional[str] = None


# ---------------------------------------------------------------------------
# Order snapshot (queue-resident, by value)
# ---------------------------------------------------------------------------

class OrderItemSnapshot(BaseModel):
    id: str
    product_id: str
    title: str
    subtitle: Optional[str] = None
    ean: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    quantity: int
    current_price: Decimal
    is_download_title: bool = False
    download_url: Optional[str] = None


class OrderSnapshot(BaseModel):
    id: str
    user_id: Optional[str] = None
    sales_channel_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    delivery_address: Optional[str] = None
    invoice_address: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    total_price: Decimal
    external_order_id: Optional[str] = None
    created_at: Optional[datetime] = None
    items: list[OrderItemSnapshot] = Field(default_factory=list)

    @property
    def digital_items(self) -> list[OrderItemSnapshot]:
        return [item for item in self.items if item.is_download_title]

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class OrderCreated(BaseModel):
    id: str
    total_price: Decimal
    payment_status: PaymentStatus


class PaymentResult(BaseModel):
    id: str
    payment_status: PaymentStatus
    handoff: Optional[str] = None
