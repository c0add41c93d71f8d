"""Bookstore API router — orders, payment, catalog and delivery inspection.

Follows the standard router pattern:
- Thin handlers: validation by Pydantic, logic in OrderService
- Service injection via FastAPI Depends (built once in the app lifespan)
- Issuer from the middleware ContextVar
- OrderError subclasses mapped to HTTP status codes in one place
"""

from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.middleware import get_current_issuer
from verticals.bookstore.errors import NotFound, OrderError
from verticals.bookstore.models.schemas import (
    ChannelOverride,
    OrderCreate,
    OrderCreated,
    PaymentConfirmation,
    PaymentResult,
    ProductCreate,
    ProductUpdate,
    SalesChannelCreate,
)
from verticals.bookstore.service import OrderService

router = APIRouter()


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


def _http_error(exc: OrderError, resource_lookup: bool = False) -> NoReturn:
    """Raise the HTTP equivalent of an order error.

    NotFound is a 404 only when the path names the missing resource; a
    product id inside an order body is a bad request.
    """
    status_code = exc.status_code
    if isinstance(exc, NotFound) and resource_lookup:
        status_code = 404
    raise HTTPException(status_code=status_code, detail=exc.message) from exc


# ============================================================================
# Order Endpoints
# ============================================================================

@router.post("/orders", status_code=201, response_model=OrderCreated)
async def create_order(
    request: OrderCreate,
    service: OrderService = Depends(get_order_service),
):
    """Validate, price and commit an order."""
    issuer = get_current_issuer()
    try:
        return await service.submit(request, user_id=issuer.user_id, role=issuer.role)
    except OrderError as exc:
        _http_error(exc)


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
):
    """Get an order with its lines, titles as shown in its sales channel."""
    try:
        return await service.get_order(order_id)
    except OrderError as exc:
        _http_error(exc, resource_lookup=True)


@router.post("/orders/{order_id}/payment", response_model=PaymentResult)
async def confirm_payment(
    order_id: str,
    request: PaymentConfirmation,
    service: OrderService = Depends(get_order_service),
):
    """Record the payment outcome; a paid order starts delivery."""
    try:
        return await service.confirm_payment(
            order_id, request.status, role=get_current_issuer().role
        )
    except OrderError as exc:
        _http_error(exc, resource_lookup=True)


# ============================================================================
# Catalog Endpoints
# ============================================================================

@router.post("/products", status_code=201)
async def create_product(
    request: ProductCreate,
    service: OrderService = Depends(get_order_service),
):
    """Add a product to the catalog."""
    try:
        return await service.create_product(request, role=get_current_issuer().role)
    except OrderError as exc:
        _http_error(exc)


@router.get("/products/{product_id}")
async def get_product(
    product_id: str,
    sales_channel_id: Optional[str] = None,
    service: OrderService = Depends(get_order_service),
):
    """Get a product, with price and title as shown in a sales channel."""
    try:
        return await service.get_product(product_id, sales_channel_id)
    except OrderError as exc:
        _http_error(exc, resource_lookup=True)


@router.patch("/products/{product_id}")
async def update_product(
    product_id: str,
    request: ProductUpdate,
    service: OrderService = Depends(get_order_service),
):
    """Update a product (price, stock, description, etc.)."""
    try:
        return await service.update_product(
            product_id, request, role=get_current_issuer().role
        )
    except OrderError as exc:
        _http_error(exc, resource_lookup=True)


@router.delete("/products/{product_id}", status_code=204)
async def delete_product(
    product_id: str,
    service: OrderService = Depends(get_order_service),
):
    """Deactivate a product; it can no longer be ordered."""
    try:
        await service.deactivate_product(product_id, role=get_current_issuer().role)
    except OrderError as exc:
        _http_error(exc, resource_lookup=True)


@router.post("/sales-channels", status_code=201)
async def create_sales_channel(
    request: SalesChannelCreate,
    service: OrderService = Depends(get_order_service),
):
    try:
        return await service.create_sales_channel(request, role=get_current_issuer().role)
    except OrderError as exc:
        _http_error(exc)


@router.put("/sales-channels/{sales_channel_id}/products/{product_id}")
async def set_channel_override(
    sales_channel_id: str,
    product_id: str,
    request: ChannelOverride,
    service: OrderService = Depends(get_order_service),
):
    """Set the channel-specific price and title of a product."""
    try:
        return await service.set_channel_override(
            sales_channel_id, product_id, request, role=get_current_issuer().role
        )
    except OrderError as exc:
        _http_error(exc, resource_lookup=True)


# ============================================================================
# Delivery Inspection
# ============================================================================

@router.get("/delivery/stats")
async def delivery_stats(service: OrderService = Depends(get_order_service)):
    """Pending and dead-lettered job counts."""
    try:
        return await service.delivery_stats(role=get_current_issuer().role)
    except OrderError as exc:
        _http_error(exc)


@router.get("/delivery/dead-letters")
async def dead_letters(service: OrderService = Depends(get_order_service)):
    """Dead-lettered jobs, for manual follow-up."""
    try:
        jobs = await service.dead_letters(role=get_current_issuer().role)
    except OrderError as exc:
        _http_error(exc)
    return {"data": jobs, "count": len(jobs)}
