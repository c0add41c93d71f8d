"""Xentral ERP mirror for paid orders.

mirror_order() makes sure the customer and every product exist in the ERP,
then imports the sales order with one position per order line. The mirror
is eventually consistent: the caller treats every failure as best-effort.
"""

from datetime import date
from typing import Any

import structlog

from core.integrations.adapter_base import AdapterBase, AdapterRequest, AuthType, GatewayError
from patterns.domain_config import ErpConfig
from verticals.bookstore.models.schemas import OrderItemSnapshot, OrderSnapshot

log = structlog.get_logger(__name__)

PAYMENT_METHOD_IDS = {
    "card": "15",
    "bank": "13",
}
DEFAULT_PAYMENT_METHOD_ID = "1"
NO_VALUE = "no value"


def _first_id(data: Any) -> str | None:
    rows = data.get("data") if isinstance(data, dict) else None
    if not isinstance(rows, list):
        raise GatewayError("unexpected ERP listing payload", adapter=XentralGateway.name)
    if not rows:
        return None
    row = rows[0]
    if not isinstance(row, dict) or row.get("id") is None:
        raise GatewayError("ERP listing row has no id", adapter=XentralGateway.name)
    return str(row["id"])


class XentralGateway(AdapterBase):
    """External order gateway backed by the Xentral REST API."""

    name = "xentral"
    auth_type = AuthType.BEARER
    default_headers = {
        "accept": "application/vnd.xentral.default.v1+json",
        "content-type": "application/vnd.xentral.default.v1+json",
    }

    def __init__(self, config: ErpConfig, **kwargs: Any):
        super().__init__(base_url=config.base_url, api_key=config.api_token, **kwargs)
        self.config = config

    # --- Lookups ---

    async def _find(self, resource: str, key: str, value: str) -> str | None:
        resp = await self.request(AdapterRequest(
            method="GET",
            path=f"/{resource}",
            params={
                "filter[0][key]": key,
                "filter[0][value]": value,
                "filter[0][op]": "equals",
            },
        ))
        resp.raise_for_error()
        return _first_id(resp.data)

    async def find_customer(self, email: str) -> str | None:
        return await self._find("customers", "email", email)

    async def find_product(self, number: str) -> str | None:
        return await self._find("products", "number", number)

    # --- Creation ---

    async def create_customer(self, order: OrderSnapshot) -> str:
        body = {
            "type": "company",
            "general": {
                "name": order.full_name or order.email,
                "address": {
                    "street": order.delivery_address or "",
                    "country": self.config.country,
                    "note": "User data",
                },
            },
            "contact": {
                "email": order.email,
                "marketingMails": False,
                "trackingMails": False,
            },
        }
        resp = await self.request(AdapterRequest(method="POST", path="/customers", body=body))
        resp.raise_for_error()

        customer_id = await self.find_customer(order.email)
        if customer_id is None:
            raise GatewayError("customer not found after creation", adapter=self.name)
        return customer_id

    async def create_product(self, item: OrderItemSnapshot) -> str:
        body = {
            "project": {"id": self.config.project_id},
            "name": item.title or NO_VALUE,
            "number": item.product_id,
            "description": item.description or NO_VALUE,
            "ean": item.ean or "",
            "shopPriceDisplay": f"{item.current_price:.2f}",
            "manufacturer": {"name": item.publisher or NO_VALUE},
            "isStockItem": not item.is_download_title,
            "minimumOrderQuantity": 1,
        }
        resp = await self.request(AdapterRequest(method="POST", path="/products", body=body))
        resp.raise_for_error()

        product_id = await self.find_product(item.product_id)
        if product_id is None:
            raise GatewayError("product not found after creation", adapter=self.name)
        return product_id

    # --- Sales order ---

    def sales_order_payload(
        self,
        order: OrderSnapshot,
        customer_id: str,
        erp_product_ids: dict[str, str],
    ) -> dict[str, Any]:
        name = order.full_name or order.email
        payment_method_id = PAYMENT_METHOD_IDS.get(
            order.payment_method.value, DEFAULT_PAYMENT_METHOD_ID
        )
        return {
            "customer": {"id": customer_id},
            "project": {"id": self.config.project_id},
            "financials": {
                "paymentMethod": {"id": payment_method_id},
                "billingAddress": {
                    "street": order.invoice_address or order.delivery_address or "",
                    "country": self.config.country,
                    "name": name,
                    "type": "mr",
                },
                "currency": self.config.currency,
            },
            "delivery": {
                "shippingAddress": {
                    "street": order.delivery_address or "",
                    "country": self.config.country,
                    "name": name,
                    "type": "mr",
                },
                "shippingMethod": {"id": self.config.shipping_method_id},
            },
            "date": (order.created_at.date() if order.created_at else date.today()).isoformat(),
            "positions": [
                {
                    "product": {"id": erp_product_ids[item.product_id]},
                    "price": {
                        "amount": f"{item.current_price:.2f}",
                        "currency": self.config.currency,
                    },
                    "quantity": item.quantity,
                }
                for item in order.items
            ],
            "externalOrderId": order.id,
        }

    async def mirror_order(self, order: OrderSnapshot) -> None:
        """Mirror a paid order: customer, products, then the sales order."""
        customer_id = await self.find_customer(order.email)
        if customer_id is None:
            log.info("erp customer not found, creating", order_id=order.id)
            customer_id = await self.create_customer(order)

        erp_product_ids: dict[str, str] = {}
        for item in order.items:
            if item.product_id in erp_product_ids:
                continue
            erp_id = await self.find_product(item.product_id)
            if erp_id is None:
                erp_id = await self.create_product(item)
            erp_product_ids[item.product_id] = erp_id

        payload = self.sales_order_payload(order, customer_id, erp_product_ids)
        resp = await self.request(AdapterRequest(
            method="POST",
            path="/salesOrders/actions/import",
            body=payload,
            headers={"content-type": "application/vnd.xentral.default.v1-beta+json"},
        ))
        resp.raise_for_error()
        log.info("erp sales order imported", order_id=order.id, positions=len(order.items))
