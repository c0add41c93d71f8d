"""Digital fulfillment gateway.

Two calls:
- create_order: one bulk order for every downloadable product of a paid
  order, returning the provider's order handle
- get_download_urls: fetch the prepared download links for that handle and
  attach them to the snapshot's digital lines

Links are prepared asynchronously by the provider; fewer ready links than
expected is a failed attempt, retried by the delivery worker.
"""

from typing import Any

from core.integrations.adapter_base import AdapterBase, AdapterRequest, AuthType, GatewayError
from verticals.bookstore.models.schemas import OrderSnapshot


class EbooksGateway(AdapterBase):
    """Adapter for the e-book distribution API."""

    name = "ebooks"
    auth_type = AuthType.API_KEY
    api_key_header = "X-API-Key"

    async def create_order(self, product_ids: list[str]) -> str:
        """Create one provider order for all product ids at once."""
        resp = await self.request(AdapterRequest(
            method="POST",
            path="/orders",
            body={"products": [{"id": product_id} for product_id in product_ids]},
        ))
        resp.raise_for_error()

        data: Any = resp.data
        external_id = data.get("order_id") if isinstance(data, dict) else None
        if not external_id:
            raise GatewayError("fulfillment gateway returned no order id", adapter=self.name)
        return str(external_id)

    async def get_download_urls(self, snapshot: OrderSnapshot, item_count: int) -> None:
        """Fill ``download_url`` on the snapshot's digital lines.

        Raises GatewayError unless at least ``item_count`` links are ready.
        """
        if item_count <= 0:
            return
        if not snapshot.external_order_id:
            raise GatewayError("order has no fulfillment handle", adapter=self.name)

        resp = await self.request(AdapterRequest(
            method="GET",
            path=f"/orders/{snapshot.external_order_id}/downloads",
        ))
        resp.raise_for_error()

        data: Any = resp.data
        downloads = data.get("downloads", []) if isinstance(data, dict) else None
        if not isinstance(downloads, list) or not all(
            isinstance(entry, dict) for entry in downloads
        ):
            raise GatewayError("malformed download listing", adapter=self.name)
        links = {
            str(entry["product_id"]): str(entry["url"])
            for entry in downloads
            if entry.get("product_id") and entry.get("url")
        }

        ready = [item for item in snapshot.digital_items if item.product_id in links]
        if len(ready) < item_count:
            raise GatewayError(
                f"download links not ready: {len(ready)}/{item_count}",
                adapter=self.name,
            )
        for item in ready:
            item.download_url = links[item.product_id]
