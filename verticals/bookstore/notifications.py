"""Customer emails for order delivery outcomes.

All sends are side channels: a failed email is logged and reported as
False, and never changes order or delivery-job state.
"""

from decimal import Decimal
from typing import Any

from core.integrations.sendgrid import SendGridGateway
from core.resilience.best_effort import best_effort
from patterns.domain_config import NotificationConfig
from verticals.bookstore.models.schemas import OrderSnapshot


class NotificationDispatcher:
    """Templated SendGrid emails built from order snapshots."""

    def __init__(self, gateway: SendGridGateway, config: NotificationConfig):
        self.gateway = gateway
        self.config = config

    def _price(self, amount: Decimal) -> str:
        return f"{amount:.2f}{self.config.currency_symbol}"

    def order_template_data(self, order: OrderSnapshot) -> dict[str, Any]:
        return {
            "address": order.delivery_address or "",
            "order_id": order.id,
            "order": [
                {
                    "title": item.title,
                    "subtitle": item.subtitle or "",
                    "ebook_url": item.download_url or "",
                    "price": self._price(item.current_price),
                }
                for item in order.items
            ],
            "total_price": self._price(order.total_price),
        }

    def failed_template_data(self, order: OrderSnapshot) -> dict[str, Any]:
        return {"order_id": order.id}

    async def send_delivered(self, order: OrderSnapshot) -> bool:
        """Order confirmation, including download links once delivered."""
        return await best_effort(
            "order_notification",
            self.gateway.send(
                self.config.order_template_id,
                order.email,
                self.order_template_data(order),
            ),
            order_id=order.id,
        )

    # Physical-only orders get the same email, without links
    send_order_confirmation = send_delivered

    async def send_failed(self, order: OrderSnapshot) -> bool:
        return await best_effort(
            "order_failed_notification",
            self.gateway.send(
                self.config.failed_order_template_id,
                order.email,
                self.failed_template_data(order),
            ),
            order_id=order.id,
        )
