"""
SendGrid dynamic-template email adapter.

Sends one templated email per call through the v3 mail/send endpoint.
A non-2xx response raises GatewayError; callers decide whether that
matters (order emails go through the best-effort policy).
"""
from __future__ import annotations
from typing import Any

import httpx
import structlog

from core.integrations.adapter_base import AdapterBase, AdapterRequest, AuthType

log = structlog.get_logger(__name__)


class SendGridGateway(AdapterBase):
    """Notification gateway: ``send(template_id, recipient, template_data)``."""

    name = "sendgrid"
    auth_type = AuthType.BEARER
    MAX_RETRIES = 1

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str = "Bookbox",
        base_url: str = "https://api.sendgrid.com",
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ):
        super().__init__(base_url=base_url, api_key=api_key, transport=transport, **kwargs)
        self.sender_email = sender_email
        self.sender_name = sender_name

    async def send(
        self,
        template_id: str,
        recipient: str,
        template_data: dict[str, Any],
    ) -> None:
        body = {
            "from": {"email": self.sender_email, "name": self.sender_name},
            "personalizations": [
                {
                    "to": [{"email": recipient}],
                    "dynamic_template_data": template_data,
                }
            ],
            "template_id": template_id,
        }
        log.debug("sending mail", sender=self.sender_email, recipient=recipient, template_id=template_id)
        resp = await self.request(AdapterRequest(method="POST", path="/v3/mail/send", body=body))
        resp.raise_for_error()
