"""
Bookbox Core Integrations — Adapter Framework.

Provides vendor-agnostic integration infrastructure:
- AdapterBase: HTTP adapter with auth, retries, circuit breaker, health
- GatewayError: the single failure type every adapter raises
- SendGridGateway: templated email delivery
"""
from core.integrations.adapter_base import (
    AdapterBase,
    AdapterRequest,
    AdapterResponse,
    AuthType,
    GatewayError,
    IntegrationHealth,
)
from core.integrations.sendgrid import SendGridGateway

__all__ = [
    # Adapter
    "AdapterBase",
    "AdapterRequest",
    "AdapterResponse",
    "AuthType",
    "GatewayError",
    "IntegrationHealth",
    # Vendors
    "SendGridGateway",
]
