"""Dataclass-based domain configuration pattern.

The bookstore defines its thresholds, limits, and gateway settings as frozen
dataclasses. This gives you:
- Type safety (IDE autocompletion, mypy checking)
- Default values (sensible out-of-the-box)
- Immutability (frozen=True prevents accidental mutation)
- Easy overrides (from env vars or explicit construction in tests)
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricingConfig:
    """Order pricing rules."""

    shipping_surcharge: Decimal = Decimal("3.99")
    free_shipping_threshold: Decimal = Decimal("40.00")


@dataclass(frozen=True)
class DeliveryConfig:
    """Digital delivery queue and worker settings."""

    retry_budget: int = 25
    poll_interval_seconds: float = 5.0
    queue_path: str = "/tmp/bookbox-api/ebooks"


@dataclass(frozen=True)
class NotificationConfig:
    """SendGrid dynamic-template email settings."""

    api_key: str = ""
    base_url: str = "https://api.sendgrid.com"
    sender_email: str = "shop@bookbox.ch"
    sender_name: str = "Bookbox"
    order_template_id: str = ""
    failed_order_template_id: str = ""
    currency_symbol: str = "€"


@dataclass(frozen=True)
class EbooksConfig:
    """Digital fulfillment gateway settings."""

    base_url: str = "http://localhost:8089"
    api_key: str = ""
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ErpConfig:
    """Xentral ERP mirror settings."""

    base_url: str = ""
    api_token: str = ""
    project_id: str = "1"
    currency: str = "CHF"
    country: str = "CH"
    shipping_method_id: str = "1"

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.api_token)


# ---------------------------------------------------------------------------
# Top-level domain config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BookstoreConfig:
    """Complete configuration for the bookstore order pipeline.

    Usage::

        config = BookstoreConfig.from_env()
        if not all_digital and total < config.pricing.free_shipping_threshold:
            total += config.pricing.shipping_surcharge
    """

    pricing: PricingConfig = field(default_factory=PricingConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    ebooks: EbooksConfig = field(default_factory=EbooksConfig)
    erp: ErpConfig = field(default_factory=ErpConfig)

    privileged_roles: tuple[str, ...] = ("admin",)

    @classmethod
    def default(cls) -> "BookstoreConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "BOOKSTORE_") -> "BookstoreConfig":
        """Create config from environment variables.

        Example: BOOKSTORE_RETRY_BUDGET=10, SENDGRID_API_KEY=SG.xxx
        """
        env = os.environ

        pricing = PricingConfig(
            shipping_surcharge=Decimal(env.get(f"{prefix}SHIPPING_SURCHARGE", "3.99")),
            free_shipping_threshold=Decimal(
                env.get(f"{prefix}FREE_SHIPPING_THRESHOLD", "40.00")
            ),
        )
        delivery = DeliveryConfig(
            retry_budget=int(env.get(f"{prefix}RETRY_BUDGET", "25")),
            poll_interval_seconds=float(env.get(f"{prefix}POLL_INTERVAL", "5")),
            queue_path=env.get("EBOOKS_QUEUE_PATH", DeliveryConfig.queue_path),
        )
        notifications = NotificationConfig(
            api_key=env.get("SENDGRID_API_KEY", ""),
            sender_email=env.get("SENDGRID_SENDER_EMAIL", NotificationConfig.sender_email),
            order_template_id=env.get("SENDGRID_ORDER_TEMPLATE_ID", ""),
            failed_order_template_id=env.get("SENDGRID_FAILED_TEMPLATE_ID", ""),
        )
        ebooks = EbooksConfig(
            base_url=env.get("EBOOKS_API_URL", EbooksConfig.base_url),
            api_key=env.get("EBOOKS_API_KEY", ""),
        )
        erp = ErpConfig(
            base_url=env.get("XENTRAL_API_URL", ""),
            api_token=env.get("XENTRAL_API_TOKEN", ""),
        )

        return cls(
            pricing=pricing,
            delivery=delivery,
            notifications=notifications,
            ebooks=ebooks,
            erp=erp,
        )
