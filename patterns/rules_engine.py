"""Pure-function rules engine pattern.

Rules are stateless functions: (values) -> RuleResult or a computed value.
No database, no side effects. This makes them:
- Trivially testable (pure input/output)
- Composable (the order validator chains them per line)
- Auditable (deterministic, explainable)

Domain: bookstore order pricing and stock checks.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleSetResult:
    """Aggregate outcome of multiple rules."""

    all_passed: bool
    results: list[RuleResult]
    failed: list[RuleResult] = field(default_factory=list)

    def __post_init__(self):
        self.failed = [r for r in self.results if not r.passed]
        self.all_passed = len(self.failed) == 0

    @property
    def first_failure(self) -> RuleResult | None:
        return self.failed[0] if self.failed else None


# ---------------------------------------------------------------------------
# Line rules
# ---------------------------------------------------------------------------

def check_product_active(title: str, active: bool) -> RuleResult:
    return RuleResult(
        passed=active,
        rule_name="product_active",
        message="Product is active" if active else "invalid product found in order",
        details={"title": title},
    )


def check_in_stock(title: str, stock: int) -> RuleResult:
    """An exhausted product fails regardless of the requested quantity."""
    passed = stock != 0
    return RuleResult(
        passed=passed,
        rule_name="in_stock",
        message=f"In stock: {stock} available" if passed else f"product: {title} is out of stock",
        details={"title": title, "available": stock},
    )


def check_stock_availability(title: str, stock: int, quantity: int) -> RuleResult:
    """Check that ordering ``quantity`` leaves stock non-negative."""
    passed = stock - quantity >= 0
    return RuleResult(
        passed=passed,
        rule_name="stock_availability",
        message=(
            f"In stock: {stock} available"
            if passed
            else "not enough product is available in stock"
        ),
        details={"title": title, "available": stock, "requested": quantity},
    )


# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------

def resolve_unit_price(base_price: Decimal, channel_price: Decimal | None) -> Decimal:
    """Channel override wins when it is set and non-zero."""
    if channel_price:
        return Decimal(channel_price)
    return Decimal(base_price)


def shipping_surcharge(
    subtotal: Decimal,
    all_digital: bool,
    threshold: Decimal,
    surcharge: Decimal,
) -> Decimal:
    """Physical orders under the threshold pay shipping; digital-only never do."""
    if not all_digital and subtotal < threshold:
        return surcharge
    return Decimal("0")


def order_total(
    lines: list[tuple[Decimal, int]],
    all_digital: bool,
    threshold: Decimal,
    surcharge: Decimal,
) -> Decimal:
    """Sum of unit price times quantity, plus the shipping rule, in cents."""
    subtotal = sum((price * quantity for price, quantity in lines), Decimal("0"))
    total = subtotal + shipping_surcharge(subtotal, all_digital, threshold, surcharge)
    return total.quantize(CENT)


# ---------------------------------------------------------------------------
# Rule composition
# ---------------------------------------------------------------------------

def evaluate_rules(*rules: RuleResult) -> RuleSetResult:
    """Compose multiple rule results into a single aggregate.

    Example::

        result = evaluate_rules(
            check_product_active(product.title, product.active),
            check_in_stock(product.title, product.stock),
            check_stock_availability(product.title, product.stock, qty),
        )
        if not result.all_passed:
            reject(result.first_failure)
    """
    return RuleSetResult(
        all_passed=all(r.passed for r in rules),
        results=list(rules),
    )
