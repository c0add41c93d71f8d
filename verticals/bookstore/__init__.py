"""Bookstore vertical — order fulfillment and digital delivery.

Puts every pattern to work in one domain:
- SQLAlchemy models for catalog, sales channels and orders
- Async repositories with locked reads and channel overrides
- Pure-function pricing and stock rules
- Atomic commit under per-product locks
- Paid-order handoff to a durable delivery queue and a single worker
- SendGrid, e-book provider and Xentral ERP gateways
- FastAPI router and dataclass configuration
"""
