"""
Bookbox Core Resilience — Fault Tolerance Primitives.

Provides reliability patterns for the order pipeline:
- DeliveryQueue: Durable pending/dead-letter store for delivery jobs
- KeyedLock: Per-entity mutual exclusion
- best_effort: Named policy for side-channel calls
"""
from core.resilience.best_effort import SIDE_CHANNEL_ERRORS, best_effort
from core.resilience.delivery_queue import (
    DEFAULT_RETRY_BUDGET,
    DeliveryJob,
    DeliveryQueue,
    FileDeliveryQueue,
    InMemoryDeliveryQueue,
    QueueCollection,
    QueueStats,
)
from core.resilience.locks import KeyedLock, order_key, product_key

__all__ = [
    # Queue
    "DEFAULT_RETRY_BUDGET",
    "DeliveryJob",
    "DeliveryQueue",
    "FileDeliveryQueue",
    "InMemoryDeliveryQueue",
    "QueueCollection",
    "QueueStats",
    # Locks
    "KeyedLock",
    "order_key",
    "product_key",
    # Side channels
    "SIDE_CHANNEL_ERRORS",
    "best_effort",
]
