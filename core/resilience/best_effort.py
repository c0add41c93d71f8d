"""
Bookbox Best-Effort Side Channels.

Some calls are side channels: customer emails, the ERP order mirror. Their
failure must never change order or delivery-job state. Instead of scattering
``try/except: pass`` around call sites, those calls go through
``best_effort()``, which:

- awaits the call
- logs a failure of one of the listed error types with the action name
- reports success as a boolean

Any other exception type still propagates.
"""
from __future__ import annotations
from typing import Any, Awaitable

import structlog

from core.integrations.adapter_base import GatewayError

log = structlog.get_logger(__name__)

SIDE_CHANNEL_ERRORS: tuple[type[BaseException], ...] = (GatewayError,)


async def best_effort(
    action: str,
    call: Awaitable[Any],
    errors: tuple[type[BaseException], ...] = SIDE_CHANNEL_ERRORS,
    **fields: Any,
) -> bool:
    """Run a side-channel call; log and absorb listed errors."""
    try:
        await call
    except errors as exc:
        log.error(
            "side channel call failed",
            action=action,
            error=str(exc),
            error_type=type(exc).__name__,
            **fields,
        )
        return False
    return True
