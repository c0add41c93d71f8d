"""Issuer context middleware using ContextVar.

Authentication happens upstream; the gateway forwards the authenticated
user in the X-User-ID and X-User-Role headers. The issuer is stored in a
ContextVar so that routers can call get_current_issuer() without explicit
parameter passing, and a request id is bound into the structlog context so
every log line of the request carries it.

The role header grants privileges (catalog writes, payment confirmation),
so the upstream gateway must strip X-User-ID and X-User-Role from
untrusted clients and set them only from the authenticated session.
Never expose this app to clients directly.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

GUEST_ROLE = "guest"


@dataclass(frozen=True)
class Issuer:
    """Who submitted the request."""

    user_id: Optional[str] = None
    role: str = GUEST_ROLE


# ---------------------------------------------------------------------------
# Context variable: task-safe issuer state
# ---------------------------------------------------------------------------

_current_issuer: ContextVar[Issuer] = ContextVar("current_issuer", default=Issuer())


def get_current_issuer() -> Issuer:
    """Return the issuer for the current request.

    Safe to call from any async context within the request lifecycle::

        issuer = get_current_issuer()
        await service.submit(payload, user_id=issuer.user_id, role=issuer.role)
    """
    return _current_issuer.get()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class IssuerMiddleware(BaseHTTPMiddleware):
    """Extract the issuer from headers and bind request-scoped log fields.

    Missing headers mean an anonymous guest.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        issuer = Issuer(
            user_id=request.headers.get("X-User-ID") or None,
            role=(request.headers.get("X-User-Role") or GUEST_ROLE).lower(),
        )
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        token = _current_issuer.set(issuer)
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            user_id=issuer.user_id,
        )
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "user_id")
            _current_issuer.reset(token)
