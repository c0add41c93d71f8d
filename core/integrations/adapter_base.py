"""
Bookbox Adapter Framework.

Every external API integration (notification, digital fulfillment, ERP)
inherits from AdapterBase. Provides:
- Auth headers (bearer token, API key header, none)
- Retry with exponential backoff on 5xx and transport errors
- Built-in circuit breaker (closed/open/half_open)
- Health tracking (latency, errors)
- Standardized request/response envelope
- Injectable httpx transport for tests
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import asyncio
import time

import httpx
import structlog

log = structlog.get_logger(__name__)


class GatewayError(Exception):
    """An external call failed after retries, or returned an error status."""

    def __init__(self, message: str, status_code: int = 0, adapter: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.adapter = adapter


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class AuthType(str, Enum):
    NONE = "none"
    BEARER = "bearer"
    API_KEY = "api_key"


# ---------------------------------------------------------------------------
# Request / Response envelope
# ---------------------------------------------------------------------------

@dataclass
class AdapterRequest:
    """Standardized outbound request."""
    method: str  # GET, POST, PUT, PATCH, DELETE
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class AdapterResponse:
    """Standardized inbound response."""
    status_code: int
    data: Any = None
    latency_ms: float = 0.0
    adapter_name: str = ""
    error: str | None = None
    retries: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def raise_for_error(self) -> "AdapterResponse":
        if not self.ok:
            raise GatewayError(
                self.error or f"HTTP {self.status_code}",
                status_code=self.status_code,
                adapter=self.adapter_name,
            )
        return self


# ---------------------------------------------------------------------------
# Health tracking
# ---------------------------------------------------------------------------

@dataclass
class IntegrationHealth:
    """Health metrics for an adapter."""
    adapter_name: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_latency_ms: float = 0.0
    circuit_state: str = "closed"
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_error: str | None = None

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    def to_dict(self) -> dict[str, Any]:
        return {
            "adapter_name": self.adapter_name,
            "total_requests": self.total_requests,
            "successful": self.successful_requests,
            "failed": self.failed_requests,
            "error_rate": round(self.error_rate, 4),
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "circuit_state": self.circuit_state,
            "last_error": self.last_error,
        }


# ---------------------------------------------------------------------------
# AdapterBase
# ---------------------------------------------------------------------------

class AdapterBase:
    """
    Base class for all external API adapters.

    Subclasses set:
        name: str           — adapter identifier
        auth_type: AuthType — authentication method
        api_key_header: str — header name for AuthType.API_KEY
    """

    name: str = ""
    auth_type: AuthType = AuthType.NONE
    api_key_header: str = "X-API-Key"
    default_headers: dict[str, str] = {}

    # Circuit breaker defaults
    CB_FAILURE_THRESHOLD: int = 5
    CB_RECOVERY_TIMEOUT: float = 30.0

    # Retry defaults
    MAX_RETRIES: int = 2
    BACKOFF_BASE: float = 0.5
    BACKOFF_MAX: float = 10.0

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = self.MAX_RETRIES if max_retries is None else max_retries
        self.backoff_base = self.BACKOFF_BASE if backoff_base is None else backoff_base
        self._transport = transport
        self._health = IntegrationHealth(adapter_name=self.name)
        self._latencies: list[float] = []

        # Circuit breaker state
        self._cb_state: str = "closed"
        self._cb_failure_count: int = 0
        self._cb_last_failure: datetime | None = None

    # --- Auth headers ---

    def get_auth_headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        if self.auth_type == AuthType.BEARER:
            return {"Authorization": f"Bearer {self.api_key}"}
        if self.auth_type == AuthType.API_KEY:
            return {self.api_key_header: self.api_key}
        return {}

    # --- Circuit breaker ---

    def _check_circuit(self) -> bool:
        """Return True if request should proceed."""
        if self._cb_state == "closed":
            return True
        if self._cb_state == "open":
            if self._cb_last_failure and (
                datetime.now(timezone.utc) - self._cb_last_failure
            ).total_seconds() > self.CB_RECOVERY_TIMEOUT:
                self._cb_state = "half_open"
                return True
            return False
        # half_open: allow one test request
        return True

    def _record_success(self) -> None:
        self._cb_failure_count = 0
        self._cb_state = "closed"
        self._health.circuit_state = "closed"

    def _record_failure(self) -> None:
        self._cb_failure_count += 1
        self._cb_last_failure = datetime.now(timezone.utc)
        if self._cb_failure_count >= self.CB_FAILURE_THRESHOLD:
            self._cb_state = "open"
            self._health.circuit_state = "open"

    # --- Health ---

    def _update_health(self, latency_ms: float, success: bool, error: str | None = None) -> None:
        self._health.total_requests += 1
        self._latencies.append(latency_ms)
        if len(self._latencies) > 1000:
            self._latencies = self._latencies[-500:]

        if success:
            self._health.successful_requests += 1
            self._health.last_success = datetime.now(timezone.utc)
            self._record_success()
        else:
            self._health.failed_requests += 1
            self._health.last_failure = datetime.now(timezone.utc)
            self._health.last_error = error
            self._record_failure()

        self._health.avg_latency_ms = sum(self._latencies) / len(self._latencies)

    def get_health(self) -> IntegrationHealth:
        return self._health

    # --- Core request ---

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def request(self, req: AdapterRequest) -> AdapterResponse:
        """
        Execute a request through the adapter pipeline:
        Circuit Breaker → Auth → Retry w/ Backoff → Health
        """
        if not self._check_circuit():
            return AdapterResponse(
                status_code=503,
                error=f"Circuit breaker OPEN for {self.name}",
                adapter_name=self.name,
            )

        headers = {**self.default_headers, **self.get_auth_headers(), **req.headers}
        last_error: str | None = None
        latency = 0.0
        retries = 0

        async with self._client() as client:
            for attempt in range(self.max_retries + 1):
                start = time.time()
                try:
                    resp = await client.request(
                        method=req.method,
                        url=req.path,
                        params=req.params or None,
                        json=req.body,
                        headers=headers,
                    )
                    latency = (time.time() - start) * 1000

                    if resp.status_code < 500:
                        is_json = "json" in resp.headers.get("content-type", "")
                        try:
                            data = resp.json() if is_json and resp.content else resp.text
                        except ValueError:
                            # Malformed body, no retry
                            error = f"invalid JSON from {self.name}"
                            self._update_health(latency, False, error)
                            return AdapterResponse(
                                status_code=502,
                                latency_ms=latency,
                                adapter_name=self.name,
                                error=error,
                                retries=retries,
                            )
                        self._update_health(latency, resp.status_code < 400)
                        return AdapterResponse(
                            status_code=resp.status_code,
                            data=data,
                            latency_ms=latency,
                            adapter_name=self.name,
                            error=None if resp.status_code < 400 else f"HTTP {resp.status_code}: {resp.text[:200]}",
                            retries=retries,
                        )

                    # 5xx: retry
                    last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                    retries += 1

                except httpx.HTTPError as exc:
                    latency = (time.time() - start) * 1000
                    last_error = f"{type(exc).__name__}: {exc}"
                    retries += 1

                log.warning(
                    "adapter request failed",
                    adapter=self.name,
                    method=req.method,
                    path=req.path,
                    attempt=attempt + 1,
                    error=last_error,
                )
                if attempt < self.max_retries:
                    backoff = min(self.backoff_base * (2 ** attempt), self.BACKOFF_MAX)
                    await asyncio.sleep(backoff)

        # All retries exhausted
        self._update_health(latency, False, last_error)
        return AdapterResponse(
            status_code=502,
            error=last_error,
            adapter_name=self.name,
            retries=retries,
        )
