"""Bookbox API — FastAPI entry point.

Registers middleware, routers, and lifecycle hooks. The lifespan opens the
database, builds the order pipeline and runs the single delivery worker for
the lifetime of the process.
"""

import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import IssuerMiddleware
from core.database import DATABASE_URL, close_db, init_db, init_engine
from core.observability.logging_setup import configure_logging
from core.observability.otel_setup import setup_otel

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
CREATE_TABLES = os.getenv("DB_CREATE_TABLES", "false").lower() == "true"
VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    from verticals.bookstore.config import config
    from verticals.bookstore.service import build_pipeline

    configure_logging()
    setup_otel(service_name="bookbox")
    session_factory = init_engine(DATABASE_URL)
    if CREATE_TABLES:
        await init_db()

    service, worker = build_pipeline(config, session_factory)
    app.state.order_service = service
    app.state.delivery_worker = worker
    worker.start()

    log.info("bookbox api started", version=VERSION)
    yield
    log.info("bookbox api shutting down")

    await worker.stop()
    await close_db()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Bookbox",
    description="Bookstore order fulfillment and digital delivery",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Issuer + request id
app.add_middleware(IssuerMiddleware)

# ---------------------------------------------------------------------------
# Routers: verticals register here
# ---------------------------------------------------------------------------

from verticals.bookstore.router import router as bookstore_router  # noqa: E402

app.include_router(bookstore_router, prefix="/api/bookstore", tags=["Bookstore"])


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    service = getattr(app.state, "order_service", None)
    integrations = service.integration_health() if service is not None else []
    return {"status": "healthy", "version": VERSION, "integrations": integrations}
