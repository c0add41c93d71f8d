"""Shared fixtures: a fresh SQLite database per test, a seeded catalog and
scripted HTTP endpoints for the external gateways."""
import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from core.database import create_engine, create_session_factory, init_db
from core.integrations.sendgrid import SendGridGateway
from core.resilience.delivery_queue import InMemoryDeliveryQueue
from core.resilience.locks import KeyedLock
from patterns.domain_config import ErpConfig, NotificationConfig, PricingConfig
from verticals.bookstore.committer import OrderCommitter
from verticals.bookstore.fulfillment import DeliveryRecorder, FulfillmentService
from verticals.bookstore.integrations.ebooks import EbooksGateway
from verticals.bookstore.integrations.xentral import XentralGateway
from verticals.bookstore.models.db_models import Product, SalesChannel, SalesChannelProduct
from verticals.bookstore.notifications import NotificationDispatcher
from verticals.bookstore.service import OrderService
from verticals.bookstore.validator import OrderValidator
from verticals.bookstore.worker import DeliveryWorker

CHANNEL = "1"
PROMO_CHANNEL = "2"

EBOOK = "p-ebook"
SECOND_EBOOK = "p-ebook-2"
PAPERBACK = "p-paperback"
HARDCOVER = "p-hardcover"
SOLD_OUT = "p-sold-out"
RETIRED = "p-retired"

ADMIN_ROLE = "admin"


# ---------------------------------------------------------------------------
# Scripted HTTP endpoints
# ---------------------------------------------------------------------------

class StubAPI:
    """Records every request and answers through ``handler``."""

    def __init__(self, handler=None):
        self.requests: list[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def bodies(self, path: str | None = None) -> list:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.content and (path is None or r.url.path == path)
        ]


class EbooksAPI(StubAPI):
    """Fulfillment provider: bulk orders, then download links when ready."""

    def __init__(self):
        super().__init__(self._reply)
        self.fail_create = False
        self.ready = True
        self.external_id = "ext-1"
        self.ordered: list[str] = []

    def _reply(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/orders":
            if self.fail_create:
                return httpx.Response(503, text="maintenance")
            self.ordered = [p["id"] for p in json.loads(request.content)["products"]]
            return httpx.Response(201, json={"order_id": self.external_id})
        if request.url.path == f"/orders/{self.external_id}/downloads":
            downloads = [
                {"product_id": pid, "url": f"https://dl.example/{pid}.epub"}
                for pid in self.ordered
            ] if self.ready else []
            return httpx.Response(200, json={"downloads": downloads})
        return httpx.Response(404, text="unknown")


class XentralAPI(StubAPI):
    """ERP that already knows every customer and product."""

    def __init__(self):
        super().__init__(self._reply)
        self.fail = False

    def _reply(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, text="erp down")
        if request.method == "GET":
            return httpx.Response(200, json={"data": [{"id": 42}]})
        return httpx.Response(201, json={})

    @property
    def imports(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/salesOrders/actions/import"]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookbox.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def catalog(session_factory):
    """Two channels and a small catalog; channel 2 carries overrides."""
    async with session_factory() as session:
        async with session.begin():
            session.add_all([
                SalesChannel(id=CHANNEL, name="Web"),
                SalesChannel(id=PROMO_CHANNEL, name="Promo", domain="promo.bookbox.ch"),
            ])
            session.add_all([
                Product(id=EBOOK, title="Der Process", is_download_title=True,
                        stock=100, selling_price=Decimal("10.00"), ean="9783161484100"),
                Product(id=SECOND_EBOOK, title="Das Schloss", is_download_title=True,
                        stock=100, selling_price=Decimal("12.50")),
                Product(id=PAPERBACK, title="Homo Faber", subtitle="Ein Bericht",
                        stock=5, selling_price=Decimal("10.00"), publisher="Suhrkamp"),
                Product(id=HARDCOVER, title="Stiller", stock=2,
                        selling_price=Decimal("45.00")),
                Product(id=SOLD_OUT, title="Andorra", stock=0,
                        selling_price=Decimal("15.00")),
                Product(id=RETIRED, title="Mein Name sei Gantenbein", stock=9,
                        selling_price=Decimal("20.00"), active=False),
            ])
            await session.flush()
            session.add_all([
                SalesChannelProduct(sales_channel_id=PROMO_CHANNEL, product_id=EBOOK,
                                    changed_price=Decimal("8.50"), changed_title="Der Prozess"),
                SalesChannelProduct(sales_channel_id=PROMO_CHANNEL, product_id=PAPERBACK,
                                    changed_price=Decimal("0")),
            ])
    return session_factory


async def stock_of(session_factory, product_id: str) -> int:
    async with session_factory() as session:
        product = await session.get(Product, product_id)
        return product.stock


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------

@pytest.fixture
def sendgrid_api():
    return StubAPI(lambda request: httpx.Response(202))


@pytest.fixture
def ebooks_api():
    return EbooksAPI()


@pytest.fixture
def xentral_api():
    return XentralAPI()


@pytest.fixture
def notifier(sendgrid_api):
    gateway = SendGridGateway(
        api_key="SG.test",
        sender_email="shop@bookbox.ch",
        transport=sendgrid_api.transport,
        max_retries=0,
    )
    return NotificationDispatcher(
        gateway,
        NotificationConfig(order_template_id="d-order", failed_order_template_id="d-failed"),
    )


@pytest.fixture
def ebooks(ebooks_api):
    return EbooksGateway(
        base_url="http://ebooks.test",
        api_key="ebooks-key",
        transport=ebooks_api.transport,
        max_retries=0,
    )


@pytest.fixture
def erp(xentral_api):
    config = ErpConfig(base_url="http://erp.test", api_token="erp-token")
    return XentralGateway(config, transport=xentral_api.transport, max_retries=0)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@pytest.fixture
def queue():
    return InMemoryDeliveryQueue()


@pytest.fixture
def pipeline(catalog, queue, notifier, ebooks, erp):
    session_factory = catalog
    locks = KeyedLock()
    recorder = DeliveryRecorder(session_factory)
    fulfillment = FulfillmentService(
        session_factory, queue, ebooks, notifier, erp=erp, recorder=recorder
    )
    validator = OrderValidator(session_factory, PricingConfig())
    committer = OrderCommitter(session_factory, locks)
    service = OrderService(session_factory, validator, committer, fulfillment, locks, queue)
    worker = DeliveryWorker(queue, ebooks, notifier, recorder, poll_interval=0.01)
    return SimpleNamespace(
        session_factory=session_factory,
        validator=validator,
        committer=committer,
        fulfillment=fulfillment,
        service=service,
        worker=worker,
        queue=queue,
        locks=locks,
    )
