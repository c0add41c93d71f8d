"""Test the adapter base and the external gateways."""
import json
from decimal import Decimal

import httpx
import pytest

from conftest import StubAPI
from core.integrations.adapter_base import (
    AdapterBase,
    AdapterRequest,
    AuthType,
    GatewayError,
)
from core.integrations.sendgrid import SendGridGateway
from patterns.domain_config import ErpConfig
from verticals.bookstore.integrations.ebooks import EbooksGateway
from verticals.bookstore.integrations.xentral import XentralGateway
from verticals.bookstore.models.schemas import OrderItemSnapshot, OrderSnapshot


class EchoAdapter(AdapterBase):
    name = "echo"
    auth_type = AuthType.BEARER


def snapshot(**kwargs) -> OrderSnapshot:
    data = {
        "id": "o-1",
        "sales_channel_id": "1",
        "email": "reader@example.ch",
        "total_price": Decimal("22.50"),
        "external_order_id": "ext-7",
        "items": [
            OrderItemSnapshot(id="i-1", product_id="p-1", title="A", quantity=1,
                              current_price=Decimal("10.00"), is_download_title=True),
            OrderItemSnapshot(id="i-2", product_id="p-2", title="B", quantity=1,
                              current_price=Decimal("12.50"), is_download_title=True),
        ],
    }
    data.update(kwargs)
    return OrderSnapshot(**data)


# ---------------------------------------------------------------------------
# AdapterBase
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bearer_auth_header():
    api = StubAPI(lambda r: httpx.Response(200, json={"ok": True}))
    adapter = EchoAdapter("http://echo.test", api_key="secret", transport=api.transport)

    resp = await adapter.request(AdapterRequest(method="GET", path="/ping"))

    assert resp.ok
    assert resp.data == {"ok": True}
    assert api.requests[0].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds():
    replies = iter([httpx.Response(502), httpx.Response(200, json={"n": 1})])
    api = StubAPI(lambda r: next(replies))
    adapter = EchoAdapter("http://echo.test", transport=api.transport, backoff_base=0)

    resp = await adapter.request(AdapterRequest(method="GET", path="/flaky"))

    assert resp.ok
    assert resp.retries == 1
    assert len(api.requests) == 2


@pytest.mark.asyncio
async def test_transport_errors_exhaust_retries():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    api = StubAPI(refuse)
    adapter = EchoAdapter("http://echo.test", transport=api.transport, max_retries=2, backoff_base=0)

    resp = await adapter.request(AdapterRequest(method="GET", path="/down"))

    assert resp.status_code == 502
    assert "ConnectError" in resp.error
    assert len(api.requests) == 3
    with pytest.raises(GatewayError):
        resp.raise_for_error()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    api = StubAPI(lambda r: httpx.Response(422, text="bad payload"))
    adapter = EchoAdapter("http://echo.test", transport=api.transport, backoff_base=0)

    resp = await adapter.request(AdapterRequest(method="POST", path="/x", body={}))

    assert resp.status_code == 422
    assert len(api.requests) == 1
    with pytest.raises(GatewayError) as excinfo:
        resp.raise_for_error()
    assert excinfo.value.status_code == 422
    assert excinfo.value.adapter == "echo"


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures():
    api = StubAPI(lambda r: httpx.Response(500))
    adapter = EchoAdapter("http://echo.test", transport=api.transport, max_retries=0)

    for _ in range(EchoAdapter.CB_FAILURE_THRESHOLD):
        await adapter.request(AdapterRequest(method="GET", path="/"))
    resp = await adapter.request(AdapterRequest(method="GET", path="/"))

    assert resp.status_code == 503
    assert len(api.requests) == EchoAdapter.CB_FAILURE_THRESHOLD
    assert adapter.get_health().circuit_state == "open"
    assert adapter.get_health().failed_requests == EchoAdapter.CB_FAILURE_THRESHOLD


@pytest.mark.asyncio
async def test_invalid_json_is_a_failed_response():
    api = StubAPI(lambda r: httpx.Response(
        200, content=b"<html>", headers={"content-type": "application/json"}
    ))
    adapter = EchoAdapter("http://echo.test", transport=api.transport)

    resp = await adapter.request(AdapterRequest(method="GET", path="/"))

    assert resp.status_code == 502
    assert len(api.requests) == 1
    with pytest.raises(GatewayError, match="invalid JSON"):
        resp.raise_for_error()


# ---------------------------------------------------------------------------
# SendGrid
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sendgrid_request_shape():
    api = StubAPI(lambda r: httpx.Response(202))
    gateway = SendGridGateway("SG.key", "shop@bookbox.ch", transport=api.transport)

    await gateway.send("d-123", "reader@example.ch", {"order_id": "o-1"})

    [request] = api.requests
    assert request.url.path == "/v3/mail/send"
    assert request.headers["Authorization"] == "Bearer SG.key"
    body = json.loads(request.content)
    assert body["template_id"] == "d-123"
    assert body["from"] == {"email": "shop@bookbox.ch", "name": "Bookbox"}
    assert body["personalizations"][0]["dynamic_template_data"] == {"order_id": "o-1"}


@pytest.mark.asyncio
async def test_sendgrid_rejection_raises():
    api = StubAPI(lambda r: httpx.Response(401, json={"errors": []}))
    gateway = SendGridGateway("SG.bad", "shop@bookbox.ch", transport=api.transport)

    with pytest.raises(GatewayError):
        await gateway.send("d-123", "reader@example.ch", {})


# ---------------------------------------------------------------------------
# Ebooks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ebooks_create_order():
    api = StubAPI(lambda r: httpx.Response(201, json={"order_id": 991}))
    gateway = EbooksGateway("http://ebooks.test", api_key="k", transport=api.transport)

    assert await gateway.create_order(["p-1", "p-2"]) == "991"
    assert json.loads(api.requests[0].content) == {"products": [{"id": "p-1"}, {"id": "p-2"}]}
    assert api.requests[0].headers["X-API-Key"] == "k"


@pytest.mark.asyncio
async def test_ebooks_create_order_without_handle():
    api = StubAPI(lambda r: httpx.Response(200, json={}))
    gateway = EbooksGateway("http://ebooks.test", transport=api.transport)

    with pytest.raises(GatewayError, match="no order id"):
        await gateway.create_order(["p-1"])


@pytest.mark.asyncio
async def test_download_urls_fill_the_snapshot():
    downloads = {"downloads": [
        {"product_id": "p-1", "url": "https://dl/1"},
        {"product_id": "p-2", "url": "https://dl/2"},
    ]}
    api = StubAPI(lambda r: httpx.Response(200, json=downloads))
    gateway = EbooksGateway("http://ebooks.test", transport=api.transport)
    order = snapshot()

    await gateway.get_download_urls(order, 2)

    assert api.requests[0].url.path == "/orders/ext-7/downloads"
    assert [item.download_url for item in order.items] == ["https://dl/1", "https://dl/2"]


@pytest.mark.asyncio
async def test_partial_links_are_a_failed_attempt():
    downloads = {"downloads": [{"product_id": "p-1", "url": "https://dl/1"}]}
    api = StubAPI(lambda r: httpx.Response(200, json=downloads))
    gateway = EbooksGateway("http://ebooks.test", transport=api.transport)
    order = snapshot()

    with pytest.raises(GatewayError, match="1/2"):
        await gateway.get_download_urls(order, 2)
    assert all(item.download_url is None for item in order.items)


@pytest.mark.parametrize("body", [
    {"downloads": ["oops"]},
    {"downloads": {"p-1": "https://dl/1"}},
    ["https://dl/1"],
])
@pytest.mark.asyncio
async def test_malformed_download_listing_is_a_gateway_error(body):
    api = StubAPI(lambda r: httpx.Response(200, json=body))
    gateway = EbooksGateway("http://ebooks.test", transport=api.transport)

    with pytest.raises(GatewayError, match="malformed"):
        await gateway.get_download_urls(snapshot(), 2)


@pytest.mark.asyncio
async def test_zero_items_need_no_request():
    api = StubAPI()
    gateway = EbooksGateway("http://ebooks.test", transport=api.transport)
    await gateway.get_download_urls(snapshot(), 0)
    assert api.requests == []


# ---------------------------------------------------------------------------
# Xentral
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_xentral_creates_missing_customer():
    customers: list[dict] = []

    def reply(request):
        if request.url.path == "/customers" and request.method == "GET":
            return httpx.Response(200, json={"data": customers})
        if request.url.path == "/customers" and request.method == "POST":
            customers.append({"id": 5})
            return httpx.Response(201, json={})
        if request.url.path == "/products":
            return httpx.Response(200, json={"data": [{"id": 8}]})
        return httpx.Response(201, json={})

    api = StubAPI(reply)
    gateway = XentralGateway(
        ErpConfig(base_url="http://erp.test", api_token="t"),
        transport=api.transport,
    )

    await gateway.mirror_order(snapshot(first_name="Max", last_name="Frisch"))

    [created] = api.bodies("/customers")
    assert created["contact"]["email"] == "reader@example.ch"
    assert created["general"]["name"] == "Max Frisch"
    [imported] = api.bodies("/salesOrders/actions/import")
    assert imported["customer"] == {"id": "5"}
    assert [p["product"] for p in imported["positions"]] == [{"id": "8"}, {"id": "8"}]
    assert imported["financials"]["paymentMethod"] == {"id": "15"}


def test_xentral_payment_method_fallback():
    gateway = XentralGateway(ErpConfig(base_url="http://erp.test", api_token="t"))
    payload = gateway.sales_order_payload(
        snapshot(payment_method="invoice"), "c-1", {"p-1": "1", "p-2": "2"}
    )
    assert payload["financials"]["paymentMethod"] == {"id": "1"}
    assert payload["externalOrderId"] == "o-1"
    assert payload["delivery"]["shippingAddress"]["country"] == "CH"


@pytest.mark.asyncio
async def test_xentral_listing_without_id_is_a_gateway_error():
    api = StubAPI(lambda r: httpx.Response(200, json={"data": [{"name": "x"}]}))
    gateway = XentralGateway(
        ErpConfig(base_url="http://erp.test", api_token="t"),
        transport=api.transport,
    )
    with pytest.raises(GatewayError, match="no id"):
        await gateway.find_customer("reader@example.ch")
