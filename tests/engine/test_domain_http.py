"""HttpDomainServices / HttpSnapshotProvider 测试 -- 基于 httpx.MockTransport"""

import json
from decimal import Decimal

import httpx
import pytest
from opspilot.core.exceptions import DomainServiceError
from opspilot.engine.domain import HttpDomainServices, PurchaseOrderLine
from opspilot.engine.snapshot import HttpSnapshotProvider

BASE_URL = "http://erp.test/api"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestHttpDomainServices:
    async def test_create_purchase_order(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": 31, "poNumber": "PO-2024-031"})

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            ref = await services.create_purchase_order(
                vendor_id=2,
                lines=[PurchaseOrderLine(raw_material_id=1, quantity=Decimal("200"),
                                         unit_cost=Decimal("10.00"))],
                total_amount=Decimal("2000.00"),
                idempotency_key="T1:create_purchase_order",
            )

        assert ref.purchase_order_id == 31
        assert ref.po_number == "PO-2024-031"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/purchase-orders"
        assert request.headers["Idempotency-Key"] == "T1:create_purchase_order"
        body = json.loads(request.content)
        assert body["vendorId"] == 2
        assert body["totalAmount"] == "2000.00"
        assert body["items"][0]["rawMaterialId"] == 1

    async def test_rfq_and_invitation_paths(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(201, json={"id": 5})

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            rfq_id = await services.create_rfq(4, Decimal("120"), None, "T2:create_rfq")
            invitation_id = await services.send_invitation(rfq_id, 3, "T2:send_invitation:3")

        assert (rfq_id, invitation_id) == (5, 5)
        assert paths == ["/api/rfqs", "/api/rfqs/5/invitations"]

    async def test_mark_on_order_accepts_empty_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/raw-materials/1/on-order"
            return httpx.Response(204)

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            await services.mark_on_order(1, Decimal("200"), 31, "T1:mark_on_order")

    async def test_send_email_returns_message_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"messageId": 7781})

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            message_id = await services.send_email("a@b.co", "Hi", "Body", "T3:send_email")

        assert message_id == "7781"

    async def test_structured_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                409, json={"error": {"code": "vendor_inactive", "message": "Vendor 2 is inactive"}}
            )

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            with pytest.raises(DomainServiceError) as exc_info:
                await services.create_rfq(4, Decimal("1"), None, "T4:create_rfq")

        assert exc_info.value.error_code == "vendor_inactive"
        assert "Vendor 2 is inactive" in exc_info.value.message
        assert exc_info.value.retryable is False

    async def test_server_error_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            with pytest.raises(DomainServiceError) as exc_info:
                await services.send_email("a@b.co", "Hi", "Body", "T5:send_email")

        assert exc_info.value.error_code == "http_503"
        assert exc_info.value.retryable is True

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            services = HttpDomainServices(BASE_URL, client=client)
            with pytest.raises(DomainServiceError) as exc_info:
                await services.send_email("a@b.co", "Hi", "Body", "T6:send_email")

        assert exc_info.value.error_code == "transport_error"
        assert exc_info.value.retryable is True


class TestHttpSnapshotProvider:
    async def test_fetch_snapshot(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/snapshot"
            return httpx.Response(
                200,
                json={"materials": [{"id": 1, "currentStock": 4, "reorderPoint": 10}]},
            )

        async with _client(handler) as client:
            snapshot = await HttpSnapshotProvider(BASE_URL, client=client).get_snapshot()

        assert snapshot.materials[0]["currentStock"] == 4
        assert snapshot.purchase_orders == []

    async def test_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with _client(handler) as client:
            with pytest.raises(DomainServiceError) as exc_info:
                await HttpSnapshotProvider(BASE_URL, client=client).get_snapshot()

        assert exc_info.value.error_code == "snapshot_unavailable"

    async def test_invalid_payload(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"not json")

        async with _client(handler) as client:
            with pytest.raises(DomainServiceError) as exc_info:
                await HttpSnapshotProvider(BASE_URL, client=client).get_snapshot()

        assert exc_info.value.error_code == "snapshot_invalid"
