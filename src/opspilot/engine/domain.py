"""领域服务协作方 -- 采购单、库存、询价、邮件

Executor 只通过这里的接口产生副作用。每个调用都携带幂等键 "{task_id}:{step}"，
同一幂等键的重复调用必须返回第一次的结果而不重复产生实体。
失败以 DomainServiceError（error_code / message / retryable）表示。

两种实现：
- InMemoryDomainServices: 进程内实现，按幂等键去重，用于本地运行与测试
- HttpDomainServices: 通过 httpx 调用 ERP，幂等键放在 Idempotency-Key 请求头
"""

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any, Protocol, TypeVar

import httpx
import structlog
from pydantic import BaseModel, Field

from opspilot.core.exceptions import DomainServiceError

log = structlog.get_logger()

T = TypeVar("T")


class PurchaseOrderRef(BaseModel):
    """已创建采购单的引用"""

    purchase_order_id: int = Field(description="采购单 ID")
    po_number: str = Field(default="", description="采购单号")


class PurchaseOrderLine(BaseModel):
    """采购单行"""

    raw_material_id: int
    quantity: Decimal
    unit_cost: Decimal = Decimal("0")
    description: str = ""


class PurchaseOrderService(Protocol):
    async def create_purchase_order(
        self,
        vendor_id: int,
        lines: list[PurchaseOrderLine],
        total_amount: Decimal,
        idempotency_key: str,
    ) -> PurchaseOrderRef: ...


class InventoryService(Protocol):
    async def mark_on_order(
        self,
        raw_material_id: int,
        quantity: Decimal,
        purchase_order_id: int,
        idempotency_key: str,
    ) -> None: ...


class RFQService(Protocol):
    async def create_rfq(
        self,
        raw_material_id: int,
        quantity: Decimal,
        due_date: str | None,
        idempotency_key: str,
    ) -> int: ...

    async def send_invitation(
        self,
        rfq_id: int,
        vendor_id: int,
        idempotency_key: str,
    ) -> int: ...


class EmailService(Protocol):
    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
        cc: list[str] | None = None,
        in_reply_to_email_id: int | None = None,
    ) -> str: ...


class DomainServices(PurchaseOrderService, InventoryService, RFQService, EmailService, Protocol):
    """Executor 需要的全部领域服务"""


class InMemoryDomainServices:
    """进程内领域服务

    failures: 操作名 -> 待抛出的异常，用于模拟领域失败
    delays: 操作名 -> 调用前等待的秒数，用于模拟慢调用
    """

    def __init__(
        self,
        failures: dict[str, Exception] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.failures: dict[str, Exception] = dict(failures or {})
        self.delays: dict[str, float] = dict(delays or {})
        self.purchase_orders: dict[int, dict[str, Any]] = {}
        self.on_order: list[dict[str, Any]] = []
        self.rfqs: dict[int, dict[str, Any]] = {}
        self.invitations: list[dict[str, Any]] = []
        self.sent_emails: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str]] = []
        self._results: dict[str, Any] = {}
        self._ids = itertools.count(1)

    async def _idempotent(self, operation: str, key: str, action: Callable[[], T]) -> T:
        self.calls.append((operation, key))
        if key in self._results:
            return self._results[key]
        if delay := self.delays.get(operation):
            await asyncio.sleep(delay)
        if error := self.failures.get(operation):
            raise error
        result = action()
        self._results[key] = result
        return result

    async def create_purchase_order(
        self,
        vendor_id: int,
        lines: list[PurchaseOrderLine],
        total_amount: Decimal,
        idempotency_key: str,
    ) -> PurchaseOrderRef:
        def create() -> PurchaseOrderRef:
            po_id = next(self._ids)
            po_number = f"PO-{po_id:06d}"
            self.purchase_orders[po_id] = {
                "vendor_id": vendor_id,
                "lines": [line.model_dump() for line in lines],
                "total_amount": total_amount,
                "po_number": po_number,
            }
            return PurchaseOrderRef(purchase_order_id=po_id, po_number=po_number)

        return await self._idempotent("create_purchase_order", idempotency_key, create)

    async def mark_on_order(
        self,
        raw_material_id: int,
        quantity: Decimal,
        purchase_order_id: int,
        idempotency_key: str,
    ) -> None:
        def mark() -> None:
            self.on_order.append(
                {
                    "raw_material_id": raw_material_id,
                    "quantity": quantity,
                    "purchase_order_id": purchase_order_id,
                }
            )

        await self._idempotent("mark_on_order", idempotency_key, mark)

    async def create_rfq(
        self,
        raw_material_id: int,
        quantity: Decimal,
        due_date: str | None,
        idempotency_key: str,
    ) -> int:
        def create() -> int:
            rfq_id = next(self._ids)
            self.rfqs[rfq_id] = {
                "raw_material_id": raw_material_id,
                "quantity": quantity,
                "due_date": due_date,
            }
            return rfq_id

        return await self._idempotent("create_rfq", idempotency_key, create)

    async def send_invitation(self, rfq_id: int, vendor_id: int, idempotency_key: str) -> int:
        def send() -> int:
            invitation_id = next(self._ids)
            self.invitations.append(
                {"invitation_id": invitation_id, "rfq_id": rfq_id, "vendor_id": vendor_id}
            )
            return invitation_id

        return await self._idempotent("send_invitation", idempotency_key, send)

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
        cc: list[str] | None = None,
        in_reply_to_email_id: int | None = None,
    ) -> str:
        def send() -> str:
            message_id = f"msg-{next(self._ids)}"
            self.sent_emails.append(
                {
                    "message_id": message_id,
                    "to": to,
                    "subject": subject,
                    "body": body,
                    "cc": list(cc or []),
                    "in_reply_to_email_id": in_reply_to_email_id,
                }
            )
            return message_id

        return await self._idempotent("send_email", idempotency_key, send)


class HttpDomainServices:
    """基于 ERP HTTP API 的领域服务"""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, body: dict[str, Any], idempotency_key: str) -> dict[str, Any]:
        """发送 POST 请求，HTTP/传输错误统一转为 DomainServiceError"""
        try:
            resp = await self._client.post(
                path,
                json=body,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            await log.awarning(
                "domain_call_transport_error",
                path=path,
                idempotency_key=idempotency_key,
                error=str(e),
            )
            raise DomainServiceError(
                f"{path} request failed: {e}",
                error_code="transport_error",
                retryable=True,
            ) from e

        if resp.status_code >= 400:
            raise self._error_from_response(path, resp)
        if not resp.content:
            return {}
        return resp.json()

    @staticmethod
    def _error_from_response(path: str, resp: httpx.Response) -> DomainServiceError:
        code = f"http_{resp.status_code}"
        message = resp.text or resp.reason_phrase
        try:
            error = resp.json().get("error", {})
        except ValueError:
            error = {}
        if isinstance(error, dict):
            code = error.get("code", code)
            message = error.get("message", message)
        return DomainServiceError(
            f"{path} returned {resp.status_code}: {message}",
            error_code=code,
            retryable=resp.status_code >= 500 or resp.status_code == 429,
        )

    async def create_purchase_order(
        self,
        vendor_id: int,
        lines: list[PurchaseOrderLine],
        total_amount: Decimal,
        idempotency_key: str,
    ) -> PurchaseOrderRef:
        data = await self._post(
            "/purchase-orders",
            {
                "vendorId": vendor_id,
                "totalAmount": str(total_amount),
                "items": [
                    {
                        "rawMaterialId": line.raw_material_id,
                        "quantity": str(line.quantity),
                        "unitPrice": str(line.unit_cost),
                        "description": line.description,
                    }
                    for line in lines
                ],
            },
            idempotency_key,
        )
        return PurchaseOrderRef(
            purchase_order_id=data["id"],
            po_number=data.get("poNumber", ""),
        )

    async def mark_on_order(
        self,
        raw_material_id: int,
        quantity: Decimal,
        purchase_order_id: int,
        idempotency_key: str,
    ) -> None:
        await self._post(
            f"/raw-materials/{raw_material_id}/on-order",
            {"quantity": str(quantity), "purchaseOrderId": purchase_order_id},
            idempotency_key,
        )

    async def create_rfq(
        self,
        raw_material_id: int,
        quantity: Decimal,
        due_date: str | None,
        idempotency_key: str,
    ) -> int:
        data = await self._post(
            "/rfqs",
            {"rawMaterialId": raw_material_id, "quantity": str(quantity), "dueDate": due_date},
            idempotency_key,
        )
        return data["id"]

    async def send_invitation(self, rfq_id: int, vendor_id: int, idempotency_key: str) -> int:
        data = await self._post(
            f"/rfqs/{rfq_id}/invitations",
            {"vendorId": vendor_id},
            idempotency_key,
        )
        return data["id"]

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
        cc: list[str] | None = None,
        in_reply_to_email_id: int | None = None,
    ) -> str:
        data = await self._post(
            "/emails",
            {
                "to": to,
                "subject": subject,
                "body": body,
                "cc": list(cc or []),
                "inReplyToEmailId": in_reply_to_email_id,
            },
            idempotency_key,
        )
        return str(data["messageId"])


async def call_with_timeout(
    call: Awaitable[T],
    timeout_s: float,
    step: str,
) -> T:
    """以超时约束单次领域调用，超时转为可重试的 DomainServiceError"""
    try:
        return await asyncio.wait_for(call, timeout=timeout_s)
    except TimeoutError as e:
        raise DomainServiceError(
            f"{step} timed out after {timeout_s:g}s",
            error_code="timeout",
            retryable=True,
        ) from e
