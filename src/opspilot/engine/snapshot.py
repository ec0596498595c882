"""StateSnapshot 提供方 -- Rule Engine 的只读输入（拉取模式）"""

from typing import Protocol

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from opspilot.core.exceptions import DomainServiceError
from opspilot.core.models import StateSnapshot

log = structlog.get_logger()


class SnapshotProvider(Protocol):
    async def get_snapshot(self) -> StateSnapshot: ...


class StaticSnapshotProvider:
    """持有一份内存快照，可随时替换"""

    def __init__(self, snapshot: StateSnapshot | None = None) -> None:
        self._snapshot = snapshot or StateSnapshot()

    def set_snapshot(self, snapshot: StateSnapshot) -> None:
        self._snapshot = snapshot

    async def get_snapshot(self) -> StateSnapshot:
        return self._snapshot


class HttpSnapshotProvider:
    """GET {erp}/snapshot 拉取快照"""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_snapshot(self) -> StateSnapshot:
        """拉取快照

        Raises:
            DomainServiceError: ERP 不可达、返回错误或快照格式不合法
        """
        try:
            resp = await self._client.get("/snapshot")
            resp.raise_for_status()
            return StateSnapshot.model_validate(resp.json())
        except httpx.HTTPError as e:
            await log.awarning("snapshot_fetch_failed", error=str(e))
            raise DomainServiceError(
                f"snapshot fetch failed: {e}",
                error_code="snapshot_unavailable",
                retryable=True,
            ) from e
        except (ValueError, PydanticValidationError) as e:
            raise DomainServiceError(
                f"snapshot payload invalid: {e}",
                error_code="snapshot_invalid",
            ) from e
