"""全局 pytest 配置 -- 临时 SQLite StoreGroup + 引擎服务 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from opspilot.core.models import (
    ConditionOperator,
    Rule,
    RuleDefinition,
    RuleType,
    TaskPriority,
    TaskProposal,
    TaskType,
    TriggerCondition,
)
from opspilot.core.store import StoreGroup, create_store_group
from opspilot.engine import EngineServices
from opspilot.engine.domain import InMemoryDomainServices
from opspilot.engine.scorer import ConfidenceScore, ScoringContext
from opspilot.engine.snapshot import StaticSnapshotProvider
from opspilot.gateway.services.sse_hub import SSEHub


class StubScorer:
    """固定输出的 Scorer，记录每次调用的上下文"""

    def __init__(
        self,
        confidence: float = 80.0,
        reasoning: str = "stock below reorder point",
        suggested: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.confidence = confidence
        self.reasoning = reasoning
        self.suggested = suggested
        self.error = error
        self.contexts: list[ScoringContext] = []

    async def score(self, context: ScoringContext) -> ConfidenceScore:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return ConfidenceScore(
            reasoning=self.reasoning,
            confidence=self.confidence,
            suggested_parameters=self.suggested,
        )


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """已初始化的临时数据库 StoreGroup"""
    group = await create_store_group(str(tmp_path / "sqlite" / "test.db"))
    yield group
    await group.close()


@pytest.fixture
def scorer() -> StubScorer:
    return StubScorer()


@pytest.fixture
def domain() -> InMemoryDomainServices:
    return InMemoryDomainServices()


@pytest.fixture
def snapshot_provider() -> StaticSnapshotProvider:
    return StaticSnapshotProvider()


@pytest_asyncio.fixture
async def engine(
    store_group: StoreGroup,
    scorer: StubScorer,
    domain: InMemoryDomainServices,
    snapshot_provider: StaticSnapshotProvider,
) -> AsyncGenerator[EngineServices, None]:
    """使用内存领域服务与 StubScorer 的引擎服务组"""
    services = EngineServices(
        store_group=store_group,
        scorer=scorer,
        domain_services=domain,
        snapshot_provider=snapshot_provider,
    )
    yield services
    await services.aclose()


@pytest.fixture
def make_rule(engine: EngineServices) -> Callable[..., Awaitable[Rule]]:
    """创建规则的工厂，默认为库存低于再订货点时生成采购单"""

    async def _make(
        name: str = "Low stock PO",
        rule_type: RuleType = RuleType.PO_AUTO_GENERATE,
        action_type: TaskType = TaskType.GENERATE_PO,
        field: str = "current_stock",
        operator: ConditionOperator = ConditionOperator.LT,
        value: Any = None,
        ref: str | None = "reorder_point",
        auto_approve_threshold: float | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        action_config: dict[str, Any] | None = None,
    ) -> Rule:
        return await engine.rule_service.create(
            RuleDefinition(
                name=name,
                rule_type=rule_type,
                trigger_condition=TriggerCondition(
                    field=field,
                    operator=operator,
                    value=value,
                    ref=None if value is not None else ref,
                ),
                action_type=action_type,
                action_config=action_config or {},
                priority=priority,
                auto_approve_threshold=auto_approve_threshold,
            )
        )

    return _make


def po_proposal(
    raw_material_id: int = 1,
    confidence: float | None = 85.0,
    rule_id: str | None = None,
    priority: TaskPriority = TaskPriority.MEDIUM,
) -> TaskProposal:
    """generate_po 提案：vendor 2 / material 1 / 500 件 / 5000.00"""
    return TaskProposal(
        task_type="generate_po",
        payload={
            "vendor_id": 2,
            "raw_material_id": raw_material_id,
            "quantity": 500,
            "total_amount": "5000.00",
        },
        priority=priority,
        reasoning="stock below reorder point",
        confidence=confidence,
        rule_id=rule_id,
    )


@pytest.fixture
def make_po_proposal() -> Callable[..., TaskProposal]:
    return po_proposal


@pytest_asyncio.fixture
async def test_app(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    store_group: StoreGroup,
    scorer: StubScorer,
    domain: InMemoryDomainServices,
    snapshot_provider: StaticSnapshotProvider,
) -> AsyncGenerator[FastAPI, None]:
    """Gateway app，手动初始化 app.state（绕过 lifespan）"""
    monkeypatch.setenv("OPSPILOT_DB_PATH", str(tmp_path / "gateway.db"))

    from opspilot.gateway.main import create_app

    app = create_app()

    sse_hub = SSEHub()
    services = EngineServices(
        store_group=store_group,
        scorer=scorer,
        domain_services=domain,
        snapshot_provider=snapshot_provider,
        listener=sse_hub,
    )
    app.state.store_group = store_group
    app.state.sse_hub = sse_hub
    app.state.engine = services
    app.state.litellm_client = None

    yield app

    await services.aclose()


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
