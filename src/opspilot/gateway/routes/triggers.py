"""规则触发路由

POST /api/triggers/evaluate: 立即执行一次规则评估周期（可推送快照、限定规则类型）
POST /api/triggers/email: 对一封已分类的入站邮件执行自动回复规则
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from opspilot.core.models import RuleType, StateSnapshot
from opspilot.engine import CycleReport, EngineServices

from ..deps import get_engine

router = APIRouter()


class EvaluateRequest(BaseModel):
    snapshot: StateSnapshot | None = Field(
        default=None,
        description="调用方推送的快照，缺省时从快照提供方拉取",
    )
    rule_types: list[RuleType] | None = Field(default=None, description="只评估这些规则类型")


class InboundEmail(BaseModel):
    """已分类的入站邮件，未声明的字段原样传给规则"""

    model_config = ConfigDict(extra="allow")

    id: int | str
    from_address: str
    subject: str = ""
    body: str = ""
    category: str | None = None


@router.post("/api/triggers/evaluate", response_model=CycleReport)
async def evaluate_rules(
    req: EvaluateRequest | None = None,
    engine: EngineServices = Depends(get_engine),
):
    req = req or EvaluateRequest()
    return await engine.rule_engine.run_cycle(snapshot=req.snapshot, rule_types=req.rule_types)


@router.post("/api/triggers/email", response_model=CycleReport)
async def evaluate_inbound_email(
    email: InboundEmail,
    engine: EngineServices = Depends(get_engine),
):
    record: dict[str, Any] = email.model_dump()
    return await engine.rule_engine.evaluate_inbound_email(record)
