"""规则路由

POST  /api/rules: 创建规则
GET   /api/rules: 规则列表，可按 active 筛选
GET   /api/rules/{rule_id}: 规则详情
PATCH /api/rules/{rule_id}/active: 启用/停用
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from opspilot.core.models import Rule, RuleDefinition
from opspilot.engine import EngineServices

from ..deps import get_engine

router = APIRouter()


class RuleListResponse(BaseModel):
    rules: list[Rule]


class RuleActiveRequest(BaseModel):
    is_active: bool


@router.post("/api/rules", status_code=201, response_model=Rule)
async def create_rule(
    definition: RuleDefinition,
    engine: EngineServices = Depends(get_engine),
):
    return await engine.rule_service.create(definition)


@router.get("/api/rules", response_model=RuleListResponse)
async def list_rules(
    active: bool | None = Query(default=None, description="按启用状态筛选"),
    engine: EngineServices = Depends(get_engine),
):
    return RuleListResponse(rules=await engine.rule_service.list_rules(active=active))


@router.get("/api/rules/{rule_id}", response_model=Rule)
async def get_rule(
    rule_id: str,
    engine: EngineServices = Depends(get_engine),
):
    return await engine.rule_service.get(rule_id)


@router.patch("/api/rules/{rule_id}/active", response_model=Rule)
async def set_rule_active(
    rule_id: str,
    req: RuleActiveRequest,
    engine: EngineServices = Depends(get_engine),
):
    return await engine.rule_service.set_active(rule_id, req.is_active)
