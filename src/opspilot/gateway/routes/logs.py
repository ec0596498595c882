"""审计日志查询路由

GET /api/logs: 按 task_id / rule_id / status / action / 时间范围筛选，最新在前。
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from opspilot.core.config import DEFAULT_LIST_LIMIT
from opspilot.core.models import LogAction, LogEntry, LogStatus
from opspilot.engine import EngineServices

from ..deps import get_engine

router = APIRouter()


class LogListResponse(BaseModel):
    logs: list[LogEntry]


@router.get("/api/logs", response_model=LogListResponse)
async def list_logs(
    task_id: str | None = Query(default=None),
    rule_id: str | None = Query(default=None),
    status: LogStatus | None = Query(default=None),
    action: LogAction | None = Query(default=None),
    since: datetime | None = Query(default=None, description="起始时间（含）"),
    until: datetime | None = Query(default=None, description="截止时间（含）"),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=1000),
    engine: EngineServices = Depends(get_engine),
):
    logs = await engine.audit_log.list(
        task_id=task_id,
        rule_id=rule_id,
        status=status,
        action=action,
        since=since,
        until=until,
        limit=limit,
    )
    return LogListResponse(logs=logs)
