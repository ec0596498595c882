"""审批队列路由

GET /api/approvals: 待审批任务，优先级高者在前，同优先级先到先审。
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from opspilot.core.config import DEFAULT_LIST_LIMIT
from opspilot.core.models import Task
from opspilot.engine import EngineServices

from ..deps import get_engine

router = APIRouter()


class ApprovalQueueResponse(BaseModel):
    tasks: list[Task]


@router.get("/api/approvals", response_model=ApprovalQueueResponse)
async def list_pending_approvals(
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=1000),
    engine: EngineServices = Depends(get_engine),
):
    return ApprovalQueueResponse(tasks=await engine.approval_gate.list_pending(limit=limit))
