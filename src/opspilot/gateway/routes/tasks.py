"""任务路由 -- 提交、查询、审批、驳回与手动执行

POST /api/tasks: 提交任务提案（去重 + 自动审批判定）
GET  /api/tasks: 任务列表，支持 status / priority / task_type 筛选
GET  /api/tasks/{task_id}: 任务详情，含完整流转日志
POST /api/tasks/{task_id}/approve | /reject | /execute
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from opspilot.core.config import DEFAULT_LIST_LIMIT
from opspilot.core.models import LogEntry, Task, TaskPriority, TaskProposal, TaskStatus, TaskType
from opspilot.engine import EngineServices

from ..deps import get_engine

router = APIRouter()


class TaskCreateRequest(BaseModel):
    """人工提交的任务提案"""

    task_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: TaskPriority = TaskPriority.MEDIUM
    reasoning: str = ""
    confidence: float | None = None
    rule_id: str | None = None


class TaskCreateResponse(BaseModel):
    task: Task
    created: bool


class TaskListResponse(BaseModel):
    tasks: list[Task]


class TaskDetailResponse(BaseModel):
    """任务详情：当前状态 + 按发生顺序的流转日志"""

    task: Task
    logs: list[LogEntry]


class ApproveRequest(BaseModel):
    approver_id: int = Field(ge=1, description="审批人 ID")


class RejectRequest(BaseModel):
    approver_id: int = Field(ge=1, description="审批人 ID")
    reason: str = Field(description="驳回原因，不能为空")


@router.post("/api/tasks", status_code=201, response_model=TaskCreateResponse)
async def create_task(
    req: TaskCreateRequest,
    engine: EngineServices = Depends(get_engine),
):
    """提交任务提案

    新建返回 201；已有同一主体的未结束任务时返回 200 与既有任务（created=false）。
    """
    task, created = await engine.task_service.create(TaskProposal(**req.model_dump()))
    body = TaskCreateResponse(task=task, created=created)
    if created:
        return body
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


@router.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    priority: TaskPriority | None = Query(default=None, description="按优先级筛选"),
    task_type: TaskType | None = Query(default=None, description="按任务类型筛选"),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=1000),
    engine: EngineServices = Depends(get_engine),
):
    """查询任务列表，按 created_at 倒序"""
    tasks = await engine.task_service.list(
        status=status,
        priority=priority,
        task_type=task_type,
        limit=limit,
    )
    return TaskListResponse(tasks=tasks)


@router.get("/api/tasks/{task_id}", response_model=TaskDetailResponse)
async def get_task_detail(
    task_id: str,
    engine: EngineServices = Depends(get_engine),
):
    task = await engine.task_service.get(task_id)
    logs = await engine.audit_log.for_task(task_id)
    return TaskDetailResponse(task=task, logs=logs)


@router.post("/api/tasks/{task_id}/approve", response_model=Task)
async def approve_task(
    task_id: str,
    req: ApproveRequest,
    engine: EngineServices = Depends(get_engine),
):
    """审批通过（仅 pending_approval 可审批，否则 409）"""
    return await engine.approval_gate.approve(task_id, req.approver_id)


@router.post("/api/tasks/{task_id}/reject", response_model=Task)
async def reject_task(
    task_id: str,
    req: RejectRequest,
    engine: EngineServices = Depends(get_engine),
):
    """驳回（仅 pending_approval 可驳回，否则 409；原因为空 422）"""
    return await engine.approval_gate.reject(task_id, req.approver_id, req.reason)


@router.post("/api/tasks/{task_id}/execute", response_model=Task)
async def execute_task(
    task_id: str,
    engine: EngineServices = Depends(get_engine),
):
    """立即执行一个已审批任务，返回终态任务（completed / failed）"""
    return await engine.executor.execute(task_id)
