"""Task Domain Model

tasks 表记录每个提案/已执行动作的当前状态，
所有状态更新必须通过状态机流转写入，且每次流转伴随一条审计日志。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import TERMINAL_STATES, TaskPriority, TaskStatus, TaskType


class TaskProposal(BaseModel):
    """规则命中（或人工提交）后尚未落库的任务提案

    confidence 允许为 None 以便 Task Store 统一拒绝缺失值。
    """

    task_type: str = Field(description="任务类型，需属于 TaskType")
    payload: dict[str, Any] = Field(default_factory=dict, description="类型相关的结构化数据")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    reasoning: str = Field(default="", description="推理说明")
    confidence: float | None = Field(default=None, description="置信度 0-100")
    rule_id: str | None = Field(default=None, description="来源规则 ID，人工提交为 None")


class Task(BaseModel):
    """Task 数据模型

    终态（rejected/completed/failed）永久保留用于审计，不删除。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    task_type: TaskType = Field(description="任务类型")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    status: TaskStatus = Field(default=TaskStatus.PENDING_APPROVAL, description="当前状态")
    payload: dict[str, Any] = Field(default_factory=dict, description="类型相关的结构化数据")
    reasoning: str = Field(default="", description="推理说明")
    confidence: float = Field(ge=0, le=100, description="置信度 0-100")
    dedup_key: str = Field(description="去重键：task_type + 主体实体")
    rule_id: str | None = Field(default=None, description="来源规则 ID")

    approved_by: int | None = Field(default=None, description="审批人 ID（自动审批为 None）")
    approved_at: datetime | None = Field(default=None, description="审批时间")
    rejected_by: int | None = Field(default=None, description="驳回人 ID（系统过期为 None）")
    rejected_at: datetime | None = Field(default=None, description="驳回时间")
    rejection_reason: str | None = Field(default=None, description="驳回原因")

    result: dict[str, Any] | None = Field(default=None, description="已创建实体的引用")
    error: str | None = Field(default=None, description="失败原因")

    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    executed_at: datetime | None = Field(default=None, description="开始执行时间")
    completed_at: datetime | None = Field(default=None, description="进入终态时间")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES
