"""LogEntry Domain Model

日志表 append-only，不允许更新或删除。
seq 为全局单调递增序号，定义创建时间上的全序。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActorType, LogAction, LogStatus


def actor_ref(actor_type: ActorType, actor_id: str | int | None = None) -> str:
    """构造操作者标识，如 approver:7、rule:01J...、executor"""
    if actor_id is None:
        return actor_type.value
    return f"{actor_type.value}:{actor_id}"


class LogEntry(BaseModel):
    """LogEntry 数据模型"""

    log_id: str = Field(description="唯一标识，ULID 格式")
    seq: int = Field(default=0, description="全局序号，落库后由数据库分配")
    task_id: str | None = Field(default=None, description="关联的 Task ID，规则级事件为 None")
    rule_id: str | None = Field(default=None, description="关联的 Rule ID")
    action: LogAction = Field(description="日志动作")
    status: LogStatus = Field(default=LogStatus.INFO, description="日志状态")
    actor: str = Field(default="system", description="操作者")
    message: str = Field(default="", description="可读消息")
    details: dict[str, Any] = Field(default_factory=dict, description="结构化详情")
    created_at: datetime = Field(description="创建时间")
