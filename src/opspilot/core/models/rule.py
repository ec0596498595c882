"""Rule Domain Model

规则由外部编写，Rule Engine 评估时只读（触发计数除外）。
triggerCondition 为结构化谓词：field + operator + value 或 ref（引用同一记录的另一字段）。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .enums import ConditionOperator, RuleType, TaskPriority, TaskType


class TriggerCondition(BaseModel):
    """触发条件 -- 对单条快照记录求值"""

    field: str = Field(min_length=1, description="记录字段，支持 a.b 点号路径")
    operator: ConditionOperator = Field(description="比较运算符")
    value: Any = Field(default=None, description="比较值")
    ref: str | None = Field(default=None, description="引用同一记录中的另一字段作为比较值")

    @model_validator(mode="after")
    def _value_or_ref(self) -> "TriggerCondition":
        if self.ref is None and self.value is None:
            raise ValueError("trigger condition needs either value or ref")
        if self.ref is not None and self.value is not None:
            raise ValueError("trigger condition takes value or ref, not both")
        return self


class RuleDefinition(BaseModel):
    """规则创建请求"""

    name: str = Field(min_length=1, description="规则名称")
    rule_type: RuleType = Field(description="规则类型")
    trigger_condition: TriggerCondition = Field(description="触发条件")
    action_type: TaskType = Field(description="命中后生成的任务类型")
    action_config: dict[str, Any] = Field(
        default_factory=dict,
        description="payload 构造参数，如 multiplier",
    )
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="默认优先级")
    auto_approve_threshold: float | None = Field(
        default=None,
        ge=0,
        le=100,
        description="自动审批的置信度下限，None 表示始终人工审批",
    )
    is_active: bool = Field(default=True, description="是否启用")


class Rule(RuleDefinition):
    """Rule 数据模型"""

    rule_id: str = Field(description="唯一标识，ULID 格式")
    trigger_count: int = Field(default=0, ge=0, description="累计触发次数")
    last_triggered_at: datetime | None = Field(default=None, description="最近触发时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
