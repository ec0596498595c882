"""OpsPilot Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    INITIAL_STATES,
    PRIORITY_RANK,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorType,
    ConditionOperator,
    LogAction,
    LogStatus,
    RuleType,
    TaskPriority,
    TaskStatus,
    TaskType,
    validate_transition,
)
from .log import LogEntry, actor_ref
from .payloads import (
    PAYLOAD_MODELS,
    BasePayload,
    GeneratePOPayload,
    MaterialLine,
    ReorderMaterialsPayload,
    SendEmailPayload,
    SendRFQPayload,
    VendorFollowupPayload,
    derive_dedup_key,
    dump_payload,
    parse_payload,
)
from .rule import Rule, RuleDefinition, TriggerCondition
from .snapshot import StateSnapshot
from .task import Task, TaskProposal

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskType",
    "TaskPriority",
    "RuleType",
    "ConditionOperator",
    "LogAction",
    "LogStatus",
    "ActorType",
    "PRIORITY_RANK",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "INITIAL_STATES",
    "validate_transition",
    # Task
    "Task",
    "TaskProposal",
    # Payloads
    "PAYLOAD_MODELS",
    "BasePayload",
    "GeneratePOPayload",
    "SendRFQPayload",
    "SendEmailPayload",
    "ReorderMaterialsPayload",
    "MaterialLine",
    "VendorFollowupPayload",
    "parse_payload",
    "dump_payload",
    "derive_dedup_key",
    # Rule
    "Rule",
    "RuleDefinition",
    "TriggerCondition",
    # Log
    "LogEntry",
    "actor_ref",
    # Snapshot
    "StateSnapshot",
]
