"""枚举定义 -- Task 状态机、任务类型、优先级、规则类型、日志动作

包含 TaskStatus 状态机、VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合，
以及 TaskType 封闭变体集合（每个变体对应一个 payload 模型和一个执行 handler）。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    # 活跃状态
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    EXECUTING = "executing"

    # 终态
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING_APPROVAL: {TaskStatus.APPROVED, TaskStatus.REJECTED},
    TaskStatus.APPROVED: {TaskStatus.EXECUTING},
    TaskStatus.EXECUTING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    # 终态不可再流转
    TaskStatus.REJECTED: set(),
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.REJECTED,
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
}

# 创建时允许的初始状态（auto-approve 直接进入 APPROVED）
INITIAL_STATES: set[TaskStatus] = {
    TaskStatus.PENDING_APPROVAL,
    TaskStatus.APPROVED,
}


class TaskType(StrEnum):
    """任务类型 -- 封闭变体集合"""

    GENERATE_PO = "generate_po"
    SEND_RFQ = "send_rfq"
    SEND_EMAIL = "send_email"
    REORDER_MATERIALS = "reorder_materials"
    VENDOR_FOLLOWUP = "vendor_followup"


class TaskPriority(StrEnum):
    """任务优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """排序权重，数值越大越优先"""
        return PRIORITY_RANK[self]


PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.URGENT: 3,
}


class RuleType(StrEnum):
    """规则类型 -- 决定规则扫描快照中的哪个集合"""

    INVENTORY_REORDER = "inventory_reorder"
    PO_AUTO_GENERATE = "po_auto_generate"
    RFQ_AUTO_SEND = "rfq_auto_send"
    VENDOR_FOLLOWUP = "vendor_followup"
    EMAIL_AUTO_REPLY = "email_auto_reply"


class ConditionOperator(StrEnum):
    """触发条件比较运算符"""

    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    EQ = "eq"
    NE = "ne"
    CONTAINS = "contains"


class LogStatus(StrEnum):
    """日志状态"""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class LogAction(StrEnum):
    """审计日志动作"""

    # Task 流转
    TASK_CREATED = "task_created"
    AUTO_APPROVED = "auto_approved"
    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    TASK_EXPIRED = "task_expired"
    TASK_EXECUTING = "task_executing"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"

    # 规则评估
    RULE_TRIGGERED = "rule_triggered"
    RULE_EVALUATION_ERROR = "rule_evaluation_error"


class ActorType(StrEnum):
    """操作者类型"""

    SYSTEM = "system"
    RULE = "rule"
    APPROVER = "approver"
    EXECUTOR = "executor"
    USER = "user"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
