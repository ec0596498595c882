"""编排核心异常体系

命令层误用（未知 id、非法流转、非法提案）抛给调用方；
规则评估与任务执行中的失败在引擎内部被捕获并转化为日志与终态。
"""


class OpsPilotError(Exception):
    """编排核心基础异常"""

    code: str = "OPSPILOT_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(OpsPilotError):
    """提案或 payload 非法（未知任务类型、payload 字段缺失、confidence 越界、驳回原因为空等）"""

    code = "VALIDATION_ERROR"


class NotFoundError(OpsPilotError):
    """Task 或 Rule id 不存在"""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} with id {entity_id} does not exist")
        self.entity = entity
        self.entity_id = entity_id
        self.code = f"{entity.upper()}_NOT_FOUND"


class ApprovalStateError(OpsPilotError):
    """非法状态流转（终态再流转、并发竞争失败、执行未审批任务等）"""

    code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        task_id: str,
        current_status: str,
        attempted_status: str,
    ) -> None:
        super().__init__(
            f"Task {task_id} cannot transition from {current_status} to {attempted_status}"
        )
        self.task_id = task_id
        self.current_status = current_status
        self.attempted_status = attempted_status


class RuleEvaluationError(OpsPilotError):
    """条件求值或打分失败 -- 记录日志后丢弃该提案，不影响其他规则"""

    code = "RULE_EVALUATION_ERROR"

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        super().__init__(message)
        self.rule_id = rule_id


class ExecutionError(OpsPilotError):
    """执行阶段失败 -- 任务被标记为 failed，不越过 Executor 边界"""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, step: str | None = None) -> None:
        super().__init__(message)
        self.step = step


class DomainServiceError(OpsPilotError):
    """领域服务返回的结构化错误"""

    code = "DOMAIN_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str = "domain_error",
        retryable: bool = False,
    ) -> None:
        """
        Args:
            message: 错误描述
            error_code: 领域服务给出的错误码
            retryable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.error_code = error_code
        self.retryable = retryable
