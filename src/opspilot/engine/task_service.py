"""TaskService -- 任务创建、审批与状态流转

实现任务生命周期的全部写操作：
1. create: 校验提案 -> 原子去重插入 -> 自动审批判定 -> 创建日志
2. approve / reject / expire: pending_approval 上的 compare-and-set 流转
3. claim / complete / fail: 供 Executor 使用的执行期流转

每次流转与其日志在同一事务内提交，提交后广播给实时订阅者。
"""

import math
from datetime import UTC, datetime
from typing import Any

import structlog
from ulid import ULID

from opspilot.core.config import DEFAULT_LIST_LIMIT
from opspilot.core.exceptions import NotFoundError, ValidationError
from opspilot.core.models import (
    ActorType,
    LogAction,
    LogStatus,
    Rule,
    Task,
    TaskPriority,
    TaskProposal,
    TaskStatus,
    TaskType,
    actor_ref,
    derive_dedup_key,
    dump_payload,
    parse_payload,
)
from opspilot.core.store import (
    DuplicateTaskError,
    StoreGroup,
    create_task_with_log,
    transition_task_with_log,
)

from .audit_log import AuditLog, build_entry

log = structlog.get_logger()


def _format_confidence(value: float) -> str:
    return f"{value:g}"


class TaskService:
    """任务业务服务"""

    def __init__(self, store_group: StoreGroup, audit_log: AuditLog) -> None:
        self._stores = store_group
        self._audit = audit_log

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create(
        self,
        proposal: TaskProposal,
        actor: str | None = None,
        *,
        from_rule_engine: bool = False,
    ) -> tuple[Task, bool]:
        """创建任务

        只有规则引擎提交的提案才参与自动审批；人工提交即使引用了规则，
        也一律进入待审批队列，并以提交人（user）记入日志。

        Args:
            proposal: 任务提案（规则引擎或人工提交）
            actor: 操作者标识，缺省时规则引擎提案为 rule:<id>，人工提交为 user
            from_rule_engine: 提案是否由规则引擎产生

        Returns:
            (task, created) -- created=False 表示去重命中，返回已存在的非终态任务

        Raises:
            ValidationError: 未知任务类型、payload 非法、confidence 缺失或越界，或规则已停用
            NotFoundError: 提案引用的规则不存在
        """
        task_type = self._validate_task_type(proposal.task_type)
        confidence = self._validate_confidence(proposal.confidence)
        payload = parse_payload(task_type, proposal.payload)
        dedup_key = derive_dedup_key(task_type, payload)

        rule: Rule | None = None
        if proposal.rule_id is not None:
            rule = await self._stores.rule_store.get_rule(proposal.rule_id)
            if rule is None:
                raise NotFoundError("Rule", proposal.rule_id)
            if not rule.is_active:
                raise ValidationError(f"Rule {rule.rule_id} is inactive")

        if actor is None:
            if from_rule_engine and rule is not None:
                actor = actor_ref(ActorType.RULE, rule.rule_id)
            else:
                actor = ActorType.USER.value

        auto_approve = (
            from_rule_engine
            and rule is not None
            and rule.auto_approve_threshold is not None
            and confidence >= rule.auto_approve_threshold
        )

        now = datetime.now(UTC)
        task = Task(
            task_id=str(ULID()),
            task_type=task_type,
            priority=proposal.priority,
            status=TaskStatus.APPROVED if auto_approve else TaskStatus.PENDING_APPROVAL,
            payload=dump_payload(payload),
            reasoning=proposal.reasoning,
            confidence=confidence,
            dedup_key=dedup_key,
            rule_id=proposal.rule_id,
            approved_at=now if auto_approve else None,
            created_at=now,
            updated_at=now,
        )

        details: dict[str, Any] = {
            "task_type": task_type.value,
            "priority": task.priority.value,
            "confidence": confidence,
            "dedup_key": dedup_key,
            "status": task.status.value,
        }
        if auto_approve:
            threshold = rule.auto_approve_threshold  # type: ignore[union-attr]
            details["auto_approve_threshold"] = threshold
            entry = build_entry(
                action=LogAction.AUTO_APPROVED,
                status=LogStatus.SUCCESS,
                actor=actor,
                task_id=task.task_id,
                rule_id=task.rule_id,
                message=(
                    f"Task {task_type.value} created and auto-approved "
                    f"(confidence {_format_confidence(confidence)} >= "
                    f"threshold {_format_confidence(threshold)})"
                ),
                details=details,
                created_at=now,
            )
        else:
            entry = build_entry(
                action=LogAction.TASK_CREATED,
                status=LogStatus.INFO,
                actor=actor,
                task_id=task.task_id,
                rule_id=task.rule_id,
                message=(
                    f"Task {task_type.value} created, awaiting approval "
                    f"(confidence {_format_confidence(confidence)})"
                ),
                details=details,
                created_at=now,
            )

        try:
            async with self._stores.write_lock:
                stored = await create_task_with_log(
                    self._stores.conn,
                    self._stores.task_store,
                    self._stores.log_store,
                    task,
                    entry,
                )
        except DuplicateTaskError as e:
            existing = e.existing
            await self._audit.record(
                action=LogAction.DUPLICATE_SUPPRESSED,
                status=LogStatus.INFO,
                actor=actor,
                task_id=existing.task_id,
                rule_id=proposal.rule_id,
                message=(
                    f"Proposal for {dedup_key} suppressed: task {existing.task_id} "
                    f"is already {existing.status.value}"
                ),
                details={
                    "dedup_key": dedup_key,
                    "existing_task_id": existing.task_id,
                    "existing_status": existing.status.value,
                    "proposed_confidence": confidence,
                },
            )
            await log.ainfo(
                "task_duplicate_suppressed",
                dedup_key=dedup_key,
                existing_task_id=existing.task_id,
            )
            return existing, False

        await self._audit.publish(stored)
        await log.ainfo(
            "task_created",
            task_id=task.task_id,
            task_type=task_type.value,
            status=task.status.value,
            rule_id=task.rule_id,
        )
        return task, True

    @staticmethod
    def _validate_task_type(value: str) -> TaskType:
        try:
            return TaskType(value)
        except ValueError:
            raise ValidationError(f"Unknown task type: {value!r}") from None

    @staticmethod
    def _validate_confidence(value: float | None) -> float:
        if value is None:
            raise ValidationError("confidence is required")
        if math.isnan(value) or value < 0 or value > 100:
            raise ValidationError(f"confidence must be within [0, 100], got {value}")
        return float(value)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get(self, task_id: str) -> Task:
        """查询任务，不存在抛出 NotFoundError"""
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def list_queue(self, status: TaskStatus, limit: int | None = None) -> list[Task]:
        """按审批队列顺序（优先级降序、创建时间升序）查询指定状态的任务"""
        return await self._stores.task_store.list_by_status_gate_order(status, limit=limit)

    async def list_created_before(self, status: TaskStatus, cutoff: datetime) -> list[Task]:
        """指定状态下创建时间早于 cutoff 的任务"""
        return await self._stores.task_store.list_created_before(status, cutoff)

    async def list(
        self,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        task_type: TaskType | None = None,
        limit: int | None = DEFAULT_LIST_LIMIT,
    ) -> list[Task]:
        """任务列表，最新在前"""
        return await self._stores.task_store.list_tasks(
            status=status,
            priority=priority,
            task_type=task_type,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # 审批命令
    # ------------------------------------------------------------------

    async def approve(self, task_id: str, approver_id: int) -> Task:
        """审批通过：pending_approval -> approved

        Raises:
            NotFoundError: 任务不存在
            ApprovalStateError: 任务不在 pending_approval（含并发审批的失败方）
        """
        now = datetime.now(UTC)
        return await self._transition(
            task_id=task_id,
            expected=TaskStatus.PENDING_APPROVAL,
            target=TaskStatus.APPROVED,
            action=LogAction.TASK_APPROVED,
            status=LogStatus.SUCCESS,
            actor=actor_ref(ActorType.APPROVER, approver_id),
            message=f"Task approved by approver {approver_id}",
            fields={"approved_by": approver_id, "approved_at": now},
            now=now,
        )

    async def reject(self, task_id: str, approver_id: int, reason: str) -> Task:
        """审批驳回：pending_approval -> rejected

        Raises:
            ValidationError: 驳回原因为空（任务保持 pending_approval）
            NotFoundError: 任务不存在
            ApprovalStateError: 任务不在 pending_approval
        """
        if reason is None or not reason.strip():
            raise ValidationError("rejection reason must not be empty")
        reason = reason.strip()

        now = datetime.now(UTC)
        return await self._transition(
            task_id=task_id,
            expected=TaskStatus.PENDING_APPROVAL,
            target=TaskStatus.REJECTED,
            action=LogAction.TASK_REJECTED,
            status=LogStatus.INFO,
            actor=actor_ref(ActorType.APPROVER, approver_id),
            message=f"Task rejected by approver {approver_id}: {reason}",
            fields={
                "rejected_by": approver_id,
                "rejected_at": now,
                "rejection_reason": reason,
            },
            details={"reason": reason},
            now=now,
        )

    async def expire(self, task_id: str, reason: str) -> Task:
        """系统过期驳回：pending_approval -> rejected（rejected_by 为空）"""
        now = datetime.now(UTC)
        return await self._transition(
            task_id=task_id,
            expected=TaskStatus.PENDING_APPROVAL,
            target=TaskStatus.REJECTED,
            action=LogAction.TASK_EXPIRED,
            status=LogStatus.INFO,
            actor=ActorType.SYSTEM.value,
            message=f"Task rejected by system: {reason}",
            fields={"rejected_at": now, "rejection_reason": reason},
            details={"reason": reason},
            now=now,
        )

    # ------------------------------------------------------------------
    # 执行期流转
    # ------------------------------------------------------------------

    async def claim(self, task_id: str) -> Task:
        """执行认领：approved -> executing（并发认领只有一方成功）"""
        now = datetime.now(UTC)
        return await self._transition(
            task_id=task_id,
            expected=TaskStatus.APPROVED,
            target=TaskStatus.EXECUTING,
            action=LogAction.TASK_EXECUTING,
            status=LogStatus.INFO,
            actor=ActorType.EXECUTOR.value,
            message="Task execution started",
            fields={"executed_at": now},
            now=now,
        )

    async def complete(self, task_id: str, result: dict[str, Any]) -> Task:
        """执行成功：executing -> completed"""
        now = datetime.now(UTC)
        return await self._transition(
            task_id=task_id,
            expected=TaskStatus.EXECUTING,
            target=TaskStatus.COMPLETED,
            action=LogAction.TASK_COMPLETED,
            status=LogStatus.SUCCESS,
            actor=ActorType.EXECUTOR.value,
            message="Task completed",
            fields={"result": result, "completed_at": now},
            details={"result": result},
            now=now,
        )

    async def fail(
        self,
        task_id: str,
        error: str,
        result: dict[str, Any] | None = None,
        actor: str = ActorType.EXECUTOR.value,
    ) -> Task:
        """执行失败：executing -> failed，result 保留已完成步骤的部分引用"""
        now = datetime.now(UTC)
        details: dict[str, Any] = {"error": error}
        if result:
            details["partial_result"] = result
        return await self._transition(
            task_id=task_id,
            expected=TaskStatus.EXECUTING,
            target=TaskStatus.FAILED,
            action=LogAction.TASK_FAILED,
            status=LogStatus.ERROR,
            actor=actor,
            message=f"Task failed: {error}",
            fields={"error": error, "result": result or None, "completed_at": now},
            details=details,
            now=now,
        )

    async def _transition(
        self,
        task_id: str,
        expected: TaskStatus,
        target: TaskStatus,
        action: LogAction,
        status: LogStatus,
        actor: str,
        message: str,
        fields: dict[str, Any],
        now: datetime,
        details: dict[str, Any] | None = None,
    ) -> Task:
        """单事务写入 compare-and-set 流转 + 流转日志"""
        entry = build_entry(
            action=action,
            status=status,
            actor=actor,
            task_id=task_id,
            message=message,
            details={"from_status": expected.value, "to_status": target.value, **(details or {})},
            created_at=now,
        )
        async with self._stores.write_lock:
            task, stored = await transition_task_with_log(
                self._stores.conn,
                self._stores.task_store,
                self._stores.log_store,
                task_id=task_id,
                expected_status=expected,
                new_status=target,
                entry=entry,
                updated_at=now,
                fields=fields,
            )
        await self._audit.publish(stored)
        await log.ainfo(
            "task_transition",
            task_id=task_id,
            from_status=expected.value,
            to_status=target.value,
            actor=actor,
        )
        return task
