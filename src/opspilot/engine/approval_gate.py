"""ApprovalGate -- 待审批任务队列

pending_approval 任务的只读视图：优先级降序（urgent > high > medium > low），
同优先级按创建时间先进先出。审批/驳回委托给 TaskService，原子性与 API 一致。
"""

from datetime import UTC, datetime, timedelta

import structlog

from opspilot.core.exceptions import ApprovalStateError
from opspilot.core.models import Task, TaskStatus

from .task_service import TaskService

log = structlog.get_logger()


class ApprovalGate:
    """审批闸门"""

    def __init__(self, task_service: TaskService) -> None:
        self._tasks = task_service

    async def list_pending(self, limit: int | None = None) -> list[Task]:
        """待审批任务，按审批顺序"""
        return await self._tasks.list_queue(TaskStatus.PENDING_APPROVAL, limit=limit)

    async def approve(self, task_id: str, approver_id: int) -> Task:
        return await self._tasks.approve(task_id, approver_id)

    async def reject(self, task_id: str, approver_id: int, reason: str) -> Task:
        return await self._tasks.reject(task_id, approver_id, reason)

    async def expire_stale(self, max_age: timedelta, now: datetime | None = None) -> list[Task]:
        """驳回等待审批超过 max_age 的任务

        与并发审批竞争时以先提交者为准，失败方跳过。

        Returns:
            本次被过期驳回的任务
        """
        now = now or datetime.now(UTC)
        stale = await self._tasks.list_created_before(TaskStatus.PENDING_APPROVAL, now - max_age)
        expired: list[Task] = []
        hours = max_age.total_seconds() / 3600
        reason = f"expired: pending approval longer than {hours:g}h"
        for task in stale:
            try:
                expired.append(await self._tasks.expire(task.task_id, reason))
            except ApprovalStateError:
                log.info("task_expire_skipped", task_id=task.task_id)
        if expired:
            await log.ainfo("pending_tasks_expired", count=len(expired))
        return expired
