"""AuditLog -- 审计日志写入、查询与实时广播

所有日志条目只追加不修改。状态流转日志由 TaskService 在流转事务中写入，
规则级事件（rule_triggered / rule_evaluation_error / duplicate_suppressed）经 record() 写入。
新条目提交后推送给实时订阅者（SSE）。
"""

from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from ulid import ULID

from opspilot.core.config import DEFAULT_LIST_LIMIT, LOG_MESSAGE_MAX_LENGTH
from opspilot.core.models import LogAction, LogEntry, LogStatus
from opspilot.core.store import StoreGroup, append_log_only

log = structlog.get_logger()


class LogListener(Protocol):
    """日志订阅方（如 SSEHub）"""

    async def broadcast(self, entry: LogEntry) -> None: ...


def build_entry(
    action: LogAction,
    message: str,
    status: LogStatus = LogStatus.INFO,
    actor: str = "system",
    task_id: str | None = None,
    rule_id: str | None = None,
    details: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> LogEntry:
    """构造一条待写入的 LogEntry（seq 由数据库分配）"""
    if len(message) > LOG_MESSAGE_MAX_LENGTH:
        message = message[: LOG_MESSAGE_MAX_LENGTH - 3] + "..."
    return LogEntry(
        log_id=str(ULID()),
        task_id=task_id,
        rule_id=rule_id,
        action=action,
        status=status,
        actor=actor,
        message=message,
        details=details or {},
        created_at=created_at or datetime.now(UTC),
    )


class AuditLog:
    """审计日志服务"""

    def __init__(self, store_group: StoreGroup, listener: LogListener | None = None) -> None:
        self._stores = store_group
        self._listener = listener

    async def record(
        self,
        action: LogAction,
        message: str,
        status: LogStatus = LogStatus.INFO,
        actor: str = "system",
        task_id: str | None = None,
        rule_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> LogEntry:
        """写入一条不伴随状态流转的日志并广播"""
        entry = build_entry(
            action=action,
            message=message,
            status=status,
            actor=actor,
            task_id=task_id,
            rule_id=rule_id,
            details=details,
        )
        async with self._stores.write_lock:
            stored = await append_log_only(self._stores.conn, self._stores.log_store, entry)
        await self.publish(stored)
        return stored

    async def publish(self, entry: LogEntry) -> None:
        """把已提交的日志推送给订阅方"""
        if self._listener is None:
            return
        await self._listener.broadcast(entry)

    async def for_task(self, task_id: str) -> list[LogEntry]:
        """某个任务的完整流转历史，按发生顺序"""
        return await self._stores.log_store.get_logs_for_task(task_id)

    async def list(
        self,
        task_id: str | None = None,
        rule_id: str | None = None,
        status: LogStatus | str | None = None,
        action: LogAction | str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = DEFAULT_LIST_LIMIT,
    ) -> list[LogEntry]:
        """按条件查询日志，最新在前"""
        return await self._stores.log_store.list_logs(
            task_id=task_id,
            rule_id=rule_id,
            status=status,
            action=action,
            since=since,
            until=until,
            limit=limit,
        )
