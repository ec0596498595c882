"""LogStore SQLite 实现

日志表 append-only：只允许插入，不允许更新或删除（由数据库触发器强制）。
seq 由数据库分配，全局单调递增。
"""

from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import LogAction, LogStatus
from ..models.log import LogEntry
from .serde import dumps, from_db_ts, loads, row_to_dict, to_db_ts

_LOG_COLUMNS = (
    "seq",
    "log_id",
    "task_id",
    "rule_id",
    "action",
    "status",
    "actor",
    "message",
    "details",
    "created_at",
)
_SELECT_LOG = f"SELECT {', '.join(_LOG_COLUMNS)} FROM logs"


class SqliteLogStore:
    """LogStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_log(self, entry: LogEntry) -> LogEntry:
        """追加日志（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。

        Returns:
            带有数据库分配 seq 的 LogEntry
        """
        cursor = await self._conn.execute(
            """
            INSERT INTO logs (log_id, task_id, rule_id, action, status,
                              actor, message, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.log_id,
                entry.task_id,
                entry.rule_id,
                entry.action.value,
                entry.status.value,
                entry.actor,
                entry.message,
                dumps(entry.details),
                to_db_ts(entry.created_at),
            ),
        )
        return entry.model_copy(update={"seq": cursor.lastrowid})

    async def get_logs_for_task(self, task_id: str) -> list[LogEntry]:
        """查询指定任务的所有日志，按 seq 正序"""
        cursor = await self._conn.execute(
            f"{_SELECT_LOG} WHERE task_id = ? ORDER BY seq ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_log(row) for row in rows]

    async def get_logs_after(self, after_seq: int, limit: int | None = None) -> list[LogEntry]:
        """查询 seq 之后的增量日志（用于 SSE 断线重连），按 seq 正序"""
        sql = f"{_SELECT_LOG} WHERE seq > ? ORDER BY seq ASC"
        params: list[Any] = [after_seq]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_log(row) for row in rows]

    async def list_logs(
        self,
        task_id: str | None = None,
        rule_id: str | None = None,
        status: LogStatus | str | None = None,
        action: LogAction | str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[LogEntry]:
        """按条件查询日志，最新在前（seq 倒序）"""
        clauses: list[str] = []
        params: list[Any] = []
        if task_id:
            clauses.append("task_id = ?")
            params.append(task_id)
        if rule_id:
            clauses.append("rule_id = ?")
            params.append(rule_id)
        if status:
            clauses.append("status = ?")
            params.append(str(status))
        if action:
            clauses.append("action = ?")
            params.append(str(action))
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(to_db_ts(since))
        if until is not None:
            clauses.append("created_at <= ?")
            params.append(to_db_ts(until))

        sql = _SELECT_LOG
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_log(row) for row in rows]

    @staticmethod
    def _row_to_log(row: aiosqlite.Row) -> LogEntry:
        """将数据库行转换为 LogEntry 模型"""
        data = row_to_dict(_LOG_COLUMNS, row)
        return LogEntry(
            seq=data["seq"],
            log_id=data["log_id"],
            task_id=data["task_id"],
            rule_id=data["rule_id"],
            action=LogAction(data["action"]),
            status=LogStatus(data["status"]),
            actor=data["actor"],
            message=data["message"],
            details=loads(data["details"], {}),
            created_at=from_db_ts(data["created_at"]),
        )
