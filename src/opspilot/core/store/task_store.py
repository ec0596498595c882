"""TaskStore SQLite 实现

tasks 表记录每个任务的当前状态。
状态更新只走 compare-and-set（UPDATE ... WHERE status = ?），此处仅提供数据库操作，
事务由 transaction 模块管理。
"""

from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import PRIORITY_RANK, TaskPriority, TaskStatus, TaskType
from ..models.task import Task
from .serde import dumps, from_db_ts, loads, row_to_dict, to_db_ts

_TASK_COLUMNS = (
    "task_id",
    "task_type",
    "priority",
    "status",
    "payload",
    "reasoning",
    "confidence",
    "dedup_key",
    "rule_id",
    "approved_by",
    "approved_at",
    "rejected_by",
    "rejected_at",
    "rejection_reason",
    "result",
    "error",
    "created_at",
    "updated_at",
    "executed_at",
    "completed_at",
)
_SELECT_TASK = f"SELECT {', '.join(_TASK_COLUMNS)} FROM tasks"

# 允许在状态流转时一并更新的列
_UPDATABLE_COLUMNS = frozenset(
    {
        "approved_by",
        "approved_at",
        "rejected_by",
        "rejected_at",
        "rejection_reason",
        "result",
        "error",
        "executed_at",
        "completed_at",
    }
)
_JSON_COLUMNS = frozenset({"result"})

# 审批队列排序：优先级降序 -> created_at 升序 -> 插入顺序
_PRIORITY_ORDER_SQL = (
    "CASE priority "
    + " ".join(f"WHEN '{p.value}' THEN {rank}" for p, rank in PRIORITY_RANK.items())
    + " ELSE 0 END"
)
_GATE_ORDER_BY = f"ORDER BY {_PRIORITY_ORDER_SQL} DESC, created_at ASC, rowid ASC"


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录

        注意：此方法不自动提交事务；dedup_key 冲突时抛出 sqlite3.IntegrityError。
        """
        await self._conn.execute(
            f"""
            INSERT INTO tasks ({', '.join(_TASK_COLUMNS)})
            VALUES ({', '.join('?' for _ in _TASK_COLUMNS)})
            """,
            (
                task.task_id,
                task.task_type.value,
                task.priority.value,
                task.status.value,
                dumps(task.payload),
                task.reasoning,
                task.confidence,
                task.dedup_key,
                task.rule_id,
                task.approved_by,
                to_db_ts(task.approved_at),
                task.rejected_by,
                to_db_ts(task.rejected_at),
                task.rejection_reason,
                dumps(task.result) if task.result is not None else None,
                task.error,
                to_db_ts(task.created_at),
                to_db_ts(task.updated_at),
                to_db_ts(task.executed_at),
                to_db_ts(task.completed_at),
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASK} WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def get_open_task_by_dedup_key(self, dedup_key: str) -> Task | None:
        """查询持有该去重键的非终态任务"""
        cursor = await self._conn.execute(
            f"""
            {_SELECT_TASK}
            WHERE dedup_key = ?
              AND status IN ('pending_approval', 'approved', 'executing')
            LIMIT 1
            """,
            (dedup_key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        task_type: TaskType | str | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """查询任务列表，支持按状态/优先级/类型筛选，按 created_at 倒序"""
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(str(status))
        if priority:
            clauses.append("priority = ?")
            params.append(str(priority))
        if task_type:
            clauses.append("task_type = ?")
            params.append(str(task_type))

        sql = _SELECT_TASK
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_by_status_gate_order(
        self,
        status: TaskStatus,
        limit: int | None = None,
    ) -> list[Task]:
        """按审批队列顺序查询指定状态的任务"""
        sql = f"{_SELECT_TASK} WHERE status = ? {_GATE_ORDER_BY}"
        params: list[Any] = [status.value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_created_before(
        self,
        status: TaskStatus,
        cutoff: datetime,
    ) -> list[Task]:
        """查询指定状态下创建时间早于 cutoff 的任务"""
        cursor = await self._conn.execute(
            f"{_SELECT_TASK} WHERE status = ? AND created_at < ? ORDER BY created_at ASC",
            (status.value, to_db_ts(cutoff)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def compare_and_set_status(
        self,
        task_id: str,
        expected_status: TaskStatus,
        new_status: TaskStatus,
        updated_at: datetime,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """仅当当前状态等于 expected_status 时更新状态及附加列

        Returns:
            True 如果本次调用赢得了状态流转
        """
        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [new_status.value, to_db_ts(updated_at)]
        for column, value in (fields or {}).items():
            if column not in _UPDATABLE_COLUMNS:
                raise ValueError(f"column {column!r} is not updatable")
            assignments.append(f"{column} = ?")
            if isinstance(value, datetime):
                value = to_db_ts(value)
            elif column in _JSON_COLUMNS and value is not None:
                value = dumps(value)
            params.append(value)

        params.extend([task_id, expected_status.value])
        cursor = await self._conn.execute(
            f"UPDATE tasks SET {', '.join(assignments)} WHERE task_id = ? AND status = ?",
            params,
        )
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        data = row_to_dict(_TASK_COLUMNS, row)
        return Task(
            task_id=data["task_id"],
            task_type=TaskType(data["task_type"]),
            priority=TaskPriority(data["priority"]),
            status=TaskStatus(data["status"]),
            payload=loads(data["payload"], {}),
            reasoning=data["reasoning"],
            confidence=data["confidence"],
            dedup_key=data["dedup_key"],
            rule_id=data["rule_id"],
            approved_by=data["approved_by"],
            approved_at=from_db_ts(data["approved_at"]),
            rejected_by=data["rejected_by"],
            rejected_at=from_db_ts(data["rejected_at"]),
            rejection_reason=data["rejection_reason"],
            result=loads(data["result"]),
            error=data["error"],
            created_at=from_db_ts(data["created_at"]),
            updated_at=from_db_ts(data["updated_at"]),
            executed_at=from_db_ts(data["executed_at"]),
            completed_at=from_db_ts(data["completed_at"]),
        )
