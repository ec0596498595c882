"""状态变更 + 审计日志原子事务封装

在同一 SQLite 事务内原子提交 Task 状态变更和对应的 LogEntry，
确保每次流转（含创建）恰好产生一条日志。
调用方需持有 StoreGroup.write_lock，避免并发协程在同一连接上交错进入事务。
"""

import sqlite3
from datetime import datetime
from typing import Any

import aiosqlite

from ..exceptions import ApprovalStateError, NotFoundError, ValidationError
from ..models.enums import INITIAL_STATES, TaskStatus, validate_transition
from ..models.log import LogEntry
from ..models.task import Task
from .protocols import LogStore, TaskStore


class DuplicateTaskError(Exception):
    """去重键已被某个非终态任务持有"""

    def __init__(self, existing: Task) -> None:
        super().__init__(
            f"Task {existing.task_id} already holds dedup key {existing.dedup_key}"
        )
        self.existing = existing


async def create_task_with_log(
    conn: aiosqlite.Connection,
    task_store: TaskStore,
    log_store: LogStore,
    task: Task,
    entry: LogEntry,
) -> LogEntry:
    """在同一事务内原子写入新任务及其创建日志

    去重检查由 tasks(dedup_key) 部分唯一索引在 INSERT 时完成。

    Raises:
        ValidationError: 任务不处于可创建的初始状态
        DuplicateTaskError: 去重键冲突，事务已回滚
    """
    if task.status not in INITIAL_STATES:
        raise ValidationError(f"Task cannot be created in status {task.status.value}")

    try:
        await task_store.create_task(task)
        stored = await log_store.append_log(entry)
        await conn.commit()
        return stored
    except sqlite3.IntegrityError as exc:
        await conn.rollback()
        existing = await task_store.get_open_task_by_dedup_key(task.dedup_key)
        if existing is None:
            raise
        raise DuplicateTaskError(existing) from exc
    except Exception:
        await conn.rollback()
        raise


async def transition_task_with_log(
    conn: aiosqlite.Connection,
    task_store: TaskStore,
    log_store: LogStore,
    task_id: str,
    expected_status: TaskStatus,
    new_status: TaskStatus,
    entry: LogEntry,
    updated_at: datetime,
    fields: dict[str, Any] | None = None,
) -> tuple[Task, LogEntry]:
    """在同一事务内原子提交 compare-and-set 状态流转和流转日志

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        task_store: TaskStore 实例
        log_store: LogStore 实例
        task_id: 任务 ID
        expected_status: 期望的当前状态（CAS 条件）
        new_status: 目标状态
        entry: 要写入的流转日志
        updated_at: 更新时间
        fields: 需要一并更新的列（approved_by、result、error 等）

    Returns:
        (更新后的 Task, 带 seq 的 LogEntry)

    Raises:
        NotFoundError: 任务不存在
        ApprovalStateError: 流转不合法，或当前状态已不是 expected_status（竞争失败）
    """
    if not validate_transition(expected_status, new_status):
        raise ApprovalStateError(task_id, expected_status.value, new_status.value)

    try:
        won = await task_store.compare_and_set_status(
            task_id=task_id,
            expected_status=expected_status,
            new_status=new_status,
            updated_at=updated_at,
            fields=fields,
        )
        if not won:
            await conn.rollback()
            current = await task_store.get_task(task_id)
            if current is None:
                raise NotFoundError("Task", task_id)
            raise ApprovalStateError(task_id, current.status.value, new_status.value)

        task = await task_store.get_task(task_id)
        if entry.rule_id is None and task is not None and task.rule_id is not None:
            entry = entry.model_copy(update={"rule_id": task.rule_id})
        stored = await log_store.append_log(entry)
        await conn.commit()
    except (NotFoundError, ApprovalStateError):
        raise
    except Exception:
        await conn.rollback()
        raise

    assert task is not None
    return task, stored


async def append_log_only(
    conn: aiosqlite.Connection,
    log_store: LogStore,
    entry: LogEntry,
) -> LogEntry:
    """仅写入日志（规则级事件、去重抑制等不改变 Task 状态的记录）"""
    try:
        stored = await log_store.append_log(entry)
        await conn.commit()
        return stored
    except Exception:
        await conn.rollback()
        raise
