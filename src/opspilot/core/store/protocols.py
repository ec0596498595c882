"""Store Protocol 接口定义

定义 TaskStore、RuleStore、LogStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Any, Protocol

from ..models.enums import LogAction, LogStatus, TaskPriority, TaskStatus, TaskType
from ..models.log import LogEntry
from ..models.rule import Rule
from ..models.task import Task


class TaskStore(Protocol):
    """Task 存储接口 -- create / get / list / compare-and-set"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录（去重键冲突时抛出 IntegrityError）"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def get_open_task_by_dedup_key(self, dedup_key: str) -> Task | None:
        """查询持有该去重键的非终态任务"""
        ...

    async def list_tasks(
        self,
        status: TaskStatus | str | None = None,
        priority: TaskPriority | str | None = None,
        task_type: TaskType | str | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """查询任务列表，最新在前"""
        ...

    async def list_by_status_gate_order(
        self,
        status: TaskStatus,
        limit: int | None = None,
    ) -> list[Task]:
        """按优先级降序、创建时间升序查询"""
        ...

    async def list_created_before(self, status: TaskStatus, cutoff: datetime) -> list[Task]:
        """查询某状态下创建时间早于 cutoff 的任务"""
        ...

    async def compare_and_set_status(
        self,
        task_id: str,
        expected_status: TaskStatus,
        new_status: TaskStatus,
        updated_at: datetime,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """状态流转 CAS，返回是否成功"""
        ...


class RuleStore(Protocol):
    """Rule 存储接口"""

    async def create_rule(self, rule: Rule) -> None: ...

    async def get_rule(self, rule_id: str) -> Rule | None: ...

    async def list_rules(self, active: bool | None = None) -> list[Rule]: ...

    async def set_active(self, rule_id: str, is_active: bool, updated_at: datetime) -> bool: ...

    async def bump_trigger(self, rule_id: str, count: int, triggered_at: datetime) -> None: ...


class LogStore(Protocol):
    """Log 存储接口

    日志表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_log(self, entry: LogEntry) -> LogEntry:
        """追加日志（append-only）"""
        ...

    async def get_logs_for_task(self, task_id: str) -> list[LogEntry]:
        """查询指定任务的所有日志"""
        ...

    async def get_logs_after(self, after_seq: int, limit: int | None = None) -> list[LogEntry]:
        """查询 seq 大于 after_seq 的日志（断线重连补发）"""
        ...

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
        """按条件查询日志，最新在前"""
        ...
