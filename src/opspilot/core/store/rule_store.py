"""RuleStore SQLite 实现

规则由 Rule API 维护；Rule Engine 评估期间只读，唯一的写入是触发计数。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import TaskPriority, TaskType
from ..models.rule import Rule, TriggerCondition
from .serde import dumps, from_db_ts, loads, row_to_dict, to_db_ts

_RULE_COLUMNS = (
    "rule_id",
    "name",
    "rule_type",
    "trigger_condition",
    "action_type",
    "action_config",
    "priority",
    "auto_approve_threshold",
    "is_active",
    "trigger_count",
    "last_triggered_at",
    "created_at",
    "updated_at",
)
_SELECT_RULE = f"SELECT {', '.join(_RULE_COLUMNS)} FROM rules"


class SqliteRuleStore:
    """RuleStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_rule(self, rule: Rule) -> None:
        """创建规则记录（不自动提交）"""
        await self._conn.execute(
            f"""
            INSERT INTO rules ({', '.join(_RULE_COLUMNS)})
            VALUES ({', '.join('?' for _ in _RULE_COLUMNS)})
            """,
            (
                rule.rule_id,
                rule.name,
                rule.rule_type.value,
                rule.trigger_condition.model_dump_json(),
                rule.action_type.value,
                dumps(rule.action_config),
                rule.priority.value,
                rule.auto_approve_threshold,
                int(rule.is_active),
                rule.trigger_count,
                to_db_ts(rule.last_triggered_at),
                to_db_ts(rule.created_at),
                to_db_ts(rule.updated_at),
            ),
        )

    async def get_rule(self, rule_id: str) -> Rule | None:
        """根据 rule_id 查询规则"""
        cursor = await self._conn.execute(
            f"{_SELECT_RULE} WHERE rule_id = ?",
            (rule_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    async def list_rules(self, active: bool | None = None) -> list[Rule]:
        """查询规则列表，active 为 None 时返回全部，按 created_at 正序"""
        if active is None:
            cursor = await self._conn.execute(
                f"{_SELECT_RULE} ORDER BY created_at ASC, rowid ASC"
            )
        else:
            cursor = await self._conn.execute(
                f"{_SELECT_RULE} WHERE is_active = ? ORDER BY created_at ASC, rowid ASC",
                (int(active),),
            )
        rows = await cursor.fetchall()
        return [self._row_to_rule(row) for row in rows]

    async def set_active(self, rule_id: str, is_active: bool, updated_at: datetime) -> bool:
        """启用/停用规则（不自动提交）

        Returns:
            True 如果规则存在
        """
        cursor = await self._conn.execute(
            "UPDATE rules SET is_active = ?, updated_at = ? WHERE rule_id = ?",
            (int(is_active), to_db_ts(updated_at), rule_id),
        )
        return cursor.rowcount == 1

    async def bump_trigger(self, rule_id: str, count: int, triggered_at: datetime) -> None:
        """累加触发计数并记录最近触发时间（不自动提交）"""
        await self._conn.execute(
            """
            UPDATE rules
            SET trigger_count = trigger_count + ?, last_triggered_at = ?
            WHERE rule_id = ?
            """,
            (count, to_db_ts(triggered_at), rule_id),
        )

    @staticmethod
    def _row_to_rule(row: aiosqlite.Row) -> Rule:
        """将数据库行转换为 Rule 模型"""
        data = row_to_dict(_RULE_COLUMNS, row)
        return Rule(
            rule_id=data["rule_id"],
            name=data["name"],
            rule_type=data["rule_type"],
            trigger_condition=TriggerCondition.model_validate_json(data["trigger_condition"]),
            action_type=TaskType(data["action_type"]),
            action_config=loads(data["action_config"], {}),
            priority=TaskPriority(data["priority"]),
            auto_approve_threshold=data["auto_approve_threshold"],
            is_active=bool(data["is_active"]),
            trigger_count=data["trigger_count"],
            last_triggered_at=from_db_ts(data["last_triggered_at"]),
            created_at=from_db_ts(data["created_at"]),
            updated_at=from_db_ts(data["updated_at"]),
        )
