"""RuleService -- 规则维护（Rule API）

规则类型决定扫描的快照集合，也限定了可生成的任务类型。
"""

from datetime import UTC, datetime

import structlog
from ulid import ULID

from opspilot.core.exceptions import NotFoundError, ValidationError
from opspilot.core.models import Rule, RuleDefinition, RuleType, TaskType
from opspilot.core.store import StoreGroup

log = structlog.get_logger()

# 规则类型 -> 扫描的快照集合
RULE_COLLECTIONS: dict[RuleType, str] = {
    RuleType.INVENTORY_REORDER: "materials",
    RuleType.PO_AUTO_GENERATE: "materials",
    RuleType.RFQ_AUTO_SEND: "materials",
    RuleType.VENDOR_FOLLOWUP: "purchase_orders",
    RuleType.EMAIL_AUTO_REPLY: "emails",
}

# 规则类型 -> 允许的任务类型
RULE_ACTIONS: dict[RuleType, frozenset[TaskType]] = {
    RuleType.INVENTORY_REORDER: frozenset(
        {TaskType.REORDER_MATERIALS, TaskType.GENERATE_PO, TaskType.SEND_RFQ}
    ),
    RuleType.PO_AUTO_GENERATE: frozenset({TaskType.GENERATE_PO, TaskType.REORDER_MATERIALS}),
    RuleType.RFQ_AUTO_SEND: frozenset({TaskType.SEND_RFQ}),
    RuleType.VENDOR_FOLLOWUP: frozenset({TaskType.VENDOR_FOLLOWUP}),
    RuleType.EMAIL_AUTO_REPLY: frozenset({TaskType.SEND_EMAIL}),
}


class RuleService:
    """规则业务服务"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def create(self, definition: RuleDefinition) -> Rule:
        """创建规则

        Raises:
            ValidationError: 规则类型不支持该任务类型
        """
        allowed = RULE_ACTIONS[definition.rule_type]
        if definition.action_type not in allowed:
            raise ValidationError(
                f"rule type {definition.rule_type.value} cannot produce "
                f"{definition.action_type.value} tasks"
            )

        now = datetime.now(UTC)
        rule = Rule(
            rule_id=str(ULID()),
            created_at=now,
            updated_at=now,
            **definition.model_dump(),
        )
        async with self._stores.write_lock:
            try:
                await self._stores.rule_store.create_rule(rule)
                await self._stores.conn.commit()
            except Exception:
                await self._stores.conn.rollback()
                raise

        await log.ainfo(
            "rule_created",
            rule_id=rule.rule_id,
            rule_type=rule.rule_type.value,
            action_type=rule.action_type.value,
        )
        return rule

    async def get(self, rule_id: str) -> Rule:
        rule = await self._stores.rule_store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)
        return rule

    async def list_rules(self, active: bool | None = None) -> list[Rule]:
        return await self._stores.rule_store.list_rules(active=active)

    async def list_active(self) -> list[Rule]:
        return await self._stores.rule_store.list_rules(active=True)

    async def set_active(self, rule_id: str, is_active: bool) -> Rule:
        """启用/停用规则

        Raises:
            NotFoundError: 规则不存在
        """
        async with self._stores.write_lock:
            try:
                found = await self._stores.rule_store.set_active(
                    rule_id, is_active, datetime.now(UTC)
                )
                await self._stores.conn.commit()
            except Exception:
                await self._stores.conn.rollback()
                raise
        if not found:
            raise NotFoundError("Rule", rule_id)
        await log.ainfo("rule_active_changed", rule_id=rule_id, is_active=is_active)
        return await self.get(rule_id)

    async def record_trigger(self, rule_id: str, count: int = 1) -> None:
        """累加规则触发计数"""
        async with self._stores.write_lock:
            try:
                await self._stores.rule_store.bump_trigger(rule_id, count, datetime.now(UTC))
                await self._stores.conn.commit()
            except Exception:
                await self._stores.conn.rollback()
                raise
