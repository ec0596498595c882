"""StateSnapshot -- Rule Engine 的只读输入

快照按集合组织主体记录：materials / purchase_orders / emails / quotes。
记录为普通 dict，字段由快照提供方（ERP）决定。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class StateSnapshot(BaseModel):
    """运营状态快照"""

    taken_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="快照时间",
    )
    materials: list[dict[str, Any]] = Field(
        default_factory=list,
        description="物料：库存、再订货点、首选供应商、候选供应商等",
    )
    purchase_orders: list[dict[str, Any]] = Field(
        default_factory=list,
        description="采购单：状态、发出天数、供应商邮箱等",
    )
    emails: list[dict[str, Any]] = Field(
        default_factory=list,
        description="入站邮件及其分类结果",
    )
    quotes: list[dict[str, Any]] = Field(
        default_factory=list,
        description="供应商报价历史",
    )

    def collection(self, name: str) -> list[dict[str, Any]]:
        """按名称取集合"""
        return getattr(self, name)
