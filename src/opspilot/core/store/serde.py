"""存储层序列化辅助 -- 时间戳与 JSON 列"""

import json
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any


def to_db_ts(value: datetime | None) -> str | None:
    """datetime -> 固定精度的 UTC ISO 字符串，保证字典序即时间序"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_ts(value: str | None) -> datetime | None:
    """UTC ISO 字符串 -> datetime"""
    if value is None:
        return None
    return datetime.fromisoformat(value)


def dumps(value: Any) -> str:
    """JSON 列写入"""
    return json.dumps(value, ensure_ascii=False, default=str)


def loads(value: str | None, default: Any = None) -> Any:
    """JSON 列读取"""
    if value is None or value == "":
        return default
    return json.loads(value)


def row_to_dict(columns: Sequence[str], row: Iterable[Any]) -> dict[str, Any]:
    """按列名映射数据库行（兼容 tuple 与 aiosqlite.Row）"""
    return dict(zip(columns, tuple(row), strict=True))
