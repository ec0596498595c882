"""OpsPilot Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .log_store import SqliteLogStore
from .rule_store import SqliteRuleStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import (
    DuplicateTaskError,
    append_log_only,
    create_task_with_log,
    transition_task_with_log,
)


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接

    write_lock 串行化该连接上的所有写事务。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.task_store = SqliteTaskStore(conn)
        self.rule_store = SqliteRuleStore(conn)
        self.log_store = SqliteLogStore(conn)
        self.write_lock = asyncio.Lock()

    async def close(self) -> None:
        """关闭数据库连接"""
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteRuleStore",
    "SqliteLogStore",
    "init_db",
    "DuplicateTaskError",
    "create_task_with_log",
    "transition_task_with_log",
    "append_log_only",
]
