"""SQLite 数据库初始化

PRAGMA 配置 + 三张表 DDL + 索引 + logs 表 append-only 触发器。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
# 终态约束：completed 必须有 result，failed 必须有 error
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id           TEXT PRIMARY KEY,
    task_type         TEXT NOT NULL,
    priority          TEXT NOT NULL DEFAULT 'medium',
    status            TEXT NOT NULL DEFAULT 'pending_approval',
    payload           TEXT NOT NULL DEFAULT '{}',
    reasoning         TEXT NOT NULL DEFAULT '',
    confidence        REAL NOT NULL,
    dedup_key         TEXT NOT NULL,
    rule_id           TEXT,
    approved_by       INTEGER,
    approved_at       TEXT,
    rejected_by       INTEGER,
    rejected_at       TEXT,
    rejection_reason  TEXT,
    result            TEXT,
    error             TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    executed_at       TEXT,
    completed_at      TEXT,

    CHECK (confidence >= 0 AND confidence <= 100),
    CHECK (status IN ('pending_approval', 'approved', 'executing',
                      'rejected', 'completed', 'failed')),
    CHECK (status != 'completed' OR result IS NOT NULL),
    CHECK (status != 'failed' OR error IS NOT NULL)
);
"""

_TASKS_INDEXES = [
    # 非终态任务的去重键唯一约束（去重检查与插入在同一条 INSERT 内原子完成）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_open_dedup_key ON tasks(dedup_key) "
        "WHERE status IN ('pending_approval', 'approved', 'executing');"
    ),
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_rule_id ON tasks(rule_id);",
]

# rules 表 DDL
_RULES_DDL = """
CREATE TABLE IF NOT EXISTS rules (
    rule_id                 TEXT PRIMARY KEY,
    name                    TEXT NOT NULL,
    rule_type               TEXT NOT NULL,
    trigger_condition       TEXT NOT NULL DEFAULT '{}',
    action_type             TEXT NOT NULL,
    action_config           TEXT NOT NULL DEFAULT '{}',
    priority                TEXT NOT NULL DEFAULT 'medium',
    auto_approve_threshold  REAL,
    is_active               INTEGER NOT NULL DEFAULT 1,
    trigger_count           INTEGER NOT NULL DEFAULT 0,
    last_triggered_at       TEXT,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);
"""

_RULES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_rules_active ON rules(is_active);",
]

# logs 表 DDL -- seq 定义全序
_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS logs (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    log_id      TEXT NOT NULL UNIQUE,
    task_id     TEXT,
    rule_id     TEXT,
    action      TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'info',
    actor       TEXT NOT NULL DEFAULT 'system',
    message     TEXT NOT NULL DEFAULT '',
    details     TEXT NOT NULL DEFAULT '{}',
    created_at  TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_LOGS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_logs_task_id ON logs(task_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_logs_rule_id ON logs(rule_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_logs_status ON logs(status, seq);",
    "CREATE INDEX IF NOT EXISTS idx_logs_created_at ON logs(created_at);",
]

# 日志表 append-only：拒绝 UPDATE / DELETE
_LOGS_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS trg_logs_no_update
    BEFORE UPDATE ON logs
    BEGIN
        SELECT RAISE(ABORT, 'logs table is append-only');
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_logs_no_delete
    BEFORE DELETE ON logs
    BEGIN
        SELECT RAISE(ABORT, 'logs table is append-only');
    END;
    """,
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引 + 触发器

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_TASKS_DDL)
    await conn.execute(_RULES_DDL)
    await conn.execute(_LOGS_DDL)

    # 创建索引与触发器
    for sql in _TASKS_INDEXES + _RULES_INDEXES + _LOGS_INDEXES + _LOGS_TRIGGERS:
        await conn.execute(sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
