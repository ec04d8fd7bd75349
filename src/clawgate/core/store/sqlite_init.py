"""SQLite 数据库初始化

PRAGMA 配置 + kv_records 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# kv_records 表 DDL：expires_at 为 epoch 秒，NULL 表示永不过期
_KV_RECORDS_DDL = """
CREATE TABLE IF NOT EXISTS kv_records (
    namespace   TEXT NOT NULL,
    task_id     TEXT NOT NULL,
    stage       TEXT NOT NULL DEFAULT '',
    value       TEXT NOT NULL DEFAULT '{}',
    expires_at  REAL,
    updated_at  REAL NOT NULL,

    PRIMARY KEY (namespace, task_id, stage)
);
"""

_KV_RECORDS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_kv_records_expires_at ON kv_records(expires_at);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_KV_RECORDS_DDL)
    for idx_sql in _KV_RECORDS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
