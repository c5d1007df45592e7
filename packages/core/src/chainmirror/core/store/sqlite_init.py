"""SQLite 数据库初始化

PRAGMA 配置 + 两张表 DDL（mirrors / chain_events）+ 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# mirrors 表 DDL
_MIRRORS_DDL = """
CREATE TABLE IF NOT EXISTS mirrors (
    mirror_id               TEXT PRIMARY KEY,
    chain_id                INTEGER NOT NULL,
    blockchain_id           TEXT NOT NULL,
    transaction_hash        TEXT NOT NULL DEFAULT '',
    owner                   TEXT NOT NULL,
    description             TEXT NOT NULL DEFAULT '',
    completed               INTEGER NOT NULL DEFAULT 0,
    blockchain_created_at   TEXT,
    blockchain_completed_at TEXT,
    sync_status             TEXT NOT NULL DEFAULT 'synced',
    last_synced_at          TEXT NOT NULL,
    deleted                 INTEGER NOT NULL DEFAULT 0,
    created_block           INTEGER,
    last_event_block        INTEGER,
    last_event_log_index    INTEGER,
    description_block       INTEGER,
    description_log_index   INTEGER,
    deletion_block          INTEGER,
    deletion_log_index      INTEGER,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL
);
"""

_MIRRORS_INDEXES = [
    # (chain_id, blockchain_id) 全局唯一，所有写入路径的幂等键
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_mirrors_chain_key "
        "ON mirrors(chain_id, blockchain_id);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_mirrors_owner ON mirrors(owner);",
    "CREATE INDEX IF NOT EXISTS idx_mirrors_sync_status ON mirrors(sync_status);",
    (
        "CREATE INDEX IF NOT EXISTS idx_mirrors_owner_created "
        "ON mirrors(owner, blockchain_created_at DESC);"
    ),
]

# chain_events 表 DDL（已应用链上事件的审计日志）
_CHAIN_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS chain_events (
    event_id          TEXT PRIMARY KEY,
    chain_id          INTEGER NOT NULL,
    blockchain_id     TEXT NOT NULL,
    kind              TEXT NOT NULL,
    block_number      INTEGER NOT NULL,
    log_index         INTEGER NOT NULL,
    transaction_hash  TEXT NOT NULL,
    payload           TEXT NOT NULL DEFAULT '{}',
    ingested_at       TEXT NOT NULL
);
"""

_CHAIN_EVENTS_INDEXES = [
    # 同一条日志重复投递只记录一次
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_chain_events_log "
        "ON chain_events(chain_id, transaction_hash, log_index);"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_chain_events_key "
        "ON chain_events(chain_id, blockchain_id, block_number, log_index);"
    ),
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_MIRRORS_DDL)
    await conn.execute(_CHAIN_EVENTS_DDL)

    for idx_sql in _MIRRORS_INDEXES + _CHAIN_EVENTS_INDEXES:
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
