"""chainmirror Core Store -- SQLite 持久化实现

提供工厂函数创建 Store 实例组：一个写连接（配合写锁串行化事务）
加一个只读查询连接，查询不会读到写连接上尚未提交的数据。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import aiosqlite

from .event_store import SqliteChainEventStore
from .mirror_store import SqliteMirrorStore, to_db_time
from .protocols import ChainEventStore, MirrorStore
from .sqlite_init import init_db, verify_wal_mode
from .transaction import purge_expired_errors, save_mirror_with_event, set_mirror_status


class StoreGroup:
    """Store 实例组 -- 共享写连接、写锁和只读查询连接"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        clock: Callable[[], datetime] | None = None,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self.conn = conn
        self.read_conn = read_conn or conn
        self.write_lock = asyncio.Lock()
        self.mirror_store: MirrorStore = SqliteMirrorStore(
            conn, clock=clock, read_conn=self.read_conn
        )
        self.event_store: ChainEventStore = SqliteChainEventStore(conn, read_conn=self.read_conn)

    async def close(self) -> None:
        if self.read_conn is not self.conn:
            await self.read_conn.close()
        await self.conn.close()


async def create_store_group(
    db_path: str,
    clock: Callable[[], datetime] | None = None,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        clock: 可注入的时钟（error 保留窗口判断），默认 UTC 当前时间

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    read_conn = await aiosqlite.connect(db_path)
    read_conn.row_factory = aiosqlite.Row
    await read_conn.execute("PRAGMA query_only = ON")

    return StoreGroup(conn=conn, clock=clock, read_conn=read_conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteMirrorStore",
    "SqliteChainEventStore",
    "init_db",
    "verify_wal_mode",
    "to_db_time",
    "save_mirror_with_event",
    "set_mirror_status",
    "purge_expired_errors",
]
