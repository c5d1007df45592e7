"""ChainEventStore SQLite 实现

chain_events 表 append-only：记录每条已应用的链上事件（来源审计）。
(chain_id, transaction_hash, log_index) 唯一，重复投递不产生第二行。
"""

import json
from datetime import datetime

import aiosqlite
from ulid import ULID

from ..models.enums import ChainEventKind
from ..models.events import JournalEntry, TaskEventBase
from .mirror_store import to_db_time


class SqliteChainEventStore:
    """ChainEventStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        self._read_conn = read_conn or conn

    async def append_event(self, event: TaskEventBase, ingested_at: datetime) -> bool:
        """追加事件，已存在则忽略

        注意：此方法不自动提交事务，需由调用方管理事务。

        Returns:
            True 如果插入了新行
        """
        cursor = await self._conn.execute(
            """
            INSERT OR IGNORE INTO chain_events (event_id, chain_id, blockchain_id, kind,
                                               block_number, log_index, transaction_hash,
                                               payload, ingested_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(ULID()),
                event.chain_id,
                event.blockchain_id,
                event.kind.value,
                event.block_number,
                event.log_index,
                event.transaction_hash,
                json.dumps(event.model_dump(mode="json"), ensure_ascii=False),
                to_db_time(ingested_at),
            ),
        )
        return cursor.rowcount > 0

    async def get_events_for_key(
        self,
        chain_id: int,
        blockchain_id: str,
    ) -> list[JournalEntry]:
        """查询指定任务的所有已应用事件，按链上位置正序"""
        cursor = await self._read_conn.execute(
            """
            SELECT event_id, chain_id, blockchain_id, kind, block_number, log_index,
                   transaction_hash, payload, ingested_at
            FROM chain_events
            WHERE chain_id = ? AND blockchain_id = ?
            ORDER BY block_number ASC, log_index ASC
            """,
            (chain_id, blockchain_id),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def count_events(self, chain_id: int | None = None) -> int:
        """统计已记录事件数"""
        if chain_id is None:
            cursor = await self._read_conn.execute("SELECT COUNT(*) FROM chain_events")
        else:
            cursor = await self._read_conn.execute(
                "SELECT COUNT(*) FROM chain_events WHERE chain_id = ?",
                (chain_id,),
            )
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> JournalEntry:
        """将数据库行转换为 JournalEntry 模型"""
        payload = json.loads(row[7]) if row[7] else {}
        return JournalEntry(
            event_id=row[0],
            chain_id=row[1],
            blockchain_id=row[2],
            kind=ChainEventKind(row[3]),
            block_number=row[4],
            log_index=row[5],
            transaction_hash=row[6],
            payload=payload,
            ingested_at=datetime.fromisoformat(row[8]),
        )
