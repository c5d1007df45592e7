"""MirrorStore SQLite 实现

mirrors 表保存链上任务的本地镜像。
写入只由 Reconciler 经 transaction 模块发起，此处仅提供数据库操作，不提交事务。
查询路径默认隐藏超过保留窗口的 error 镜像。
查询与写入可使用不同连接：写连接上未提交（可能回滚）的变更对查询不可见。
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

import aiosqlite

from ..config import ERROR_RETENTION
from ..exceptions import DuplicateKeyError
from ..models.enums import SyncStatus
from ..models.mirror import MirrorRecord, OwnerStats

_COLUMNS = (
    "mirror_id",
    "chain_id",
    "blockchain_id",
    "transaction_hash",
    "owner",
    "description",
    "completed",
    "blockchain_created_at",
    "blockchain_completed_at",
    "sync_status",
    "last_synced_at",
    "deleted",
    "created_block",
    "last_event_block",
    "last_event_log_index",
    "description_block",
    "description_log_index",
    "deletion_block",
    "deletion_log_index",
    "created_at",
    "updated_at",
)

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM mirrors"

# 未过期可见条件：非 error，或 error 但仍在保留窗口内
_VISIBLE = "(sync_status != 'error' OR last_synced_at >= ?)"


def to_db_time(value: datetime) -> str:
    """统一序列化为 UTC 微秒精度 ISO 字符串，保证字符串比较与时间比较一致"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _from_db_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteMirrorStore:
    """MirrorStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        clock: Callable[[], datetime] | None = None,
        error_retention: timedelta = ERROR_RETENTION,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self._conn = conn
        # 查询走只读连接（WAL 下只看到已提交数据），缺省与写连接共用
        self._read_conn = read_conn or conn
        self._clock = clock or (lambda: datetime.now(UTC))
        self._error_retention = error_retention

    def error_cutoff(self) -> datetime:
        """早于该时间的 error 镜像视为过期"""
        return self._clock() - self._error_retention

    async def insert_mirror(self, mirror: MirrorRecord) -> None:
        """插入镜像记录

        Raises:
            DuplicateKeyError: (chain_id, blockchain_id) 已存在
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            await self._conn.execute(
                f"INSERT INTO mirrors ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                self._to_params(mirror),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateKeyError(mirror.chain_id, mirror.blockchain_id) from e

    async def update_mirror(self, mirror: MirrorRecord) -> int:
        """按 mirror_id 整行覆盖（chain_id / blockchain_id / mirror_id 不变），返回受影响行数"""
        mutable = [c for c in _COLUMNS if c not in ("mirror_id", "chain_id", "blockchain_id")]
        params = dict(zip(_COLUMNS, self._to_params(mirror), strict=True))
        cursor = await self._conn.execute(
            f"UPDATE mirrors SET {', '.join(f'{c} = ?' for c in mutable)} WHERE mirror_id = ?",
            (*(params[c] for c in mutable), mirror.mirror_id),
        )
        return cursor.rowcount

    async def get_mirror(
        self,
        mirror_id: str,
        include_expired: bool = False,
    ) -> MirrorRecord | None:
        """根据 mirror_id 查询镜像"""
        if include_expired:
            cursor = await self._read_conn.execute(
                f"{_SELECT} WHERE mirror_id = ?",
                (mirror_id,),
            )
        else:
            cursor = await self._read_conn.execute(
                f"{_SELECT} WHERE mirror_id = ? AND {_VISIBLE}",
                (mirror_id, to_db_time(self.error_cutoff())),
            )
        row = await cursor.fetchone()
        return self._row_to_mirror(row) if row else None

    async def get_by_key(
        self,
        chain_id: int,
        blockchain_id: str,
        include_expired: bool = False,
    ) -> MirrorRecord | None:
        """根据 (chain_id, blockchain_id) 查询镜像

        Reconciler 需要 include_expired=True，否则过期 error 行会与插入冲突。
        """
        if include_expired:
            cursor = await self._read_conn.execute(
                f"{_SELECT} WHERE chain_id = ? AND blockchain_id = ?",
                (chain_id, blockchain_id),
            )
        else:
            cursor = await self._read_conn.execute(
                f"{_SELECT} WHERE chain_id = ? AND blockchain_id = ? AND {_VISIBLE}",
                (chain_id, blockchain_id, to_db_time(self.error_cutoff())),
            )
        row = await cursor.fetchone()
        return self._row_to_mirror(row) if row else None

    async def find_by_owner(
        self,
        owner: str,
        include_completed: bool = True,
        include_deleted: bool = False,
    ) -> list[MirrorRecord]:
        """查询某地址的任务，按链上创建时间倒序"""
        sql = f"{_SELECT} WHERE owner = ? AND {_VISIBLE}"
        params: list = [owner.lower(), to_db_time(self.error_cutoff())]
        if not include_completed:
            sql += " AND completed = 0"
        if not include_deleted:
            sql += " AND deleted = 0"
        # 缺少创建时间的 pending 镜像排在最后
        sql += " ORDER BY blockchain_created_at IS NULL, blockchain_created_at DESC, chain_id, blockchain_id"
        cursor = await self._read_conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_mirror(row) for row in rows]

    async def count_by_owner(self, owner: str) -> int:
        """统计某地址未删除的任务数"""
        cursor = await self._read_conn.execute(
            f"SELECT COUNT(*) FROM mirrors WHERE owner = ? AND deleted = 0 AND {_VISIBLE}",
            (owner.lower(), to_db_time(self.error_cutoff())),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def owner_stats(self, owner: str) -> OwnerStats:
        """按地址统计 total / completed / active（均不含已删除）"""
        cursor = await self._read_conn.execute(
            f"""
            SELECT COUNT(*), COALESCE(SUM(completed), 0)
            FROM mirrors
            WHERE owner = ? AND deleted = 0 AND {_VISIBLE}
            """,
            (owner.lower(), to_db_time(self.error_cutoff())),
        )
        row = await cursor.fetchone()
        total, completed = (row[0], row[1]) if row else (0, 0)
        return OwnerStats(total=total, completed=completed, active=total - completed)

    async def list_by_status(
        self,
        statuses: Iterable[SyncStatus],
        limit: int = 100,
    ) -> list[MirrorRecord]:
        """查询指定同步状态的可见镜像，最久未同步的优先"""
        values = [s.value for s in statuses]
        if not values:
            return []
        marks = ", ".join("?" for _ in values)
        cursor = await self._read_conn.execute(
            f"""
            {_SELECT}
            WHERE sync_status IN ({marks}) AND {_VISIBLE}
            ORDER BY last_synced_at ASC
            LIMIT ?
            """,
            (*values, to_db_time(self.error_cutoff()), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_mirror(row) for row in rows]

    async def set_sync_status(
        self,
        chain_id: int,
        blockchain_id: str,
        status: SyncStatus,
        synced_at: datetime,
    ) -> int:
        """仅更新同步状态与 last_synced_at，返回受影响行数"""
        cursor = await self._conn.execute(
            """
            UPDATE mirrors
            SET sync_status = ?, last_synced_at = ?, updated_at = ?
            WHERE chain_id = ? AND blockchain_id = ?
            """,
            (
                status.value,
                to_db_time(synced_at),
                to_db_time(synced_at),
                chain_id,
                blockchain_id,
            ),
        )
        return cursor.rowcount

    async def delete_expired_errors(self, cutoff: datetime) -> int:
        """物理删除过期的 error 镜像，返回删除数量"""
        cursor = await self._conn.execute(
            "DELETE FROM mirrors WHERE sync_status = 'error' AND last_synced_at < ?",
            (to_db_time(cutoff),),
        )
        return cursor.rowcount

    @staticmethod
    def _to_params(mirror: MirrorRecord) -> tuple:
        return (
            mirror.mirror_id,
            mirror.chain_id,
            mirror.blockchain_id,
            mirror.transaction_hash,
            mirror.owner,
            mirror.description,
            int(mirror.completed),
            to_db_time(mirror.blockchain_created_at) if mirror.blockchain_created_at else None,
            to_db_time(mirror.blockchain_completed_at) if mirror.blockchain_completed_at else None,
            mirror.sync_status.value,
            to_db_time(mirror.last_synced_at),
            int(mirror.deleted),
            mirror.created_block,
            mirror.last_event_block,
            mirror.last_event_log_index,
            mirror.description_block,
            mirror.description_log_index,
            mirror.deletion_block,
            mirror.deletion_log_index,
            to_db_time(mirror.created_at),
            to_db_time(mirror.updated_at),
        )

    @staticmethod
    def _row_to_mirror(row: aiosqlite.Row) -> MirrorRecord:
        """将数据库行转换为 MirrorRecord 模型"""
        data = dict(zip(_COLUMNS, tuple(row), strict=True))
        for col in ("blockchain_created_at", "blockchain_completed_at"):
            data[col] = _from_db_time(data[col])
        for col in ("last_synced_at", "created_at", "updated_at"):
            data[col] = datetime.fromisoformat(data[col])
        data["completed"] = bool(data["completed"])
        data["deleted"] = bool(data["deleted"])
        return MirrorRecord(**data)
