"""镜像写入 + 事件日志原子事务封装

同一连接上的写入通过 StoreGroup.write_lock 串行化，
每次写入在一个 SQLite 事务内提交镜像变更和对应的事件日志。
"""

from datetime import datetime
from typing import TYPE_CHECKING

from ..exceptions import MirrorVanishedError
from ..models.enums import SyncStatus
from ..models.events import TaskEventBase, TaskSnapshot
from ..models.mirror import MirrorRecord

if TYPE_CHECKING:
    from . import StoreGroup


async def save_mirror_with_event(
    stores: "StoreGroup",
    mirror: MirrorRecord,
    *,
    is_new: bool,
    event: TaskEventBase | None = None,
    ingested_at: datetime | None = None,
) -> None:
    """在同一事务内原子提交镜像插入/更新和事件日志

    Args:
        stores: Store 实例组（共享连接 + 写锁）
        mirror: 要写入的镜像完整状态
        is_new: True 为插入，False 为按 mirror_id 覆盖
        event: 导致此变更的链上事件；快照事件不记入日志
        ingested_at: 事件入库时间，默认取 mirror.last_synced_at

    Raises:
        DuplicateKeyError: 插入时唯一键冲突（已回滚）
        MirrorVanishedError: 更新时行已被删除（已回滚，未记日志）
        Exception: 其他持久化失败（已回滚）
    """
    async with stores.write_lock:
        try:
            if is_new:
                await stores.mirror_store.insert_mirror(mirror)
            elif await stores.mirror_store.update_mirror(mirror) == 0:
                raise MirrorVanishedError(mirror.chain_id, mirror.blockchain_id, mirror.mirror_id)

            if event is not None and not isinstance(event, TaskSnapshot):
                await stores.event_store.append_event(
                    event, ingested_at or mirror.last_synced_at
                )

            await stores.conn.commit()
        except Exception:
            await stores.conn.rollback()
            raise


async def set_mirror_status(
    stores: "StoreGroup",
    chain_id: int,
    blockchain_id: str,
    status: SyncStatus,
    synced_at: datetime,
) -> bool:
    """仅更新同步状态与 last_synced_at

    Returns:
        True 如果镜像存在并被更新
    """
    async with stores.write_lock:
        try:
            updated = await stores.mirror_store.set_sync_status(
                chain_id, blockchain_id, status, synced_at
            )
            await stores.conn.commit()
        except Exception:
            await stores.conn.rollback()
            raise
    return updated > 0


async def purge_expired_errors(stores: "StoreGroup", cutoff: datetime) -> int:
    """物理删除早于 cutoff 的 error 镜像，返回删除数量"""
    async with stores.write_lock:
        try:
            deleted = await stores.mirror_store.delete_expired_errors(cutoff)
            await stores.conn.commit()
        except Exception:
            await stores.conn.rollback()
            raise
    return deleted
