"""Store Protocol 接口定义

定义 MirrorStore、ChainEventStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from ..models.enums import SyncStatus
from ..models.events import JournalEntry, TaskEventBase
from ..models.mirror import MirrorRecord, OwnerStats


class MirrorStore(Protocol):
    """Mirror 存储接口"""

    def error_cutoff(self) -> datetime:
        """早于该时间的 error 镜像视为过期"""
        ...

    async def insert_mirror(self, mirror: MirrorRecord) -> None:
        """插入镜像，唯一键冲突时抛出 DuplicateKeyError"""
        ...

    async def update_mirror(self, mirror: MirrorRecord) -> int:
        """按 mirror_id 整行覆盖，返回受影响行数"""
        ...

    async def get_mirror(
        self,
        mirror_id: str,
        include_expired: bool = False,
    ) -> MirrorRecord | None:
        """根据 mirror_id 查询镜像"""
        ...

    async def get_by_key(
        self,
        chain_id: int,
        blockchain_id: str,
        include_expired: bool = False,
    ) -> MirrorRecord | None:
        """根据 (chain_id, blockchain_id) 查询镜像"""
        ...

    async def find_by_owner(
        self,
        owner: str,
        include_completed: bool = True,
        include_deleted: bool = False,
    ) -> list[MirrorRecord]:
        """查询某地址的任务"""
        ...

    async def count_by_owner(self, owner: str) -> int:
        """统计某地址未删除的任务数"""
        ...

    async def owner_stats(self, owner: str) -> OwnerStats:
        """按地址统计"""
        ...

    async def list_by_status(
        self,
        statuses: Iterable[SyncStatus],
        limit: int = 100,
    ) -> list[MirrorRecord]:
        """查询指定同步状态的镜像"""
        ...

    async def set_sync_status(
        self,
        chain_id: int,
        blockchain_id: str,
        status: SyncStatus,
        synced_at: datetime,
    ) -> int:
        """仅更新同步状态"""
        ...

    async def delete_expired_errors(self, cutoff: datetime) -> int:
        """物理删除过期 error 镜像"""
        ...


class ChainEventStore(Protocol):
    """链上事件日志接口

    append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: TaskEventBase, ingested_at: datetime) -> bool:
        """追加事件，重复则忽略"""
        ...

    async def get_events_for_key(
        self,
        chain_id: int,
        blockchain_id: str,
    ) -> list[JournalEntry]:
        """查询指定任务的所有已应用事件"""
        ...
