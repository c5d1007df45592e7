"""Reconciler -- 镜像的唯一写入方

把领域事件合并进 mirrors 表，对同一 key 幂等且与投递顺序无关：
- 每个事件的位置为 (block_number, log_index)，快照为 (读取高度, SNAPSHOT_LOG_INDEX)
- description 只被不早于当前 description 位置的写入覆盖
- deleted 只被严格晚于当前 deletion 位置的写入翻转
- completed 单调，只有比所有已应用事件都新的快照才能改写
- transaction_hash 跟随位置最高的已应用事件
- 合并结果与现状一致时不写库

持久化失败时镜像尽力标记为 error，事件进入有界重试账本，apply() 返回 failed，不抛异常。
"""

import asyncio
import zlib
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel
from ulid import ULID

from chainmirror.chain import ChainRegistry
from chainmirror.core.exceptions import (
    DuplicateKeyError,
    MirrorError,
    MirrorVanishedError,
    NotFoundError,
    ReconcileError,
)
from chainmirror.core.models import (
    ApplyOutcome,
    MirrorRecord,
    SyncStatus,
    TaskAdded,
    TaskCompleted,
    TaskDeleted,
    TaskEventBase,
    TaskRestored,
    TaskSnapshot,
    TaskUpdated,
    UnrecognizedEvent,
)
from chainmirror.core.store import StoreGroup, save_mirror_with_event, set_mirror_status

log = structlog.get_logger()

_DEFAULT_LOCK_STRIPES = 64


class ApplyResult(BaseModel):
    """单个事件的应用结果"""

    outcome: ApplyOutcome
    chain_id: int | None = None
    blockchain_id: str | None = None
    mirror: MirrorRecord | None = None
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.outcome in (ApplyOutcome.CREATED, ApplyOutcome.UPDATED)


def desired_status(mirror: MirrorRecord) -> SyncStatus:
    """缺少创建信息的镜像只能是 pending"""
    return SyncStatus.SYNCED if mirror.blockchain_created_at is not None else SyncStatus.PENDING


def merge_event(mirror: MirrorRecord, event: TaskEventBase) -> MirrorRecord:
    """把事件合并进镜像，返回新状态（不修改入参，不触碰 last_synced_at）"""
    pos = event.position
    desc_pos = mirror.description_position
    del_pos = mirror.deletion_position
    last_pos = mirror.last_event_position
    updates: dict = {}

    if isinstance(event, TaskAdded):
        updates["owner"] = event.owner
        updates["blockchain_created_at"] = event.created_at
        updates["created_block"] = event.block_number
        if desc_pos is None or pos >= desc_pos:
            updates["description"] = event.description
            updates["description_block"], updates["description_log_index"] = pos

    elif isinstance(event, TaskCompleted):
        if not mirror.completed:
            updates["completed"] = True
            updates["blockchain_completed_at"] = event.completed_at

    elif isinstance(event, TaskUpdated):
        if desc_pos is None or pos >= desc_pos:
            updates["description"] = event.description
            updates["description_block"], updates["description_log_index"] = pos

    elif isinstance(event, TaskDeleted | TaskRestored):
        if del_pos is None or pos > del_pos:
            updates["deleted"] = isinstance(event, TaskDeleted)
            updates["deletion_block"], updates["deletion_log_index"] = pos

    elif isinstance(event, TaskSnapshot):
        updates["owner"] = event.owner
        updates["blockchain_created_at"] = event.created_at
        if event.completed:
            updates["completed"] = True
            updates["blockchain_completed_at"] = event.completed_at or mirror.blockchain_completed_at
        elif last_pos is None or pos >= last_pos:
            updates["completed"] = False
            updates["blockchain_completed_at"] = None
        if desc_pos is None or pos >= desc_pos:
            updates["description"] = event.description
            updates["description_block"], updates["description_log_index"] = pos
        if del_pos is None or pos > del_pos:
            updates["deleted"] = event.deleted
            updates["deletion_block"], updates["deletion_log_index"] = pos

    if not isinstance(event, TaskSnapshot) and (last_pos is None or pos >= last_pos):
        updates["transaction_hash"] = event.transaction_hash
        updates["last_event_block"], updates["last_event_log_index"] = pos

    merged = mirror.model_copy(update=updates)
    if merged.completed and merged.blockchain_completed_at is None:
        # 声明完成却没有完成时间时保持原状态
        merged = merged.model_copy(update={"completed": mirror.completed})
    return merged.model_copy(update={"sync_status": desired_status(merged)})


class Reconciler:
    """镜像对账器"""

    def __init__(
        self,
        stores: StoreGroup,
        registry: ChainRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        retry_ledger_size: int = 1000,
        lock_stripes: int = _DEFAULT_LOCK_STRIPES,
    ) -> None:
        """
        Args:
            stores: Store 实例组
            registry: 链连接注册表，迟到事件补齐快照时使用；None 表示不读链
            clock: 可注入时钟
            retry_ledger_size: 失败事件重试账本容量，满后丢弃最旧事件
            lock_stripes: 按 key 哈希分段的锁数量
        """
        self._stores = stores
        self._registry = registry
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks = [asyncio.Lock() for _ in range(lock_stripes)]
        self._retry_ledger: deque[TaskEventBase] = deque(maxlen=retry_ledger_size)

    @property
    def pending_retries(self) -> int:
        return len(self._retry_ledger)

    def _lock_for(self, chain_id: int, blockchain_id: str) -> asyncio.Lock:
        digest = zlib.crc32(f"{chain_id}:{blockchain_id}".encode())
        return self._locks[digest % len(self._locks)]

    async def apply(self, event: TaskEventBase | UnrecognizedEvent) -> ApplyResult:
        """应用一个事件，从不抛出异常"""
        if isinstance(event, UnrecognizedEvent):
            log.debug("event_skipped", chain_id=event.chain_id, topic=event.topic)
            return ApplyResult(outcome=ApplyOutcome.SKIPPED, chain_id=event.chain_id)

        async with self._lock_for(event.chain_id, event.blockchain_id):
            try:
                return await self._apply_locked(event)
            except Exception as e:
                return await self._record_failure(event, e)

    async def _apply_locked(self, event: TaskEventBase) -> ApplyResult:
        current = await self._stores.mirror_store.get_by_key(
            event.chain_id, event.blockchain_id, include_expired=True
        )
        if current is not None:
            return await self._update(current, event)
        return await self._insert(event)

    async def _insert(self, event: TaskEventBase, *, retry_on_race: bool = True) -> ApplyResult:
        base = await self._initial_mirror(event)
        mirror = self._stamp(merge_event(base, event))
        try:
            await save_mirror_with_event(self._stores, mirror, is_new=True, event=event)
        except DuplicateKeyError:
            # 与另一条写入路径的良性竞争：重新读取后按更新处理
            log.info(
                "mirror_insert_race",
                chain_id=event.chain_id,
                blockchain_id=event.blockchain_id,
            )
            current = await self._stores.mirror_store.get_by_key(
                event.chain_id, event.blockchain_id, include_expired=True
            )
            if current is None or not retry_on_race:
                raise
            return await self._update(current, event, retry_on_race=False)

        log.info(
            "mirror_created",
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            kind=event.kind.value,
            block_number=event.block_number,
            sync_status=mirror.sync_status.value,
        )
        return ApplyResult(
            outcome=ApplyOutcome.CREATED,
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            mirror=mirror,
        )

    async def _update(
        self,
        current: MirrorRecord,
        event: TaskEventBase,
        *,
        retry_on_race: bool = True,
    ) -> ApplyResult:
        merged = merge_event(current, event)
        if merged == current:
            log.debug(
                "mirror_unchanged",
                chain_id=event.chain_id,
                blockchain_id=event.blockchain_id,
                kind=event.kind.value,
            )
            return ApplyResult(
                outcome=ApplyOutcome.UNCHANGED,
                chain_id=event.chain_id,
                blockchain_id=event.blockchain_id,
                mirror=current,
            )

        mirror = self._stamp(merged)
        try:
            await save_mirror_with_event(self._stores, mirror, is_new=False, event=event)
        except MirrorVanishedError:
            # 读取之后行被过期清理删除：按新镜像重新合并
            if not retry_on_race:
                raise
            log.info(
                "mirror_vanished_reinserting",
                chain_id=event.chain_id,
                blockchain_id=event.blockchain_id,
                mirror_id=current.mirror_id,
            )
            return await self._insert(event, retry_on_race=False)
        log.info(
            "mirror_updated",
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            kind=event.kind.value,
            block_number=event.block_number,
        )
        return ApplyResult(
            outcome=ApplyOutcome.UPDATED,
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            mirror=mirror,
        )

    async def _initial_mirror(self, event: TaskEventBase) -> MirrorRecord:
        """新镜像的起点

        TaskAdded / 快照直接从空白镜像开始；其他事件先到达时读取链上快照补齐，
        读取失败则以事件自身数据建立 pending 占位镜像。
        """
        now = self._clock()
        blank = MirrorRecord(
            mirror_id=str(ULID()),
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            owner=event.owner,
            sync_status=SyncStatus.PENDING,
            last_synced_at=now,
            created_at=now,
            updated_at=now,
        )
        if isinstance(event, TaskAdded | TaskSnapshot) or self._registry is None:
            return blank

        try:
            snapshot = await self.read_snapshot(event.chain_id, event.blockchain_id)
        except MirrorError as e:
            log.warning(
                "late_event_snapshot_failed",
                chain_id=event.chain_id,
                blockchain_id=event.blockchain_id,
                kind=event.kind.value,
                error=str(e),
            )
            return blank
        log.info(
            "late_event_snapshot_loaded",
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            kind=event.kind.value,
            head_block=snapshot.block_number,
        )
        return merge_event(blank, snapshot)

    async def read_snapshot(self, chain_id: int, blockchain_id: str) -> TaskSnapshot:
        """在当前区块高度读取链上任务并转换为快照事件

        Raises:
            ChainConnectionError: 网络不可用
            NotFoundError: 链上不存在该任务
        """
        if self._registry is None:
            raise NotFoundError(f"no chain access for chain {chain_id}", on_chain=True)
        connection = self._registry.get(chain_id)
        head = await connection.get_block_number()
        state = await connection.get_task(blockchain_id, block_identifier=head)
        return state.to_snapshot(head)

    def _stamp(self, mirror: MirrorRecord) -> MirrorRecord:
        now = self._clock()
        return mirror.model_copy(update={"last_synced_at": now, "updated_at": now})

    async def _record_failure(self, event: TaskEventBase, exc: Exception) -> ApplyResult:
        error = ReconcileError(event.chain_id, event.blockchain_id, str(exc))
        log.error(
            "reconcile_failed",
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            kind=event.kind.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        self._retry_ledger.append(event)
        try:
            await set_mirror_status(
                self._stores,
                event.chain_id,
                event.blockchain_id,
                SyncStatus.ERROR,
                self._clock(),
            )
        except Exception as mark_error:
            log.warning(
                "mark_error_failed",
                chain_id=event.chain_id,
                blockchain_id=event.blockchain_id,
                error=str(mark_error),
            )
        return ApplyResult(
            outcome=ApplyOutcome.FAILED,
            chain_id=event.chain_id,
            blockchain_id=event.blockchain_id,
            error=str(error),
        )

    async def retry_failed(self) -> int:
        """重新应用重试账本中的事件，返回成功数量（仍失败的会重新入账）"""
        events = list(self._retry_ledger)
        self._retry_ledger.clear()
        succeeded = 0
        for event in events:
            result = await self.apply(event)
            if result.outcome != ApplyOutcome.FAILED:
                succeeded += 1
        if events:
            log.info("retry_ledger_replayed", total=len(events), succeeded=succeeded)
        return succeeded

    async def mark_verified(self, mirror: MirrorRecord) -> bool:
        """校验一致时只刷新 last_synced_at 与同步状态"""
        async with self._lock_for(mirror.chain_id, mirror.blockchain_id):
            return await set_mirror_status(
                self._stores,
                mirror.chain_id,
                mirror.blockchain_id,
                desired_status(mirror),
                self._clock(),
            )

    async def restore(self, mirror_id: str) -> MirrorRecord:
        """显式恢复已删除镜像

        清除 deleted 但保留 deletion 位置，重放的删除事件仍是无操作。

        Raises:
            NotFoundError: 镜像不存在
            ValueError: 镜像未被删除
            ReconcileError: 写入失败
        """
        mirror = await self._stores.mirror_store.get_mirror(mirror_id)
        if mirror is None:
            raise NotFoundError(f"todo {mirror_id} not found")

        async with self._lock_for(mirror.chain_id, mirror.blockchain_id):
            current = await self._stores.mirror_store.get_mirror(mirror_id, include_expired=True)
            if current is None:
                raise NotFoundError(f"todo {mirror_id} not found")
            if not current.deleted:
                raise ValueError("todo is not deleted")

            restored = self._stamp(current.model_copy(update={"deleted": False}))
            restored = restored.model_copy(update={"sync_status": desired_status(restored)})
            try:
                await save_mirror_with_event(self._stores, restored, is_new=False)
            except MirrorVanishedError as e:
                raise NotFoundError(f"todo {mirror_id} not found") from e
            except Exception as e:
                raise ReconcileError(current.chain_id, current.blockchain_id, str(e)) from e

        log.info(
            "mirror_restored",
            chain_id=restored.chain_id,
            blockchain_id=restored.blockchain_id,
            mirror_id=mirror_id,
        )
        return restored
