"""SyncService -- 同步引擎对外边界

入站触发（同步 / 恢复 / 校验 / 回填）与查询接口，HTTP 层和 CLI 都只调用这里。
"""

import structlog

from chainmirror.chain import ChainRegistry
from chainmirror.core.exceptions import MirrorError, NotFoundError, ReconcileError
from chainmirror.core.models import (
    ApplyOutcome,
    JournalEntry,
    MirrorRecord,
    OwnerStats,
    normalize_address,
)
from chainmirror.core.store import StoreGroup, purge_expired_errors

from .backfill import BackfillJob, BackfillReport
from .reconciler import Reconciler
from .verifier import VerificationResult, Verifier

log = structlog.get_logger()


class SyncService:
    """同步引擎业务服务"""

    def __init__(
        self,
        stores: StoreGroup,
        registry: ChainRegistry,
        reconciler: Reconciler,
        verifier: Verifier,
        backfill_job: BackfillJob,
    ) -> None:
        self._stores = stores
        self._registry = registry
        self._reconciler = reconciler
        self._verifier = verifier
        self._backfill = backfill_job

    # ---- 入站触发 ----

    async def sync_todo_from_blockchain(self, chain_id: int, blockchain_id: str) -> MirrorRecord:
        """读取链上当前状态并写入镜像

        Raises:
            ChainConnectionError: 网络不可用
            NotFoundError: 链上不存在该任务
            ReconcileError: 写入失败
        """
        snapshot = await self._reconciler.read_snapshot(chain_id, blockchain_id)
        result = await self._reconciler.apply(snapshot)
        if result.outcome == ApplyOutcome.FAILED or result.mirror is None:
            raise ReconcileError(chain_id, blockchain_id, result.error or "apply failed")
        log.info(
            "todo_synced_from_chain",
            chain_id=chain_id,
            blockchain_id=blockchain_id,
            outcome=result.outcome.value,
        )
        return result.mirror

    async def restore_todo(self, mirror_id: str) -> MirrorRecord:
        """恢复已删除的任务，随后重新回填其创建区块

        Raises:
            NotFoundError: 任务不存在
            ValueError: 任务未被删除
        """
        restored = await self._reconciler.restore(mirror_id)

        try:
            if restored.created_block is not None:
                await self._backfill.run(
                    restored.chain_id,
                    restored.created_block,
                    restored.created_block,
                    blockchain_id=restored.blockchain_id,
                )
            else:
                await self.sync_todo_from_blockchain(restored.chain_id, restored.blockchain_id)
        except MirrorError as e:
            # 恢复本身已落库，补齐失败留给巡检
            log.warning(
                "restore_resync_failed",
                chain_id=restored.chain_id,
                blockchain_id=restored.blockchain_id,
                error=str(e),
            )

        mirror = await self._stores.mirror_store.get_mirror(mirror_id, include_expired=True)
        return mirror or restored

    async def verify_todo(self, mirror_id: str) -> VerificationResult:
        """校验单个任务与链上状态"""
        return await self._verifier.verify(mirror_id)

    async def backfill(
        self,
        chain_id: int,
        from_block: int,
        to_block: int | None = None,
    ) -> BackfillReport:
        """回填区块区间（运维入口）"""
        return await self._backfill.run(chain_id, from_block, to_block)

    async def purge_errors(self) -> int:
        """立即清理过期 error 镜像"""
        purged = await purge_expired_errors(self._stores, self._stores.mirror_store.error_cutoff())
        log.info("expired_errors_purged", purged=purged)
        return purged

    # ---- 查询 ----

    async def find_by_owner(
        self,
        address: str,
        include_completed: bool = True,
        include_deleted: bool = False,
    ) -> list[MirrorRecord]:
        """查询地址名下的任务，按链上创建时间倒序

        Raises:
            ValueError: 地址格式非法
        """
        return await self._stores.mirror_store.find_by_owner(
            normalize_address(address),
            include_completed=include_completed,
            include_deleted=include_deleted,
        )

    async def find_by_blockchain_id(self, chain_id: int, blockchain_id: str) -> MirrorRecord | None:
        return await self._stores.mirror_store.get_by_key(chain_id, blockchain_id)

    async def count_by_owner(self, address: str) -> int:
        return await self._stores.mirror_store.count_by_owner(normalize_address(address))

    async def owner_stats(self, address: str) -> OwnerStats:
        return await self._stores.mirror_store.owner_stats(normalize_address(address))

    async def get_todo(self, mirror_id: str) -> tuple[MirrorRecord, list[JournalEntry]]:
        """查询任务详情及其已应用的链上事件

        Raises:
            NotFoundError: 任务不存在
        """
        mirror = await self._stores.mirror_store.get_mirror(mirror_id)
        if mirror is None:
            raise NotFoundError(f"todo {mirror_id} not found")
        events = await self._stores.event_store.get_events_for_key(
            mirror.chain_id, mirror.blockchain_id
        )
        return mirror, events

    def network_info(self) -> list[dict]:
        return self._registry.network_info()
