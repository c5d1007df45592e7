"""Verifier -- 按需校验镜像与链上状态

在当前区块高度读取 getTask()，比对 owner / description / completed /
completed_at / created_at / deleted。有差异时把快照交给 Reconciler 修正，
一致时只刷新 last_synced_at。
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from chainmirror.chain import ChainRegistry
from chainmirror.core.exceptions import NotFoundError, ReconcileError
from chainmirror.core.models import ApplyOutcome, ChainTaskState, MirrorRecord
from chainmirror.core.store import StoreGroup

from .reconciler import Reconciler

log = structlog.get_logger()

# 镜像字段 -> 链上字段
_COMPARED_FIELDS: dict[str, Callable[[ChainTaskState], object]] = {
    "owner": lambda task: task.owner,
    "description": lambda task: task.description,
    "completed": lambda task: task.completed,
    "blockchain_completed_at": lambda task: task.completed_at,
    "blockchain_created_at": lambda task: task.created_at,
    "deleted": lambda task: task.deleted,
}


class VerificationResult(BaseModel):
    """校验结果"""

    is_valid: bool = Field(description="校验前镜像是否与链上一致")
    diverged_fields: list[str] = Field(default_factory=list)
    mirror: MirrorRecord = Field(description="校验后的镜像")
    chain_task: ChainTaskState
    verified_at_block: int


def diff_fields(mirror: MirrorRecord, task: ChainTaskState) -> list[str]:
    """返回镜像与链上状态不一致的字段名"""
    diverged = []
    for field, chain_value in _COMPARED_FIELDS.items():
        mirror_value = getattr(mirror, field)
        expected = chain_value(task)
        if isinstance(mirror_value, datetime) and isinstance(expected, datetime):
            if int(mirror_value.timestamp()) != int(expected.timestamp()):
                diverged.append(field)
        elif mirror_value != expected:
            diverged.append(field)
    return diverged


class Verifier:
    """镜像校验器"""

    def __init__(
        self,
        stores: StoreGroup,
        registry: ChainRegistry,
        reconciler: Reconciler,
    ) -> None:
        self._stores = stores
        self._registry = registry
        self._reconciler = reconciler

    async def verify(self, mirror_id: str) -> VerificationResult:
        """校验单个镜像

        Raises:
            NotFoundError: 镜像不存在，或链上不存在该任务
            ChainConnectionError: 网络不可用或读取超时
            ReconcileError: 修正写入失败
        """
        mirror = await self._stores.mirror_store.get_mirror(mirror_id)
        if mirror is None:
            raise NotFoundError(f"todo {mirror_id} not found")
        return await self.verify_mirror(mirror)

    async def verify_mirror(self, mirror: MirrorRecord) -> VerificationResult:
        connection = self._registry.get(mirror.chain_id)
        head = await connection.get_block_number()
        task = await connection.get_task(mirror.blockchain_id, block_identifier=head)

        diverged = diff_fields(mirror, task)
        if not diverged:
            await self._reconciler.mark_verified(mirror)
            refreshed = await self._stores.mirror_store.get_mirror(mirror.mirror_id, include_expired=True)
            log.info(
                "mirror_verified",
                chain_id=mirror.chain_id,
                blockchain_id=mirror.blockchain_id,
                head_block=head,
            )
            return VerificationResult(
                is_valid=True,
                mirror=refreshed or mirror,
                chain_task=task,
                verified_at_block=head,
            )

        log.warning(
            "mirror_diverged",
            chain_id=mirror.chain_id,
            blockchain_id=mirror.blockchain_id,
            fields=diverged,
            head_block=head,
        )
        result = await self._reconciler.apply(task.to_snapshot(head))
        if result.outcome == ApplyOutcome.FAILED:
            raise ReconcileError(mirror.chain_id, mirror.blockchain_id, result.error or "")
        corrected = result.mirror or mirror
        if result.outcome == ApplyOutcome.UNCHANGED:
            # 节点高度落后于镜像已应用的事件，快照无法覆盖任何字段
            log.warning(
                "mirror_divergence_unresolved",
                chain_id=mirror.chain_id,
                blockchain_id=mirror.blockchain_id,
                fields=diverged,
                head_block=head,
                last_event_block=mirror.last_event_block,
            )
            await self._reconciler.mark_verified(mirror)
            corrected = (
                await self._stores.mirror_store.get_mirror(mirror.mirror_id, include_expired=True)
                or mirror
            )
        return VerificationResult(
            is_valid=False,
            diverged_fields=diverged,
            mirror=corrected,
            chain_task=task,
            verified_at_block=head,
        )
