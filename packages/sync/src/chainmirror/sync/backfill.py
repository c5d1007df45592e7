"""BackfillJob -- 历史区块区间回填

闭区间 [from_block, to_block] 分批查询日志，RPC 报告结果过多时批大小减半；
每批日志按 (block_number, log_index) 排序后依次交给 Reconciler。
重复运行安全：所有写入都是幂等合并。
"""

import structlog
from pydantic import BaseModel, Field

from chainmirror.chain import ChainRegistry, EventDecoder
from chainmirror.core.exceptions import ChainQueryError, DecodeError
from chainmirror.core.models import ApplyOutcome, UnrecognizedEvent

from .reconciler import Reconciler

log = structlog.get_logger()


def is_result_limit_error(e: ChainQueryError) -> bool:
    """RPC 因返回结果过多拒绝 eth_getLogs"""
    message = str(e).lower()
    return "more than" in message or "too many" in message


class BackfillReport(BaseModel):
    """回填结果统计"""

    chain_id: int
    from_block: int
    to_block: int
    logs_seen: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    decode_errors: int = 0
    batches: int = 0
    final_batch_size: int = Field(default=0, description="结束时的批大小（减半后）")


class BackfillJob:
    """区间回填任务"""

    def __init__(
        self,
        registry: ChainRegistry,
        decoder: EventDecoder,
        reconciler: Reconciler,
        batch_size: int = 2000,
    ) -> None:
        self._registry = registry
        self._decoder = decoder
        self._reconciler = reconciler
        self._batch_size = batch_size

    async def run(
        self,
        chain_id: int,
        from_block: int,
        to_block: int | None = None,
        blockchain_id: str | None = None,
    ) -> BackfillReport:
        """回填指定区间

        Args:
            chain_id: 链 ID
            from_block: 起始区块（含）
            to_block: 结束区块（含），默认等于 from_block
            blockchain_id: 只回填单个任务的事件

        Raises:
            ValueError: 区间非法
            ChainConnectionError: 网络不可用
            ChainQueryError: 批大小已减到 1 仍失败，或其他 RPC 错误
        """
        if to_block is None:
            to_block = from_block
        if from_block < 0 or to_block < from_block:
            raise ValueError(f"invalid block range {from_block}..{to_block}")

        connection = self._registry.get(chain_id)
        report = BackfillReport(chain_id=chain_id, from_block=from_block, to_block=to_block)
        log.info(
            "backfill_started",
            chain_id=chain_id,
            from_block=from_block,
            to_block=to_block,
            blockchain_id=blockchain_id,
        )

        batch_size = self._batch_size
        current = from_block
        while current <= to_block:
            batch_to = min(current + batch_size - 1, to_block)
            try:
                raw_logs = await connection.get_logs(current, batch_to, blockchain_id=blockchain_id)
            except ChainQueryError as e:
                if batch_size > 1 and is_result_limit_error(e):
                    batch_size = max(batch_size // 2, 1)
                    log.warning(
                        "backfill_batch_reduced",
                        chain_id=chain_id,
                        from_block=current,
                        to_block=batch_to,
                        batch_size=batch_size,
                    )
                    continue
                raise

            report.batches += 1
            report.logs_seen += len(raw_logs)
            await self._apply_logs(raw_logs, chain_id, report)
            current = batch_to + 1

        report.final_batch_size = batch_size
        log.info("backfill_completed", **report.model_dump())
        return report

    async def _apply_logs(self, raw_logs: list[dict], chain_id: int, report: BackfillReport) -> None:
        events = []
        for raw_log in raw_logs:
            try:
                events.append(self._decoder.decode(raw_log, chain_id))
            except DecodeError as e:
                report.decode_errors += 1
                log.warning(
                    "log_decode_failed",
                    chain_id=chain_id,
                    block_number=raw_log.get("blockNumber"),
                    error=str(e),
                )
        events.sort(key=lambda event: event.position)

        for event in events:
            if isinstance(event, UnrecognizedEvent):
                report.skipped += 1
                continue
            result = await self._reconciler.apply(event)
            match result.outcome:
                case ApplyOutcome.CREATED:
                    report.created += 1
                case ApplyOutcome.UPDATED:
                    report.updated += 1
                case ApplyOutcome.UNCHANGED:
                    report.unchanged += 1
                case ApplyOutcome.SKIPPED:
                    report.skipped += 1
                case ApplyOutcome.FAILED:
                    report.failed += 1
