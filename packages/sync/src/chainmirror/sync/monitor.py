"""SyncMonitor -- 周期巡检

每轮：重连不可用网络 -> 清理过期 error 镜像 -> 重放重试账本 -> 重新校验 pending / error 镜像。
单项失败只记录日志，不中断巡检。
"""

import asyncio
from collections.abc import Callable

import structlog
from pydantic import BaseModel

from chainmirror.chain import ChainRegistry
from chainmirror.core.exceptions import MirrorError
from chainmirror.core.models import SyncStatus
from chainmirror.core.store import StoreGroup, purge_expired_errors

from .reconciler import Reconciler
from .verifier import Verifier

log = structlog.get_logger()


class MonitorReport(BaseModel):
    """单轮巡检统计"""

    recovered: int = 0
    purged: int = 0
    retried: int = 0
    verified: int = 0
    corrected: int = 0
    verify_failed: int = 0


class SyncMonitor:
    """同步巡检器"""

    def __init__(
        self,
        stores: StoreGroup,
        registry: ChainRegistry,
        reconciler: Reconciler,
        verifier: Verifier,
        interval_s: float = 30.0,
        verify_batch_size: int = 50,
        on_network_recovered: Callable[[int], object] | None = None,
    ) -> None:
        """
        Args:
            on_network_recovered: 网络重连成功后的回调（启动该网络的监听器）
        """
        self._stores = stores
        self._registry = registry
        self._reconciler = reconciler
        self._verifier = verifier
        self._interval_s = interval_s
        self._verify_batch_size = verify_batch_size
        self._on_network_recovered = on_network_recovered
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.last_report: MonitorReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="sync-monitor")
        log.info("sync_monitor_started", interval_s=self._interval_s)

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.info("sync_monitor_stopped")

    async def run_once(self) -> MonitorReport:
        """执行一轮巡检"""
        report = MonitorReport()

        recovered = await self._registry.retry_unavailable()
        report.recovered = len(recovered)
        if self._on_network_recovered is not None:
            for chain_id in recovered:
                try:
                    self._on_network_recovered(chain_id)
                except Exception as e:
                    log.error("network_recovery_hook_failed", chain_id=chain_id, error=str(e))

        try:
            report.purged = await purge_expired_errors(
                self._stores, self._stores.mirror_store.error_cutoff()
            )
        except Exception as e:
            log.error("error_purge_failed", error=str(e), error_type=type(e).__name__)

        report.retried = await self._reconciler.retry_failed()

        available = set(self._registry.available_chain_ids())
        candidates = await self._stores.mirror_store.list_by_status(
            [SyncStatus.PENDING, SyncStatus.ERROR],
            limit=self._verify_batch_size,
        )
        for mirror in candidates:
            if mirror.chain_id not in available:
                continue
            try:
                result = await self._verifier.verify_mirror(mirror)
            except MirrorError as e:
                report.verify_failed += 1
                log.warning(
                    "monitor_verify_failed",
                    chain_id=mirror.chain_id,
                    blockchain_id=mirror.blockchain_id,
                    error=str(e),
                )
                continue
            report.verified += 1
            if not result.is_valid:
                report.corrected += 1

        if report.recovered or report.purged or report.retried or report.verified or report.verify_failed:
            log.info("sync_monitor_cycle", **report.model_dump())
        self.last_report = report
        return report

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_s)
                return
            except TimeoutError:
                pass
            try:
                await self.run_once()
            except Exception as e:
                log.error("sync_monitor_cycle_failed", error=str(e), error_type=type(e).__name__)
