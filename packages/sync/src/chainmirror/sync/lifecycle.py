"""LifecycleManager -- 同步引擎启动 / 关闭编排

start:    registry 初始化 -> worker 池 -> 每个可用网络一个监听器 -> 巡检 -> ready
          巡检重连成功的网络随后补上监听器
shutdown: 巡检 -> 监听器 -> worker 池排空并停止 -> registry 清理
shutdown 可重复调用，部分启动后调用也安全。
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from chainmirror.chain import ChainRegistry, EventDecoder
from chainmirror.core.store import StoreGroup

from .backfill import BackfillJob
from .config import SyncConfig
from .listener import LiveListener
from .monitor import SyncMonitor
from .reconciler import Reconciler
from .service import SyncService
from .verifier import Verifier
from .worker_pool import ReconcileWorkerPool

log = structlog.get_logger()


class LifecycleManager:
    """组装并管理同步引擎的全部组件"""

    def __init__(
        self,
        stores: StoreGroup,
        registry: ChainRegistry,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or SyncConfig()
        self.stores = stores
        self.registry = registry
        self.decoder = EventDecoder()
        self.reconciler = Reconciler(
            stores,
            registry,
            clock=clock,
            retry_ledger_size=self.config.retry_ledger_size,
        )
        self.pool = ReconcileWorkerPool(
            self.reconciler,
            worker_count=self.config.worker_count,
            queue_maxsize=self.config.queue_maxsize,
        )
        self.verifier = Verifier(stores, registry, self.reconciler)
        self.backfill = BackfillJob(
            registry,
            self.decoder,
            self.reconciler,
            batch_size=self.config.backfill_batch_size,
        )
        self.monitor = SyncMonitor(
            stores,
            registry,
            self.reconciler,
            self.verifier,
            interval_s=self.config.monitor_interval_s,
            on_network_recovered=self._on_network_recovered,
        )
        self.service = SyncService(
            stores, registry, self.reconciler, self.verifier, self.backfill
        )
        self.listeners: dict[int, LiveListener] = {}
        self.ready = asyncio.Event()
        self._listening = False

    async def start(self, listen: bool = True) -> None:
        """启动同步引擎

        Args:
            listen: 是否为可用网络启动实时监听（CLI 的一次性命令传 False）
        """
        try:
            await self.registry.initialize()
            self.pool.start()
            self._listening = listen
            if listen:
                for chain_id in self.registry.available_chain_ids():
                    self.start_listener(chain_id)
                self.monitor.start()
        except Exception:
            log.error("sync_engine_start_failed", exc_info=True)
            await self.shutdown()
            raise

        self.ready.set()
        log.info(
            "sync_engine_started",
            networks=self.registry.available_chain_ids(),
            listeners=sorted(self.listeners),
        )

    def start_listener(self, chain_id: int) -> LiveListener:
        """为单个网络启动监听器"""
        listener = self.listeners.get(chain_id)
        if listener is None:
            network = self.registry.config_for(chain_id)
            listener = LiveListener(
                self.registry.get(chain_id),
                self.decoder,
                self.pool,
                self.config,
                confirmations=network.confirmations if network else 1,
                start_block=network.start_block if network and network.start_block else None,
            )
            self.listeners[chain_id] = listener
        listener.start()
        return listener

    def _on_network_recovered(self, chain_id: int) -> None:
        if self._listening:
            self.start_listener(chain_id)

    async def stop_listener(self, chain_id: int) -> None:
        """停止单个网络的监听器，不影响其他网络和已入队事件"""
        listener = self.listeners.pop(chain_id, None)
        if listener is not None:
            await listener.stop()

    async def shutdown(self) -> None:
        """关闭同步引擎，可重复调用"""
        self.ready.clear()
        self._listening = False

        try:
            await self.monitor.stop()
        except Exception as e:
            log.warning("monitor_stop_failed", error=str(e))

        for chain_id in list(self.listeners):
            try:
                await self.stop_listener(chain_id)
            except Exception as e:
                log.warning("listener_stop_failed", chain_id=chain_id, error=str(e))

        try:
            await self.pool.stop(drain=True)
        except Exception as e:
            log.warning("worker_pool_stop_failed", error=str(e))

        await self.registry.cleanup()
        log.info("sync_engine_shutdown")
