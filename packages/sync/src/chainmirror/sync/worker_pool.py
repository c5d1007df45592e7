"""ReconcileWorkerPool -- 按 key 分区的对账 worker

每个 worker 持有一个有界 asyncio.Queue，事件按
crc32("chain_id:blockchain_id") % worker_count 分区，
同一 key 永远由同一个 worker 顺序处理。队列满时 submit() 阻塞（背压）。
"""

import asyncio
import zlib

import structlog

from chainmirror.core.models import TaskEventBase, UnrecognizedEvent

from .reconciler import Reconciler

log = structlog.get_logger()


class ReconcileWorkerPool:
    """对账 worker 池"""

    def __init__(
        self,
        reconciler: Reconciler,
        worker_count: int = 4,
        queue_maxsize: int = 1000,
    ) -> None:
        self._reconciler = reconciler
        self._worker_count = worker_count
        self._queue_maxsize = queue_maxsize
        self._queues: list[asyncio.Queue] = []
        self._workers: list[asyncio.Task] = []
        self.processed = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def partition_for(self, chain_id: int, blockchain_id: str) -> int:
        digest = zlib.crc32(f"{chain_id}:{blockchain_id}".encode())
        return digest % self._worker_count

    def start(self) -> None:
        """启动所有 worker，重复调用无副作用"""
        if self._workers:
            return
        self._queues = [
            asyncio.Queue(maxsize=self._queue_maxsize) for _ in range(self._worker_count)
        ]
        self._workers = [
            asyncio.create_task(self._run(index, queue), name=f"reconcile-worker-{index}")
            for index, queue in enumerate(self._queues)
        ]
        log.info("worker_pool_started", worker_count=self._worker_count)

    async def submit(self, event: TaskEventBase | UnrecognizedEvent) -> None:
        """把事件投递到所属分区的队列

        Raises:
            RuntimeError: worker 池未启动
        """
        if isinstance(event, UnrecognizedEvent):
            return
        if not self._workers:
            raise RuntimeError("worker pool is not running")
        queue = self._queues[self.partition_for(event.chain_id, event.blockchain_id)]
        await queue.put(event)

    async def drain(self) -> None:
        """等待所有已投递事件处理完毕"""
        for queue in self._queues:
            await queue.join()

    async def stop(self, drain: bool = True) -> None:
        """停止 worker；drain=True 时先处理完队列中的事件"""
        if not self._workers:
            return
        if drain:
            await self.drain()
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        log.info("worker_pool_stopped", processed=self.processed)

    async def _run(self, index: int, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                # apply() 不抛异常，失败已进入重试账本
                await self._reconciler.apply(event)
                self.processed += 1
            finally:
                queue.task_done()
