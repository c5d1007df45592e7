"""LiveListener -- 单条链的实时事件监听

轮询区块高度 + eth_getLogs，只处理已获得足够确认数的区块
(safe = head - confirmations + 1)。解码后的事件投递到 worker 池。

连接失败时标记网络不健康，指数退避后 reconnect()（主备 RPC 轮换）；
游标只在整批投递后前移，恢复后从断点重新查询，重复事件由 Reconciler 幂等吸收。
"""

import asyncio

import structlog

from chainmirror.chain import ChainConnection, EventDecoder
from chainmirror.core.exceptions import ChainConnectionError, ChainQueryError, MirrorError

from .backfill import is_result_limit_error
from .config import SyncConfig
from .worker_pool import ReconcileWorkerPool

log = structlog.get_logger()


class LiveListener:
    """单链监听器，可独立 start / stop"""

    def __init__(
        self,
        connection: ChainConnection,
        decoder: EventDecoder,
        pool: ReconcileWorkerPool,
        config: SyncConfig,
        confirmations: int = 1,
        start_block: int | None = None,
    ) -> None:
        """
        Args:
            connection: 链连接
            decoder: 日志解码器
            pool: 对账 worker 池
            config: 轮询 / 退避参数
            confirmations: 区块确认数，至少为 1
            start_block: 起始区块；None 表示从启动时的安全高度之后开始
        """
        self._connection = connection
        self._decoder = decoder
        self._pool = pool
        self._config = config
        self._confirmations = max(confirmations, 1)
        self._batch_size = config.listener_batch_size
        self.cursor: int | None = start_block
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def chain_id(self) -> int:
        return self._connection.chain_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"listener-{self.chain_id}")
        log.info("listener_started", chain_id=self.chain_id, cursor=self.cursor)

    async def stop(self) -> None:
        """停止轮询；已投递到 worker 池的事件不受影响"""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.info("listener_stopped", chain_id=self.chain_id, cursor=self.cursor)

    async def poll_once(self) -> int:
        """处理当前所有已确认但未处理的区块，返回投递的事件数

        Raises:
            ChainConnectionError: 网络不可达
            ChainQueryError: RPC 业务错误
        """
        head = await self._connection.get_block_number()
        safe = head - self._confirmations + 1
        if self.cursor is None:
            self.cursor = safe + 1
            log.info("listener_cursor_initialized", chain_id=self.chain_id, cursor=self.cursor)

        submitted = 0
        while self.cursor <= safe and not self._stop_event.is_set():
            batch_to = min(self.cursor + self._batch_size - 1, safe)
            try:
                raw_logs = await self._connection.get_logs(self.cursor, batch_to)
            except ChainQueryError as e:
                if self._batch_size > 1 and is_result_limit_error(e):
                    self._batch_size = max(self._batch_size // 2, 1)
                    log.warning(
                        "listener_batch_reduced",
                        chain_id=self.chain_id,
                        batch_size=self._batch_size,
                    )
                    continue
                raise

            for event in self._decoder.decode_many(raw_logs, self.chain_id):
                await self._pool.submit(event)
                submitted += 1
            self.cursor = batch_to + 1

        self._connection.mark_healthy()
        return submitted

    async def _run(self) -> None:
        backoff = self._config.reconnect_base_delay_s
        while not self._stop_event.is_set():
            try:
                submitted = await self.poll_once()
                backoff = self._config.reconnect_base_delay_s
                if submitted:
                    log.debug(
                        "listener_poll_submitted",
                        chain_id=self.chain_id,
                        events=submitted,
                        cursor=self.cursor,
                    )
            except ChainConnectionError as e:
                self._connection.mark_unhealthy(str(e))
                log.warning(
                    "listener_connection_lost",
                    chain_id=self.chain_id,
                    error=str(e),
                    retry_in_s=backoff,
                )
                if await self._wait(backoff):
                    return
                backoff = min(backoff * 2, self._config.reconnect_max_delay_s)
                await self._reconnect()
                continue
            except ChainQueryError as e:
                log.error("listener_query_failed", chain_id=self.chain_id, error=str(e))

            if await self._wait(self._config.poll_interval_s):
                return

    async def _reconnect(self) -> None:
        try:
            await self._connection.reconnect()
            log.info("listener_reconnected", chain_id=self.chain_id)
        except MirrorError as e:
            log.warning("listener_reconnect_failed", chain_id=self.chain_id, error=str(e))

    async def _wait(self, seconds: float) -> bool:
        """可被 stop() 打断的等待，返回 True 表示已请求停止"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True
