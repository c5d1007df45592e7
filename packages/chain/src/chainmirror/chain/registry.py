"""ChainRegistry -- 多链连接注册表

initialize() 逐个网络建立连接，单个网络失败只标记为不可用，不中断其他网络。
retry_unavailable() 按指数退避重连初始化失败的网络，由巡检周期调用。
get() 对未知或不可用网络抛出 ChainConnectionError。
"""

import time
from collections.abc import Callable
from typing import Any

import structlog

from chainmirror.core.exceptions import ChainConnectionError, MirrorError

from .config import NetworkConfig
from .connection import ChainConnection

log = structlog.get_logger()

ConnectionFactory = Callable[[NetworkConfig], ChainConnection]


class ChainRegistry:
    """链连接注册表"""

    def __init__(
        self,
        configs: list[NetworkConfig],
        connection_factory: ConnectionFactory | None = None,
        timeout_s: float = 10.0,
        retry_base_delay_s: float = 5.0,
        retry_max_delay_s: float = 60.0,
    ) -> None:
        """
        Args:
            configs: 网络配置列表
            connection_factory: 连接构造函数（测试注入假连接）
            timeout_s: 链上读取超时（秒）
            retry_base_delay_s: 不可用网络首次重连等待（秒），之后逐次翻倍
            retry_max_delay_s: 重连等待上限（秒）
        """
        self._configs = {config.chain_id: config for config in configs}
        self._factory = connection_factory or (
            lambda config: ChainConnection(config, timeout_s=timeout_s)
        )
        self._connections: dict[int, ChainConnection] = {}
        self._failures: dict[int, str] = {}
        self._retry_base_delay_s = retry_base_delay_s
        self._retry_max_delay_s = retry_max_delay_s
        # chain_id -> (下次重连的 monotonic 时间, 当前退避)
        self._backoff: dict[int, tuple[float, float]] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """连接所有已配置网络，失败的网络记录后跳过"""
        for chain_id, config in self._configs.items():
            if chain_id in self._connections:
                continue
            try:
                await self._connect(config)
            except MirrorError as e:
                self._schedule_retry(chain_id, self._retry_base_delay_s)
                log.error(
                    "network_init_failed",
                    chain_id=chain_id,
                    network=config.name,
                    error=str(e),
                )

        self._initialized = True
        log.info(
            "chain_registry_initialized",
            available=sorted(self._connections),
            failed=sorted(self._failures),
        )

    async def retry_unavailable(self) -> list[int]:
        """重连退避已到期的不可用网络，返回本次恢复的 chain_id 列表"""
        if not self._initialized:
            return []
        recovered: list[int] = []
        now = time.monotonic()
        for chain_id, config in self._configs.items():
            if chain_id in self._connections:
                continue
            retry_at, delay = self._backoff.get(chain_id, (now, self._retry_base_delay_s))
            if now < retry_at:
                continue
            try:
                await self._connect(config)
            except MirrorError as e:
                next_delay = min(delay * 2, self._retry_max_delay_s)
                self._schedule_retry(chain_id, next_delay)
                log.warning(
                    "network_retry_failed",
                    chain_id=chain_id,
                    network=config.name,
                    error=str(e),
                    next_retry_s=next_delay,
                )
                continue
            recovered.append(chain_id)
            log.info("network_recovered", chain_id=chain_id, network=config.name)
        return recovered

    async def _connect(self, config: NetworkConfig) -> ChainConnection:
        """建立单个网络连接；失败时记录原因、关闭连接并重新抛出"""
        connection = self._factory(config)
        try:
            await connection.connect()
        except MirrorError as e:
            self._failures[config.chain_id] = str(e)
            await connection.close()
            raise
        self._connections[config.chain_id] = connection
        self._failures.pop(config.chain_id, None)
        self._backoff.pop(config.chain_id, None)
        return connection

    def _schedule_retry(self, chain_id: int, delay: float) -> None:
        self._backoff[chain_id] = (time.monotonic() + delay, delay)

    def get(self, chain_id: int) -> ChainConnection:
        """返回指定链的连接

        Raises:
            ChainConnectionError: 网络未配置或初始化失败
        """
        connection = self._connections.get(chain_id)
        if connection is not None:
            return connection
        if chain_id not in self._configs:
            raise ChainConnectionError(chain_id, "network not configured")
        reason = self._failures.get(chain_id, "network not initialized")
        raise ChainConnectionError(chain_id, f"network unavailable: {reason}")

    def config_for(self, chain_id: int) -> NetworkConfig | None:
        return self._configs.get(chain_id)

    def available_chain_ids(self) -> list[int]:
        return sorted(self._connections)

    def configured_chain_ids(self) -> list[int]:
        return sorted(self._configs)

    def network_info(self) -> list[dict[str, Any]]:
        """每条链的状态摘要（健康检查使用）"""
        info = []
        for chain_id, config in sorted(self._configs.items()):
            connection = self._connections.get(chain_id)
            if connection is None:
                status = "unavailable"
                error = self._failures.get(chain_id)
            elif connection.healthy:
                status = "connected"
                error = None
            else:
                status = "degraded"
                error = connection.last_error
            info.append(
                {
                    "name": config.name,
                    "chain_id": chain_id,
                    "status": status,
                    "contract_address": config.contract_address,
                    "confirmations": config.confirmations,
                    "error": error,
                }
            )
        return info

    async def cleanup(self) -> None:
        """关闭所有连接，可重复调用，部分初始化后也安全"""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            try:
                await connection.close()
            except Exception as e:
                log.warning(
                    "network_close_failed",
                    chain_id=connection.chain_id,
                    error=str(e),
                )
        self._backoff.clear()
        if connections:
            log.info("chain_registry_cleaned_up", closed=len(connections))
        self._initialized = False
