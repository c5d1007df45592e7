"""ChainConnection -- 单条链的 RPC + 合约绑定

封装 web3 AsyncWeb3 调用，所有读取都受超时约束，
并把底层异常统一翻译为 ChainConnectionError / ChainQueryError / NotFoundError。
主 RPC 失败后 reconnect() 在主备地址间轮换。
"""

import asyncio
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any, TypeVar

import aiohttp
import httpx
import structlog
from web3 import AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from chainmirror.core.exceptions import (
    ChainConnectionError,
    ChainQueryError,
    ChainTimeoutError,
    MirrorError,
    NotFoundError,
)
from chainmirror.core.models import ChainTaskState

from .abi import ALL_EVENT_TOPICS, TODO_LIST_ABI, task_id_topic
from .config import NetworkConfig

log = structlog.get_logger()

T = TypeVar("T")

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常类型集合（触发退避重连）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    aiohttp.ClientError,
    httpx.TransportError,
)


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误（RPC 不可达）"""
    if isinstance(e, _CONNECTION_ERROR_TYPES):
        return True
    # web3 持久连接 provider 抛出的连接错误
    error_name = type(e).__name__
    return error_name in ("ProviderConnectionError", "CannotHandleRequest")


def _timestamp(value: int) -> datetime | None:
    return datetime.fromtimestamp(value, tz=UTC) if value else None


class ChainConnection:
    """单条链的只读连接"""

    def __init__(self, config: NetworkConfig, timeout_s: float = 10.0) -> None:
        """
        Args:
            config: 网络配置
            timeout_s: 每次链上读取的超时（秒）
        """
        self.config = config
        self.chain_id = config.chain_id
        self.healthy = False
        self.last_error: str | None = None
        self._timeout_s = timeout_s
        self._urls = [config.rpc_url]
        if config.rpc_backup_url:
            self._urls.append(config.rpc_backup_url)
        self._url_index = 0
        self._w3: AsyncWeb3 | None = None
        self._contract = None

    @property
    def rpc_url(self) -> str:
        return self._urls[self._url_index]

    async def connect(self) -> None:
        """建立连接并校验 RPC 报告的 chain id

        Raises:
            ChainConnectionError: RPC 不可达或 chain id 不匹配
        """
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": self._timeout_s},
            )
        )
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(self.config.contract_address),
            abi=TODO_LIST_ABI,
        )
        reported = await self._call("eth_chainId", self._w3.eth.chain_id)
        if reported != self.chain_id:
            self.mark_unhealthy("chain id mismatch")
            raise ChainConnectionError(
                self.chain_id,
                f"RPC {self.rpc_url} reports chain id {reported}",
            )
        self.healthy = True
        self.last_error = None
        log.info("chain_connected", chain_id=self.chain_id, network=self.config.name)

    async def get_block_number(self) -> int:
        """当前区块高度"""
        return await self._call("eth_blockNumber", self._require_w3().eth.block_number)

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        blockchain_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """查询合约在闭区间 [from_block, to_block] 内的任务事件日志

        Args:
            blockchain_id: 只查询单个任务（taskId 为第一个 indexed 参数）
        """
        topics: list[Any] = [ALL_EVENT_TOPICS]
        if blockchain_id is not None:
            topics.append(task_id_topic(blockchain_id))
        logs = await self._call(
            "eth_getLogs",
            self._require_w3().eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": Web3.to_checksum_address(self.config.contract_address),
                    "topics": topics,
                }
            ),
        )
        return [dict(entry) for entry in logs]

    async def get_task(
        self,
        blockchain_id: str,
        block_identifier: int | str = "latest",
    ) -> ChainTaskState:
        """读取链上任务当前状态

        Raises:
            NotFoundError: 链上不存在该任务
        """
        self._require_w3()
        try:
            raw = await self._call(
                "getTask",
                self._contract.functions.getTask(int(blockchain_id)).call(
                    block_identifier=block_identifier
                ),
            )
        except ChainQueryError as e:
            if isinstance(e.__cause__, ContractLogicError):
                raise NotFoundError(
                    f"task {blockchain_id} not found on chain {self.chain_id}",
                    on_chain=True,
                ) from e
            raise

        _id, owner, description, completed, created_at, completed_at, deleted, _deleted_at = raw
        if int(owner, 16) == 0 or not created_at:
            raise NotFoundError(
                f"task {blockchain_id} not found on chain {self.chain_id}",
                on_chain=True,
            )
        return ChainTaskState(
            chain_id=self.chain_id,
            blockchain_id=str(blockchain_id),
            owner=owner,
            description=description,
            completed=completed,
            created_at=_timestamp(created_at),
            completed_at=_timestamp(completed_at) if completed else None,
            deleted=deleted,
            deleted_at=_timestamp(_deleted_at),
        )

    async def health_check(self) -> bool:
        """检查当前 RPC 可达性

        发送 eth_blockNumber JSON-RPC 请求。

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []}
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.post(
                    self.rpc_url, json=payload, timeout=HEALTH_CHECK_TIMEOUT_S
                )
                return resp.status_code == 200 and "result" in resp.json()
        except Exception as e:
            log.warning(
                "rpc_health_check_failed",
                chain_id=self.chain_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def reconnect(self) -> None:
        """关闭旧连接，切换到下一个 RPC 地址后重新连接"""
        await self.close()
        self._url_index = (self._url_index + 1) % len(self._urls)
        log.info(
            "chain_reconnecting",
            chain_id=self.chain_id,
            rpc_index=self._url_index,
        )
        await self.connect()

    def mark_healthy(self) -> None:
        self.healthy = True
        self.last_error = None

    def mark_unhealthy(self, reason: str) -> None:
        self.healthy = False
        self.last_error = reason

    async def close(self) -> None:
        """关闭 provider 会话，可重复调用"""
        if self._w3 is None:
            return
        w3, self._w3 = self._w3, None
        self._contract = None
        self.healthy = False
        try:
            await w3.provider.disconnect()
        except Exception as e:
            log.warning("chain_disconnect_failed", chain_id=self.chain_id, error=str(e))

    def _require_w3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise ChainConnectionError(self.chain_id, "not connected")
        return self._w3

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """带超时执行一次链上读取，并翻译异常"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout_s)
        except MirrorError:
            raise
        except TimeoutError as e:
            self.mark_unhealthy(f"{operation} timed out")
            raise ChainTimeoutError(
                self.chain_id,
                f"{operation} timed out after {self._timeout_s}s",
                original_error=e,
            ) from e
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise ChainQueryError(self.chain_id, f"{operation} failed: {e}") from e
        except Exception as e:
            if _is_connection_error(e):
                self.mark_unhealthy(str(e))
                raise ChainConnectionError(
                    self.chain_id,
                    f"{operation} failed: {e}",
                    original_error=e,
                ) from e
            raise ChainQueryError(self.chain_id, f"{operation} failed: {e}") from e
