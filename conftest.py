"""全局 pytest 配置 -- 临时 SQLite、可控时钟、内存假链与原始日志构造器

测试通过 fixture 获取这些工具，不直接 import 本模块。
"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from chainmirror.chain import ChainRegistry, EventDecoder, NetworkConfig
from chainmirror.chain.abi import (
    TASK_COMPLETED_ABI,
    TASK_CREATED_ABI,
    TASK_DELETED_ABI,
    TASK_RESTORED_ABI,
    TASK_UPDATED_ABI,
    event_topic,
    task_id_topic,
)
from chainmirror.core.exceptions import ChainConnectionError, ChainQueryError, NotFoundError
from chainmirror.core.models import ChainTaskState
from chainmirror.core.store import StoreGroup, create_store_group
from chainmirror.sync import Reconciler
from eth_abi import encode

CHAIN_ID = 31337
OWNER = "0xABCDEF0123456789ABCDEF0123456789ABCDEF01"
OTHER_OWNER = "0x1111111111111111111111111111111111111111"
CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
GENESIS_TIMESTAMP = 1_700_000_000

_EVENT_ABIS = {
    abi["name"]: abi
    for abi in (
        TASK_CREATED_ABI,
        TASK_UPDATED_ABI,
        TASK_COMPLETED_ABI,
        TASK_DELETED_ABI,
        TASK_RESTORED_ABI,
    )
}


def block_timestamp(block_number: int) -> int:
    """假链的出块时间：每 12 秒一个块"""
    return GENESIS_TIMESTAMP + block_number * 12


def make_log(
    name: str,
    blockchain_id: str | int,
    *,
    owner: str = OWNER,
    description: str = "",
    timestamp: int | None = None,
    block_number: int = 1,
    log_index: int = 0,
    transaction_hash: str | None = None,
    address: str = CONTRACT_ADDRESS,
) -> dict:
    """构造 JSON-RPC 形态的合约日志（topics / data 为十六进制字符串）"""
    abi = _EVENT_ABIS[name]
    if timestamp is None:
        timestamp = block_timestamp(block_number)
    if name in ("TaskCreated", "TaskUpdated"):
        data = encode(["string", "uint256"], [description, timestamp])
    else:
        data = encode(["uint256"], [timestamp])
    if transaction_hash is None:
        transaction_hash = "0x" + f"{block_number:032x}{log_index:032x}"
    return {
        "address": address,
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionIndex": 0,
        "transactionHash": transaction_hash,
        "blockHash": "0x" + f"{block_number:064x}",
        "topics": [
            "0x" + bytes(event_topic(abi)).hex(),
            task_id_topic(blockchain_id),
            "0x" + "00" * 12 + owner[2:].lower(),
        ],
        "data": "0x" + data.hex(),
    }


class FakeClock:
    """可手动推进的 UTC 时钟"""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeChain:
    """内存中的 TodoList 合约：按合约语义维护任务状态并记录日志

    故障注入：
        down: 所有读取抛出 ChainConnectionError
        max_logs_per_query: 单次 get_logs 结果超过该值时抛出 ChainQueryError
        get_logs_errors: 依次弹出并抛出的异常
        fail_connect: connect() 失败
    """

    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        self.chain_id = chain_id
        self.head = 0
        self.logs: list[dict] = []
        self.tasks: dict[str, ChainTaskState] = {}
        self.down = False
        self.fail_connect = False
        self.max_logs_per_query: int | None = None
        self.get_logs_errors: list[Exception] = []
        self.get_logs_calls: list[tuple[int, int]] = []
        self.get_task_calls = 0
        self._next_id = 1

    def check(self) -> None:
        if self.down:
            raise ChainConnectionError(self.chain_id, "connection refused")

    def mine(self, blocks: int = 1) -> int:
        self.head += blocks
        return self.head

    def emit(
        self,
        name: str,
        blockchain_id: str | int,
        *,
        owner: str = OWNER,
        description: str = "",
        block_number: int | None = None,
    ) -> dict:
        """产生一条事件日志并更新合约状态；默认每条日志单独出一个块"""
        block_number = self.mine() if block_number is None else block_number
        self.head = max(self.head, block_number)
        log_index = sum(1 for entry in self.logs if entry["blockNumber"] == block_number)
        raw_log = make_log(
            name,
            blockchain_id,
            owner=owner,
            description=description,
            block_number=block_number,
            log_index=log_index,
        )
        self.logs.append(raw_log)
        self._apply(name, str(blockchain_id), owner, description, block_timestamp(block_number))
        return raw_log

    def create(self, description: str, owner: str = OWNER, **kwargs) -> tuple[str, dict]:
        """创建任务，返回 (blockchain_id, 日志)"""
        blockchain_id = str(self._next_id)
        self._next_id += 1
        raw_log = self.emit(
            "TaskCreated", blockchain_id, owner=owner, description=description, **kwargs
        )
        return blockchain_id, raw_log

    def update(self, blockchain_id: str, description: str, **kwargs) -> dict:
        owner = self.tasks[blockchain_id].owner
        return self.emit(
            "TaskUpdated", blockchain_id, owner=owner, description=description, **kwargs
        )

    def complete(self, blockchain_id: str, **kwargs) -> dict:
        return self.emit("TaskCompleted", blockchain_id, owner=self.tasks[blockchain_id].owner, **kwargs)

    def delete(self, blockchain_id: str, **kwargs) -> dict:
        return self.emit("TaskDeleted", blockchain_id, owner=self.tasks[blockchain_id].owner, **kwargs)

    def restore(self, blockchain_id: str, **kwargs) -> dict:
        return self.emit("TaskRestored", blockchain_id, owner=self.tasks[blockchain_id].owner, **kwargs)

    def _apply(self, name: str, blockchain_id: str, owner: str, description: str, ts: int) -> None:
        at = datetime.fromtimestamp(ts, tz=UTC)
        if name == "TaskCreated":
            self.tasks[blockchain_id] = ChainTaskState(
                chain_id=self.chain_id,
                blockchain_id=blockchain_id,
                owner=owner,
                description=description,
                completed=False,
                created_at=at,
            )
            return
        task = self.tasks[blockchain_id]
        if name == "TaskUpdated":
            update = {"description": description}
        elif name == "TaskCompleted":
            update = {"completed": True, "completed_at": at}
        elif name == "TaskDeleted":
            update = {"deleted": True, "deleted_at": at}
        else:
            update = {"deleted": False, "deleted_at": None}
        self.tasks[blockchain_id] = task.model_copy(update=update)


class FakeChainConnection:
    """与 ChainConnection 接口一致的假连接，读取 FakeChain"""

    def __init__(self, config: NetworkConfig, chain: FakeChain) -> None:
        self.config = config
        self.chain_id = config.chain_id
        self.chain = chain
        self.healthy = False
        self.last_error: str | None = None
        self.connect_calls = 0
        self.reconnect_calls = 0
        self.closed = False

    @property
    def rpc_url(self) -> str:
        return self.config.rpc_url

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.chain.fail_connect or self.chain.down:
            self.mark_unhealthy("connection refused")
            raise ChainConnectionError(self.chain_id, "connection refused")
        self.closed = False
        self.mark_healthy()

    async def get_block_number(self) -> int:
        self.chain.check()
        return self.chain.head

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        blockchain_id: str | None = None,
    ) -> list[dict]:
        self.chain.check()
        self.chain.get_logs_calls.append((from_block, to_block))
        if self.chain.get_logs_errors:
            raise self.chain.get_logs_errors.pop(0)
        wanted = task_id_topic(blockchain_id) if blockchain_id is not None else None
        logs = [
            dict(entry)
            for entry in self.chain.logs
            if from_block <= entry["blockNumber"] <= to_block
            and (wanted is None or entry["topics"][1] == wanted)
        ]
        limit = self.chain.max_logs_per_query
        if limit is not None and len(logs) > limit:
            raise ChainQueryError(
                self.chain_id, f"eth_getLogs failed: query returned more than {limit} results"
            )
        return logs

    async def get_task(
        self,
        blockchain_id: str,
        block_identifier: int | str = "latest",
    ) -> ChainTaskState:
        self.chain.check()
        self.chain.get_task_calls += 1
        task = self.chain.tasks.get(str(blockchain_id))
        if task is None:
            raise NotFoundError(
                f"task {blockchain_id} not found on chain {self.chain_id}", on_chain=True
            )
        return task

    async def health_check(self) -> bool:
        return not self.chain.down

    async def reconnect(self) -> None:
        self.reconnect_calls += 1
        await self.close()
        await self.connect()

    def mark_healthy(self) -> None:
        self.healthy = True
        self.last_error = None

    def mark_unhealthy(self, reason: str) -> None:
        self.healthy = False
        self.last_error = reason

    async def close(self) -> None:
        self.closed = True
        self.healthy = False


def make_network_config(
    chain_id: int = CHAIN_ID,
    name: str = "localhost",
    confirmations: int = 1,
    start_block: int = 0,
) -> NetworkConfig:
    return NetworkConfig(
        name=name,
        chain_id=chain_id,
        rpc_url=f"http://127.0.0.1:{8545 + chain_id % 100}",
        contract_address=CONTRACT_ADDRESS,
        confirmations=confirmations,
        start_block=start_block,
    )


# ---- fixtures ----


@pytest.fixture
def owner() -> str:
    return OWNER


@pytest.fixture
def other_owner() -> str:
    return OTHER_OWNER


@pytest.fixture
def log_factory() -> Callable[..., dict]:
    """原始日志构造器"""
    return make_log


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from chainmirror.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "raw.db"))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path, clock: FakeClock) -> AsyncGenerator[StoreGroup, None]:
    """共享连接的 Store 实例组，使用可控时钟"""
    stores = await create_store_group(str(tmp_db_path), clock=clock)
    yield stores
    await stores.close()


@pytest.fixture
def fake_chains() -> dict[int, FakeChain]:
    """chain_id -> FakeChain，测试可追加其他链"""
    return {CHAIN_ID: FakeChain(CHAIN_ID)}


@pytest.fixture
def fake_chain(fake_chains: dict[int, FakeChain]) -> FakeChain:
    return fake_chains[CHAIN_ID]


@pytest.fixture
def connection_factory(fake_chains: dict[int, FakeChain]):
    """ChainRegistry 使用的假连接构造函数"""

    def factory(config: NetworkConfig) -> FakeChainConnection:
        chain = fake_chains.setdefault(config.chain_id, FakeChain(config.chain_id))
        return FakeChainConnection(config, chain)

    return factory


@pytest.fixture
def network_config_factory() -> Callable[..., NetworkConfig]:
    return make_network_config


@pytest.fixture
def network_config() -> NetworkConfig:
    return make_network_config()


@pytest_asyncio.fixture
async def registry(network_config: NetworkConfig, connection_factory) -> AsyncGenerator[ChainRegistry, None]:
    """已初始化、连接到假链的注册表"""
    chain_registry = ChainRegistry([network_config], connection_factory=connection_factory)
    await chain_registry.initialize()
    yield chain_registry
    await chain_registry.cleanup()


@pytest.fixture
def decoder() -> EventDecoder:
    return EventDecoder()


@pytest.fixture
def reconciler(store_group: StoreGroup, registry: ChainRegistry, clock: FakeClock) -> Reconciler:
    return Reconciler(store_group, registry, clock=clock)
