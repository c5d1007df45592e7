"""集成测试共享 fixture -- 两条假链 + 开启实时监听的完整 gateway"""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from chainmirror.chain import NETWORK_PRESETS
from httpx import ASGITransport, AsyncClient

CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SEPOLIA = 11155111


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, monkeypatch, connection_factory):
    """集成测试用 FastAPI app：localhost + sepolia，监听器每 10ms 轮询"""
    for preset in NETWORK_PRESETS:
        monkeypatch.delenv(preset.rpc_env, raising=False)
        monkeypatch.delenv(f"{preset.env_prefix}_CONTRACT_ADDRESS", raising=False)

    monkeypatch.setenv("CHAINMIRROR_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("CHAINMIRROR_DEPLOYMENTS_DIR", str(tmp_path / "deployments"))
    monkeypatch.setenv("CHAINMIRROR_ENABLE_LISTENERS", "true")
    monkeypatch.setenv("CHAINMIRROR_POLL_INTERVAL_S", "0.01")
    monkeypatch.setenv("CHAINMIRROR_RECONNECT_BASE_DELAY_S", "0.01")
    monkeypatch.setenv("CHAINMIRROR_RECONNECT_MAX_DELAY_S", "0.05")
    monkeypatch.setenv("LOCALHOST_CONTRACT_ADDRESS", CONTRACT_ADDRESS)
    monkeypatch.setenv("LOCALHOST_START_BLOCK", "1")
    monkeypatch.setenv("ETHEREUM_SEPOLIA_RPC", "http://sepolia.invalid")
    monkeypatch.setenv("SEPOLIA_CONTRACT_ADDRESS", CONTRACT_ADDRESS)
    monkeypatch.setenv("CONFIRMATION_BLOCKS_SEPOLIA", "1")
    monkeypatch.setenv("SEPOLIA_START_BLOCK", "1")

    from chainmirror.gateway.main import create_app

    app = create_app(connection_factory=connection_factory)
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def sepolia(integration_app, fake_chains):
    """sepolia 假链（由 gateway 启动时的连接工厂创建）"""
    return fake_chains[SEPOLIA]


@pytest.fixture
def eventually():
    """轮询直到断言函数返回真值"""

    async def _eventually(check, timeout: float = 3.0):
        async def _poll():
            while True:
                result = await check()
                if result:
                    return result
                await asyncio.sleep(0.01)

        return await asyncio.wait_for(_poll(), timeout=timeout)

    return _eventually
