"""apps/gateway 测试配置 -- 经 lifespan 启动的 app + httpx AsyncClient

默认关闭实时监听，路由测试通过 backfill / sync 接口显式写入镜像。
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from chainmirror.chain import NETWORK_PRESETS
from httpx import ASGITransport, AsyncClient

CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


@pytest.fixture
def gateway_env(tmp_path: Path, monkeypatch) -> Path:
    """Gateway 临时数据目录与网络环境：只配置 localhost"""
    for preset in NETWORK_PRESETS:
        monkeypatch.delenv(preset.rpc_env, raising=False)
        monkeypatch.delenv(f"{preset.env_prefix}_CONTRACT_ADDRESS", raising=False)
        monkeypatch.delenv(f"{preset.env_prefix}_START_BLOCK", raising=False)

    deployments_dir = tmp_path / "deployments"
    deployments_dir.mkdir()
    monkeypatch.setenv("CHAINMIRROR_DB_PATH", str(tmp_path / "sqlite" / "test.db"))
    monkeypatch.setenv("CHAINMIRROR_DEPLOYMENTS_DIR", str(deployments_dir))
    monkeypatch.setenv("LOCALHOST_CONTRACT_ADDRESS", CONTRACT_ADDRESS)
    monkeypatch.setenv("CHAINMIRROR_ENABLE_LISTENERS", "false")
    return tmp_path


@pytest_asyncio.fixture
async def app(gateway_env: Path, connection_factory):
    """创建测试用 FastAPI app 实例并执行 lifespan"""
    from chainmirror.gateway.main import create_app

    application = create_app(connection_factory=connection_factory)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def backfill_all(client, fake_chain):
    """把假链上的全部区块回填进镜像"""

    async def _backfill() -> dict:
        resp = await client.post(
            "/api/backfill",
            json={"chain_id": 31337, "from_block": 1, "to_block": fake_chain.head},
        )
        assert resp.status_code == 200
        return resp.json()

    return _backfill
