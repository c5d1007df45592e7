"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 同步引擎启动/关闭 + 路由注册。
uvicorn 收到 SIGINT / SIGTERM 时执行 lifespan 关闭流程。
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from chainmirror.chain import ChainRegistry, ConnectionFactory, load_network_configs
from chainmirror.core.config import get_db_path, get_deployments_dir
from chainmirror.core.logging_config import setup_logging
from chainmirror.core.store import create_store_group
from chainmirror.sync import LifecycleManager, load_sync_config
from fastapi import FastAPI

from .errors import register_exception_handlers
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TodoContextMiddleware
from .routes import backfill, health, todos

log = structlog.get_logger()


def _listeners_enabled() -> bool:
    return os.environ.get("CHAINMIRROR_ENABLE_LISTENERS", "true").lower() != "false"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和同步引擎，关闭时按序清理"""
    # 启动：初始化 Store
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    # 同步引擎初始化
    sync_config = load_sync_config()
    registry = ChainRegistry(
        load_network_configs(get_deployments_dir()),
        connection_factory=getattr(app.state, "connection_factory", None),
        timeout_s=sync_config.rpc_timeout_s,
        retry_base_delay_s=sync_config.reconnect_base_delay_s,
        retry_max_delay_s=sync_config.reconnect_max_delay_s,
    )
    manager = LifecycleManager(store_group, registry, sync_config)
    try:
        await manager.start(listen=_listeners_enabled())
    except Exception:
        await store_group.close()
        raise
    app.state.lifecycle = manager
    log.info(
        "gateway_started",
        networks=registry.available_chain_ids(),
        listeners=sorted(manager.listeners),
    )

    yield

    # 关闭：同步引擎 -> 数据库连接
    await manager.shutdown()
    await store_group.close()
    log.info("gateway_stopped")


def create_app(connection_factory: ConnectionFactory | None = None) -> FastAPI:
    """创建 FastAPI 应用实例

    Args:
        connection_factory: 链连接构造函数，测试时注入假连接
    """
    app = FastAPI(
        title="chainmirror Gateway",
        version="0.1.0",
        description="链上任务镜像查询与运维 API",
        lifespan=lifespan,
    )
    app.state.connection_factory = connection_factory

    # 注册中间件（顺序：先 TodoContext 后 Logging，Logging 在最外层）
    app.add_middleware(TodoContextMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging(service="chainmirror-gateway")

    register_exception_handlers(app)

    # 注册路由
    app.include_router(todos.router, tags=["todos"])
    app.include_router(backfill.router, tags=["backfill"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
