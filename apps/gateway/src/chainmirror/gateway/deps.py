"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store 与同步服务

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from chainmirror.core.store import StoreGroup
from chainmirror.sync import LifecycleManager, SyncService
from fastapi import Request


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_lifecycle(request: Request) -> LifecycleManager:
    """从 app.state 获取 LifecycleManager 实例"""
    return request.app.state.lifecycle


def get_sync_service(request: Request) -> SyncService:
    """从 app.state 获取 SyncService 实例"""
    return request.app.state.lifecycle.service
