"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、同步引擎状态、各网络状态。
         profile=chain 时额外对每个可用网络做 RPC 探测。
"""

import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置文件：core（默认）仅本地检查；chain 额外探测各网络 RPC",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. sync_engine: LifecycleManager 是否完成启动
    3. networks: 每条链的连接状态（仅展示，单个网络不可用不影响 ready）
    4. rpc: profile=chain 时逐个探测可用网络
    """
    effective_profile = profile or "core"

    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 同步引擎状态
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is not None and lifecycle.ready.is_set():
        checks["sync_engine"] = "ok"
    else:
        checks["sync_engine"] = "not_started"
        all_ok = False

    # 3. 网络状态
    networks = lifecycle.registry.network_info() if lifecycle is not None else []

    # 4. RPC 探测
    if effective_profile == "chain" and lifecycle is not None:
        rpc = {}
        for chain_id in lifecycle.registry.available_chain_ids():
            try:
                healthy = await lifecycle.registry.get(chain_id).health_check()
            except Exception as e:
                log.warning("rpc_probe_error", chain_id=chain_id, error=str(e))
                healthy = False
            rpc[str(chain_id)] = "ok" if healthy else "unreachable"
        checks["rpc"] = rpc
    else:
        checks["rpc"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "profile": effective_profile,
            "checks": checks,
            "networks": networks,
        },
    )
