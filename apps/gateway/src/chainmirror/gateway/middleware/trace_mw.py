"""TodoContextMiddleware -- 为任务相关请求绑定日志上下文

从路径中提取 mirror_id 或 (chain_id, blockchain_id)，贯穿同一请求内的同步日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_ULID_LENGTH = 26


class TodoContextMiddleware(BaseHTTPMiddleware):
    """任务级上下文中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        parts = [part for part in request.url.path.split("/") if part]

        if len(parts) >= 4 and parts[:2] == ["api", "todos"]:
            # /api/todos/todo/{id} 与 /api/todos/verify/{id}
            if parts[2] in ("todo", "verify") and len(parts[3]) == _ULID_LENGTH:
                structlog.contextvars.bind_contextvars(mirror_id=parts[3])
            # /api/todos/chain/{chain_id}/{blockchain_id}
            elif parts[2] == "chain" and len(parts) >= 5 and parts[3].isdigit():
                structlog.contextvars.bind_contextvars(
                    chain_id=int(parts[3]),
                    blockchain_id=parts[4],
                )

        return await call_next(request)
