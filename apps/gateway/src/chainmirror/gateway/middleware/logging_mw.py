"""LoggingMiddleware -- 请求级日志

沿用调用方传入的 X-Request-ID（便于与前端 / 同步 CLI 日志串联），缺省时生成 ULID。
5xx 与未处理异常按错误级别记录。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 64

log = structlog.get_logger()


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH and incoming.isprintable():
        return incoming
    return str(ULID())


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _request_id(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as e:
            await log.aerror(
                "request_failed",
                error_type=type(e).__name__,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        if response.status_code >= 500:
            await log.aerror(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )
        elif request.url.path not in ("/health", "/ready"):
            await log.ainfo(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
