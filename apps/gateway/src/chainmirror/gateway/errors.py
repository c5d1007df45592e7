"""异常 -> HTTP 响应映射

错误响应统一为 {"error": {"code": ..., "message": ...}}。
"""

import structlog
from chainmirror.core.exceptions import (
    ChainConnectionError,
    ChainQueryError,
    MirrorError,
    NotFoundError,
    ReconcileError,
)
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

# 顺序敏感：子类在前
_ERROR_MAPPING: list[tuple[type[MirrorError], int, str]] = [
    (NotFoundError, 404, "NOT_FOUND"),
    (ChainConnectionError, 503, "CHAIN_UNAVAILABLE"),
    (ChainQueryError, 502, "CHAIN_QUERY_FAILED"),
    (ReconcileError, 500, "RECONCILE_FAILED"),
]


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def mirror_error_handler(request: Request, exc: MirrorError) -> JSONResponse:
    """把同步引擎异常翻译为 HTTP 错误"""
    for error_type, status_code, code in _ERROR_MAPPING:
        if isinstance(exc, error_type):
            break
    else:
        status_code, code = 500, "SYNC_ERROR"

    if status_code >= 500:
        log.error("request_failed", code=code, error=str(exc), error_type=type(exc).__name__)
    else:
        log.info("request_rejected", code=code, error=str(exc))
    return error_response(status_code, code, str(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MirrorError, mirror_error_handler)
