"""运维路由

POST /api/backfill: 回填指定链的区块区间。
"""

from chainmirror.sync import SyncService
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_sync_service
from ..errors import error_response

router = APIRouter()


class BackfillRequest(BaseModel):
    """回填请求体"""

    chain_id: int
    from_block: int = Field(ge=0)
    to_block: int | None = Field(default=None, ge=0, description="默认等于 from_block")


@router.post("/api/backfill")
async def backfill(body: BackfillRequest, service: SyncService = Depends(get_sync_service)):
    """回填闭区间 [from_block, to_block]"""
    try:
        report = await service.backfill(body.chain_id, body.from_block, body.to_block)
    except ValueError as e:
        return error_response(400, "INVALID_RANGE", str(e))
    return report.model_dump()
