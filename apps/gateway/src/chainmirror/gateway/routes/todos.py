"""任务路由

GET  /api/todos/todo/{todo_id}: 任务详情，含已应用的链上事件
GET  /api/todos/verify/{todo_id}: 校验任务与链上状态
GET  /api/todos/chain/{chain_id}/{blockchain_id}: 按链上 ID 查询
POST /api/todos/sync: 从链上读取并同步单个任务
POST /api/todos/restore: 恢复已删除任务
GET  /api/todos/{address}: 地址名下任务列表
GET  /api/todos/{address}/stats: 地址任务统计
"""

from chainmirror.core.models import ADDRESS_PATTERN, JournalEntry, MirrorRecord
from chainmirror.sync import SyncService
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_sync_service
from ..errors import error_response

router = APIRouter()


class TodoItem(BaseModel):
    """任务镜像（对外视图）"""

    id: str
    chain_id: int
    blockchain_id: str
    transaction_hash: str
    owner: str
    description: str
    completed: bool
    blockchain_created_at: str | None
    blockchain_completed_at: str | None
    sync_status: str
    last_synced_at: str
    deleted: bool
    created_at: str
    updated_at: str


class TodoListResponse(BaseModel):
    address: str
    count: int
    todos: list[TodoItem]


class StatsResponse(BaseModel):
    address: str
    total: int
    completed: int
    active: int
    completion_rate: float


class SyncRequest(BaseModel):
    """同步请求体"""

    chain_id: int = Field(description="链 ID")
    blockchain_id: str = Field(pattern=r"^\d+$", description="链上任务 ID")


class RestoreRequest(BaseModel):
    """恢复请求体"""

    todo_id: str = Field(description="任务 ID（mirror_id）")


def to_item(mirror: MirrorRecord) -> TodoItem:
    return TodoItem(
        id=mirror.mirror_id,
        chain_id=mirror.chain_id,
        blockchain_id=mirror.blockchain_id,
        transaction_hash=mirror.transaction_hash,
        owner=mirror.owner,
        description=mirror.description,
        completed=mirror.completed,
        blockchain_created_at=(
            mirror.blockchain_created_at.isoformat() if mirror.blockchain_created_at else None
        ),
        blockchain_completed_at=(
            mirror.blockchain_completed_at.isoformat()
            if mirror.blockchain_completed_at
            else None
        ),
        sync_status=mirror.sync_status.value,
        last_synced_at=mirror.last_synced_at.isoformat(),
        deleted=mirror.deleted,
        created_at=mirror.created_at.isoformat(),
        updated_at=mirror.updated_at.isoformat(),
    )


def _event_data(entry: JournalEntry) -> dict:
    return {
        "event_id": entry.event_id,
        "kind": entry.kind.value,
        "block_number": entry.block_number,
        "log_index": entry.log_index,
        "transaction_hash": entry.transaction_hash,
        "payload": entry.payload,
        "ingested_at": entry.ingested_at.isoformat(),
    }


def _invalid_address(address: str) -> JSONResponse:
    return error_response(400, "INVALID_ADDRESS", f"{address} is not a valid Ethereum address")


@router.get("/api/todos/todo/{todo_id}")
async def get_todo(todo_id: str, service: SyncService = Depends(get_sync_service)):
    """任务详情，包含已应用的链上事件"""
    mirror, events = await service.get_todo(todo_id)
    return {
        "todo": to_item(mirror).model_dump(),
        "events": [_event_data(e) for e in events],
    }


@router.get("/api/todos/verify/{todo_id}")
async def verify_todo(todo_id: str, service: SyncService = Depends(get_sync_service)):
    """校验任务与链上状态，有差异时自动修正"""
    result = await service.verify_todo(todo_id)
    return {
        "is_valid": result.is_valid,
        "diverged_fields": result.diverged_fields,
        "verified_at_block": result.verified_at_block,
        "todo": to_item(result.mirror).model_dump(),
        "chain_task": result.chain_task.model_dump(mode="json"),
    }


@router.get("/api/todos/chain/{chain_id}/{blockchain_id}")
async def get_todo_by_chain_id(
    chain_id: int,
    blockchain_id: str,
    service: SyncService = Depends(get_sync_service),
):
    """按 (chain_id, blockchain_id) 查询任务"""
    mirror = await service.find_by_blockchain_id(chain_id, blockchain_id)
    if mirror is None:
        return error_response(
            404,
            "NOT_FOUND",
            f"todo {blockchain_id} on chain {chain_id} does not exist",
        )
    return {"todo": to_item(mirror).model_dump()}


@router.post("/api/todos/sync")
async def sync_todo(body: SyncRequest, service: SyncService = Depends(get_sync_service)):
    """从链上读取任务当前状态并写入镜像"""
    mirror = await service.sync_todo_from_blockchain(body.chain_id, body.blockchain_id)
    return {"todo": to_item(mirror).model_dump()}


@router.post("/api/todos/restore")
async def restore_todo(body: RestoreRequest, service: SyncService = Depends(get_sync_service)):
    """恢复已删除任务"""
    try:
        mirror = await service.restore_todo(body.todo_id)
    except ValueError as e:
        return error_response(409, "TODO_NOT_DELETED", str(e))
    return {"todo": to_item(mirror).model_dump()}


@router.get("/api/todos/{address}", response_model=TodoListResponse)
async def list_todos(
    address: str,
    include_completed: bool = Query(default=True, description="是否包含已完成任务"),
    include_deleted: bool = Query(default=False, description="是否包含已删除任务"),
    service: SyncService = Depends(get_sync_service),
):
    """查询地址名下任务，按链上创建时间倒序"""
    if not ADDRESS_PATTERN.match(address):
        return _invalid_address(address)
    mirrors = await service.find_by_owner(
        address,
        include_completed=include_completed,
        include_deleted=include_deleted,
    )
    return TodoListResponse(
        address=address.lower(),
        count=len(mirrors),
        todos=[to_item(m) for m in mirrors],
    )


@router.get("/api/todos/{address}/stats", response_model=StatsResponse)
async def owner_stats(address: str, service: SyncService = Depends(get_sync_service)):
    """地址任务统计（不含已删除）"""
    if not ADDRESS_PATTERN.match(address):
        return _invalid_address(address)
    stats = await service.owner_stats(address)
    return StatsResponse(
        address=address.lower(),
        total=stats.total,
        completed=stats.completed,
        active=stats.active,
        completion_rate=stats.completion_rate,
    )
