"""链上领域事件模型

封闭的 tagged union：已知事件类型 + 显式的 UnrecognizedEvent 变体。
每个事件都携带来源信息（chain_id、区块号、日志序号、交易哈希）。
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from .enums import ChainEventKind
from .mirror import EventPosition, normalize_address

# 快照事件的 log_index：排在同一区块所有真实日志之后
SNAPSHOT_LOG_INDEX: int = 2**31 - 1


class ChainEventBase(BaseModel):
    """事件来源信息"""

    chain_id: int = Field(description="链 ID")
    block_number: int = Field(ge=0, description="所在区块")
    log_index: int = Field(default=0, ge=0, description="区块内日志序号")
    transaction_hash: str = Field(default="", description="交易哈希，快照事件为空")

    @property
    def position(self) -> EventPosition:
        return (self.block_number, self.log_index)


class TaskEventBase(ChainEventBase):
    """针对单个任务的事件"""

    blockchain_id: str = Field(description="链上任务 ID")
    owner: str = Field(description="任务创建者地址")

    @field_validator("owner", mode="before")
    @classmethod
    def _lowercase_owner(cls, value: str) -> str:
        return normalize_address(value)

    @property
    def key(self) -> tuple[int, str]:
        return (self.chain_id, self.blockchain_id)


class TaskAdded(TaskEventBase):
    kind: Literal[ChainEventKind.TASK_ADDED] = ChainEventKind.TASK_ADDED
    description: str
    created_at: datetime


class TaskCompleted(TaskEventBase):
    kind: Literal[ChainEventKind.TASK_COMPLETED] = ChainEventKind.TASK_COMPLETED
    completed_at: datetime


class TaskUpdated(TaskEventBase):
    kind: Literal[ChainEventKind.TASK_UPDATED] = ChainEventKind.TASK_UPDATED
    description: str
    updated_at: datetime


class TaskDeleted(TaskEventBase):
    kind: Literal[ChainEventKind.TASK_DELETED] = ChainEventKind.TASK_DELETED
    deleted_at: datetime


class TaskRestored(TaskEventBase):
    kind: Literal[ChainEventKind.TASK_RESTORED] = ChainEventKind.TASK_RESTORED
    restored_at: datetime


class TaskSnapshot(TaskEventBase):
    """链上当前状态的完整快照

    block_number 为读取时的区块高度，log_index 固定为 SNAPSHOT_LOG_INDEX。
    """

    kind: Literal[ChainEventKind.TASK_SNAPSHOT] = ChainEventKind.TASK_SNAPSHOT
    log_index: int = Field(default=SNAPSHOT_LOG_INDEX, ge=0)
    description: str
    completed: bool
    created_at: datetime
    completed_at: datetime | None = None
    deleted: bool = False


class UnrecognizedEvent(ChainEventBase):
    """签名未知的日志 -- 调用方跳过"""

    kind: Literal[ChainEventKind.UNRECOGNIZED] = ChainEventKind.UNRECOGNIZED
    topic: str | None = Field(default=None, description="topic0 十六进制")


TaskEvent = Annotated[
    TaskAdded | TaskCompleted | TaskUpdated | TaskDeleted | TaskRestored | TaskSnapshot,
    Field(discriminator="kind"),
]

ChainEvent = Annotated[
    TaskAdded
    | TaskCompleted
    | TaskUpdated
    | TaskDeleted
    | TaskRestored
    | TaskSnapshot
    | UnrecognizedEvent,
    Field(discriminator="kind"),
]


class ChainTaskState(BaseModel):
    """getTask() 读取到的链上任务状态"""

    chain_id: int
    blockchain_id: str
    owner: str
    description: str
    completed: bool
    created_at: datetime
    completed_at: datetime | None = None
    deleted: bool = False
    deleted_at: datetime | None = None

    @field_validator("owner", mode="before")
    @classmethod
    def _lowercase_owner(cls, value: str) -> str:
        return normalize_address(value)

    def to_snapshot(self, block_number: int) -> TaskSnapshot:
        """转换为在 block_number 读取的快照事件"""
        return TaskSnapshot(
            chain_id=self.chain_id,
            blockchain_id=self.blockchain_id,
            owner=self.owner,
            block_number=block_number,
            description=self.description,
            completed=self.completed,
            created_at=self.created_at,
            completed_at=self.completed_at,
            deleted=self.deleted,
        )


class JournalEntry(BaseModel):
    """chain_events 表中的一条已应用事件记录"""

    event_id: str = Field(description="ULID")
    chain_id: int
    blockchain_id: str
    kind: ChainEventKind
    block_number: int
    log_index: int
    transaction_hash: str
    payload: dict[str, Any] = Field(default_factory=dict)
    ingested_at: datetime
