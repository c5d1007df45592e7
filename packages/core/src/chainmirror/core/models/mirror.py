"""Task Mirror 数据模型

mirrors 表是链上任务的本地镜像，(chain_id, blockchain_id) 全局唯一。
Reconciler 是唯一写入方，其余组件只读或请求对账。
"""

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from ..config import DESCRIPTION_MAX_LENGTH
from .enums import SyncStatus

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")

# 事件在链上的位置 (block_number, log_index)，用于判断写入先后
EventPosition = tuple[int, int]


def normalize_address(value: str) -> str:
    """校验并统一为小写地址"""
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value):
        raise ValueError(f"{value!r} is not a valid Ethereum address")
    return value.lower()


def _position(block: int | None, log_index: int | None) -> EventPosition | None:
    if block is None:
        return None
    return (block, log_index or 0)


class MirrorRecord(BaseModel):
    """Task Mirror -- 链上任务的本地镜像

    各 *_block / *_log_index 字段记录对应字段最后一次被哪个链上位置写入，
    使乱序、重复投递的事件收敛到同一最终状态。
    """

    mirror_id: str = Field(description="本地唯一标识，ULID 格式")
    chain_id: int = Field(description="链 ID")
    blockchain_id: str = Field(description="链上任务 ID，与 chain_id 组合唯一")
    transaction_hash: str = Field(default="", description="最近一次写入的交易哈希")
    owner: str = Field(description="创建者地址（小写）")
    description: str = Field(
        default="",
        max_length=DESCRIPTION_MAX_LENGTH,
        description="任务描述",
    )
    completed: bool = Field(default=False)
    blockchain_created_at: datetime | None = Field(default=None, description="链上创建时间")
    blockchain_completed_at: datetime | None = Field(default=None, description="链上完成时间")
    sync_status: SyncStatus = Field(default=SyncStatus.SYNCED)
    last_synced_at: datetime = Field(description="最近一次对账尝试时间（入库侧时钟）")
    deleted: bool = Field(default=False, description="软删除标记")

    created_block: int | None = Field(default=None, description="TaskAdded 事件所在区块")
    last_event_block: int | None = Field(default=None)
    last_event_log_index: int | None = Field(default=None)
    description_block: int | None = Field(default=None)
    description_log_index: int | None = Field(default=None)
    deletion_block: int | None = Field(default=None)
    deletion_log_index: int | None = Field(default=None)

    created_at: datetime = Field(description="行创建时间")
    updated_at: datetime = Field(description="行更新时间")

    @field_validator("owner", mode="before")
    @classmethod
    def _lowercase_owner(cls, value: str) -> str:
        return normalize_address(value)

    @model_validator(mode="after")
    def _completed_has_timestamp(self) -> "MirrorRecord":
        if self.completed and self.blockchain_completed_at is None:
            raise ValueError("completed mirror requires blockchain_completed_at")
        return self

    @property
    def key(self) -> tuple[int, str]:
        return (self.chain_id, self.blockchain_id)

    @property
    def last_event_position(self) -> EventPosition | None:
        return _position(self.last_event_block, self.last_event_log_index)

    @property
    def description_position(self) -> EventPosition | None:
        return _position(self.description_block, self.description_log_index)

    @property
    def deletion_position(self) -> EventPosition | None:
        return _position(self.deletion_block, self.deletion_log_index)


class OwnerStats(BaseModel):
    """按地址统计的任务数"""

    total: int
    completed: int
    active: int

    @property
    def completion_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.completed / self.total * 100, 2)
