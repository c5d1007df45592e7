"""packages/sync 测试配置 -- 领域事件构造 fixture"""

from datetime import UTC, datetime

import pytest
from chainmirror.core.models import (
    TaskAdded,
    TaskCompleted,
    TaskDeleted,
    TaskRestored,
    TaskSnapshot,
    TaskUpdated,
)

_OWNER = "0xABCDEF0123456789ABCDEF0123456789ABCDEF01"


def _at(block: int) -> datetime:
    return datetime.fromtimestamp(1_700_000_000 + block * 12, tz=UTC)


class EventFactory:
    """按 (区块, 日志序号) 构造单个任务的领域事件"""

    def __init__(self, chain_id: int = 31337, owner: str = _OWNER) -> None:
        self.chain_id = chain_id
        self.owner = owner

    def _common(self, blockchain_id: str, block: int, log_index: int) -> dict:
        return {
            "chain_id": self.chain_id,
            "blockchain_id": blockchain_id,
            "owner": self.owner,
            "block_number": block,
            "log_index": log_index,
            "transaction_hash": "0x" + f"{block:032x}{log_index:032x}",
        }

    def added(self, blockchain_id="1", block=10, log_index=0, description="买牛奶") -> TaskAdded:
        return TaskAdded(
            **self._common(blockchain_id, block, log_index),
            description=description,
            created_at=_at(block),
        )

    def updated(self, blockchain_id="1", block=11, log_index=0, description="买豆浆") -> TaskUpdated:
        return TaskUpdated(
            **self._common(blockchain_id, block, log_index),
            description=description,
            updated_at=_at(block),
        )

    def completed(self, blockchain_id="1", block=12, log_index=0) -> TaskCompleted:
        return TaskCompleted(
            **self._common(blockchain_id, block, log_index),
            completed_at=_at(block),
        )

    def deleted(self, blockchain_id="1", block=13, log_index=0) -> TaskDeleted:
        return TaskDeleted(
            **self._common(blockchain_id, block, log_index),
            deleted_at=_at(block),
        )

    def restored(self, blockchain_id="1", block=14, log_index=0) -> TaskRestored:
        return TaskRestored(
            **self._common(blockchain_id, block, log_index),
            restored_at=_at(block),
        )

    def snapshot(
        self,
        blockchain_id="1",
        block=100,
        description="买牛奶",
        completed=False,
        deleted=False,
        created_block=10,
        completed_block=None,
    ) -> TaskSnapshot:
        return TaskSnapshot(
            chain_id=self.chain_id,
            blockchain_id=blockchain_id,
            owner=self.owner,
            block_number=block,
            description=description,
            completed=completed,
            created_at=_at(created_block),
            completed_at=_at(completed_block) if completed_block is not None else None,
            deleted=deleted,
        )


@pytest.fixture
def events() -> EventFactory:
    return EventFactory()
