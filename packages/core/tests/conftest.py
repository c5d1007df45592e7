"""packages/core 测试配置 -- 镜像构造 fixture"""

from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from chainmirror.core.models import MirrorRecord, SyncStatus
from ulid import ULID


@pytest.fixture
def mirror_factory(clock) -> Callable[..., MirrorRecord]:
    """按默认值构造 MirrorRecord，关键字参数覆盖任意字段"""

    def factory(blockchain_id: str = "1", **overrides) -> MirrorRecord:
        now = clock()
        fields = {
            "mirror_id": str(ULID()),
            "chain_id": 31337,
            "blockchain_id": blockchain_id,
            "transaction_hash": "0x" + "ab" * 32,
            "owner": "0xABCDEF0123456789ABCDEF0123456789ABCDEF01",
            "description": f"task {blockchain_id}",
            "blockchain_created_at": datetime(2024, 1, 1, tzinfo=UTC),
            "sync_status": SyncStatus.SYNCED,
            "last_synced_at": now,
            "created_block": 10,
            "last_event_block": 10,
            "last_event_log_index": 0,
            "description_block": 10,
            "description_log_index": 0,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return MirrorRecord(**fields)

    return factory
