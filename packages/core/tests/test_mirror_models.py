"""Domain Models 单元测试

测试内容：
1. MirrorRecord 地址规范化与字段校验
2. 事件 tagged union 反序列化
3. 快照位置与 ChainTaskState 转换
"""

from datetime import UTC, datetime

import pytest
from chainmirror.core.models import (
    SNAPSHOT_LOG_INDEX,
    ChainEvent,
    ChainEventKind,
    ChainTaskState,
    OwnerStats,
    SyncStatus,
    TaskAdded,
    TaskSnapshot,
    UnrecognizedEvent,
    normalize_address,
)
from pydantic import TypeAdapter, ValidationError

OWNER = "0xABCDEF0123456789ABCDEF0123456789ABCDEF01"


class TestEnums:
    def test_sync_status_values(self):
        """SyncStatus 与存储字符串一致"""
        assert SyncStatus.SYNCED == "synced"
        assert SyncStatus.PENDING == "pending"
        assert SyncStatus.ERROR == "error"

    def test_event_kind_from_string(self):
        assert ChainEventKind("TaskAdded") == ChainEventKind.TASK_ADDED
        assert ChainEventKind("TaskSnapshot") == ChainEventKind.TASK_SNAPSHOT


class TestMirrorRecord:
    def test_owner_lowercased(self, mirror_factory):
        """owner 入库前统一小写"""
        mirror = mirror_factory(owner=OWNER)
        assert mirror.owner == OWNER.lower()

    def test_invalid_owner_rejected(self, mirror_factory):
        with pytest.raises(ValidationError):
            mirror_factory(owner="0x1234")

    def test_completed_requires_timestamp(self, mirror_factory):
        """completed=True 必须带 blockchain_completed_at"""
        with pytest.raises(ValidationError):
            mirror_factory(completed=True, blockchain_completed_at=None)

        mirror = mirror_factory(
            completed=True,
            blockchain_completed_at=datetime(2024, 1, 2, tzinfo=UTC),
        )
        assert mirror.completed is True

    def test_description_length_limit(self, mirror_factory):
        mirror_factory(description="x" * 500)
        with pytest.raises(ValidationError):
            mirror_factory(description="x" * 501)

    def test_positions(self, mirror_factory):
        mirror = mirror_factory(
            last_event_block=12,
            last_event_log_index=3,
            deletion_block=None,
            deletion_log_index=None,
        )
        assert mirror.key == (31337, "1")
        assert mirror.last_event_position == (12, 3)
        assert mirror.description_position == (10, 0)
        assert mirror.deletion_position is None


class TestNormalizeAddress:
    def test_valid(self):
        assert normalize_address(OWNER) == OWNER.lower()

    @pytest.mark.parametrize("value", ["", "0x", "abcdef0123456789abcdef0123456789abcdef01", "0x" + "g" * 40])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            normalize_address(value)


class TestChainEvents:
    def test_discriminated_union(self):
        """kind 字段选择具体事件类型"""
        adapter = TypeAdapter(ChainEvent)
        event = adapter.validate_python(
            {
                "kind": "TaskAdded",
                "chain_id": 1,
                "block_number": 5,
                "log_index": 2,
                "blockchain_id": "7",
                "owner": OWNER,
                "description": "买牛奶",
                "created_at": "2024-01-01T00:00:00+00:00",
            }
        )
        assert isinstance(event, TaskAdded)
        assert event.position == (5, 2)
        assert event.key == (1, "7")
        assert event.owner == OWNER.lower()

    def test_unrecognized_variant(self):
        adapter = TypeAdapter(ChainEvent)
        event = adapter.validate_python(
            {"kind": "Unrecognized", "chain_id": 1, "block_number": 5, "topic": "0xdead"}
        )
        assert isinstance(event, UnrecognizedEvent)
        assert event.topic == "0xdead"

    def test_negative_block_rejected(self):
        with pytest.raises(ValidationError):
            TaskAdded(
                chain_id=1,
                block_number=-1,
                blockchain_id="1",
                owner=OWNER,
                description="",
                created_at=datetime(2024, 1, 1, tzinfo=UTC),
            )

    def test_snapshot_sorts_after_block_logs(self):
        """快照排在同一区块的所有真实日志之后"""
        snapshot = TaskSnapshot(
            chain_id=1,
            block_number=10,
            blockchain_id="1",
            owner=OWNER,
            description="d",
            completed=False,
            created_at=datetime(2024, 1, 1, tzinfo=UTC),
        )
        assert snapshot.log_index == SNAPSHOT_LOG_INDEX
        assert snapshot.position > (10, 10_000)
        assert snapshot.position < (11, 0)


class TestChainTaskState:
    def test_to_snapshot(self):
        created = datetime(2024, 1, 1, tzinfo=UTC)
        completed = datetime(2024, 1, 2, tzinfo=UTC)
        task = ChainTaskState(
            chain_id=11155111,
            blockchain_id="42",
            owner=OWNER,
            description="写周报",
            completed=True,
            created_at=created,
            completed_at=completed,
            deleted=True,
        )
        snapshot = task.to_snapshot(block_number=900)
        assert snapshot.kind == ChainEventKind.TASK_SNAPSHOT
        assert snapshot.block_number == 900
        assert snapshot.transaction_hash == ""
        assert snapshot.completed_at == completed
        assert snapshot.deleted is True
        assert snapshot.owner == OWNER.lower()


class TestOwnerStats:
    def test_completion_rate(self):
        assert OwnerStats(total=3, completed=1, active=2).completion_rate == 33.33
        assert OwnerStats(total=0, completed=0, active=0).completion_rate == 0.0
