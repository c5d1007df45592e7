"""chainmirror Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import ApplyOutcome, ChainEventKind, SyncStatus
from .events import (
    SNAPSHOT_LOG_INDEX,
    ChainEvent,
    ChainEventBase,
    ChainTaskState,
    JournalEntry,
    TaskAdded,
    TaskCompleted,
    TaskDeleted,
    TaskEvent,
    TaskEventBase,
    TaskRestored,
    TaskSnapshot,
    TaskUpdated,
    UnrecognizedEvent,
)
from .mirror import (
    ADDRESS_PATTERN,
    EventPosition,
    MirrorRecord,
    OwnerStats,
    normalize_address,
)

__all__ = [
    # 枚举
    "SyncStatus",
    "ChainEventKind",
    "ApplyOutcome",
    # Mirror
    "MirrorRecord",
    "OwnerStats",
    "EventPosition",
    "ADDRESS_PATTERN",
    "normalize_address",
    # Events
    "SNAPSHOT_LOG_INDEX",
    "ChainEvent",
    "ChainEventBase",
    "TaskEvent",
    "TaskEventBase",
    "TaskAdded",
    "TaskCompleted",
    "TaskUpdated",
    "TaskDeleted",
    "TaskRestored",
    "TaskSnapshot",
    "UnrecognizedEvent",
    "ChainTaskState",
    "JournalEntry",
]
