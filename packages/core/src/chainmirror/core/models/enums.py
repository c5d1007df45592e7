"""枚举定义

包含 SyncStatus、ChainEventKind、ApplyOutcome 枚举。
"""

from enum import StrEnum


class SyncStatus(StrEnum):
    """镜像同步状态

    - synced: 镜像与链上状态在 last_synced_at 时刻一致
    - pending: 部分同步（缺少创建信息），等待后续事件或校验补齐
    - error: 写入失败，需要重试；超过保留窗口后被清理
    """

    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class ChainEventKind(StrEnum):
    """链上领域事件类型"""

    TASK_ADDED = "TaskAdded"
    TASK_COMPLETED = "TaskCompleted"
    TASK_UPDATED = "TaskUpdated"
    TASK_DELETED = "TaskDeleted"
    TASK_RESTORED = "TaskRestored"
    # 由直接读取链上状态合成的快照事件（校验 / 迟到事件补齐）
    TASK_SNAPSHOT = "TaskSnapshot"
    UNRECOGNIZED = "Unrecognized"


class ApplyOutcome(StrEnum):
    """单个事件应用到镜像的结果"""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"
