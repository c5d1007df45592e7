"""chainmirror Sync -- 同步 / 对账引擎

对外导出 Reconciler、监听器、回填、校验、巡检、生命周期管理与边界服务。
"""

from .backfill import BackfillJob, BackfillReport
from .config import SyncConfig, load_sync_config
from .lifecycle import LifecycleManager
from .listener import LiveListener
from .monitor import MonitorReport, SyncMonitor
from .reconciler import ApplyResult, Reconciler, merge_event
from .service import SyncService
from .verifier import VerificationResult, Verifier
from .worker_pool import ReconcileWorkerPool

__all__ = [
    "ApplyResult",
    "BackfillJob",
    "BackfillReport",
    "LifecycleManager",
    "LiveListener",
    "MonitorReport",
    "ReconcileWorkerPool",
    "Reconciler",
    "SyncConfig",
    "SyncMonitor",
    "SyncService",
    "VerificationResult",
    "Verifier",
    "load_sync_config",
    "merge_event",
]
