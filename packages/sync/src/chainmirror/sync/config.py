"""SyncConfig -- 同步引擎运行参数

从环境变量加载，非法数值记录警告后回退默认值，不阻塞启动。
"""

import os

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


class SyncConfig(BaseModel):
    """同步引擎配置

    环境变量:
        CHAINMIRROR_RPC_TIMEOUT_S: 链上读取超时（默认 10）
        CHAINMIRROR_POLL_INTERVAL_S: 监听器轮询间隔（默认 4）
        CHAINMIRROR_RECONNECT_BASE_DELAY_S: 重连退避起始值（默认 5）
        CHAINMIRROR_RECONNECT_MAX_DELAY_S: 重连退避上限（默认 60）
        CHAINMIRROR_BACKFILL_BATCH_SIZE: backfill 每批区块数（默认 2000）
        CHAINMIRROR_LISTENER_BATCH_SIZE: 监听器每批区块数（默认 500）
        CHAINMIRROR_WORKER_COUNT: 对账 worker 数（默认 4）
        CHAINMIRROR_QUEUE_MAXSIZE: 每个 worker 队列容量（默认 1000）
        CHAINMIRROR_MONITOR_INTERVAL_S: 巡检间隔（默认 30）
        CHAINMIRROR_RETRY_LEDGER_SIZE: 失败事件重试账本容量（默认 1000）
    """

    rpc_timeout_s: float = Field(default=10.0, gt=0)
    poll_interval_s: float = Field(default=4.0, gt=0)
    reconnect_base_delay_s: float = Field(default=5.0, gt=0)
    reconnect_max_delay_s: float = Field(default=60.0, gt=0)
    backfill_batch_size: int = Field(default=2000, ge=1)
    listener_batch_size: int = Field(default=500, ge=1)
    worker_count: int = Field(default=4, ge=1)
    queue_maxsize: int = Field(default=1000, ge=1)
    monitor_interval_s: float = Field(default=30.0, gt=0)
    retry_ledger_size: int = Field(default=1000, ge=1)


_ENV_MAPPING: dict[str, tuple[str, type]] = {
    "CHAINMIRROR_RPC_TIMEOUT_S": ("rpc_timeout_s", float),
    "CHAINMIRROR_POLL_INTERVAL_S": ("poll_interval_s", float),
    "CHAINMIRROR_RECONNECT_BASE_DELAY_S": ("reconnect_base_delay_s", float),
    "CHAINMIRROR_RECONNECT_MAX_DELAY_S": ("reconnect_max_delay_s", float),
    "CHAINMIRROR_BACKFILL_BATCH_SIZE": ("backfill_batch_size", int),
    "CHAINMIRROR_LISTENER_BATCH_SIZE": ("listener_batch_size", int),
    "CHAINMIRROR_WORKER_COUNT": ("worker_count", int),
    "CHAINMIRROR_QUEUE_MAXSIZE": ("queue_maxsize", int),
    "CHAINMIRROR_MONITOR_INTERVAL_S": ("monitor_interval_s", float),
    "CHAINMIRROR_RETRY_LEDGER_SIZE": ("retry_ledger_size", int),
}


def load_sync_config() -> SyncConfig:
    """从环境变量加载同步引擎配置

    Returns:
        SyncConfig 实例
    """
    defaults = SyncConfig()
    kwargs: dict = {}

    for env_var, (field, cast) in _ENV_MAPPING.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        try:
            parsed = cast(val)
        except ValueError:
            parsed = None
        if parsed is None or parsed <= 0:
            log.warning(
                "invalid_sync_config",
                env_var=env_var,
                value=val,
                fallback=getattr(defaults, field),
            )
            # 使用默认值，不阻塞启动
            continue
        kwargs[field] = parsed

    return SyncConfig(**kwargs)
