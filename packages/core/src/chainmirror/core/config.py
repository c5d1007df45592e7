"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、error 记录保留窗口、描述长度上限等可配置常量。
"""

import os
from datetime import timedelta
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("CHAINMIRROR_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "CHAINMIRROR_DB_PATH",
        str(_get_base_dir() / "sqlite" / "chainmirror.db"),
    )


def get_deployments_dir() -> Path:
    """获取合约部署文件目录（deployment-<chainId>.json）"""
    return Path(
        os.environ.get(
            "CHAINMIRROR_DEPLOYMENTS_DIR",
            str(_get_base_dir() / "deployments"),
        )
    )


# error 状态镜像的保留时长（小时），超时后对查询不可见并被清理
ERROR_RETENTION_HOURS: int = int(
    os.environ.get("CHAINMIRROR_ERROR_RETENTION_HOURS", "24")
)

ERROR_RETENTION: timedelta = timedelta(hours=ERROR_RETENTION_HOURS)

# 任务描述最大长度（与合约侧限制一致）
DESCRIPTION_MAX_LENGTH: int = 500
