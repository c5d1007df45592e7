"""chainmirror Chain -- 链连接、ABI 与日志解码

对外导出 NetworkConfig / ChainConnection / ChainRegistry / EventDecoder。
"""

from .abi import TODO_LIST_ABI, event_signature, event_topic, task_id_topic
from .config import (
    DEFAULT_CONFIRMATIONS,
    NETWORK_PRESETS,
    NetworkConfig,
    default_confirmations,
    load_deployment_address,
    load_network_configs,
)
from .connection import ChainConnection
from .decoder import EventDecoder, normalize_log
from .registry import ChainRegistry, ConnectionFactory

__all__ = [
    "TODO_LIST_ABI",
    "event_signature",
    "event_topic",
    "task_id_topic",
    "DEFAULT_CONFIRMATIONS",
    "NETWORK_PRESETS",
    "NetworkConfig",
    "default_confirmations",
    "load_deployment_address",
    "load_network_configs",
    "ChainConnection",
    "ChainRegistry",
    "ConnectionFactory",
    "EventDecoder",
    "normalize_log",
]
