"""TodoListV2 合约 ABI 片段

只包含同步引擎关心的事件和 getTask() 读取。
"""

from hexbytes import HexBytes
from web3 import Web3


def _event(name: str, *inputs: tuple[str, str, bool]) -> dict:
    return {
        "anonymous": False,
        "type": "event",
        "name": name,
        "inputs": [
            {"name": arg, "type": arg_type, "indexed": indexed}
            for arg, arg_type, indexed in inputs
        ],
    }


_TASK_ID = ("taskId", "uint256", True)
_OWNER = ("owner", "address", True)
_DESCRIPTION = ("description", "string", False)
_TIMESTAMP = ("timestamp", "uint256", False)

TASK_CREATED_ABI = _event("TaskCreated", _TASK_ID, _OWNER, _DESCRIPTION, _TIMESTAMP)
TASK_UPDATED_ABI = _event("TaskUpdated", _TASK_ID, _OWNER, _DESCRIPTION, _TIMESTAMP)
TASK_COMPLETED_ABI = _event("TaskCompleted", _TASK_ID, _OWNER, _TIMESTAMP)
TASK_DELETED_ABI = _event("TaskDeleted", _TASK_ID, _OWNER, _TIMESTAMP)
TASK_RESTORED_ABI = _event("TaskRestored", _TASK_ID, _OWNER, _TIMESTAMP)

EVENT_ABIS: list[dict] = [
    TASK_CREATED_ABI,
    TASK_UPDATED_ABI,
    TASK_COMPLETED_ABI,
    TASK_DELETED_ABI,
    TASK_RESTORED_ABI,
]

GET_TASK_ABI: dict = {
    "type": "function",
    "name": "getTask",
    "stateMutability": "view",
    "inputs": [{"name": "taskId", "type": "uint256"}],
    "outputs": [
        {
            "name": "",
            "type": "tuple",
            "components": [
                {"name": "id", "type": "uint256"},
                {"name": "owner", "type": "address"},
                {"name": "description", "type": "string"},
                {"name": "completed", "type": "bool"},
                {"name": "createdAt", "type": "uint256"},
                {"name": "completedAt", "type": "uint256"},
                {"name": "deleted", "type": "bool"},
                {"name": "deletedAt", "type": "uint256"},
            ],
        }
    ],
}

TODO_LIST_ABI: list[dict] = [*EVENT_ABIS, GET_TASK_ABI]


def event_signature(event_abi: dict) -> str:
    """事件签名，如 TaskCreated(uint256,address,string,uint256)"""
    types = ",".join(item["type"] for item in event_abi["inputs"])
    return f"{event_abi['name']}({types})"


def event_topic(event_abi: dict) -> HexBytes:
    """事件 topic0 = keccak256(签名)"""
    return HexBytes(Web3.keccak(text=event_signature(event_abi)))


def task_id_topic(blockchain_id: str | int) -> str:
    """把任务 ID 编码为 indexed topic（32 字节大端）"""
    return "0x" + int(blockchain_id).to_bytes(32, "big").hex()


TOPIC_TO_EVENT_ABI: dict[HexBytes, dict] = {event_topic(abi): abi for abi in EVENT_ABIS}

ALL_EVENT_TOPICS: list[str] = ["0x" + bytes(topic).hex() for topic in TOPIC_TO_EVENT_ABI]
