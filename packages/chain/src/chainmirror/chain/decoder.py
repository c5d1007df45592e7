"""EventDecoder -- 原始日志 -> 领域事件

纯函数：不访问网络，不访问数据库。
topic0 选择 ABI 事件；未知 topic0 返回 UnrecognizedEvent，
已知签名但数据无法解码时抛出 DecodeError。
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from eth_abi.codec import ABICodec
from eth_abi.registry import registry
from hexbytes import HexBytes
from pydantic import ValidationError
from web3._utils.events import get_event_data

from chainmirror.core.exceptions import DecodeError
from chainmirror.core.models import (
    ChainEvent,
    TaskAdded,
    TaskCompleted,
    TaskDeleted,
    TaskRestored,
    TaskUpdated,
    UnrecognizedEvent,
)

from .abi import TOPIC_TO_EVENT_ABI

log = structlog.get_logger()

_ZERO_HASH = "0x" + "00" * 32


def _parse_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def _hex(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return "0x" + bytes(value).hex()


def normalize_log(raw_log: Mapping[str, Any]) -> dict[str, Any]:
    """统一 JSON-RPC 原始字典和 web3 AttributeDict 两种日志形态

    get_event_data 要求的字段缺失时补默认值，多余字段原样保留。
    """
    out = dict(raw_log)
    if isinstance(out.get("data"), str) or out.get("data") is None:
        out["data"] = HexBytes(out.get("data") or "0x")
    topics = out.get("topics") or []
    out["topics"] = [HexBytes(t) for t in topics]
    for key in ("blockNumber", "transactionIndex", "logIndex"):
        if out.get(key) is not None:
            out[key] = _parse_int(out[key])
    out.setdefault("logIndex", 0)
    out.setdefault("transactionIndex", 0)
    out["transactionHash"] = HexBytes(out.get("transactionHash") or _ZERO_HASH)
    out["blockHash"] = HexBytes(out.get("blockHash") or _ZERO_HASH)
    out.setdefault("address", "0x" + "00" * 20)
    return out


def _timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


class EventDecoder:
    """TodoListV2 日志解码器"""

    def __init__(self) -> None:
        self._codec = ABICodec(registry)
        self._topic_map = TOPIC_TO_EVENT_ABI

    def decode(self, raw_log: Mapping[str, Any], chain_id: int) -> ChainEvent:
        """解码单条日志

        Raises:
            DecodeError: 缺少 topics / 区块号，或已知签名的数据无法解码
        """
        try:
            entry = normalize_log(raw_log)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"malformed log: {e}") from e

        if not entry["topics"]:
            raise DecodeError("log has no topics")
        block_number = entry.get("blockNumber")
        if block_number is None:
            raise DecodeError("log has no blockNumber")

        provenance = {
            "chain_id": chain_id,
            "block_number": block_number,
            "log_index": entry["logIndex"],
            "transaction_hash": _hex(entry["transactionHash"]),
        }

        topic0 = entry["topics"][0]
        event_abi = self._topic_map.get(topic0)
        if event_abi is None:
            return UnrecognizedEvent(**provenance, topic=_hex(topic0))

        try:
            decoded = get_event_data(self._codec, event_abi, entry)
            return self._build(event_abi["name"], decoded["args"], provenance)
        except DecodeError:
            raise
        except (ValidationError, OverflowError, OSError) as e:
            raise DecodeError(f"{event_abi['name']} has invalid field values: {e}") from e
        except Exception as e:
            # eth_abi / web3 解码异常类型繁多，统一视为数据格式错误
            raise DecodeError(f"cannot decode {event_abi['name']}: {e}") from e

    def decode_many(
        self,
        raw_logs: Iterable[Mapping[str, Any]],
        chain_id: int,
    ) -> list[ChainEvent]:
        """批量解码并按 (block_number, log_index) 排序，解码失败的日志记录后跳过"""
        events: list[ChainEvent] = []
        for raw_log in raw_logs:
            try:
                events.append(self.decode(raw_log, chain_id))
            except DecodeError as e:
                log.warning(
                    "log_decode_failed",
                    chain_id=chain_id,
                    block_number=raw_log.get("blockNumber"),
                    error=str(e),
                )
        events.sort(key=lambda event: event.position)
        return events

    @staticmethod
    def _build(name: str, args: Mapping[str, Any], provenance: dict[str, Any]) -> ChainEvent:
        common = {
            **provenance,
            "blockchain_id": str(args["taskId"]),
            "owner": args["owner"],
        }
        if name == "TaskCreated":
            return TaskAdded(
                **common,
                description=args["description"],
                created_at=_timestamp(args["timestamp"]),
            )
        if name == "TaskUpdated":
            return TaskUpdated(
                **common,
                description=args["description"],
                updated_at=_timestamp(args["timestamp"]),
            )
        if name == "TaskCompleted":
            return TaskCompleted(**common, completed_at=_timestamp(args["timestamp"]))
        if name == "TaskDeleted":
            return TaskDeleted(**common, deleted_at=_timestamp(args["timestamp"]))
        if name == "TaskRestored":
            return TaskRestored(**common, restored_at=_timestamp(args["timestamp"]))
        raise DecodeError(f"no domain mapping for event {name}")
