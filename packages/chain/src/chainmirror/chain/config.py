"""NetworkConfig -- 网络配置加载

从环境变量 + 部署文件加载每条链的 RPC、合约地址与确认块数。
缺少 RPC 或合约地址的网络记录警告后跳过，不阻塞启动。
"""

import json
import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from chainmirror.core.config import get_deployments_dir
from chainmirror.core.models import ADDRESS_PATTERN

log = structlog.get_logger()

# 各链默认确认块数（未知链取 12）
DEFAULT_CONFIRMATIONS: dict[int, int] = {
    1: 12,  # Ethereum Mainnet
    11155111: 12,  # Sepolia
    137: 128,  # Polygon
    80001: 128,  # Polygon Mumbai
    42161: 1,  # Arbitrum One
    421613: 1,  # Arbitrum Goerli
    10: 1,  # Optimism
    11155420: 1,  # Optimism Sepolia
    31337: 1,  # Hardhat
}
_FALLBACK_CONFIRMATIONS = 12


class NetworkPreset(BaseModel):
    """内置网络预设"""

    name: str
    chain_id: int
    env_prefix: str = Field(description="合约地址 / 确认块数环境变量前缀")
    rpc_env: str = Field(description="主 RPC 环境变量名，备用为 <rpc_env>_BACKUP")
    default_rpc: str = ""


NETWORK_PRESETS: list[NetworkPreset] = [
    NetworkPreset(
        name="localhost",
        chain_id=31337,
        env_prefix="LOCALHOST",
        rpc_env="LOCALHOST_RPC",
        default_rpc="http://127.0.0.1:8545",
    ),
    NetworkPreset(
        name="sepolia",
        chain_id=11155111,
        env_prefix="SEPOLIA",
        rpc_env="ETHEREUM_SEPOLIA_RPC",
    ),
    NetworkPreset(
        name="polygonMumbai",
        chain_id=80001,
        env_prefix="POLYGON_MUMBAI",
        rpc_env="POLYGON_MUMBAI_RPC",
    ),
    NetworkPreset(
        name="arbitrumGoerli",
        chain_id=421613,
        env_prefix="ARBITRUM_GOERLI",
        rpc_env="ARBITRUM_GOERLI_RPC",
    ),
    NetworkPreset(
        name="optimismSepolia",
        chain_id=11155420,
        env_prefix="OPTIMISM_SEPOLIA",
        rpc_env="OPTIMISM_SEPOLIA_RPC",
    ),
]


class NetworkConfig(BaseModel):
    """单条链的连接配置"""

    name: str
    chain_id: int
    rpc_url: str = Field(description="主 RPC 地址")
    rpc_backup_url: str = Field(default="", description="备用 RPC 地址，为空表示无备用")
    contract_address: str = Field(pattern=ADDRESS_PATTERN.pattern)
    confirmations: int = Field(default=_FALLBACK_CONFIRMATIONS, ge=1)
    start_block: int = Field(default=0, ge=0, description="监听器无游标时的起始区块")


def default_confirmations(chain_id: int) -> int:
    """按链 ID 返回默认确认块数"""
    return DEFAULT_CONFIRMATIONS.get(chain_id, _FALLBACK_CONFIRMATIONS)


def load_deployment_address(chain_id: int, deployments_dir: Path | None = None) -> str | None:
    """从 deployment-<chainId>.json 读取合约地址

    兼容多种部署文件格式：proxy / todoListAddress / contracts.TodoListV2.address。
    """
    path = (deployments_dir or get_deployments_dir()) / f"deployment-{chain_id}.json"
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.error("deployment_file_unreadable", chain_id=chain_id, path=str(path), error=str(e))
        return None

    contracts = data.get("contracts") or {}
    return (
        data.get("proxy")
        or data.get("todoListAddress")
        or (contracts.get("TodoListV2") or {}).get("address")
        or (contracts.get("TodoList") or {}).get("address")
    )


def _int_env(var: str, default: int) -> int:
    val = os.environ.get(var)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        log.warning("invalid_int_config", env_var=var, value=val, fallback=default)
        # 使用默认值，不阻塞启动
        return default


def load_network_configs(deployments_dir: Path | None = None) -> list[NetworkConfig]:
    """从环境变量加载所有可用网络配置

    环境变量映射（以 sepolia 为例）:
        ETHEREUM_SEPOLIA_RPC -> rpc_url
        ETHEREUM_SEPOLIA_RPC_BACKUP -> rpc_backup_url
        SEPOLIA_CONTRACT_ADDRESS -> contract_address（缺省读部署文件）
        CONFIRMATION_BLOCKS_SEPOLIA -> confirmations
        SEPOLIA_START_BLOCK -> start_block

    Returns:
        已配置完整的网络列表
    """
    configs: list[NetworkConfig] = []
    for preset in NETWORK_PRESETS:
        rpc_url = os.environ.get(preset.rpc_env, preset.default_rpc)
        if not rpc_url:
            log.info("network_not_configured", network=preset.name, reason="no_rpc_url")
            continue

        address = os.environ.get(f"{preset.env_prefix}_CONTRACT_ADDRESS") or load_deployment_address(
            preset.chain_id, deployments_dir
        )
        if not address:
            log.warning(
                "network_not_configured",
                network=preset.name,
                chain_id=preset.chain_id,
                reason="no_contract_address",
            )
            continue

        if not ADDRESS_PATTERN.match(address):
            log.warning(
                "network_not_configured",
                network=preset.name,
                chain_id=preset.chain_id,
                reason="invalid_contract_address",
                value=address,
            )
            continue

        confirmations = _int_env(
            f"CONFIRMATION_BLOCKS_{preset.env_prefix}",
            default_confirmations(preset.chain_id),
        )
        configs.append(
            NetworkConfig(
                name=preset.name,
                chain_id=preset.chain_id,
                rpc_url=rpc_url,
                rpc_backup_url=os.environ.get(f"{preset.rpc_env}_BACKUP", ""),
                contract_address=address,
                confirmations=max(confirmations, 1),
                start_block=max(_int_env(f"{preset.env_prefix}_START_BLOCK", 0), 0),
            )
        )
    return configs
