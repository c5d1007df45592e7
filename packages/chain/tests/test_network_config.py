"""网络配置加载测试"""

import json

import pytest
from chainmirror.chain import (
    NETWORK_PRESETS,
    default_confirmations,
    load_deployment_address,
    load_network_configs,
)

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """清除所有网络相关环境变量"""
    for preset in NETWORK_PRESETS:
        for var in (
            preset.rpc_env,
            f"{preset.rpc_env}_BACKUP",
            f"{preset.env_prefix}_CONTRACT_ADDRESS",
            f"CONFIRMATION_BLOCKS_{preset.env_prefix}",
            f"{preset.env_prefix}_START_BLOCK",
        ):
            monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_confirmation_table(self):
        assert default_confirmations(1) == 12
        assert default_confirmations(137) == 128
        assert default_confirmations(42161) == 1
        assert default_confirmations(31337) == 1
        assert default_confirmations(999999) == 12


class TestDeploymentFile:
    @pytest.mark.parametrize(
        "content",
        [
            {"proxy": CONTRACT},
            {"todoListAddress": CONTRACT},
            {"contracts": {"TodoListV2": {"address": CONTRACT}}},
        ],
    )
    def test_formats(self, tmp_path, content):
        (tmp_path / "deployment-31337.json").write_text(json.dumps(content))
        assert load_deployment_address(31337, tmp_path) == CONTRACT

    def test_missing_file(self, tmp_path):
        assert load_deployment_address(31337, tmp_path) is None

    def test_unreadable_file(self, tmp_path):
        (tmp_path / "deployment-31337.json").write_text("{not json")
        assert load_deployment_address(31337, tmp_path) is None


class TestLoadNetworkConfigs:
    def test_no_contract_address_skips_network(self, tmp_path):
        """localhost 有默认 RPC，但没有合约地址时被跳过"""
        assert load_network_configs(tmp_path) == []

    def test_localhost_from_deployment_file(self, tmp_path):
        (tmp_path / "deployment-31337.json").write_text(json.dumps({"proxy": CONTRACT}))
        configs = load_network_configs(tmp_path)
        assert len(configs) == 1
        config = configs[0]
        assert config.name == "localhost"
        assert config.chain_id == 31337
        assert config.rpc_url == "http://127.0.0.1:8545"
        assert config.contract_address == CONTRACT
        assert config.confirmations == 1

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ETHEREUM_SEPOLIA_RPC", "https://sepolia.example")
        monkeypatch.setenv("ETHEREUM_SEPOLIA_RPC_BACKUP", "https://backup.example")
        monkeypatch.setenv("SEPOLIA_CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("CONFIRMATION_BLOCKS_SEPOLIA", "3")
        monkeypatch.setenv("SEPOLIA_START_BLOCK", "4500000")

        configs = {c.name: c for c in load_network_configs(tmp_path)}
        sepolia = configs["sepolia"]
        assert sepolia.chain_id == 11155111
        assert sepolia.rpc_backup_url == "https://backup.example"
        assert sepolia.confirmations == 3
        assert sepolia.start_block == 4500000

    def test_invalid_values_fall_back(self, tmp_path, monkeypatch):
        """非法确认数回退默认值，非法地址跳过网络"""
        monkeypatch.setenv("ETHEREUM_SEPOLIA_RPC", "https://sepolia.example")
        monkeypatch.setenv("SEPOLIA_CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("CONFIRMATION_BLOCKS_SEPOLIA", "abc")
        monkeypatch.setenv("LOCALHOST_CONTRACT_ADDRESS", "0xnot-an-address")

        configs = {c.name: c for c in load_network_configs(tmp_path)}
        assert "localhost" not in configs
        assert configs["sepolia"].confirmations == 12

    def test_zero_confirmations_clamped(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOCALHOST_CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("CONFIRMATION_BLOCKS_LOCALHOST", "0")
        configs = load_network_configs(tmp_path)
        assert configs[0].confirmations == 1
