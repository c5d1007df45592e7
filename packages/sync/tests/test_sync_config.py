"""SyncConfig 环境变量加载测试"""

import pytest
from chainmirror.sync import SyncConfig, load_sync_config
from chainmirror.sync.config import _ENV_MAPPING


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for env_var in _ENV_MAPPING:
        monkeypatch.delenv(env_var, raising=False)


def test_defaults():
    assert load_sync_config() == SyncConfig()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CHAINMIRROR_POLL_INTERVAL_S", "0.5")
    monkeypatch.setenv("CHAINMIRROR_WORKER_COUNT", "8")

    config = load_sync_config()
    assert config.poll_interval_s == 0.5
    assert config.worker_count == 8


@pytest.mark.parametrize("value", ["abc", "0", "-3", "1.5"])
def test_invalid_values_fall_back(monkeypatch, value):
    """非法值回退默认值，不阻塞启动"""
    monkeypatch.setenv("CHAINMIRROR_WORKER_COUNT", value)
    assert load_sync_config().worker_count == 4
