"""CLI 测试 -- python -m chainmirror.sync 的命令分发与退出码

main() 内部使用 asyncio.run，因此这里的测试都是同步函数。
"""

import asyncio

import pytest
import structlog
from chainmirror.chain import ChainRegistry
from chainmirror.core.models import SyncStatus
from chainmirror.core.store import create_store_group, set_mirror_status
from chainmirror.sync import LifecycleManager, SyncConfig
from chainmirror.sync import __main__ as cli


@pytest.fixture
def cli_env(monkeypatch, tmp_db_path, network_config, connection_factory, clock):
    """CLI 使用临时数据库与假链"""
    monkeypatch.setenv("CHAINMIRROR_DB_PATH", str(tmp_db_path))

    async def build_manager() -> LifecycleManager:
        stores = await create_store_group(str(tmp_db_path), clock=clock)
        registry = ChainRegistry([network_config], connection_factory=connection_factory)
        return LifecycleManager(stores, registry, SyncConfig(), clock=clock)

    monkeypatch.setattr(cli, "_build_manager", build_manager)
    return tmp_db_path


def _read(db_path, coro_factory):
    async def _run():
        stores = await create_store_group(str(db_path))
        try:
            return await coro_factory(stores)
        finally:
            await stores.close()

    return asyncio.run(_run())


class TestDispatch:
    def test_no_command(self, capsys):
        assert cli.main([]) == 1
        assert "用法" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert cli.main(["explode"]) == 1
        assert "未知命令: explode" in capsys.readouterr().out

    def test_backfill_requires_integers(self, capsys):
        assert cli.main(["backfill", "31337", "abc"]) == 1
        assert "参数必须为整数" in capsys.readouterr().out

    def test_backfill_argument_count(self, capsys):
        assert cli.main(["backfill", "31337"]) == 1


class TestBackfillCommand:
    def test_backfill_range(self, cli_env, fake_chain, capsys):
        fake_chain.create("一")
        fake_chain.create("二")

        assert cli.main(["backfill", "31337", "1", "2"]) == 0
        out = capsys.readouterr().out
        assert "回填完成" in out
        assert "新建 2" in out

        count = _read(cli_env, lambda stores: stores.mirror_store.count_by_owner(fake_chain.tasks["1"].owner))
        assert count == 2

    def test_backfill_invalid_range(self, cli_env, capsys):
        assert cli.main(["backfill", "31337", "5", "1"]) == 1
        assert "回填失败" in capsys.readouterr().out

    def test_backfill_unknown_network(self, cli_env, capsys):
        assert cli.main(["backfill", "1", "0", "10"]) == 1
        assert "回填失败" in capsys.readouterr().out

    def test_backfill_logs_bound_to_command_and_chain(self, cli_env, monkeypatch, fake_chain):
        """回填期间的日志上下文带 command 与 chain_id，结束后不残留"""
        seen: dict = {}
        build = cli._build_manager

        async def build_and_watch() -> LifecycleManager:
            manager = await build()
            backfill = manager.service.backfill

            async def watched(*args, **kwargs):
                seen.update(structlog.contextvars.get_contextvars())
                return await backfill(*args, **kwargs)

            manager.service.backfill = watched
            return manager

        monkeypatch.setattr(cli, "_build_manager", build_and_watch)
        fake_chain.create("一")

        assert cli.main(["backfill", "31337", "1"]) == 0
        assert seen["command"] == "backfill"
        assert seen["chain_id"] == 31337
        assert "command" not in structlog.contextvars.get_contextvars()


class TestPurgeCommand:
    def test_purge_expired_errors(self, cli_env, fake_chain, clock, capsys):
        blockchain_id, _ = fake_chain.create("会过期")
        assert cli.main(["backfill", "31337", "1"]) == 0

        _read(
            cli_env,
            lambda stores: set_mirror_status(stores, 31337, blockchain_id, SyncStatus.ERROR, clock()),
        )
        clock.advance(hours=25)
        capsys.readouterr()

        assert cli.main(["purge-errors"]) == 0
        assert "已清理 1 条过期 error 镜像" in capsys.readouterr().out

    def test_purge_nothing(self, cli_env, capsys):
        assert cli.main(["purge-errors"]) == 0
        assert "已清理 0 条过期 error 镜像" in capsys.readouterr().out
