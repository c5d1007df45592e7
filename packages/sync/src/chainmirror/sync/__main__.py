"""CLI 入口模块 -- python -m chainmirror.sync <command>

支持的命令：
  run                                  启动实时同步，直到 SIGINT / SIGTERM
  backfill <chainId> <fromBlock> [toBlock]  回填指定区块区间
  purge-errors                         清理过期 error 镜像
"""

import asyncio
import signal
import sys

import structlog

from chainmirror.chain import ChainRegistry, load_network_configs
from chainmirror.core.config import get_db_path
from chainmirror.core.exceptions import MirrorError
from chainmirror.core.logging_config import setup_logging
from chainmirror.core.store import create_store_group

from .config import load_sync_config
from .lifecycle import LifecycleManager

_USAGE = """用法: python -m chainmirror.sync <command>
命令:
  run                                       启动实时同步
  backfill <chainId> <fromBlock> [toBlock]  回填指定区块区间
  purge-errors                              清理过期 error 镜像"""


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口，返回进程退出码"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(_USAGE)
        return 1

    setup_logging(service="chainmirror-sync")
    command, rest = args[0], args[1:]
    with structlog.contextvars.bound_contextvars(command=command):
        return _dispatch(command, rest)


def _dispatch(command: str, rest: list[str]) -> int:
    if command == "run":
        asyncio.run(run_engine())
        return 0
    if command == "backfill":
        if len(rest) not in (2, 3):
            print("用法: python -m chainmirror.sync backfill <chainId> <fromBlock> [toBlock]")
            return 1
        try:
            numbers = [int(value) for value in rest]
        except ValueError:
            print(f"参数必须为整数: {' '.join(rest)}")
            return 1
        return asyncio.run(run_backfill(*numbers))
    if command == "purge-errors":
        return asyncio.run(run_purge())

    print(f"未知命令: {command}")
    print("可用命令: run, backfill, purge-errors")
    return 1


async def _build_manager() -> LifecycleManager:
    config = load_sync_config()
    stores = await create_store_group(get_db_path())
    registry = ChainRegistry(
        load_network_configs(),
        timeout_s=config.rpc_timeout_s,
        retry_base_delay_s=config.reconnect_base_delay_s,
        retry_max_delay_s=config.reconnect_max_delay_s,
    )
    return LifecycleManager(stores, registry, config)


async def run_engine() -> None:
    """启动同步引擎并阻塞到收到终止信号"""
    manager = await _build_manager()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await manager.start()
        print(f"已启动网络: {manager.registry.available_chain_ids()}")
        await stop_event.wait()
        print("收到终止信号，正在关闭...")
    finally:
        await manager.shutdown()
        await manager.stores.close()


async def run_backfill(chain_id: int, from_block: int, to_block: int | None = None) -> int:
    """执行一次区间回填"""
    structlog.contextvars.bind_contextvars(chain_id=chain_id)
    manager = await _build_manager()
    print(f"数据库路径: {get_db_path()}")
    print(f"开始回填 chain {chain_id}: {from_block} -> {to_block if to_block is not None else from_block}")

    try:
        await manager.start(listen=False)
        report = await manager.service.backfill(chain_id, from_block, to_block)
    except (MirrorError, ValueError) as e:
        print(f"回填失败: {e}")
        return 1
    finally:
        await manager.shutdown()
        await manager.stores.close()

    print(
        f"回填完成: 日志 {report.logs_seen} 条，新建 {report.created}，更新 {report.updated}，"
        f"未变化 {report.unchanged}，失败 {report.failed}"
    )
    return 0 if report.failed == 0 else 2


async def run_purge() -> int:
    """执行一次过期 error 镜像清理"""
    manager = await _build_manager()
    try:
        purged = await manager.service.purge_errors()
    finally:
        await manager.stores.close()
    print(f"已清理 {purged} 条过期 error 镜像")
    return 0


if __name__ == "__main__":
    sys.exit(main())
