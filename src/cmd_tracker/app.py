"""cmd-tracker 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import Config, get_config
from .history import load_history, save_history
from .host import LocalHost
from .runtime.process_runner import ProcessRunner
from .server import create_server
from .signal_manager import SignalManager
from .supervisor import Supervisor

__all__ = ["run_server", "main"]

logger = logging.getLogger(__name__)


def build_supervisor(config: Config) -> tuple[Supervisor, LocalHost]:
    """按配置组装监督器与本地宿主，并恢复历史记录。"""
    supervisor = Supervisor(log_dir=config.log_dir, interval=config.poll_interval)
    host = LocalHost(supervisor, ProcessRunner(shell=config.shell))

    if config.history_file is not None:
        restored = supervisor.restore(load_history(config.history_file))
        if restored:
            logger.info(f"Restored {restored} command(s) from {config.history_file}")
    return supervisor, host


def persist_history(supervisor: Supervisor, config: Config) -> None:
    """保存历史记录（失败只记录警告）。"""
    if config.history_file is None:
        return
    try:
        saved = save_history(
            supervisor.store.list(), config.history_file, limit=config.history_limit
        )
        logger.info(f"Saved {saved} command(s) to {config.history_file}")
    except OSError as e:
        logger.warning(f"Failed to save history to {config.history_file}: {e}")


async def run_server() -> None:
    """运行 MCP Server。

    并发任务架构：
    - server_task: 运行 MCP server (stdio)
    - shutdown_watcher: 监听 shutdown 事件并取消 server_task

    退出时：刷写并终止所有命令、停止轮询、保存历史。
    """
    config = get_config()
    logger.info(f"Starting cmd-tracker MCP Server: {config}")

    supervisor, host = build_supervisor(config)
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown():
        logger.info("Shutdown callback triggered")
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
        except Exception as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(supervisor=supervisor, on_shutdown=on_shutdown)
    server = create_server(supervisor)

    async def _run_server_impl():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
        logger.debug("MCP server completed normally")

    async def _watch_shutdown():
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()
        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        await signal_manager.stop()

        await host.aclose()
        supervisor.shutdown()
        persist_history(supervisor, config)

        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)  # 128 + SIGINT(2)


def setup_logging(config: Config) -> None:
    """配置日志输出。

    - LOG_DEBUG 模式：DEBUG 级别写入临时文件
    - 默认：INFO 级别输出到 stderr（stdout 是 MCP 通道）
    """
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(fmt)

    # 第三方库保持 WARNING，只对 cmd_tracker 命名空间启用详细日志
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    logging.getLogger("cmd_tracker").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    setup_logging(get_config())
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
