"""信号管理模块。

把 OS 信号转换为对被追踪命令的操作：
- SIGINT: 终止运行中的命令（没有运行中命令时退出）
- SIGTERM: 终止所有命令并优雅退出

支持的配置：
- CMT_SIGINT_MODE: cancel | exit | cancel_then_exit
- CMT_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import SigintMode, get_config
from .supervisor import Supervisor

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    Example:
        ```python
        signal_manager = SignalManager(supervisor, on_shutdown=close_stdin)

        await signal_manager.start()
        try:
            await server.run()
        finally:
            await signal_manager.stop()
        ```

    Attributes:
        supervisor: 命令监督器
        sigint_mode: SIGINT 处理模式
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        supervisor: Supervisor,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            supervisor: 命令监督器
            sigint_mode: SIGINT 处理模式（默认从配置读取）
            double_tap_window: 双击退出窗口时间（默认从配置读取）
            on_shutdown: 关闭时的回调函数
        """
        self.supervisor = supervisor

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """安装 SIGINT / SIGTERM 处理器，必须在事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
        else:
            signal.signal(signal.SIGINT, lambda sig, frame: self._handle_sigint())

        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )

    async def stop(self) -> None:
        """移除信号处理器。"""
        if not self._running:
            return
        self._running = False

        try:
            if sys.platform != "win32" and self._loop:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            elif sys.platform == "win32":
                signal.signal(signal.SIGINT, signal.default_int_handler)
        except Exception as e:
            logger.debug(f"Error removing signal handlers: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _kill_live(self, reason: str) -> int:
        """终止所有运行中的命令。"""
        if not self.supervisor.has_live():
            return 0
        count = self.supervisor.kill_all()
        logger.info(f"{reason}: terminating {count} live command(s)")
        return count

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        - 双击窗口内且已请求关闭：强制退出
        - EXIT 模式：请求关闭
        - 有运行中命令：终止命令（CANCEL_THEN_EXIT 模式同时进入待退出状态）
        - 没有运行中命令：请求关闭
        """
        now = time.time()
        since_last = now - self._last_sigint_time
        self._last_sigint_time = now

        if since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()
            return

        if self._kill_live(f"SIGINT received (mode={self.sigint_mode.value})"):
            if self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
                logger.info(
                    f"Press Ctrl+C again within {self.double_tap_window}s to exit."
                )
                self._shutdown_requested = True
            return

        logger.info(
            f"SIGINT received (mode={self.sigint_mode.value}), "
            f"no live commands, requesting shutdown"
        )
        self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """SIGTERM：终止所有命令并请求关闭。"""
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._kill_live("SIGTERM")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _force_shutdown(self) -> None:
        """强制退出：实际退出由 run_server() 在清理后执行。"""
        self._force_exit = True
        self._kill_live("Force shutdown")
        self._request_shutdown()

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._kill_live("Shutdown")
        self._request_shutdown()
