"""SignalManager 模块测试。

测试信号管理器的基本功能：
- 信号处理策略
- 双击退出
- 运行中命令的终止请求
"""

from __future__ import annotations

import asyncio
import os
import sys
from unittest import mock

import pytest

from cmd_tracker.config import SigintMode, reload_config
from cmd_tracker.signal_manager import SignalManager
from cmd_tracker.supervisor import Supervisor

from conftest import FakeHost, FakeProcess, notify_spawn


def make_manager(supervisor: Supervisor, **kwargs) -> SignalManager:
    """创建带模拟事件循环的信号管理器。"""
    manager = SignalManager(supervisor, **kwargs)
    manager._shutdown_event = asyncio.Event()
    manager._loop = mock.MagicMock()
    return manager


class TestSigintMode:
    """SigintMode 枚举测试。"""

    def test_from_string_valid(self):
        assert SigintMode.from_string("cancel") == SigintMode.CANCEL
        assert SigintMode.from_string("exit") == SigintMode.EXIT
        assert SigintMode.from_string("cancel_then_exit") == SigintMode.CANCEL_THEN_EXIT

    def test_from_string_case_insensitive(self):
        assert SigintMode.from_string("Cancel_Then_Exit") == SigintMode.CANCEL_THEN_EXIT

    def test_from_string_invalid(self):
        """无效字符串返回默认值 CANCEL。"""
        assert SigintMode.from_string("invalid") == SigintMode.CANCEL
        assert SigintMode.from_string("") == SigintMode.CANCEL


class TestSignalManagerInit:
    """SignalManager 初始化测试。"""

    def test_init_with_defaults(self, supervisor: Supervisor):
        env = {k: v for k, v in os.environ.items() if not k.startswith("CMT_SIGINT")}
        with mock.patch.dict(os.environ, env, clear=True):
            reload_config()
            manager = SignalManager(supervisor)

        assert manager.supervisor is supervisor
        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 1.0

    def test_init_with_custom_values(self, supervisor: Supervisor):
        manager = SignalManager(
            supervisor,
            sigint_mode=SigintMode.EXIT,
            double_tap_window=2.0,
        )

        assert manager.sigint_mode == SigintMode.EXIT
        assert manager.double_tap_window == 2.0


class TestSigintCancel:
    """CANCEL 模式测试。"""

    def test_sigint_with_live_commands_kills_them(
        self, supervisor: Supervisor, host: FakeHost
    ):
        proc = FakeProcess()
        notify_spawn(supervisor, proc)
        manager = make_manager(supervisor, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert host.terminated == [proc]
        assert manager.is_shutdown_requested is False

    def test_sigint_without_live_commands_shuts_down(self, supervisor: Supervisor):
        manager = make_manager(supervisor, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_called_once()

    def test_finished_commands_do_not_block_shutdown(self, supervisor: Supervisor):
        proc = FakeProcess()
        notify_spawn(supervisor, proc)
        proc.exit(0)
        supervisor.scheduler.tick(supervisor.scheduler.get(proc))
        manager = make_manager(supervisor, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True


class TestSigintExit:
    """EXIT 模式测试。"""

    def test_sigint_always_shuts_down(self, supervisor: Supervisor, host: FakeHost):
        notify_spawn(supervisor, FakeProcess())
        manager = make_manager(supervisor, sigint_mode=SigintMode.EXIT)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        assert host.terminated == []


class TestSigintCancelThenExit:
    """CANCEL_THEN_EXIT 模式测试。"""

    def test_first_kills_second_exits(self, supervisor: Supervisor, host: FakeHost):
        proc = FakeProcess()
        notify_spawn(supervisor, proc)
        manager = make_manager(
            supervisor,
            sigint_mode=SigintMode.CANCEL_THEN_EXIT,
            double_tap_window=5.0,
        )

        manager._handle_sigint()

        assert host.terminated == [proc]
        assert manager._shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_not_called()

        manager._handle_sigint()

        assert manager.is_force_exit is True
        manager._loop.call_soon_threadsafe.assert_called()


class TestDoubleTap:
    """双击退出测试。"""

    def test_double_tap_forces_exit(self, supervisor: Supervisor):
        manager = make_manager(
            supervisor,
            sigint_mode=SigintMode.CANCEL,
            double_tap_window=1.0,
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True

    def test_outside_window_does_not_force(self, supervisor: Supervisor):
        manager = make_manager(supervisor, double_tap_window=1.0)

        manager._handle_sigint()
        # 模拟第一次 SIGINT 发生在 5 秒前
        manager._last_sigint_time -= 5.0
        manager._handle_sigint()

        assert manager.is_force_exit is False


class TestSigterm:
    """SIGTERM 测试。"""

    def test_sigterm_kills_all_and_shuts_down(self, supervisor: Supervisor, host: FakeHost):
        a, b = FakeProcess(), FakeProcess()
        notify_spawn(supervisor, a)
        notify_spawn(supervisor, b)
        manager = make_manager(supervisor)

        manager._handle_sigterm()

        assert len(host.terminated) == 2
        assert manager.is_shutdown_requested is True


class TestCallbacks:
    """回调测试。"""

    def test_on_shutdown_callback(self, supervisor: Supervisor):
        callback = mock.MagicMock()
        manager = make_manager(
            supervisor, sigint_mode=SigintMode.EXIT, on_shutdown=callback
        )

        manager._handle_sigint()

        callback.assert_called_once()

    def test_callback_error_is_swallowed(self, supervisor: Supervisor):
        manager = make_manager(
            supervisor,
            sigint_mode=SigintMode.EXIT,
            on_shutdown=mock.MagicMock(side_effect=RuntimeError("boom")),
        )

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True

    def test_request_graceful_shutdown(self, supervisor: Supervisor, host: FakeHost):
        proc = FakeProcess()
        notify_spawn(supervisor, proc)
        manager = make_manager(supervisor)

        manager.request_graceful_shutdown()

        assert host.terminated == [proc]
        assert manager.is_shutdown_requested is True


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestStartStop:
    """启动/停止测试（仅 POSIX）。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, supervisor: Supervisor):
        manager = SignalManager(supervisor)

        await manager.start()
        assert manager._running is True
        assert manager._loop is not None

        await manager.stop()
        assert manager._running is False
