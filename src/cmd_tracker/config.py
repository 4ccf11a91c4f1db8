"""CMT 环境变量配置管理。

环境变量:
    CMT_LOG_DIR: 命令输出日志目录
        - 默认: <系统临时目录>/cmd-tracker

    CMT_POLL_INTERVAL: 轮询周期（秒）
        - 默认 1.0，限制在 0.1-60 秒范围

    CMT_HISTORY_FILE: 历史记录文件
        - 默认: <CMT_LOG_DIR>/history.json
        - off/none/false = 禁用历史记录

    CMT_HISTORY_LIMIT: 历史记录最多保存的条目数
        - 默认 500

    CMT_SHELL: 执行命令使用的 shell
        - 默认: $SHELL 或 /bin/sh

    CMT_DEBUG: 调试模式
        - true/1/yes = 开启 (MCP 响应包含统计信息)
        - false/0/no = 关闭 (默认)

    CMT_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    CMT_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 终止运行中的命令（无运行中命令则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先终止命令，第二次才退出

    CMT_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制退出
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode"]


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只终止运行中的命令，不退出（如果没有运行中命令则退出）
    - EXIT: 直接退出进程
    - CANCEL_THEN_EXIT: 先终止命令，第二次 SIGINT 才退出
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式，无效值返回 CANCEL。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_HISTORY_LIMIT = 500

_DISABLED_VALUES = ("off", "none", "false", "0", "no")


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """解析浮点数环境变量并限制范围，无效值返回默认值。"""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_int(value: str | None, default: int, low: int = 0) -> int:
    if not value:
        return default
    try:
        return max(low, int(value))
    except ValueError:
        return default


def _default_log_dir() -> Path:
    return Path(tempfile.gettempdir()) / "cmd-tracker"


def _parse_history_file(value: str | None, log_dir: Path) -> Path | None:
    """解析历史记录文件路径，None 表示禁用。"""
    if value is None or not value.strip():
        return log_dir / "history.json"
    if value.strip().lower() in _DISABLED_VALUES:
        return None
    return Path(value.strip()).expanduser()


@dataclass
class Config:
    """CMT 配置。

    Attributes:
        log_dir: 命令输出日志目录
        poll_interval: 轮询周期（秒）
        history_file: 历史记录文件，None 表示禁用
        history_limit: 历史记录最多保存的条目数
        shell: 执行命令使用的 shell，None 表示使用默认值
        debug: 调试模式（响应包含统计信息）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    log_dir: Path = _default_log_dir()
    poll_interval: float = DEFAULT_POLL_INTERVAL
    history_file: Path | None = None
    history_limit: int = DEFAULT_HISTORY_LIMIT
    shell: str | None = None
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(log_dir={self.log_dir}, "
            f"poll_interval={self.poll_interval}, "
            f"history_file={self.history_file}, "
            f"history_limit={self.history_limit}, "
            f"shell={self.shell or 'default'}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成调试日志文件路径（临时目录下，带时间戳）。"""
    log_dir = Path(tempfile.gettempdir()) / "cmd-tracker"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"cmt_debug_{timestamp}.log"

    return str(log_file.resolve())


def _parse_sigint_mode(value: str | None) -> SigintMode:
    """解析 SIGINT 模式环境变量。"""
    if not value:
        return SigintMode.CANCEL
    return SigintMode.from_string(value)


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CMT_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    log_dir_value = os.environ.get("CMT_LOG_DIR")
    log_dir = Path(log_dir_value).expanduser() if log_dir_value else _default_log_dir()

    return Config(
        log_dir=log_dir,
        poll_interval=_parse_float(
            os.environ.get("CMT_POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, 0.1, 60.0
        ),
        history_file=_parse_history_file(os.environ.get("CMT_HISTORY_FILE"), log_dir),
        history_limit=_parse_int(
            os.environ.get("CMT_HISTORY_LIMIT"), DEFAULT_HISTORY_LIMIT
        ),
        shell=os.environ.get("CMT_SHELL") or None,
        debug=_parse_bool(os.environ.get("CMT_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=_parse_sigint_mode(os.environ.get("CMT_SIGINT_MODE")),
        sigint_double_tap_window=_parse_float(
            os.environ.get("CMT_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
