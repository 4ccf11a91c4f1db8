"""cmd-tracker 异常定义。

注册表内部的不一致（重复注册、轮询任务失去绑定、日志写入失败）都在
内部自愈，不会抛出；只有用户针对不存在目标发起的操作才会抛出这里的异常。
"""

from __future__ import annotations

__all__ = [
    "CommandTrackerError",
    "UnknownItemError",
    "NoLiveProcessError",
    "NoBufferError",
    "NoLogError",
    "NoHandlerError",
]


class CommandTrackerError(Exception):
    """所有 cmd-tracker 用户可见错误的基类。"""

    def __init__(self, message: str, item_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_id = item_id


class UnknownItemError(CommandTrackerError):
    """注册表中不存在该条目。"""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"No command with id '{item_id}'", item_id)


class NoLiveProcessError(CommandTrackerError):
    """条目没有对应的存活进程。"""

    def __init__(self, item_id: str, name: str) -> None:
        super().__init__(f"No live process for command '{name}' ({item_id})", item_id)


class NoBufferError(CommandTrackerError):
    """条目的实时输出流不可用。"""

    def __init__(self, item_id: str, name: str) -> None:
        super().__init__(f"No output buffer for command '{name}' ({item_id})", item_id)


class NoLogError(CommandTrackerError):
    """条目的日志文件不存在。"""

    def __init__(self, item_id: str, name: str) -> None:
        super().__init__(f"No log file for command '{name}' ({item_id})", item_id)


class NoHandlerError(CommandTrackerError):
    """条目没有可用的重新执行处理器。"""

    def __init__(self, item_id: str, name: str) -> None:
        super().__init__(f"Command '{name}' ({item_id}) cannot be re-run", item_id)
