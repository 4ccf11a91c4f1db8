"""命令记录的数据模型。

- Item: 一次命令调用的记录（注册表独占）
- ProcessStatus: 宿主进程状态探测结果
- SpawnNotification: 宿主派发层发来的启动通知
- CommandRow: 视图层使用的渲染行
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Hashable, Protocol

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from .handlers import CommandHandler

__all__ = [
    "Item",
    "ProcessState",
    "ProcessStatus",
    "OutputSource",
    "ProcessHost",
    "SpawnNotification",
    "CommandRow",
    "make_item_id",
]


def make_item_id() -> str:
    """生成 12 位十六进制的条目 ID。"""
    return uuid.uuid4().hex[:12]


class ProcessState(str, Enum):
    """进程状态。"""

    RUNNING = "running"
    EXITED = "exited"
    SIGNALED = "signaled"


@dataclass(frozen=True)
class ProcessStatus:
    """进程状态快照。

    Attributes:
        state: 运行中 / 已退出 / 被信号终止
        code: 退出码（exited）或信号编号（signaled），运行中为 None
    """

    state: ProcessState = ProcessState.RUNNING
    code: int | None = None

    @property
    def terminal(self) -> bool:
        """进程是否已到达终止状态。"""
        return self.state is not ProcessState.RUNNING

    @classmethod
    def running(cls) -> "ProcessStatus":
        return cls(ProcessState.RUNNING)

    @classmethod
    def exited(cls, code: int) -> "ProcessStatus":
        return cls(ProcessState.EXITED, code)

    @classmethod
    def signaled(cls, signum: int) -> "ProcessStatus":
        return cls(ProcessState.SIGNALED, signum)


class OutputSource(Protocol):
    """进程实时输出流。

    只要求能从任意偏移读取已产生的字节。
    """

    def read_from(self, offset: int) -> bytes:
        ...


class ProcessHost(Protocol):
    """宿主侧进程控制接口（出站）。"""

    def request_termination(self, process_handle: Hashable) -> None:
        ...


@dataclass
class Item:
    """一次被追踪的命令调用。

    Attributes:
        name: 命令行文本
        directory: 工作目录（创建后不可变）
        start_time: 启动时间（创建后不可变）
        handler: 可重新执行该命令的处理器（可为空）
        provenance: 启动来源（shell / compile ...）
        item_id: 注册表键
        end_time: 结束时间，存活期间为 None，只设置一次
        exit_status: 退出状态，仅在 end_time 设置后有意义
        output_cursor: 已刷写到日志的输出偏移（单调不减）
        log_path: 输出日志文件路径
    """

    name: str
    directory: str
    start_time: datetime = field(default_factory=datetime.now)
    handler: "CommandHandler | None" = None
    provenance: str = "shell"
    item_id: str = field(default_factory=make_item_id)
    end_time: datetime | None = None
    exit_status: int | None = None
    output_cursor: int = 0
    log_path: Path | None = None

    @property
    def is_live(self) -> bool:
        """是否仍在轮询中。"""
        return self.end_time is None

    def __repr__(self) -> str:
        status = "live" if self.is_live else f"exit={self.exit_status}"
        return f"Item(id={self.item_id}, name={self.name!r}, {status})"


@dataclass(frozen=True)
class SpawnNotification:
    """宿主派发层的启动通知。

    Attributes:
        name: 命令行文本
        directory: 工作目录
        output: 实时输出流（宿主拆除后可能不可用）
        process_handle: 进程句柄（用于去重与终止）
        status_probe: 无参调用，返回当前 ProcessStatus
        provenance: 启动来源，用于解析重新执行处理器
    """

    name: str
    directory: str
    output: OutputSource | None
    process_handle: Hashable
    status_probe: Callable[[], ProcessStatus]
    provenance: str = "shell"


class CommandRow(BaseModel):
    """列表视图中的一行。"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    command: str
    directory: str
    started: str
    duration: str
    exit: str
    live: bool
    log_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()
