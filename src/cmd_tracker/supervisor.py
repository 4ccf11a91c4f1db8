"""命令监督器。

实现宿主的入站事件接口，并组合注册表、轮询调度器与输出刷写：
- on_spawn: 启动通知 -> 登记条目并挂载轮询任务（重复通知去重）
- on_teardown: 宿主拆除输出流前的尽力刷写
- kill: 向宿主发出终止请求（不直接终结条目）
- snapshot: 过滤 + 投影后的列表视图
- log_path / live_output / rerun: 面向用户的查询与操作

注册表内部不一致全部在此自愈；只有针对不存在目标的用户操作才抛出异常。
"""

from __future__ import annotations

import logging
import weakref
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Callable, Hashable, Iterable

import anyio

from .errors import (
    NoBufferError,
    NoHandlerError,
    NoLiveProcessError,
    NoLogError,
    UnknownItemError,
)
from .filters import FilterSet
from .handlers import Launcher, resolve_handler
from .models import CommandRow, Item, ProcessHost, SpawnNotification
from .registry import ItemStore
from .runtime.flusher import OutputFlusher
from .runtime.scheduler import DEFAULT_POLL_INTERVAL, PollBinding, PollScheduler
from .view import project

__all__ = ["Supervisor"]

logger = logging.getLogger(__name__)


# 不可弱引用的句柄最多记住的数量
SEEN_HANDLE_LIMIT = 4096


class _SeenHandles:
    """进程句柄 -> 条目 ID。

    条目终结后仍保留，用于吸收迟到的重复启动通知。可弱引用的句柄随宿主
    释放而消失；其他句柄（字符串、整数 PID 等）只保留最近 limit 个。
    """

    def __init__(self, limit: int = SEEN_HANDLE_LIMIT) -> None:
        self._weak: weakref.WeakKeyDictionary[Hashable, str] = weakref.WeakKeyDictionary()
        self._strong: OrderedDict[Hashable, str] = OrderedDict()
        self._limit = limit

    def get(self, handle: Hashable) -> str | None:
        try:
            return self._weak.get(handle)
        except TypeError:
            return self._strong.get(handle)

    def add(self, handle: Hashable, item_id: str) -> None:
        try:
            self._weak[handle] = item_id
        except TypeError:
            self._strong[handle] = item_id
            self._strong.move_to_end(handle)
            while len(self._strong) > self._limit:
                self._strong.popitem(last=False)

    def __len__(self) -> int:
        return len(self._weak) + len(self._strong)


class Supervisor:
    """命令注册表与轮询监督器。

    Example:
        ```python
        supervisor = Supervisor(log_dir=Path("/tmp/cmd-tracker"))
        item_id = supervisor.on_spawn(SpawnNotification(
            name="make -j8",
            directory="/src",
            output=proc.output,
            process_handle=proc,
            status_probe=proc.poll,
        ))
        rows = supervisor.snapshot(FilterSet([live_filter()]))
        ```

    Attributes:
        store: 条目注册表（独占所有条目）
        scheduler: 轮询调度器（只持有条目 ID）
        host: 宿主进程控制接口
        launcher: 重新执行命令使用的启动器
    """

    def __init__(
        self,
        store: ItemStore | None = None,
        *,
        log_dir: Path | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        flusher: OutputFlusher | None = None,
        host: ProcessHost | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        self.store = store if store is not None else ItemStore(log_dir)
        self.scheduler = PollScheduler(
            self.store,
            flusher or OutputFlusher(),
            interval=interval,
            on_finalized=self._on_finalized,
        )
        self.host = host
        self.launcher = launcher
        self._item_by_handle = _SeenHandles()
        self._handle_by_item: dict[str, Hashable] = {}

    def attach_host(self, host: ProcessHost, launcher: Launcher | None = None) -> None:
        """绑定宿主（终止请求与重新执行）。"""
        self.host = host
        if launcher is not None:
            self.launcher = launcher

    # ----- 入站事件 -----

    def on_spawn(self, notification: SpawnNotification, *, autostart: bool = True) -> str:
        """处理启动通知。

        同一进程句柄的重复通知会被吸收：后到的登记被移除，返回已有条目。

        Args:
            notification: 启动通知
            autostart: 是否由事件循环驱动轮询（测试中可手动 tick）

        Returns:
            条目 ID
        """
        handle = notification.process_handle
        item_id = self.store.register(
            notification.name,
            resolve_handler(notification.provenance),
            notification.directory,
            provenance=notification.provenance,
        )

        existing = self._item_by_handle.get(handle)
        if existing is not None and existing in self.store:
            self.store.discard(item_id)
            logger.debug(
                f"Suppressed duplicate spawn notification for {notification.name!r}, "
                f"keeping {existing}"
            )
            return existing

        self._item_by_handle.add(handle, item_id)
        self._handle_by_item[item_id] = handle
        self.scheduler.start(
            PollBinding(
                item_id=item_id,
                process_handle=handle,
                status_probe=notification.status_probe,
                output=notification.output,
            ),
            autostart=autostart,
        )
        logger.info(f"Tracking command {notification.name!r} ({item_id}) in {notification.directory}")
        return item_id

    def on_teardown(self, process_handle: Hashable) -> int:
        """宿主即将拆除进程输出流：尽力刷写，之后不再读取该流。

        Returns:
            本次刷写的字节数
        """
        written = self.scheduler.flush_now(process_handle)
        self.scheduler.detach_output(process_handle)
        item_id = self._item_by_handle.get(process_handle)
        if item_id is not None:
            logger.debug(
                f"Output of {item_id} torn down "
                f"({written} trailing bytes flushed)"
            )
        return written

    def forget(self, process_handle: Hashable) -> bool:
        """进程句柄与条目一同被宿主拆除：取消轮询，不刷写也不终结。"""
        cancelled = self.scheduler.cancel(process_handle)
        item_id = self._item_by_handle.get(process_handle)
        if item_id is not None:
            self._handle_by_item.pop(item_id, None)
        return cancelled

    def _on_finalized(self, item: Item) -> None:
        self._handle_by_item.pop(item.item_id, None)

    # ----- 用户操作 -----

    def get(self, item_id: str) -> Item:
        """获取条目。

        Raises:
            UnknownItemError: 条目不存在
        """
        item = self.store.get(item_id)
        if item is None:
            raise UnknownItemError(item_id)
        return item

    def _live_handle(self, item_id: str) -> Hashable | None:
        handle = self._handle_by_item.get(item_id)
        if handle is None:
            return None
        task = self.scheduler.get(handle)
        if task is None or not task.is_polling:
            return None
        return handle

    def kill(self, item_id: str) -> bool:
        """终止条目对应的进程。

        只发出终止请求，条目由随后的轮询 tick 终结。
        条目没有存活进程但也没有结束时间时（进程未发出终止通知就消失了），
        直接补记结束时间。

        Returns:
            是否发出了终止请求（False 表示走了补记路径）

        Raises:
            UnknownItemError: 条目不存在
            NoLiveProcessError: 条目已结束且没有存活进程
        """
        item = self.get(item_id)
        handle = self._live_handle(item_id)

        if handle is not None:
            if self.host is None:
                raise NoLiveProcessError(item_id, item.name)
            logger.info(f"Requesting termination of {item.name!r} ({item_id})")
            self.host.request_termination(handle)
            return True

        if item.end_time is None:
            self.store.finalize(item_id, None)
            logger.info(f"Recorded missing end time for {item.name!r} ({item_id})")
            return False

        raise NoLiveProcessError(item_id, item.name)

    def kill_all(self) -> int:
        """终止所有存活进程。

        Returns:
            发出终止请求的数量
        """
        if self.host is None:
            return 0
        count = 0
        for task in self.scheduler.active_tasks():
            if task.is_polling:
                self.host.request_termination(task.binding.process_handle)
                count += 1
        if count:
            logger.info(f"Requested termination of {count} live command(s)")
        return count

    def has_live(self) -> bool:
        """是否有正在轮询的进程。"""
        return any(task.is_polling for task in self.scheduler.active_tasks())

    @property
    def live_count(self) -> int:
        return sum(1 for task in self.scheduler.active_tasks() if task.is_polling)

    def log_path(self, item_id: str, *, must_exist: bool = False) -> Path:
        """条目的日志文件路径。

        Raises:
            UnknownItemError: 条目不存在
            NoLogError: 条目没有日志路径，或 must_exist 时文件不存在
        """
        item = self.get(item_id)
        if item.log_path is None:
            raise NoLogError(item_id, item.name)
        if must_exist and not item.log_path.exists():
            raise NoLogError(item_id, item.name)
        return item.log_path

    async def read_log(self, item_id: str) -> bytes:
        """读取条目日志文件的全部内容。

        Raises:
            UnknownItemError: 条目不存在
            NoLogError: 日志文件不存在
        """
        path = self.log_path(item_id, must_exist=True)
        return await anyio.Path(path).read_bytes()

    def live_output(self, item_id: str) -> bytes:
        """条目的实时输出（包含已刷写的部分）。

        Raises:
            UnknownItemError: 条目不存在
            NoBufferError: 进程已结束或输出流已被拆除
        """
        item = self.get(item_id)
        task = self.scheduler.find_by_item(item_id)
        if task is None or task.binding.output is None:
            raise NoBufferError(item_id, item.name)
        return task.binding.output.read_from(0)

    async def rerun(self, item_id: str) -> str:
        """用条目的处理器重新执行命令。

        Returns:
            新条目的 ID

        Raises:
            UnknownItemError: 条目不存在
            NoHandlerError: 条目没有处理器或没有可用的启动器
        """
        item = self.get(item_id)
        if item.handler is None or self.launcher is None:
            raise NoHandlerError(item_id, item.name)
        return await item.handler.invoke(item, self.launcher)

    # ----- 视图 -----

    def snapshot(
        self,
        filters: FilterSet | None = None,
        now: datetime | None = None,
    ) -> list[tuple[Item, CommandRow]]:
        """过滤后的列表快照（最新在前）。"""
        now = now or datetime.now()
        items = self.store.list()
        if filters is not None:
            items = filters.apply(items)
        return [(item, project(item, now)) for item in items]

    def add_refresh_listener(self, callback: Callable[[], None]) -> None:
        """注册表变更（登记、终结、移除）时调用。"""
        self.store.add_on_change_callback(callback)

    def remove_refresh_listener(self, callback: Callable[[], None]) -> None:
        self.store.remove_on_change_callback(callback)

    # ----- 生命周期 -----

    def restore(self, items: Iterable[Item]) -> int:
        """恢复历史条目。"""
        return self.store.restore(items)

    def shutdown(self) -> int:
        """关闭：尽力刷写所有存活进程的输出，然后取消全部轮询任务。

        Returns:
            取消的任务数量
        """
        for task in self.scheduler.active_tasks():
            self.scheduler.flush_now(task.binding.process_handle)
        cancelled = self.scheduler.cancel_all()
        self._handle_by_item.clear()
        if cancelled:
            logger.info(f"Stopped polling {cancelled} live command(s)")
        return cancelled
