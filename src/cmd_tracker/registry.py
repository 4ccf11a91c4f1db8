"""命令条目注册表。

提供命令记录的单一数据源：
- ItemStore: 条目的登记、终结、查询
- 变更回调（视图刷新）

条目只追加不删除；唯一的例外是重复注册的对账清理。
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Iterator, Optional

from .models import Item
from .runtime.flusher import log_path_for

if TYPE_CHECKING:
    from .handlers import CommandHandler

__all__ = ["ItemStore"]

logger = logging.getLogger(__name__)


class ItemStore:
    """命令条目存储。

    插入顺序即时间顺序，list() 按最新在前返回。

    线程安全：所有操作都是同步的，由调用方保证在同一个事件循环中调用。

    Example:
        ```python
        store = ItemStore(log_dir=Path("/tmp/cmd-tracker"))

        item_id = store.register("make -j8", handler=None, directory="/src")
        store.finalize(item_id, 0)

        for item in store.list():
            print(item.name, item.exit_status)
        ```
    """

    def __init__(self, log_dir: Path | None = None) -> None:
        """初始化条目存储。

        Args:
            log_dir: 输出日志目录，None 表示不分配日志路径
        """
        self.log_dir = log_dir
        self._items: Dict[str, Item] = {}
        self._on_change_callbacks: list[Callable[[], None]] = []

    def register(
        self,
        name: str,
        handler: "CommandHandler | None",
        directory: str,
        provenance: str = "shell",
        start_time: datetime | None = None,
    ) -> str:
        """登记新条目（插入到最前）。

        Args:
            name: 命令行文本
            handler: 重新执行处理器
            directory: 工作目录
            provenance: 启动来源
            start_time: 启动时间（默认当前时间）

        Returns:
            新条目的 ID
        """
        item = Item(
            name=name,
            directory=directory,
            handler=handler,
            provenance=provenance,
            start_time=start_time or datetime.now(),
        )
        if self.log_dir is not None:
            item.log_path = log_path_for(item.name, item.start_time, self.log_dir)

        self._items[item.item_id] = item
        logger.debug(f"Registered command: {item}")
        self._notify()
        return item.item_id

    def finalize(self, item_id: str, exit_status: int | None = None) -> bool:
        """终结条目：设置结束时间与退出状态。

        已终结的条目不会被修改（幂等），用于吸收宿主的重复通知。

        Args:
            item_id: 条目 ID
            exit_status: 退出状态，未知时为 None

        Returns:
            本次调用是否真正终结了条目
        """
        item = self._items.get(item_id)
        if item is None or item.end_time is not None:
            return False

        item.end_time = datetime.now()
        item.exit_status = exit_status
        logger.debug(f"Finalized command: {item}")
        self._notify()
        return True

    def discard(self, item_id: str) -> bool:
        """移除条目（仅用于重复注册的对账）。

        Returns:
            条目是否存在并被移除
        """
        item = self._items.pop(item_id, None)
        if item is None:
            return False
        logger.debug(f"Discarded duplicate command: {item}")
        self._notify()
        return True

    def restore(self, items: Iterable[Item]) -> int:
        """恢复历史条目（按时间从旧到新传入）。

        已存在的 ID 会被跳过。

        Returns:
            恢复的条目数量
        """
        restored = 0
        for item in items:
            if item.item_id in self._items:
                continue
            self._items[item.item_id] = item
            restored += 1
        if restored:
            logger.debug(f"Restored {restored} command(s) from history")
            self._notify()
        return restored

    def get(self, item_id: str) -> Optional[Item]:
        """获取条目，不存在则返回 None。"""
        return self._items.get(item_id)

    def list(self) -> list[Item]:
        """列出所有条目（最新在前）。"""
        return list(reversed(self._items.values()))

    def all(self) -> Iterator[Item]:
        """遍历所有条目（最新在前）。"""
        return reversed(list(self._items.values()))

    def live_items(self) -> list[Item]:
        """列出尚未终结的条目（最新在前）。"""
        return [item for item in self.list() if item.is_live]

    def add_on_change_callback(self, callback: Callable[[], None]) -> None:
        """添加注册表变更时的回调。

        登记、终结、移除、恢复都会触发，用于通知视图层刷新。
        """
        self._on_change_callbacks.append(callback)

    def remove_on_change_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_change_callbacks:
            self._on_change_callbacks.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._on_change_callbacks):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in on_change callback: {e}")

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._items
