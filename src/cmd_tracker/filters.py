"""命令列表过滤器。

过滤器是按类别命名的谓词：
- command: 命令文本正则匹配
- directory: 工作目录前缀匹配
- live: 仅显示仍在运行的命令

活动过滤器集合按类别保存，应用时对所有类别取逻辑与。
同一类别只保留一个谓词，新设置的会替换旧的；
对同一过滤器切换两次即移除（开关语义，而不是栈语义）。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable

from .models import Item

__all__ = [
    "Filter",
    "FilterSet",
    "command_filter",
    "directory_filter",
    "live_filter",
    "build_filter",
    "FILTER_CATEGORIES",
]

logger = logging.getLogger(__name__)

Predicate = Callable[[Item], bool]

FILTER_CATEGORIES = ("command", "directory", "live")


@dataclass(frozen=True)
class Filter:
    """一个类别下的过滤器。

    Attributes:
        category: 类别标识（command / directory / live）
        label: 显示标签，同时用于判定两次切换是否语义相同
        predicate: 谓词
    """

    category: str
    label: str
    predicate: Predicate

    def __call__(self, item: Item) -> bool:
        return self.predicate(item)


def command_filter(pattern: str) -> Filter:
    """按命令文本过滤（正则搜索，非法正则按字面子串处理）。"""
    try:
        regex = re.compile(pattern)
    except re.error:
        logger.debug(f"Invalid regex {pattern!r}, matching literally")
        regex = re.compile(re.escape(pattern))
    return Filter("command", pattern, lambda item: regex.search(item.name) is not None)


def directory_filter(prefix: str) -> Filter:
    """按工作目录前缀过滤。

    远程与本地路径都作为不透明字符串比较，不做跨协议规范化。
    """
    return Filter("directory", prefix, lambda item: item.directory.startswith(prefix))


def live_filter() -> Filter:
    """只保留尚未结束的命令。"""
    return Filter("live", "live", lambda item: item.end_time is None)


_BUILDERS: dict[str, Callable[..., Filter]] = {
    "command": command_filter,
    "directory": directory_filter,
    "live": lambda value="": live_filter(),
}


def build_filter(category: str, value: str = "") -> Filter:
    """按类别名构建内置过滤器。

    Raises:
        ValueError: 未知类别，或 command/directory 缺少取值
    """
    category = category.lower().strip()
    if category not in _BUILDERS:
        raise ValueError(
            f"Unknown filter category '{category}', expected one of {', '.join(FILTER_CATEGORIES)}"
        )
    if category != "live" and not value:
        raise ValueError(f"Filter '{category}' requires a value")
    return _BUILDERS[category](value)


class FilterSet:
    """活动过滤器集合（类别 -> 过滤器）。

    Example:
        ```python
        filters = FilterSet()
        filters.toggle(command_filter("^make"))
        filters.toggle(live_filter())
        visible = filters.apply(store.list())
        ```
    """

    def __init__(self, filters: Iterable[Filter] = ()) -> None:
        self._filters: dict[str, Filter] = {}
        for f in filters:
            self.set(f)

    def set(self, f: Filter) -> None:
        """设置过滤器，替换同类别的已有过滤器。"""
        self._filters[f.category] = f

    def remove(self, category: str) -> bool:
        return self._filters.pop(category, None) is not None

    def toggle(self, f: Filter) -> bool:
        """切换过滤器。

        同类别且标签相同则移除，否则设置（替换）。

        Returns:
            切换后该过滤器是否处于激活状态
        """
        current = self._filters.get(f.category)
        if current is not None and current.label == f.label:
            del self._filters[f.category]
            return False
        self._filters[f.category] = f
        return True

    def clear(self) -> None:
        self._filters.clear()

    def matches(self, item: Item) -> bool:
        """条目是否通过所有过滤器。"""
        return all(f(item) for f in self._filters.values())

    def apply(self, items: Iterable[Item]) -> list[Item]:
        """过滤条目，保持原有顺序。"""
        return [item for item in items if self.matches(item)]

    def labels(self) -> dict[str, str]:
        """类别 -> 显示标签。"""
        return {category: f.label for category, f in self._filters.items()}

    def describe(self) -> str:
        """列表标题使用的过滤器描述。"""
        if not self._filters:
            return "all"
        parts = []
        for category, f in self._filters.items():
            parts.append(category if category == f.label else f"{category}:{f.label}")
        return " ".join(parts)

    def __contains__(self, category: str) -> bool:
        return category in self._filters

    def __len__(self) -> int:
        return len(self._filters)
