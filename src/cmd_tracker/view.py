"""视图投影：把条目转换为列表中的一行。

所有函数都是 (item, now) 的纯函数，不修改条目。
"""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import CommandRow, Item

__all__ = [
    "RELATIVE_WINDOW",
    "format_duration",
    "format_start",
    "format_exit",
    "duration_of",
    "project",
]

# 在此窗口内显示 "xx ago"，否则显示绝对时间
RELATIVE_WINDOW = timedelta(days=7)

ABSOLUTE_FORMAT = "%Y-%m-%d %H:%M:%S"

LIVE_EXIT_LABEL = "--"
UNKNOWN_EXIT_LABEL = "??"


def format_duration(seconds: float) -> str:
    """格式化时长，最大单位在前，两级显示。

    - >= 1 天: "1d 1h"
    - >= 1 小时: "2h 0m"
    - >= 1 分钟: "1m 5.3s"
    - 其他: "30.0s"
    """
    seconds = round(max(0.0, seconds), 1)
    if seconds >= 86400:
        days, rest = divmod(int(seconds), 86400)
        return f"{days}d {rest // 3600}h"
    if seconds >= 3600:
        hours, rest = divmod(int(seconds), 3600)
        return f"{hours}h {rest // 60}m"
    if seconds >= 60:
        minutes = int(seconds // 60)
        return f"{minutes}m {seconds - minutes * 60:.1f}s"
    return f"{seconds:.1f}s"


def format_start(start: datetime, now: datetime) -> str:
    """启动时间标签：7 天内显示相对时间，否则显示绝对时间。"""
    elapsed = now - start
    if timedelta(0) <= elapsed < RELATIVE_WINDOW:
        return f"{format_duration(elapsed.total_seconds())} ago"
    return start.strftime(ABSOLUTE_FORMAT)


def duration_of(item: Item, now: datetime) -> float:
    """运行时长（秒），运行中的命令计算到 now。"""
    end = item.end_time if item.end_time is not None else now
    return (end - item.start_time).total_seconds()


def format_exit(item: Item) -> str:
    """退出状态标签。"""
    if item.end_time is None:
        return LIVE_EXIT_LABEL
    if item.exit_status is None:
        return UNKNOWN_EXIT_LABEL
    return str(item.exit_status)


def project(item: Item, now: datetime | None = None) -> CommandRow:
    """把条目投影为渲染行。"""
    now = now or datetime.now()
    return CommandRow(
        id=item.item_id,
        command=item.name,
        directory=item.directory,
        started=format_start(item.start_time, now),
        duration=format_duration(duration_of(item, now)),
        exit=format_exit(item),
        live=item.is_live,
        log_path=str(item.log_path) if item.log_path is not None else None,
    )
