"""命令历史的持久化。

退出时把注册表写入 JSON 文件，启动时恢复。恢复的条目没有对应进程，
运行中保存的条目恢复后仍没有结束时间，可通过手动终止进行修复。
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict, ValidationError

from .handlers import resolve_handler
from .models import Item

__all__ = ["ItemRecord", "save_history", "load_history"]

logger = logging.getLogger(__name__)

HISTORY_VERSION = 1


class ItemRecord(BaseModel):
    """历史文件中的一条记录。"""

    model_config = ConfigDict(extra="ignore")

    item_id: str
    name: str
    directory: str
    provenance: str = "shell"
    start_time: datetime
    end_time: datetime | None = None
    exit_status: int | None = None
    output_cursor: int = 0
    log_path: str | None = None

    @classmethod
    def from_item(cls, item: Item) -> "ItemRecord":
        return cls(
            item_id=item.item_id,
            name=item.name,
            directory=item.directory,
            provenance=item.provenance,
            start_time=item.start_time,
            end_time=item.end_time,
            exit_status=item.exit_status,
            output_cursor=item.output_cursor,
            log_path=str(item.log_path) if item.log_path else None,
        )

    def to_item(self) -> Item:
        """恢复为条目，处理器按启动来源重新解析。"""
        return Item(
            name=self.name,
            directory=self.directory,
            start_time=self.start_time,
            handler=resolve_handler(self.provenance),
            provenance=self.provenance,
            item_id=self.item_id,
            end_time=self.end_time,
            exit_status=self.exit_status,
            output_cursor=self.output_cursor,
            log_path=Path(self.log_path) if self.log_path else None,
        )


class _HistoryFile(BaseModel):
    version: int = HISTORY_VERSION
    items: list[ItemRecord] = []


def save_history(items: Iterable[Item], path: Path, limit: int | None = None) -> int:
    """保存条目到历史文件。

    Args:
        items: 条目（最新在前）
        path: 历史文件路径
        limit: 最多保存的条目数（保留最新的）

    Returns:
        保存的条目数量

    Raises:
        OSError: 写入失败
    """
    items = list(items)
    if limit is not None:
        items = items[:limit]
    # 文件中按从旧到新存放，恢复时直接追加
    records = [ItemRecord.from_item(item) for item in reversed(items)]

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(
        _HistoryFile(items=records).model_dump_json(indent=2), encoding="utf-8"
    )
    os.replace(tmp_path, path)
    logger.debug(f"Saved {len(records)} command(s) to {path}")
    return len(records)


def load_history(path: Path) -> list[Item]:
    """从历史文件加载条目（从旧到新）。

    文件不存在或损坏时返回空列表。
    """
    if not path.exists():
        return []
    try:
        data = _HistoryFile.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable history file {path}: {e}")
        return []
    return [record.to_item() for record in data.items]
