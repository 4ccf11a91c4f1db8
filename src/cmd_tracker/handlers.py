"""重新执行处理器。

每个条目在登记时根据启动来源（provenance）解析一次处理器，
之后不再依赖来源字段判断模式。解析规则是静态的
{来源谓词 -> 处理器} 映射，第一个匹配的规则生效。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from .models import Item

__all__ = [
    "CommandHandler",
    "Launcher",
    "HANDLER_RULES",
    "SHELL_HANDLER",
    "COMPILE_HANDLER",
    "resolve_handler",
]

logger = logging.getLogger(__name__)


class Launcher(Protocol):
    """启动命令并返回新条目 ID 的宿主接口。"""

    def __call__(self, command: str, directory: str, provenance: str) -> Awaitable[str]:
        ...


@dataclass(frozen=True)
class CommandHandler:
    """可重新执行命令的处理器。

    Attributes:
        mode: 模式名（shell / compile）
        provenance: 重新执行时使用的启动来源
    """

    mode: str
    provenance: str

    async def invoke(self, item: Item, launcher: Launcher) -> str:
        """在原工作目录重新执行条目的命令。

        Returns:
            新条目的 ID
        """
        logger.info(f"Re-running {item.name!r} in {item.directory} (mode={self.mode})")
        return await launcher(item.name, item.directory, self.provenance)


SHELL_HANDLER = CommandHandler(mode="shell", provenance="shell")
COMPILE_HANDLER = CommandHandler(mode="compile", provenance="compile")

HANDLER_RULES: tuple[tuple[Callable[[str], bool], CommandHandler], ...] = (
    (lambda provenance: provenance == "compile", COMPILE_HANDLER),
    (lambda provenance: provenance in ("shell", "async-shell"), SHELL_HANDLER),
)


def resolve_handler(provenance: str) -> CommandHandler | None:
    """按启动来源解析处理器，无匹配规则时返回 None。"""
    for predicate, handler in HANDLER_RULES:
        if predicate(provenance):
            return handler
    return None
