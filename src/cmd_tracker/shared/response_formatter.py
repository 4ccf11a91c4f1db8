"""MCP 响应格式化器。

使用 XML-wrapped 文本格式，对 LLM 友好。

格式说明:
    - <answer>: 工具结果（JSON 或文本）
    - <item_id>: 相关命令条目 ID
    - <filters>: 当前生效的过滤器
    - <error>: 错误信息
    - <debug_info>: 调试信息（debug=True 时输出）
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "DebugInfo",
    "ResponseData",
    "ResponseFormatter",
    "get_formatter",
    "format_response",
    "format_error_response",
]


@dataclass
class DebugInfo:
    """调试信息。"""

    duration_sec: float = 0.0
    total_count: int = 0
    live_count: int = 0
    log_file: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "duration_sec": round(self.duration_sec, 3),
            "total_count": self.total_count,
            "live_count": self.live_count,
        }
        if self.log_file:
            data["log_file"] = self.log_file
        return data


@dataclass
class ResponseData:
    """响应数据。"""

    answer: str
    item_id: str = ""
    filters: str = ""
    debug_info: DebugInfo | None = None
    success: bool = True
    error: str | None = None


class ResponseFormatter:
    """MCP 响应格式化器。

    Example:
        >>> formatter = ResponseFormatter()
        >>> formatter.format(ResponseData(answer="[]", filters="live"))
        '<response>\\n  <answer>\\n[]\\n  </answer>\\n  <filters>live</filters>\\n</response>'
    """

    def format(self, data: ResponseData, *, debug: bool = False) -> str:
        """格式化响应数据。

        Args:
            data: 响应数据
            debug: 是否输出调试信息
        """
        parts = ["<response>"]

        if not data.success:
            parts.append(f"  <error>{data.error or 'Unknown error'}</error>")
            if data.item_id:
                parts.append(f"  <item_id>{data.item_id}</item_id>")
        else:
            parts.append(f"  <answer>\n{data.answer}\n  </answer>")
            if data.item_id:
                parts.append(f"  <item_id>{data.item_id}</item_id>")
            if data.filters:
                parts.append(f"  <filters>{data.filters}</filters>")

        if debug and data.debug_info:
            parts.append(self._format_debug_info(data.debug_info))

        parts.append("</response>")
        return "\n".join(parts)

    def _format_debug_info(self, debug_info: DebugInfo) -> str:
        lines = ["  <debug_info>"]
        for key, value in debug_info.to_dict().items():
            lines.append(f"    <{key}>{value}</{key}>")
        lines.append("  </debug_info>")
        return "\n".join(lines)


# 全局实例
_formatter: ResponseFormatter | None = None


def get_formatter() -> ResponseFormatter:
    """获取全局格式化器实例。"""
    global _formatter
    if _formatter is None:
        _formatter = ResponseFormatter()
    return _formatter


def format_response(data: ResponseData, *, debug: bool = False) -> list[TextContent]:
    """格式化为 MCP TextContent 列表。"""
    from mcp.types import TextContent

    return [TextContent(type="text", text=get_formatter().format(data, debug=debug))]


def format_error_response(error: str, item_id: str = "") -> list[TextContent]:
    """统一的错误响应格式化函数。

    所有错误都以 <response><error>...</error></response> 格式返回。
    """
    return format_response(ResponseData(answer="", item_id=item_id, success=False, error=error))
