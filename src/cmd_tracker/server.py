"""cmd-tracker MCP Server。

通过 MCP 工具暴露命令追踪功能：启动、列表、过滤、终止、重新执行、查看输出。

环境变量见 config 模块。

用法:
    uvx cmd-tracker-mcp
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import Config, get_config
from .errors import CommandTrackerError
from .filters import FilterSet, build_filter
from .shared.response_formatter import (
    DebugInfo,
    ResponseData,
    format_error_response,
    format_response,
)
from .supervisor import Supervisor
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

__all__ = ["ToolDispatcher", "create_server"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 65536


def _tail(data: bytes, max_bytes: int) -> str:
    if len(data) > max_bytes:
        data = data[-max_bytes:]
    return data.decode("utf-8", errors="replace")


@dataclass
class ToolDispatcher:
    """工具调用分发。

    封装工具执行所需的依赖：监督器、当前过滤器集合和配置。
    """

    supervisor: Supervisor
    filters: FilterSet = field(default_factory=FilterSet)
    config: Config = field(default_factory=get_config)

    async def call(self, name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """执行工具，用户可见错误转换为错误响应。"""
        if name not in SUPPORTED_TOOLS:
            return format_error_response(f"Unknown tool '{name}'")

        handler = getattr(self, f"_{name}")
        started = time.monotonic()
        try:
            data = await handler(arguments)
        except asyncio.CancelledError:
            logger.info(f"Tool '{name}' cancelled")
            raise
        except CommandTrackerError as e:
            return format_error_response(e.message, e.item_id or "")
        except (KeyError, ValueError, OSError) as e:
            logger.debug(f"Tool '{name}' rejected arguments: {e}")
            return format_error_response(str(e))

        data.debug_info = DebugInfo(
            duration_sec=time.monotonic() - started,
            total_count=len(self.supervisor.store),
            live_count=self.supervisor.live_count,
            log_file=self.config.log_file,
        )
        return format_response(data, debug=self.config.debug)

    async def _run_command(self, arguments: dict[str, Any]) -> ResponseData:
        command = str(arguments["command"]).strip()
        if not command:
            raise ValueError("Empty command")
        if self.supervisor.launcher is None:
            raise ValueError("No process host available")
        item_id = await self.supervisor.launcher(
            command, str(arguments["directory"]), arguments.get("mode") or "shell"
        )
        item = self.supervisor.get(item_id)
        answer = {"id": item_id, "log_path": str(item.log_path) if item.log_path else None}
        return ResponseData(answer=json.dumps(answer, ensure_ascii=False), item_id=item_id)

    async def _list_commands(self, arguments: dict[str, Any]) -> ResponseData:
        rows = [row.to_dict() for _, row in self.supervisor.snapshot(self.filters)]
        limit = arguments.get("limit")
        if limit:
            rows = rows[: int(limit)]
        return ResponseData(
            answer=json.dumps(rows, ensure_ascii=False, indent=2),
            filters=self.filters.describe(),
        )

    async def _toggle_filter(self, arguments: dict[str, Any]) -> ResponseData:
        f = build_filter(str(arguments["category"]), str(arguments.get("value") or ""))
        active = self.filters.toggle(f)
        state = "enabled" if active else "disabled"
        return ResponseData(
            answer=f"Filter {f.category} {state}",
            filters=self.filters.describe(),
        )

    async def _clear_filters(self, arguments: dict[str, Any]) -> ResponseData:
        self.filters.clear()
        return ResponseData(answer="Filters cleared", filters=self.filters.describe())

    async def _kill_command(self, arguments: dict[str, Any]) -> ResponseData:
        item_id = str(arguments["id"])
        if self.supervisor.kill(item_id):
            answer = "Termination requested"
        else:
            answer = "Process already gone, end time recorded"
        return ResponseData(answer=answer, item_id=item_id)

    async def _rerun_command(self, arguments: dict[str, Any]) -> ResponseData:
        new_id = await self.supervisor.rerun(str(arguments["id"]))
        return ResponseData(answer=json.dumps({"id": new_id}), item_id=new_id)

    async def _command_output(self, arguments: dict[str, Any]) -> ResponseData:
        item_id = str(arguments["id"])
        output = self.supervisor.live_output(item_id)
        max_bytes = int(arguments.get("max_bytes") or DEFAULT_MAX_BYTES)
        return ResponseData(answer=_tail(output, max_bytes), item_id=item_id)

    async def _command_log(self, arguments: dict[str, Any]) -> ResponseData:
        item_id = str(arguments["id"])
        path = self.supervisor.log_path(item_id, must_exist=True)
        data = await self.supervisor.read_log(item_id)
        max_bytes = int(arguments.get("max_bytes") or DEFAULT_MAX_BYTES)
        return ResponseData(answer=f"{path}\n\n{_tail(data, max_bytes)}", item_id=item_id)


def create_server(
    supervisor: Supervisor,
    filters: FilterSet | None = None,
) -> Server:
    """创建 MCP Server 实例。

    Args:
        supervisor: 命令监督器
        filters: 列表过滤器集合（默认空集合）
    """
    server = Server("cmd-tracker")
    dispatcher = ToolDispatcher(supervisor, filters or FilterSet())

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        tools = [
            Tool(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                inputSchema=create_tool_schema(name),
            )
            for name in SUPPORTED_TOOLS
        ]
        logger.debug(f"[MCP] list_tools called, returning {len(tools)} tools")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        logger.debug(
            f"[MCP] call_tool request: {name} "
            f"{json.dumps(arguments, ensure_ascii=False, default=str)}"
        )
        return await dispatcher.call(name, arguments or {})

    return server
