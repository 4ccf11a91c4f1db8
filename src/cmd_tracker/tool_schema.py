"""Tool Schema 定义。

包含工具描述、参数 schema 和 schema 创建函数。
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

SUPPORTED_TOOLS = (
    "run_command",
    "list_commands",
    "toggle_filter",
    "clear_filters",
    "kill_command",
    "rerun_command",
    "command_output",
    "command_log",
)

TOOL_DESCRIPTIONS = {
    "run_command": """Run a shell command in the background and track it.

The command runs in its own process group. Output is captured continuously
and appended to a per-command log file.

Returns the command id and its log file path.""",

    "list_commands": """List tracked commands, newest first.

Each row: id, command, directory, started ("3m 2.0s ago"), duration,
exit ("--" while running, "??" when the status is unknown), log_path.

The active filters (see toggle_filter) are applied.""",

    "toggle_filter": """Toggle a filter on the command list.

Categories:
- command: regex matched against the command line
- directory: working directory prefix
- live: only commands that are still running (no value)

Setting a category replaces its previous value. Toggling the same
category with the same value again removes it. All filters are combined
with AND.""",

    "clear_filters": "Remove all filters from the command list.",

    "kill_command": """Terminate the process of a tracked command.

The command is marked finished by the next status poll. Commands whose
process disappeared without an exit status get their end time recorded.""",

    "rerun_command": "Run a tracked command again in its original directory.",

    "command_output": "Return the live output of a running command.",

    "command_log": "Return the log file path and the logged output of a command.",
}

_ID_PROPERTY = {
    "id": {
        "type": "string",
        "description": "Command id as returned by run_command or list_commands.",
    }
}

_MAX_BYTES_PROPERTY = {
    "max_bytes": {
        "type": "integer",
        "description": "Return at most this many trailing bytes (default 65536).",
        "minimum": 1,
        "default": 65536,
    }
}


def create_tool_schema(tool: str) -> dict[str, Any]:
    """创建工具的 inputSchema。

    Raises:
        ValueError: 未知工具
    """
    if tool == "run_command":
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "Command line, interpreted by the shell.",
                },
                "directory": {
                    "type": "string",
                    "description": "Working directory (absolute path).",
                },
                "mode": {
                    "type": "string",
                    "enum": ["shell", "compile"],
                    "default": "shell",
                    "description": "How the command is launched and re-run.",
                },
            },
            "required": ["command", "directory"],
        }

    if tool == "list_commands":
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of rows (default: all).",
                    "minimum": 1,
                }
            },
            "required": [],
        }

    if tool == "toggle_filter":
        return {
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "enum": ["command", "directory", "live"],
                },
                "value": {
                    "type": "string",
                    "description": "Regex (command) or path prefix (directory).",
                    "default": "",
                },
            },
            "required": ["category"],
        }

    if tool == "clear_filters":
        return {"type": "object", "properties": {}, "required": []}

    if tool in ("kill_command", "rerun_command"):
        return {"type": "object", "properties": dict(_ID_PROPERTY), "required": ["id"]}

    if tool in ("command_output", "command_log"):
        return {
            "type": "object",
            "properties": {**_ID_PROPERTY, **_MAX_BYTES_PROPERTY},
            "required": ["id"],
        }

    raise ValueError(f"Unknown tool '{tool}'")
