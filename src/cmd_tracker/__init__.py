"""cmd-tracker - 命令追踪 MCP 服务器。

追踪后台运行的 shell / 编译命令：记录生命周期、把输出增量写入日志、
提供可过滤的命令列表。

环境变量:
    CMT_LOG_DIR: 命令输出日志目录
    CMT_POLL_INTERVAL: 轮询周期（秒，默认 1.0）
    CMT_HISTORY_FILE: 历史记录文件（off = 禁用）

用法:
    uvx cmd-tracker-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
