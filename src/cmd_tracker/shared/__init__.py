"""响应格式化等共享工具。"""

from .response_formatter import (
    DebugInfo,
    ResponseData,
    ResponseFormatter,
    format_error_response,
    format_response,
    get_formatter,
)

__all__ = [
    "DebugInfo",
    "ResponseData",
    "ResponseFormatter",
    "format_error_response",
    "format_response",
    "get_formatter",
]
