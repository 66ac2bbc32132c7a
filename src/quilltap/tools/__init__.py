"""Canonical tool definitions, vendor translation, parsing, and execution."""

from .formatting import apply_length_limit, to_vendor_tools
from .parsing import ToolCallRequest, detect_tool_calls

__all__ = [
    "ToolCallRequest",
    "apply_length_limit",
    "detect_tool_calls",
    "to_vendor_tools",
]
