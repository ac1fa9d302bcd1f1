"""
GenAI MCP Server

Stateless MCP (Model Context Protocol) bridge over HTTP.
All tools are auto-discovered via registry.py
"""

from .base import MCPTool, ToolParameter, tool
from .config import Settings, load_settings
from .registry import ToolRegistry, create_registry, list_tool_names

__all__ = [
    "MCPTool",
    "Settings",
    "ToolParameter",
    "ToolRegistry",
    "create_registry",
    "list_tool_names",
    "load_settings",
    "tool",
]
