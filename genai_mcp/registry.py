"""
MCP Tool Registry

Single Source of Truth (SSOT) for tool discovery and collection.
Tool classes are discovered once from the genai_mcp/tools/ directory; every
request then gets its own ToolRegistry holding fresh tool instances and its
own HTTP client.
"""

import importlib
import inspect
import logging
import pkgutil
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Type, Union

import httpx

from .base import FunctionTool, MCPTool, ToolDefinition, get_function_tools
from .config import Settings

logger = logging.getLogger(__name__)

TOOLS_PACKAGE = f"{__package__}.tools"
HTTP_TIMEOUT = 60.0

ToolSource = Union[Type[MCPTool], ToolDefinition]

_tool_sources: Optional[Tuple[ToolSource, ...]] = None
_tool_names: Optional[Tuple[str, ...]] = None


def _discover_tools() -> Tuple[ToolSource, ...]:
    """
    Discover all tool classes and function tools from genai_mcp/tools/.
    This is the ONLY place where tools are collected. The result is cached
    and never mutated afterwards.
    """
    global _tool_sources

    if _tool_sources is not None:
        return _tool_sources

    sources: List[ToolSource] = []
    tools_path = Path(__file__).parent / "tools"

    for _, module_name, _ in pkgutil.iter_modules([str(tools_path)]):
        if module_name.startswith("_"):
            continue

        full_module_name = f"{TOOLS_PACKAGE}.{module_name}"
        module = importlib.import_module(full_module_name)
        logger.debug(f"Loaded tool module: {full_module_name}")

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, MCPTool)
                and obj.__module__ == module.__name__
                and not inspect.isabstract(obj)
            ):
                sources.append(obj)

    # Also collect function-based tools (decorated with @tool)
    sources.extend(get_function_tools().values())

    _tool_sources = tuple(sources)
    logger.info(f"Tool discovery complete. Total tools: {len(_tool_sources)}")
    return _tool_sources


def reset_discovery() -> None:
    """Forget discovered tools (mainly for testing)."""
    global _tool_sources, _tool_names
    _tool_sources = None
    _tool_names = None


class ToolRegistry:
    """
    Ordered collection of the tools available to one session.

    Owns the HTTP client its tools share. close() releases it and may be
    called any number of times.
    """

    def __init__(self, tools: List[MCPTool], http_client: Optional[httpx.AsyncClient] = None):
        self._tools: Dict[str, MCPTool] = {}
        for instance in tools:
            if instance.name in self._tools:
                raise ValueError(f"Duplicate tool name: {instance.name}")
            self._tools[instance.name] = instance
        self._http_client = http_client
        self.closed = False

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[MCPTool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> Optional[MCPTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return [instance.to_definition() for instance in self._tools.values()]

    def list_tools(self) -> List[Dict]:
        """Tool entries in registry order, as returned by tools/list."""
        return [instance.to_mcp_schema() for instance in self._tools.values()]

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._http_client is not None:
            await self._http_client.aclose()


async def create_registry(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> ToolRegistry:
    """
    Build a fresh registry with new tool instances for one request.

    A client created here is closed again if any tool fails to build.
    """
    client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
    try:
        tools: List[MCPTool] = []
        for source in _discover_tools():
            if isinstance(source, ToolDefinition):
                tools.append(FunctionTool(source, settings, client))
            else:
                tools.append(source(settings, client))
        return ToolRegistry(tools, client)
    except Exception:
        if http_client is None:
            await client.aclose()
        raise


def list_tool_names() -> List[str]:
    """Names of all discoverable tools, without building a registry. Cached."""
    global _tool_names

    if _tool_names is None:
        _tool_names = tuple(
            source.name if isinstance(source, ToolDefinition) else source(Settings()).name
            for source in _discover_tools()
        )
    return list(_tool_names)
