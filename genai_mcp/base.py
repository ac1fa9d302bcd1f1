"""
MCP Tool Base Classes and Decorators

Provides the typed parameter schema, argument validation and the error
boundary shared by all tools. A tool instance lives for one request only.
"""

import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import Settings
from .formatters import format_response, handle_api_error
from .types import ResponseEnvelope

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class ToolParameter:
    """Definition of a tool parameter."""
    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None
    # Nested fields when type == "object"
    properties: List["ToolParameter"] = field(default_factory=list)
    # Element type when type == "array"
    items_type: str = "string"


@dataclass(frozen=True)
class ToolDefinition:
    """Immutable descriptor of a registered tool."""
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)
    handler: Optional[Callable[..., Awaitable[Any]]] = None
    category: str = "general"


class MCPToolError(Exception):
    """Base exception for MCP tool errors."""
    def __init__(self, message: str, tool_name: str = None, details: Dict = None):
        self.message = message
        self.tool_name = tool_name
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(MCPToolError):
    """Raised when tool input validation fails."""

    @property
    def field(self) -> Optional[str]:
        return self.details.get("field")


class ExecutionError(MCPToolError):
    """Raised when tool execution fails."""
    pass


def _matches(type_name: str, value: Any) -> bool:
    if type_name == "string":
        return isinstance(value, str)
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if type_name == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_name == "object":
        return isinstance(value, dict)
    if type_name == "array":
        return isinstance(value, list)
    return True


def validate_arguments(
    parameters: List[ToolParameter],
    arguments: Dict[str, Any],
    tool_name: str,
    prefix: str = "",
) -> Dict[str, Any]:
    """
    Check arguments against a parameter schema.

    Unknown keys are dropped, optional keys fall back to their default and
    nested objects are validated recursively. Raises ValidationError naming
    the offending field.
    """
    validated: Dict[str, Any] = {}

    for param in parameters:
        path = f"{prefix}{param.name}"
        value = arguments.get(param.name, _MISSING)

        if value is _MISSING or value is None:
            if param.required:
                raise ValidationError(
                    f"Missing required parameter: {path}",
                    tool_name=tool_name,
                    details={"field": path},
                )
            if param.default is not None:
                validated[param.name] = param.default
            continue

        if not _matches(param.type, value):
            raise ValidationError(
                f"Parameter '{path}' must be of type {param.type}",
                tool_name=tool_name,
                details={"field": path},
            )

        if param.type == "object" and param.properties:
            value = validate_arguments(param.properties, value, tool_name, prefix=f"{path}.")
        elif param.type == "array":
            for index, item in enumerate(value):
                if not _matches(param.items_type, item):
                    raise ValidationError(
                        f"Parameter '{path}[{index}]' must be of type {param.items_type}",
                        tool_name=tool_name,
                        details={"field": f"{path}[{index}]"},
                    )

        validated[param.name] = value

    return validated


def _json_schema(param: ToolParameter) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": param.type, "description": param.description}
    if param.type == "array":
        prop["items"] = {"type": param.items_type}
    if param.type == "object" and param.properties:
        prop.update(_object_schema(param.properties))
    if param.default is not None:
        prop["default"] = param.default
    return prop


def _object_schema(parameters: List[ToolParameter]) -> Dict[str, Any]:
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": {p.name: _json_schema(p) for p in parameters},
    }
    required = [p.name for p in parameters if p.required]
    if required:
        schema["required"] = required
    return schema


def input_schema(parameters: List[ToolParameter]) -> Dict[str, Any]:
    """JSON Schema advertised for a tool in tools/list."""
    return _object_schema(parameters)


class MCPTool(ABC):
    """
    Abstract base class for MCP tools.

    All tools must inherit from this class and implement:
    - name: Tool identifier
    - description: What the tool does
    - parameters: List of ToolParameter definitions
    - execute(): The actual tool logic

    Instances are created per request by the registry and receive the
    settings snapshot plus the request's shared HTTP client.
    """

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or Settings()
        self._http_client = http_client

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for the tool."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        pass

    @property
    def parameters(self) -> List[ToolParameter]:
        """List of parameters the tool accepts."""
        return []

    @property
    def category(self) -> str:
        """Category for grouping tools."""
        return "general"

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise ExecutionError("No HTTP client attached to this tool", tool_name=self.name)
        return self._http_client

    def validate(self, /, **kwargs) -> Dict[str, Any]:
        """
        Validate input parameters.
        Returns validated/normalized parameters.
        Raises ValidationError if validation fails.
        """
        return validate_arguments(self.parameters, kwargs, self.name)

    @abstractmethod
    async def execute(self, **kwargs) -> Any:
        """
        Execute the tool with given parameters.
        This method should contain the actual tool logic.
        """
        pass

    def format_result(self, result: Any) -> ResponseEnvelope:
        """Convert the raw result of execute() into a response envelope."""
        if isinstance(result, ResponseEnvelope):
            return result
        return format_response(result if isinstance(result, str) else str(result))

    async def run(self, /, **kwargs) -> ResponseEnvelope:
        """
        Public entry point: validate, execute and format.

        ValidationError propagates so the session can answer with a protocol
        error. Any failure after validation becomes an isError envelope.
        """
        validated = self.validate(**kwargs)
        try:
            result = await self.execute(**validated)
            return self.format_result(result)
        except ExecutionError as e:
            logger.error(f"Execution error in {self.name}: {e.message}")
            return handle_api_error(e)
        except Exception as e:
            logger.exception(f"Unexpected error in {self.name}")
            return handle_api_error(e)

    def to_definition(self) -> ToolDefinition:
        """Convert tool to ToolDefinition for registry."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            handler=self.run,
            category=self.category
        )

    def to_mcp_schema(self) -> Dict[str, Any]:
        """Tool entry as listed by tools/list."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": input_schema(self.parameters),
        }


class FunctionTool(MCPTool):
    """Adapts a function registered with @tool to the MCPTool interface."""

    def __init__(self, definition: ToolDefinition, settings: Optional[Settings] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings, http_client)
        self._definition = definition

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def description(self) -> str:
        return self._definition.description

    @property
    def parameters(self) -> List[ToolParameter]:
        return self._definition.parameters

    @property
    def category(self) -> str:
        return self._definition.category

    async def execute(self, **kwargs) -> Any:
        return await self._definition.handler(**kwargs)


# Registry for function-based tools
_function_tools: Dict[str, ToolDefinition] = {}


def tool(
    name: str,
    description: str,
    parameters: List[ToolParameter] = None,
    category: str = "general"
):
    """
    Decorator to register a function as an MCP tool.

    Usage:
        @tool(
            name="my_tool",
            description="Does something useful",
            parameters=[
                ToolParameter("input", "string", "The input value")
            ]
        )
        async def my_tool(input: str) -> str:
            return f"Processed: {input}"
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(**kwargs):
            return await func(**kwargs)

        _function_tools[name] = ToolDefinition(
            name=name,
            description=description,
            parameters=parameters or [],
            handler=wrapper,
            category=category
        )

        return wrapper

    return decorator


def get_function_tools() -> Dict[str, ToolDefinition]:
    """Get all registered function-based tools."""
    return _function_tools.copy()
