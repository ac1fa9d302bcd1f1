"""
Protocol Session

One request-scoped JSON-RPC exchange: decodes the inbound body, dispatches
each message to the MCP methods or to a tool, and hands the outcome back as
Immediate (one JSON document) or Streaming (an event channel).
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .base import ValidationError
from .config import Settings
from .negotiation import InboundRequest
from .protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ProtocolError,
    decode_body,
    has_raw_id,
    internal_error_envelope,
    make_error,
    make_result,
    negotiate_protocol_version,
    parse_message,
    raw_id,
)
from .registry import ToolRegistry
from .transport import Immediate, SessionOutput, StreamableHTTPTransport, Streaming
from .types import JSONRPCMessage

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CREATED = "created"
    NEGOTIATING = "negotiating"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.ABORTED})


class SessionMode(str, Enum):
    IMMEDIATE = "immediate"
    STREAMING = "streaming"


class ProtocolSession:
    """
    State machine for one inbound request.

    Owns nothing it did not receive: the registry and transport are built by
    the lifecycle supervisor, which also tears them down.
    """

    def __init__(self, registry: ToolRegistry, transport: StreamableHTTPTransport, settings: Settings):
        self.registry = registry
        self.transport = transport
        self.settings = settings
        self.state = SessionState.CREATED
        self.mode: Optional[SessionMode] = None
        self.rejected = False
        self._failed = False
        self._dispatcher: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _negotiate(self, inbound: InboundRequest) -> SessionMode:
        if inbound.has_body and self.settings.json_response:
            return SessionMode.IMMEDIATE
        return SessionMode.STREAMING

    async def handle(self, inbound: InboundRequest) -> SessionOutput:
        """Run the exchange for one inbound request."""
        self.state = SessionState.NEGOTIATING
        self.mode = self._negotiate(inbound)

        if not inbound.has_body:
            self.state = SessionState.DISPATCHING
            return Streaming(channel=self.transport.events())

        try:
            raw_messages, is_batch = decode_body(inbound.body)
        except ProtocolError as e:
            self.rejected = True
            logger.warning(f"Rejected request body: {e.message}")
            return Immediate(make_error(None, e.code, e.message, e.data), status_code=400)

        self.state = SessionState.DISPATCHING

        # Nothing to stream back when no message expects an answer.
        expects_reply = any(has_raw_id(raw) for raw in raw_messages)

        if self.mode is SessionMode.STREAMING and expects_reply:
            self._dispatcher = asyncio.ensure_future(self._pump(raw_messages))
            return Streaming(channel=self.transport.events())

        responses = await self.dispatch_all(raw_messages)
        self._settle()

        if not responses:
            return Immediate(None, status_code=202)
        if is_batch:
            return Immediate(responses)

        response = responses[0]
        status_code = 400 if response.get("error", {}).get("code") == INVALID_REQUEST else 200
        return Immediate(response, status_code=status_code)

    async def _pump(self, raw_messages: List[Any]) -> None:
        try:
            for raw in raw_messages:
                response = await self.dispatch(raw)
                if response is not None:
                    await self.transport.send(response)
            self._settle()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error while streaming responses")
            self._failed = True
            self._settle()
            await self.transport.send(internal_error_envelope())
        finally:
            await self.transport.end()

    async def dispatch_all(self, raw_messages: List[Any]) -> List[Dict[str, Any]]:
        """Dispatch messages in order; responses keep the order of their requests."""
        responses = []
        for raw in raw_messages:
            response = await self.dispatch(raw)
            if response is not None:
                responses.append(response)
        return responses

    async def dispatch(self, raw: Any) -> Optional[Dict[str, Any]]:
        """Handle one raw message. Returns its response, or None when none is owed."""
        try:
            message = parse_message(raw)
        except ProtocolError as e:
            self._failed = True
            return make_error(raw_id(raw), e.code, e.message, e.data)

        if message.method is None:
            logger.debug("Ignoring inbound response message")
            return None

        if message.is_notification:
            logger.debug(f"Notification received: {message.method}")
            return None

        try:
            result = await self._call(message)
        except ProtocolError as e:
            self._failed = True
            logger.warning(f"Request {message.id!r} failed: {e.message}")
            return make_error(message.id, e.code, e.message, e.data)

        return make_result(message.id, result)

    async def _call(self, message: JSONRPCMessage) -> Any:
        method = message.method
        params = message.params or {}

        if method == "initialize":
            return self._initialize(params)
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self.registry.list_tools()}
        if method == "tools/call":
            arguments = params.get("arguments")
            if arguments is None:
                arguments = {k: v for k, v in params.items() if k not in ("name", "_meta")}
            return await self.call_tool(params.get("name"), arguments)
        if method in self.registry:
            return await self.call_tool(method, params)

        raise ProtocolError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "protocolVersion": negotiate_protocol_version(params.get("protocolVersion")),
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {
                "name": self.settings.server_name,
                "version": self.settings.server_version,
            },
        }

    async def call_tool(self, name: Any, arguments: Any) -> Dict[str, Any]:
        """
        Validate and run one tool.

        Unknown tools and bad arguments raise ProtocolError before the tool's
        handler is reached.
        """
        if not isinstance(name, str) or not name:
            raise ProtocolError(INVALID_PARAMS, "Tool name is required")

        instance = self.registry.get(name)
        if instance is None:
            raise ProtocolError(INVALID_PARAMS, f"Unknown tool: {name}", {"tool": name})

        if not isinstance(arguments, dict):
            raise ProtocolError(INVALID_PARAMS, "Tool arguments must be an object", {"tool": name})

        try:
            envelope = await instance.run(**arguments)
        except ValidationError as e:
            raise ProtocolError(
                INVALID_PARAMS,
                f"Invalid arguments for tool {name}: {e.message}",
                {"tool": name, "field": e.field},
            )

        logger.info(f"Tool {name} finished (isError={envelope.is_error})")
        return envelope.to_wire()

    def _settle(self) -> None:
        if self.is_terminal:
            return
        self.state = SessionState.FAILED if self._failed else SessionState.COMPLETED

    def finish(self, state: SessionState) -> None:
        """
        Move to a terminal state unless one was already reached. A session
        whose body was rejected stays in NEGOTIATING.
        """
        if self.is_terminal or self.rejected:
            return
        self.state = state

    async def close(self) -> None:
        """Cancel any in-flight dispatch. Idempotent."""
        if self.closed:
            return
        self.closed = True
        if self._dispatcher is not None and not self._dispatcher.done():
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
