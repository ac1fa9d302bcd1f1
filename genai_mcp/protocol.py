"""
JSON-RPC protocol constants, errors and message helpers.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .types import JSONRPC_VERSION, JSONRPCMessage, RequestId

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

JSON_MEDIA_TYPE = "application/json"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


class ProtocolError(Exception):
    """A failure reported to the caller as a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    def to_error(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            error["data"] = self.data
        return error


def negotiate_protocol_version(version: Optional[str]) -> str:
    if version in SUPPORTED_PROTOCOL_VERSIONS:
        return version
    return LATEST_PROTOCOL_VERSION


def make_result(request_id: Optional[RequestId], result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(
    request_id: Optional[RequestId],
    code: int,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": ProtocolError(code, message, data).to_error(),
    }


def internal_error_envelope() -> Dict[str, Any]:
    """Fixed body sent with HTTP 500 when a request fails unexpectedly."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "error": {"code": INTERNAL_ERROR, "message": "Internal server error"},
        "id": None,
    }


def decode_body(body: bytes) -> Tuple[List[Any], bool]:
    """
    Decode a request body into raw message objects.

    Returns (messages, is_batch). Raises ProtocolError(PARSE_ERROR) for
    anything that is not JSON and ProtocolError(INVALID_REQUEST) for JSON
    that cannot carry messages (scalars, empty batches).
    """
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(PARSE_ERROR, "Parse error", {"detail": str(e)})

    if isinstance(payload, list):
        if not payload:
            raise ProtocolError(INVALID_REQUEST, "Invalid Request: empty batch")
        return payload, True
    if isinstance(payload, dict):
        return [payload], False
    raise ProtocolError(INVALID_REQUEST, "Invalid Request: expected an object or an array")


def parse_message(raw: Any) -> JSONRPCMessage:
    """Validate one raw message. Raises ProtocolError(INVALID_REQUEST)."""
    if not isinstance(raw, dict):
        raise ProtocolError(INVALID_REQUEST, "Invalid Request: message must be an object")
    try:
        return JSONRPCMessage.model_validate(raw)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ProtocolError(
            INVALID_REQUEST,
            "Invalid Request",
            {"fields": fields},
        )


def raw_id(raw: Any) -> Optional[RequestId]:
    """Best-effort id of a message that failed validation."""
    if isinstance(raw, dict):
        value = raw.get("id")
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            return value
    return None


def has_raw_id(raw: Any) -> bool:
    return isinstance(raw, dict) and "id" in raw
