"""
Protocol wire types.

Pydantic models for inbound JSON-RPC messages and for the content envelope
returned by tools.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

JSONRPC_VERSION = "2.0"

# Strict: a boolean id must not be coerced to 1.
RequestId = Union[StrictStr, StrictInt]


class JSONRPCMessage(BaseModel):
    """
    One inbound protocol message.

    A request carries `method` and `id`, a notification carries `method`
    only, and a response carries `result` or `error`.
    """
    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"]
    id: Optional[RequestId] = None
    method: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def has_id(self) -> bool:
        return "id" in self.model_fields_set

    @property
    def is_request(self) -> bool:
        return self.method is not None and self.has_id

    @property
    def is_notification(self) -> bool:
        return self.method is not None and not self.has_id


class TextContent(BaseModel):
    """The only content item variant this server emits."""
    type: Literal["text"] = "text"
    # Mirrors `type`; some clients read the discriminator under this name.
    kind: Literal["text"] = "text"
    text: str


class ResponseEnvelope(BaseModel):
    """Result of a tool call."""
    model_config = ConfigDict(populate_by_name=True)

    content: List[TextContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        return "".join(item.text for item in self.content)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class GroundingSource(BaseModel):
    """One source chunk cited by a web-grounded generation."""
    model_config = ConfigDict(populate_by_name=True)

    source_title: Optional[str] = Field(default=None, alias="sourceTitle")
    source_uri: Optional[str] = Field(default=None, alias="sourceUri")


class GroundedResult(ResponseEnvelope):
    """Envelope enriched with the grounding metadata the provider returned."""
    web_search_queries: List[str] = Field(default_factory=list, alias="webSearchQueries")
    grounding_chunks: List[GroundingSource] = Field(default_factory=list, alias="groundingChunks")
