"""
Content negotiation and request/response adaptation.

Normalizes an inbound web request into what the protocol session consumes
(effective Accept header, materialized body) and turns the session's output
back into a web response.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from .protocol import EVENT_STREAM_MEDIA_TYPE, JSON_MEDIA_TYPE
from .transport import SessionOutput, Streaming

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


class AcceptSet:
    """
    Insertion-ordered set of media-type tokens from an Accept header.

    Tokens are compared verbatim after trimming, so parameters such as
    ";q=0.9" are kept as part of the token.
    """

    def __init__(self, tokens: Iterable[str] = ()):
        self._tokens: Tuple[str, ...] = tuple(dict.fromkeys(t for t in tokens if t))

    @classmethod
    def parse(cls, header: Optional[str]) -> "AcceptSet":
        if not header:
            return cls()
        return cls(part.strip() for part in header.split(","))

    def union(self, other: "AcceptSet") -> "AcceptSet":
        return AcceptSet(self._tokens + other._tokens)

    __or__ = union

    def __contains__(self, token: object) -> bool:
        return token in self._tokens

    def __iter__(self) -> Iterator[str]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AcceptSet):
            return NotImplemented
        return set(self._tokens) == set(other._tokens)

    def __hash__(self) -> int:
        return hash(frozenset(self._tokens))

    def __repr__(self) -> str:
        return f"AcceptSet({list(self._tokens)!r})"

    def __str__(self) -> str:
        return ", ".join(self._tokens)


BIDIRECTIONAL = AcceptSet([JSON_MEDIA_TYPE, EVENT_STREAM_MEDIA_TYPE])
STREAM_ONLY = AcceptSet([EVENT_STREAM_MEDIA_TYPE])


def negotiate_accept(method: str, accept_header: Optional[str]) -> AcceptSet:
    """
    Effective Accept for a request.

    Requests with a body always accept both JSON and event streams, whatever
    the caller declared. Body-less requests can only open a stream.
    """
    if method.upper() in BODY_METHODS:
        return AcceptSet.parse(accept_header) | BIDIRECTIONAL
    return STREAM_ONLY


def normalize_headers(method: str, headers: Dict[str, str]) -> Dict[str, str]:
    """Copy of the headers (lower-cased names) with the effective Accept written back."""
    normalized = {name.lower(): value for name, value in headers.items()}
    normalized["accept"] = str(negotiate_accept(method, normalized.get("accept")))
    return normalized


@dataclass(frozen=True)
class InboundRequest:
    """An inbound request in the shape the protocol session consumes."""
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def accept(self) -> AcceptSet:
        return AcceptSet.parse(self.headers.get("accept"))

    @property
    def has_body(self) -> bool:
        return self.body is not None


async def materialize(request: Request) -> InboundRequest:
    """Normalize headers and read the body of requests that carry one."""
    method = request.method.upper()
    headers = normalize_headers(method, dict(request.headers))
    body = await request.body() if method in BODY_METHODS else None
    return InboundRequest(method=method, headers=headers, body=body)


def to_response(output: SessionOutput, background: Optional[BackgroundTask] = None) -> Response:
    """Convert session output into the outbound web response."""
    if isinstance(output, Streaming):
        return StreamingResponse(
            output.channel,
            status_code=output.status_code,
            media_type=EVENT_STREAM_MEDIA_TYPE,
            headers=output.headers,
            background=background,
        )

    if output.body is None:
        return Response(status_code=output.status_code, headers=output.headers, background=background)
    return JSONResponse(
        output.body,
        status_code=output.status_code,
        headers=output.headers,
        background=background,
    )
