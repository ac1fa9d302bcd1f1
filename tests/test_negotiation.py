"""
Unit tests for Accept negotiation and response adaptation.
"""

import json

import pytest

from genai_mcp.negotiation import (
    BIDIRECTIONAL,
    STREAM_ONLY,
    AcceptSet,
    InboundRequest,
    negotiate_accept,
    normalize_headers,
    to_response,
)
from genai_mcp.transport import Immediate, Streaming


class TestAcceptSet:
    """AcceptSet behaves as an ordered set of trimmed tokens."""

    def test_parse_trims_and_drops_empties(self):
        accept = AcceptSet.parse(" application/json ,, text/html ,")
        assert list(accept) == ["application/json", "text/html"]

    def test_parse_deduplicates_keeping_first_position(self):
        accept = AcceptSet.parse("text/html, application/json, text/html")
        assert list(accept) == ["text/html", "application/json"]

    def test_parse_missing_header(self):
        assert len(AcceptSet.parse(None)) == 0
        assert len(AcceptSet.parse("")) == 0

    def test_union(self):
        merged = AcceptSet(["text/html", "application/json"]) | AcceptSet(["application/json", "text/event-stream"])
        assert list(merged) == ["text/html", "application/json", "text/event-stream"]

    def test_equality_ignores_order(self):
        assert AcceptSet(["a", "b"]) == AcceptSet(["b", "a"])
        assert hash(AcceptSet(["a", "b"])) == hash(AcceptSet(["b", "a"]))

    def test_str_joins_with_comma_space(self):
        assert str(AcceptSet(["application/json", "text/event-stream"])) == "application/json, text/event-stream"


class TestNegotiateAccept:

    @pytest.mark.parametrize("header", [
        None,
        "",
        "*/*",
        "text/html",
        "application/json",
        "text/event-stream",
        "application/json, application/json",
        "text/event-stream;q=0.1, application/json",
    ])
    def test_post_always_contains_both_tokens(self, header):
        accept = negotiate_accept("POST", header)
        assert "application/json" in accept
        assert "text/event-stream" in accept
        assert len(list(accept)) == len(set(accept))

    def test_post_keeps_declared_tokens(self):
        accept = negotiate_accept("POST", "text/html")
        assert list(accept) == ["text/html", "application/json", "text/event-stream"]

    @pytest.mark.parametrize("header", [None, "application/json", "text/html, */*", "text/event-stream"])
    def test_get_is_exactly_event_stream(self, header):
        accept = negotiate_accept("GET", header)
        assert accept == STREAM_ONLY
        assert str(accept) == "text/event-stream"

    def test_method_is_case_insensitive(self):
        assert negotiate_accept("post", None) == BIDIRECTIONAL


class TestNormalizeHeaders:

    def test_accept_written_back(self):
        headers = normalize_headers("POST", {"Accept": "application/json", "Content-Type": "application/json"})
        assert headers["accept"] == "application/json, text/event-stream"
        assert headers["content-type"] == "application/json"

    def test_get_overrides_caller_accept(self):
        headers = normalize_headers("GET", {"accept": "application/json"})
        assert headers["accept"] == "text/event-stream"

    def test_input_is_not_mutated(self):
        original = {"accept": "text/html"}
        normalize_headers("POST", original)
        assert original == {"accept": "text/html"}

    def test_idempotent(self):
        once = normalize_headers("POST", {"accept": "text/html"})
        assert normalize_headers("POST", once) == once


class TestInboundRequest:

    def test_has_body(self):
        assert InboundRequest("POST", {}, b"{}").has_body
        assert not InboundRequest("GET", {}).has_body

    def test_accept_property(self):
        inbound = InboundRequest("POST", normalize_headers("POST", {}), b"{}")
        assert inbound.accept == BIDIRECTIONAL


class TestToResponse:

    def test_immediate_json(self):
        response = to_response(Immediate({"jsonrpc": "2.0", "id": 1, "result": {}}))
        assert response.status_code == 200
        assert response.media_type == "application/json"
        assert json.loads(response.body) == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_immediate_preserves_status(self):
        response = to_response(Immediate({"error": {"code": -32700}}, status_code=400))
        assert response.status_code == 400

    def test_immediate_without_body(self):
        response = to_response(Immediate(None, status_code=202))
        assert response.status_code == 202
        assert response.body == b""

    def test_streaming(self):
        async def channel():
            yield b"data: {}\n\n"

        response = to_response(Streaming(channel=channel()))
        assert response.status_code == 200
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
