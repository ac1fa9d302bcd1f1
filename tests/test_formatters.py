"""
Unit tests for the response formatter.
"""

from google.genai import types

from genai_mcp.formatters import (
    API_ERROR_MESSAGE,
    CITATION_HEADER,
    build_citation_block,
    extract_grounding,
    extract_text,
    format_events_to_markdown,
    format_grounded_response,
    format_groups_to_markdown,
    format_response,
    format_users_to_markdown,
    handle_api_error,
)
from genai_mcp.base import ExecutionError
from genai_mcp.types import GroundingSource


def make_response(text, queries=None, chunks=None):
    """Build a generate_content response with optional grounding metadata."""
    metadata = None
    if queries is not None or chunks is not None:
        metadata = types.GroundingMetadata(
            web_search_queries=queries or [],
            grounding_chunks=[
                types.GroundingChunk(web=types.GroundingChunkWeb(title=title, uri=uri))
                for title, uri in (chunks or [])
            ],
        )
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(role="model", parts=[types.Part(text=text)]),
                grounding_metadata=metadata,
            )
        ]
    )


class TestPlainFormatting:

    def test_format_response_verbatim(self):
        envelope = format_response("  hello\nworld ")
        wire = envelope.to_wire()
        assert wire == {
            "content": [{"type": "text", "kind": "text", "text": "  hello\nworld "}],
            "isError": False,
        }

    def test_handle_api_error(self):
        envelope = handle_api_error(ExecutionError("GEMINI_API_KEY is not set", tool_name="call_gemini"))
        assert envelope.is_error
        assert envelope.text.startswith(API_ERROR_MESSAGE)
        assert envelope.text.endswith("Details: GEMINI_API_KEY is not set")

    def test_handle_api_error_without_message(self):
        envelope = handle_api_error(RuntimeError())
        assert envelope.text.endswith("Details: RuntimeError")


class TestExtraction:

    def test_extract_text(self):
        assert extract_text(make_response("Answer")) == "Answer"

    def test_extract_text_without_candidates(self):
        assert extract_text(types.GenerateContentResponse(candidates=[])) == ""

    def test_extract_grounding_absent(self):
        assert extract_grounding(make_response("Answer")) == ([], [])

    def test_extract_grounding_keeps_order(self):
        response = make_response("Answer", ["q"], [("B", "https://b"), ("A", "https://a")])
        queries, sources = extract_grounding(response)
        assert queries == ["q"]
        assert [s.source_title for s in sources] == ["B", "A"]


class TestGroundedFormatting:

    def test_no_grounding_returns_verbatim_text(self):
        result = format_grounded_response(make_response("Plain answer."))
        assert result.text == "Plain answer."
        assert result.web_search_queries == []
        assert result.grounding_chunks == []

    def test_empty_grounding_metadata_returns_verbatim_text(self):
        result = format_grounded_response(make_response("Plain answer.", queries=[], chunks=[]))
        assert result.text == "Plain answer."

    def test_one_query_two_chunks(self):
        response = make_response(
            "Tokyo is the capital.",
            ["capital of japan"],
            [("Wikipedia", "https://en.wikipedia.org/wiki/Tokyo"), ("Gov", "https://japan.go.jp")],
        )
        result = format_grounded_response(response)
        text = result.text

        assert text.startswith("Tokyo is the capital.")
        block = text[len("Tokyo is the capital."):]
        assert CITATION_HEADER in block

        lines = block.splitlines()
        assert len([line for line in lines if line.startswith("Search queries:")]) == 1
        assert "Search queries: capital of japan" in lines

        numbered = [line for line in lines if line[:1].isdigit()]
        assert numbered == [
            "1. Wikipedia: https://en.wikipedia.org/wiki/Tokyo",
            "2. Gov: https://japan.go.jp",
        ]

    def test_grounded_wire_fields(self):
        result = format_grounded_response(make_response("x", ["a", "b"], [("T", "https://t")]))
        wire = result.to_wire()
        assert wire["webSearchQueries"] == ["a", "b"]
        assert wire["groundingChunks"] == [{"sourceTitle": "T", "sourceUri": "https://t"}]
        assert wire["content"][0]["kind"] == "text"

    def test_missing_title_and_uri(self):
        block = build_citation_block([], [GroundingSource(), GroundingSource(source_title="Only title")])
        assert "1. Unknown: " in block.splitlines()
        assert "2. Only title: " in block.splitlines()

    def test_queries_joined_with_comma(self):
        block = build_citation_block(["a", "b", "c"], [])
        assert "Search queries: a, b, c" in block.splitlines()
        assert "Source count" not in block

    def test_empty_block(self):
        assert build_citation_block([], []) == ""


class TestMarkdown:

    def test_events(self):
        markdown = format_events_to_markdown("Events", [
            {"title": "PyCon", "url": "https://example.com/1", "date": "2025-09-26", "place": "Hiroshima"},
        ])
        assert markdown.startswith("# Events\n\n## PyCon")
        assert "- Date: 2025-09-26" in markdown
        assert "- Place: Hiroshima" in markdown
        assert "- URL: https://example.com/1" in markdown

    def test_events_empty(self):
        assert format_events_to_markdown("Events", []) == "# Events\n\nNo events were found.\n"

    def test_users(self):
        markdown = format_users_to_markdown("Users", [{"nickname": "alice", "attended_event_count": 3}])
        assert "## alice" in markdown
        assert "- Attended events: 3" in markdown
        assert "- Organized events: 0" in markdown

    def test_users_empty_custom_message(self):
        assert format_users_to_markdown("Users", [], "nobody") == "# Users\n\nnobody\n"

    def test_groups(self):
        markdown = format_groups_to_markdown("Groups", [
            {"title": "Python JP", "url": "https://pyjp.connpass.com/", "member_users_count": 42},
        ])
        assert "## Python JP" in markdown
        assert "- Members: 42" in markdown
        assert "Owner" not in markdown
