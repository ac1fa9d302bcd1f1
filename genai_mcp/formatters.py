"""
Response Formatter

Turns raw tool output into the protocol's content envelope, appending a
citation block to web-grounded generations, plus the Markdown renderers
used by the event directory tools.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .types import GroundedResult, GroundingSource, ResponseEnvelope, TextContent

logger = logging.getLogger(__name__)

API_ERROR_MESSAGE = "An error occurred while retrieving information. Please try again later."

CITATION_HEADER = "--- Search Sources ---"


def format_response(text: str) -> ResponseEnvelope:
    """Wrap plain text verbatim as a single text item."""
    return ResponseEnvelope(content=[TextContent(text=text)])


def handle_api_error(error: BaseException) -> ResponseEnvelope:
    """Common upstream error handler: a user-visible text item flagged isError."""
    logger.error(f"Error processing API request: {error}")
    detail = getattr(error, "message", None) or str(error) or type(error).__name__
    return ResponseEnvelope(
        content=[TextContent(text=f"{API_ERROR_MESSAGE}\n\nDetails: {detail}")],
        is_error=True,
    )


def _first_candidate(response: Any) -> Any:
    candidates = getattr(response, "candidates", None) or []
    return candidates[0] if candidates else None


def extract_text(response: Any) -> str:
    """Primary text of a generate_content response, '' when there is none."""
    text = getattr(response, "text", None)
    if isinstance(text, str):
        return text

    candidate = _first_candidate(response)
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    if parts and isinstance(getattr(parts[0], "text", None), str):
        return parts[0].text
    return ""


def extract_grounding(response: Any) -> Tuple[List[str], List[GroundingSource]]:
    """Search queries and source chunks, in the order the provider returned them."""
    metadata = getattr(_first_candidate(response), "grounding_metadata", None)
    if metadata is None:
        return [], []

    queries = list(getattr(metadata, "web_search_queries", None) or [])
    sources = []
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        sources.append(GroundingSource(
            source_title=getattr(web, "title", None),
            source_uri=getattr(web, "uri", None),
        ))
    return queries, sources


def build_citation_block(queries: Sequence[str], sources: Sequence[GroundingSource]) -> str:
    """
    Render the citation block appended to grounded text.

    Empty when there is nothing to cite. Sources keep their upstream order
    and are numbered from 1.
    """
    if not queries and not sources:
        return ""

    lines = ["", "", CITATION_HEADER]
    if queries:
        lines.append(f"Search queries: {', '.join(queries)}")
    if sources:
        lines.append(f"Source count: {len(sources)}")
        for index, source in enumerate(sources, start=1):
            lines.append(f"{index}. {source.source_title or 'Unknown'}: {source.source_uri or ''}")
    return "\n".join(lines) + "\n"


def format_grounded_response(response: Any) -> GroundedResult:
    """Format a web-grounded generation, citing its sources."""
    text = extract_text(response)
    queries, sources = extract_grounding(response)

    logger.debug(
        f"[format_grounded_response] text length: {len(text)}, "
        f"queries: {len(queries)}, sources: {len(sources)}"
    )

    return GroundedResult(
        content=[TextContent(text=text + build_citation_block(queries, sources))],
        web_search_queries=queries,
        grounding_chunks=sources,
    )


# ============== Markdown renderers (event directory) ==============


def format_events_to_markdown(
    title: str,
    events: List[Dict[str, Any]],
    empty_message: str = "No events were found.",
) -> str:
    """Render events (title, url, date, place, description) as Markdown."""
    if not events:
        return f"# {title}\n\n{empty_message}\n"

    sections = []
    for event in events:
        lines = [f"## {event.get('title', '')}", ""]
        if event.get("date"):
            lines.append(f"- Date: {event['date']}")
        if event.get("place"):
            lines.append(f"- Place: {event['place']}")
        lines.append(f"- URL: {event.get('url', '')}")
        if event.get("description"):
            lines.extend(["", event["description"]])
        sections.append("\n".join(lines))

    return f"# {title}\n\n" + "\n\n".join(sections) + "\n"


def format_users_to_markdown(
    title: str,
    users: List[Dict[str, Any]],
    empty_message: str = "No matching users were found.",
) -> str:
    if not users:
        return f"# {title}\n\n{empty_message}\n"

    sections = []
    for user in users:
        sections.append("\n".join([
            f"## {user.get('nickname', '')}",
            "",
            f"- Attended events: {user.get('attended_event_count', 0)}",
            f"- Organized events: {user.get('organize_event_count', 0)}",
            f"- Presented events: {user.get('presenter_event_count', 0)}",
            f"- Bookmarked events: {user.get('bookmark_event_count', 0)}",
        ]))

    return f"# {title}\n\n" + "\n\n".join(sections) + "\n"


def format_groups_to_markdown(
    title: str,
    groups: List[Dict[str, Any]],
    empty_message: str = "No groups were found.",
) -> str:
    if not groups:
        return f"# {title}\n\n{empty_message}\n"

    sections = []
    for group in groups:
        lines = [
            f"## {group.get('title', '')}",
            "",
            f"- URL: {group.get('url', '')}",
            f"- Members: {group.get('member_users_count', 0)}",
        ]
        owner: Optional[str] = group.get("owner")
        if owner:
            lines.append(f"- Owner: {owner}")
        if group.get("website_url"):
            lines.append(f"- Website: {group['website_url']}")
        if group.get("description"):
            lines.extend(["", group["description"]])
        sections.append("\n".join(lines))

    return f"# {title}\n\n" + "\n\n".join(sections) + "\n"
