"""
Event Directory Tools

Look up users, groups and events on connpass (API v2).
Requires CONNPASS_API_KEY in environment.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..base import ExecutionError, MCPTool, ToolParameter
from ..formatters import (
    format_events_to_markdown,
    format_groups_to_markdown,
    format_users_to_markdown,
)

logger = logging.getLogger(__name__)

CONNPASS_API_BASE = "https://connpass.com/api/v2"
MAX_COUNT = 100


def _nickname_parameter() -> ToolParameter:
    return ToolParameter(
        name="nickname",
        type="string",
        description="connpass user nickname",
        required=True
    )


def _count_parameter() -> ToolParameter:
    return ToolParameter(
        name="count",
        type="integer",
        description=f"Maximum number of results to return (1-{MAX_COUNT})",
        required=False,
        default=10
    )


def _event_summary(event: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a connpass event to the fields the Markdown renderer shows."""
    return {
        "title": event.get("title", ""),
        "url": event.get("url", ""),
        "date": event.get("started_at"),
        "place": event.get("place") or event.get("address"),
        "description": event.get("catch"),
    }


class ConnpassTool(MCPTool):
    """Base class for connpass lookups: auth header, GET and error mapping."""

    @property
    def category(self) -> str:
        return "directory"

    async def fetch(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        api_key = self.settings.connpass_api_key
        if not api_key:
            raise ExecutionError(
                "CONNPASS_API_KEY not found in environment",
                tool_name=self.name
            )

        try:
            response = await self.http.get(
                f"{CONNPASS_API_BASE}{path}",
                params=params,
                headers={"X-API-Key": api_key},
            )
        except httpx.TimeoutException:
            raise ExecutionError("connpass API request timed out", tool_name=self.name)
        except httpx.RequestError as e:
            raise ExecutionError(f"Failed to reach connpass API: {str(e)}", tool_name=self.name)

        if response.status_code != 200:
            raise ExecutionError(
                f"connpass API error ({response.status_code}): {response.text}",
                tool_name=self.name
            )

        try:
            return response.json()
        except ValueError:
            raise ExecutionError("connpass API returned malformed JSON", tool_name=self.name)


class GetUserListTool(ConnpassTool):
    """Activity counters for one or more users."""

    @property
    def name(self) -> str:
        return "get_user_list"

    @property
    def description(self) -> str:
        return "Get connpass activity statistics (attended, organized, presented, bookmarked events) for users"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="nicknames",
                type="array",
                description="List of connpass user nicknames",
                required=True
            )
        ]

    async def execute(self, nicknames: List[str]) -> str:
        if not nicknames:
            raise ExecutionError("At least one nickname is required.", tool_name=self.name)

        data = await self.fetch("/users/", {"nickname": ",".join(nicknames), "count": MAX_COUNT})
        return format_users_to_markdown("User statistics", data.get("users", []))


class GetUserGroupListTool(ConnpassTool):

    @property
    def name(self) -> str:
        return "get_user_group_list"

    @property
    def description(self) -> str:
        return "Get the connpass groups a user belongs to"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [_nickname_parameter(), _count_parameter()]

    async def execute(self, nickname: str, count: int = 10) -> str:
        count = max(1, min(count, MAX_COUNT))
        data = await self.fetch(f"/users/{nickname}/groups/", {"count": count})

        groups = [
            {
                "title": group.get("title", ""),
                "url": group.get("url", ""),
                "member_users_count": group.get("member_users_count", 0),
                "owner": group.get("owner_text"),
                "website_url": group.get("website_url"),
                "description": group.get("sub_title"),
            }
            for group in data.get("groups", [])
        ]
        return format_groups_to_markdown(f"Groups of {nickname}", groups)


class GetUserAttendedEventsTool(ConnpassTool):

    @property
    def name(self) -> str:
        return "get_user_attended_events"

    @property
    def description(self) -> str:
        return "Get the connpass events a user has attended"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [_nickname_parameter(), _count_parameter()]

    async def execute(self, nickname: str, count: int = 10) -> str:
        count = max(1, min(count, MAX_COUNT))
        data = await self.fetch(f"/users/{nickname}/attended_events/", {"count": count})
        events = [_event_summary(event) for event in data.get("events", [])]
        return format_events_to_markdown(f"Events attended by {nickname}", events)


class GetUserPresenterEventsTool(ConnpassTool):

    @property
    def name(self) -> str:
        return "get_user_presenter_events"

    @property
    def description(self) -> str:
        return "Get the connpass events where a user was a presenter"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [_nickname_parameter(), _count_parameter()]

    async def execute(self, nickname: str, count: int = 10) -> str:
        count = max(1, min(count, MAX_COUNT))
        data = await self.fetch(f"/users/{nickname}/presenter_events/", {"count": count})
        events = [_event_summary(event) for event in data.get("events", [])]
        return format_events_to_markdown(f"Events presented by {nickname}", events)
