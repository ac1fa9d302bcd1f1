"""
Generative AI Tools

Text generation with Gemini (Developer API) or Vertex AI through the
google-genai SDK, optionally grounded with Google Search, plus a direct REST
call to the Gemini generateContent endpoint.
Requires GEMINI_API_KEY for Developer API mode; Vertex AI mode uses
Application Default Credentials with an explicit project and location.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..base import ExecutionError, MCPTool, ToolParameter
from ..formatters import extract_text, format_grounded_response
from ..types import ResponseEnvelope

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


def _options_parameter() -> ToolParameter:
    return ToolParameter(
        name="options",
        type="object",
        description="Options for configuring the AI call.",
        required=True,
        properties=[
            ToolParameter(
                name="useVertexAI",
                type="boolean",
                description="Set to true to use Vertex AI, false for Gemini Developer API."
            ),
            ToolParameter(
                name="model",
                type="string",
                description="The model name (e.g., 'gemini-2.5-flash') or full model path for Vertex AI."
            ),
            ToolParameter(
                name="project",
                type="string",
                description="Google Cloud Project ID (required if useVertexAI is true).",
                required=False
            ),
            ToolParameter(
                name="location",
                type="string",
                description="Google Cloud Project Location (required if useVertexAI is true).",
                required=False
            ),
            ToolParameter(
                name="apiVersion",
                type="string",
                description="API version to call (e.g., 'v1', 'v1beta').",
                required=False
            ),
        ]
    )


class _GenerativeTool(MCPTool):
    """Shared client construction and call for the google-genai tools."""

    default_api_version = "v1"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="userMessage",
                type="string",
                description="The message/prompt to send to the Generative AI.",
                required=True
            ),
            _options_parameter(),
        ]

    @property
    def category(self) -> str:
        return "genai"

    @abstractmethod
    def generation_config(self) -> Optional[types.GenerateContentConfig]:
        pass

    def build_client(self, options: Dict[str, Any]) -> genai.Client:
        http_options = types.HttpOptions(api_version=options.get("apiVersion") or self.default_api_version)

        if options["useVertexAI"]:
            if not options.get("project") or not options.get("location"):
                raise ExecutionError(
                    "Project and location are required for Vertex AI mode.",
                    tool_name=self.name
                )
            return genai.Client(
                vertexai=True,
                project=options["project"],
                location=options["location"],
                http_options=http_options,
            )

        if not self.settings.gemini_api_key:
            raise ExecutionError(
                "GEMINI_API_KEY is required for Developer API mode.",
                tool_name=self.name
            )
        return genai.Client(api_key=self.settings.gemini_api_key, http_options=http_options)

    async def execute(self, userMessage: str, options: Dict[str, Any]) -> Any:
        if not userMessage.strip():
            raise ExecutionError("User message cannot be empty.", tool_name=self.name)

        client = self.build_client(options)
        try:
            response = await client.aio.models.generate_content(
                model=options["model"],
                contents=userMessage,
                config=self.generation_config(),
            )
        except genai_errors.APIError as e:
            raise ExecutionError(f"Gemini API Error: {e.code} - {e.message}", tool_name=self.name)

        if not extract_text(response):
            raise ExecutionError("Empty response from model.", tool_name=self.name)
        return response


class GenAITool(_GenerativeTool):
    """Plain text generation."""

    @property
    def name(self) -> str:
        return "call_gemini_or_vertex_ai"

    @property
    def description(self) -> str:
        return "Calls either the Gemini Developer API or Vertex AI with a user prompt and options."

    def generation_config(self) -> Optional[types.GenerateContentConfig]:
        return None

    def format_result(self, result: Any) -> ResponseEnvelope:
        return super().format_result(extract_text(result))


class GoogleSearchTool(_GenerativeTool):
    """Generation grounded with Google Search; sources are cited in the text."""

    default_api_version = "v1beta"

    @property
    def name(self) -> str:
        return "call_google_search"

    @property
    def description(self) -> str:
        return (
            "Calls Gemini or Vertex AI with Google Search grounding enabled and "
            "returns the answer together with the search queries and sources used."
        )

    def generation_config(self) -> Optional[types.GenerateContentConfig]:
        return types.GenerateContentConfig(
            tools=[types.Tool(google_search=types.GoogleSearch())]
        )

    def format_result(self, result: Any) -> ResponseEnvelope:
        return format_grounded_response(result)


class GeminiCallTool(MCPTool):
    """Direct REST call to the Gemini generateContent endpoint."""

    @property
    def name(self) -> str:
        return "call_gemini"

    @property
    def description(self) -> str:
        return "Calls the Gemini API over REST with the user's message and returns the response text."

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter(
                name="userMessage",
                type="string",
                description="The message from the user to send to the Gemini API.",
                required=True
            ),
            ToolParameter(
                name="model",
                type="string",
                description="Model name; defaults to the server's configured Gemini model.",
                required=False
            ),
        ]

    @property
    def category(self) -> str:
        return "genai"

    async def execute(self, userMessage: str, model: Optional[str] = None) -> str:
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise ExecutionError(
                "GEMINI_API_KEY is not set. Please configure it in your .env file.",
                tool_name=self.name
            )
        if not userMessage.strip():
            raise ExecutionError("User message cannot be empty.", tool_name=self.name)

        payload = {"contents": [{"parts": [{"text": userMessage}]}]}
        url = f"{GEMINI_API_BASE}/{model or self.settings.gemini_model}:generateContent"

        try:
            response = await self.http.post(
                url,
                params={"key": api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException:
            raise ExecutionError("Gemini API request timed out", tool_name=self.name)
        except httpx.RequestError as e:
            raise ExecutionError(f"Failed to reach Gemini API: {str(e)}", tool_name=self.name)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            message = f"Gemini API Error: {response.status_code}"
            detail = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
            if detail:
                message += f" - {detail}"
            raise ExecutionError(message, tool_name=self.name)

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None

        if not text:
            raise ExecutionError(
                "Gemini API returned an unexpected response structure.",
                tool_name=self.name
            )
        return text
