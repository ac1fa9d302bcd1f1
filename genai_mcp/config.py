"""
Server Configuration

Immutable settings snapshot read once at startup.
Every request builds its tools and session from this snapshot, nothing else
is shared between requests.
"""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3876
DEFAULT_MODEL = "gemini-2.5-flash"

# Fixed ceiling for in-flight sessions once a termination signal arrives.
SHUTDOWN_GRACE_SECONDS = 3.0

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration. Read-only after startup."""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_MODEL
    connpass_api_key: str = ""
    json_response: bool = True
    log_level: str = "INFO"
    server_name: str = "GenAI MCP Server"
    server_version: str = "0.1.1"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUTHY


def load_settings() -> Settings:
    """
    Build the settings snapshot from the environment (and .env, if present).
    Raises ValueError when PORT is not an integer.
    """
    load_dotenv()

    raw_port = os.getenv("PORT", str(DEFAULT_PORT))
    try:
        port = int(raw_port)
    except ValueError:
        raise ValueError(f"PORT must be an integer, got {raw_port!r}")

    settings = Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
        connpass_api_key=os.getenv("CONNPASS_API_KEY", ""),
        json_response=_env_flag("MCP_JSON_RESPONSE", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; Gemini Developer API tools will return errors")

    return settings
