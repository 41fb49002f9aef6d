"""Startup configuration validation.

Checks that all required environment variables are set before the webhook
accepts updates. Called from bot.py at import time so that a missing key
causes a clear startup failure rather than a failed CRM write mid-conversation.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "ATTIO_API_KEY",
    "OPENAI_API_KEY",
]

OPTIONAL_VARS = [
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "SCHEMA_CACHE_TTL",
    "SESSION_IDLE_TTL",
    "LOG_LEVEL",
    "PORT",
]


class ConfigurationError(RuntimeError):
    """A required credential or setting is missing."""


def require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} not configured")
    return value


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty. Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


@dataclass
class Settings:
    telegram_bot_token: str
    attio_api_key: str
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    schema_cache_ttl: float = 300.0
    session_idle_ttl: float = 3600.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            telegram_bot_token=require_env("TELEGRAM_BOT_TOKEN"),
            attio_api_key=require_env("ATTIO_API_KEY"),
            openai_api_key=require_env("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            schema_cache_ttl=float(os.getenv("SCHEMA_CACHE_TTL", "300")),
            session_idle_ttl=float(os.getenv("SESSION_IDLE_TTL", "3600")),
        )
