"""Centralized configuration for the calendar assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/calendar-assistant/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SSM_PREFIX = "/calendar-assistant"

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415  only needed when SSM parameters are used

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None`` if unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-opus-4-6")

# Cheap model for the best-effort planning step
PLANNER_MODEL_NAME: str = os.getenv("PLANNER_MODEL_NAME", "claude-haiku-4-5")

# ── Calendar / contacts / mail (Google) ─────────────────────────────
GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
GOOGLE_PEOPLE_BASE_URL: str = "https://people.googleapis.com/v1"
GMAIL_BASE_URL: str = "https://gmail.googleapis.com/gmail/v1"

# Only used by the CLI, which has no client to hand over account tokens
GOOGLE_ACCESS_TOKEN: str | None = _optional_env("GOOGLE_ACCESS_TOKEN")

DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "America/Vancouver")

# ── Voice calls (Vapi) ──────────────────────────────────────────────
VAPI_BASE_URL: str = "https://api.vapi.ai"
VAPI_API_KEY: str | None = _optional_env("VAPI_API_KEY")
VAPI_PHONE_NUMBER_ID: str | None = _optional_env("VAPI_PHONE_NUMBER_ID")
VAPI_ASSISTANT_ID: str | None = _optional_env("VAPI_ASSISTANT_ID")

CALL_POLL_INTERVAL_SECONDS: float = float(os.getenv("CALL_POLL_INTERVAL_SECONDS", "5"))
CALL_MAX_POLL_ATTEMPTS: int = int(os.getenv("CALL_MAX_POLL_ATTEMPTS", "120"))

# Business number dialled by the booking flow when the user gives none
DEFAULT_BOOKING_PHONE: str | None = _optional_env("DEFAULT_BOOKING_PHONE")
USER_DISPLAY_NAME: str = os.getenv("USER_DISPLAY_NAME", "the client")

# ── Web search (Tavily) ─────────────────────────────────────────────
TAVILY_BASE_URL: str = "https://api.tavily.com"
TAVILY_API_KEY: str | None = _optional_env("TAVILY_API_KEY")

# ── Sessions ────────────────────────────────────────────────────────
# 0 keeps sessions until process exit
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "0"))
SESSION_LOCK_TIMEOUT_SECONDS: float = float(os.getenv("SESSION_LOCK_TIMEOUT_SECONDS", "30"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
