"""Centralized configuration for the Pitchside booking agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/pitchside/<VARIABLE_NAME>``.

Secrets are resolved lazily through :func:`require_env` so that only the
LLM backend actually selected needs credentials.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

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
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/pitchside/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /pitchside/{name} (AWS)."
    )


def _get_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


# ── LLM ─────────────────────────────────────────────────────────────
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai").lower()
LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "3000"))

OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT", "60"))

GOOGLE_CLOUD_LOCATION: str = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-haiku-4-5")

# ── Tool routing ────────────────────────────────────────────────────
ROUTING_ENABLED: bool = _get_bool("ROUTING_ENABLED", True)
ROUTER_TOP_N: int = int(os.getenv("ROUTER_TOP_N", "3"))
ROUTER_MAX_TOKENS: int = int(os.getenv("ROUTER_MAX_TOKENS", "200"))

# ── Agent loop & sessions ───────────────────────────────────────────
AGENT_MAX_ITERATIONS: int = int(os.getenv("AGENT_MAX_ITERATIONS", "7"))
SESSION_IDLE_MINUTES: int = int(os.getenv("SESSION_IDLE_MINUTES", "15"))
SESSION_MAX_MESSAGES: int = int(os.getenv("SESSION_MAX_MESSAGES", "10"))
SESSION_SWEEP_SECONDS: int = int(os.getenv("SESSION_SWEEP_SECONDS", "60"))

# ── Business domain ─────────────────────────────────────────────────
BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "Europe/Istanbul")

# ── Storage ─────────────────────────────────────────────────────────
# Empty means "use the in-memory datastore" (CLI / local dev only).
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
DATABASE_POOL_MAX: int = int(os.getenv("DATABASE_POOL_MAX", "20"))
CACHE_MAX_BYTES: int = int(os.getenv("CACHE_MAX_BYTES", str(20 * 1024 * 1024)))

# ── WhatsApp channel ────────────────────────────────────────────────
WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
WHATSAPP_ACCESS_TOKEN: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
WHATSAPP_BASE_URL: str = os.getenv("WHATSAPP_BASE_URL", "https://graph.facebook.com/v21.0")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
