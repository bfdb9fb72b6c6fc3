"""Configuration for the budget agent.

Loads settings from environment variables (via a .env file or the system
environment). Every setting has a default so the package can be imported
without any environment at all, which is what the test suite relies on.

Numeric limits live here rather than in the tools so that operators can tune
them per deployment; the tools still clamp whatever the model asks for.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists (it won't in CI)
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


# --- LLM (Large Language Model) ---
# The API key for Anthropic's Claude, which drives both agent flows
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")
ANTHROPIC_MAX_TOKENS: int = _int_env("ANTHROPIC_MAX_TOKENS", 4096)

# --- Agent loop ---
# Hard upper bound on model round-trips per run.
AGENT_MAX_ITERATIONS: int = _int_env("AGENT_MAX_ITERATIONS", 5)

# --- Tools ---
# The model may ask for any number of rows; these are the server-side limits.
TOOL_DEFAULT_RESULTS: int = _int_env("TOOL_DEFAULT_RESULTS", 10)
TOOL_MAX_RESULTS: int = _int_env("TOOL_MAX_RESULTS", 20)

# --- Query assistant ---
QUERY_MAX_LENGTH: int = _int_env("QUERY_MAX_LENGTH", 500)

# --- Recommendations ---
# Users with fewer transactions than this get no recommendations.
RECOMMENDATION_MIN_TRANSACTIONS: int = _int_env("RECOMMENDATION_MIN_TRANSACTIONS", 5)
RECOMMENDATION_TTL_DAYS: int = _int_env("RECOMMENDATION_TTL_DAYS", 7)
RECOMMENDATION_RETENTION_DAYS: int = _int_env("RECOMMENDATION_RETENTION_DAYS", 30)
RECOMMENDATION_RUN_HOUR_UTC: int = _int_env("RECOMMENDATION_RUN_HOUR_UTC", 6)

# --- Observability ---
# LangSmith picks these up automatically and traces every model call.
LANGCHAIN_API_KEY: str = os.getenv("LANGCHAIN_API_KEY", "")
LANGCHAIN_TRACING_V2: str = os.getenv("LANGCHAIN_TRACING_V2", "false")
