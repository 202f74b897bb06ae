"""Orchestrator configuration: paths and defaults."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from main_config import (
    DB_DIR as _DB_DIR,
    SESSIONS_DIR as _SESSIONS_DIR,
)

load_dotenv()

# Path objects for use in this package (main_config uses os.path strings)
DB_DIR = Path(_DB_DIR)
SESSIONS_DIR = Path(_SESSIONS_DIR)

DEFAULT_VENDOR = os.getenv("DEFAULT_VENDOR", "perplexity")
# Empty means "use the vendor's own default model"
DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "")
DEFAULT_MAX_TOKENS = int(os.getenv("DEFAULT_MAX_TOKENS", "256"))
DEFAULT_DISABLE_SEARCH = True
DEFAULT_MAX_TOOL_ITERATIONS = 10

SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "3600"))
SESSION_CLEANUP_INTERVAL_SECONDS = 300

MCP_REQUEST_TIMEOUT = float(os.getenv("MCP_REQUEST_TIMEOUT", "90"))


def _split_urls(raw: str) -> list[str]:
    return [u.strip() for u in raw.split(",") if u.strip()]


MCP_SERVER_URLS = _split_urls(os.getenv("MCP_SERVER_URLS", ""))


def ensure_dirs() -> None:
    """Create db and sessions directories if they do not exist."""
    DB_DIR.mkdir(parents=True, exist_ok=True)
    SESSIONS_DIR.mkdir(parents=True, exist_ok=True)
