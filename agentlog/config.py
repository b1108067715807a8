"""Runtime settings and root definitions.

Settings come from ``AGENTLOG_`` prefixed environment variables; the list of
roots comes from a JSON config file::

    {
      "roots": [
        {
          "id": "pi",
          "label": "Pi agent",
          "path": "~/.pi/agent/sessions",
          "session_glob": "**/*.jsonl",
          "format": "pi_agent",
          "masks": ["--Users-me--"]
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("agentlog.config")


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class Settings:
    """Application configuration loaded from environment variables."""

    config_path: Path = field(default_factory=lambda: Path("config.json"))
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    watch_enabled: bool = True
    watch_debounce_ms: int = 500
    keepalive_seconds: float = 30.0
    max_session_cache_size: int = 200
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @staticmethod
    def from_env() -> Settings:
        """Load settings from environment with AGENTLOG_ prefix."""
        s = Settings()
        if v := os.environ.get("AGENTLOG_CONFIG"):
            s.config_path = Path(v).expanduser()
        if v := os.environ.get("AGENTLOG_HOST"):
            s.host = v
        if v := os.environ.get("AGENTLOG_PORT"):
            s.port = int(v)
        if v := os.environ.get("AGENTLOG_DEBUG"):
            s.debug = _env_flag(v)
        if v := os.environ.get("AGENTLOG_WATCH_ENABLED"):
            s.watch_enabled = _env_flag(v)
        if v := os.environ.get("AGENTLOG_WATCH_DEBOUNCE_MS"):
            s.watch_debounce_ms = int(v)
        if v := os.environ.get("AGENTLOG_KEEPALIVE_SECONDS"):
            s.keepalive_seconds = float(v)
        if v := os.environ.get("AGENTLOG_MAX_SESSION_CACHE_SIZE"):
            s.max_session_cache_size = int(v)
        if v := os.environ.get("AGENTLOG_CORS_ORIGINS"):
            s.cors_origins = [o.strip() for o in v.split(",")]
        # Support legacy env vars
        if v := os.environ.get("HOST"):
            s.host = v
        if v := os.environ.get("PORT"):
            s.port = int(v)
        return s


@dataclass(frozen=True)
class Root:
    """One configured directory of session log files."""

    id: str
    label: str
    path: Path
    session_glob: str
    format: str
    masks: tuple[str, ...] = ()

    def display_name(self, relative_path: str) -> str:
        """Strip the first matching mask prefix from a relative path."""
        for mask in self.masks:
            if mask and relative_path.startswith(mask):
                return relative_path[len(mask):] or relative_path
        return relative_path


def expand_path(raw: str) -> Path:
    """Resolve a configured path, expanding a leading ``~``."""
    return Path(raw).expanduser().resolve()


def parse_roots(raw: dict) -> list[Root]:
    """Build Root definitions from a decoded config document."""
    roots: list[Root] = []
    for item in raw.get("roots", []):
        roots.append(Root(
            id=str(item["id"]),
            label=str(item.get("label") or item["id"]),
            path=expand_path(item["path"]),
            session_glob=item.get("session_glob", "**/*.jsonl"),
            format=item["format"],
            masks=tuple(item.get("masks") or ()),
        ))
    return roots


def load_roots(config_path: Path) -> list[Root]:
    """Read the roots list from a JSON config file.

    A missing file yields no roots; a malformed one raises, since nothing can
    be served without a valid configuration.
    """
    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}, no roots loaded")
        return []
    with open(config_path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    roots = parse_roots(raw)
    logger.info(f"Loaded {len(roots)} roots from {config_path}")
    return roots
