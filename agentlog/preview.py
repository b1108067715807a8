"""
Cheap listing enrichment: first user prompt and running token totals.

Only the first ``MAX_PREVIEW_LINES`` lines of a file are read, so listing a
directory of large logs stays bounded. This is best-effort: anything it
cannot make sense of yields an empty Preview, never an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import islice
from pathlib import Path
from typing import Any, Callable, Iterable

from .models import TokenTotals, Usage
from .parsers import anthropic_usage, iter_records, pi_usage

logger = logging.getLogger("agentlog.preview")

MAX_PREVIEW_LINES = 50
MAX_PROMPT_LENGTH = 200
ELLIPSIS = "…"


@dataclass
class Preview:
    first_prompt: str | None = None
    totals: TokenTotals | None = None

    def add_usage(self, usage: Usage | None) -> None:
        if usage is None:
            return
        if self.totals is None:
            self.totals = TokenTotals()
        self.totals.add(usage)

    def offer_prompt(self, text: str | None) -> None:
        if self.first_prompt is None and text:
            self.first_prompt = truncate(text)


def truncate(text: str, max_len: int = MAX_PROMPT_LENGTH) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + ELLIPSIS


def _first_text(content: Any) -> str | None:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str) and text:
                    return text
    return None


def _message(record: dict) -> dict:
    msg = record.get("message")
    return msg if isinstance(msg, dict) else {}


# ── Per-format extractors ─────────────────────────────────────────────────────


def _extract_pi_agent(records: Iterable[dict], preview: Preview) -> None:
    for record in records:
        if record.get("type") != "message":
            continue
        msg = _message(record)
        if msg.get("role") == "user":
            preview.offer_prompt(_first_text(msg.get("content")))
        preview.add_usage(pi_usage(msg.get("usage")))


def _extract_factory(records: Iterable[dict], preview: Preview) -> None:
    for record in records:
        msg = _message(record)
        record_type = record.get("type")
        if record_type == "human" or (record_type == "message" and msg.get("role") == "user"):
            preview.offer_prompt(_first_text(msg.get("content")))
            if preview.first_prompt is not None:
                return


def _extract_claude_projects(records: Iterable[dict], preview: Preview) -> None:
    for record in records:
        record_type = record.get("type")
        msg = _message(record)
        if record_type == "user":
            preview.offer_prompt(_first_text(msg.get("content")))
        elif record_type == "assistant":
            preview.add_usage(anthropic_usage(msg.get("usage")))


EXTRACTORS: dict[str, Callable[[Iterable[dict], Preview], None]] = {
    "pi_agent": _extract_pi_agent,
    "factory": _extract_factory,
    "claude_projects": _extract_claude_projects,
}


def extract_preview(path: Path, format: str) -> Preview:
    """Return the first prompt and token totals found in the file's prefix."""
    preview = Preview()
    extractor = EXTRACTORS.get(format)
    if extractor is None:
        return preview

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            extractor(iter_records(islice(f, MAX_PREVIEW_LINES)), preview)
    except (OSError, ValueError, OverflowError, TypeError) as e:
        logger.debug(f"Preview skipped for {path}: {e}")
        return Preview()
    return preview
