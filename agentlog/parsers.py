"""
Format adapters: turn one JSONL session log into a ParsedSession.

Each supported format is a plain function ``(Path) -> ParsedSession``
registered in ``PARSERS`` under its format identifier. Adding a format means
writing one function and adding one entry.

All adapters share the same tolerance rules: blank lines and lines that are
not JSON objects are skipped, unknown record types are skipped, unknown
content blocks degrade to a ``PassthroughBlock`` that keeps their type tag.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Callable, Iterator

from .errors import FormatUnsupported
from .models import (
    ContentBlock,
    Message,
    MessageEntry,
    ParsedSession,
    PassthroughBlock,
    SessionEntry,
    SessionMetadata,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolResultBlock,
    Usage,
)

logger = logging.getLogger("agentlog.parsers")

SIDECAR_SUFFIX = ".settings.json"

Parser = Callable[[Path], ParsedSession]

# ═══════════════════════════════════════════════════════════════════════════════
# Shared Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def iter_records(lines: Iterator[str] | list[str]) -> Iterator[dict]:
    """Yield decoded JSON objects, skipping blank and malformed lines."""
    for line in lines:
        line = line.strip()
        if not line:
            continue
        # Remove BOM if present
        if line.startswith("\ufeff"):
            line = line[1:]
        try:
            obj = json.loads(line, strict=False)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            yield obj


def read_records(path: Path) -> Iterator[dict]:
    """Read a whole session file and yield its records."""
    text = path.read_text(encoding="utf-8", errors="replace")
    return iter_records(text.split("\n"))


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            value = float(value)
        except OverflowError:
            return None
        return value if math.isfinite(value) else None
    return None


def _result_text(content: Any) -> str | None:
    """Flatten tool-result content into a display string."""
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            (_as_str(b.get("text")) or json.dumps(b)) if isinstance(b, dict) else str(b)
            for b in content
        )
    return json.dumps(content)


def _passthrough(block: dict) -> PassthroughBlock:
    text = _as_str(block.get("text"))
    if text is None:
        text = _as_str(block.get("content"))
    return PassthroughBlock(type=str(block.get("type") or "text"), text=text)


def normalize_anthropic_blocks(content: Any) -> list[ContentBlock]:
    """Normalize Anthropic-style content (string or block list)."""
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if content is None:
        return []
    if not isinstance(content, list):
        return [TextBlock(text=json.dumps(content))]

    blocks: list[ContentBlock] = []
    for block in content:
        if isinstance(block, str):
            blocks.append(TextBlock(text=block))
            continue
        if not isinstance(block, dict):
            continue

        block_type = block.get("type")
        if block_type == "text":
            blocks.append(TextBlock(text=_as_str(block.get("text")) or ""))
        elif block_type == "thinking":
            blocks.append(ThinkingBlock(
                thinking=_as_str(block.get("thinking")) or _as_str(block.get("text")) or ""
            ))
        elif block_type == "tool_use":
            arguments = block.get("input")
            blocks.append(ToolCallBlock(
                name=_as_str(block.get("name")) or "",
                arguments=arguments if isinstance(arguments, dict) else {},
                tool_use_id=_as_str(block.get("id")),
            ))
        elif block_type == "tool_result":
            blocks.append(ToolResultBlock(
                tool_use_id=_as_str(block.get("tool_use_id")),
                content=_result_text(block.get("content")),
                is_error=bool(block.get("is_error", False)),
            ))
        else:
            blocks.append(_passthrough(block))
    return blocks


def anthropic_usage(raw: Any) -> Usage | None:
    """Map Anthropic API usage counters onto the canonical Usage."""
    if not isinstance(raw, dict):
        return None
    return Usage(
        input=_as_int(raw.get("input_tokens")),
        output=_as_int(raw.get("output_tokens")),
        cache_read=_as_int(raw.get("cache_read_input_tokens")),
        cache_write=_as_int(raw.get("cache_creation_input_tokens")),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# pi_agent
# ═══════════════════════════════════════════════════════════════════════════════


def normalize_pi_blocks(content: Any) -> list[ContentBlock]:
    if isinstance(content, str):
        return [TextBlock(text=content)]
    if not isinstance(content, list):
        return []

    blocks: list[ContentBlock] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            blocks.append(TextBlock(text=_as_str(block.get("text")) or ""))
        elif block_type == "thinking":
            blocks.append(ThinkingBlock(thinking=_as_str(block.get("thinking")) or ""))
        elif block_type == "toolCall":
            arguments = block.get("arguments")
            blocks.append(ToolCallBlock(
                name=_as_str(block.get("name")) or "",
                arguments=arguments if isinstance(arguments, dict) else {},
                tool_use_id=_as_str(block.get("id")),
            ))
        else:
            blocks.append(_passthrough(block))
    return blocks


def pi_usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    cost = raw.get("cost")
    return Usage(
        input=_as_int(raw.get("input")),
        output=_as_int(raw.get("output")),
        cache_read=_as_int(raw.get("cacheRead")),
        cache_write=_as_int(raw.get("cacheWrite")),
        cost=_as_float(cost.get("total")) if isinstance(cost, dict) else _as_float(cost),
    )


def parse_pi_agent(path: Path) -> ParsedSession:
    session = ParsedSession()
    started = False

    for record in read_records(path):
        record_type = record.get("type")
        timestamp = _as_str(record.get("timestamp"))

        if record_type == "session":
            if started:
                continue
            started = True
            session.metadata = SessionMetadata(
                id=_as_str(record.get("id")) or "",
                timestamp=timestamp,
                cwd=_as_str(record.get("cwd")),
                model=_as_str(record.get("modelId")),
                provider=_as_str(record.get("provider")),
            )
            session.entries.append(SessionEntry(timestamp=timestamp))

        elif record_type == "message":
            msg = record.get("message")
            if not isinstance(msg, dict):
                continue
            session.entries.append(MessageEntry(
                timestamp=timestamp,
                message=Message(
                    role=_as_str(msg.get("role")) or "unknown",
                    content=normalize_pi_blocks(msg.get("content")),
                    model=_as_str(msg.get("model")),
                    usage=pi_usage(msg.get("usage")),
                ),
            ))

    return session


# ═══════════════════════════════════════════════════════════════════════════════
# factory
# ═══════════════════════════════════════════════════════════════════════════════


def sidecar_path(path: Path) -> Path:
    return path.with_name(path.stem + SIDECAR_SUFFIX)


def load_sidecar(path: Path) -> dict:
    """Read the optional settings file next to a session log."""
    settings_path = sidecar_path(path)
    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            settings = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.debug(f"Ignoring unreadable settings file {settings_path}: {e}")
        return {}
    return settings if isinstance(settings, dict) else {}


def parse_factory(path: Path) -> ParsedSession:
    session = ParsedSession()
    settings = load_sidecar(path)
    started = False

    for record in read_records(path):
        record_type = record.get("type")
        timestamp = _as_str(record.get("timestamp"))

        if record_type == "session_start":
            if started:
                continue
            started = True
            session.metadata = SessionMetadata(
                id=_as_str(record.get("id")) or "",
                timestamp=timestamp,
                cwd=_as_str(record.get("cwd")),
                title=_as_str(record.get("title")),
            )
            session.entries.append(SessionEntry(timestamp=timestamp))

        elif record_type == "message":
            msg = record.get("message")
            if not isinstance(msg, dict):
                continue
            session.entries.append(MessageEntry(
                timestamp=timestamp,
                message=Message(
                    role=_as_str(msg.get("role")) or "unknown",
                    content=normalize_anthropic_blocks(msg.get("content")),
                ),
            ))

    session.metadata.model = _as_str(settings.get("model"))
    session.metadata.provider = _as_str(settings.get("apiProviderLock"))
    return session


# ═══════════════════════════════════════════════════════════════════════════════
# claude_projects
# ═══════════════════════════════════════════════════════════════════════════════


def parse_claude_projects(path: Path) -> ParsedSession:
    """Parse a Claude Code transcript from ``~/.claude/projects``.

    Only ``user`` and ``assistant`` lines carry conversation; snapshots,
    summaries and progress lines are skipped. The first conversation line
    doubles as the session start.
    """
    session = ParsedSession()
    started = False

    for record in read_records(path):
        record_type = record.get("type")
        if record_type not in ("user", "assistant"):
            continue

        timestamp = _as_str(record.get("timestamp"))
        if not started:
            started = True
            session.metadata = SessionMetadata(
                id=_as_str(record.get("sessionId")) or _as_str(record.get("id")) or "",
                timestamp=timestamp,
                cwd=_as_str(record.get("cwd")),
                provider="anthropic",
            )
            session.entries.append(SessionEntry(timestamp=timestamp))

        msg = record.get("message")
        if not isinstance(msg, dict):
            continue

        model = None
        usage = None
        if record_type == "assistant":
            model = _as_str(msg.get("model"))
            if model and model != "<synthetic>" and not session.metadata.model:
                session.metadata.model = model
            usage = anthropic_usage(msg.get("usage"))

        session.entries.append(MessageEntry(
            timestamp=timestamp,
            message=Message(
                role=_as_str(msg.get("role")) or record_type,
                content=normalize_anthropic_blocks(msg.get("content")),
                model=model,
                usage=usage,
            ),
        ))

    return session


# ═══════════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════════

PARSERS: dict[str, Parser] = {
    "pi_agent": parse_pi_agent,
    "factory": parse_factory,
    "claude_projects": parse_claude_projects,
}


def get_parser(format: str) -> Parser | None:
    return PARSERS.get(format)


def parse_session(path: Path, format: str) -> ParsedSession:
    """Parse one session file with the adapter registered for ``format``."""
    parser = get_parser(format)
    if parser is None:
        raise FormatUnsupported(format)
    return parser(path)
