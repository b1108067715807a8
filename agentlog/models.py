"""Canonical session model shared by every format adapter."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# ═══════════════════════════════════════════════════════════════════════════════
# Content Blocks
# ═══════════════════════════════════════════════════════════════════════════════


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str


class ToolCallBlock(BaseModel):
    type: Literal["toolCall"] = "toolCall"
    name: str
    arguments: dict = Field(default_factory=dict)
    tool_use_id: str | None = None


class ToolResultBlock(BaseModel):
    type: Literal["toolResult"] = "toolResult"
    tool_use_id: str | None = None
    content: str | None = None
    is_error: bool = False


class PassthroughBlock(BaseModel):
    """A block of a type no adapter knows; keeps its tag, shown as text."""

    type: str
    text: str | None = None


ContentBlock = TextBlock | ThinkingBlock | ToolCallBlock | ToolResultBlock | PassthroughBlock


# ═══════════════════════════════════════════════════════════════════════════════
# Entries
# ═══════════════════════════════════════════════════════════════════════════════


class Usage(BaseModel):
    input: int | None = None
    output: int | None = None
    cache_read: int | None = None
    cache_write: int | None = None
    cost: float | None = None


class Message(BaseModel):
    role: str
    content: list[ContentBlock]
    model: str | None = None
    usage: Usage | None = None


class SessionEntry(BaseModel):
    type: Literal["session"] = "session"
    timestamp: str | None = None


class MessageEntry(BaseModel):
    type: Literal["message"] = "message"
    timestamp: str | None = None
    message: Message


Entry = SessionEntry | MessageEntry


class SessionMetadata(BaseModel):
    id: str = ""
    timestamp: str | None = None
    cwd: str | None = None
    model: str | None = None
    provider: str | None = None
    title: str | None = None


class ParsedSession(BaseModel):
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    entries: list[Entry] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Index Models
# ═══════════════════════════════════════════════════════════════════════════════


class TokenTotals(BaseModel):
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    cost: float = 0.0

    def add(self, usage: Usage) -> None:
        self.input += usage.input or 0
        self.output += usage.output or 0
        self.cache_read += usage.cache_read or 0
        self.cache_write += usage.cache_write or 0
        self.cost += usage.cost or 0.0


class SessionMeta(BaseModel):
    id: str
    root_id: str
    path: str
    relative_path: str
    filename: str
    display_name: str
    mtime: int  # epoch milliseconds
    size: int
    first_prompt: str | None = None
    totals: TokenTotals | None = None


class RootSummary(BaseModel):
    id: str
    label: str


class RootListResponse(BaseModel):
    roots: list[RootSummary]
    total_count: int


class SessionListResponse(BaseModel):
    sessions: list[SessionMeta]
    total_count: int
