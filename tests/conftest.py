"""Shared fixtures: JSONL writers and root definitions backed by tmp_path."""

import json
import os
from pathlib import Path

import pytest

from agentlog.config import Root


def _write_jsonl(path: Path, records: list, mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(record if isinstance(record, str) else json.dumps(record))
            f.write("\n")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def write_jsonl():
    """Write a list of records (dicts, or raw strings for broken lines)."""
    return _write_jsonl


@pytest.fixture
def make_root(tmp_path):
    def _make(root_id: str = "r1", format: str = "pi_agent", **kwargs) -> Root:
        path = kwargs.pop("path", tmp_path / root_id)
        return Root(
            id=root_id,
            label=kwargs.pop("label", root_id.upper()),
            path=path,
            session_glob=kwargs.pop("session_glob", "**/*.jsonl"),
            format=format,
            **kwargs,
        )
    return _make


@pytest.fixture
def pi_records():
    """A minimal pi_agent session: start record, user 'hello', assistant 'hi'."""
    return [
        {
            "type": "session",
            "id": "s1",
            "timestamp": "2026-02-24T10:00:00Z",
            "cwd": "/work/project",
            "provider": "anthropic",
            "modelId": "claude-sonnet-4",
        },
        {
            "type": "message",
            "timestamp": "2026-02-24T10:00:01Z",
            "message": {"role": "user", "content": [{"type": "text", "text": "hello"}]},
        },
        {
            "type": "message",
            "timestamp": "2026-02-24T10:00:02Z",
            "message": {
                "role": "assistant",
                "content": [{"type": "text", "text": "hi"}],
                "usage": {
                    "input": 10,
                    "output": 5,
                    "cacheRead": 2,
                    "cacheWrite": 1,
                    "cost": {"total": 0.25},
                },
            },
        },
    ]
