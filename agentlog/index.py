"""
In-memory session index and the scanner that fills it.

The index holds one newest-first list per root plus an id map for detail
lookups. A scan always produces a full snapshot of a root and swaps it in
whole; there is no per-entry mutation.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from .config import Root
from .models import SessionMeta
from .parsers import SIDECAR_SUFFIX
from .preview import extract_preview

logger = logging.getLogger("agentlog.index")


def session_id(root_id: str, relative_path: str) -> str:
    """Stable id for a session file: 32-bit rolling hash, base 36.

    The hash runs over UTF-16 code units of ``"{root_id}:{relative_path}"``.
    Distinct paths can collide; this is rare and not guarded against.
    """
    data = f"{root_id}:{relative_path}".encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _base36(abs(h))


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(digits[r])
    return "".join(reversed(out))


def _newest_first(sessions: list[SessionMeta]) -> list[SessionMeta]:
    return sorted(sessions, key=lambda s: s.mtime, reverse=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Session Index
# ═══════════════════════════════════════════════════════════════════════════════


class SessionIndex:
    """Per-root session lists plus a flat id map."""

    def __init__(self):
        self._by_root: dict[str, list[SessionMeta]] = {}
        self._by_id: dict[str, SessionMeta] = {}

    @property
    def session_count(self) -> int:
        return len(self._by_id)

    @property
    def root_ids(self) -> list[str]:
        return list(self._by_root)

    def replace_root(self, root_id: str, sessions: list[SessionMeta]) -> None:
        """Swap in a root's full session list and refresh the id map."""
        self._drop_ids(root_id)
        self._by_root[root_id] = list(sessions)
        for meta in sessions:
            self._by_id[meta.id] = meta

    def remove_root(self, root_id: str) -> None:
        self._drop_ids(root_id)
        self._by_root.pop(root_id, None)

    def _drop_ids(self, root_id: str) -> None:
        for meta in self._by_root.get(root_id, []):
            current = self._by_id.get(meta.id)
            if current is not None and current.root_id == root_id:
                del self._by_id[meta.id]

    def get_by_root(self, root_id: str) -> list[SessionMeta]:
        return list(self._by_root.get(root_id, []))

    def get_by_id(self, session_id: str) -> SessionMeta | None:
        return self._by_id.get(session_id)

    def get_all(self) -> list[SessionMeta]:
        merged: list[SessionMeta] = []
        for sessions in self._by_root.values():
            merged.extend(sessions)
        return _newest_first(merged)


# ═══════════════════════════════════════════════════════════════════════════════
# Root Scanner
# ═══════════════════════════════════════════════════════════════════════════════


def is_session_candidate(path: Path) -> bool:
    return path.is_file() and not path.name.endswith(SIDECAR_SUFFIX)


def build_session_meta(root: Root, path: Path) -> SessionMeta:
    """Stat one file and build its listing entry. Raises OSError."""
    stat = path.stat()
    relative_path = path.relative_to(root.path).as_posix()
    preview = extract_preview(path, root.format)
    return SessionMeta(
        id=session_id(root.id, relative_path),
        root_id=root.id,
        path=str(path),
        relative_path=relative_path,
        filename=path.name,
        display_name=root.display_name(relative_path),
        mtime=stat.st_mtime_ns // 1_000_000,
        size=stat.st_size,
        first_prompt=preview.first_prompt,
        totals=preview.totals,
    )


def collect_sessions(root: Root) -> list[SessionMeta]:
    """Walk a root with its glob and return its sessions, newest first."""
    if not root.path.exists():
        logger.warning(f"Root {root.id} path not found: {root.path}")
        return []

    sessions: list[SessionMeta] = []
    try:
        candidates = sorted(root.path.glob(root.session_glob))
    except (OSError, ValueError) as e:
        logger.error(f"Cannot scan root {root.id} ({root.path}): {e}")
        return []

    for path in candidates:
        try:
            if not is_session_candidate(path):
                continue
            sessions.append(build_session_meta(root, path))
        except OSError as e:
            logger.warning(f"Skipping unreadable session file {path}: {e}")
        except Exception:
            logger.warning(f"Skipping session file {path}", exc_info=True)

    return _newest_first(sessions)


class RootScanner:
    """Scans roots into a SessionIndex.

    Scans of the same root are serialized, so the index always ends up with
    the snapshot from the scan that completed last.
    """

    def __init__(self, index: SessionIndex):
        self.index = index
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, root_id: str) -> asyncio.Lock:
        lock = self._locks.get(root_id)
        if lock is None:
            lock = self._locks[root_id] = asyncio.Lock()
        return lock

    async def scan_root(self, root: Root) -> list[SessionMeta]:
        async with self._lock_for(root.id):
            sessions = await asyncio.to_thread(collect_sessions, root)
            self.index.replace_root(root.id, sessions)
        logger.debug(f"Scanned root {root.id}: {len(sessions)} sessions")
        return sessions

    async def scan_all(self, roots: list[Root]) -> None:
        results = await asyncio.gather(
            *(self.scan_root(root) for root in roots), return_exceptions=True
        )
        for root, result in zip(roots, results):
            if isinstance(result, Exception):
                logger.error(f"Scan of root {root.id} failed: {result!r}")
