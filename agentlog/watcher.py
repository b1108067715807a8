"""
Filesystem watcher with per-root debouncing.

Each root gets its own ``watchfiles.awatch`` task. Qualifying changes under a
root (re)start that root's quiet-period timer; when the timer runs out the
change callback fires once for the whole burst.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Awaitable, Callable

from watchfiles import awatch

from .config import Root

logger = logging.getLogger("agentlog.watcher")

SESSION_SUFFIX = ".jsonl"

ChangeCallback = Callable[[str], Awaitable[None] | None]


class ChangeWatcher:
    """Watches root directories and reports coalesced changes per root."""

    def __init__(
        self,
        on_change: ChangeCallback,
        debounce_ms: int = 500,
        suffix: str = SESSION_SUFFIX,
    ):
        self.on_change = on_change
        self.debounce_seconds = debounce_ms / 1000
        self.suffix = suffix
        self.skipped_roots: set[str] = set()
        self._tasks: dict[str, asyncio.Task] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._callbacks: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._stopped = False

    @property
    def watched_roots(self) -> list[str]:
        return list(self._tasks)

    @property
    def pending_roots(self) -> list[str]:
        return list(self._timers)

    def watch_root(self, root: Root) -> None:
        if root.id in self._tasks:
            return
        if not root.path.exists():
            logger.warning(f"Watch skipped (missing path): {root.path}")
            self.skipped_roots.add(root.id)
            return

        self._tasks[root.id] = asyncio.create_task(self._watch_loop(root))
        logger.info(f"Watching {root.path}")

    def watch_all(self, roots: list[Root]) -> None:
        for root in roots:
            self.watch_root(root)

    async def _watch_loop(self, root: Root) -> None:
        try:
            async for changes in awatch(
                root.path,
                stop_event=self._stop_event,
                recursive=True,
                step=100,
            ):
                for _change, path_str in changes:
                    self.handle_event(root.id, path_str)
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error(f"File watcher error for root {root.id}: {e}")

    def handle_event(self, root_id: str, path: str | Path) -> None:
        """Feed one raw filesystem event for a root into its debounce timer."""
        if self._stopped or not str(path).endswith(self.suffix):
            return

        existing = self._timers.pop(root_id, None)
        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        self._timers[root_id] = loop.call_later(
            self.debounce_seconds, self._fire, root_id
        )

    def _fire(self, root_id: str) -> None:
        self._timers.pop(root_id, None)
        try:
            result = self.on_change(root_id)
        except Exception:
            logger.exception(f"Change callback failed for root {root_id}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callbacks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callbacks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            logger.error(f"Change callback failed: {exc}")

    async def stop(self) -> None:
        """Release every watch and cancel every pending timer and callback."""
        self._stopped = True
        self._stop_event.set()

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        pending = list(self._tasks.values()) + list(self._callbacks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._callbacks.clear()
        logger.info("File watcher stopped")
