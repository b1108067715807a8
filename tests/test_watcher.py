"""
Tests for per-root debounced change detection.

Usage:
    pytest tests/test_watcher.py -v
"""

import asyncio

from agentlog.watcher import ChangeWatcher


def run(coro):
    return asyncio.run(coro)


class TestDebounce:
    def test_burst_yields_one_callback(self):
        calls = []

        async def scenario():
            watcher = ChangeWatcher(calls.append, debounce_ms=50)
            for _ in range(10):
                watcher.handle_event("r1", "/data/r1/a.jsonl")
                await asyncio.sleep(0.01)
            assert watcher.pending_roots == ["r1"]
            await asyncio.sleep(0.2)
            assert watcher.pending_roots == []
            await watcher.stop()

        run(scenario())
        assert calls == ["r1"]

    def test_separate_bursts_fire_separately(self):
        calls = []

        async def scenario():
            watcher = ChangeWatcher(calls.append, debounce_ms=30)
            watcher.handle_event("r1", "a.jsonl")
            await asyncio.sleep(0.15)
            watcher.handle_event("r1", "a.jsonl")
            await asyncio.sleep(0.15)
            await watcher.stop()

        run(scenario())
        assert calls == ["r1", "r1"]

    def test_roots_debounce_independently(self):
        """Steady activity on one root never holds back another root."""
        calls = []

        async def scenario():
            watcher = ChangeWatcher(calls.append, debounce_ms=100)
            watcher.handle_event("r1", "a.jsonl")
            for _ in range(5):
                watcher.handle_event("r2", "b.jsonl")
                await asyncio.sleep(0.035)
            assert calls == ["r1"]
            await asyncio.sleep(0.3)
            await watcher.stop()

        run(scenario())
        assert calls == ["r1", "r2"]

    def test_non_session_files_ignored(self):
        calls = []

        async def scenario():
            watcher = ChangeWatcher(calls.append, debounce_ms=20)
            watcher.handle_event("r1", "/data/r1/a.settings.json")
            watcher.handle_event("r1", "/data/r1/.a.jsonl.swp")
            watcher.handle_event("r1", "/data/r1/notes.txt")
            assert watcher.pending_roots == []
            await asyncio.sleep(0.1)
            await watcher.stop()

        run(scenario())
        assert calls == []

    def test_async_callback_awaited(self):
        calls = []

        async def on_change(root_id):
            await asyncio.sleep(0)
            calls.append(root_id)

        async def scenario():
            watcher = ChangeWatcher(on_change, debounce_ms=20)
            watcher.handle_event("r1", "a.jsonl")
            await asyncio.sleep(0.15)
            await watcher.stop()

        run(scenario())
        assert calls == ["r1"]

    def test_failing_callback_does_not_break_watcher(self):
        calls = []

        def on_change(root_id):
            calls.append(root_id)
            raise RuntimeError("rescan failed")

        async def scenario():
            watcher = ChangeWatcher(on_change, debounce_ms=20)
            watcher.handle_event("r1", "a.jsonl")
            await asyncio.sleep(0.1)
            watcher.handle_event("r1", "a.jsonl")
            await asyncio.sleep(0.1)
            await watcher.stop()

        run(scenario())
        assert calls == ["r1", "r1"]


class TestLifecycle:
    def test_stop_cancels_pending_timers(self):
        calls = []

        async def scenario():
            watcher = ChangeWatcher(calls.append, debounce_ms=50)
            watcher.handle_event("r1", "a.jsonl")
            watcher.handle_event("r2", "b.jsonl")
            await watcher.stop()
            assert watcher.pending_roots == []
            await asyncio.sleep(0.15)
            watcher.handle_event("r1", "a.jsonl")
            assert watcher.pending_roots == []

        run(scenario())
        assert calls == []

    def test_missing_root_skipped(self, make_root, tmp_path):
        async def scenario():
            watcher = ChangeWatcher(lambda root_id: None)
            watcher.watch_root(make_root("gone", path=tmp_path / "missing"))
            assert watcher.skipped_roots == {"gone"}
            assert watcher.watched_roots == []
            await watcher.stop()

        run(scenario())

    def test_watch_root_is_idempotent(self, make_root):
        async def scenario():
            root = make_root("r1")
            root.path.mkdir()
            watcher = ChangeWatcher(lambda root_id: None)
            watcher.watch_root(root)
            watcher.watch_root(root)
            assert watcher.watched_roots == ["r1"]
            await watcher.stop()
            assert watcher.watched_roots == []

        run(scenario())

    def test_file_write_triggers_callback(self, make_root, write_jsonl, pi_records):
        calls = []

        async def scenario():
            root = make_root("r1")
            root.path.mkdir()
            watcher = ChangeWatcher(calls.append, debounce_ms=50)
            watcher.watch_all([root])
            await asyncio.sleep(0.3)

            write_jsonl(root.path / "new.jsonl", pi_records)
            for _ in range(100):
                if calls:
                    break
                await asyncio.sleep(0.05)
            await watcher.stop()

        run(scenario())
        assert calls == ["r1"]
