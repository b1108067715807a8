"""
agentlog - Agent Session Log Viewer Backend

A FastAPI server that indexes JSONL session logs written by several coding
agents, normalizes them into one schema, and pushes live updates when the
logs change on disk.

Usage:
    python -m agentlog.server
    # or: uvicorn agentlog.server:app --host 0.0.0.0 --port 3000

Environment variables (prefix AGENTLOG_):
    AGENTLOG_CONFIG              - Roots config file (default: ./config.json)
    AGENTLOG_HOST                - Bind host (default: 0.0.0.0)
    AGENTLOG_PORT                - Bind port (default: 3000)
    AGENTLOG_DEBUG               - Enable debug/reload (default: false)
    AGENTLOG_WATCH_ENABLED       - Enable filesystem watcher (default: true)
    AGENTLOG_WATCH_DEBOUNCE_MS   - Quiet period before a rescan (default: 500)
    AGENTLOG_KEEPALIVE_SECONDS   - Ping interval on live channels (default: 30)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .config import Root, Settings, load_roots
from .errors import AppError, FormatUnsupported, RootNotFound, SessionNotFound
from .index import RootScanner, SessionIndex
from .models import (
    ParsedSession,
    RootListResponse,
    RootSummary,
    SessionListResponse,
    SessionMeta,
)
from .parsers import get_parser
from .watcher import ChangeWatcher

logger = logging.getLogger("agentlog")

ROOT_UPDATED = "root-updated"
STREAM_QUEUE_SIZE = 100

# ═══════════════════════════════════════════════════════════════════════════════
# Session Cache (LRU)
# ═══════════════════════════════════════════════════════════════════════════════


class SessionCache:
    """LRU of parsed sessions keyed by session id.

    An entry is served only while its file mtime is unchanged. Entries remember
    their root so a rescan can drop a whole root at once.
    """

    def __init__(self, max_size: int = 200):
        self._entries: OrderedDict[str, tuple[str, float, ParsedSession]] = OrderedDict()
        self._max_size = max_size

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, meta: SessionMeta, file_mtime: float) -> ParsedSession | None:
        entry = self._entries.get(meta.id)
        if entry is None:
            return None
        root_id, cached_mtime, parsed = entry
        if root_id != meta.root_id or cached_mtime < file_mtime:
            del self._entries[meta.id]
            return None
        self._entries.move_to_end(meta.id)
        return parsed

    def put(self, meta: SessionMeta, file_mtime: float, parsed: ParsedSession) -> None:
        self._entries[meta.id] = (meta.root_id, file_mtime, parsed)
        self._entries.move_to_end(meta.id)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def invalidate_root(self, root_id: str) -> int:
        stale = [sid for sid, (rid, _, _) in self._entries.items() if rid == root_id]
        for sid in stale:
            del self._entries[sid]
        return len(stale)


# ═══════════════════════════════════════════════════════════════════════════════
# Services
# ═══════════════════════════════════════════════════════════════════════════════


class SessionService:
    """Resolves roots and sessions and parses session files on demand."""

    def __init__(
        self,
        roots: list[Root],
        index: SessionIndex,
        scanner: RootScanner,
        max_cache_size: int = 200,
    ):
        self._roots: dict[str, Root] = {r.id: r for r in roots}
        self.index = index
        self.scanner = scanner
        self._cache = SessionCache(max_size=max_cache_size)

    @property
    def roots(self) -> list[Root]:
        return list(self._roots.values())

    def list_roots(self) -> list[RootSummary]:
        return [RootSummary(id=r.id, label=r.label) for r in self._roots.values()]

    def get_root(self, root_id: str) -> Root:
        root = self._roots.get(root_id)
        if root is None:
            raise RootNotFound(root_id)
        return root

    def list_sessions(self, root_id: str) -> list[SessionMeta]:
        self.get_root(root_id)
        return self.index.get_by_root(root_id)

    def list_all_sessions(self) -> list[SessionMeta]:
        return self.index.get_all()

    def get_session(self, session_id: str) -> ParsedSession:
        meta = self.index.get_by_id(session_id)
        if meta is None:
            raise SessionNotFound(session_id)
        root = self.get_root(meta.root_id)
        parser = get_parser(root.format)
        if parser is None:
            raise FormatUnsupported(root.format)

        path = Path(meta.path)
        try:
            mtime = path.stat().st_mtime
        except OSError:
            raise SessionNotFound(session_id)

        cached = self._cache.get(meta, mtime)
        if cached is not None:
            return cached

        try:
            parsed = parser(path)
        except OSError as e:
            logger.warning(f"Cannot read session file {path}: {e}")
            raise SessionNotFound(session_id)
        self._cache.put(meta, mtime, parsed)
        return parsed

    async def scan_all(self) -> None:
        await self.scanner.scan_all(self.roots)

    async def rescan(self, root_id: str) -> list[SessionMeta]:
        root = self.get_root(root_id)
        sessions = await self.scanner.scan_root(root)
        dropped = self._cache.invalidate_root(root_id)
        if dropped:
            logger.debug(f"Dropped {dropped} cached sessions of root {root_id}")
        return sessions


# ═══════════════════════════════════════════════════════════════════════════════
# Live Connection Manager
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class ClientSubscription:
    websocket: WebSocket
    root_ids: set[str] = field(default_factory=set)


class ConnectionManager:
    """Fans events out to WebSocket clients and SSE streams."""

    def __init__(self):
        self._clients: dict[WebSocket, ClientSubscription] = {}
        self._streams: set[asyncio.Queue] = set()

    def add(self, ws: WebSocket) -> None:
        self._clients[ws] = ClientSubscription(websocket=ws)

    def remove(self, ws: WebSocket) -> None:
        self._clients.pop(ws, None)

    def subscription(self, ws: WebSocket) -> ClientSubscription | None:
        return self._clients.get(ws)

    def open_stream(self, maxsize: int = STREAM_QUEUE_SIZE) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._streams.add(queue)
        return queue

    def close_stream(self, queue: asyncio.Queue) -> None:
        self._streams.discard(queue)

    async def broadcast(self, event: dict) -> None:
        root_id = event.get("data", {}).get("root_id")

        disconnected: list[WebSocket] = []
        for ws, sub in list(self._clients.items()):
            if sub.root_ids and root_id and root_id not in sub.root_ids:
                continue
            try:
                await ws.send_json(event)
            except Exception:
                disconnected.append(ws)

        for ws in disconnected:
            self.remove(ws)

        for queue in self._streams:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug("Event stream backlog full, dropping event")

    @property
    def client_count(self) -> int:
        return len(self._clients) + len(self._streams)


def root_updated_event(root_id: str) -> dict:
    return {
        "type": ROOT_UPDATED,
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "data": {"root_id": root_id},
    }


# ═══════════════════════════════════════════════════════════════════════════════
# FastAPI Application + Routes
# ═══════════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown."""
    start_time = time.monotonic()

    settings = Settings.from_env()
    roots = load_roots(settings.config_path)

    index = SessionIndex()
    scanner = RootScanner(index)
    session_service = SessionService(
        roots, index, scanner, max_cache_size=settings.max_session_cache_size
    )

    logger.info(f"Scanning {len(roots)} roots ...")
    await session_service.scan_all()
    logger.info(
        f"Found {index.session_count} sessions in {len(roots)} roots "
        f"in {time.monotonic() - start_time:.1f}s"
    )

    connection_manager = ConnectionManager()

    async def on_root_changed(root_id: str) -> None:
        logger.info(f"Root {root_id} changed, rescanning...")
        await session_service.rescan(root_id)
        await connection_manager.broadcast(root_updated_event(root_id))

    watcher = None
    if settings.watch_enabled:
        watcher = ChangeWatcher(on_root_changed, debounce_ms=settings.watch_debounce_ms)
        watcher.watch_all(roots)
        logger.info("File watcher started")

    app.state.settings = settings
    app.state.session_service = session_service
    app.state.connection_manager = connection_manager
    app.state.watcher = watcher
    app.state.start_time = start_time

    yield

    logger.info("Shutting down...")
    if watcher:
        await watcher.stop()
    logger.info("Shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title="agentlog",
    description="Agent Session Log Viewer",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings.from_env().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


# ── Helper accessors ─────────────────────────────────────────────────────────

def _session_svc(request: Request) -> SessionService:
    return request.app.state.session_service


def _manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager


# ── Roots ─────────────────────────────────────────────────────────────────────

@app.get("/api/roots", response_model=RootListResponse)
async def list_roots(request: Request):
    roots = _session_svc(request).list_roots()
    return RootListResponse(roots=roots, total_count=len(roots))


@app.get("/api/roots/{root_id}/sessions", response_model=SessionListResponse)
async def list_root_sessions(request: Request, root_id: str):
    sessions = _session_svc(request).list_sessions(root_id)
    return SessionListResponse(sessions=sessions, total_count=len(sessions))


# ── Sessions ──────────────────────────────────────────────────────────────────

@app.get("/api/sessions", response_model=SessionListResponse)
async def list_all_sessions(request: Request):
    sessions = _session_svc(request).list_all_sessions()
    return SessionListResponse(sessions=sessions, total_count=len(sessions))


@app.get("/api/sessions/{session_id}", response_model=ParsedSession)
async def get_session(request: Request, session_id: str):
    svc = _session_svc(request)
    return await asyncio.to_thread(svc.get_session, session_id)


# ── Health ────────────────────────────────────────────────────────────────────

@app.get("/api/health")
async def health_check(request: Request):
    start = request.app.state.start_time
    svc = _session_svc(request)
    watcher: ChangeWatcher | None = request.app.state.watcher

    return {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - start, 1),
        "roots_loaded": len(svc.roots),
        "sessions_indexed": svc.index.session_count,
        "live_clients": _manager(request).client_count,
        "watcher_active": watcher is not None,
        "watched_roots": watcher.watched_roots if watcher else [],
        "skipped_roots": sorted(watcher.skipped_roots) if watcher else [],
    }


# ── Live updates ──────────────────────────────────────────────────────────────

async def _keepalive(websocket: WebSocket, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await websocket.send_json({"type": "ping"})


@app.websocket("/ws/live")
async def websocket_live(websocket: WebSocket):
    """WebSocket endpoint for root change notifications."""
    await websocket.accept()
    mgr: ConnectionManager = websocket.app.state.connection_manager
    settings: Settings = websocket.app.state.settings
    mgr.add(websocket)
    pinger = asyncio.create_task(_keepalive(websocket, settings.keepalive_seconds))

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except (json.JSONDecodeError, ValueError):
                # Malformed JSON from client -- ignore and continue
                continue

            msg_type = data.get("type") if isinstance(data, dict) else None
            sub = mgr.subscription(websocket)
            if sub is None:
                continue

            if msg_type == "subscribe":
                sub.root_ids = set(data.get("data", {}).get("root_ids", []))
            elif msg_type == "unsubscribe":
                for rid in data.get("data", {}).get("root_ids", []):
                    sub.root_ids.discard(rid)
            elif msg_type == "pong":
                pass  # Keepalive response

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.warning("WebSocket error", exc_info=True)
    finally:
        pinger.cancel()
        mgr.remove(websocket)


@app.get("/api/events")
async def event_stream(request: Request):
    """Server-sent events stream of root change notifications."""
    mgr = _manager(request)
    interval = request.app.state.settings.keepalive_seconds
    queue = mgr.open_stream()

    async def events():
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=interval)
                except asyncio.TimeoutError:
                    event = {"type": "ping"}
                yield f"data: {json.dumps(event)}\n\n"
        finally:
            mgr.close_stream(queue)

    return StreamingResponse(events(), media_type="text/event-stream")


# ═══════════════════════════════════════════════════════════════════════════════
# Entry Point
# ═══════════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = Settings.from_env()
    uvicorn.run(
        "agentlog.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )
