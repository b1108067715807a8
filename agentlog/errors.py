"""Errors surfaced to callers of the session API."""

from __future__ import annotations


class AppError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class SessionNotFound(AppError):
    def __init__(self, session_id: str):
        super().__init__(404, "SESSION_NOT_FOUND", f"Session {session_id} not found")
        self.session_id = session_id


class RootNotFound(AppError):
    def __init__(self, root_id: str):
        super().__init__(404, "ROOT_NOT_FOUND", f"Root {root_id} not found")
        self.root_id = root_id


class FormatUnsupported(AppError):
    def __init__(self, format: str):
        super().__init__(400, "FORMAT_UNSUPPORTED", f"Unknown format: {format}")
        self.format = format
