"""
Exception taxonomy for nasadmin.

Every error raised by the core derives from NasAdminError so callers can
catch the whole family at once. ParseError is internal: the task monitor
handles it as a fallback branch and never lets it escape.
"""

from __future__ import annotations

import json
from typing import Any, Optional

_MESSAGE_KEYS = ("message", "errorMessage", "description", "error")


def extract_error_message(body: Any, limit: int = 400) -> str:
    """
    Produce a short human-readable message from an error body.

    Accepts the raw text or an already decoded JSON document. Looks into
    `errors[]` first, then the usual top-level message keys.
    """
    data = body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            data = json.loads(body) if body.strip() else None
        except ValueError:
            return body.strip()[:limit]

    if isinstance(data, list):
        data = {"errors": data}
    if not isinstance(data, dict):
        return ""

    errs = data.get("errors")
    if isinstance(errs, list) and errs:
        parts = []
        for e in errs:
            if isinstance(e, str):
                parts.append(e)
            elif isinstance(e, dict):
                parts.append(extract_error_message(e, limit) or json.dumps(e)[:200])
            else:
                parts.append(str(e))
        return "; ".join(p for p in parts if p)[:limit]

    for key in _MESSAGE_KEYS:
        val = data.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()[:limit]
        if isinstance(val, dict):
            nested = extract_error_message(val, limit)
            if nested:
                return nested
    return ""


class NasAdminError(RuntimeError):
    """Base error for nasadmin failures."""


class ConfigError(NasAdminError):
    """Raised when runtime configuration cannot be resolved."""


class AuthenticationError(NasAdminError):
    """Raised when the login is rejected or no session is available."""

    def __init__(self, message: str, *, username: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.username = username
        self.cause = cause


class TransportError(NasAdminError):
    """HTTP/transport error with request context."""

    def __init__(
        self,
        method: str,
        url: str,
        *,
        status: Optional[int] = None,
        message: str = "",
        body: str = "",
    ) -> None:
        self.method = method
        self.url = url
        self.status = status
        self.body = body
        self.message = message or extract_error_message(body)
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"{self.method} {self.url} failed (status={self.status})"
        if self.message:
            base += f": {self.message}"
        return base


class TaskFailedError(NasAdminError):
    """Raised when a task ends in FAILED or CANCELED."""

    def __init__(self, task_uuid: str, status: str, status_message: Optional[str] = None) -> None:
        self.task_uuid = task_uuid
        self.status = status
        self.status_message = status_message
        msg = f"task {task_uuid} ended with status {status}"
        if status_message:
            msg += f": {status_message}"
        super().__init__(msg)


class TaskTimeoutError(NasAdminError):
    """Raised when a task does not reach a terminal state in time."""

    def __init__(self, task_uuid: str, elapsed: float) -> None:
        self.task_uuid = task_uuid
        self.elapsed = elapsed
        super().__init__(f"timeout waiting for task {task_uuid} after {elapsed:.1f}s")


class UpdateTargetNotFoundError(NasAdminError):
    """Raised when the resource to update cannot be read back."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"update target not found: {path}")


class ParseError(NasAdminError):
    """Raised when an entity reference cannot be parsed from task context."""

    def __init__(self, text: Any) -> None:
        self.text = text
        super().__init__(f"unparseable entity reference: {str(text)[:200]!r}")
