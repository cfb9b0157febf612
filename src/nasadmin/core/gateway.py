"""
RequestGateway: builds and executes one HTTP call against the REST service.

- Methods: GET, POST, PUT, DELETE, PATCH.
- Relative paths are resolved against the session base URL; absolute URLs are used verbatim.
- Query values that are sequences repeat the key (`?id=1&id=2`).
- Bodies are JSON unless the request asks for form encoding (login).
- DELETE answered with 204 is a success signal, not an error.
- A 401 on an authenticated call triggers one re-login and one retry.
- Errors surface as TransportError with method, URL, status and message.

Usage:
    gw = RequestGateway()
    out = gw.invoke(session, Request("GET", "shares", query={"limit": 10}))
    items = out.value
"""

from __future__ import annotations

import enum
import json
import os
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

import requests

from .errors import AuthenticationError, TransportError
from .formatter import ResponseFormatter
from .logging_setup import get_logger
from .session import Session, SessionManager

log = get_logger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
BODY_METHODS = ("POST", "PUT", "PATCH")

_LOG_PREVIEW = int(os.getenv("NASADMIN_HTTP_PREVIEW", "600"))
_REDACT_KEYS = {"password", "token", "authorization", "secret", "api_token", "x-api-key"}


def short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    """Compact, length-limited rendering of a payload for log lines."""
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False, default=str)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


def redact(obj: Any) -> Any:
    """Copy of *obj* with secret-looking keys masked (recursively)."""
    if isinstance(obj, dict):
        return {
            k: "***REDACTED***" if str(k).lower() in _REDACT_KEYS else redact(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [redact(x) for x in obj]
    return obj


@dataclass
class Request:
    """One call to the REST service."""
    method: str
    path: str
    body: Any = None
    form: bool = False
    query: Optional[Mapping[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    is_login: bool = False
    is_retry: bool = False
    raw: bool = False


class OutcomeKind(enum.Enum):
    PAYLOAD = "payload"
    NO_CONTENT = "no_content"


@dataclass
class Outcome:
    """Tagged result of a gateway call."""
    kind: OutcomeKind
    payload: Any = None
    status_code: int = 200
    url: str = ""

    @property
    def no_content(self) -> bool:
        return self.kind is OutcomeKind.NO_CONTENT

    @property
    def value(self) -> Any:
        """`True` for a no-content success, else the decoded payload."""
        if self.kind is OutcomeKind.NO_CONTENT:
            return True
        return self.payload


class RequestGateway:
    """Executes requests for a given Session."""

    def __init__(
        self,
        session_manager: Optional[SessionManager] = None,
        formatter: Optional[ResponseFormatter] = None,
    ) -> None:
        self.sessions = session_manager or SessionManager()
        self.formatter = formatter or ResponseFormatter()

    # ------------- Public API -------------

    def invoke(self, session: Optional[Session], request: Request) -> Outcome:
        if session is None:
            raise AuthenticationError("no session: initialize a session before issuing calls")

        method = str(request.method or "").upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"unsupported HTTP method '{request.method}' (expected one of {', '.join(SUPPORTED_METHODS)})")

        self.sessions.ensure_authenticated(session, request, self)

        url = self.resolve_url(session, request.path)
        resp = self._send(session, method, url, request)

        if (
            resp.status_code == 401
            and not request.is_login
            and not request.is_retry
            and session.credentials is not None
        ):
            log.info("%s %s -> 401, re-authenticating once", method, url)
            self.sessions.invalidate(session)
            self.sessions.login(session, self)
            return self.invoke(session, replace(request, is_retry=True))

        if method == "DELETE" and resp.status_code == 204:
            log.debug("%s %s -> 204, treated as success", method, url)
            return Outcome(OutcomeKind.NO_CONTENT, None, 204, url)

        if resp.status_code >= 400:
            body = resp.text or ""
            err = TransportError(method, url, status=resp.status_code, body=body)
            log.error("HTTP %s %s -> %s: %s", method, url, resp.status_code, err.message or body[:200])
            raise err

        payload = self._decode(resp)
        if method == "GET" and not request.raw and payload is not None:
            payload = self.formatter.format(payload)
        return Outcome(OutcomeKind.PAYLOAD, payload, resp.status_code, url)

    def call(
        self,
        session: Optional[Session],
        method: str,
        path: str,
        *,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        raw: bool = False,
    ) -> Any:
        """Shortcut for `invoke(...).value`."""
        return self.invoke(session, Request(method, path, body=body, query=query, raw=raw)).value

    @staticmethod
    def resolve_url(session: Session, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{session.base_url.rstrip('/')}/{path.lstrip('/')}"

    # ------------- Internal -------------

    def _send(self, session: Session, method: str, url: str, request: Request) -> requests.Response:
        kwargs: Dict[str, Any] = {
            "params": self._encode_query(request.query),
            "headers": dict(request.headers or {}),
            "timeout": session.timeout,
            "verify": session.verify_ssl,
        }
        if method in BODY_METHODS and request.body is not None:
            if request.form:
                kwargs["data"] = request.body
            else:
                kwargs["json"] = request.body
        elif method == "DELETE" and request.body is not None:
            kwargs["json"] = request.body

        if not request.is_login:
            log.debug("%s %s query=%s body=%s", method, url, request.query, short_json(redact(request.body)))

        start = time.monotonic()
        try:
            resp = session.transport.request(method, url, **kwargs)
        except requests.RequestException as exc:
            log.error("HTTP %s %s failed: %s", method, url, exc)
            raise TransportError(method, url, status=None, message=str(exc)) from exc

        elapsed = (time.monotonic() - start) * 1000
        log.debug("%s %s -> %s in %.1fms", method, url, resp.status_code, elapsed)
        return resp

    @staticmethod
    def _encode_query(query: Optional[Mapping[str, Any]]) -> Optional[List[tuple]]:
        if not query:
            return None
        pairs: List[tuple] = []
        for key, value in query.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple, set, frozenset)):
                pairs.extend((key, _query_scalar(v)) for v in value)
            else:
                pairs.append((key, _query_scalar(value)))
        return pairs

    @staticmethod
    def _decode(resp: requests.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            log.debug("Non-JSON response from %s, returning text", resp.url)
            return resp.text


def _query_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
