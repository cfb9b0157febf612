"""
Connection and authentication state for one storage cluster.

A Session is an explicit value: it is created by `SessionManager.initialize`
and handed to every gateway, monitor and updater call. Nothing here is
process-global except the once-per-cluster insecure-TLS warning.

Usage:
    manager = SessionManager()
    session = manager.initialize("nas01.example", Credentials("admin", "***"), verify_ssl=False)
"""

from __future__ import annotations

import threading
import warnings
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Set

import requests
import urllib3

from .errors import AuthenticationError, NasAdminError
from .logging_setup import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from .gateway import Request, RequestGateway

log = get_logger(__name__)

DEFAULT_PORT = 443
DEFAULT_TIMEOUT = 60
DEFAULT_PREFIX = "mgmt"

_insecure_warned: Set[str] = set()
_insecure_lock = threading.Lock()


@dataclass(frozen=True)
class Credentials:
    """Login credentials. The secret is excluded from repr."""
    username: str
    password: str = field(repr=False)


@dataclass
class Session:
    """Client-held connection/authentication context for one cluster."""
    cluster: str
    port: int
    base_url: str
    login_url: str
    credentials: Optional[Credentials]
    verify_ssl: bool = True
    timeout: float = DEFAULT_TIMEOUT
    authenticated: bool = False
    transport: requests.Session = field(default_factory=requests.Session, repr=False)

    @property
    def username(self) -> Optional[str]:
        return self.credentials.username if self.credentials else None


def build_urls(cluster: str, port: int, *, scheme: str = "https", prefix: str = DEFAULT_PREFIX) -> tuple:
    """Return (base_url, login_url) for a cluster address."""
    host = cluster.strip().rstrip("/")
    if "://" in host:
        scheme, host = host.split("://", 1)
    root = f"{scheme}://{host}:{int(port)}"
    pfx = prefix.strip("/")
    if pfx:
        root = f"{root}/{pfx}"
    return f"{root}/rest/", f"{root}/login"


def _warn_insecure_once(cluster: str) -> None:
    key = cluster.strip().lower()
    with _insecure_lock:
        if key in _insecure_warned:
            return
        _insecure_warned.add(key)
    log.warning("TLS certificate verification is DISABLED (cluster=%s)", cluster)
    warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


class SessionManager:
    """Creates sessions and keeps them authenticated."""

    def initialize(
        self,
        cluster: str,
        credentials: Optional[Credentials] = None,
        port: int = DEFAULT_PORT,
        verify_ssl: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        scheme: str = "https",
        prefix: str = DEFAULT_PREFIX,
        transport: Optional[requests.Session] = None,
    ) -> Session:
        if not cluster:
            raise ValueError("cluster is required")
        base_url, login_url = build_urls(cluster, port, scheme=scheme, prefix=prefix)
        session = Session(
            cluster=cluster,
            port=int(port),
            base_url=base_url,
            login_url=login_url,
            credentials=credentials,
            verify_ssl=bool(verify_ssl),
            timeout=float(timeout),
            authenticated=False,
            transport=transport or requests.Session(),
        )
        session.transport.headers["Accept"] = "application/json"
        if not session.verify_ssl:
            _warn_insecure_once(cluster)
            session.transport.verify = False
        log.debug("Session initialised base_url=%s user=%s", base_url, session.username)
        return session

    def login(self, session: Session, gateway: "RequestGateway") -> None:
        """POST the credentials (form-encoded) to the login URL."""
        from .gateway import Request

        if session.credentials is None:
            raise AuthenticationError("no credentials configured for this session")

        creds = session.credentials
        req = Request(
            method="POST",
            path=session.login_url,
            body={"username": creds.username, "password": creds.password},
            form=True,
            is_login=True,
            raw=True,
        )
        log.info("Logging in to %s as %s", session.cluster, creds.username)
        try:
            gateway.invoke(session, req)
        except NasAdminError as exc:
            session.authenticated = False
            log.error("Login failed for %s on %s: %s", creds.username, session.cluster, exc)
            raise AuthenticationError(
                f"login failed for user '{creds.username}': {exc}",
                username=creds.username,
                cause=exc,
            ) from exc
        session.authenticated = True
        log.debug("Login succeeded for %s", creds.username)

    def ensure_authenticated(self, session: Session, request: "Request", gateway: "RequestGateway") -> None:
        """Log in first unless the request is the login itself or a post-login retry."""
        if session.credentials is None or session.authenticated:
            return
        if request.is_login or request.is_retry:
            return
        self.login(session, gateway)

    def invalidate(self, session: Session) -> None:
        session.authenticated = False
        session.transport.cookies.clear()

    def close(self, session: Session) -> None:
        self.invalidate(session)
        session.transport.close()
