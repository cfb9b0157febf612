"""
StorageClient — one generic client over the gateway, task monitor and safe updater.

Resource wrappers never talk HTTP themselves: they pass a path, a method and
optionally a body/query to one of the primitives below.

Example:
    with StorageClient.connect("nas01.example", "admin", "***", verify_ssl=False) as c:
        shares = c.get("shares")
        share = c.submit("POST", "shares", {"name": "data"})
        c.update(f"shares/{share['uuid']}", {"comment": "team data"})
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .config import AppConfig
from .gateway import Request, RequestGateway
from .logging_setup import get_logger
from .safe_update import SafeUpdater
from .session import Credentials, Session, SessionManager
from .task_monitor import DEFAULT_POLL_INTERVAL, DEFAULT_TIMEOUT, TaskMonitor

log = get_logger(__name__)


class StorageClient:
    """Binds one Session to the core primitives."""

    def __init__(
        self,
        session: Session,
        *,
        gateway: Optional[RequestGateway] = None,
        monitor: Optional[TaskMonitor] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        monitor_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.session = session
        self.gateway = gateway or RequestGateway()
        self.monitor = monitor or TaskMonitor(self.gateway)
        self.updater = SafeUpdater(self.gateway)
        self.poll_interval = float(poll_interval)
        self.monitor_timeout = float(monitor_timeout)

    @classmethod
    def connect(
        cls,
        cluster: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        *,
        port: int = 443,
        verify_ssl: bool = True,
        timeout: float = 60,
        scheme: str = "https",
        prefix: str = "mgmt",
        **kwargs: Any,
    ) -> "StorageClient":
        manager = SessionManager()
        creds = Credentials(username, password or "") if username else None
        session = manager.initialize(
            cluster, creds, port, verify_ssl, timeout, scheme=scheme, prefix=prefix
        )
        return cls(session, gateway=RequestGateway(manager), **kwargs)

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "StorageClient":
        c = cfg.cluster
        return cls.connect(
            c.host,
            c.username or None,
            c.password,
            port=c.port,
            verify_ssl=c.verify_ssl,
            timeout=c.timeout_sec,
            scheme=c.scheme,
            prefix=c.prefix,
            poll_interval=cfg.monitor.poll_interval_sec,
            monitor_timeout=cfg.monitor.timeout_sec,
        )

    # ---------------- lifecycle ----------------

    def login(self) -> None:
        self.gateway.sessions.login(self.session, self.gateway)

    def close(self) -> None:
        self.gateway.sessions.close(self.session)

    def __enter__(self) -> "StorageClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ---------------- primitives ----------------

    def call(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        *,
        raw: bool = False,
    ) -> Any:
        return self.gateway.invoke(self.session, Request(method, path, body=body, query=query, raw=raw)).value

    def get(self, path: str, query: Optional[Mapping[str, Any]] = None, *, raw: bool = False) -> Any:
        return self.call("GET", path, query=query, raw=raw)

    def post(self, path: str, body: Any = None, query: Optional[Mapping[str, Any]] = None) -> Any:
        return self.call("POST", path, body, query)

    def put(self, path: str, body: Any = None, query: Optional[Mapping[str, Any]] = None) -> Any:
        return self.call("PUT", path, body, query)

    def patch(self, path: str, body: Any = None, query: Optional[Mapping[str, Any]] = None) -> Any:
        return self.call("PATCH", path, body, query)

    def delete(self, path: str, query: Optional[Mapping[str, Any]] = None) -> Any:
        return self.call("DELETE", path, query=query)

    def submit(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        *,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        entity_path: Optional[str] = None,
    ) -> Any:
        """Issue a call expected to spawn a task and wait for its outcome."""
        return self.monitor.monitor(
            self.session,
            path,
            method,
            body,
            query,
            self.poll_interval if poll_interval is None else poll_interval,
            self.monitor_timeout if timeout is None else timeout,
            entity_path=entity_path,
        )

    def update(self, path: str, patch: Mapping[str, Any]) -> Any:
        """Safe (read-modify-write) update of the resource at *path*."""
        return self.updater.update(self.session, path, patch)
