import json
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qs, urlparse

import pytest

from nasadmin.core.gateway import RequestGateway
from nasadmin.core.session import Credentials

Route = Union[Tuple[int, Any], Callable[["Recorded"], Tuple[int, Any]]]


@dataclass
class Recorded:
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    raw: bytes

    def json(self) -> Any:
        return json.loads(self.raw.decode("utf-8")) if self.raw else None

    def form(self) -> Dict[str, List[str]]:
        return parse_qs(self.raw.decode("utf-8"))


@dataclass
class FakeCluster:
    """In-process storage cluster: login endpoint, cookie sessions and scripted routes."""
    username: str = "admin"
    password: str = "secret"
    require_auth: bool = True
    routes: Dict[Tuple[str, str], Route] = field(default_factory=dict)
    calls: List[Recorded] = field(default_factory=list)
    sessions: set = field(default_factory=set)
    logins: int = 0
    host: str = "127.0.0.1"
    port: int = 0

    def route(self, method: str, path: str, response: Route) -> None:
        self.routes[(method, f"/mgmt/rest/{path.lstrip('/')}")] = response

    def calls_to(self, method: str, path: str) -> List[Recorded]:
        full = f"/mgmt/rest/{path.lstrip('/')}"
        return [c for c in self.calls if c.method == method and c.path == full]


class _ClusterHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def _send_json(self, status: int, obj: Any, headers: Optional[Dict[str, str]] = None) -> None:
        raw = b"" if obj is None else json.dumps(obj).encode("utf-8")
        self.send_response(status)
        for k, v in (headers or {}).items():
            self.send_header(k, v)
        if raw:
            self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        if raw:
            self.wfile.write(raw)

    def _authed(self, cluster: FakeCluster) -> bool:
        cookie = self.headers.get("Cookie", "")
        for part in cookie.split(";"):
            name, _, value = part.strip().partition("=")
            if name == "JSESSIONID" and value in cluster.sessions:
                return True
        return False

    def _handle(self, method: str) -> None:
        cluster: FakeCluster = self.server.cluster  # type: ignore[attr-defined]
        parsed = urlparse(self.path)
        length = int(self.headers.get("Content-Length", "0") or 0)
        raw = self.rfile.read(length) if length else b""
        rec = Recorded(method, parsed.path, parse_qs(parsed.query), dict(self.headers), raw)
        cluster.calls.append(rec)

        if method == "POST" and parsed.path == "/mgmt/login":
            form = rec.form()
            if form.get("username") == [cluster.username] and form.get("password") == [cluster.password]:
                cluster.logins += 1
                token = f"sess{cluster.logins}"
                cluster.sessions.add(token)
                self._send_json(200, {"status": "ok"}, {"Set-Cookie": f"JSESSIONID={token}; Path=/"})
            else:
                self._send_json(401, {"message": "invalid credentials"})
            return

        if cluster.require_auth and not self._authed(cluster):
            self._send_json(401, {"message": "authentication required"})
            return

        route = cluster.routes.get((method, parsed.path))
        if route is None:
            self._send_json(404, {"errors": [{"message": f"no such resource {parsed.path}"}]})
            return
        status, obj = route(rec) if callable(route) else route
        self._send_json(status, obj)

    def do_GET(self):  # noqa: N802
        self._handle("GET")

    def do_POST(self):  # noqa: N802
        self._handle("POST")

    def do_PUT(self):  # noqa: N802
        self._handle("PUT")

    def do_PATCH(self):  # noqa: N802
        self._handle("PATCH")

    def do_DELETE(self):  # noqa: N802
        self._handle("DELETE")

    def log_message(self, fmt, *args):  # silence test server logs
        return


@pytest.fixture()
def fake_cluster():
    cluster = FakeCluster()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _ClusterHandler)
    server.cluster = cluster  # type: ignore[attr-defined]
    cluster.host, cluster.port = server.server_address[0], server.server_address[1]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield cluster
    server.shutdown()
    server.server_close()
    thread.join(timeout=1.0)


@pytest.fixture()
def gateway():
    return RequestGateway()


@pytest.fixture()
def session(fake_cluster, gateway):
    s = gateway.sessions.initialize(
        fake_cluster.host,
        Credentials(fake_cluster.username, fake_cluster.password),
        fake_cluster.port,
        timeout=5,
        scheme="http",
    )
    yield s
    gateway.sessions.close(s)
