"""
Thin per-resource wrappers over StorageClient.

Each wrapper only knows its collection path; HTTP, task monitoring and
safe updates stay in the core.

    shares = Shares(client)
    share = shares.create({"name": "projects", "path": "/fs1/projects"})
    shares.update(share["uuid"], {"comment": "R&D"})
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .core.client import StorageClient


class ResourceCollection:
    """CRUD over `<path>` and `<path>/<uuid>`."""

    path: str = ""

    def __init__(self, client: StorageClient, path: Optional[str] = None) -> None:
        self.client = client
        if path is not None:
            self.path = path
        if not self.path:
            raise ValueError("resource path is required")

    def item_path(self, uuid: str) -> str:
        return f"{self.path.rstrip('/')}/{uuid}"

    def list(self, **query: Any) -> List[Dict[str, Any]]:
        items = self.client.get(self.path, query=query or None)
        if isinstance(items, dict) and isinstance(items.get("items"), list):
            return items["items"]
        return items or []

    def get(self, uuid: str) -> Dict[str, Any]:
        return self.client.get(self.item_path(uuid))

    def create(self, body: Mapping[str, Any], **monitor_kw: Any) -> Any:
        return self.client.submit("POST", self.path, dict(body), **monitor_kw)

    def update(self, uuid: str, patch: Mapping[str, Any]) -> Any:
        return self.client.update(self.item_path(uuid), patch)

    def delete(self, uuid: str, **monitor_kw: Any) -> Any:
        return self.client.submit("DELETE", self.item_path(uuid), **monitor_kw)


class Shares(ResourceCollection):
    path = "shares"


class Users(ResourceCollection):
    path = "users"


class Volumes(ResourceCollection):
    path = "volumes"


class Snmp:
    """Cluster-wide SNMP settings (a single resource, no collection)."""

    path = "snmp"

    def __init__(self, client: StorageClient) -> None:
        self.client = client

    def get(self) -> Dict[str, Any]:
        return self.client.get(self.path)

    def update(self, patch: Mapping[str, Any]) -> Any:
        return self.client.update(self.path, patch)
