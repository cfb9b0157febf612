"""
Read-modify-write updates against a replace-only API.

The update endpoints replace the whole object, so a PUT carrying only the
changed fields would erase every other one. SafeUpdater reads the raw
resource, overlays the patch and writes the complete document back.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from .errors import TransportError, UpdateTargetNotFoundError
from .gateway import Request, RequestGateway, redact, short_json
from .logging_setup import get_logger
from .session import Session

log = get_logger(__name__)


def merge_patch(current: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of *current* (key order kept) with every patch key overwritten or appended."""
    merged: Dict[str, Any] = dict(current)
    for key, value in patch.items():
        merged[key] = value
    return merged


class SafeUpdater:
    def __init__(self, gateway: RequestGateway) -> None:
        self.gateway = gateway

    def update(self, session: Session, resource_path: str, patch: Mapping[str, Any]) -> Any:
        try:
            current = self.gateway.invoke(session, Request("GET", resource_path, raw=True)).value
        except TransportError as exc:
            if exc.status != 404:
                raise
            log.error("UPDATE %s: target not found", resource_path)
            raise UpdateTargetNotFoundError(resource_path) from exc
        if not current or not isinstance(current, Mapping):
            log.error("UPDATE %s: target returned nothing", resource_path)
            raise UpdateTargetNotFoundError(resource_path)

        merged = merge_patch(current, patch)
        changed = sorted(k for k in patch if current.get(k, object()) != patch[k])
        log.info("UPDATE PUT %s changed=%s", resource_path, ",".join(changed) or "-")
        log.debug("UPDATE %s payload=%s", resource_path, short_json(redact(merged)))

        return self.gateway.invoke(session, Request("PUT", resource_path, body=merged)).value
