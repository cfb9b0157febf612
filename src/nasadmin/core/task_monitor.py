"""
Task monitor: issue a mutating call, then poll the returned task until it
reaches a terminal state.

    initial call ──> 204 DELETE ─────────────> True
                 └─> no task uuid ───────────> initial payload
                 └─> tasks/{uuid} polling
                        COMPLETED ──> referenced entity (or the task record)
                        FAILED/CANCELED ──> TaskFailedError
                        deadline ──> TaskTimeoutError

A failed or empty status fetch is logged and the loop keeps going; only the
deadline ends a poll loop that never sees a terminal state.
"""

from __future__ import annotations

import enum
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import NasAdminError, ParseError, TaskFailedError, TaskTimeoutError
from .gateway import Request, RequestGateway, redact, short_json
from .logging_setup import get_logger
from .session import Session

log = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_TIMEOUT = 300.0
TASKS_PATH = "tasks/{uuid}"

_ENTITY_REF = re.compile(
    r"\[\s*uuid\s*=\s*(?P<uuid>[0-9A-Za-z][0-9A-Za-z-]*)\s*,\s*objectType\s*=\s*(?P<type>[A-Za-z_][A-Za-z0-9_]*)\s*\]"
)
_UUID_SEGMENT = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")

# objectType -> collection the entity is read back from
OBJECT_COLLECTIONS: Dict[str, str] = {
    "SHARE": "shares",
    "USER": "users",
    "VOLUME": "volumes",
}


class TaskStatus(enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @classmethod
    def parse(cls, value: Any) -> Optional["TaskStatus"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().upper()
        if key == "CANCELLED":
            key = "CANCELED"
        try:
            return cls(key)
        except ValueError:
            return None

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELED)


@dataclass
class Task:
    uuid: str
    status: Optional[TaskStatus]
    progress: Optional[int] = None
    status_message: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], uuid: str = "") -> "Task":
        progress = payload.get("progress", payload.get("percentComplete"))
        try:
            progress = int(progress) if progress is not None else None
        except (TypeError, ValueError):
            progress = None
        context = payload.get("context")
        return cls(
            uuid=extract_task_uuid(payload) or str(payload.get("uuid") or uuid),
            status=TaskStatus.parse(payload.get("status")),
            progress=progress,
            status_message=payload.get("statusMessage") or None,
            context=dict(context) if isinstance(context, Mapping) else {},
            raw=dict(payload),
        )


@dataclass(frozen=True)
class EntityReference:
    """Entity a task acted upon, as written in the task context."""
    uuid: str
    object_type: str

    @classmethod
    def parse(cls, text: Any) -> "EntityReference":
        """Parse `<prefix> [uuid=<uuid>, objectType=<TYPE>]`; raise ParseError otherwise."""
        if not isinstance(text, str):
            raise ParseError(text)
        m = _ENTITY_REF.search(text)
        if not m:
            raise ParseError(text)
        return cls(uuid=m.group("uuid"), object_type=m.group("type"))


def find_entity_reference(context: Optional[Mapping[str, Any]]) -> Optional[EntityReference]:
    """Return the first parseable entity reference among the context values, if any."""
    for key, value in (context or {}).items():
        try:
            return EntityReference.parse(value)
        except ParseError:
            log.debug("Context key %s holds no entity reference", key)
    return None


def _uoid_uuid(obj: Any) -> Optional[str]:
    if isinstance(obj, Mapping):
        val = obj.get("uuid")
        if isinstance(val, str) and val:
            return val
    return None


def extract_task_uuid(payload: Any) -> Optional[str]:
    """Task UUID from the nested object identifier of a submission response."""
    if not isinstance(payload, Mapping):
        return None
    found = _uoid_uuid(payload.get("uoid")) or _uoid_uuid(payload.get("taskUoid"))
    if found:
        return found
    task = payload.get("task")
    if isinstance(task, Mapping):
        return _uoid_uuid(task.get("uoid"))
    return None


def default_entity_path(resource_path: str) -> str:
    """`shares/<uuid>` -> `shares/{uuid}`; `shares` -> `shares/{uuid}`."""
    path = resource_path.split("?", 1)[0].rstrip("/")
    head, _, last = path.rpartition("/")
    if head and _UUID_SEGMENT.match(last):
        path = head
    return f"{path}/{{uuid}}"


def entity_path_for(resource_path: str, ref: EntityReference) -> str:
    """Path template for *ref*: its objectType's collection when known, else next to *resource_path*."""
    collection = OBJECT_COLLECTIONS.get(ref.object_type.upper())
    if collection:
        return f"{collection}/{{uuid}}"
    return default_entity_path(resource_path)


class TaskMonitor:
    """Submits mutating calls and waits for the task they spawn."""

    def __init__(
        self,
        gateway: RequestGateway,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.clock = clock
        self.sleep = sleep

    def monitor(
        self,
        session: Session,
        resource_path: str,
        method: str,
        data: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        entity_path: Optional[str] = None,
    ) -> Any:
        """
        Submit *method* on *resource_path* and wait for the resulting task.

        On COMPLETED the entity named in the task context is read back
        (formatted) from *entity_path*, or from the collection of its
        objectType. The task record is returned instead when the context
        names no entity, when that read fails, and for DELETE, whose
        entity no longer exists.
        """
        method = str(method).upper()
        outcome = self.gateway.invoke(
            session, Request(method, resource_path, body=data, query=query, raw=True)
        )
        if outcome.no_content:
            log.info("%s %s completed without a task", method, resource_path)
            return True

        initial = outcome.payload
        task_uuid = extract_task_uuid(initial)
        if not task_uuid:
            log.warning("%s %s returned no task identifier; nothing to monitor", method, resource_path)
            return initial

        log.info("%s %s -> task %s", method, resource_path, task_uuid)
        task = self.wait(session, task_uuid, poll_interval=poll_interval, timeout=timeout)

        if method == "DELETE":
            return task.raw
        ref = find_entity_reference(task.context)
        if ref is None:
            log.debug("Task %s context has no entity reference: %s", task_uuid, short_json(redact(task.context)))
            return task.raw
        path = (entity_path or entity_path_for(resource_path, ref)).format(
            uuid=ref.uuid, object_type=ref.object_type
        )
        log.debug("Task %s resolved to %s %s", task_uuid, ref.object_type, ref.uuid)
        try:
            return self.gateway.invoke(session, Request("GET", path)).value
        except NasAdminError as exc:
            log.warning("Task %s completed but %s %s could not be read back: %s",
                        task_uuid, ref.object_type, ref.uuid, exc)
            return task.raw

    def wait(
        self,
        session: Session,
        task_uuid: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Task:
        """
        Poll tasks/{uuid} until COMPLETED (returns the Task).
        Raises TaskFailedError on FAILED/CANCELED, TaskTimeoutError on deadline.
        """
        start = self.clock()
        last_progress: Optional[int] = None

        while self.clock() - start < timeout:
            task = self._fetch(session, task_uuid)

            if task is not None:
                if task.progress is not None and task.progress != last_progress:
                    log.info("Task %s %s %s%%", task_uuid, task.status.value if task.status else "?", task.progress)
                    last_progress = task.progress
                if task.status is TaskStatus.COMPLETED:
                    return task
                if task.status in (TaskStatus.FAILED, TaskStatus.CANCELED):
                    log.error("Task %s ended %s: %s", task_uuid, task.status.value, task.status_message or "-")
                    raise TaskFailedError(task_uuid, task.status.value, task.status_message)

            remaining = timeout - (self.clock() - start)
            if remaining <= 0:
                break
            self.sleep(min(float(poll_interval), remaining))

        elapsed = self.clock() - start
        log.error("Task %s did not finish within %.1fs", task_uuid, timeout)
        raise TaskTimeoutError(task_uuid, elapsed)

    def _fetch(self, session: Session, task_uuid: str) -> Optional[Task]:
        path = TASKS_PATH.format(uuid=task_uuid)
        try:
            payload = self.gateway.invoke(session, Request("GET", path, raw=True)).value
        except NasAdminError as exc:
            log.warning("Task %s status fetch failed: %s", task_uuid, exc)
            return None
        if not isinstance(payload, Mapping) or not payload:
            log.warning("Task %s status fetch returned nothing", task_uuid)
            return None
        return Task.from_payload(payload, uuid=task_uuid)
