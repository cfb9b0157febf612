import time

import pytest

from nasadmin.core.errors import ParseError, TaskFailedError, TaskTimeoutError, TransportError
from nasadmin.core.gateway import Outcome, OutcomeKind
from nasadmin.core.task_monitor import (
    EntityReference,
    Task,
    TaskMonitor,
    TaskStatus,
    default_entity_path,
    entity_path_for,
    extract_task_uuid,
    find_entity_reference,
)

TASK = "7d3bc9a2-1111-4c5e-9a0f-000000000001"
ENTITY = "e6023882-c570-47d5-a712-56198a3b6c18"
SESSION = object()


class FakeClock:
    def __init__(self, tick: float = 0.0) -> None:
        self.now = 0.0
        self.tick = tick  # time spent inside each status fetch
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeGateway:
    """Scripted gateway: one initial outcome, a queue of task states, entity lookups."""

    def __init__(self, initial, states=(), entities=None, clock=None):
        self.initial = initial
        self.states = list(states)
        self.entities = entities or {}
        self.clock = clock
        self.requests = []

    def invoke(self, session, request):
        assert session is SESSION
        self.requests.append(request)
        if request.method == "GET" and request.path.startswith("tasks/"):
            assert request.raw is True
            if self.clock is not None:
                self.clock.now += self.clock.tick
            state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
            if isinstance(state, Exception):
                raise state
            return Outcome(OutcomeKind.PAYLOAD, state)
        if request.method == "GET":
            if request.path not in self.entities:
                raise TransportError("GET", request.path, status=404)
            return Outcome(OutcomeKind.PAYLOAD, self.entities[request.path])
        assert request.raw is True
        return self.initial

    def task_polls(self):
        return [r for r in self.requests if r.path.startswith("tasks/")]


def _submitted():
    return Outcome(OutcomeKind.PAYLOAD, {"uoid": {"uuid": TASK, "objectType": "TASK"}})


def _task(status, **extra):
    return {"uoid": {"uuid": TASK}, "status": status, **extra}


def _monitor(gw, clock):
    return TaskMonitor(gw, clock=clock, sleep=clock.sleep)


def test_completed_task_resolves_entity():
    clock = FakeClock()
    entity = {"uuid": ENTITY, "name": "projects"}
    gw = FakeGateway(
        _submitted(),
        [
            _task("PENDING", progress=0),
            _task("RUNNING", progress=50),
            _task("COMPLETED", progress=100,
                  context={"entity-uoid": f"Uoid [uuid={ENTITY}, objectType=SHARE]"}),
        ],
        entities={f"shares/{ENTITY}": entity},
    )

    out = _monitor(gw, clock).monitor(SESSION, "shares", "POST", {"name": "projects"}, poll_interval=5, timeout=300)

    assert out == entity
    assert len(gw.task_polls()) == 3
    assert gw.task_polls()[0].path == f"tasks/{TASK}"
    assert clock.sleeps == [5, 5]
    assert gw.requests[-1].raw is False  # entity fetch is formatted


def test_completed_without_reference_returns_task_record():
    clock = FakeClock()
    record = _task("COMPLETED", context={"note": "nothing to see"})
    gw = FakeGateway(_submitted(), [record])
    out = _monitor(gw, clock).monitor(SESSION, "shares", "POST", {})
    assert out == record


def test_entity_path_template():
    clock = FakeClock()
    ctx = {"ref": f"Uoid [uuid={ENTITY}, objectType=USER]"}
    gw = FakeGateway(_submitted(), [_task("COMPLETED", context=ctx)], entities={f"local-users/{ENTITY}": {"ok": 1}})
    out = _monitor(gw, clock).monitor(SESSION, "users/add", "POST", entity_path="local-users/{uuid}")
    assert out == {"ok": 1}


def test_action_path_resolves_by_object_type():
    clock = FakeClock()
    ctx = {"entity-uoid": f"Uoid [uuid={ENTITY}, objectType=USER]"}
    gw = FakeGateway(_submitted(), [_task("COMPLETED", context=ctx)], entities={f"users/{ENTITY}": {"name": "bob"}})
    assert _monitor(gw, clock).monitor(SESSION, "users/add", "POST", {"name": "bob"}) == {"name": "bob"}
    assert gw.requests[-1].path == f"users/{ENTITY}"


def test_entity_read_back_failure_returns_task_record(caplog):
    clock = FakeClock()
    ctx = {"entity-uoid": f"Uoid [uuid={ENTITY}, objectType=QUOTA_RULE]"}
    record = _task("COMPLETED", context=ctx)
    gw = FakeGateway(_submitted(), [record])
    out = _monitor(gw, clock).monitor(SESSION, "quotas/add", "POST", {})
    assert out == record
    assert gw.requests[-1].path == f"quotas/add/{ENTITY}"
    assert "could not be read back" in caplog.text


def test_update_resolves_same_collection():
    clock = FakeClock()
    ctx = {"entity-uoid": f"Uoid [uuid={ENTITY}, objectType=SHARE]"}
    gw = FakeGateway(_submitted(), [_task("COMPLETED", context=ctx)], entities={f"shares/{ENTITY}": {"v": 2}})
    assert _monitor(gw, clock).monitor(SESSION, f"shares/{ENTITY}", "PUT", {"v": 2}) == {"v": 2}


def test_delete_no_content_short_circuits():
    clock = FakeClock()
    gw = FakeGateway(Outcome(OutcomeKind.NO_CONTENT, None, 204))
    assert _monitor(gw, clock).monitor(SESSION, f"shares/{ENTITY}", "DELETE") is True
    assert gw.task_polls() == []


def test_delete_task_returns_task_record():
    clock = FakeClock()
    ctx = {"entity-uoid": f"Uoid [uuid={ENTITY}, objectType=SHARE]"}
    record = _task("COMPLETED", context=ctx)
    gw = FakeGateway(_submitted(), [record])
    assert _monitor(gw, clock).monitor(SESSION, f"shares/{ENTITY}", "delete") == record
    assert all(not r.path.startswith("shares/") or r.method == "DELETE" for r in gw.requests)


def test_no_task_identifier_returns_initial(caplog):
    clock = FakeClock()
    gw = FakeGateway(Outcome(OutcomeKind.PAYLOAD, {"name": "sync result"}))
    out = _monitor(gw, clock).monitor(SESSION, "snmp/test", "POST")
    assert out == {"name": "sync result"}
    assert gw.task_polls() == []
    assert "no task identifier" in caplog.text


def test_failed_task_raises_with_message():
    clock = FakeClock()
    gw = FakeGateway(_submitted(), [_task("RUNNING"), _task("FAILED", statusMessage="disk full")])
    with pytest.raises(TaskFailedError) as ei:
        _monitor(gw, clock).monitor(SESSION, "volumes", "POST", {}, poll_interval=1, timeout=300)
    assert "disk full" in str(ei.value)
    assert ei.value.task_uuid == TASK
    assert ei.value.status == "FAILED"
    assert clock.now < 300


def test_canceled_task_raises():
    clock = FakeClock()
    gw = FakeGateway(_submitted(), [_task("cancelled")])
    with pytest.raises(TaskFailedError) as ei:
        _monitor(gw, clock).monitor(SESSION, "volumes", "POST")
    assert ei.value.status == "CANCELED"
    assert ei.value.status_message is None


def test_timeout_never_polls_past_deadline():
    clock = FakeClock()
    gw = FakeGateway(_submitted(), [_task("RUNNING")])
    with pytest.raises(TaskTimeoutError) as ei:
        _monitor(gw, clock).monitor(SESSION, "volumes", "POST", poll_interval=1, timeout=3)
    assert ei.value.elapsed >= 3
    assert ei.value.task_uuid == TASK
    polls = len(gw.task_polls())
    assert polls == 3
    assert clock.now == 3


def test_slow_ticks_do_not_overshoot_deadline():
    clock = FakeClock(tick=0.7)
    gw = FakeGateway(_submitted(), [_task("RUNNING")], clock=clock)
    with pytest.raises(TaskTimeoutError) as ei:
        _monitor(gw, clock).monitor(SESSION, "volumes", "POST", poll_interval=1, timeout=3)
    assert 3 <= ei.value.elapsed < 4
    assert all(s <= 1 for s in clock.sleeps)


def test_transient_fetch_failures_are_not_terminal():
    clock = FakeClock()
    gw = FakeGateway(
        _submitted(),
        [TransportError("GET", "tasks/x", status=503), None, {}, _task("COMPLETED")],
    )
    out = _monitor(gw, clock).monitor(SESSION, "volumes", "POST", poll_interval=2)
    assert out["status"] == "COMPLETED"
    assert len(gw.task_polls()) == 4


def test_real_clock_timeout():
    gw = FakeGateway(_submitted(), [_task("RUNNING")])
    mon = TaskMonitor(gw)
    start = time.monotonic()
    with pytest.raises(TaskTimeoutError):
        mon.monitor(SESSION, "volumes", "POST", poll_interval=0.05, timeout=0.3)
    assert time.monotonic() - start >= 0.3
    polls = len(gw.task_polls())
    time.sleep(0.1)
    assert len(gw.task_polls()) == polls


def test_entity_reference_parsing():
    ref = EntityReference.parse(f"Uoid [uuid={ENTITY}, objectType=SHARE]")
    assert ref == EntityReference(ENTITY, "SHARE")
    with pytest.raises(ParseError):
        EntityReference.parse("Uoid <missing>")
    with pytest.raises(ParseError):
        EntityReference.parse(None)

    ctx = {"a": 3, "b": "free text", "c": f"Something [uuid={ENTITY},objectType=FILE_SYSTEM]"}
    assert find_entity_reference(ctx) == EntityReference(ENTITY, "FILE_SYSTEM")
    assert find_entity_reference({}) is None
    assert find_entity_reference(None) is None


def test_task_uuid_extraction_and_task_model():
    assert extract_task_uuid({"uoid": {"uuid": "t1"}}) == "t1"
    assert extract_task_uuid({"task": {"uoid": {"uuid": "t2"}}}) == "t2"
    assert extract_task_uuid({"taskUoid": {"uuid": "t3"}}) == "t3"
    assert extract_task_uuid({"uuid": "flat"}) is None
    assert extract_task_uuid(True) is None

    t = Task.from_payload({"status": "running", "progress": "40", "context": None}, uuid="t9")
    assert t.uuid == "t9" and t.status is TaskStatus.RUNNING and t.progress == 40 and t.context == {}
    assert TaskStatus.parse("weird") is None
    assert TaskStatus.COMPLETED.terminal and not TaskStatus.PENDING.terminal


def test_default_entity_path():
    assert default_entity_path("shares") == "shares/{uuid}"
    assert default_entity_path("/shares/") == "/shares/{uuid}"
    assert default_entity_path(f"shares/{ENTITY}") == "shares/{uuid}"
    assert default_entity_path("users/add") == "users/add/{uuid}"


def test_entity_path_for_object_types():
    assert entity_path_for("users/add", EntityReference(ENTITY, "USER")) == "users/{uuid}"
    assert entity_path_for(f"volumes/{ENTITY}/resize", EntityReference(ENTITY, "volume")) == "volumes/{uuid}"
    assert entity_path_for("shares", EntityReference(ENTITY, "FILE_SYSTEM")) == "shares/{uuid}"
