import logging

import pytest

from netscope.base.session import (
    MAX_SESSION_LOGS,
    EventKind,
    SessionStatus,
    SessionStore,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _recorder(store, session_id, kinds=tuple(EventKind)):
    events = []
    for kind in kinds:
        store.subscribe(session_id, kind, events.append)
    return events


def test_create_session_initial_state():
    store = SessionStore()
    snap = store.create_session("s1", "192.168.1.1", "quick", "alice")

    assert snap.status == SessionStatus.STARTING
    assert snap.logs == ()
    assert snap.result_buffer == ""
    assert snap.result is None
    assert snap.error_message is None
    assert (snap.target, snap.profile, snap.owner_id) == ("192.168.1.1", "quick", "alice")


def test_create_session_emits_starting_status():
    store = SessionStore()
    events = _recorder(store, "s1")
    store.create_session("s1", "10.0.0.1", "quick", "alice")

    assert [(e.kind, e.payload) for e in events] == [(EventKind.STATUS, {"status": "starting"})]


def test_create_existing_session_returns_it_unchanged_without_event(caplog):
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    store.add_log("s1", "line")
    events = _recorder(store, "s1")

    with caplog.at_level(logging.WARNING):
        snap = store.create_session("s1", "10.0.0.99", "full", "bob")

    assert snap.target == "10.0.0.1"
    assert snap.owner_id == "alice"
    assert snap.logs == ("line",)
    assert events == []
    assert "already exists" in caplog.text


def test_log_ring_buffer_keeps_most_recent_200():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    for i in range(250):
        store.add_log("s1", f"line {i}")

    snap = store.get_session("s1")
    assert len(snap.logs) == MAX_SESSION_LOGS == 200
    assert snap.logs[0] == "line 50"
    assert snap.logs[-1] == "line 249"


def test_add_log_event_carries_only_new_line():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    store.add_log("s1", "first")
    events = _recorder(store, "s1", kinds=[EventKind.LOG])

    store.add_log("s1", "second")

    assert [e.payload for e in events] == [{"message": "second"}]


def test_result_buffer_accumulates_without_events():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    events = _recorder(store, "s1")

    assert store.append_result_buffer("s1", "<nmap") == 5
    assert store.append_result_buffer("s1", "run/>") == 10

    assert store.get_session("s1").result_buffer == "<nmaprun/>"
    assert events == []


def test_complete_and_fail_set_exactly_one_terminal_field():
    store = SessionStore()
    store.create_session("ok", "10.0.0.1", "quick", "alice")
    store.create_session("bad", "10.0.0.2", "quick", "alice")

    store.complete_scan("ok", {"hosts": []})
    store.fail_scan("bad", "boom")

    ok = store.get_session("ok")
    bad = store.get_session("bad")
    assert ok.status == SessionStatus.DONE and ok.result == {"hosts": []} and ok.error_message is None
    assert bad.status == SessionStatus.ERROR and bad.error_message == "boom" and bad.result is None


def test_double_completion_overwrites_and_reemits(caplog):
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    events = _recorder(store, "s1", kinds=[EventKind.DONE, EventKind.ERROR])

    store.complete_scan("s1", {"n": 1})
    with caplog.at_level(logging.WARNING):
        store.fail_scan("s1", "late failure")

    snap = store.get_session("s1")
    assert snap.status == SessionStatus.ERROR
    assert snap.result is None
    assert snap.error_message == "late failure"
    assert [e.kind for e in events] == [EventKind.DONE, EventKind.ERROR]
    assert "already-terminal" in caplog.text


def test_unknown_session_mutations_are_noops():
    store = SessionStore()
    store.update_status("ghost", SessionStatus.RUNNING)
    store.add_log("ghost", "x")
    assert store.append_result_buffer("ghost", "x") == 0
    store.complete_scan("ghost", {})
    store.fail_scan("ghost", "x")
    store.remove_session("ghost")

    assert store.get_session("ghost") is None
    assert len(store) == 0


def test_update_status_does_not_validate_transitions(caplog):
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    store.complete_scan("s1", {})

    with caplog.at_level(logging.WARNING):
        store.update_status("s1", "running")

    assert store.get_session("s1").status == SessionStatus.RUNNING
    assert "moved out of terminal state" in caplog.text


def test_snapshot_is_immutable_copy():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    store.add_log("s1", "a")
    snap = store.get_session("s1")

    store.add_log("s1", "b")

    assert snap.logs == ("a",)
    with pytest.raises(Exception):
        snap.status = SessionStatus.DONE


def test_fanout_delivers_identical_sequences_in_mutation_order():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    first = _recorder(store, "s1")
    second = _recorder(store, "s1")

    store.update_status("s1", SessionStatus.RUNNING)
    for i in range(5):
        store.add_log("s1", f"line {i}")
    store.complete_scan("s1", {"ok": True})

    assert [(e.kind, e.payload) for e in first] == [(e.kind, e.payload) for e in second]
    assert [e.kind for e in first] == [EventKind.STATUS] + [EventKind.LOG] * 5 + [EventKind.DONE]


def test_events_are_scoped_to_their_session():
    store = SessionStore()
    store.create_session("a", "10.0.0.1", "quick", "alice")
    store.create_session("b", "10.0.0.2", "quick", "alice")
    events_a = _recorder(store, "a")

    store.add_log("b", "not for a")

    assert events_a == []


def test_failing_listener_does_not_starve_others(caplog):
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    store.subscribe("s1", EventKind.LOG, broken)
    store.subscribe("s1", EventKind.LOG, received.append)

    with caplog.at_level(logging.ERROR):
        store.add_log("s1", "hello")

    assert [e.payload["message"] for e in received] == ["hello"]
    assert "listener bug" in caplog.text


def test_listener_may_unsubscribe_during_emit():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    received = []

    def once(event):
        received.append(event)
        store.unsubscribe("s1", EventKind.LOG, once)

    store.subscribe("s1", EventKind.LOG, once)
    store.subscribe("s1", EventKind.LOG, received.append)
    store.add_log("s1", "one")
    store.add_log("s1", "two")

    assert [e.payload["message"] for e in received] == ["one", "one", "two"]


def test_unsubscribe_restores_listener_count():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    cb = [].append

    for kind in EventKind:
        store.subscribe("s1", kind, cb)
    assert store.listener_count("s1") == 4

    for kind in EventKind:
        store.unsubscribe("s1", kind, cb)
    assert store.listener_count("s1") == 0

    # Unknown callback is ignored
    store.unsubscribe("s1", EventKind.LOG, cb)


def test_remove_session_keeps_listeners_registered():
    store = SessionStore()
    store.create_session("s1", "10.0.0.1", "quick", "alice")
    _recorder(store, "s1")

    store.remove_session("s1")

    assert "s1" not in store
    assert store.listener_count("s1") == 4


def test_get_sessions_for_owner():
    store = SessionStore()
    store.create_session("a1", "10.0.0.1", "quick", "alice")
    store.create_session("a2", "10.0.0.2", "full", "alice")
    store.create_session("b1", "10.0.0.3", "quick", "bob")

    assert sorted(s.id for s in store.get_sessions_for_owner("alice")) == ["a1", "a2"]
    assert [s.id for s in store.get_sessions_for_owner("bob")] == ["b1"]
    assert store.get_sessions_for_owner("carol") == []


def test_sweep_expired_evicts_only_old_terminal_sessions():
    clock = FakeClock(now=0.0)
    store = SessionStore(clock=clock)
    store.create_session("old-done", "10.0.0.1", "quick", "alice")
    store.create_session("old-error", "10.0.0.2", "quick", "alice")
    store.create_session("old-running", "10.0.0.3", "quick", "alice")
    store.complete_scan("old-done", {})
    store.fail_scan("old-error", "x")
    store.update_status("old-running", SessionStatus.RUNNING)

    clock.now = 500.0
    store.create_session("young-done", "10.0.0.4", "quick", "alice")
    store.complete_scan("young-done", {})

    clock.now = 700.0
    removed = store.sweep_expired(retention_seconds=600.0)

    assert sorted(removed) == ["old-done", "old-error"]
    assert sorted(store.session_ids()) == ["old-running", "young-done"]
