"""
Unit tests for smartroom.notification.payload and the notification builder
in smartroom.runtime.notification_adapter_thread.

These tests validate that:
- build_alarm_notification attaches snapshot, history totals and status
- build_alarm_webhook_payload produces the expected structure
- timestamps are formatted with second precision
- the session block is present only when a status is known
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from smartroom.core.state_store import StateStore
from smartroom.domain.events import AlarmTransition
from smartroom.domain.models import SessionState, SessionStatus
from smartroom.notification.payload import build_alarm_webhook_payload
from smartroom.runtime.notification_adapter_thread import build_alarm_notification


def _store_with_history() -> StateStore:
    store = StateStore()
    store.update(temperature=70.0)
    store.update(temperature=20.0)
    store.update(gas_level=2500.0)
    return store


def test_payload_structure_and_event_fields() -> None:
    store = StateStore()
    change = store.apply(
        lambda s: replace(s, temperature=66.0),
        now=datetime(2026, 1, 1, 10, 0, 5, 123456),
    )
    ev = change.alarm_event
    assert ev is not None

    payload = build_alarm_webhook_payload(build_alarm_notification(store, ev))

    assert payload["type"] == "alarm_event"
    assert set(payload) == {"type", "event", "snapshot", "totals"}
    event = payload["event"]
    assert event["transition"] == "RAISED"
    assert event["timestamp"] == "2026-01-01T10:00:05"
    assert event["message"] == "ALERT: High Temperature"
    assert event["causes"] == ["temperature"]
    assert event["summary"] == "RAISED: temperature 66 >= 65"
    assert event["temperature"] == 66.0
    assert event["temp_threshold"] == 65.0
    assert payload["snapshot"]["alarm_active"] is True
    assert payload["snapshot"]["buzzer_on"] is True


def test_notification_counts_history_by_transition() -> None:
    store = _store_with_history()
    ev = store.alarm_events[-1]

    n = build_alarm_notification(store, ev)

    assert n.transition is AlarmTransition.RAISED
    assert (n.raised_total, n.cleared_total) == (2, 1)
    assert build_alarm_webhook_payload(n)["totals"] == {"raised": 2, "cleared": 1}


def test_payload_includes_session_when_given() -> None:
    store = _store_with_history()
    status = SessionStatus(SessionState.CONNECTED, 1, "Connected")

    payload = build_alarm_webhook_payload(build_alarm_notification(store, store.alarm_events[0], status))

    assert payload["session"] == {"state": "CONNECTED", "config_index": 1, "text": "Connected"}


def test_cleared_edge_has_no_causes() -> None:
    store = _store_with_history()
    cleared = store.alarm_events[1]

    payload = build_alarm_webhook_payload(build_alarm_notification(store, cleared))

    assert payload["event"]["transition"] == "CLEARED"
    assert payload["event"]["causes"] == []
    assert payload["event"]["summary"].startswith("CLEARED: temperature 20 < 65")
