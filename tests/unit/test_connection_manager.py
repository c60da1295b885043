"""
Unit tests for smartroom.transport.connection_manager.ConnectionManager.

The manager is driven with a fake transport factory and a ManualScheduler so
timeouts and backoffs are advanced explicitly. These tests validate:
- ordered failover on timeout, error and open failure
- late connect success from a superseded attempt is ignored
- FAILED after one full pass, and manual reconnect from config 0
- idempotent disconnect and dropped publishes while not connected
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

import pytest

from smartroom.core.timers import ManualScheduler
from smartroom.domain.errors import TransportError
from smartroom.domain.models import ConnectionConfig, SessionState, SessionStatus
from smartroom.transport.base import TransportCallbacks
from smartroom.transport.connection_manager import ConnectionManager, ConnectionPolicy

CONFIGS = (
    ConnectionConfig("WSS 8884 /mqtt", "broker.test", 8884, "wss", "/mqtt"),
    ConnectionConfig("WSS 8884 /", "broker.test", 8884, "wss", "/"),
    ConnectionConfig("WS 8000", "broker.test", 8000, "ws", "/mqtt"),
)
INBOUND = ("esp32/HEAT", "esp32/Co2", "esp32/IR")


@dataclass
class FakeTransport:
    """Single-use transport whose outcome the test triggers by hand."""

    cfg: ConnectionConfig
    callbacks: TransportCallbacks
    opened: bool = False
    closed: int = 0
    subscribed: List[Tuple[Tuple[str, ...], int]] = field(default_factory=list)
    published: List[Tuple[str, str]] = field(default_factory=list)

    def open(self) -> None:
        self.opened = True

    def subscribe(self, topics, qos: int = 0) -> None:
        self.subscribed.append((tuple(topics), qos))

    def publish(self, topic: str, payload, qos: int = 0, retain: bool = False) -> None:
        self.published.append((topic, payload))

    def close(self) -> None:
        self.closed += 1


@dataclass
class FakeFactory:
    """Transport factory that records every transport it builds."""

    fail_open_for: Set[int] = field(default_factory=set)
    built: List[FakeTransport] = field(default_factory=list)

    def __call__(self, cfg: ConnectionConfig, callbacks: TransportCallbacks) -> FakeTransport:
        if CONFIGS.index(cfg) in self.fail_open_for:
            raise TransportError("bad url", cfg.name)
        t = FakeTransport(cfg=cfg, callbacks=callbacks)
        self.built.append(t)
        return t

    @property
    def last(self) -> FakeTransport:
        return self.built[-1]


@dataclass
class Harness:
    manager: ConnectionManager
    factory: FakeFactory
    clock: ManualScheduler
    statuses: List[SessionStatus]
    messages: List[Tuple[str, bytes]]


def _mk(fail_open_for: Optional[Set[int]] = None) -> Harness:
    clock = ManualScheduler()
    factory = FakeFactory(fail_open_for=fail_open_for or set())
    messages: List[Tuple[str, bytes]] = []
    manager = ConnectionManager(
        configs=CONFIGS,
        transport_factory=factory,
        scheduler=clock,
        inbound_topics=INBOUND,
        on_message=lambda topic, payload: messages.append((topic, payload)),
        policy=ConnectionPolicy(),
    )
    statuses: List[SessionStatus] = []
    manager.add_status_listener(statuses.append)
    return Harness(manager, factory, clock, statuses, messages)


def test_requires_at_least_one_config() -> None:
    with pytest.raises(ValueError):
        ConnectionManager([], FakeFactory(), ManualScheduler(), INBOUND)


def test_initial_status_is_idle() -> None:
    h = _mk()
    assert h.manager.status.state is SessionState.IDLE
    assert h.manager.current_config is None


def test_connect_tries_first_config() -> None:
    h = _mk()
    h.manager.connect()

    st = h.manager.status
    assert st.state is SessionState.CONNECTING
    assert st.config_index == 0
    assert st.text == "Trying WSS 8884 /mqtt..."
    assert h.factory.last.opened is True
    assert h.manager.current_config == CONFIGS[0]


def test_failover_on_timeout_then_success_on_third() -> None:
    h = _mk()
    h.manager.connect()

    h.clock.advance(15.0)
    assert h.manager.attempts == [0, 1]
    assert h.factory.built[0].closed == 1

    h.clock.advance(15.0)
    assert h.manager.attempts == [0, 1, 2]

    h.factory.built[2].callbacks.on_connected()

    st = h.manager.status
    assert st.state is SessionState.CONNECTED
    assert st.config_index == 2
    assert h.factory.built[2].subscribed == [(INBOUND, 0)]
    assert h.clock.pending() == 0


def test_timeout_does_not_fire_early() -> None:
    h = _mk()
    h.manager.connect()

    h.clock.advance(14.9)

    assert h.manager.attempts == [0]
    assert h.manager.status.state is SessionState.CONNECTING


def test_late_success_of_superseded_attempt_is_ignored() -> None:
    h = _mk()
    h.manager.connect()
    h.clock.advance(15.0)
    stale = h.factory.built[0]

    stale.callbacks.on_connected()

    st = h.manager.status
    assert st.state is SessionState.CONNECTING
    assert st.config_index == 1
    assert stale.subscribed == []


def test_inbound_forwarded_only_from_live_connected_transport() -> None:
    h = _mk()
    h.manager.connect()
    first = h.factory.last
    first.callbacks.on_message("esp32/HEAT", b"20")
    assert h.messages == []

    first.callbacks.on_connected()
    first.callbacks.on_message("esp32/HEAT", b"21")
    assert h.messages == [("esp32/HEAT", b"21")]

    h.manager.reconnect()
    first.callbacks.on_message("esp32/HEAT", b"22")
    assert h.messages == [("esp32/HEAT", b"21")]


def test_error_reports_disconnected_then_advances_after_backoff() -> None:
    h = _mk()
    h.manager.connect()

    h.factory.last.callbacks.on_error(TransportError("refused"))

    st = h.manager.status
    assert st.state is SessionState.DISCONNECTED
    assert st.text == "Error: refused"
    assert h.factory.built[0].closed == 1

    h.clock.advance(1.9)
    assert h.manager.attempts == [0]

    h.clock.advance(0.1)
    assert h.manager.attempts == [0, 1]
    assert h.manager.status.state is SessionState.CONNECTING


def test_connection_drop_while_connected_advances_to_next_config() -> None:
    h = _mk()
    h.manager.connect()
    h.factory.last.callbacks.on_connected()

    h.factory.last.callbacks.on_closed()
    assert h.manager.status.state is SessionState.DISCONNECTED

    h.clock.advance(2.0)
    assert h.manager.attempts == [0, 1]


def test_open_failure_advances_after_short_backoff() -> None:
    h = _mk(fail_open_for={0})
    h.manager.connect()

    assert h.manager.status.state is SessionState.DISCONNECTED
    assert h.manager.status.text.startswith("Error: ")

    h.clock.advance(1.0)
    assert h.manager.attempts == [0, 1]
    assert h.manager.status.config_index == 1


def test_all_configs_exhausted_is_failed() -> None:
    h = _mk()
    h.manager.connect()

    h.clock.advance(45.0)

    st = h.manager.status
    assert st.state is SessionState.FAILED
    assert st.text == "Failed - All configs tried"
    assert h.manager.attempts == [0, 1, 2]
    assert all(t.closed == 1 for t in h.factory.built)
    assert h.clock.pending() == 0

    h.clock.advance(100.0)
    assert h.manager.attempts == [0, 1, 2]


def test_reconnect_restarts_from_first_config_after_delay() -> None:
    h = _mk()
    h.manager.connect()
    h.clock.advance(45.0)

    h.manager.reconnect()
    assert h.manager.status.text == "Reconnecting..."
    assert h.manager.attempts == [0, 1, 2]

    h.clock.advance(1.0)
    assert h.manager.attempts == [0, 1, 2, 0]
    assert h.manager.status.state is SessionState.CONNECTING


def test_connect_restarts_sequence_and_closes_live_transport() -> None:
    h = _mk()
    h.manager.connect()
    h.clock.advance(15.0)
    live = h.factory.last

    h.manager.connect()

    assert live.closed == 1
    assert h.manager.attempts == [0, 1, 0]


def test_disconnect_is_idempotent() -> None:
    h = _mk()
    h.manager.connect()
    h.factory.last.callbacks.on_connected()

    h.manager.disconnect()
    h.manager.disconnect()

    disconnected = [s for s in h.statuses if s.state is SessionState.DISCONNECTED]
    assert len(disconnected) == 1
    assert h.manager.status.state is SessionState.DISCONNECTED
    assert h.factory.last.closed == 1
    assert h.clock.pending() == 0


def test_disconnect_cancels_pending_backoff() -> None:
    h = _mk()
    h.manager.connect()
    h.factory.last.callbacks.on_error(TransportError("boom"))

    h.manager.disconnect()
    h.clock.advance(10.0)

    assert h.manager.attempts == [0]
    assert h.manager.status.text == "Disconnected"


def test_publish_dropped_unless_connected() -> None:
    h = _mk()
    assert h.manager.publish("SERVO", "90") is False

    h.manager.connect()
    assert h.manager.publish("SERVO", "90") is False
    assert h.factory.last.published == []

    h.factory.last.callbacks.on_connected()
    assert h.manager.publish("SERVO", "90") is True
    assert h.factory.last.published == [("SERVO", "90")]


def test_status_sequence_for_one_failover() -> None:
    h = _mk()
    h.manager.connect()
    h.clock.advance(15.0)
    h.factory.last.callbacks.on_connected()

    assert [(s.state, s.config_index) for s in h.statuses] == [
        (SessionState.CONNECTING, 0),
        (SessionState.CONNECTING, 1),
        (SessionState.CONNECTED, 1),
    ]
