"""
Unit tests for smartroom.services.controller.SessionController.

The controller runs synchronously here (``post=None``) on a ManualScheduler,
wired to a real ConnectionManager, CommandDispatcher and StateStore with a
fake transport underneath. These tests validate end-to-end behavior:
- motion pulse, door auto-close and motion clear timing
- threshold staging, clamping and publishing
- alarm latch effects on outbound commands and the event bus
- simulation mode before the first connect

No threads or network I/O are involved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, cast

from smartroom.core.state_store import StateChange, StateStore
from smartroom.core.timers import ManualScheduler
from smartroom.domain.events import AlarmEvent, AlarmTransition, InboundMessage, SetFan
from smartroom.domain.models import ConnectionConfig, SessionState
from smartroom.runtime.event_bus import EventBus
from smartroom.services.command_dispatcher import CommandDispatcher
from smartroom.services.controller import SessionController, SessionTimings
from smartroom.services.simulation import SimulatedReadings
from smartroom.transport.base import TransportCallbacks
from smartroom.transport.connection_manager import ConnectionManager
from smartroom.transport.topics import TopicMap

CONFIGS = (ConnectionConfig("WSS 8884 /mqtt", "broker.test", 8884, "wss", "/mqtt"),)


@dataclass
class FakeTransport:
    """Transport that records publishes; the test completes the connect."""

    callbacks: TransportCallbacks
    published: List[Tuple[str, str]] = field(default_factory=list)

    def open(self) -> None:
        pass

    def subscribe(self, topics, qos: int = 0) -> None:
        pass

    def publish(self, topic: str, payload, qos: int = 0, retain: bool = False) -> None:
        self.published.append((topic, payload))

    def close(self) -> None:
        pass


@dataclass
class FakeBus:
    """Fake event bus that records published alarm events."""

    published: List[AlarmEvent] = field(default_factory=list)

    def publish_alarm(self, ev: AlarmEvent) -> None:
        self.published.append(ev)


@dataclass
class Rig:
    controller: SessionController
    store: StateStore
    manager: ConnectionManager
    clock: ManualScheduler
    bus: FakeBus
    transports: List[FakeTransport]

    @property
    def sent(self) -> List[Tuple[str, str]]:
        return [p for t in self.transports for p in t.published]

    def go_online(self) -> None:
        self.manager.connect()
        self.transports[-1].callbacks.on_connected()

    def receive(self, topic: str, payload: bytes) -> None:
        self.transports[-1].callbacks.on_message(topic, payload)


def _rig(simulation: Optional[SimulatedReadings] = None, online: bool = True) -> Rig:
    clock = ManualScheduler()
    transports: List[FakeTransport] = []

    def factory(cfg: ConnectionConfig, callbacks: TransportCallbacks) -> FakeTransport:
        t = FakeTransport(callbacks=callbacks)
        transports.append(t)
        return t

    topics = TopicMap()
    manager = ConnectionManager(CONFIGS, factory, clock, topics.inbound)
    store = StateStore()
    bus = FakeBus()
    controller = SessionController(
        store=store,
        dispatcher=CommandDispatcher(manager, topics),
        manager=manager,
        scheduler=clock,
        topics=topics,
        timings=SessionTimings(),
        simulation=simulation,
        bus=cast(EventBus, bus),
    )
    controller.attach()
    controller.start()
    rig = Rig(controller, store, manager, clock, bus, transports)
    if online:
        rig.go_online()
    return rig


def test_status_changes_reach_controller() -> None:
    rig = _rig(online=False)
    assert rig.controller.status.state is SessionState.IDLE

    rig.go_online()

    assert rig.controller.status.connected is True


def test_inbound_readings_update_snapshot() -> None:
    rig = _rig()

    rig.receive("esp32/HEAT", b'{"value": 31.5}')
    rig.receive("esp32/Co2", b"640")

    s = rig.controller.snapshot()
    assert s.temperature == 31.5
    assert s.gas_level == 640.0
    assert s.alarm_active is False
    assert rig.sent == []


def test_undecodable_reading_becomes_zero() -> None:
    rig = _rig()
    rig.receive("esp32/HEAT", b"27")

    rig.receive("esp32/HEAT", b"garbage")

    assert rig.controller.snapshot().temperature == 0.0


def test_motion_opens_door_then_auto_closes_and_clears() -> None:
    rig = _rig()

    rig.receive("esp32/IR", b"0")

    s = rig.controller.snapshot()
    assert s.motion_detected is True
    assert s.door_open is True
    assert s.servo_angle == 90
    assert rig.controller.door_timer_remaining == 2
    assert rig.sent == []

    rig.clock.advance(1.0)
    assert rig.controller.snapshot().door_open is True
    assert rig.controller.door_timer_remaining == 1

    rig.clock.advance(1.0)
    s = rig.controller.snapshot()
    assert s.door_open is False
    assert s.servo_angle == 0
    assert s.motion_detected is True
    assert rig.sent == [("SERVO", "0")]

    rig.clock.advance(3.0)
    s = rig.controller.snapshot()
    assert s.motion_detected is False
    assert s.door_open is False
    assert rig.clock.pending() == 0


def test_motion_non_zero_payload_is_ignored() -> None:
    rig = _rig()

    rig.receive("esp32/IR", b"1")

    assert rig.controller.snapshot().motion_detected is False
    assert rig.controller.door_timer_remaining == 0


def test_second_motion_resets_door_countdown() -> None:
    rig = _rig()
    rig.receive("esp32/IR", b"0")
    rig.clock.advance(1.0)

    rig.receive("esp32/IR", b"0")
    assert rig.controller.door_timer_remaining == 2

    rig.clock.advance(1.0)
    assert rig.controller.snapshot().door_open is True

    rig.clock.advance(1.0)
    assert rig.controller.snapshot().door_open is False
    assert rig.sent == [("SERVO", "0")]

    rig.clock.advance(2.9)
    assert rig.controller.snapshot().motion_detected is True
    rig.clock.advance(0.1)
    assert rig.controller.snapshot().motion_detected is False


def test_every_motion_close_is_published() -> None:
    rig = _rig()

    for _ in range(2):
        rig.receive("esp32/IR", b"0")
        rig.clock.advance(2.0)

    assert rig.sent == [("SERVO", "0"), ("SERVO", "0")]


def test_manual_motion_trigger_matches_sensor_pulse() -> None:
    rig = _rig()

    rig.controller.trigger_motion()

    s = rig.controller.snapshot()
    assert s.motion_detected is True
    assert s.door_open is True
    assert rig.controller.door_timer_remaining == 2


def test_user_door_commands() -> None:
    rig = _rig()

    rig.controller.open_door()
    assert rig.controller.snapshot().servo_angle == 90
    assert rig.controller.door_timer_remaining == 2

    rig.controller.close_door()
    assert rig.controller.snapshot().door_open is False
    assert rig.controller.door_timer_remaining == 0

    rig.controller.toggle_door()
    assert rig.controller.snapshot().door_open is True

    assert rig.sent == [("SERVO", "90"), ("SERVO", "0"), ("SERVO", "90")]

    rig.clock.advance(2.0)
    assert rig.sent[-1] == ("SERVO", "0")


def test_fan_and_buzzer_commands_are_deduplicated() -> None:
    rig = _rig()

    rig.controller.set_fan(1, True)
    rig.controller.set_fan(1, True)
    rig.controller.set_fan(2, True)
    rig.controller.set_buzzer(True)

    assert rig.sent == [("FAN", "1"), ("FAN2", "1"), ("BUZZ", "1")]
    s = rig.controller.snapshot()
    assert s.fan1_on and s.fan2_on and s.buzzer_on


def test_unknown_fan_is_ignored() -> None:
    rig = _rig()

    assert rig.controller.handle_event(SetFan(fan=3, on=True)) is None
    assert rig.sent == []


def test_commands_while_offline_update_state_but_are_not_sent() -> None:
    rig = _rig(online=False)

    rig.controller.set_fan(2, True)

    assert rig.controller.snapshot().fan2_on is True
    assert rig.sent == []

    rig.go_online()
    rig.controller.set_fan(2, True)
    assert rig.sent == [("FAN2", "1")]


def test_threshold_is_staged_then_clamped_on_apply() -> None:
    rig = _rig()

    rig.controller.stage_thresholds(gas_threshold=9000.0)
    assert rig.controller.snapshot().gas_threshold == 2000.0
    assert rig.sent == []

    rig.controller.apply_gas_threshold()

    assert rig.controller.snapshot().gas_threshold == 4000.0
    assert rig.controller.threshold_inputs.gas_threshold_input == 4000.0
    assert rig.sent == [("GAS-threshold", "4000")]


def test_low_temp_threshold_is_clamped_and_can_raise_alarm() -> None:
    rig = _rig()

    rig.controller.stage_thresholds(temp_threshold=5.0)
    rig.controller.apply_temp_threshold()

    s = rig.controller.snapshot()
    assert s.temp_threshold == 20.0
    assert rig.controller.threshold_inputs.temp_threshold_input == 20.0
    assert s.alarm_active is True
    assert rig.sent == [("TEMP-threshold", "20"), ("BUZZ", "1"), ("FAN", "1"), ("FAN2", "1")]


def test_alarm_rising_forces_fans_falling_only_buzzer() -> None:
    rig = _rig()

    rig.receive("esp32/HEAT", b"70")
    s = rig.controller.snapshot()
    assert s.alarm_active and s.buzzer_on and s.fan1_on and s.fan2_on
    assert rig.sent == [("BUZZ", "1"), ("FAN", "1"), ("FAN2", "1")]

    rig.receive("esp32/HEAT", b"30")
    s = rig.controller.snapshot()
    assert s.alarm_active is False
    assert s.buzzer_on is False
    assert s.fan1_on and s.fan2_on
    assert rig.sent[3:] == [("BUZZ", "0")]

    assert [e.transition for e in rig.bus.published] == [AlarmTransition.RAISED, AlarmTransition.CLEARED]


def test_buzzer_cannot_be_silenced_while_alarmed() -> None:
    rig = _rig()
    rig.receive("esp32/Co2", b"2500")

    rig.controller.set_buzzer(False)

    assert rig.controller.snapshot().buzzer_on is True
    assert rig.sent.count(("BUZZ", "1")) == 1
    assert ("BUZZ", "0") not in rig.sent


def test_buzzer_test_ends_on_next_reading() -> None:
    rig = _rig()
    rig.controller.set_buzzer(True)

    rig.receive("esp32/HEAT", b"25")

    assert rig.controller.snapshot().buzzer_on is False
    assert rig.sent == [("BUZZ", "1"), ("BUZZ", "0")]


def test_simulation_runs_until_first_connect() -> None:
    rig = _rig(simulation=SimulatedReadings(seed=7), online=False)
    reasons: List[str] = []
    rig.controller.add_state_listener(lambda c: reasons.append(c.reason))
    assert rig.controller.simulation_active is True

    rig.clock.advance(2.0)
    assert reasons == ["simulation"]
    s = rig.controller.snapshot()
    assert abs(s.temperature - 24.0) <= 0.4
    assert abs(s.gas_level - 120.0) <= 15.0

    rig.go_online()
    assert rig.controller.simulation_active is False
    assert "simulation" not in rig.clock.pending_names()

    rig.clock.advance(10.0)
    assert reasons == ["simulation"]


def test_simulation_not_started_without_generator() -> None:
    rig = _rig(online=False)
    assert rig.controller.simulation_active is False


def test_reconnect_command_restarts_session() -> None:
    rig = _rig()

    rig.controller.reconnect()
    assert rig.controller.status.text == "Reconnecting..."

    rig.clock.advance(1.0)
    assert rig.manager.attempts == [0, 0]


def test_handle_event_returns_state_change() -> None:
    rig = _rig()

    change = rig.controller.handle_event(InboundMessage("esp32/Co2", b"300"))

    assert isinstance(change, StateChange)
    assert change.changed_fields() == ["gas_level"]


def test_closed_controller_ignores_events_and_cancels_timers() -> None:
    rig = _rig()
    rig.receive("esp32/IR", b"0")

    rig.controller.close()

    assert rig.controller.handle_event(InboundMessage("esp32/HEAT", b"50")) is None
    assert rig.controller.snapshot().temperature == 24.0
    assert "door-tick" not in rig.clock.pending_names()
    assert "motion-clear" not in rig.clock.pending_names()
