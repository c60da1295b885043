from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional

from smartroom.core.door_timer import DoorTimer
from smartroom.core.state_store import StateChange, StateListener, StateStore
from smartroom.core.thresholds import THRESHOLD_RANGES, clamp_threshold
from smartroom.core.timers import Scheduler, TimerHandle
from smartroom.domain.errors import ValidationError
from smartroom.domain.events import (
    ApplyGasThreshold,
    ApplyTempThreshold,
    DoorTick,
    InboundMessage,
    MotionClear,
    Reconnect,
    SessionEvent,
    SetBuzzer,
    SetDoor,
    SetFan,
    SimulationTick,
    StageThresholds,
    StatusChanged,
    TriggerMotion,
)
from smartroom.domain.models import (
    SERVO_CLOSED,
    SERVO_OPEN,
    SensorField,
    SensorState,
    SessionStatus,
    ThresholdInputs,
)
from smartroom.runtime.event_bus import EventBus
from smartroom.services.command_dispatcher import CommandDispatcher
from smartroom.services.simulation import SimulatedReadings
from smartroom.transport import codec
from smartroom.transport.connection_manager import ConnectionManager
from smartroom.transport.topics import TopicMap

logger = logging.getLogger(__name__)

Post = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class SessionTimings:
    """
    Timer settings for the session controller.

    Parameters
    ----------
    door_close_ticks
        Door auto-close countdown length, in ticks.
    tick_s
        Door countdown tick period.
    motion_clear_s
        Delay before a motion pulse clears ``motion_detected``.
    simulation_interval_s
        Period of the offline random walk.
    """

    door_close_ticks: int = 2
    tick_s: float = 1.0
    motion_clear_s: float = 5.0
    simulation_interval_s: float = 2.0


class SessionController:
    """
    Serialized event processor for one session.

    Every input, whether an inbound broker message, a timer fire, a user
    command or a session status change, is a discrete
    :data:`~smartroom.domain.events.SessionEvent` applied by
    :meth:`handle_event`, one at a time. The store settles the alarm latch as
    part of every mutation; the controller then dispatches exactly the
    commands that the event (and the latch) call for.

    Threading
    ---------
    ``post`` decides where events go. The runtime passes the session loop's
    queue, so timer threads and the paho network thread only enqueue. With
    ``post=None`` events are handled synchronously on the caller's thread,
    which is what the unit tests use together with a ManualScheduler.

    Parameters
    ----------
    store
        Authoritative snapshot store.
    dispatcher
        Outbound command dispatcher.
    manager
        Connection manager (status source and reconnect target).
    scheduler
        Timer source for the door countdown, motion clear and simulation.
    topics
        Topic names for decoding.
    timings
        Timer settings.
    simulation
        Offline reading generator; None disables simulation mode.
    bus
        Optional alarm event bus.
    post
        Event sink for asynchronous sources (timers, transport).
    """

    def __init__(
        self,
        store: StateStore,
        dispatcher: CommandDispatcher,
        manager: ConnectionManager,
        scheduler: Scheduler,
        topics: Optional[TopicMap] = None,
        timings: Optional[SessionTimings] = None,
        simulation: Optional[SimulatedReadings] = None,
        bus: Optional[EventBus] = None,
        post: Optional[Post] = None,
    ):
        self.store = store
        self._dispatcher = dispatcher
        self._manager = manager
        self._scheduler = scheduler
        self._topics = topics or TopicMap()
        self._timings = timings or SessionTimings()
        self._simulation = simulation
        self._bus = bus
        self._post = post

        self._door = DoorTimer(interval_s=self._timings.door_close_ticks)
        self._door_tick: Optional[TimerHandle] = None
        self._door_gen = 0
        self._motion_clear: Optional[TimerHandle] = None
        self._motion_gen = 0
        self._sim_tick: Optional[TimerHandle] = None
        self._inputs = ThresholdInputs(
            temp_threshold_input=store.snapshot().temp_threshold,
            gas_threshold_input=store.snapshot().gas_threshold,
        )
        self._status = manager.status
        self._closed = False

    # --- wiring ---
    def attach(self) -> None:
        """Register with the connection manager for status and inbound messages."""
        self._manager.add_status_listener(lambda st: self.submit(StatusChanged(st)))
        self._manager.set_message_handler(lambda topic, payload: self.submit(InboundMessage(topic, payload)))

    def set_post(self, post: Optional[Post]) -> None:
        self._post = post

    def start(self) -> None:
        """Start simulation mode if enabled and not yet connected."""
        if self._simulation is not None and not self._status.connected and self._sim_tick is None:
            self._sim_tick = self._scheduler.call_every(
                self._timings.simulation_interval_s, lambda: self.submit(SimulationTick()), name="simulation"
            )
            logger.info("[SESSION] simulation mode on")

    def close(self) -> None:
        """
        Cancel every timer this controller owns and stop accepting events.
        """
        self._closed = True
        self._cancel_door()
        self._cancel(self._motion_clear)
        self._motion_clear = None
        self._stop_simulation()

    def submit(self, ev: SessionEvent) -> None:
        if self._closed:
            return
        if self._post is not None:
            self._post(ev)
        else:
            self.handle_event(ev)

    # --- read API for consumers ---
    def snapshot(self) -> SensorState:
        return self.store.snapshot()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def threshold_inputs(self) -> ThresholdInputs:
        return self._inputs

    @property
    def door_timer_remaining(self) -> int:
        return self._door.remaining

    @property
    def simulation_active(self) -> bool:
        return self._sim_tick is not None

    def add_state_listener(self, fn: StateListener) -> None:
        self.store.add_listener(fn)

    # --- user command helpers ---
    def open_door(self) -> None:
        self.submit(SetDoor(open=True))

    def close_door(self) -> None:
        self.submit(SetDoor(open=False))

    def toggle_door(self) -> None:
        self.submit(SetDoor(open=None))

    def set_fan(self, fan: int, on: bool) -> None:
        self.submit(SetFan(fan=fan, on=on))

    def set_buzzer(self, on: bool) -> None:
        self.submit(SetBuzzer(on=on))

    def stage_thresholds(self, temp_threshold: Optional[float] = None, gas_threshold: Optional[float] = None) -> None:
        self.submit(StageThresholds(temp_threshold=temp_threshold, gas_threshold=gas_threshold))

    def apply_temp_threshold(self) -> None:
        self.submit(ApplyTempThreshold())

    def apply_gas_threshold(self) -> None:
        self.submit(ApplyGasThreshold())

    def trigger_motion(self) -> None:
        self.submit(TriggerMotion())

    def reconnect(self) -> None:
        self.submit(Reconnect())

    # --- event processing ---
    def handle_event(self, ev: SessionEvent) -> Optional[StateChange]:
        """
        Apply one event to the session.

        Parameters
        ----------
        ev
            Event to apply.

        Returns
        -------
        StateChange or None
            The store mutation caused by the event, if any.
        """
        if self._closed:
            return None

        if isinstance(ev, InboundMessage):
            return self._on_inbound(ev)
        if isinstance(ev, DoorTick):
            return self._on_door_tick(ev)
        if isinstance(ev, MotionClear):
            return self._on_motion_clear(ev)
        if isinstance(ev, SimulationTick):
            return self._on_simulation_tick()
        if isinstance(ev, StatusChanged):
            self._on_status(ev.status)
            return None
        if isinstance(ev, SetDoor):
            return self._on_set_door(ev)
        if isinstance(ev, SetFan):
            if ev.fan not in (1, 2):
                logger.warning("[SESSION] unknown fan %r", ev.fan)
                return None
            name = "fan1_on" if ev.fan == 1 else "fan2_on"
            change = self.store.update(reason=f"user:{name}", **{name: ev.on})
            return self._after(change, [name])
        if isinstance(ev, SetBuzzer):
            change = self.store.update(reason="user:buzzer", buzzer_on=ev.on)
            return self._after(change, ["buzzer_on"])
        if isinstance(ev, StageThresholds):
            self._on_stage(ev)
            return None
        if isinstance(ev, ApplyTempThreshold):
            return self._apply_threshold("temp_threshold")
        if isinstance(ev, ApplyGasThreshold):
            return self._apply_threshold("gas_threshold")
        if isinstance(ev, TriggerMotion):
            return self._motion_pulse("user")
        if isinstance(ev, Reconnect):
            self._manager.reconnect()
            return None

        logger.warning("[SESSION] unknown event %r", ev)
        return None

    def _after(self, change: StateChange, intents: Iterable[str]) -> StateChange:
        """
        Post-step for every mutation: dispatch intents plus latch-forced
        actuators, and publish alarm transitions.
        """
        fields: List[str] = []
        for name in list(intents) + sorted(change.decision.forced):
            if name not in fields:
                fields.append(name)
        if fields:
            self._dispatcher.dispatch_fields(change.after, fields)

        if change.alarm_event is not None:
            logger.warning("[ALARM] %s: %s", change.alarm_event.transition.value, change.alarm_event.message)
            if self._bus is not None:
                self._bus.publish_alarm(change.alarm_event)
        return change

    def _on_inbound(self, ev: InboundMessage) -> Optional[StateChange]:
        update, ok = codec.decode(ev.topic, ev.payload, self._topics)
        if update is None:
            return None
        if update.field is SensorField.MOTION:
            return self._motion_pulse("sensor")
        change = self.store.update(reason=f"inbound:{ev.topic}", **{update.field.value: update.value})
        return self._after(change, [])

    # --- motion pulse + door timer ---
    def _motion_pulse(self, source: str) -> StateChange:
        change = self.store.update(
            reason=f"motion:{source}", motion_detected=True, door_open=True, servo_angle=SERVO_OPEN
        )
        # The node opened the door itself; the next close must not be deduplicated away.
        self._dispatcher.invalidate(self._topics.servo)
        self._arm_door()
        self._arm_motion_clear()
        logger.info("[DOOR] motion (%s): door open, closing in %ss", source, self._door.remaining)
        return self._after(change, [])

    def _arm_door(self) -> None:
        self._cancel(self._door_tick)
        self._door.arm()
        self._door_gen += 1
        gen = self._door_gen
        self._door_tick = self._scheduler.call_every(
            self._timings.tick_s, lambda: self.submit(DoorTick(gen)), name="door-tick"
        )

    def _cancel_door(self) -> None:
        self._cancel(self._door_tick)
        self._door_tick = None
        self._door.cancel()
        self._door_gen += 1

    def _on_door_tick(self, ev: DoorTick) -> Optional[StateChange]:
        if ev.generation != self._door_gen:
            return None
        if not self._door.tick():
            return None
        self._cancel_door()
        change = self.store.update(reason="door-timer", door_open=False, servo_angle=SERVO_CLOSED)
        logger.info("[DOOR] auto-close")
        return self._after(change, ["servo_angle"])

    def _arm_motion_clear(self) -> None:
        self._cancel(self._motion_clear)
        self._motion_gen += 1
        gen = self._motion_gen
        self._motion_clear = self._scheduler.call_later(
            self._timings.motion_clear_s, lambda: self.submit(MotionClear(gen)), name="motion-clear"
        )

    def _on_motion_clear(self, ev: MotionClear) -> Optional[StateChange]:
        if ev.generation != self._motion_gen:
            return None
        self._motion_clear = None
        change = self.store.update(reason="motion-clear", motion_detected=False)
        return self._after(change, [])

    def _on_set_door(self, ev: SetDoor) -> StateChange:
        target = (not self.store.snapshot().door_open) if ev.open is None else ev.open
        change = self.store.update(
            reason="user:door", door_open=target, servo_angle=SERVO_OPEN if target else SERVO_CLOSED
        )
        if target:
            self._arm_door()
        else:
            self._cancel_door()
        return self._after(change, ["servo_angle"])

    # --- thresholds ---
    def _on_stage(self, ev: StageThresholds) -> None:
        inputs = self._inputs
        if ev.temp_threshold is not None:
            inputs = replace(inputs, temp_threshold_input=ev.temp_threshold)
        if ev.gas_threshold is not None:
            inputs = replace(inputs, gas_threshold_input=ev.gas_threshold)
        self._inputs = inputs

    def _apply_threshold(self, name: str) -> StateChange:
        staged = self._inputs.temp_threshold_input if name == "temp_threshold" else self._inputs.gas_threshold_input
        result = clamp_threshold(name, staged)
        if result.corrected:
            low, high, _ = THRESHOLD_RANGES[name]
            logger.info("[SESSION] %s; committed %s", ValidationError(name, staged, low, high), result.value)

        if name == "temp_threshold":
            self._inputs = replace(self._inputs, temp_threshold_input=result.value)
        else:
            self._inputs = replace(self._inputs, gas_threshold_input=result.value)

        change = self.store.update(reason=f"user:{name}", **{name: result.value})
        return self._after(change, [name])

    # --- status + simulation ---
    def _on_status(self, status: SessionStatus) -> None:
        self._status = status
        logger.info("[SESSION] status %s: %s", status.state.value, status.text)
        if status.connected:
            self._dispatcher.reset()
            self._stop_simulation()

    def _on_simulation_tick(self) -> Optional[StateChange]:
        if self._simulation is None or self._sim_tick is None:
            return None
        temperature, gas_level = self._simulation.step(self.store.snapshot())
        change = self.store.update(reason="simulation", temperature=temperature, gas_level=gas_level)
        return self._after(change, [])

    def _stop_simulation(self) -> None:
        if self._sim_tick is not None:
            self._sim_tick.cancel()
            self._sim_tick = None
            logger.info("[SESSION] simulation mode off")

    @staticmethod
    def _cancel(handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()
