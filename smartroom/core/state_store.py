from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, List, Optional

from smartroom.core.alarm.alarm_evaluator import AlarmDecision, settle
from smartroom.domain.events import AlarmEvent, AlarmTransition
from smartroom.domain.models import SensorState

Mutator = Callable[[SensorState], SensorState]
StateListener = Callable[["StateChange"], None]


@dataclass(frozen=True)
class StateChange:
    """
    Outcome of one atomic store mutation.

    Parameters
    ----------
    before
        Snapshot prior to the mutation.
    after
        Settled snapshot (alarm invariant holds).
    decision
        Alarm evaluation that produced ``after``.
    reason
        Short label of the event that caused the mutation (for logs).
    alarm_event
        Alarm transition recorded by this mutation, if any.
    """

    before: SensorState
    after: SensorState
    decision: AlarmDecision
    reason: str = ""
    alarm_event: Optional[AlarmEvent] = None

    @property
    def changed(self) -> bool:
        return self.before != self.after

    def changed_fields(self) -> List[str]:
        return [f for f in SensorState.__dataclass_fields__ if getattr(self.before, f) != getattr(self.after, f)]


@dataclass
class StateStore:
    """
    Thread-safe holder of the authoritative sensor snapshot.

    'StateStore' is the only place consumers read sensor and actuator values
    from. Every write goes through :meth:`apply`, which runs the mutator and the
    alarm latch as a single read-modify-write under one lock, so
    ``alarm_active`` can never be observed out of sync with its inputs.

    Concurrency Model
    -----------------
    All reads/writes are guarded by a re-entrant lock (`threading.RLock`).
    In the running system only the session loop writes; the lock protects
    readers (UI, notification adapter) from torn reads.

    Notes
    -----
    - Each inbound update touches a single field and the last write wins;
      the store does not order updates by time.
    - Alarm transitions are recorded in a bounded history used by the
      notification payload.

    Attributes
    ----------
    max_history
        Maximum number of alarm events kept in memory.
    """

    initial: SensorState = field(default_factory=SensorState)
    max_history: int = 200

    _state: SensorState = field(init=False, repr=False)
    _history: List[AlarmEvent] = field(default_factory=list, init=False, repr=False)
    _listeners: List[StateListener] = field(default_factory=list, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __post_init__(self) -> None:
        # Settle the initial snapshot so the invariant holds from the start.
        settled, _ = settle(replace(self.initial, alarm_active=False), self.initial)
        self._state = settled

    # --- Write API ---
    def apply(self, mutator: Mutator, reason: str = "", now: Optional[datetime] = None) -> StateChange:
        """
        Apply one mutation atomically and settle the alarm latch.

        Parameters
        ----------
        mutator
            Function returning the candidate snapshot from the current one.
        reason
            Label for logs/listeners.
        now
            Timestamp recorded on alarm events. Defaults to ``datetime.now()``.

        Returns
        -------
        StateChange
            Before/after snapshots and the alarm decision.
        """
        with self._lock:
            before = self._state
            candidate = mutator(before)
            after, decision = settle(before, candidate)
            self._state = after

            event = None
            if decision.transition is not None:
                event = self._record(after, decision.transition, now or datetime.now())

            change = StateChange(before=before, after=after, decision=decision, reason=reason, alarm_event=event)
            listeners = list(self._listeners)

        for fn in listeners:
            fn(change)
        return change

    def update(self, reason: str = "", **fields: Any) -> StateChange:
        """
        Replace one or more fields (``alarm_active`` excluded).

        Raises
        ------
        ValueError
            If ``alarm_active`` is passed; it is derived.
        """
        if "alarm_active" in fields:
            raise ValueError("alarm_active is derived and cannot be set")
        return self.apply(lambda s: replace(s, **fields), reason=reason or ",".join(fields))

    # --- Read API ---
    def snapshot(self) -> SensorState:
        with self._lock:
            return self._state

    @property
    def alarm_events(self) -> List[AlarmEvent]:
        """Snapshot copy of alarm transition history (oldest first)."""
        with self._lock:
            return list(self._history)

    def clear_alarm_history(self) -> None:
        with self._lock:
            self._history.clear()

    def add_listener(self, fn: StateListener) -> None:
        """
        Register a callback invoked after every mutation.

        Notes
        -----
        Listeners run on the writer's thread, outside the store lock.
        """
        with self._lock:
            self._listeners.append(fn)

    def _record(self, after: SensorState, transition: AlarmTransition, ts: datetime) -> AlarmEvent:
        if transition is AlarmTransition.RAISED:
            parts = []
            if after.temp_alarm:
                parts.append("High Temperature")
            if after.gas_alarm:
                parts.append("High Gas Level")
            message = "ALERT: " + " & ".join(parts)
        else:
            message = "Alarm cleared"

        event = AlarmEvent(
            transition=transition,
            timestamp=ts,
            message=message,
            temperature=after.temperature,
            gas_level=after.gas_level,
            temp_threshold=after.temp_threshold,
            gas_threshold=after.gas_threshold,
        )
        self._history.append(event)
        if len(self._history) > self.max_history:
            del self._history[: len(self._history) - self.max_history]
        return event
