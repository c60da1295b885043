from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from smartroom.domain.events import AlarmEvent, AlarmTransition
from smartroom.domain.models import SensorState, SessionStatus


@dataclass(frozen=True)
class AlarmNotification:
    """
    One alarm edge of the room, with the context needed to report it.

    An 'AlarmNotification' describes *what should be communicated* (the
    alarm was raised or cleared, and why), not *how* it is delivered.

    Parameters
    ----------
    event
        The latch transition as recorded by the state store.
    snapshot
        Room snapshot taken when the notification was built (may be newer
        than the event).
    session
        Broker session status at that moment, when known.
    raised_total, cleared_total
        Transition counts over the store's alarm history.
    """

    event: AlarmEvent
    snapshot: SensorState
    session: Optional[SessionStatus] = None
    raised_total: int = 0
    cleared_total: int = 0

    @property
    def transition(self) -> AlarmTransition:
        return self.event.transition

    @property
    def causes(self) -> Tuple[str, ...]:
        """Alarm inputs at or above their threshold when the edge happened."""
        ev = self.event
        out = []
        if ev.temperature >= ev.temp_threshold:
            out.append("temperature")
        if ev.gas_level >= ev.gas_threshold:
            out.append("gas_level")
        return tuple(out)

    @property
    def summary(self) -> str:
        ev = self.event
        if self.transition is AlarmTransition.CLEARED:
            return (
                f"CLEARED: temperature {ev.temperature:g} < {ev.temp_threshold:g}, "
                f"gas {ev.gas_level:g} < {ev.gas_threshold:g}"
            )
        parts = []
        if "temperature" in self.causes:
            parts.append(f"temperature {ev.temperature:g} >= {ev.temp_threshold:g}")
        if "gas_level" in self.causes:
            parts.append(f"gas {ev.gas_level:g} >= {ev.gas_threshold:g}")
        return "RAISED: " + ", ".join(parts)


class Notifier(Protocol):
    """
    Protocol interface for alarm notification delivery.

    Any object with a matching ``notify(notification)`` works, which keeps the
    worker thread testable with fakes.
    """

    def notify(self, notification: AlarmNotification) -> None:
        ...
