"""
Session event and alarm event domain models.

Everything that can change the sensor snapshot is modelled as a discrete
`SessionEvent` and applied one at a time by the session controller:
- inbound broker messages
- timer fires (door tick, motion clear, simulation tick)
- user commands (door, fans, buzzer, thresholds, manual motion)
- session status changes reported by the connection manager

`AlarmEvent` captures *what happened* to the alarm at a point in time and is
published to the notification layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from smartroom.domain.models import SessionStatus


class AlarmTransition(str, Enum):
    """
    Alarm latch transition.

    Members
    -------
    RAISED : str
        Alarm became active (rising edge).
    CLEARED : str
        Alarm returned to normal (falling edge).
    """

    RAISED = "RAISED"
    CLEARED = "CLEARED"


@dataclass(frozen=True)
class AlarmEvent:
    """
    Alarm event emitted on a rising or falling edge of ``alarm_active``.

    Parameters
    ----------
    transition
        RAISED or CLEARED.
    timestamp
        When the transition was applied.
    message
        Human-readable description (used in logs and notifications).
    temperature, gas_level
        Readings at the time of the transition.
    temp_threshold, gas_threshold
        Thresholds at the time of the transition.
    """

    transition: AlarmTransition
    timestamp: datetime
    message: str
    temperature: float
    gas_level: float
    temp_threshold: float
    gas_threshold: float


# --- inbound / timer events ---


@dataclass(frozen=True)
class InboundMessage:
    """Raw broker message, decoded on the session loop."""

    topic: str
    payload: Union[bytes, str]


@dataclass(frozen=True)
class DoorTick:
    """One-second tick of the door countdown."""

    generation: int


@dataclass(frozen=True)
class MotionClear:
    """Fire of the motion-clear one-shot."""

    generation: int


@dataclass(frozen=True)
class SimulationTick:
    """Random-walk step while running without a broker."""


@dataclass(frozen=True)
class StatusChanged:
    """Connection manager reported a new session status."""

    status: SessionStatus


# --- user commands ---


@dataclass(frozen=True)
class SetDoor:
    """Open (``True``) or close (``False``) the door; ``None`` toggles."""

    open: Optional[bool] = None


@dataclass(frozen=True)
class SetFan:
    fan: int
    on: bool


@dataclass(frozen=True)
class SetBuzzer:
    on: bool


@dataclass(frozen=True)
class StageThresholds:
    """Stage threshold edits without applying them."""

    temp_threshold: Optional[float] = None
    gas_threshold: Optional[float] = None


@dataclass(frozen=True)
class ApplyTempThreshold:
    pass


@dataclass(frozen=True)
class ApplyGasThreshold:
    pass


@dataclass(frozen=True)
class TriggerMotion:
    """Manual motion pulse, identical to an active-low sensor message."""


@dataclass(frozen=True)
class Reconnect:
    """Manual reconnect request, restarts failover from the first config."""


UserCommand = Union[
    SetDoor,
    SetFan,
    SetBuzzer,
    StageThresholds,
    ApplyTempThreshold,
    ApplyGasThreshold,
    TriggerMotion,
    Reconnect,
]

SessionEvent = Union[
    InboundMessage,
    DoorTick,
    MotionClear,
    SimulationTick,
    StatusChanged,
    UserCommand,
]


@dataclass(frozen=True)
class StopLoop:
    """Sentinel used to wake and stop the session loop thread."""

    reason: str = field(default="stop")
