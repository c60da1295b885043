"""
Domain models and enums.

This module defines the core domain-level types used across the system:
- Broker connection descriptors (the ordered failover set)
- Session lifecycle status reported by the connection manager
- The sensor/actuator snapshot and its threshold limits
- Decoded single-field updates produced by the message codec

Snapshots and descriptors are frozen dataclasses so they can be shared between
the transport callbacks, the session loop and UI readers without copying.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

TEMP_THRESHOLD_MIN: float = 20.0
TEMP_THRESHOLD_MAX: float = 80.0
GAS_THRESHOLD_MIN: float = 100.0
GAS_THRESHOLD_MAX: float = 4000.0

DEFAULT_TEMP_THRESHOLD: float = 65.0
DEFAULT_GAS_THRESHOLD: float = 2000.0

SERVO_CLOSED: int = 0
SERVO_OPEN: int = 90


class SessionState(str, Enum):
    """
    Lifecycle state of the logical broker session.

    Members
    -------
    IDLE : str
        Manager created, nothing attempted yet.
    CONNECTING : str
        An attempt against one config index is in flight.
    CONNECTED : str
        Transport is up and inbound topics are subscribed.
    DISCONNECTED : str
        Session torn down, or a transport error is being recovered.
    FAILED : str
        Every config in the list failed during one pass.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SessionStatus:
    """
    Current session status as exposed to UI badges and diagnostics.

    Parameters
    ----------
    state
        Enumerated lifecycle state.
    config_index
        Index of the config being tried (CONNECTING) or in use (CONNECTED).
    text
        Human-readable status string.
    """

    state: SessionState = SessionState.IDLE
    config_index: Optional[int] = None
    text: str = "Idle"

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED


@dataclass(frozen=True)
class ConnectionConfig:
    """
    One candidate broker transport descriptor.

    The position of a config in its list defines failover priority.

    Parameters
    ----------
    name
        Display name used in status strings and logs.
    host
        Broker host name.
    port
        Broker port.
    scheme
        One of ``"wss"``, ``"ws"``, ``"mqtts"``, ``"mqtt"``.
    path
        WebSocket sub-protocol path (ignored for raw TCP schemes).
    accept_invalid_certificates
        Skip TLS certificate/hostname verification for secure schemes.
    """

    name: str
    host: str
    port: int
    scheme: str = "wss"
    path: str = "/mqtt"
    accept_invalid_certificates: bool = False

    def __post_init__(self) -> None:
        if self.scheme not in ("wss", "ws", "mqtts", "mqtt"):
            raise ValueError(f"Unsupported scheme: {self.scheme!r}")

    @property
    def secure(self) -> bool:
        return self.scheme in ("wss", "mqtts")

    @property
    def websockets(self) -> bool:
        return self.scheme in ("wss", "ws")

    @property
    def url(self) -> str:
        suffix = self.path if self.websockets else ""
        return f"{self.scheme}://{self.host}:{self.port}{suffix}"


@dataclass(frozen=True)
class SensorState:
    """
    Authoritative snapshot of sensor readings and actuator states.

    ``alarm_active`` is derived: the state store recomputes it after every
    mutation, so callers never set it directly.

    Parameters
    ----------
    temperature
        Latest temperature reading (°C).
    gas_level
        Latest gas concentration (ppm).
    motion_detected
        Motion pulse flag, cleared by its own timer.
    door_open
        Door state; mirrors ``servo_angle``.
    servo_angle
        0 (closed) or 90 (open).
    buzzer_on, fan1_on, fan2_on
        Actuator states.
    temp_threshold, gas_threshold
        Committed alarm thresholds.
    alarm_active
        True when any reading is at or above its threshold.
    """

    temperature: float = 24.0
    gas_level: float = 120.0
    motion_detected: bool = False
    door_open: bool = False
    servo_angle: int = SERVO_CLOSED
    buzzer_on: bool = False
    fan1_on: bool = False
    fan2_on: bool = False
    temp_threshold: float = DEFAULT_TEMP_THRESHOLD
    gas_threshold: float = DEFAULT_GAS_THRESHOLD
    alarm_active: bool = False

    @property
    def temp_alarm(self) -> bool:
        return self.temperature >= self.temp_threshold

    @property
    def gas_alarm(self) -> bool:
        return self.gas_level >= self.gas_threshold


@dataclass(frozen=True)
class ThresholdInputs:
    """Staged (not yet applied) threshold edits."""

    temp_threshold_input: float = DEFAULT_TEMP_THRESHOLD
    gas_threshold_input: float = DEFAULT_GAS_THRESHOLD


class SensorField(str, Enum):
    """
    Snapshot fields that inbound topics can update.
    """

    TEMPERATURE = "temperature"
    GAS_LEVEL = "gas_level"
    MOTION = "motion_detected"


@dataclass(frozen=True)
class FieldUpdate:
    """
    A decoded single-field update.

    Parameters
    ----------
    field
        Target snapshot field.
    value
        New value (float for readings, bool for motion).
    topic
        Topic the update arrived on.
    """

    field: SensorField
    value: Union[float, bool]
    topic: str = ""

