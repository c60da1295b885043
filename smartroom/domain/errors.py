"""
Error taxonomy for the session core.

None of these are fatal to the host process. They are raised inside a
component and recovered at its boundary:

- TransportError: connect/timeout/socket failure, recovered by failover.
- DecodeError: malformed payload, recovered by substituting 0 or dropping.
- ValidationError: out-of-range threshold, recovered by clamping.
- ExhaustedConfigError: one full pass through the configs failed, surfaced
  as the FAILED session status.
"""

from __future__ import annotations

from typing import Optional


class SmartRoomError(Exception):
    """Base class for all session core errors."""


class TransportError(SmartRoomError):
    """
    Transport-level failure for one connection attempt.

    Parameters
    ----------
    message
        Human-readable reason.
    config_name
        Name of the config the failure belongs to, if known.
    """

    def __init__(self, message: str, config_name: Optional[str] = None):
        super().__init__(message)
        self.config_name = config_name


class DecodeError(SmartRoomError):
    """Payload could not be decoded into a finite number."""

    def __init__(self, topic: str, payload: str):
        super().__init__(f"Cannot decode payload on {topic!r}: {payload[:200]!r}")
        self.topic = topic
        self.payload = payload


class ValidationError(SmartRoomError):
    """Threshold input outside its valid range."""

    def __init__(self, name: str, value: float, low: float, high: float):
        super().__init__(f"{name}={value} outside [{low}, {high}]")
        self.name = name
        self.value = value
        self.low = low
        self.high = high


class ExhaustedConfigError(SmartRoomError):
    """Every connection config failed during one failover pass."""

    def __init__(self, attempted: int):
        super().__init__(f"All {attempted} connection configs failed")
        self.attempted = attempted
