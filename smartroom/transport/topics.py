"""
Broker topic names and default broker endpoints.

The sensor node and the actuator node share one broker. Inbound topics carry
readings from the node; outbound topics carry actuator commands back to it.
All of these can be overridden from config.yaml (see
:func:`smartroom.core.config.yaml_config.load_app_config`).

Attributes
----------
HEAT, GAS, MOTION
    Inbound sensor topics (temperature °C, gas ppm, active-low motion).
SERVO, BUZZER, FAN1, FAN2, TEMP_THRESHOLD, GAS_THRESHOLD
    Outbound command topics.
BROKER_HOST
    Default broker host used by the built-in connection list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

HEAT: str = "esp32/HEAT"
GAS: str = "esp32/Co2"
MOTION: str = "esp32/IR"

SERVO: str = "SERVO"
BUZZER: str = "BUZZ"
FAN1: str = "FAN"
FAN2: str = "FAN2"
TEMP_THRESHOLD: str = "TEMP-threshold"
GAS_THRESHOLD: str = "GAS-threshold"

BROKER_HOST: str = "broker.hivemq.cloud"


@dataclass(frozen=True)
class TopicMap:
    """Resolved topic names for one session."""

    heat: str = HEAT
    gas: str = GAS
    motion: str = MOTION
    servo: str = SERVO
    buzzer: str = BUZZER
    fan1: str = FAN1
    fan2: str = FAN2
    temp_threshold: str = TEMP_THRESHOLD
    gas_threshold: str = GAS_THRESHOLD

    @property
    def inbound(self) -> Tuple[str, ...]:
        return (self.heat, self.gas, self.motion)
