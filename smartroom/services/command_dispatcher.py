from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from smartroom.core.thresholds import format_number
from smartroom.domain.models import SensorState, SessionStatus
from smartroom.transport.base import Payload
from smartroom.transport.topics import TopicMap

logger = logging.getLogger(__name__)

# SensorState field -> actuator command it drives
ACTUATOR_FIELDS = ("servo_angle", "buzzer_on", "fan1_on", "fan2_on", "temp_threshold", "gas_threshold")


class Publisher(Protocol):
    """The slice of the connection manager the dispatcher needs."""

    @property
    def status(self) -> SessionStatus:
        ...

    def publish(self, topic: str, payload: Payload, qos: int = 0, retain: bool = False) -> bool:
        ...


def _bool_payload(on: bool) -> str:
    return "1" if on else "0"


@dataclass
class CommandDispatcher:
    """
    Turn actuator intents into outbound publishes.

    Rules
    -----
    - Payloads are strings: servo ``"0"``/``"90"``, fans and buzzer
      ``"0"``/``"1"``, thresholds the clamped number (``"20"``, ``"42.5"``).
    - QoS 0, retain False; the transport is at-most-once.
    - Nothing is sent, queued or remembered while the session is not
      connected. A stale "open door" must never replay after an outage.
    - A command whose payload equals the last payload sent on that topic in
      the current session is skipped.

    Parameters
    ----------
    publisher
        Connection manager (or fake) providing ``status`` and ``publish``.
    topics
        Outbound topic names.
    """

    publisher: Publisher
    topics: TopicMap = field(default_factory=TopicMap)
    qos: int = 0

    _last_sent: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def reset(self) -> None:
        """Forget last-sent payloads (called for every new session)."""
        with self._lock:
            self._last_sent.clear()

    def invalidate(self, topic: str) -> None:
        """
        Forget the last payload for one topic.

        Used when the device changed an actuator on its own (e.g. the node
        opens the door on motion), so the next command must not be skipped.
        """
        with self._lock:
            self._last_sent.pop(topic, None)

    @property
    def last_sent(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._last_sent)

    # --- intents ---
    def servo(self, angle: int) -> bool:
        return self._send(self.topics.servo, str(int(angle)))

    def fan(self, fan: int, on: bool) -> bool:
        if fan not in (1, 2):
            raise ValueError(f"Unknown fan: {fan}")
        topic = self.topics.fan1 if fan == 1 else self.topics.fan2
        return self._send(topic, _bool_payload(on))

    def buzzer(self, on: bool) -> bool:
        return self._send(self.topics.buzzer, _bool_payload(on))

    def temp_threshold(self, value: float) -> bool:
        return self._send(self.topics.temp_threshold, format_number(value))

    def gas_threshold(self, value: float) -> bool:
        return self._send(self.topics.gas_threshold, format_number(value))

    def dispatch_fields(self, state: SensorState, fields: Iterable[str]) -> List[str]:
        """
        Publish the current value of each named actuator field.

        Parameters
        ----------
        state
            Settled snapshot to read values from.
        fields
            Names from :data:`ACTUATOR_FIELDS`; other names are ignored.

        Returns
        -------
        list of str
            Topics actually published.
        """
        sent: List[str] = []
        for name in fields:
            topic: Optional[str] = None
            if name == "servo_angle" and self.servo(state.servo_angle):
                topic = self.topics.servo
            elif name == "buzzer_on" and self.buzzer(state.buzzer_on):
                topic = self.topics.buzzer
            elif name == "fan1_on" and self.fan(1, state.fan1_on):
                topic = self.topics.fan1
            elif name == "fan2_on" and self.fan(2, state.fan2_on):
                topic = self.topics.fan2
            elif name == "temp_threshold" and self.temp_threshold(state.temp_threshold):
                topic = self.topics.temp_threshold
            elif name == "gas_threshold" and self.gas_threshold(state.gas_threshold):
                topic = self.topics.gas_threshold
            if topic is not None:
                sent.append(topic)
        return sent

    def _send(self, topic: str, payload: str) -> bool:
        with self._lock:
            if not self.publisher.status.connected:
                logger.debug("[DISPATCH] skip %s=%s (not connected)", topic, payload)
                return False
            if self._last_sent.get(topic) == payload:
                logger.debug("[DISPATCH] skip %s=%s (unchanged)", topic, payload)
                return False
            if not self.publisher.publish(topic, payload, qos=self.qos, retain=False):
                return False
            self._last_sent[topic] = payload
        logger.info("[DISPATCH] %s <- %s", topic, payload)
        return True
