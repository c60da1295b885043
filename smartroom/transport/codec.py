from __future__ import annotations

import json
import logging
import math
from typing import Any, Optional, Tuple, Union

from smartroom.domain.errors import DecodeError
from smartroom.domain.models import FieldUpdate, SensorField
from smartroom.transport.topics import TopicMap

logger = logging.getLogger(__name__)

DEFAULT_TOPICS = TopicMap()


def _payload_text(raw: Union[bytes, bytearray, str]) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return str(raw)


def _to_finite_float(value: Any) -> Optional[float]:
    """
    Convert a JSON value or string to a finite float.

    Returns None for booleans, non-numeric strings, NaN and infinities.
    """
    if isinstance(value, bool) or value is None:
        return None
    try:
        f = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(f):
        return None
    return f


def parse_numeric(text: str, topic: str = "") -> float:
    """
    Parse a payload into a number.

    Decoding order
    --------------
    1) Structured: a JSON object with a ``"value"`` key (``{"value": 42.5}``).
       The value may itself be a number or a numeric string.
    2) Plain scalar: the whole payload as a number (``"42.5"``).

    Parameters
    ----------
    text
        Decoded payload text.
    topic
        Topic name, only used in the error message.

    Returns
    -------
    float
        Parsed finite value.

    Raises
    ------
    DecodeError
        If neither form yields a finite number.
    """
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        obj = None

    if isinstance(obj, dict) and "value" in obj:
        v = _to_finite_float(obj["value"])
        if v is not None:
            return v

    v = _to_finite_float(text)
    if v is not None:
        return v

    raise DecodeError(topic, text)


def decode(
    topic: str,
    raw: Union[bytes, bytearray, str],
    topics: TopicMap = DEFAULT_TOPICS,
) -> Tuple[Optional[FieldUpdate], bool]:
    """
    Decode an inbound broker message into a single-field update.

    Topic routing
    -------------
    - heat topic   -> ``temperature``
    - gas topic    -> ``gas_level``
    - motion topic -> ``motion_detected=True`` when the payload is ``0``
      (the sensor is active-low); any other value emits no update.

    Fallback behavior
    -----------------
    Readings that cannot be decoded become ``0.0`` (``ok=False``) so the
    snapshot reflects a dead sensor instead of keeping a stale value. Motion
    payloads that cannot be decoded are dropped.

    Parameters
    ----------
    topic
        Topic the message arrived on.
    raw
        Raw payload bytes or text.
    topics
        Topic names in use for this session.

    Returns
    -------
    (FieldUpdate or None, bool)
        The update to apply (if any) and whether decoding succeeded.
    """
    text = _payload_text(raw)

    if topic in (topics.heat, topics.gas):
        field = SensorField.TEMPERATURE if topic == topics.heat else SensorField.GAS_LEVEL
        try:
            value = parse_numeric(text, topic)
        except DecodeError as e:
            logger.warning("[CODEC] %s, using 0", e)
            return FieldUpdate(field=field, value=0.0, topic=topic), False
        return FieldUpdate(field=field, value=value, topic=topic), True

    if topic == topics.motion:
        try:
            value = parse_numeric(text, topic)
        except DecodeError as e:
            logger.warning("[CODEC] %s, dropped", e)
            return None, False
        if value == 0:
            return FieldUpdate(field=SensorField.MOTION, value=True, topic=topic), True
        return None, True

    logger.debug("[CODEC] ignoring message on unrouted topic %r", topic)
    return None, False
