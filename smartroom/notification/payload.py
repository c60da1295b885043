from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict

from smartroom.notification.base import AlarmNotification


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="seconds")


def build_alarm_webhook_payload(n: AlarmNotification) -> Dict[str, Any]:
    """
    Build the JSON body sent for one alarm edge.

    The payload includes:
    - "event": transition, causes and the readings/thresholds at the edge
    - "snapshot": the room snapshot carried by the notification
    - "totals": RAISED / CLEARED counts over the alarm history
    - "session": broker session status, when known

    Parameters
    ----------
    n
        Notification to serialise.

    Returns
    -------
    dict
        Webhook payload with keys "type", "event", "snapshot", "totals" and
        optionally "session".
    """
    ev = n.event
    payload: Dict[str, Any] = {
        "type": "alarm_event",
        "event": {
            "transition": n.transition.value,
            "timestamp": _iso(ev.timestamp),
            "message": ev.message,
            "summary": n.summary,
            "causes": list(n.causes),
            "temperature": ev.temperature,
            "gas_level": ev.gas_level,
            "temp_threshold": ev.temp_threshold,
            "gas_threshold": ev.gas_threshold,
        },
        "snapshot": asdict(n.snapshot),
        "totals": {
            "raised": n.raised_total,
            "cleared": n.cleared_total,
        },
    }

    if n.session is not None:
        payload["session"] = {
            "state": n.session.state.value,
            "config_index": n.session.config_index,
            "text": n.session.text,
        }
    return payload
