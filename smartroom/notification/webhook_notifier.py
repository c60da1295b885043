from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from smartroom.notification.base import AlarmNotification
from smartroom.notification.payload import build_alarm_webhook_payload

logger = logging.getLogger(__name__)

TRANSITION_HEADER = "X-SmartRoom-Alarm"


@dataclass(frozen=True)
class WebhookConfig:
    """
    Endpoint settings for room alarm webhooks.

    Parameters
    ----------
    url
        Target webhook URL.
    timeout_s
        HTTP request timeout in seconds.
    verify_tls
        Whether to verify TLS certificates.
    auth_header
        Optional Authorization header value (e.g., Bearer token).
    """

    url: str
    timeout_s: float = 3.0
    verify_tls: bool = True
    auth_header: Optional[str] = None


class WebhookNotifier:
    """
    POST each alarm edge of the room as JSON.

    The body comes from :func:`build_alarm_webhook_payload`; the transition is
    repeated in the ``X-SmartRoom-Alarm`` header so receivers can route
    RAISED and CLEARED without parsing the body.

    Notes
    -----
    HTTP errors are surfaced via ``raise_for_status()`` so the worker thread
    can retry.
    """

    def __init__(self, cfg: WebhookConfig):
        self._cfg = cfg

    def _headers(self, n: AlarmNotification) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", TRANSITION_HEADER: n.transition.value}
        if self._cfg.auth_header:
            headers["Authorization"] = self._cfg.auth_header
        return headers

    def notify(self, notification: AlarmNotification) -> None:
        """
        Raises
        ------
        requests.HTTPError
            If the HTTP response status indicates an error.
        requests.RequestException
            For network-related errors.
        """
        r = requests.post(
            self._cfg.url,
            json=build_alarm_webhook_payload(notification),
            headers=self._headers(notification),
            timeout=self._cfg.timeout_s,
            verify=self._cfg.verify_tls,
        )
        r.raise_for_status()
        logger.debug("[NOTIFY] webhook accepted %s (%s)", notification.transition.value, r.status_code)
