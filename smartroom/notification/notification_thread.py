from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional

from smartroom.domain.events import AlarmTransition
from smartroom.notification.base import AlarmNotification, Notifier

logger = logging.getLogger(__name__)

ALL_TRANSITIONS: FrozenSet[AlarmTransition] = frozenset(AlarmTransition)


@dataclass(frozen=True)
class NotificationThreadConfig:
    """
    Parameters
    ----------
    notify_on
        Alarm transitions that are delivered; others are skipped.
    cooldown_s
        Minimum spacing between two deliveries of the same transition. A
        reading that keeps crossing its threshold otherwise floods the
        receiver with RAISED/CLEARED pairs. 0 disables the cooldown.
    """

    max_queue: int = 200
    retry_count: int = 3
    retry_backoff_s: float = 0.5
    poll_timeout_s: float = 0.5
    notify_on: FrozenSet[AlarmTransition] = ALL_TRANSITIONS
    cooldown_s: float = 0.0


class NotificationWorkerThread:
    """
    Background sender for room alarm notifications.

    Each accepted notification is handed to every notifier. Delivery is
    best-effort: a notifier is retried with exponential backoff and then
    given up on; notifications are dropped when the queue is full.

    Filtering happens at ``emit`` time on the caller's thread:
    - transitions outside ``notify_on`` are skipped
    - a transition delivered less than ``cooldown_s`` ago is suppressed;
      the suppressed edge still shows up in the next payload's totals
    """

    def __init__(
        self,
        notifiers: List[Notifier],
        cfg: NotificationThreadConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._notifiers = notifiers
        self._cfg = cfg or NotificationThreadConfig()
        self._clock = clock
        self._q: "queue.Queue[Optional[AlarmNotification]]" = queue.Queue(maxsize=self._cfg.max_queue)
        self._stop = threading.Event()
        self._last_sent: Dict[AlarmTransition, float] = {}
        self._lock = threading.Lock()
        self._suppressed = 0
        self._thread = threading.Thread(target=self._run, name="notification-worker", daemon=True)

    @property
    def suppressed(self) -> int:
        return self._suppressed

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._q.put_nowait(None)
        except queue.Full:
            pass
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)

    def emit(self, notification: AlarmNotification) -> bool:
        """
        Queue a notification for delivery.

        Returns
        -------
        bool
            True when queued, False when filtered, cooled down or dropped.
        """
        transition = notification.transition
        if transition not in self._cfg.notify_on:
            return False

        with self._lock:
            now = self._clock()
            last = self._last_sent.get(transition)
            if self._cfg.cooldown_s > 0 and last is not None and now - last < self._cfg.cooldown_s:
                self._suppressed += 1
                logger.info("[NOTIFY] %s within cooldown, suppressed", transition.value)
                return False
            self._last_sent[transition] = now

        try:
            self._q.put_nowait(notification)
        except queue.Full:
            logger.warning("[NOTIFY] queue full, dropping %s", transition.value)
            return False
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                notification = self._q.get(timeout=self._cfg.poll_timeout_s)
            except queue.Empty:
                continue

            if notification is None:
                break

            for notifier in self._notifiers:
                self._send_with_retries(notifier, notification)

    def _send_with_retries(self, notifier: Notifier, n: AlarmNotification) -> None:
        for attempt in range(self._cfg.retry_count + 1):
            try:
                notifier.notify(n)
                return
            except Exception as e:
                if attempt >= self._cfg.retry_count:
                    logger.error(
                        "[NOTIFY] giving up on %s after %d attempts: %r", n.summary, attempt + 1, e
                    )
                    return
                if self._stop.wait(self._cfg.retry_backoff_s * (2 ** attempt)):
                    return
