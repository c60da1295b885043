from __future__ import annotations

import logging
import threading
from collections import Counter
from queue import Empty
from typing import Callable, Optional

from smartroom.core.state_store import StateStore
from smartroom.domain.events import AlarmEvent, AlarmTransition
from smartroom.domain.models import SessionStatus
from smartroom.notification.base import AlarmNotification
from smartroom.notification.notification_thread import NotificationWorkerThread
from smartroom.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


def build_alarm_notification(
    store: StateStore,
    ev: AlarmEvent,
    status: Optional[SessionStatus] = None,
) -> AlarmNotification:
    """Attach the current snapshot, history totals and session status to an edge."""
    counts = Counter(e.transition for e in store.alarm_events)
    return AlarmNotification(
        event=ev,
        snapshot=store.snapshot(),
        session=status,
        raised_total=counts[AlarmTransition.RAISED],
        cleared_total=counts[AlarmTransition.CLEARED],
    )


class NotificationAdapterThread:
    """
    Adapter thread that bridges AlarmEvent -> NotificationWorkerThread.

    Responsibilities
    ----------------
    - Drain `EventBus.alarm_events_q`.
    - Wrap each edge in an `AlarmNotification` with the room snapshot.
    - Emit it into the notification worker.

    Parameters
    ----------
    bus
        Event bus providing the alarm event queue.
    store
        StateStore used for the snapshot and history totals.
    notifier
        Notification worker responsible for actual sending.
    stop_event
        Stop signal for the thread.
    status_fn
        Optional callable returning the current session status.
    """

    def __init__(
        self,
        bus: EventBus,
        store: StateStore,
        notifier: NotificationWorkerThread,
        stop_event: threading.Event,
        status_fn: Optional[Callable[[], SessionStatus]] = None,
    ):
        self._bus = bus
        self._store = store
        self._notifier = notifier
        self._stop = stop_event
        self._status_fn = status_fn
        self._thread = threading.Thread(target=self._run, name="notification-adapter", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ev: AlarmEvent = self._bus.alarm_events_q.get(timeout=0.5)
            except Empty:
                continue

            try:
                status = self._status_fn() if self._status_fn else None
                self._notifier.emit(build_alarm_notification(self._store, ev, status))
            except Exception:
                logger.exception("[NOTIFY-ADAPTER] failed")
