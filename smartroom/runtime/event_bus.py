from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from queue import Empty, Full, Queue

from smartroom.domain.events import AlarmEvent

logger = logging.getLogger(__name__)


@dataclass
class EventBus:
    """
    In-process hand-off of alarm edges from the session loop to notification.

    - The session controller publishes :class:`~smartroom.domain.events.AlarmEvent`
      via :meth:`publish_alarm` on every latch transition.
    - The notification adapter thread drains :attr:`alarm_events_q`.

    The bus is only built when something consumes it (see
    :func:`smartroom.bootstrap.build_app_system`).

    Backpressure Policy
    -------------------
    When the queue is full the *oldest* edge is discarded. The newest edge
    reflects the room's current alarm state, so it is the one kept. Publishing
    never blocks the session loop.

    Attributes
    ----------
    max_queue
        Queue bound.
    alarm_events_q
        Bounded queue of alarm events.
    dropped
        Number of edges discarded so far.
    """

    max_queue: int = 500
    alarm_events_q: "Queue[AlarmEvent]" = field(init=False)
    dropped: int = field(default=0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.alarm_events_q = Queue(maxsize=self.max_queue)

    def publish_alarm(self, ev: AlarmEvent) -> None:
        """
        Publish an alarm event (non-blocking, drop-oldest when full).

        Parameters
        ----------
        ev
            AlarmEvent to publish.
        """
        # Producers serialise on the lock, so a slot freed here stays free.
        with self._lock:
            try:
                self.alarm_events_q.put_nowait(ev)
                return
            except Full:
                pass
            try:
                old = self.alarm_events_q.get_nowait()
            except Empty:
                old = None
            self.alarm_events_q.put_nowait(ev)
            self.dropped += 1
        logger.warning(
            "[BUS] alarm queue full, dropped oldest %s", old.transition.value if old is not None else "edge"
        )
