from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Union

from smartroom.domain.events import SessionEvent, StopLoop
from smartroom.services.controller import SessionController

logger = logging.getLogger(__name__)

LoopItem = Union[SessionEvent, StopLoop]


class SessionLoopThread:
    """
    Single owner thread for all session state.

    Responsibilities
    ----------------
    - Consume session events from a queue (inbound messages, timer fires,
      user commands, status changes).
    - Delegate each one to `SessionController.handle_event(...)`, which
      mutates the store, settles the alarm latch and dispatches commands.

    Concurrency Model
    -----------------
    - Producers (paho network thread, timer threads, UI) only call :meth:`post`.
    - The thread polls the queue with a timeout to remain responsive to stop signals.
    - Exceptions while handling one event are logged and the loop continues.

    Parameters
    ----------
    controller
        Session controller applying the events.
    stop_event
        Thread stop signal. When set, the loop exits.
    max_queue
        Queue bound; events posted to a full queue are dropped.
    """

    def __init__(self, controller: SessionController, stop_event: threading.Event, max_queue: int = 5000):
        self._controller = controller
        self._stop = stop_event
        self.events_q: "Queue[LoopItem]" = Queue(maxsize=max_queue)
        self._thread = threading.Thread(target=self._run, name="session-loop", daemon=True)

    def post(self, ev: SessionEvent) -> None:
        """
        Enqueue an event without blocking.

        Notes
        -----
        If the queue is full the newest event is dropped to protect the
        producers (the broker network thread must never block).
        """
        try:
            self.events_q.put_nowait(ev)
        except Full:
            logger.warning("[SESSION] event queue full, dropping %s", type(ev).__name__)

    def start(self) -> None:
        """
        Start the loop thread if it is not already running.
        """
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        """
        Signal the loop to stop and wake it up.
        """
        self._stop.set()
        try:
            self.events_q.put_nowait(StopLoop())
        except Full:
            pass

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ev = self.events_q.get(timeout=0.5)
            except Empty:
                continue

            if isinstance(ev, StopLoop):
                break

            try:
                self._controller.handle_event(ev)
            except Exception:
                logger.exception("[SESSION] handle_event failed for %s", type(ev).__name__)
