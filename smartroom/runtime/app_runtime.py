from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from smartroom.core.state_store import StateStore
from smartroom.core.timers import Scheduler, TimerHandle
from smartroom.domain.models import SessionState, SessionStatus
from smartroom.notification.notification_thread import NotificationWorkerThread
from smartroom.runtime.event_bus import EventBus
from smartroom.runtime.notification_adapter_thread import NotificationAdapterThread
from smartroom.runtime.session_loop_thread import SessionLoopThread
from smartroom.services.controller import SessionController
from smartroom.transport.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppRuntimeConfig:
    """
    Runtime configuration for thread orchestration.

    Parameters
    ----------
    retry_interval_s
        When the session ends FAILED, call ``reconnect()`` after this many
        seconds. None leaves a FAILED session alone until the operator
        reconnects.
    max_queue
        Bound of the session event queue.
    """

    retry_interval_s: Optional[float] = None
    max_queue: int = 5000


class AppRuntime:
    """
    Thread supervisor and composition root for the session runtime.

    This class owns:
    - a shared stop event
    - the session loop thread (single owner of all session state)
    - thread lifecycles (start/stop/join)
    - event bus integration (AlarmEvent -> notifications)
    - the periodic retry policy after a FAILED pass

    Thread Topology
    ---------------
    1) paho network thread (I/O, one per live transport)
       - reports connect/error/close to the ConnectionManager
       - inbound messages and status changes are only *posted* to the loop

    2) Scheduler timer threads
       - connect timeout, backoff, door tick, motion clear, simulation
       - session timers only *post* events to the loop

    3) SessionLoopThread (business logic)
       - consumes session events
       - invokes SessionController.handle_event()
       - controller updates StateStore, settles the alarm latch and
         publishes commands and AlarmEvents

    4) NotificationAdapterThread (adapter, optional)
       - consumes AlarmEvent from EventBus queue
       - wraps it in an AlarmNotification for the NotificationWorkerThread

    Notes
    -----
    - All threads are daemon threads; `stop()` + `join()` are still used for clean shutdown.
    - Backpressure policy: the loop queue and the EventBus drop when full so the
      network thread never blocks.
    """

    def __init__(
        self,
        cfg: AppRuntimeConfig,
        controller: SessionController,
        manager: ConnectionManager,
        scheduler: Scheduler,
        bus: Optional[EventBus],
        store: StateStore,
        notifier: Optional[NotificationWorkerThread] = None,
    ):
        """
        Parameters
        ----------
        cfg
            Runtime configuration (queue bound + retry policy).
        controller
            Session controller. Its event sink is pointed at the loop queue.
        manager
            Connection manager driving the broker session.
        scheduler
            Shared timer source; every pending timer is cancelled on stop.
        bus
            Alarm event bus between the session loop and notification delivery.
            None when nothing consumes alarm edges.
        store
            Thread-safe sensor state store.
        notifier
            Notification worker thread that performs outbound delivery (e.g., webhook).
        """
        self._cfg = cfg
        self._controller = controller
        self._manager = manager
        self._scheduler = scheduler
        self._bus = bus
        self._store = store
        self._notifier = notifier
        self._stop = threading.Event()
        self._retry: Optional[TimerHandle] = None
        self._retry_lock = threading.Lock()

        self._loop = SessionLoopThread(controller=controller, stop_event=self._stop, max_queue=cfg.max_queue)
        controller.set_post(self._loop.post)

        self._notify_adapter: Optional[NotificationAdapterThread] = None
        if notifier is not None and bus is not None:
            self._notify_adapter = NotificationAdapterThread(
                bus=bus,
                store=self._store,
                notifier=notifier,
                stop_event=self._stop,
                status_fn=lambda: self._manager.status,
            )

    @property
    def loop(self) -> SessionLoopThread:
        return self._loop

    def start(self) -> None:
        """
        Start all runtime threads and the first failover pass.

        Notes
        -----
        Started in a safe order:
        - loop first (so posted events are consumed)
        - notification adapter next (consumes alarm events)
        - controller timers, then the broker session
        """
        self._controller.attach()
        self._manager.add_status_listener(self._on_status)
        self._loop.start()
        if self._notify_adapter is not None:
            self._notify_adapter.start()
        self._controller.start()
        self._manager.connect()

    def stop(self) -> None:
        """
        Stop all runtime threads and wait briefly for shutdown.

        Notes
        -----
        - Stop is cooperative: threads check the stop event and exit.
        - Timers are cancelled first so nothing posts into a stopped loop.
        """
        self._controller.close()
        with self._retry_lock:
            if self._retry is not None:
                self._retry.cancel()
                self._retry = None
        self._manager.shutdown()
        self._scheduler.cancel_all()

        self._loop.stop()
        if self._notify_adapter is not None:
            self._notify_adapter.stop()

        self._loop.join(timeout=2.0)
        if self._notify_adapter is not None:
            self._notify_adapter.join(timeout=2.0)

    def _on_status(self, status: SessionStatus) -> None:
        if status.state is not SessionState.FAILED or self._cfg.retry_interval_s is None:
            return
        if self._stop.is_set():
            return
        with self._retry_lock:
            if self._retry is not None and self._retry.active:
                return
            logger.info("[SESSION] all configs failed, retrying in %ss", self._cfg.retry_interval_s)
            self._retry = self._scheduler.call_later(
                self._cfg.retry_interval_s, self._retry_now, name="session-retry"
            )

    def _retry_now(self) -> None:
        with self._retry_lock:
            self._retry = None
        if not self._stop.is_set():
            self._manager.reconnect()
