"""
Config-failover connection manager.

The manager owns one logical broker session and is modelled as an explicit
sequencer:

- ``_index``      config currently being tried / in use
- ``_attempt_id`` token identifying the live attempt; bumped on every new
                  attempt and on teardown
- ``_timeout``    per-attempt connect timer
- ``_backoff``    delay before advancing after a transport error

Every transport callback and timer carries the attempt id it was created for.
Anything that arrives for an older id (e.g. a connect success racing its own
timeout) is ignored, and its transport is closed.

Status Lifecycle
----------------
IDLE -> CONNECTING(i) -> CONNECTED
CONNECTING(i) --timeout--> CONNECTING(i+1)
CONNECTING(i)/CONNECTED --error--> DISCONNECTED --backoff--> CONNECTING(i+1)
CONNECTING(last) --timeout/error--> FAILED   (needs connect()/reconnect())
any --disconnect()--> DISCONNECTED
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from smartroom.core.timers import Scheduler, TimerHandle
from smartroom.domain.errors import ExhaustedConfigError, TransportError
from smartroom.domain.models import ConnectionConfig, SessionState, SessionStatus
from smartroom.transport.base import Payload, Transport, TransportCallbacks, TransportFactory

logger = logging.getLogger(__name__)

StatusListener = Callable[[SessionStatus], None]
MessageHandler = Callable[[str, bytes], None]


@dataclass(frozen=True)
class ConnectionPolicy:
    """
    Timing policy for failover.

    Parameters
    ----------
    connect_timeout_s
        Per-attempt bound on waiting for the broker to accept.
    error_backoff_s
        Delay before advancing to the next config after a transport error.
    open_failure_backoff_s
        Delay before advancing when an attempt cannot even be started.
    manual_reconnect_delay_s
        Delay between teardown and restart for :meth:`ConnectionManager.reconnect`.
    subscribe_qos
        QoS used for inbound subscriptions.
    """

    connect_timeout_s: float = 15.0
    error_backoff_s: float = 2.0
    open_failure_backoff_s: float = 1.0
    manual_reconnect_delay_s: float = 1.0
    subscribe_qos: int = 0


class ConnectionManager:
    """
    Owner of the broker session lifecycle.

    Responsibilities
    ----------------
    - Try the configs in order, one attempt at a time, each bounded by
      ``connect_timeout_s``.
    - Subscribe to the inbound topics when an attempt succeeds.
    - Forward inbound messages from the live transport only.
    - Report every status change to registered listeners.
    - Drop (never queue) publishes while not connected.

    Concurrency Model
    -----------------
    State is guarded by a re-entrant lock; transport callbacks and timer
    fires can arrive from any thread. Listeners are called while the lock is
    held and must not block (the runtime only posts them to a queue).
    Transports are closed after the lock is released so a transport whose
    network thread is waiting on the lock can always be joined.

    Parameters
    ----------
    configs
        Ordered connection descriptors; order is failover priority.
    transport_factory
        Builds a fresh transport for one attempt.
    scheduler
        Timer source for connect timeouts and backoffs.
    inbound_topics
        Topics subscribed on every successful connect.
    on_message
        Receives ``(topic, payload)`` from the live transport.
    policy
        Timeouts and backoffs.
    """

    def __init__(
        self,
        configs: Sequence[ConnectionConfig],
        transport_factory: TransportFactory,
        scheduler: Scheduler,
        inbound_topics: Sequence[str],
        on_message: Optional[MessageHandler] = None,
        policy: Optional[ConnectionPolicy] = None,
    ):
        if not configs:
            raise ValueError("At least one connection config is required")
        self._configs = tuple(configs)
        self._factory = transport_factory
        self._scheduler = scheduler
        self._topics = tuple(inbound_topics)
        self._on_message = on_message
        self._policy = policy or ConnectionPolicy()

        self._lock = threading.RLock()
        self._status = SessionStatus()
        self._index = 0
        self._attempt_id = 0
        self._transport: Optional[Transport] = None
        self._timeout: Optional[TimerHandle] = None
        self._backoff: Optional[TimerHandle] = None
        self._to_close: List[Transport] = []
        self._listeners: List[StatusListener] = []

        # Config indices in the order attempts were started (diagnostics/tests).
        self.attempts: List[int] = []

    # --- read API ---
    @property
    def status(self) -> SessionStatus:
        with self._lock:
            return self._status

    @property
    def configs(self) -> Sequence[ConnectionConfig]:
        return self._configs

    @property
    def current_config(self) -> Optional[ConnectionConfig]:
        with self._lock:
            if self._status.config_index is None:
                return None
            return self._configs[self._status.config_index]

    def add_status_listener(self, fn: StatusListener) -> None:
        with self._lock:
            self._listeners.append(fn)

    def set_message_handler(self, fn: MessageHandler) -> None:
        with self._lock:
            self._on_message = fn

    # --- commands ---
    def connect(self) -> None:
        """
        Start (or restart) the failover sequence from config 0.
        """
        with self._lock:
            self._teardown_locked()
            self._start_attempt_locked(0)
        self._flush_closes()

    def reconnect(self) -> None:
        """
        Manual reconnect: tear down, then restart from config 0 after
        ``manual_reconnect_delay_s``.
        """
        with self._lock:
            self._teardown_locked()
            self._set_status_locked(SessionStatus(SessionState.DISCONNECTED, None, "Reconnecting..."))
            aid = self._attempt_id
            delay = self._policy.manual_reconnect_delay_s
            if delay <= 0:
                self._start_attempt_locked(0)
            else:
                self._backoff = self._scheduler.call_later(
                    delay, lambda: self._on_backoff(aid, 0), name="mqtt-reconnect"
                )
        self._flush_closes()

    def disconnect(self) -> None:
        """
        Tear down any live transport and pending timers; status DISCONNECTED.

        Idempotent: repeated calls leave the status DISCONNECTED.
        """
        with self._lock:
            self._teardown_locked()
            if self._status.state is not SessionState.DISCONNECTED or self._status.text != "Disconnected":
                self._set_status_locked(SessionStatus(SessionState.DISCONNECTED, None, "Disconnected"))
        self._flush_closes()

    def shutdown(self) -> None:
        """Teardown used by the runtime on process exit."""
        self.disconnect()

    def publish(self, topic: str, payload: Payload, qos: int = 0, retain: bool = False) -> bool:
        """
        Publish a message if, and only if, the session is connected.

        Returns
        -------
        bool
            True if handed to the transport, False if dropped.
        """
        with self._lock:
            if self._status.state is not SessionState.CONNECTED or self._transport is None:
                logger.debug("[MQTT] drop publish %s=%r (status=%s)", topic, payload, self._status.state)
                return False
            transport = self._transport
            try:
                transport.publish(topic, payload, qos=qos, retain=retain)
            except Exception as e:
                logger.warning("[MQTT] publish %s failed: %r", topic, e)
                return False
        return True

    # --- attempt sequencing (lock held) ---
    def _start_attempt_locked(self, index: int) -> None:
        if index >= len(self._configs):
            err = ExhaustedConfigError(len(self._configs))
            logger.error("[MQTT] %s", err)
            self._set_status_locked(SessionStatus(SessionState.FAILED, None, "Failed - All configs tried"))
            return

        cfg = self._configs[index]
        self._attempt_id += 1
        aid = self._attempt_id
        self._index = index
        self.attempts.append(index)
        self._set_status_locked(SessionStatus(SessionState.CONNECTING, index, f"Trying {cfg.name}..."))
        logger.info("[MQTT] attempt %d: %s (%s)", index, cfg.name, cfg.url)

        callbacks = TransportCallbacks(
            on_connected=lambda: self._on_connected(aid),
            on_error=lambda e: self._on_error(aid, e),
            on_closed=lambda: self._on_error(aid, TransportError("Connection closed", cfg.name)),
            on_message=lambda topic, payload: self._on_inbound(aid, topic, payload),
        )

        try:
            transport = self._factory(cfg, callbacks)
            self._transport = transport
            transport.open()
        except Exception as e:
            logger.warning("[MQTT] cannot start %s: %r", cfg.name, e)
            self._detach_transport_locked()
            self._set_status_locked(SessionStatus(SessionState.DISCONNECTED, None, f"Error: {e}"))
            self._backoff = self._scheduler.call_later(
                self._policy.open_failure_backoff_s,
                lambda: self._on_backoff(aid, index + 1),
                name="mqtt-backoff",
            )
            return

        self._timeout = self._scheduler.call_later(
            self._policy.connect_timeout_s, lambda: self._on_timeout(aid), name="mqtt-connect-timeout"
        )

    def _teardown_locked(self) -> None:
        self._attempt_id += 1
        self._cancel_timers_locked()
        self._detach_transport_locked()

    def _cancel_timers_locked(self) -> None:
        for handle in (self._timeout, self._backoff):
            if handle is not None:
                handle.cancel()
        self._timeout = None
        self._backoff = None

    def _detach_transport_locked(self) -> None:
        if self._transport is not None:
            self._to_close.append(self._transport)
            self._transport = None

    def _set_status_locked(self, status: SessionStatus) -> None:
        self._status = status
        for fn in list(self._listeners):
            try:
                fn(status)
            except Exception:
                logger.exception("[MQTT] status listener failed")

    def _flush_closes(self) -> None:
        with self._lock:
            pending, self._to_close = self._to_close, []
        for transport in pending:
            try:
                transport.close()
            except Exception as e:
                logger.debug("[MQTT] close failed: %r", e)

    # --- callbacks (any thread) ---
    def _on_connected(self, aid: int) -> None:
        with self._lock:
            if aid != self._attempt_id or self._status.state is not SessionState.CONNECTING:
                logger.info("[MQTT] ignoring late connect for attempt %d", aid)
                return
            if self._timeout is not None:
                self._timeout.cancel()
                self._timeout = None
            cfg = self._configs[self._index]
            transport = self._transport
            if transport is None:
                return
            try:
                transport.subscribe(self._topics, qos=self._policy.subscribe_qos)
            except Exception as e:
                self._fail_attempt_locked(TransportError(f"Subscribe failed: {e}", cfg.name))
            else:
                logger.info("[MQTT] connected with %s", cfg.name)
                self._set_status_locked(SessionStatus(SessionState.CONNECTED, self._index, "Connected"))
        self._flush_closes()

    def _on_timeout(self, aid: int) -> None:
        with self._lock:
            if aid != self._attempt_id or self._status.state is not SessionState.CONNECTING:
                return
            self._timeout = None
            logger.warning("[MQTT] %s timed out", self._configs[self._index].name)
            self._detach_transport_locked()
            self._start_attempt_locked(self._index + 1)
        self._flush_closes()

    def _on_error(self, aid: int, error: Exception) -> None:
        with self._lock:
            if aid != self._attempt_id or self._status.state not in (
                SessionState.CONNECTING,
                SessionState.CONNECTED,
            ):
                return
            self._fail_attempt_locked(error)
        self._flush_closes()

    def _fail_attempt_locked(self, error: Exception) -> None:
        index = self._index
        aid = self._attempt_id
        logger.warning("[MQTT] transport error with %s: %s", self._configs[index].name, error)
        self._cancel_timers_locked()
        self._detach_transport_locked()
        self._set_status_locked(SessionStatus(SessionState.DISCONNECTED, None, f"Error: {error}"))
        self._backoff = self._scheduler.call_later(
            self._policy.error_backoff_s, lambda: self._on_backoff(aid, index + 1), name="mqtt-backoff"
        )

    def _on_backoff(self, aid: int, next_index: int) -> None:
        with self._lock:
            if aid != self._attempt_id:
                return
            self._backoff = None
            self._start_attempt_locked(next_index)
        self._flush_closes()

    def _on_inbound(self, aid: int, topic: str, payload: bytes) -> None:
        with self._lock:
            if aid != self._attempt_id or self._status.state is not SessionState.CONNECTED:
                return
            handler = self._on_message
        if handler is not None:
            handler(topic, payload)
