from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from smartroom.core.config.yaml_config import AppConfig, load_app_config
from smartroom.core.state_store import StateStore
from smartroom.core.timers import Scheduler, ThreadingScheduler
from smartroom.domain.models import SensorState

from smartroom.notification.notification_thread import NotificationThreadConfig, NotificationWorkerThread
from smartroom.notification.webhook_notifier import WebhookConfig, WebhookNotifier

from smartroom.runtime.app_runtime import AppRuntime, AppRuntimeConfig
from smartroom.runtime.event_bus import EventBus
from smartroom.services.command_dispatcher import CommandDispatcher
from smartroom.services.controller import SessionController, SessionTimings
from smartroom.services.simulation import SimulatedReadings
from smartroom.transport.base import TransportFactory
from smartroom.transport.connection_manager import ConnectionManager, ConnectionPolicy
from smartroom.transport.mqtt_transport import BrokerCredentials, mqtt_transport_factory


@dataclass(frozen=True)
class AppWiring:
    """Everything a front end needs to run the system."""
    config: AppConfig
    store: StateStore
    manager: ConnectionManager
    controller: SessionController
    notifier: Optional[NotificationWorkerThread]
    runtime: AppRuntime
    bus: Optional[EventBus] = None


def build_notifier(cfg: AppConfig) -> Optional[NotificationWorkerThread]:
    if cfg.webhook is None:
        return None

    auth_header = cfg.webhook.auth_header
    if auth_header and not auth_header.startswith("Bearer "):
        auth_header = f"Bearer {auth_header}"

    return NotificationWorkerThread(
        notifiers=[
            WebhookNotifier(
                WebhookConfig(
                    url=cfg.webhook.url,
                    auth_header=auth_header,
                    timeout_s=cfg.webhook.timeout_s,
                    verify_tls=cfg.webhook.verify_tls,
                )
            )
        ],
        cfg=NotificationThreadConfig(
            notify_on=frozenset(cfg.webhook.notify_on),
            cooldown_s=cfg.webhook.cooldown_s,
        ),
    )


def build_connection_manager(
    cfg: AppConfig,
    scheduler: Scheduler,
    transport_factory: Optional[TransportFactory] = None,
) -> ConnectionManager:
    b = cfg.broker
    factory = transport_factory or mqtt_transport_factory(
        BrokerCredentials(
            username=b.username,
            password=b.password,
            client_id_prefix=b.client_id_prefix,
            keepalive_s=b.keepalive_s,
        )
    )
    return ConnectionManager(
        configs=b.connections,
        transport_factory=factory,
        scheduler=scheduler,
        inbound_topics=cfg.topics.inbound,
        policy=ConnectionPolicy(
            connect_timeout_s=b.connect_timeout_s,
            error_backoff_s=b.error_backoff_s,
            open_failure_backoff_s=b.open_failure_backoff_s,
            manual_reconnect_delay_s=b.manual_reconnect_delay_s,
        ),
    )


def build_app_system(
    config_path: Optional[str] = None,
    cfg: Optional[AppConfig] = None,
    scheduler: Optional[Scheduler] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> AppWiring:
    cfg = cfg or load_app_config(config_path)
    scheduler = scheduler or ThreadingScheduler()

    # --- STATE ---
    store = StateStore(
        initial=SensorState(
            temp_threshold=cfg.thresholds.temp_threshold,
            gas_threshold=cfg.thresholds.gas_threshold,
        )
    )

    # --- NOTIFICATIONS ---
    notifier = build_notifier(cfg)
    if notifier is not None:
        notifier.start()

    # --- EVENT BUS ---
    # Alarm edges only need a queue when a notifier drains it.
    bus = EventBus() if notifier is not None else None

    # --- SESSION ---
    manager = build_connection_manager(cfg, scheduler, transport_factory)
    dispatcher = CommandDispatcher(publisher=manager, topics=cfg.topics)
    simulation = SimulatedReadings(seed=cfg.simulation.seed) if cfg.simulation.enabled else None

    controller = SessionController(
        store=store,
        dispatcher=dispatcher,
        manager=manager,
        scheduler=scheduler,
        topics=cfg.topics,
        timings=SessionTimings(
            door_close_ticks=cfg.timers.door_close_s,
            tick_s=cfg.timers.tick_s,
            motion_clear_s=cfg.timers.motion_clear_s,
            simulation_interval_s=cfg.simulation.interval_s,
        ),
        simulation=simulation,
        bus=bus,
    )

    # --- RUNTIME ---
    runtime = AppRuntime(
        cfg=AppRuntimeConfig(retry_interval_s=cfg.broker.retry_interval_s),
        controller=controller,
        manager=manager,
        scheduler=scheduler,
        bus=bus,
        store=store,
        notifier=notifier,
    )

    return AppWiring(
        config=cfg,
        store=store,
        manager=manager,
        controller=controller,
        notifier=notifier,
        runtime=runtime,
        bus=bus,
    )
