from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from smartroom.core.thresholds import validate_threshold
from smartroom.domain.events import AlarmTransition
from smartroom.domain.models import (
    DEFAULT_GAS_THRESHOLD,
    DEFAULT_TEMP_THRESHOLD,
    ConnectionConfig,
)
from smartroom.transport import topics as T
from smartroom.transport.topics import TopicMap

DEFAULT_CONNECTIONS: Tuple[ConnectionConfig, ...] = (
    ConnectionConfig("WSS Port 8884 with /mqtt path", T.BROKER_HOST, 8884, "wss", "/mqtt", True),
    ConnectionConfig("WSS Port 8884 root path", T.BROKER_HOST, 8884, "wss", "/", True),
    ConnectionConfig("WS Port 8000 (fallback)", T.BROKER_HOST, 8000, "ws", "/mqtt", False),
)


@dataclass(frozen=True)
class BrokerConfig:
    """Broker identity, failover list and failover timing."""
    username: Optional[str] = None
    password: Optional[str] = None
    client_id_prefix: str = "smartroom"
    keepalive_s: int = 60
    connect_timeout_s: float = 15.0
    error_backoff_s: float = 2.0
    open_failure_backoff_s: float = 1.0
    manual_reconnect_delay_s: float = 1.0
    retry_interval_s: Optional[float] = None
    connections: Tuple[ConnectionConfig, ...] = DEFAULT_CONNECTIONS


@dataclass(frozen=True)
class ThresholdConfig:
    """Initial committed thresholds."""
    temp_threshold: float = DEFAULT_TEMP_THRESHOLD
    gas_threshold: float = DEFAULT_GAS_THRESHOLD


@dataclass(frozen=True)
class TimerConfig:
    """Door countdown and motion pulse timing."""
    door_close_s: int = 2
    tick_s: float = 1.0
    motion_clear_s: float = 5.0


@dataclass(frozen=True)
class SimulationConfig:
    """Offline random walk settings."""
    enabled: bool = True
    interval_s: float = 2.0
    seed: Optional[int] = None


@dataclass(frozen=True)
class WebhookConfigData:
    """Webhook notifier configuration (endpoint, auth and which alarm edges to send)."""
    url: str
    auth_header: Optional[str] = None
    timeout_s: float = 3.0
    verify_tls: bool = True
    notify_on: Tuple[AlarmTransition, ...] = (AlarmTransition.RAISED, AlarmTransition.CLEARED)
    cooldown_s: float = 0.0


@dataclass(frozen=True)
class AppConfig:
    """
    Root application configuration loaded from YAML.

    Every section is optional; a missing section uses the defaults above, so
    an empty file yields a working configuration against the public broker.
    """
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    topics: TopicMap = field(default_factory=TopicMap)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    timers: TimerConfig = field(default_factory=TimerConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    webhook: Optional[WebhookConfigData] = None
    log_level: str = "INFO"


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a YAML mapping at the root")
    return data


def _resolve_default_config_path() -> Path:
    """
    Resolve config.yaml location.

    Priority:
    1) SMARTROOM_CONFIG env var if provided
    2) config.yaml next to the executable
    3) ./config.yaml in current working directory
    """
    import os
    import sys

    env = os.getenv("SMARTROOM_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    exe_dir = Path(sys.executable).resolve().parent
    candidate = exe_dir / "config.yaml"
    if candidate.exists():
        return candidate

    return Path("config.yaml").resolve()


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be a mapping")
    return value


def _parse_connections(items: List[Dict[str, Any]], default_host: str) -> Tuple[ConnectionConfig, ...]:
    configs: List[ConnectionConfig] = []
    for item in items:
        scheme = str(item.get("scheme", "wss"))
        configs.append(
            ConnectionConfig(
                name=str(item.get("name") or f"{scheme.upper()} Port {item['port']}"),
                host=str(item.get("host", default_host)),
                port=int(item["port"]),
                scheme=scheme,
                path=str(item.get("path", "/mqtt")),
                accept_invalid_certificates=bool(item.get("accept_invalid_certificates", False)),
            )
        )
    if not configs:
        raise ValueError("broker.connections must list at least one connection")
    return tuple(configs)


def _parse_transitions(items: Any) -> Tuple[AlarmTransition, ...]:
    if items is None:
        return (AlarmTransition.RAISED, AlarmTransition.CLEARED)
    if isinstance(items, str):
        items = [items]
    out: List[AlarmTransition] = []
    for item in items:
        try:
            t = AlarmTransition(str(item).upper())
        except ValueError:
            raise ValueError(f"webhook.notify_on: unknown alarm transition {item!r}") from None
        if t not in out:
            out.append(t)
    if not out:
        raise ValueError("webhook.notify_on must name at least one transition")
    return tuple(out)


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Load application configuration from YAML and convert into typed config objects.

    Parameters
    ----------
    path
        Explicit path to config.yaml. If None, uses default resolution.

    Returns
    -------
    AppConfig
        Parsed and validated configuration.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If required fields are missing or invalid.
    ValidationError
        If a configured threshold is outside its valid range.
    """
    cfg_path = Path(path).expanduser().resolve() if path else _resolve_default_config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    raw = _read_yaml(cfg_path)

    # ---- broker ----
    b = _section(raw, "broker")
    host = str(b.get("host", T.BROKER_HOST))
    retry = b.get("retry_interval_s")
    conn_items = b.get("connections")
    if conn_items is None:
        connections = tuple(
            ConnectionConfig(c.name, host, c.port, c.scheme, c.path, c.accept_invalid_certificates)
            for c in DEFAULT_CONNECTIONS
        )
    else:
        connections = _parse_connections(list(conn_items), host)

    broker = BrokerConfig(
        username=b.get("username"),
        password=b.get("password"),
        client_id_prefix=str(b.get("client_id_prefix", "smartroom")),
        keepalive_s=int(b.get("keepalive_s", 60)),
        connect_timeout_s=float(b.get("connect_timeout_s", 15.0)),
        error_backoff_s=float(b.get("error_backoff_s", 2.0)),
        open_failure_backoff_s=float(b.get("open_failure_backoff_s", 1.0)),
        manual_reconnect_delay_s=float(b.get("manual_reconnect_delay_s", 1.0)),
        retry_interval_s=float(retry) if retry is not None else None,
        connections=connections,
    )

    # ---- topics ----
    t = _section(raw, "topics")
    defaults = TopicMap()
    topic_map = TopicMap(**{f.name: str(t.get(f.name, getattr(defaults, f.name))) for f in fields(TopicMap)})

    # ---- thresholds ----
    th = _section(raw, "thresholds")
    thresholds = ThresholdConfig(
        temp_threshold=validate_threshold("temp_threshold", th.get("temp_threshold", DEFAULT_TEMP_THRESHOLD)),
        gas_threshold=validate_threshold("gas_threshold", th.get("gas_threshold", DEFAULT_GAS_THRESHOLD)),
    )

    # ---- timers ----
    tm = _section(raw, "timers")
    timers = TimerConfig(
        door_close_s=int(tm.get("door_close_s", 2)),
        tick_s=float(tm.get("tick_s", 1.0)),
        motion_clear_s=float(tm.get("motion_clear_s", 5.0)),
    )
    if timers.door_close_s < 1:
        raise ValueError("timers.door_close_s must be >= 1")

    # ---- simulation ----
    s = _section(raw, "simulation")
    seed = s.get("seed")
    simulation = SimulationConfig(
        enabled=bool(s.get("enabled", True)),
        interval_s=float(s.get("interval_s", 2.0)),
        seed=int(seed) if seed is not None else None,
    )

    # ---- webhook ----
    w = _section(raw, "webhook")
    webhook = None
    if w.get("url"):
        webhook = WebhookConfigData(
            url=str(w["url"]),
            auth_header=w.get("auth_header"),
            timeout_s=float(w.get("timeout_s", 3.0)),
            verify_tls=bool(w.get("verify_tls", True)),
            notify_on=_parse_transitions(w.get("notify_on")),
            cooldown_s=float(w.get("cooldown_s", 0.0)),
        )

    # ---- logging ----
    lg = _section(raw, "logging")
    log_level = str(lg.get("level", "INFO")).upper()

    return AppConfig(
        broker=broker,
        topics=topic_map,
        thresholds=thresholds,
        timers=timers,
        simulation=simulation,
        webhook=webhook,
        log_level=log_level,
    )
