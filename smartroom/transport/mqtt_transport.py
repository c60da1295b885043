from __future__ import annotations

import logging
import secrets
import ssl
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import paho.mqtt.client as mqtt

from smartroom.domain.errors import TransportError
from smartroom.domain.models import ConnectionConfig
from smartroom.transport.base import Payload, TransportCallbacks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokerCredentials:
    """
    Broker login and client identity settings.

    Parameters
    ----------
    username, password
        Broker credentials; ``None`` connects anonymously.
    client_id_prefix
        Prefix of the generated client id. A timestamp and random suffix are
        appended so parallel dashboards never kick each other off.
    keepalive_s
        MQTT keepalive interval.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    client_id_prefix: str = "smartroom"
    keepalive_s: int = 60

    def new_client_id(self) -> str:
        return f"{self.client_id_prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _tls_context(accept_invalid: bool) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if accept_invalid:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


class MqttTransport:
    """
    paho-mqtt adapter implementing :class:`smartroom.transport.base.Transport`.

    One instance represents one connection attempt against one
    :class:`~smartroom.domain.models.ConnectionConfig`.

    Notes
    -----
    - Uses the paho v2 callback API and MQTT 3.1.1 with a clean session.
    - ``open()`` calls ``connect_async`` + ``loop_start`` so it never blocks;
      the outcome is reported through the callbacks.
    - paho's own reconnect loop is never relied upon: any error is reported
      and the connection manager closes this transport and moves on.

    Parameters
    ----------
    cfg
        Connection descriptor (scheme, host, port, path, TLS policy).
    callbacks
        Attempt callbacks supplied by the connection manager.
    credentials
        Login and keepalive settings.
    """

    def __init__(self, cfg: ConnectionConfig, callbacks: TransportCallbacks, credentials: BrokerCredentials):
        self._cfg = cfg
        self._cb = callbacks
        self._creds = credentials
        self._closing = False
        self._client: Optional[mqtt.Client] = None

    def _build_client(self) -> mqtt.Client:
        cfg = self._cfg
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._creds.new_client_id(),
            transport="websockets" if cfg.websockets else "tcp",
            protocol=mqtt.MQTTv311,
            clean_session=True,
        )
        client.enable_logger(logger)

        if self._creds.username:
            client.username_pw_set(self._creds.username, self._creds.password)
        if cfg.websockets:
            client.ws_set_options(path=cfg.path or "/")
        if cfg.secure:
            client.tls_set_context(_tls_context(cfg.accept_invalid_certificates))
            if cfg.accept_invalid_certificates:
                client.tls_insecure_set(True)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def open(self) -> None:
        try:
            client = self._build_client()
            client.connect_async(self._cfg.host, self._cfg.port, keepalive=self._creds.keepalive_s)
            self._client = client
            client.loop_start()
        except Exception as e:
            raise TransportError(f"Cannot start {self._cfg.url}: {e}", self._cfg.name) from e

    def subscribe(self, topics: Sequence[str], qos: int = 0) -> None:
        if self._client is None:
            raise TransportError("Not connected", self._cfg.name)
        self._client.subscribe([(t, qos) for t in topics])

    def publish(self, topic: str, payload: Payload, qos: int = 0, retain: bool = False) -> None:
        if self._client is None:
            raise TransportError("Not connected", self._cfg.name)
        self._client.publish(topic, payload, qos=qos, retain=retain)

    def close(self) -> None:
        """
        Disconnect and stop the network loop.

        Notes
        -----
        Close errors are swallowed because this is a teardown path.
        """
        self._closing = True
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.disconnect()
        except Exception:
            pass
        try:
            client.loop_stop()
        except Exception:
            pass

    # --- paho callbacks (network thread) ---
    def _on_connect(self, _client, _userdata, _flags, reason_code, _properties=None) -> None:
        if self._closing:
            return
        if reason_code.is_failure:
            self._cb.on_error(TransportError(f"Connect refused: {reason_code}", self._cfg.name))
        else:
            self._cb.on_connected()

    def _on_connect_fail(self, _client, _userdata) -> None:
        if self._closing:
            return
        self._cb.on_error(TransportError(f"Connection failed ({self._cfg.url})", self._cfg.name))

    def _on_disconnect(self, _client, _userdata, _flags, reason_code, _properties=None) -> None:
        if self._closing:
            return
        if reason_code.is_failure:
            self._cb.on_error(TransportError(f"Connection lost: {reason_code}", self._cfg.name))
        else:
            self._cb.on_closed()

    def _on_message(self, _client, _userdata, msg) -> None:
        if self._closing:
            return
        self._cb.on_message(msg.topic, msg.payload)


def mqtt_transport_factory(credentials: BrokerCredentials):
    """Return a transport factory bound to ``credentials``."""

    def factory(cfg: ConnectionConfig, callbacks: TransportCallbacks) -> MqttTransport:
        return MqttTransport(cfg, callbacks, credentials)

    return factory
