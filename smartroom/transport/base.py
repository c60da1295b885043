from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, Union

from smartroom.domain.models import ConnectionConfig

Payload = Union[bytes, str]


@dataclass(frozen=True)
class TransportCallbacks:
    """
    Callbacks a transport invokes for one connection attempt.

    Transports may call these from any thread (e.g. the paho network loop).

    Parameters
    ----------
    on_connected
        Broker accepted the connection.
    on_error
        Connect refused, socket failure or unexpected loss.
    on_closed
        Connection closed cleanly by the remote side.
    on_message
        Inbound message ``(topic, payload)``.
    """

    on_connected: Callable[[], None]
    on_error: Callable[[Exception], None]
    on_closed: Callable[[], None]
    on_message: Callable[[str, bytes], None]


class Transport(Protocol):
    """
    Protocol interface for one broker connection attempt.

    A transport is single-use: it is opened once and closed once. The
    connection manager builds a fresh transport for every attempt.

    Methods
    -------
    open()
        Start connecting without blocking. Raises ``TransportError`` if the
        attempt cannot even be started.
    subscribe(topics, qos)
        Subscribe to inbound topics once connected.
    publish(topic, payload, qos, retain)
        Fire-and-forget publish.
    close()
        Tear the connection down; must be idempotent.
    """

    def open(self) -> None:
        ...

    def subscribe(self, topics: Sequence[str], qos: int = 0) -> None:
        ...

    def publish(self, topic: str, payload: Payload, qos: int = 0, retain: bool = False) -> None:
        ...

    def close(self) -> None:
        ...


TransportFactory = Callable[[ConnectionConfig, TransportCallbacks], Transport]
