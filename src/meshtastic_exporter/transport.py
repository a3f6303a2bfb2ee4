from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Protocol

from google.protobuf.message import DecodeError
from meshtastic.protobuf import mesh_pb2
from meshtastic.serial_interface import SerialInterface
from meshtastic.tcp_interface import TCPInterface
from pubsub import pub

from .config import Connection, SerialConnection, TCPConnection

LOGGER = logging.getLogger(__name__)

CONNECTION_LOST_TOPIC = "meshtastic.connection.lost"


class LinkError(RuntimeError):
    """The device link could not be opened, written to, or was lost."""


class DeviceLink(Protocol):
    def poll(self) -> Optional[mesh_pb2.FromRadio]: ...

    def send(self, envelope: mesh_pb2.ToRadio) -> None: ...

    def check(self) -> None: ...

    def close(self) -> None: ...


LinkFactory = Callable[[Connection], DeviceLink]


class InMemoryDeviceLink:
    """Device link emulator used for tests and dry runs."""

    def __init__(self) -> None:
        self._inbound: Deque[mesh_pb2.FromRadio] = deque()
        self.sent: List[mesh_pb2.ToRadio] = []
        self.closed = False
        self._failure: Optional[BaseException] = None
        self._write_failure: Optional[BaseException] = None
        self._lock = threading.Lock()

    def inject(self, envelope: mesh_pb2.FromRadio) -> None:
        with self._lock:
            self._inbound.append(envelope)

    def fail(self, error: BaseException) -> None:
        """Make the next ``poll``/``check`` raise ``error``."""
        with self._lock:
            self._failure = error

    def fail_writes(self, error: BaseException) -> None:
        with self._lock:
            self._write_failure = error

    def poll(self) -> Optional[mesh_pb2.FromRadio]:
        with self._lock:
            if self._failure is not None:
                raise self._failure
            if self._inbound:
                return self._inbound.popleft()
        return None

    def send(self, envelope: mesh_pb2.ToRadio) -> None:
        with self._lock:
            if self._write_failure is not None:
                raise LinkError(f"write failed: {self._write_failure}") from self._write_failure
            self.sent.append(envelope)

    def check(self) -> None:
        with self._lock:
            if self._failure is not None:
                raise self._failure

    def close(self) -> None:
        self.closed = True


class _FromRadioTap:
    """Copies every FromRadio frame the interface reads into an inbox queue.

    The meshtastic reader thread starts inside the interface constructor, so the
    inbox must be attached before ``super().__init__`` runs.
    """

    def __init__(self, *args: Any, inbox: "queue.Queue[mesh_pb2.FromRadio]", **kwargs: Any) -> None:
        self._exporter_inbox = inbox
        super().__init__(*args, **kwargs)  # type: ignore[call-arg]

    def _handleFromRadio(self, fromRadioBytes: bytes) -> None:  # noqa: N802,N803
        envelope = mesh_pb2.FromRadio()
        try:
            envelope.ParseFromString(bytes(fromRadioBytes))
        except DecodeError as exc:
            LOGGER.warning("[RADIO] Dropping undecodable FromRadio frame: %s", exc)
        else:
            self._exporter_inbox.put(envelope)
        super()._handleFromRadio(fromRadioBytes)  # type: ignore[misc]


class _TappedTCPInterface(_FromRadioTap, TCPInterface):
    pass


class _TappedSerialInterface(_FromRadioTap, SerialInterface):
    pass


class MeshtasticDeviceLink:
    """DeviceLink backed by a meshtastic-python stream interface."""

    def __init__(self, interface_factory: Callable[["queue.Queue[mesh_pb2.FromRadio]"], Any]) -> None:
        self._inbox: "queue.Queue[mesh_pb2.FromRadio]" = queue.Queue()
        self._lost = threading.Event()
        self._interface: Any = None
        pub.subscribe(self._on_connection_lost, CONNECTION_LOST_TOPIC)
        try:
            # Blocks until the device finished its config dump
            self._interface = interface_factory(self._inbox)
        except Exception as exc:
            pub.unsubscribe(self._on_connection_lost, CONNECTION_LOST_TOPIC)
            raise LinkError(f"Unable to connect to meshtastic device: {exc}") from exc

    def _on_connection_lost(self, interface: Any) -> None:
        if self._interface is None or interface is self._interface:
            LOGGER.warning("[RADIO] Meshtastic interface reported connection lost")
            self._lost.set()

    def poll(self) -> Optional[mesh_pb2.FromRadio]:
        try:
            return self._inbox.get_nowait()
        except queue.Empty:
            return None

    def send(self, envelope: mesh_pb2.ToRadio) -> None:
        try:
            self._interface._sendToRadio(envelope)
        except Exception as exc:
            raise LinkError(f"Failed to write ToRadio message: {exc}") from exc

    def check(self) -> None:
        if self._lost.is_set():
            raise LinkError("Connection to meshtastic device lost")

    def close(self) -> None:
        pub.unsubscribe(self._on_connection_lost, CONNECTION_LOST_TOPIC)
        if self._interface is None:
            return
        try:
            self._interface.close()
            LOGGER.info("[RADIO] Closed meshtastic interface")
        except Exception as e:
            LOGGER.warning("[RADIO] Error closing interface: %s", e)


def open_link(connection: Connection) -> DeviceLink:
    if isinstance(connection, TCPConnection):
        LOGGER.info("[RADIO] Connecting to %s:%s over TCP", connection.host, connection.port)
        return MeshtasticDeviceLink(
            lambda inbox: _TappedTCPInterface(
                connection.host, portNumber=connection.port, inbox=inbox
            )
        )
    if isinstance(connection, SerialConnection):
        LOGGER.info("[RADIO] Opening serial device %s", connection.path)
        return MeshtasticDeviceLink(
            lambda inbox: _TappedSerialInterface(devPath=connection.path, inbox=inbox)
        )
    raise LinkError("Neither tcp nor serial selected for connection.")
