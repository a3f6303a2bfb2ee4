from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple, Union

if TYPE_CHECKING:  # pragma: no cover
    from meshtastic.protobuf import mesh_pb2

MPSC_BUFFER_SIZE = 128


class ChannelError(RuntimeError):
    """Raised when a message cannot be handed to the other side of a channel."""


class ChannelClosed(ChannelError):
    pass


class ChannelFull(ChannelError):
    pass


@dataclass
class FromRadio:
    envelope: "mesh_pb2.FromRadio"


@dataclass
class ToRadio:
    envelope: "mesh_pb2.ToRadio"


IPCMessage = Union[FromRadio, ToRadio]


class IPCChannel:
    """Bounded one-way FIFO between the connection worker and the supervisor.

    Neither side blocks: ``send`` fails fast when the channel is full or
    closed, and ``try_recv`` returns ``None`` when nothing is buffered.
    Messages buffered before ``close`` can still be received.
    """

    def __init__(self, name: str, capacity: int = MPSC_BUFFER_SIZE) -> None:
        self.name = name
        self.capacity = capacity
        self._queue: "queue.Queue[IPCMessage]" = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, message: IPCMessage) -> None:
        if self._closed.is_set():
            raise ChannelClosed(f"{self.name} channel is closed")
        try:
            self._queue.put_nowait(message)
        except queue.Full as exc:
            raise ChannelFull(
                f"{self.name} channel is full ({self.capacity} messages pending)"
            ) from exc

    def try_recv(self) -> Optional[IPCMessage]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()

    def depth(self) -> int:
        return self._queue.qsize()


def make_channels(capacity: int = MPSC_BUFFER_SIZE) -> Tuple[IPCChannel, IPCChannel]:
    """Return ``(from_radio, to_radio)`` channels."""
    return IPCChannel("from_radio", capacity), IPCChannel("to_radio", capacity)
