from __future__ import annotations

import enum
import threading
import time
from typing import Callable

from .catalog import device_id_label


class LinkState(enum.Enum):
    CONNECTING = "connecting"
    UP = "up"
    DOWN = "down"


class DeviceIdentity:
    """Node number of the radio we are attached to, learned from ``my_info``."""

    def __init__(self, node_id: int = 0) -> None:
        self._node_id = node_id
        self._lock = threading.Lock()

    @property
    def node_id(self) -> int:
        with self._lock:
            return self._node_id

    @node_id.setter
    def node_id(self, value: int) -> None:
        with self._lock:
            self._node_id = int(value)

    def label(self) -> str:
        return device_id_label(self.node_id)


class DeadmanTimer:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_seen = clock()

    def reset(self) -> None:
        now = self._clock()
        with self._lock:
            self._last_seen = now

    @property
    def last_seen(self) -> float:
        with self._lock:
            return self._last_seen

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self.last_seen)

    def expired(self, timeout: float) -> bool:
        return self.elapsed() > timeout
