from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .config import Connection, LOOP_PAUSE_SECONDS
from .ipc import FromRadio, IPCChannel, ToRadio
from .state import LinkState
from .transport import DeviceLink, LinkFactory, open_link

LOGGER = logging.getLogger(__name__)


class ConnectionWorker:
    """Owns the device link and shuttles envelopes between it and the channels.

    The worker connects once and then polls forever. It never reconnects: any
    I/O or channel failure ends the thread, and the outcome is left in
    ``error`` / ``established`` for the supervisor to act on.
    """

    def __init__(
        self,
        connection: Connection,
        to_supervisor: IPCChannel,
        from_supervisor: IPCChannel,
        link_factory: LinkFactory = open_link,
        loop_pause: float = LOOP_PAUSE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connection = connection
        self._to_supervisor = to_supervisor
        self._from_supervisor = from_supervisor
        self._link_factory = link_factory
        self._loop_pause = loop_pause
        self._sleep = sleep
        self._thread: Optional[threading.Thread] = None
        self._established = threading.Event()
        self._finished = threading.Event()
        self.error: Optional[BaseException] = None

    @property
    def established(self) -> bool:
        return self._established.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def link_state(self) -> LinkState:
        if self.finished:
            return LinkState.DOWN
        if self.established:
            return LinkState.UP
        return LinkState.CONNECTING

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Connection worker already started")
        self._thread = threading.Thread(
            target=self.run, daemon=True, name="meshtastic-connection"
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        link: Optional[DeviceLink] = None
        try:
            link = self._link_factory(self.connection)
            self._established.set()
            LOGGER.info("[WORKER] Connected to meshtastic node")
            self._loop(link)
        except Exception as exc:
            self.error = exc
            LOGGER.debug("[WORKER] Connection loop ended with error", exc_info=True)
        finally:
            # Set before teardown: a closed channel implies ``finished``
            self._finished.set()
            self._to_supervisor.close()
            self._from_supervisor.close()
            if link is not None:
                link.close()
            LOGGER.debug("[WORKER] Connection worker torn down")

    def _loop(self, link: DeviceLink) -> None:
        while True:
            envelope = link.poll()
            if envelope is not None:
                self._to_supervisor.send(FromRadio(envelope))

            inbound = self._from_supervisor.try_recv()
            if inbound is not None:
                if isinstance(inbound, ToRadio):
                    link.send(inbound.envelope)
                else:
                    LOGGER.warning(
                        "[WORKER] Unknown ipc message sent into comms thread: %s",
                        type(inbound).__name__,
                    )

            link.check()
            self._sleep(self._loop_pause)
