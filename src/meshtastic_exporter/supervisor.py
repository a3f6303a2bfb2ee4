from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Dict, Optional

from meshtastic.protobuf import mesh_pb2

from .config import DEADMAN_TIMEOUT, HEARTBEAT_INTERVAL, LOOP_PAUSE_SECONDS
from .dispatcher import FrameDispatcher
from .ipc import ChannelError, FromRadio, IPCChannel, ToRadio
from .state import DeadmanTimer
from .worker import ConnectionWorker

LOGGER = logging.getLogger(__name__)


class SupervisorState(enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class DeviceLinkLost(RuntimeError):
    """The connection worker terminated; the device link is gone for good."""

    def __init__(self, message: str, cause: Optional[BaseException], established: bool) -> None:
        super().__init__(message)
        self.cause = cause
        self.established = established


def heartbeat_message() -> ToRadio:
    return ToRadio(mesh_pb2.ToRadio(heartbeat=mesh_pb2.Heartbeat()))


class Supervisor:
    """Main control loop of the exporter.

    Each tick drains at most one inbound frame, sends a heartbeat when one is
    due, checks the connection worker and the deadman timer, then sleeps.
    Heartbeat failures and deadman expiry end the loop cleanly; a terminated
    worker raises ``DeviceLinkLost``.
    """

    def __init__(
        self,
        worker: ConnectionWorker,
        from_radio: IPCChannel,
        to_radio: IPCChannel,
        dispatcher: FrameDispatcher,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        deadman_timeout: float = DEADMAN_TIMEOUT,
        loop_pause: float = LOOP_PAUSE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.worker = worker
        self._from_radio = from_radio
        self._to_radio = to_radio
        self._dispatcher = dispatcher
        self.heartbeat_interval = heartbeat_interval
        self.deadman_timeout = deadman_timeout
        self._loop_pause = loop_pause
        self._clock = clock
        self._sleep = sleep
        self.deadman = DeadmanTimer(clock)
        self._last_heartbeat = clock()
        self.state = SupervisorState.RUNNING
        self.frames_processed = 0

    def start(self) -> None:
        """Arm the deadman timer and heartbeat schedule."""
        self.deadman.reset()
        self._last_heartbeat = self._clock()

    def run(self) -> None:
        self.start()
        while self.state is SupervisorState.RUNNING:
            self.tick()
            if self.state is SupervisorState.RUNNING:
                self._sleep(self._loop_pause)
        LOGGER.info("[SUPERVISOR] Supervisor loop stopped")

    def tick(self) -> SupervisorState:
        self._drain_one()
        self._maybe_heartbeat()
        self._tend_worker()
        self._check_deadman()
        return self.state

    def _drain_one(self) -> None:
        message = self._from_radio.try_recv()
        if message is None:
            return
        self.deadman.reset()
        if not isinstance(message, FromRadio):
            LOGGER.warning(
                "[SUPERVISOR] Unexpected %s message on the inbound channel",
                type(message).__name__,
            )
            return
        self._dispatcher.dispatch(message.envelope)
        self.frames_processed += 1

    def _maybe_heartbeat(self) -> None:
        if self._clock() - self._last_heartbeat <= self.heartbeat_interval:
            return
        try:
            self._to_radio.send(heartbeat_message())
        except ChannelError as exc:
            LOGGER.error("[SUPERVISOR] Could not send heartbeat packet, exiting: %s", exc)
            self.state = SupervisorState.SHUTTING_DOWN
            return
        LOGGER.debug("[SUPERVISOR] Heartbeat queued")
        self._last_heartbeat = self._clock()

    def _tend_worker(self) -> None:
        if not self.worker.finished:
            return
        error = self.worker.error
        if error is None:
            LOGGER.error("[SUPERVISOR] Meshtastic connection worker exited gracefully; this shouldn't happen")
            message = "connection worker exited without an error"
        else:
            LOGGER.error("[SUPERVISOR] Exiting, meshtastic error: %s", error)
            message = f"connection worker failed: {error}"
        raise DeviceLinkLost(message, error, self.worker.established)

    def _check_deadman(self) -> None:
        if self.state is not SupervisorState.RUNNING:
            return
        elapsed = self.deadman.elapsed()
        if elapsed > self.deadman_timeout:
            LOGGER.error(
                "[SUPERVISOR] Deadman switch timer elapsed, we haven't received a packet in %.0f seconds; closing app",
                elapsed,
            )
            self.state = SupervisorState.SHUTTING_DOWN

    def status(self) -> Dict[str, object]:
        return {
            "supervisor_state": self.state.value,
            "link": self.worker.link_state().value,
            "frames_processed": self.frames_processed,
            "seconds_since_last_frame": round(self.deadman.elapsed(), 3),
            "from_radio_depth": self._from_radio.depth(),
            "to_radio_depth": self._to_radio.depth(),
        }
