from .catalog import register_metrics
from .config import (
    AppConfig,
    ConfigError,
    NoConnection,
    SerialConnection,
    TCPConnection,
    load_config,
)
from .dispatcher import FrameDispatcher, PayloadDecodeError
from .ipc import FromRadio, IPCChannel, ToRadio, make_channels
from .metrics import MetricsRegistry, start_metrics_http_server
from .state import DeadmanTimer, DeviceIdentity, LinkState
from .supervisor import DeviceLinkLost, Supervisor, SupervisorState
from .transport import InMemoryDeviceLink, LinkError, open_link
from .worker import ConnectionWorker

__all__ = [
    "AppConfig",
    "ConfigError",
    "ConnectionWorker",
    "DeadmanTimer",
    "DeviceIdentity",
    "DeviceLinkLost",
    "FrameDispatcher",
    "FromRadio",
    "IPCChannel",
    "InMemoryDeviceLink",
    "LinkError",
    "LinkState",
    "MetricsRegistry",
    "NoConnection",
    "PayloadDecodeError",
    "SerialConnection",
    "Supervisor",
    "SupervisorState",
    "TCPConnection",
    "ToRadio",
    "load_config",
    "make_channels",
    "open_link",
    "register_metrics",
    "start_metrics_http_server",
]
