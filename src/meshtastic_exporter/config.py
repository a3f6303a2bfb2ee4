from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

import yaml

CONFIG_PATH_ENV = "CONFIG_FILE_PATH"
DEFAULT_CONFIG_PATH = "./config.yaml"
DEFAULT_MESHTASTIC_PORT = 4403

LOOP_PAUSE_SECONDS = 0.25
HEARTBEAT_INTERVAL = 30.0
DEADMAN_TIMEOUT = 600.0
IDLE_TIMEOUT = 10.0


class ConfigError(ValueError):
    """Configuration could not be read or is not valid."""


@dataclass(frozen=True)
class TCPConnection:
    host: str
    port: int = DEFAULT_MESHTASTIC_PORT


@dataclass(frozen=True)
class SerialConnection:
    path: str


@dataclass(frozen=True)
class NoConnection:
    pass


Connection = Union[TCPConnection, SerialConnection, NoConnection]


@dataclass
class AppConfig:
    metrics_port: int
    meshtastic_addr: Tuple[str, int]
    namespace: str
    serial_port: Optional[str] = None
    metrics_host: str = "0.0.0.0"
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    deadman_timeout: float = DEADMAN_TIMEOUT
    loop_pause: float = LOOP_PAUSE_SECONDS
    idle_timeout: float = IDLE_TIMEOUT
    log_level: Optional[str] = None
    # Where the values came from, for log lines only
    source_path: Optional[str] = field(default=None, repr=False, compare=False)

    def connection(self) -> Connection:
        if self.serial_port:
            return SerialConnection(self.serial_port)
        host, port = self.meshtastic_addr
        if not host:
            return NoConnection()
        return TCPConnection(host, port)


def config_path_from_env() -> str:
    return os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH


def parse_socket_address(value: str) -> Tuple[str, int]:
    """Parse ``host:port`` (or ``[v6addr]:port``) into a tuple."""
    text = str(value).strip()
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ConfigError(f"Invalid socket address {value!r}")
        port_text = rest[1:]
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep:
            raise ConfigError(f"Invalid socket address {value!r}: expected host:port")
    if not host:
        raise ConfigError(f"Invalid socket address {value!r}: missing host")
    return host, _parse_port(port_text, "meshtastic_addr")


def _parse_port(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer port, got {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer port, got {value!r}") from exc
    if not 0 <= port <= 65535:
        raise ConfigError(f"{name} must be between 0 and 65535, got {port}")
    return port


def _positive_float(raw: Dict[str, Any], name: str, default: float) -> float:
    value = raw.get(name, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{name} must be greater than zero, got {number}")
    return number


def config_from_dict(raw: Dict[str, Any], source_path: Optional[str] = None) -> AppConfig:
    missing = [key for key in ("metrics_port", "meshtastic_addr", "namespace") if key not in raw]
    if missing:
        raise ConfigError(f"Missing required config field(s): {', '.join(missing)}")

    namespace = raw["namespace"]
    if not isinstance(namespace, str):
        raise ConfigError(f"namespace must be a string, got {namespace!r}")

    serial_port = raw.get("serial_port")
    if serial_port is not None and not isinstance(serial_port, str):
        raise ConfigError(f"serial_port must be a string, got {serial_port!r}")

    log_level = raw.get("log_level")
    if log_level is not None:
        log_level = str(log_level)

    return AppConfig(
        metrics_port=_parse_port(raw["metrics_port"], "metrics_port"),
        meshtastic_addr=parse_socket_address(raw["meshtastic_addr"]),
        namespace=namespace,
        serial_port=serial_port or None,
        metrics_host=str(raw.get("metrics_host", "0.0.0.0")),
        heartbeat_interval=_positive_float(raw, "heartbeat_interval", HEARTBEAT_INTERVAL),
        deadman_timeout=_positive_float(raw, "deadman_timeout", DEADMAN_TIMEOUT),
        loop_pause=_positive_float(raw, "loop_pause", LOOP_PAUSE_SECONDS),
        idle_timeout=_positive_float(raw, "idle_timeout", IDLE_TIMEOUT),
        log_level=log_level,
        source_path=source_path,
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    config_path = os.path.expanduser(path or config_path_from_env())
    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(f"Can't read config file {config_path}: {exc}") from exc

    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Couldn't deserialize config file {config_path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {config_path} did not contain a mapping")
    return config_from_dict(loaded, source_path=config_path)
