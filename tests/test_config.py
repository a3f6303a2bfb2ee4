"""Unit tests for config loading."""

import pytest

from meshtastic_exporter.config import (
    DEADMAN_TIMEOUT,
    AppConfig,
    ConfigError,
    NoConnection,
    SerialConnection,
    TCPConnection,
    config_from_dict,
    config_path_from_env,
    load_config,
    parse_socket_address,
)


def _write(tmp_path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_load_config_with_defaults(tmp_path) -> None:
    path = _write(
        tmp_path,
        "metrics_port: 9941\nmeshtastic_addr: \"192.168.1.50:4403\"\nnamespace: meshtastic\n",
    )

    config = load_config(path)

    assert config.metrics_port == 9941
    assert config.meshtastic_addr == ("192.168.1.50", 4403)
    assert config.namespace == "meshtastic"
    assert config.serial_port is None
    assert config.metrics_host == "0.0.0.0"
    assert config.deadman_timeout == DEADMAN_TIMEOUT
    assert config.source_path == path
    assert config.connection() == TCPConnection("192.168.1.50", 4403)


def test_load_config_optional_fields(tmp_path) -> None:
    path = _write(
        tmp_path,
        "\n".join(
            [
                "metrics_port: 9000",
                "meshtastic_addr: \"[::1]:4403\"",
                "namespace: lab",
                "serial_port: /dev/ttyUSB0",
                "heartbeat_interval: 5",
                "deadman_timeout: 60",
                "log_level: debug",
            ]
        ),
    )

    config = load_config(path)

    assert config.meshtastic_addr == ("::1", 4403)
    assert config.heartbeat_interval == 5.0
    assert config.deadman_timeout == 60.0
    assert config.log_level == "debug"
    assert config.connection() == SerialConnection("/dev/ttyUSB0")


def test_missing_required_field() -> None:
    with pytest.raises(ConfigError, match="namespace"):
        config_from_dict({"metrics_port": 9941, "meshtastic_addr": "localhost:4403"})


@pytest.mark.parametrize("port", ["abc", 70000, -1, True])
def test_invalid_metrics_port(port) -> None:
    with pytest.raises(ConfigError):
        config_from_dict({"metrics_port": port, "meshtastic_addr": "localhost:4403", "namespace": "x"})


@pytest.mark.parametrize("address", ["localhost", ":4403", "[::1]4403", "host:port"])
def test_invalid_socket_address(address: str) -> None:
    with pytest.raises(ConfigError):
        parse_socket_address(address)


def test_non_positive_deadman_timeout() -> None:
    with pytest.raises(ConfigError, match="deadman_timeout"):
        config_from_dict(
            {
                "metrics_port": 9941,
                "meshtastic_addr": "localhost:4403",
                "namespace": "x",
                "deadman_timeout": 0,
            }
        )


def test_unreadable_config_file(tmp_path) -> None:
    with pytest.raises(ConfigError, match="Can't read config file"):
        load_config(str(tmp_path / "missing.yaml"))


def test_malformed_yaml(tmp_path) -> None:
    path = _write(tmp_path, "metrics_port: [9941\n")

    with pytest.raises(ConfigError, match="Couldn't deserialize"):
        load_config(path)


def test_yaml_that_is_not_a_mapping(tmp_path) -> None:
    path = _write(tmp_path, "- just\n- a list\n")

    with pytest.raises(ConfigError):
        load_config(path)


def test_config_path_from_env(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("CONFIG_FILE_PATH", raising=False)
    assert config_path_from_env() == "./config.yaml"

    path = _write(tmp_path, "metrics_port: 1\nmeshtastic_addr: \"h:2\"\nnamespace: n\n")
    monkeypatch.setenv("CONFIG_FILE_PATH", path)
    assert config_path_from_env() == path
    assert load_config().metrics_port == 1


def test_connection_without_host_is_none() -> None:
    config = AppConfig(metrics_port=9941, meshtastic_addr=("", 4403), namespace="x")

    assert config.connection() == NoConnection()
