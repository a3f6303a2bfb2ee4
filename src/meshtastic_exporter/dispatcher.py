"""Turns decoded FromRadio envelopes into metric updates."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, TypeVar

import pygeohash
from google.protobuf.message import DecodeError, Message
from meshtastic.protobuf import config_pb2, mesh_pb2, portnums_pb2, telemetry_pb2

from . import catalog
from .catalog import device_id_label
from .metrics import MetricsRegistry
from .state import DeviceIdentity

LOGGER = logging.getLogger(__name__)

GPS_PRECISION_FACTOR = 1e-7
GEOHASH_PRECISION = 10

PortHandler = Callable[[str, mesh_pb2.Data], None]
M = TypeVar("M", bound=Message)

# Ports we know about but export nothing for
_SILENT_PORTS = frozenset({portnums_pb2.PortNum.NEIGHBORINFO_APP})


class PayloadDecodeError(ValueError):
    """A nested payload carried by a routed packet could not be decoded."""


def decode_payload(message_type: Callable[[], M], payload: bytes) -> M:
    message = message_type()
    try:
        message.ParseFromString(payload)
    except DecodeError as exc:
        raise PayloadDecodeError(
            f"could not decode {message.DESCRIPTOR.name} payload: {exc}"
        ) from exc
    return message


def _enum_name(enum_type, value: int) -> str:
    try:
        return enum_type.Name(value)
    except ValueError:
        return str(value)


def hardware_model_name(value: int) -> str:
    return _enum_name(mesh_pb2.HardwareModel, value)


def device_role_name(value: int) -> str:
    return _enum_name(config_pb2.Config.DeviceConfig.Role, value)


def port_name(value: int) -> str:
    return _enum_name(portnums_pb2.PortNum, value)


def packet_device_id(packet: mesh_pb2.MeshPacket) -> str:
    """Label for the node a routed packet came from.

    ``Data.source`` is set when the packet was relayed on behalf of another
    node; otherwise the outer ``from`` identifies the sender.
    """
    source = packet.decoded.source
    if source == 0:
        return device_id_label(getattr(packet, "from"))
    return device_id_label(source)


def heard_directly(packet: mesh_pb2.MeshPacket) -> bool:
    """Whether ``rx_rssi``/``rx_snr`` describe the link to the labelled node.

    Packets sent on behalf of another node, or rebroadcast by a relay, carry
    the signal quality of the last hop only. Firmware that predates
    ``hop_start`` leaves it at zero and is taken at face value.
    """
    if packet.decoded.source != 0:
        return False
    return packet.hop_start == 0 or packet.hop_start == packet.hop_limit


def position_geohash(latitude_i: int, longitude_i: int) -> str:
    latitude = latitude_i * GPS_PRECISION_FACTOR
    longitude = longitude_i * GPS_PRECISION_FACTOR
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise PayloadDecodeError(
            f"position out of range: latitude={latitude} longitude={longitude}"
        )
    return pygeohash.encode(latitude, longitude, precision=GEOHASH_PRECISION)


class FrameDispatcher:
    def __init__(
        self,
        registry: MetricsRegistry,
        identity: DeviceIdentity,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._metrics = registry
        self._identity = identity
        self._clock = clock
        self._port_handlers: Dict[int, PortHandler] = {
            portnums_pb2.PortNum.POSITION_APP: self._process_position_app,
            portnums_pb2.PortNum.NODEINFO_APP: self._process_nodeinfo_app,
            portnums_pb2.PortNum.TELEMETRY_APP: self._process_telemetry_app,
        }

    def _unix_now(self) -> float:
        return float(int(self._clock()))

    def dispatch(self, envelope: mesh_pb2.FromRadio) -> None:
        variant = envelope.WhichOneof("payload_variant")
        if variant == "packet":
            self.process_mesh_packet(envelope.packet)
        elif variant == "my_info":
            self.process_my_info(envelope.my_info)
        elif variant == "node_info":
            self.process_node_info(envelope.node_info)
        elif variant == "metadata":
            self.process_metadata(envelope.metadata)
        else:
            LOGGER.debug("[DISPATCH] Ignoring FromRadio payload %s", variant or "<empty>")

    def process_my_info(self, my_info: mesh_pb2.MyNodeInfo) -> None:
        LOGGER.info("[DISPATCH] Connected to node %s", device_id_label(my_info.my_node_num))
        self._identity.node_id = my_info.my_node_num

    def process_metadata(self, metadata: mesh_pb2.DeviceMetadata) -> None:
        device_id = self._identity.label()
        labels = {
            catalog.LABEL_DEVICE_ID: device_id,
            catalog.LABEL_FW_VERSION: metadata.firmware_version,
            catalog.LABEL_HW_MODEL: hardware_model_name(metadata.hw_model),
            catalog.LABEL_DEVICE_ROLE: device_role_name(metadata.role),
        }
        LOGGER.info("[DISPATCH] Received metadata update for %s", device_id)
        self._metrics.set_gauge(catalog.METRIC_DEVICE_INFO, self._unix_now(), labels=labels)

    def process_node_info(self, node_info: mesh_pb2.NodeInfo) -> None:
        device_id = device_id_label(node_info.num)
        labels = {catalog.LABEL_DEVICE_ID: device_id}
        LOGGER.info("[DISPATCH] Received cached NodeInfo for %s", device_id)
        self._metrics.set_gauge(catalog.METRIC_SNR, node_info.snr, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_HOPS_AWAY, node_info.hops_away, labels=labels)
        self._metrics.inc(catalog.METRIC_RX_MSG_COUNT, 1, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_LAST_HEARD_SECS, node_info.last_heard, labels=labels)
        if node_info.HasField("device_metrics"):
            self._set_device_metrics(node_info.device_metrics, labels)

    def process_mesh_packet(self, packet: mesh_pb2.MeshPacket) -> bool:
        """Update metrics for one routed packet.

        Returns True when the packet was consumed and counted. Encrypted
        packets and packets whose nested payload fails to decode are skipped
        without touching any series.
        """
        if packet.WhichOneof("payload_variant") != "decoded":
            return False
        content = packet.decoded
        device_id = packet_device_id(packet)

        handler = self._port_handlers.get(content.portnum)
        try:
            if handler is not None:
                handler(device_id, content)
            elif content.portnum not in _SILENT_PORTS:
                LOGGER.info(
                    "[DISPATCH] Received a payload type of %s but we don't consume its data.",
                    port_name(content.portnum),
                )
        except PayloadDecodeError as exc:
            LOGGER.warning(
                "[DISPATCH] Skipping %s packet from %s: %s",
                port_name(content.portnum),
                device_id,
                exc,
            )
            return False

        labels = {catalog.LABEL_DEVICE_ID: device_id}
        if heard_directly(packet):
            if packet.rx_rssi:
                self._metrics.set_gauge(catalog.METRIC_RSSI, packet.rx_rssi, labels=labels)
            if packet.rx_snr:
                self._metrics.set_gauge(catalog.METRIC_SNR, packet.rx_snr, labels=labels)
        self._metrics.inc(catalog.METRIC_RX_MSG_COUNT, 1, labels=labels)
        return True

    # Port handlers -----------------------------------------------------------
    def _process_position_app(self, device_id: str, content: mesh_pb2.Data) -> None:
        data = decode_payload(mesh_pb2.Position, content.payload)
        labels = {
            catalog.LABEL_DEVICE_ID: device_id,
            catalog.LABEL_GEOHASH: position_geohash(data.latitude_i, data.longitude_i),
        }
        LOGGER.info("[DISPATCH] Updating position data for %s", device_id)
        self._metrics.set_gauge(catalog.METRIC_POS_SATS_IN_VIEW, data.sats_in_view, labels=labels)

    def _process_nodeinfo_app(self, device_id: str, content: mesh_pb2.Data) -> None:
        data = decode_payload(mesh_pb2.User, content.payload)
        labels = {
            catalog.LABEL_DEVICE_ID: data.id,
            catalog.LABEL_HW_MODEL: hardware_model_name(data.hw_model),
            catalog.LABEL_DEVICE_ROLE: device_role_name(data.role),
            catalog.LABEL_LICENSED: "true" if data.is_licensed else "false",
            catalog.LABEL_SHORT_NAME: data.short_name,
            catalog.LABEL_LONG_NAME: data.long_name,
        }
        LOGGER.info("[DISPATCH] Received updated NodeInfo data for %s", data.id)
        self._metrics.set_gauge(catalog.METRIC_DEVICE_INFO, self._unix_now(), labels=labels)

    def _process_telemetry_app(self, device_id: str, content: mesh_pb2.Data) -> None:
        data = decode_payload(telemetry_pb2.Telemetry, content.payload)
        labels = {catalog.LABEL_DEVICE_ID: device_id}
        variant = data.WhichOneof("variant")
        if variant == "device_metrics":
            LOGGER.info("[DISPATCH] Processing DeviceMetrics telemetry for %s", device_id)
            self._set_device_metrics(data.device_metrics, labels)
        elif variant == "environment_metrics":
            LOGGER.info("[DISPATCH] Processing EnvironmentMetrics telemetry for %s", device_id)
            self._set_environment_metrics(data.environment_metrics, labels)
        elif variant == "air_quality_metrics":
            LOGGER.info("[DISPATCH] Processing AirQualityMetrics telemetry for %s", device_id)
            self._set_air_quality_metrics(data.air_quality_metrics, labels)
        elif variant == "power_metrics":
            LOGGER.info("[DISPATCH] Processing PowerMetrics telemetry for %s", device_id)
            self._set_power_metrics(data.power_metrics, labels)
        else:
            LOGGER.info(
                "[DISPATCH] Telemetry variant %s from %s is not exported",
                variant or "<empty>",
                device_id,
            )

    # Metric setters ----------------------------------------------------------
    def _set_device_metrics(
        self, dm: telemetry_pb2.DeviceMetrics, labels: Dict[str, str]
    ) -> None:
        self._metrics.set_gauge(catalog.METRIC_CHAN_UTIL, dm.channel_utilization, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_AIR_UTIL, dm.air_util_tx, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_BATTERY, dm.battery_level, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_VOLTAGE, dm.voltage, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_UPTIME, dm.uptime_seconds, labels=labels)

    def _set_environment_metrics(
        self, em: telemetry_pb2.EnvironmentMetrics, labels: Dict[str, str]
    ) -> None:
        self._metrics.set_gauge(catalog.METRIC_TEMPERATURE, em.temperature, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_HUMIDITY, em.relative_humidity, labels=labels)
        self._metrics.set_gauge(
            catalog.METRIC_BAROMETRIC_PRESSURE, em.barometric_pressure, labels=labels
        )
        self._metrics.set_gauge(catalog.METRIC_IAQ, em.iaq, labels=labels)
        self._metrics.set_gauge(catalog.METRIC_GAS_RESISTANCE, em.gas_resistance, labels=labels)

    def _set_air_quality_metrics(
        self, aq: telemetry_pb2.AirQualityMetrics, labels: Dict[str, str]
    ) -> None:
        readings = (
            (catalog.METRIC_PARTICLES_03UM, aq.particles_03um),
            (catalog.METRIC_PARTICLES_05UM, aq.particles_05um),
            (catalog.METRIC_PARTICLES_10UM, aq.particles_10um),
            (catalog.METRIC_PARTICLES_25UM, aq.particles_25um),
            (catalog.METRIC_PARTICLES_50UM, aq.particles_50um),
            (catalog.METRIC_PARTICLES_100UM, aq.particles_100um),
            (catalog.METRIC_PM10_STANDARD, aq.pm10_standard),
            (catalog.METRIC_PM25_STANDARD, aq.pm25_standard),
            (catalog.METRIC_PM100_STANDARD, aq.pm100_standard),
            (catalog.METRIC_PM10_ENVIRONMENTAL, aq.pm10_environmental),
            (catalog.METRIC_PM25_ENVIRONMENTAL, aq.pm25_environmental),
            (catalog.METRIC_PM100_ENVIRONMENTAL, aq.pm100_environmental),
        )
        for name, value in readings:
            self._metrics.set_gauge(name, value, labels=labels)

    def _set_power_metrics(
        self, pwr: telemetry_pb2.PowerMetrics, labels: Dict[str, str]
    ) -> None:
        channels = (
            ("ch1", pwr.ch1_voltage, pwr.ch1_current),
            ("ch2", pwr.ch2_voltage, pwr.ch2_current),
            ("ch3", pwr.ch3_voltage, pwr.ch3_current),
        )
        for channel, voltage, current in channels:
            # Zero or negative voltage means nothing is wired to the channel
            if not voltage > 0.0:
                continue
            channel_labels = dict(labels)
            channel_labels[catalog.LABEL_SENSOR_CHANNEL] = channel
            self._metrics.set_gauge(catalog.METRIC_VOLTAGE, voltage, labels=channel_labels)
            self._metrics.set_gauge(catalog.METRIC_CURRENT, current, labels=channel_labels)
