"""Metric names, help text and label keys exported by the bridge."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .metrics import MetricsRegistry

LABEL_DEVICE_ID = "device_id"
LABEL_DEVICE_ROLE = "device_role"
LABEL_FW_VERSION = "firmware_version"
LABEL_HW_MODEL = "hardware_model"
LABEL_GEOHASH = "geohash"
LABEL_LICENSED = "is_licensed"
LABEL_SHORT_NAME = "short_name"
LABEL_LONG_NAME = "long_name"
LABEL_SENSOR_CHANNEL = "sensor_channel"

METRIC_DEVICE_INFO = "meshtastic_device_info"
METRIC_HOPS_AWAY = "meshtastic_hops_away"
METRIC_TEMPERATURE = "meshtastic_temperature"

METRIC_RSSI = "meshtastic_rssi"
METRIC_SNR = "meshtastic_snr"
METRIC_VOLTAGE = "meshtastic_voltage"
METRIC_CURRENT = "meshtastic_current"
METRIC_BATTERY = "meshtastic_battery"
METRIC_HUMIDITY = "meshtastic_humidity"
METRIC_BAROMETRIC_PRESSURE = "meshtastic_barometric_pressure"
METRIC_RX_MSG_COUNT = "meshtastic_received_message_count"
METRIC_LAST_HEARD_SECS = "meshtastic_last_heard_seconds"
METRIC_CHAN_UTIL = "meshtastic_channel_utilization"
METRIC_AIR_UTIL = "meshtastic_air_utilization"
METRIC_UPTIME = "meshtastic_device_uptime_seconds"

METRIC_POS_SATS_IN_VIEW = "meshtastic_satellites_in_view"
METRIC_IAQ = "meshtastic_indoor_air_quality"
METRIC_GAS_RESISTANCE = "meshtastic_gas_resistance"

METRIC_PM10_STANDARD = "meshtastic_air_pm10_standard"
METRIC_PM25_STANDARD = "meshtastic_air_pm25_standard"
METRIC_PM100_STANDARD = "meshtastic_air_pm100_standard"
METRIC_PM10_ENVIRONMENTAL = "meshtastic_air_pm10_environmental"
METRIC_PM25_ENVIRONMENTAL = "meshtastic_air_pm25_environmental"
METRIC_PM100_ENVIRONMENTAL = "meshtastic_air_pm100_environmental"
METRIC_PARTICLES_03UM = "meshtastic_air_particles_03um"
METRIC_PARTICLES_05UM = "meshtastic_air_particles_05um"
METRIC_PARTICLES_10UM = "meshtastic_air_particles_10um"
METRIC_PARTICLES_25UM = "meshtastic_air_particles_25um"
METRIC_PARTICLES_50UM = "meshtastic_air_particles_50um"
METRIC_PARTICLES_100UM = "meshtastic_air_particles_100um"

GAUGE = "gauge"
COUNTER = "counter"

# name -> (kind, help text)
METRIC_CATALOG: Dict[str, Tuple[str, str]] = {
    METRIC_DEVICE_INFO: (GAUGE, "Information about a device; the value is the unix time it was last reported."),
    METRIC_HOPS_AWAY: (GAUGE, "The reported number of hops away the node is."),
    METRIC_TEMPERATURE: (GAUGE, "The reported temperature from the telemetry module."),
    METRIC_HUMIDITY: (GAUGE, "The relative humidity from the telemetry module."),
    METRIC_BAROMETRIC_PRESSURE: (GAUGE, "The barometric pressure reported from the telemetry module."),
    METRIC_VOLTAGE: (GAUGE, "The reported device voltage."),
    METRIC_CURRENT: (GAUGE, "The reported device current."),
    METRIC_BATTERY: (GAUGE, "The reported device battery remaining."),
    METRIC_SNR: (GAUGE, "Signal to noise ratio for node."),
    METRIC_RSSI: (GAUGE, "RSSI for node."),
    METRIC_RX_MSG_COUNT: (COUNTER, "The number of messages received from the node."),
    METRIC_LAST_HEARD_SECS: (GAUGE, "The unix time the node was last heard."),
    METRIC_CHAN_UTIL: (GAUGE, "The channel's utilization."),
    METRIC_AIR_UTIL: (GAUGE, "The amount of total air utilization for transmissions."),
    METRIC_UPTIME: (GAUGE, "The total seconds the device has been energized."),
    METRIC_POS_SATS_IN_VIEW: (GAUGE, "The number of satellites in view for this node."),
    METRIC_IAQ: (GAUGE, "Relative scale of VOC content measured from 0-500."),
    METRIC_GAS_RESISTANCE: (GAUGE, "Gas resistance in MOhms."),
    METRIC_PM10_STANDARD: (GAUGE, "Concentration units standard PM1.0."),
    METRIC_PM25_STANDARD: (GAUGE, "Concentration units standard PM2.5."),
    METRIC_PM100_STANDARD: (GAUGE, "Concentration units standard PM10.0."),
    METRIC_PM10_ENVIRONMENTAL: (GAUGE, "Concentration units environmental PM1.0."),
    METRIC_PM25_ENVIRONMENTAL: (GAUGE, "Concentration units environmental PM2.5."),
    METRIC_PM100_ENVIRONMENTAL: (GAUGE, "Concentration units environmental PM10.0."),
    METRIC_PARTICLES_03UM: (GAUGE, "Particles beyond 0.3um per 0.1L of air."),
    METRIC_PARTICLES_05UM: (GAUGE, "Particles beyond 0.5um per 0.1L of air."),
    METRIC_PARTICLES_10UM: (GAUGE, "Particles beyond 1.0um per 0.1L of air."),
    METRIC_PARTICLES_25UM: (GAUGE, "Particles beyond 2.5um per 0.1L of air."),
    METRIC_PARTICLES_50UM: (GAUGE, "Particles beyond 5.0um per 0.1L of air."),
    METRIC_PARTICLES_100UM: (GAUGE, "Particles beyond 10.0um per 0.1L of air."),
}


def register_metrics(registry: MetricsRegistry) -> None:
    for name, (kind, description) in METRIC_CATALOG.items():
        if kind == COUNTER:
            registry.counter(name, description)
        else:
            registry.gauge(name, description)


def device_id_label(node_num: int) -> str:
    return f"!{node_num:x}"
