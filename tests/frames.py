"""Builders for the protobuf frames used across the test-suite."""

from __future__ import annotations

from typing import Dict, List, Tuple

from meshtastic.protobuf import mesh_pb2, portnums_pb2, telemetry_pb2

from meshtastic_exporter.metrics import MetricsRegistry


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def my_info(node_num: int) -> mesh_pb2.FromRadio:
    return mesh_pb2.FromRadio(my_info=mesh_pb2.MyNodeInfo(my_node_num=node_num))


def metadata(firmware_version: str, **kwargs) -> mesh_pb2.FromRadio:
    return mesh_pb2.FromRadio(
        metadata=mesh_pb2.DeviceMetadata(firmware_version=firmware_version, **kwargs)
    )


def routed(
    portnum: int,
    payload: bytes,
    sender: int = 0xABCD,
    source: int = 0,
    **packet_fields,
) -> mesh_pb2.FromRadio:
    packet = mesh_pb2.MeshPacket(
        decoded=mesh_pb2.Data(portnum=portnum, payload=payload, source=source),
        **packet_fields,
    )
    setattr(packet, "from", sender)
    return mesh_pb2.FromRadio(packet=packet)


def telemetry(sender: int = 0xABCD, source: int = 0, **variant) -> mesh_pb2.FromRadio:
    payload = telemetry_pb2.Telemetry(**variant).SerializeToString()
    return routed(portnums_pb2.PortNum.TELEMETRY_APP, payload, sender=sender, source=source)


def series(registry: MetricsRegistry, name: str) -> List[Tuple[Dict[str, str], float]]:
    """All samples of one metric as ``(labels, value)`` pairs."""
    if name in registry.snapshot()["counters"]:
        samples = registry.counter(name).samples()
    else:
        samples = registry.gauge(name).samples()
    return [(dict(labels), value) for labels, value in samples.items()]
