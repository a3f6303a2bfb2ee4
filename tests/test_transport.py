import queue
from unittest.mock import MagicMock

import pytest
from frames import my_info
from meshtastic.protobuf import mesh_pb2
from pubsub import pub

from meshtastic_exporter.config import NoConnection
from meshtastic_exporter.transport import (
    CONNECTION_LOST_TOPIC,
    InMemoryDeviceLink,
    LinkError,
    MeshtasticDeviceLink,
    _FromRadioTap,
    open_link,
)


class FakeInterface:
    def __init__(self) -> None:
        self.sent = []
        self.closed = False
        self.write_error = None

    def _sendToRadio(self, envelope) -> None:  # noqa: N802
        if self.write_error is not None:
            raise self.write_error
        self.sent.append(envelope)

    def close(self) -> None:
        self.closed = True


class RecordingStream:
    """Stands in for a meshtastic StreamInterface base class."""

    def __init__(self, *args, **kwargs) -> None:
        self.init_args = args
        self.init_kwargs = kwargs
        self.handled = []

    def _handleFromRadio(self, fromRadioBytes) -> None:  # noqa: N802,N803
        self.handled.append(fromRadioBytes)


class TappedStream(_FromRadioTap, RecordingStream):
    pass


def _link_with(interface: FakeInterface):
    inboxes = []

    def factory(inbox):
        inboxes.append(inbox)
        return interface

    link = MeshtasticDeviceLink(factory)
    return link, inboxes[0]


def test_in_memory_link_round_trip() -> None:
    link = InMemoryDeviceLink()
    link.inject(my_info(1))

    assert link.poll().my_info.my_node_num == 1
    assert link.poll() is None

    envelope = mesh_pb2.ToRadio(heartbeat=mesh_pb2.Heartbeat())
    link.send(envelope)
    assert link.sent == [envelope]


def test_in_memory_link_failures() -> None:
    link = InMemoryDeviceLink()
    link.fail_writes(OSError("gone"))
    with pytest.raises(LinkError):
        link.send(mesh_pb2.ToRadio())

    link.fail(LinkError("lost"))
    with pytest.raises(LinkError):
        link.check()
    with pytest.raises(LinkError):
        link.poll()


def test_meshtastic_link_polls_tapped_frames() -> None:
    interface = FakeInterface()
    link, inbox = _link_with(interface)

    assert link.poll() is None
    inbox.put(my_info(9))
    assert link.poll().my_info.my_node_num == 9

    link.close()
    assert interface.closed


def test_meshtastic_link_send_wraps_errors() -> None:
    interface = FakeInterface()
    link, _ = _link_with(interface)
    envelope = mesh_pb2.ToRadio(heartbeat=mesh_pb2.Heartbeat())

    link.send(envelope)
    assert interface.sent == [envelope]

    interface.write_error = OSError("broken pipe")
    with pytest.raises(LinkError, match="broken pipe"):
        link.send(envelope)
    link.close()


def test_meshtastic_link_reports_connection_lost() -> None:
    interface = FakeInterface()
    link, _ = _link_with(interface)
    link.check()

    pub.sendMessage(CONNECTION_LOST_TOPIC, interface=FakeInterface())
    link.check()

    pub.sendMessage(CONNECTION_LOST_TOPIC, interface=interface)
    with pytest.raises(LinkError, match="lost"):
        link.check()
    link.close()


def test_meshtastic_link_factory_failure() -> None:
    def factory(_inbox):
        raise ConnectionRefusedError("refused")

    with pytest.raises(LinkError, match="Unable to connect"):
        MeshtasticDeviceLink(factory)


def test_open_link_requires_a_transport() -> None:
    with pytest.raises(LinkError, match="Neither tcp nor serial"):
        open_link(NoConnection())


def test_tap_copies_frames_before_the_interface_handles_them(caplog) -> None:
    inbox: "queue.Queue[mesh_pb2.FromRadio]" = queue.Queue()
    stream = TappedStream("radio.local", portNumber=4403, inbox=inbox)
    assert stream.init_args == ("radio.local",)
    assert stream.init_kwargs == {"portNumber": 4403}

    raw = my_info(0x42).SerializeToString()
    stream._handleFromRadio(raw)
    assert inbox.get_nowait().my_info.my_node_num == 0x42
    assert stream.handled == [raw]

    with caplog.at_level("WARNING"):
        stream._handleFromRadio(b"\x0a\x05\x01")
    assert inbox.empty()
    assert "undecodable FromRadio" in caplog.text
    assert len(stream.handled) == 2


def test_close_logs_interface_errors(caplog) -> None:
    interface = MagicMock()
    interface.close.side_effect = OSError("port already closed")
    link = MeshtasticDeviceLink(lambda _inbox: interface)

    with caplog.at_level("WARNING"):
        link.close()

    interface.close.assert_called_once_with()
    assert "Error closing interface" in caplog.text
