import pytest
from frames import my_info

from meshtastic_exporter.ipc import (
    MPSC_BUFFER_SIZE,
    ChannelClosed,
    ChannelFull,
    FromRadio,
    IPCChannel,
    make_channels,
)


def test_channel_is_fifo() -> None:
    channel = IPCChannel("from_radio")
    for node in (1, 2, 3):
        channel.send(FromRadio(my_info(node)))

    received = [channel.try_recv().envelope.my_info.my_node_num for _ in range(3)]

    assert received == [1, 2, 3]
    assert channel.try_recv() is None


def test_send_into_full_channel_fails_immediately() -> None:
    channel = IPCChannel("to_radio", capacity=2)
    channel.send(FromRadio(my_info(1)))
    channel.send(FromRadio(my_info(2)))

    with pytest.raises(ChannelFull):
        channel.send(FromRadio(my_info(3)))
    assert channel.depth() == 2


def test_closed_channel_rejects_sends_but_drains() -> None:
    channel = IPCChannel("from_radio")
    channel.send(FromRadio(my_info(7)))
    channel.close()

    with pytest.raises(ChannelClosed):
        channel.send(FromRadio(my_info(8)))
    assert channel.closed
    assert channel.try_recv().envelope.my_info.my_node_num == 7
    assert channel.try_recv() is None


def test_make_channels_default_capacity() -> None:
    from_radio, to_radio = make_channels()

    assert (from_radio.name, to_radio.name) == ("from_radio", "to_radio")
    assert from_radio.capacity == to_radio.capacity == MPSC_BUFFER_SIZE == 128
