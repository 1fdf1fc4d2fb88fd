import threading
import time

import pytest
import zmq

from iqsources.device import DeviceType, Format
from iqsources.zmqsource import ZmqSource


def test_default_get_with_endpoint():
    dev = ZmqSource().set("endpoint", "tcp://127.0.0.1:5555")
    assert dev.get() == "rate 288K format CU8 endpoint tcp://127.0.0.1:5555"


def test_format_setting_passes_to_base():
    dev = ZmqSource().set("FORMAT", "cs16")
    assert dev.format is Format.CS16


def test_unknown_option_rejected():
    with pytest.raises(ValueError):
        ZmqSource().set("TUNER", "auto")


def test_device_list():
    (desc,) = ZmqSource().device_list()
    assert desc.device_type is DeviceType.ZMQ
    assert desc.handle == 0


def test_open_with_invalid_endpoint_raises():
    dev = ZmqSource().set("endpoint", "not-an-endpoint")
    with pytest.raises(ConnectionError):
        dev.open(0)


def test_play_without_open_raises():
    with pytest.raises(RuntimeError):
        ZmqSource().play()


def test_stream_from_publisher_truncates_messages():
    context = zmq.Context()
    pub = context.socket(zmq.PUB)
    port = pub.bind_to_random_port("tcp://127.0.0.1")

    size = ZmqSource.BUFFER_SIZE
    payload = bytes(range(256)) * (size // 256) + b"0123456789"

    dev = ZmqSource().set("endpoint", f"tcp://127.0.0.1:{port}")
    blocks = []
    got = threading.Event()

    def receiver(fmt, data):
        blocks.append((fmt, data))
        got.set()

    dev.connect(receiver)
    dev.open(0)
    dev.play()
    try:
        deadline = time.monotonic() + 10
        while not got.is_set() and time.monotonic() < deadline:
            pub.send(payload)
            got.wait(0.1)
    finally:
        dev.stop()
        dev.close()
        pub.close(linger=0)
        context.term()

    assert got.is_set()
    fmt, data = blocks[0]
    assert fmt is Format.CU8
    assert data == payload[:size]
    assert dev.is_streaming() is False