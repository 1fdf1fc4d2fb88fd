import socket
import struct
import threading
import time

import pytest

from iqsources.device import DeviceType, Format
from iqsources.spyserver import (
    PROTOCOL_VERSION,
    ClientSync,
    CommandType,
    DeviceInfo,
    MessageHeader,
    MessageType,
    SettingType,
    SpyServer,
    closest_rate,
    decimation_rates,
    encode_command,
    encode_handshake,
    encode_setting,
)

INFO = DeviceInfo(
    device_type=1,
    device_serial=12345678,
    maximum_sample_rate=6_000_000,
    maximum_bandwidth=5_000_000,
    decimation_stage_count=8,
    gain_stage_count=21,
    maximum_gain_index=21,
    minimum_frequency=24_000_000,
    maximum_frequency=1_750_000_000,
    resolution=1,
    minimum_iq_decimation=0,
    forced_iq_format=0,
)

SYNC = ClientSync(
    can_control=1,
    gain=10,
    device_center_frequency=162_000_000,
    iq_center_frequency=162_000_000,
    fft_center_frequency=0,
    minimum_iq_center_frequency=24_000_000,
    maximum_iq_center_frequency=1_750_000_000,
    minimum_fft_center_frequency=0,
    maximum_fft_center_frequency=0,
)


def message(kind, body, protocol=PROTOCOL_VERSION):
    header = MessageHeader(protocol, int(kind), 0, 0, len(body))
    return header.to_bytes() + body


GREETING = message(MessageType.DEVICE_INFO, INFO.to_bytes()) + message(
    MessageType.CLIENT_SYNC, SYNC.to_bytes()
)


class FakeServer:
    def __init__(self, outgoing: bytes) -> None:
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(1)
        self.port = str(self.listener.getsockname()[1])
        self.received = bytearray()
        self.thread = threading.Thread(target=self._serve, args=(outgoing,), daemon=True)
        self.thread.start()

    def _serve(self, outgoing: bytes) -> None:
        conn, _ = self.listener.accept()
        with conn:
            try:
                conn.sendall(outgoing)
            except OSError:
                return
            while True:
                try:
                    chunk = conn.recv(4096)
                except OSError:
                    break
                if not chunk:
                    break
                self.received += chunk

    def finish(self) -> bytes:
        self.thread.join(5)
        self.listener.close()
        return bytes(self.received)


def make_device(port: str) -> SpyServer:
    device = SpyServer()
    device.set("host", "127.0.0.1").set("port", port)
    device.command_delay = 0
    device.timeout = 0.3
    device.frequency = 162_000_000
    return device


def test_message_header_round_trip():
    header = MessageHeader(PROTOCOL_VERSION, MessageType.INT16_IQ, 1, 7, 4096)
    assert MessageHeader.parse(header.to_bytes()) == header


def test_device_info_and_sync_round_trip():
    assert DeviceInfo.parse(INFO.to_bytes()) == INFO
    assert ClientSync.parse(SYNC.to_bytes()) == SYNC


def test_parse_short_data_raises():
    with pytest.raises(ValueError):
        MessageHeader.parse(b"\x00" * 10)
    with pytest.raises(ValueError):
        DeviceInfo.parse(INFO.to_bytes()[:-1])


def test_encode_setting_wire_bytes():
    data = encode_setting(SettingType.STREAMING_ENABLED, [1])
    assert data == b"\x02\x00\x00\x00\x08\x00\x00\x00\x01\x00\x00\x00\x01\x00\x00\x00"


def test_encode_command_frames_body():
    body = b"abc"
    data = encode_command(CommandType.PING, body)
    assert struct.unpack_from("<2I", data) == (CommandType.PING, len(body))
    assert data[8:] == body


def test_encode_handshake_contents():
    data = encode_handshake("client")
    command, size = struct.unpack_from("<2I", data)
    assert command == CommandType.HELLO
    assert size == len(data) - 8
    assert struct.unpack_from("<I", data, 8)[0] == PROTOCOL_VERSION
    assert data[12:] == b"client"


def test_decimation_rates_invariants():
    rates = decimation_rates(INFO)
    assert rates
    for rate, decimation in rates:
        assert rate >= 96000
        assert rate == INFO.maximum_sample_rate >> decimation
    assert rates[0] == (INFO.maximum_sample_rate, 0)


def test_closest_rate():
    rates = decimation_rates(INFO)
    best = closest_rate(rates, 288000, INFO.maximum_sample_rate)
    assert best in [r for r, _ in rates]
    assert abs(best - 288000) == min(abs(r - 288000) for r, _ in rates)
    assert closest_rate(rates, 750000, INFO.maximum_sample_rate) == 750000
    assert closest_rate([], 288000, INFO.maximum_sample_rate) == 0


def test_get_default_text():
    assert SpyServer().get() == "rate 288K format UNKNOWN host localhost port 1234 gain 0.000000"


def test_set_options():
    device = SpyServer()
    device.set("gain", "12.5").set("HOST", "example.com").set("Port", "5555")
    text = device.get()
    assert " gain 12.500000" in text
    assert " host example.com port 5555" in text


def test_set_rejects_bad_values():
    device = SpyServer()
    with pytest.raises(ValueError):
        device.set("gain", "60")
    with pytest.raises(ValueError):
        device.set("nonsense", "1")


def test_format_setting_is_ignored():
    device = SpyServer()
    device.set("format", "CU8")
    assert device.format is Format.UNKNOWN


def test_device_list():
    (entry,) = SpyServer().device_list()
    assert entry.device_type is DeviceType.SPYSERVER
    assert str(entry) == "SPYSERVER, SPYSERVER, SN: SPYSERVER"


def test_play_without_open_raises():
    with pytest.raises(RuntimeError):
        SpyServer().play()


def test_open_unreachable_host_raises():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = str(probe.getsockname()[1])
    probe.close()
    with pytest.raises(ConnectionError):
        make_device(port).open()


def test_open_rejects_wrong_protocol():
    server = FakeServer(message(MessageType.DEVICE_INFO, INFO.to_bytes(), protocol=1 << 24))
    device = make_device(server.port)
    with pytest.raises(ConnectionError):
        device.open()
    device.close()
    server.finish()
    assert device.device_info is None


def test_open_negotiates_rate():
    server = FakeServer(GREETING)
    device = make_device(server.port)
    device.open()
    try:
        assert device.device_info == INFO
        assert device.client_sync == SYNC
        assert device.sample_rate == closest_rate(
            decimation_rates(INFO), 288000, INFO.maximum_sample_rate
        )
        assert device.sample_rates == decimation_rates(INFO)
    finally:
        device.close()
    received = server.finish()
    assert received.startswith(encode_handshake(device.software))


def test_play_rejects_frequency_outside_device_range():
    server = FakeServer(GREETING)
    device = make_device(server.port)
    device.open()
    device.frequency = 10
    try:
        with pytest.raises(ValueError):
            device.play()
        assert device.is_streaming() is False
    finally:
        device.close()
        server.finish()


def test_play_streams_samples():
    payload = bytes(range(256)) * 1024
    server = FakeServer(GREETING + message(MessageType.INT16_IQ, payload))
    device = make_device(server.port)
    got = []
    device.connect(lambda fmt, data: got.append((fmt, data)))
    device.open()
    try:
        device.play()
        deadline = time.monotonic() + 5
        while not got and time.monotonic() < deadline:
            time.sleep(0.01)
        device.stop()
    finally:
        device.close()
    received = server.finish()

    assert got[0] == (Format.CS16, payload)
    assert encode_setting(SettingType.STREAMING_ENABLED, [1]) in received
    assert encode_setting(SettingType.IQ_FREQUENCY, [162_000_000]) in received
    assert encode_setting(SettingType.STREAMING_ENABLED, [0]) in received
    assert device.is_streaming() is False