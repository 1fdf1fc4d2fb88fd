"""Network source speaking the SpyServer protocol."""

from __future__ import annotations

import socket
import struct
import sys
import threading
import time
from dataclasses import astuple, dataclass
from enum import IntEnum
from typing import ClassVar, Sequence

from .device import (
    BlockFifo,
    Description,
    Device,
    DeviceType,
    Format,
    parse_float,
)

PROTOCOL_VERSION = (2 << 24) | (0 << 16) | 1700
MAX_COMMAND_BODY_SIZE = 256
MAX_MESSAGE_BODY_SIZE = 1 << 20
MIN_DECIMATED_RATE = 96000

_STREAM_MODE_IQ_ONLY = 1
_COMMAND_HEADER = struct.Struct("<2I")
_UINT32 = struct.Struct("<I")


class CommandType(IntEnum):
    """Commands a client sends to the server."""

    HELLO = 0
    GET_SETTING = 1
    SET_SETTING = 2
    PING = 3


class SettingType(IntEnum):
    """Settings that can be changed with ``SET_SETTING``."""

    STREAMING_MODE = 0
    STREAMING_ENABLED = 1
    GAIN = 2
    IQ_FORMAT = 100
    IQ_FREQUENCY = 101
    IQ_DECIMATION = 102
    IQ_DIGITAL_GAIN = 103
    FFT_FORMAT = 200
    FFT_FREQUENCY = 201
    FFT_DECIMATION = 202
    FFT_DB_OFFSET = 203
    FFT_DB_RANGE = 204
    FFT_DISPLAY_PIXELS = 205


class StreamFormat(IntEnum):
    """Sample encodings of the IQ stream."""

    INVALID = 0
    UINT8 = 1
    INT16 = 2
    INT24 = 3
    FLOAT = 4
    DINT4 = 5


class MessageType(IntEnum):
    """Kinds of messages the server sends."""

    DEVICE_INFO = 0
    CLIENT_SYNC = 1
    PONG = 2
    READ_SETTING = 3
    UINT8_IQ = 100
    INT16_IQ = 101
    INT24_IQ = 102
    FLOAT_IQ = 103
    UINT8_AF = 200
    INT16_AF = 201
    INT24_AF = 202
    FLOAT_AF = 203
    DINT4_FFT = 300
    UINT8_FFT = 301


def _unpack(layout: struct.Struct, data: bytes, name: str) -> tuple:
    if len(data) < layout.size:
        raise ValueError(f"{name}: need {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(data)


@dataclass(frozen=True)
class MessageHeader:
    """Header in front of every server message."""

    protocol_id: int
    message_type: int
    stream_type: int
    sequence_number: int
    body_size: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<5I")

    @classmethod
    def parse(cls, data: bytes) -> "MessageHeader":
        return cls(*_unpack(cls.STRUCT, data, "message header"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(*astuple(self))


@dataclass(frozen=True)
class DeviceInfo:
    """Description of the device behind the server."""

    device_type: int
    device_serial: int
    maximum_sample_rate: int
    maximum_bandwidth: int
    decimation_stage_count: int
    gain_stage_count: int
    maximum_gain_index: int
    minimum_frequency: int
    maximum_frequency: int
    resolution: int
    minimum_iq_decimation: int
    forced_iq_format: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<12I")

    @classmethod
    def parse(cls, data: bytes) -> "DeviceInfo":
        return cls(*_unpack(cls.STRUCT, data, "device info"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(*astuple(self))


@dataclass(frozen=True)
class ClientSync:
    """What this client may control and the current tuning state."""

    can_control: int
    gain: int
    device_center_frequency: int
    iq_center_frequency: int
    fft_center_frequency: int
    minimum_iq_center_frequency: int
    maximum_iq_center_frequency: int
    minimum_fft_center_frequency: int
    maximum_fft_center_frequency: int

    STRUCT: ClassVar[struct.Struct] = struct.Struct("<9I")

    @classmethod
    def parse(cls, data: bytes) -> "ClientSync":
        return cls(*_unpack(cls.STRUCT, data, "client sync"))

    def to_bytes(self) -> bytes:
        return self.STRUCT.pack(*astuple(self))


def encode_command(command: int, body: bytes) -> bytes:
    """Frame a command: type and body size as little-endian 32-bit words, then the body."""
    return _COMMAND_HEADER.pack(int(command), len(body)) + bytes(body)


def encode_setting(setting: int, params: Sequence[int]) -> bytes:
    """Encode a ``SET_SETTING`` command with its 32-bit parameters."""
    words = [int(setting), *(int(p) & 0xFFFFFFFF for p in params)]
    body = struct.pack(f"<{len(words)}I", *words)
    return encode_command(CommandType.SET_SETTING, body)


def encode_handshake(software: str) -> bytes:
    """Encode the ``HELLO`` command carrying the protocol version and client name."""
    body = _UINT32.pack(PROTOCOL_VERSION) + software.encode()
    return encode_command(CommandType.HELLO, body)


def decimation_rates(device_info: DeviceInfo) -> list[tuple[int, int]]:
    """Return ``(rate, decimation)`` pairs the server offers, at least 96 kHz each."""
    maximum = device_info.maximum_sample_rate
    stages = range(device_info.minimum_iq_decimation, device_info.decimation_stage_count + 1)
    return [(maximum >> i, i) for i in stages if maximum >> i >= MIN_DECIMATED_RATE]


def closest_rate(rates: Sequence[tuple[int, int]], sample_rate: int, maximum: int) -> int:
    """Pick the rate nearest to ``sample_rate``; 0 if none is closer than ``maximum``."""
    best, distance = 0, maximum
    for rate, _ in rates:
        delta = abs(rate - sample_rate)
        if delta < distance:
            best, distance = rate, delta
    return best


_IQ_FORMATS = {
    MessageType.UINT8_IQ: Format.CU8,
    MessageType.INT16_IQ: Format.CS16,
    MessageType.FLOAT_IQ: Format.CF32,
}

_STREAM_FORMATS = {
    Format.CS16: StreamFormat.INT16,
    Format.CU8: StreamFormat.UINT8,
    Format.CF32: StreamFormat.FLOAT,
}


class SpyServer(Device):
    """Receives IQ samples from a SpyServer."""

    product = "SPYSERVER"
    BUFFER_SIZE = 16 * 16384
    _WAIT_TIMEOUT = 1.0

    def __init__(self) -> None:
        super().__init__(Format.UNKNOWN, 288000)
        self.tuner_gain = 0.0
        self.host = "localhost"
        self.port = "1234"
        self.timeout = 2.0
        self.command_delay = 0.1
        self.software = "iqsources"
        self.device_info: DeviceInfo | None = None
        self.client_sync: ClientSync | None = None
        self.sample_rates: list[tuple[int, int]] = []
        self._sock: socket.socket | None = None
        self._lost = False
        self._status = 0
        self._remaining = 0
        self._fifo = BlockFifo(self.BUFFER_SIZE, 8)
        self._async_thread: threading.Thread | None = None
        self._run_thread: threading.Thread | None = None

    # connection -------------------------------------------------------

    def _disconnect(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def open(self, handle: int = 0) -> None:
        print("Connecting to SpyServer...", file=sys.stderr)
        try:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as exc:
            raise ConnectionError("SPYSERVER: cannot open connection.") from exc

        self._status = 0
        self._remaining = 0
        if not self._send_command(CommandType.HELLO, encode_handshake(self.software)[8:]):
            self._disconnect()
            raise ConnectionError("SPYSERVER: cannot send handshake")

        if not (self._process_header() and self._process_header() and self._status & 3 == 3):
            self._disconnect()
            raise ConnectionError(
                "SPYSERVER: error receiving messages from server to start stream."
            )

        self.sample_rates = decimation_rates(self.device_info)
        self.sample_rate = closest_rate(
            self.sample_rates, self.sample_rate, self.device_info.maximum_sample_rate
        )
        super().open(handle)

    def close(self) -> None:
        self._disconnect()
        super().close()

    def _read_exact(self, size: int) -> bytes | None:
        if self._sock is None:
            return None
        data = bytearray()
        zeros = 2
        while len(data) < size and zeros >= 0:
            try:
                chunk = self._sock.recv(size - len(data))
            except socket.timeout:
                chunk = b""
            except OSError:
                return None
            if not chunk:
                zeros -= 1
            data += chunk
        return bytes(data) if len(data) == size else None

    def _send_command(self, command: int, body: bytes) -> bool:
        if self._sock is None:
            return False
        try:
            self._sock.sendall(encode_command(command, body))
        except OSError:
            return False
        time.sleep(self.command_delay)
        return True

    def _send_setting(self, setting: int, params: Sequence[int]) -> bool:
        return self._send_command(CommandType.SET_SETTING, encode_setting(setting, params)[8:])

    # messages ---------------------------------------------------------

    def _process_header(self) -> bool:
        raw = self._read_exact(MessageHeader.STRUCT.size)
        if raw is None:
            print("SPYSERVER: no data received.", file=sys.stderr)
            return False
        header = MessageHeader.parse(raw)

        if (header.protocol_id & 0xFFFF0000) != (PROTOCOL_VERSION & 0xFFFF0000) or (
            header.body_size > MAX_MESSAGE_BODY_SIZE
        ):
            major = header.protocol_id >> 24 & 0xFF
            minor = header.protocol_id >> 16 & 0xFF
            print(f"SPYSERVER: protocol ID not supported ({major}.{minor})", file=sys.stderr)
            return False

        kind = header.message_type
        if kind == MessageType.DEVICE_INFO:
            body = self._read_exact(DeviceInfo.STRUCT.size)
            if body is None:
                return False
            self.device_info = DeviceInfo.parse(body)
            self._status |= 1
            self._print_device()
            self._remaining = 0
            return True
        if kind == MessageType.CLIENT_SYNC:
            body = self._read_exact(ClientSync.STRUCT.size)
            if body is None:
                return False
            self.client_sync = ClientSync.parse(body)
            self._status |= 2
            self._print_sync()
            self._remaining = 0
            return True
        if kind in _IQ_FORMATS:
            self.format = _IQ_FORMATS[MessageType(kind)]
            self._remaining = header.body_size
            return True

        print("SPYSERVER: unknown message type received.", file=sys.stderr)
        return False

    def _print_device(self) -> None:
        info = self.device_info
        print("Device info:", file=sys.stderr)
        print(
            f"  Serial: {info.device_serial} DeviceType: {info.device_type}"
            f" MaximumSampleRate: {info.maximum_sample_rate}"
            f" MaximumBandwidth: {info.maximum_bandwidth}",
            file=sys.stderr,
        )
        print(
            f"  DecimationStageCount: {info.decimation_stage_count}"
            f" GainStageCount: {info.gain_stage_count}"
            f" MaximumGainIndex: {info.maximum_gain_index}",
            file=sys.stderr,
        )
        print(
            f"  Minimum/Maximum Frequency: {info.minimum_frequency}/{info.maximum_frequency}"
            f" resolution: {info.resolution}",
            file=sys.stderr,
        )
        print(
            f"  MinimumIQDecimation: {info.minimum_iq_decimation}"
            f" ForcedIQFormat: {info.forced_iq_format}",
            file=sys.stderr,
        )

    def _print_sync(self) -> None:
        sync = self.client_sync
        resolution = self.device_info.resolution if self.device_info else 0
        print("Client:", file=sys.stderr)
        print(
            f"  CanControl: {sync.can_control} Gain: {sync.gain}"
            f" DeviceCenterFrequency: {sync.device_center_frequency}",
            file=sys.stderr,
        )
        print(
            f"  IQCenterFrequency: {sync.iq_center_frequency}"
            f"  Minimum/Maximum Frequency: {sync.minimum_iq_center_frequency}"
            f"/{sync.maximum_iq_center_frequency} resolution: {resolution}",
            file=sys.stderr,
        )

    # settings ---------------------------------------------------------

    def _send_stream_format(self) -> None:
        stream_format = _STREAM_FORMATS.get(self.format)
        if stream_format is None:
            raise ValueError("SPYSERVER: format not supported.")
        self._send_setting(SettingType.IQ_FORMAT, [stream_format])

    def _set_rate(self, rate: int) -> None:
        for available, decimation in self.sample_rates:
            if available == rate:
                self._send_setting(SettingType.IQ_DECIMATION, [decimation])
                self._send_stream_format()
                return
        supported = " ".join(str(r) for r, _ in self.sample_rates)
        print(
            f"SPYSERVER: sample rate not supported by server. Supported rates:\n {supported}",
            file=sys.stderr,
        )
        raise ValueError("SPYSERVER: rate not supported.")

    def _set_freq(self, frequency: int) -> None:
        info = self.device_info
        if frequency < info.minimum_frequency or frequency > info.maximum_frequency:
            raise ValueError("SPYSERVER: server does not support required frequency.")
        sync = self.client_sync
        if sync.can_control == 0 and not (
            sync.minimum_iq_center_frequency <= frequency <= sync.maximum_iq_center_frequency
        ):
            raise ValueError("SPYSERVER: cannot set frequency (outside of band).")
        self._send_setting(SettingType.IQ_FREQUENCY, [frequency])
        self._send_stream_format()

    def _set_gain(self, gain: float) -> None:
        if self.client_sync.can_control:
            self._send_setting(SettingType.GAIN, [int(gain)])
        else:
            print("SPYSERVER: server does not give gain control.", file=sys.stderr)

    def _apply_settings(self) -> None:
        self._send_setting(SettingType.STREAMING_MODE, [_STREAM_MODE_IQ_ONLY])
        self._send_setting(SettingType.IQ_DIGITAL_GAIN, [0])
        self.format = Format.CS16
        self._send_stream_format()
        self._set_freq(self.frequency)
        self._set_rate(self.sample_rate)
        if self.tuner_gain != 0:
            self._set_gain(self.tuner_gain)

    def _accept_format(self, fmt: Format) -> None:
        # the server dictates the sample format
        pass

    # streaming --------------------------------------------------------

    def play(self) -> None:
        if self._sock is None or self.device_info is None or self.client_sync is None:
            raise RuntimeError("SPYSERVER: device not open.")
        super().play()
        self._fifo = BlockFifo(self.BUFFER_SIZE, 8)
        self._lost = False
        try:
            self._apply_settings()
        except Exception:
            super().stop()
            raise

        self._async_thread = threading.Thread(target=self._run_async, daemon=True)
        self._run_thread = threading.Thread(target=self._run, daemon=True)
        self._async_thread.start()
        self._run_thread.start()

        self._send_setting(SettingType.STREAMING_ENABLED, [1])
        time.sleep(0.01)

    def stop(self) -> None:
        if self.streaming:
            super().stop()
            self._fifo.halt()
            for thread in (self._async_thread, self._run_thread):
                if thread is not None:
                    thread.join()
            self._send_setting(SettingType.STREAMING_ENABLED, [0])

    def _run_async(self) -> None:
        while self.is_streaming():
            if self._remaining == 0 and not self._process_header():
                print("SPYSERVER: no valid message received.", file=sys.stderr)
                self._lost = True
                break
            if self._remaining:
                try:
                    data = self._sock.recv(min(self._remaining, self.BUFFER_SIZE))
                except socket.timeout:
                    continue
                except (OSError, AttributeError):
                    data = b""
                if not data:
                    print(
                        "SPYSERVER: error receiving data from remote host. Cancelling.",
                        file=sys.stderr,
                    )
                    self._lost = True
                    break
                if self.is_streaming() and not self._fifo.push(data):
                    print("SPYSERVER: buffer overrun.", file=sys.stderr)
                self._remaining -= len(data)

    def _run(self) -> None:
        while self.is_streaming():
            if self._fifo.wait(self._WAIT_TIMEOUT):
                self.send(self._fifo.front())
                self._fifo.pop()
            elif self.is_streaming():
                print("SPYSERVER: timeout.", file=sys.stderr)

    def is_streaming(self) -> bool:
        return self.streaming and not self._lost

    def device_list(self) -> list[Description]:
        return [Description("SPYSERVER", "SPYSERVER", "SPYSERVER", 0, DeviceType.SPYSERVER)]

    def set(self, option: str, arg: str) -> "SpyServer":
        key = option.upper()
        if key == "GAIN":
            self.tuner_gain = parse_float(arg, 0, 50)
        elif key == "HOST":
            self.host = arg
        elif key == "PORT":
            self.port = arg
        else:
            super().set(option, arg)
        return self

    def get(self) -> str:
        return super().get() + f" host {self.host} port {self.port} gain {self.tuner_gain:.6f}"