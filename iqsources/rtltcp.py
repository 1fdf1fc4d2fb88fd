"""Network source speaking the rtl_tcp protocol, or plain raw samples over TCP."""

from __future__ import annotations

import socket
import struct
import sys
import threading
import time
from enum import Enum

from .device import (
    BlockFifo,
    Description,
    Device,
    DeviceType,
    Format,
    format_auto,
    format_switch,
    parse_auto_float,
    parse_integer,
    parse_switch,
)

_MAGIC = 0x304C5452  # "RTL0"
_DONGLE_INFO = struct.Struct("<3I")
_COMMAND = struct.Struct(">BI")

_SET_FREQUENCY = 1
_SET_SAMPLE_RATE = 2
_SET_GAIN_MODE = 3
_SET_GAIN = 4
_SET_FREQ_CORRECTION = 5
_SET_AGC_MODE = 8


class Protocol(Enum):
    """Framing used on the TCP connection."""

    NONE = "NONE"
    RTLTCP = "RTLTCP"


def encode_command(command: int, param: int) -> bytes:
    """Encode an rtl_tcp command: one command byte and a big-endian 32-bit parameter."""
    return _COMMAND.pack(command & 0xFF, int(param) & 0xFFFFFFFF)


class RtlTcp(Device):
    """Receives raw IQ samples from an rtl_tcp server (or any raw TCP stream)."""

    product = "RTLTCP"
    TRANSFER_SIZE = 1024
    BUFFER_SIZE = 16 * 16384
    _WAIT_TIMEOUT = 1.0

    def __init__(self) -> None:
        super().__init__(Format.CF32, 288000)
        self.protocol = Protocol.RTLTCP
        self.tuner_agc = True
        self.rtl_agc = False
        self.tuner_gain = 33.0
        self.host = "localhost"
        self.port = "1234"
        self.timeout = 2
        self._sock: socket.socket | None = None
        self._lost = False
        self._fifo = BlockFifo(self.BUFFER_SIZE)
        self._async_thread: threading.Thread | None = None
        self._run_thread: threading.Thread | None = None

    def _read_exact(self, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            try:
                chunk = self._sock.recv(size - len(data))
            except OSError:
                break
            if not chunk:
                break
            data += chunk
        return bytes(data)

    def play(self) -> None:
        try:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as exc:
            raise ConnectionError("RTLTCP: cannot open socket.") from exc

        if self.protocol is Protocol.RTLTCP:
            info = self._read_exact(_DONGLE_INFO.size)
            if len(info) != _DONGLE_INFO.size or _DONGLE_INFO.unpack(info)[0] != _MAGIC:
                self.close()
                raise ConnectionError(
                    "RTLTCP: no or invalid response, likely not an rtl-tcp server."
                )

        super().play()
        self._fifo = BlockFifo(self.BUFFER_SIZE)
        self._apply_settings()
        self._lost = False

        self._async_thread = threading.Thread(target=self._run_async, daemon=True)
        self._run_thread = threading.Thread(target=self._run, daemon=True)
        self._async_thread.start()
        self._run_thread.start()
        time.sleep(0.01)

    def _send_command(self, command: int, param: int) -> None:
        self._sock.sendall(encode_command(command, param))

    def _apply_settings(self) -> None:
        self._sock.settimeout(self.timeout)
        if self.protocol is Protocol.RTLTCP:
            self._send_command(_SET_FREQ_CORRECTION, self.freq_offset)
            self._send_command(_SET_GAIN_MODE, 0 if self.tuner_agc else 1)
            if not self.tuner_agc:
                self._send_command(_SET_GAIN, int(self.tuner_gain))
            if self.rtl_agc:
                self._send_command(_SET_AGC_MODE, 1)
            self._send_command(_SET_SAMPLE_RATE, self.sample_rate)
            self._send_command(_SET_FREQUENCY, self.frequency)
            self.format = Format.CU8

    def _run_async(self) -> None:
        while self.is_streaming():
            try:
                data = self._sock.recv(self.TRANSFER_SIZE)
            except OSError:
                data = b""
            if not data:
                self._lost = True
                print("RTLTCP: error receiving data from remote host. Cancelling.", file=sys.stderr)
                break
            if self.is_streaming() and not self._fifo.push(data):
                print("RTLTCP: buffer overrun.", file=sys.stderr)

    def _run(self) -> None:
        while self.is_streaming():
            if self._fifo.wait(self._WAIT_TIMEOUT):
                self.send(self._fifo.front())
                self._fifo.pop()
            elif self.is_streaming():
                print("RTLTCP: timeout.", file=sys.stderr)

    def stop(self) -> None:
        if self.streaming:
            super().stop()
            self._fifo.halt()
            for thread in (self._async_thread, self._run_thread):
                if thread is not None:
                    thread.join()

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        super().close()

    def is_streaming(self) -> bool:
        return self.streaming and not self._lost

    def device_list(self) -> list[Description]:
        return [Description("RTLTCP", "RTLTCP", "RTLTCP", 0, DeviceType.RTLTCP)]

    def set(self, option: str, arg: str) -> "RtlTcp":
        key = option.upper()
        if key == "TUNER":
            self.tuner_agc, gain = parse_auto_float(arg, 0, 50)
            if gain is not None:
                self.tuner_gain = gain
        elif key == "RTLAGC":
            self.rtl_agc = parse_switch(arg)
        elif key == "TIMEOUT":
            self.timeout = parse_integer(arg, 1, 60)
        elif key == "HOST":
            self.host = arg
        elif key == "PORT":
            self.port = arg
        elif key == "PROTOCOL":
            try:
                self.protocol = Protocol[arg.upper()]
            except KeyError:
                raise ValueError("RTLTCP: unknown protocol") from None
        else:
            super().set(option, arg)
        return self

    def get(self) -> str:
        text = f" host {self.host} port {self.port} timeout {self.timeout}"
        text += " tuner " + format_auto(self.tuner_agc, self.tuner_gain)
        text += " rtlagc " + format_switch(self.rtl_agc)
        text += " protocol " + self.protocol.value
        return super().get() + text