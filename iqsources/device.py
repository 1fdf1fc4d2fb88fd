"""Common device model: sample formats, setting parsers, a block FIFO and the base device."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, ClassVar

Receiver = Callable[["Format", bytes], None]

_SWITCH_ON = "ON"
_SWITCH_OFF = "OFF"


class Format(Enum):
    """Sample format of the raw data a device delivers."""

    CU8 = "CU8"
    CS8 = "CS8"
    CS16 = "CS16"
    CF32 = "CF32"
    TXT = "TXT"
    UNKNOWN = "UNKNOWN"


class DeviceType(Enum):
    """Kind of input device."""

    NONE = auto()
    RTLSDR = auto()
    AIRSPYHF = auto()
    AIRSPY = auto()
    SDRPLAY = auto()
    WAVFILE = auto()
    RAWFILE = auto()
    RTLTCP = auto()
    HACKRF = auto()
    SOAPYSDR = auto()
    ZMQ = auto()
    SPYSERVER = auto()


def parse_format(text: str) -> Format:
    """Parse a stream format name such as ``CU8`` (case-insensitive)."""
    key = text.strip().upper()
    try:
        fmt = Format[key]
    except KeyError:
        raise ValueError("Unknown file format specification.") from None
    if fmt is Format.UNKNOWN:
        raise ValueError("Unknown file format specification.")
    return fmt


def parse_integer(text: str, low: int, high: int) -> int:
    """Parse an integer and check that it lies in ``[low, high]``."""
    try:
        value = int(text.strip())
    except ValueError:
        raise ValueError(f'expected an integer, got "{text}"') from None
    if not low <= value <= high:
        raise ValueError(f"value {value} out of range [{low}, {high}]")
    return value


def parse_float(text: str, low: float, high: float) -> float:
    """Parse a number and check that it lies in ``[low, high]``."""
    try:
        value = float(text.strip())
    except ValueError:
        raise ValueError(f'expected a number, got "{text}"') from None
    if not low <= value <= high:
        raise ValueError(f"value {value} out of range [{low}, {high}]")
    return value


def parse_switch(text: str, on: str = _SWITCH_ON, off: str = _SWITCH_OFF) -> bool:
    """Parse a two-way switch; returns True for ``on`` and False for ``off``."""
    key = text.strip().upper()
    if key == on.upper():
        return True
    if key == off.upper():
        return False
    raise ValueError(f'expected "{on}" or "{off}", got "{text}"')


def parse_auto_float(text: str, low: float, high: float) -> tuple[bool, float | None]:
    """Parse ``AUTO`` or a number; returns ``(is_auto, value)``, value None when automatic."""
    if text.strip().upper() == "AUTO":
        return True, None
    return False, parse_float(text, low, high)


def format_switch(value: bool) -> str:
    """Render a switch setting in the form that ``parse_switch`` accepts."""
    if value:
        return _SWITCH_ON
    return _SWITCH_OFF


def format_auto(auto: bool, value: object) -> str:
    """Render ``AUTO`` for an automatic setting, otherwise the value itself."""
    if auto:
        return "AUTO"
    return str(value)


@dataclass(frozen=True)
class Description:
    """An available device as reported by a device list."""

    vendor: str
    product: str
    serial: str
    handle: int
    device_type: DeviceType

    def __str__(self) -> str:
        return f"{self.vendor}, {self.product}, SN: {self.serial}"


class BlockFifo:
    """Thread-safe queue that collects pushed bytes into fixed-size blocks."""

    def __init__(self, block_size: int, block_count: int = 2) -> None:
        if block_size <= 0 or block_count <= 0:
            raise ValueError("block size and block count must be positive")
        self.block_size = block_size
        self.block_count = block_count
        self._blocks: deque[bytes] = deque()
        self._partial = bytearray()
        self._cond = threading.Condition()
        self._halted = False

    @property
    def capacity(self) -> int:
        return self.block_size * self.block_count

    def push(self, data: bytes) -> bool:
        """Append data; returns False (storing nothing) if it does not fit."""
        with self._cond:
            if self._halted:
                return False
            used = len(self._blocks) * self.block_size + len(self._partial)
            if len(data) > self.capacity - used:
                return False
            self._partial += data
            while len(self._partial) >= self.block_size:
                self._blocks.append(bytes(self._partial[: self.block_size]))
                del self._partial[: self.block_size]
            if self._blocks:
                self._cond.notify_all()
            return True

    def wait(self, timeout: float = 1.0) -> bool:
        """Wait until a full block is available; False on timeout or after halt."""
        with self._cond:
            self._cond.wait_for(lambda: self._halted or bool(self._blocks), timeout)
            return bool(self._blocks) and not self._halted

    def front(self) -> bytes:
        with self._cond:
            if not self._blocks:
                raise IndexError("FIFO is empty")
            return self._blocks[0]

    def pop(self) -> None:
        with self._cond:
            if not self._blocks:
                raise IndexError("FIFO is empty")
            self._blocks.popleft()

    def halt(self) -> None:
        """Stop the FIFO and wake up every waiter."""
        with self._cond:
            self._halted = True
            self._cond.notify_all()


class Device:
    """Base class for sources of raw IQ data."""

    product: ClassVar[str] = ""
    vendor: ClassVar[str] = ""
    serial: ClassVar[str] = ""
    is_callback: ClassVar[bool] = True

    def __init__(self, format: Format = Format.UNKNOWN, sample_rate: int = 0) -> None:
        self.format = format
        self.sample_rate = sample_rate
        self.frequency = 0
        self.freq_offset = 0
        self.tuner_bandwidth = 0
        self.streaming = False
        self._receivers: list[Receiver] = []

    def connect(self, receiver: Receiver) -> None:
        """Register a callable that receives ``(format, data)`` for every block."""
        self._receivers.append(receiver)

    def send(self, data: bytes) -> None:
        for receiver in self._receivers:
            receiver(self.format, data)

    def open(self, handle: int = 0) -> None:
        pass

    def close(self) -> None:
        pass

    def play(self) -> None:
        self.streaming = True

    def stop(self) -> None:
        self.streaming = False

    def is_streaming(self) -> bool:
        return self.streaming

    def device_list(self) -> list[Description]:
        return []

    def _accept_format(self, fmt: Format) -> None:
        self.format = fmt

    def set(self, option: str, arg: str) -> "Device":
        key = option.upper()
        if key in ("RATE", "SAMPLE_RATE"):
            self.sample_rate = parse_integer(arg, 0, 20_000_000)
        elif key in ("BW", "BANDWIDTH"):
            self.tuner_bandwidth = parse_integer(arg, 0, 1_000_000)
        elif key == "FREQOFFSET":
            self.freq_offset = parse_integer(arg, -150, 150)
        elif key == "FORMAT":
            self._accept_format(parse_format(arg))
        else:
            raise ValueError(f'Invalid Device setting: "{key}"')
        return self

    def get(self) -> str:
        text = f"rate {self.sample_rate // 1000}K"
        if self.tuner_bandwidth:
            text += f" bw {self.tuner_bandwidth // 1000}K"
        if self.freq_offset:
            text += f" freqoffset {self.freq_offset}"
        return text + f" format {self.format.value}"