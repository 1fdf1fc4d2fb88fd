"""File based sources: raw sample files (or stdin) and WAV files."""

from __future__ import annotations

import struct
import sys
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO

from .device import BlockFifo, Device, Format

_RIFF = 0x46464952
_WAVE = 0x45564157
_FACT = 0x74636166
_DATA = 0x61746164

_HEADER = struct.Struct("<5I2H2I2H")
_CHUNK = struct.Struct("<2I")


@dataclass(frozen=True)
class WavHeader:
    """RIFF header and format chunk of a WAV file."""

    group_id: int
    size: int
    riff_type: int
    chunk_id: int
    chunk_size: int
    format_tag: int
    channels: int
    samples_per_sec: int
    avg_bytes_per_sec: int
    block_align: int
    bits_per_sample: int
    data_size: int = 0

    @property
    def format(self) -> Format:
        if self.format_tag == 3 and self.bits_per_sample == 32:
            return Format.CF32
        if self.format_tag == 1 and self.bits_per_sample == 8:
            return Format.CU8
        if self.format_tag == 1 and self.bits_per_sample == 16:
            return Format.CS16
        raise ValueError("format not supported")


def _skip(stream: BinaryIO, count: int) -> None:
    while count > 0:
        chunk = stream.read(min(count, 65536))
        if not chunk:
            return
        count -= len(chunk)


def read_wav_header(stream: BinaryIO) -> WavHeader:
    """Read and validate a stereo WAV header, leaving the stream at the sample data."""
    raw = stream.read(_HEADER.size)
    if len(raw) < _HEADER.size:
        raise ValueError("cannot read from WAV file.")
    header = WavHeader(*_HEADER.unpack(raw))

    valid = (
        header.channels == 2
        and header.chunk_size >= 16
        and header.group_id == _RIFF
        and header.riff_type == _WAVE
    )
    if not valid:
        raise ValueError("Not a supported WAV-file.")
    header.format  # raises for unsupported sample formats

    _skip(stream, header.chunk_size - 16)

    while True:
        raw = stream.read(_CHUNK.size)
        if len(raw) < _CHUNK.size:
            raise ValueError("no Data in WAV-file.")
        chunk_id, chunk_size = _CHUNK.unpack(raw)
        if chunk_id == _FACT:
            _skip(stream, chunk_size)
        elif chunk_id == _DATA:
            break
        else:
            raise ValueError("unrecognized chunk in WAV-file.")

    fields = {**header.__dict__, "data_size": chunk_size}
    return WavHeader(**fields)


class RawFile(Device):
    """Streams a raw sample file (or stdin for ``.``/``stdin``) in fixed-size blocks."""

    product = "FILE-RAW"
    BUFFER_SIZE = 16 * 16384
    _WAIT_TIMEOUT = 0.25

    def __init__(self) -> None:
        super().__init__(Format.CU8, 1536000)
        self.filename = ""
        self.buffer_count = 2
        self._file: BinaryIO | None = None
        self._fifo = BlockFifo(self.BUFFER_SIZE, self.buffer_count)
        self._eoi = False
        self._done = False
        self._read_thread: threading.Thread | None = None
        self._run_thread: threading.Thread | None = None

    def _read_async(self) -> None:
        chunk_size = self._fifo.block_size
        eof = False
        while self._file is not None and not eof and self.streaming:
            data = self._file.read(chunk_size) or b""
            if len(data) < chunk_size:
                eof = True
                data = data.ljust(chunk_size, b"\0")
            while self.is_streaming() and not self._fifo.push(data):
                time.sleep(0.001)
        self._eoi = True

    def _run(self) -> None:
        while self.is_streaming():
            if self._fifo.wait(self._WAIT_TIMEOUT):
                self.send(self._fifo.front())
                self._fifo.pop()
            elif self._eoi and self.is_streaming() and not self._fifo.wait(0):
                self._done = True
            elif self.is_streaming() and self.format is not Format.TXT:
                print("FILE: timeout.", file=sys.stderr)

    def play(self) -> None:
        if self.format is not Format.TXT:
            self._fifo = BlockFifo(self.BUFFER_SIZE, self.buffer_count)
        else:
            self._fifo = BlockFifo(1, self.BUFFER_SIZE)

        if self.filename in (".", "stdin"):
            self._file = sys.stdin.buffer
        else:
            try:
                self._file = open(self.filename, "rb")
            except OSError as exc:
                raise OSError("FILE: Cannot open input.") from exc

        super().play()
        self._done = False
        self._eoi = False

        self._read_thread = threading.Thread(target=self._read_async, daemon=True)
        self._run_thread = threading.Thread(target=self._run, daemon=True)
        self._read_thread.start()
        self._run_thread.start()

    def stop(self) -> None:
        if self.streaming:
            super().stop()
            self._fifo.halt()
            for thread in (self._read_thread, self._run_thread):
                if thread is not None:
                    thread.join()

    def close(self) -> None:
        if self._file is not None and self._file is not sys.stdin.buffer:
            self._file.close()
        self._file = None

    def is_streaming(self) -> bool:
        return self.streaming and not self._done

    def set(self, option: str, arg: str) -> "RawFile":
        if option.upper() == "FILE":
            self.filename = arg
        else:
            super().set(option, arg)
        return self

    def get(self) -> str:
        return super().get() + " file " + self.filename


class WavFile(Device):
    """Reads a stereo WAV file; each ``is_streaming`` call delivers one block."""

    product = "FILE-WAV"
    is_callback = False

    def __init__(self) -> None:
        super().__init__()
        self.filename = ""
        self.buffer_size = 16 * 16384
        self._file: BinaryIO | None = None
        self._eof = False

    def open(self, handle: int = 0) -> None:
        self.close()
        stream = open(self.filename, "rb")
        try:
            header = read_wav_header(stream)
        except Exception:
            stream.close()
            raise
        self._file = stream
        self._eof = False
        self.format = header.format
        self.sample_rate = header.samples_per_sec
        super().open(handle)

    def close(self) -> None:
        super().close()
        if self._file is not None:
            self._file.close()
        self._file = None

    def _accept_format(self, fmt: Format) -> None:
        # the format is dictated by the file header
        pass

    def is_streaming(self) -> bool:
        if self._file is None or self._eof or not self.streaming:
            return False
        data = self._file.read(self.buffer_size)
        if len(data) < self.buffer_size:
            self._eof = True
            data = data.ljust(self.buffer_size, b"\0")
        self.send(data)
        return True

    def set(self, option: str, arg: str) -> "WavFile":
        if option.upper() == "FILE":
            self.filename = arg
        else:
            super().set(option, arg)
        return self

    def get(self) -> str:
        return super().get() + " file " + self.filename