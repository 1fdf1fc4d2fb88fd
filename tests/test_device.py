import threading

import pytest

from iqsources.device import (
    BlockFifo,
    Description,
    Device,
    DeviceType,
    Format,
    format_auto,
    format_switch,
    parse_auto_float,
    parse_float,
    parse_format,
    parse_integer,
    parse_switch,
)


def test_parse_format_case_insensitive():
    assert parse_format("cu8") is Format.CU8
    assert parse_format("CF32") is Format.CF32
    assert parse_format("txt") is Format.TXT


@pytest.mark.parametrize("text", ["xyz", "", "UNKNOWN"])
def test_parse_format_rejects(text):
    with pytest.raises(ValueError):
        parse_format(text)


def test_parse_integer_in_range():
    assert parse_integer("150", -150, 150) == 150
    assert parse_integer(" -3 ", -150, 150) == -3


@pytest.mark.parametrize("text", ["151", "-151", "abc", "1.5"])
def test_parse_integer_rejects(text):
    with pytest.raises(ValueError):
        parse_integer(text, -150, 150)


def test_parse_float():
    assert parse_float("12.5", 0, 50) == 12.5
    with pytest.raises(ValueError):
        parse_float("50.1", 0, 50)
    with pytest.raises(ValueError):
        parse_float("x", 0, 50)


def test_parse_switch():
    assert parse_switch("on") is True
    assert parse_switch("OFF") is False
    assert parse_switch("high", "HIGH", "LOW") is True
    assert parse_switch("Low", "HIGH", "LOW") is False
    with pytest.raises(ValueError):
        parse_switch("maybe")


def test_parse_auto_float():
    assert parse_auto_float("auto", 0, 50) == (True, None)
    assert parse_auto_float("20", 0, 50) == (False, 20.0)
    with pytest.raises(ValueError):
        parse_auto_float("60", 0, 50)


def test_format_helpers():
    assert format_switch(True) == "ON"
    assert format_switch(False) == "OFF"
    assert format_auto(True, 33.0) == "AUTO"
    assert format_auto(False, 7) == "7"


def test_description_str():
    d = Description("RTLTCP", "RTLTCP", "RTLTCP", 0, DeviceType.RTLTCP)
    assert str(d) == "RTLTCP, RTLTCP, SN: RTLTCP"
    assert d.handle == 0


def test_fifo_collects_blocks():
    fifo = BlockFifo(4, 2)
    assert fifo.push(b"ab")
    assert fifo.wait(0.01) is False
    assert fifo.push(b"cdef")
    assert fifo.wait(0.01) is True
    assert fifo.front() == b"abcd"
    fifo.pop()
    assert fifo.wait(0.01) is False
    assert fifo.push(b"gh")
    assert fifo.front() == b"efgh"


def test_fifo_overflow_rejected_without_change():
    fifo = BlockFifo(4, 2)
    assert fifo.push(b"12345678")
    assert fifo.push(b"9") is False
    assert fifo.front() == b"1234"
    fifo.pop()
    fifo.pop()
    with pytest.raises(IndexError):
        fifo.front()


def test_fifo_halt_wakes_waiter():
    fifo = BlockFifo(4, 2)
    results = []
    t = threading.Thread(target=lambda: results.append(fifo.wait(5.0)))
    t.start()
    fifo.halt()
    t.join(2.0)
    assert results == [False]
    assert fifo.push(b"abcd") is False


def test_fifo_invalid_size():
    with pytest.raises(ValueError):
        BlockFifo(0, 2)


def test_device_set_and_get():
    dev = Device(Format.CU8, 1536000)
    assert dev.get() == "rate 1536K format CU8"
    result = dev.set("bw", "200000").set("FreqOffset", "-5").set("format", "cs16")
    assert result is dev
    assert dev.tuner_bandwidth == 200000
    assert dev.freq_offset == -5
    assert dev.format is Format.CS16
    assert " bw 200K" in dev.get()
    assert " freqoffset -5" in dev.get()
    dev.set("sample_rate", "288000")
    assert dev.sample_rate == 288000


def test_device_set_errors():
    dev = Device()
    with pytest.raises(ValueError):
        dev.set("nonsense", "1")
    with pytest.raises(ValueError):
        dev.set("rate", "20000001")
    with pytest.raises(ValueError):
        dev.set("format", "bogus")


def test_device_play_stop_and_send():
    dev = Device(Format.CF32, 0)
    received = []
    dev.connect(lambda fmt, data: received.append((fmt, data)))
    assert dev.is_streaming() is False
    dev.play()
    assert dev.is_streaming() is True
    dev.send(b"\x01\x02")
    dev.stop()
    assert dev.is_streaming() is False
    assert received == [(Format.CF32, b"\x01\x02")]
    assert dev.device_list() == []