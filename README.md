# iqsources

Sources of complex IQ samples for software-defined radio pipelines. Each
source is a `Device` (from `iqsources.device`) that is configured with textual
options through `set(option, arg)`, started with `play()` and stopped with
`stop()`. While it streams, it hands blocks of raw sample bytes to every
receiver registered with `connect()`; a receiver is called as
`receiver(format, data)`, where `format` is a `Format` member.

Available sources:

- `RawFile` (`iqsources.filesource`): raw sample files, or standard input
  with `file .` or `file stdin`. Default format `CU8` at 1,536,000
  samples/s. Data is delivered in blocks of 262,144 bytes; the last block is
  padded with zero bytes, after which `is_streaming()` turns false.
- `WavFile` (`iqsources.filesource`): two-channel WAV files holding 8-bit
  unsigned (`CU8`), 16-bit signed (`CS16`) or 32-bit float (`CF32`) samples.
  `open()` reads the header; format and sample rate come from it.
- `RtlTcp` (`iqsources.rtltcp`): an `rtl_tcp` server, or a bare TCP stream
  with `protocol none`. The connection is made in `play()`.
- `ZmqSource` (`iqsources.zmqsource`): a ZeroMQ publisher, subscribed to
  through a SUB socket. Call `open()` before `play()`.
- `SpyServer` (`iqsources.spyserver`): a SpyServer IQ stream. `open()`
  connects, performs the handshake and picks the offered sample rate
  (at least 96 kHz) nearest to the configured one; call it before `play()`.

## Installation

```
pip install .
```

## Usage

```python
from iqsources.rtltcp import RtlTcp

received = []

device = RtlTcp()
device.set("host", "localhost").set("port", "1234")
device.set("rate", "288000")
device.set("tuner", "auto")
device.frequency = 162_000_000
device.connect(lambda fmt, block: received.append((fmt, block)))

device.play()
# ... samples arrive in `received` ...
device.stop()
device.close()

print(device.get())
```

The tuning frequency is the `frequency` attribute (in Hz); there is no
option string for it.

A WAV file is read synchronously: each call to `is_streaming()` reads and
sends the next block, and returns false once the file is exhausted.

```python
from iqsources.filesource import WavFile

wav = WavFile()
wav.set("file", "recording.wav")
wav.open(0)
wav.play()
while wav.is_streaming():
    pass
wav.close()
```

`read_wav_header(stream)` validates a WAV header on its own and leaves the
stream at the start of the sample data.

## Common options

Every device accepts, in addition to its own options:

| option                  | value                                   |
|-------------------------|-----------------------------------------|
| `rate`, `sample_rate`   | integer, 0 to 20,000,000                |
| `bw`, `bandwidth`       | integer, 0 to 1,000,000                 |
| `freqoffset`            | integer, -150 to 150                    |
| `format`                | `CU8`, `CS8`, `CS16`, `CF32` or `TXT`   |

Option names and values such as `on`/`off` and `auto` are case-insensitive.
An unknown option or an out-of-range value raises `ValueError`. `WavFile`
and `SpyServer` accept `format` but ignore it: the file header or the server
decides the format.

## Device options

| device      | option     | value                                      |
|-------------|------------|--------------------------------------------|
| `RawFile`   | `file`     | path, or `.`/`stdin`                       |
| `WavFile`   | `file`     | path                                       |
| `RtlTcp`    | `host`     | host name (default `localhost`)            |
| `RtlTcp`    | `port`     | port (default `1234`)                      |
| `RtlTcp`    | `tuner`    | `auto` or a gain from 0 to 50              |
| `RtlTcp`    | `rtlagc`   | `on` or `off`                              |
| `RtlTcp`    | `timeout`  | seconds, 1 to 60                           |
| `RtlTcp`    | `protocol` | `rtltcp` or `none`                         |
| `ZmqSource` | `endpoint` | ZeroMQ endpoint, e.g. `tcp://localhost:5555` |
| `SpyServer` | `host`     | host name (default `localhost`)            |
| `SpyServer` | `port`     | port (default `1234`)                      |
| `SpyServer` | `gain`     | 0 to 50; 0 leaves the server gain alone    |

`get()` returns the current settings as a string of option/value pairs, and
`device_list()` returns `Description` entries for the device.

## Building blocks

- `iqsources.device`: `Format`, `DeviceType`, `Description`, the thread-safe
  `BlockFifo`, the `Device` base class and the parsers `parse_format`,
  `parse_integer`, `parse_float`, `parse_switch`, `parse_auto_float` with
  their counterparts `format_switch` and `format_auto`.
- `iqsources.rtltcp`: `encode_command(command, param)` builds an rtl_tcp
  command.
- `iqsources.spyserver`: message structures (`MessageHeader`, `DeviceInfo`,
  `ClientSync`), the protocol enums, and `encode_command`, `encode_setting`,
  `encode_handshake`, `decimation_rates` and `closest_rate`.

## What this package does not do

- It only delivers raw sample bytes; it does not demodulate or decode them.
- It has no command-line program.
- It does not drive USB-attached radios. `DeviceType` names kinds such as
  `RTLSDR`, `AIRSPY` or `HACKRF`, but the package has no device class for
  them; use `RtlTcp`, `SpyServer` or `ZmqSource` to reach such hardware
  through a server.

## Tests

```
pip install .[test]
pytest
```