"""IQ sample sources: raw and WAV files, rtl_tcp, ZeroMQ and SpyServer."""

__version__ = "0.1.0"
__all__ = ["device", "filesource", "rtltcp", "zmqsource", "spyserver"]