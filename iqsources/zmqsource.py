"""Source that subscribes to raw IQ samples published on a ZeroMQ socket."""

from __future__ import annotations

import sys
import threading
import time

import zmq

from .device import BlockFifo, Description, Device, DeviceType, Format


class ZmqSource(Device):
    """Receives raw samples from a ZeroMQ publisher at ``endpoint``."""

    product = "ZMQ"
    BUFFER_SIZE = 16 * 16384
    _WAIT_TIMEOUT = 1.0

    def __init__(self) -> None:
        super().__init__(Format.CU8, 288000)
        self.endpoint = ""
        self.timeout = 100
        self._context: zmq.Context | None = None
        self._socket: zmq.Socket | None = None
        self._fifo = BlockFifo(self.BUFFER_SIZE)
        self._async_thread: threading.Thread | None = None
        self._run_thread: threading.Thread | None = None

    def open(self, handle: int = 0) -> None:
        context = zmq.Context()
        sock = context.socket(zmq.SUB)
        try:
            try:
                sock.connect(self.endpoint)
            except zmq.ZMQError as exc:
                print(f"ZMQ: subscribing to {self.endpoint}", file=sys.stderr)
                raise ConnectionError("ZMQ: cannot connect subscriber.") from exc
            try:
                sock.setsockopt(zmq.SUBSCRIBE, b"")
            except zmq.ZMQError as exc:
                raise ConnectionError("ZMQ: cannot set socket option ZMQ_SUBSCRIBE.") from exc
            try:
                sock.setsockopt(zmq.RCVTIMEO, self.timeout)
            except zmq.ZMQError as exc:
                raise ConnectionError("ZMQ: cannot set socket option ZMQ_RCVTIMEO.") from exc
        except ConnectionError:
            sock.close(linger=0)
            context.term()
            raise
        self._context = context
        self._socket = sock
        super().open(handle)

    def close(self) -> None:
        super().close()
        if self._socket is not None:
            self._socket.close(linger=0)
            self._socket = None
        if self._context is not None:
            self._context.term()
            self._context = None

    def play(self) -> None:
        if self._socket is None:
            raise RuntimeError("ZMQ: device not open.")
        self._fifo = BlockFifo(self.BUFFER_SIZE)
        super().play()

        self._async_thread = threading.Thread(target=self._run_async, daemon=True)
        self._run_thread = threading.Thread(target=self._run, daemon=True)
        self._async_thread.start()
        self._run_thread.start()
        time.sleep(0.01)

    def stop(self) -> None:
        if self.streaming:
            super().stop()
            self._fifo.halt()
            for thread in (self._async_thread, self._run_thread):
                if thread is not None:
                    thread.join()

    def _run_async(self) -> None:
        while self.is_streaming():
            try:
                data = self._socket.recv()
            except zmq.Again:
                continue
            data = data[: self.BUFFER_SIZE]
            if data and not self._fifo.push(data):
                print("ZMQ: buffer overrun.", file=sys.stderr)

    def _run(self) -> None:
        while self.is_streaming():
            if self._fifo.wait(self._WAIT_TIMEOUT):
                self.send(self._fifo.front())
                self._fifo.pop()
            elif self.is_streaming():
                print("ZMQ: no signal.", file=sys.stderr)

    def device_list(self) -> list[Description]:
        return [Description("ZMQ", "ZMQ", "ZMQ", 0, DeviceType.ZMQ)]

    def set(self, option: str, arg: str) -> "ZmqSource":
        if option.upper() == "ENDPOINT":
            self.endpoint = arg
        else:
            super().set(option, arg)
        return self

    def get(self) -> str:
        return super().get() + " endpoint " + self.endpoint