import contextlib
import io
import ok_logging_setup
import os
import pty
import pytest
import threading
import typing

import duino_serial

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "duino_serial=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


class FakeSerialIo(duino_serial.AsyncSerialIo):
    """
    In-memory I/O facility. Bytes given to feed() satisfy read requests;
    writes complete at once unless hold_writes is set, in which case the
    test releases them with complete_write(). Every submission and
    completion is logged in 'events'.
    """

    def __init__(self, port: str = "fake"):
        self.port = port
        self.monitor = threading.Condition()
        self.incoming = bytearray()
        self.written = bytearray()
        self.read_sizes: list[int] = []
        self.events: list[tuple[str, bytes]] = []
        self.applied: list[duino_serial.SerialOptions] = []
        self.apply_error: Exception | None = None
        self.read_error: Exception | None = None
        self.hold_writes = False
        self.cancelled = False
        self.closed = False
        self._read_request = None
        self._write_requests: list = []

    def submit_read(self, size, on_complete):
        with self.monitor:
            self.read_sizes.append(size)
            self._read_request = (size, on_complete)
            self.monitor.notify_all()
        self._deliver()

    def submit_write(self, data, on_complete):
        with self.monitor:
            if self.cancelled:
                closed = duino_serial.SerialIoClosed("closed", self.port)
            else:
                closed = None
                self.events.append(("submit", data))
                self._write_requests.append((data, on_complete))
                self.monitor.notify_all()
            hold = self.hold_writes
        if closed:
            on_complete(closed, 0)
        elif not hold:
            self.complete_write()

    def apply(self, opts):
        if self.apply_error:
            raise self.apply_error
        self.applied.append(opts)

    def cancel(self):
        with self.monitor:
            self.cancelled = True
            writes, self._write_requests = self._write_requests, []
        for data, on_complete in writes:
            on_complete(duino_serial.SerialIoClosed("closed", self.port), 0)
        self._deliver()

    def close(self):
        self.cancel()
        self.closed = True

    def feed(self, data: bytes, wait: bool = True):
        """Makes data arrive; if 'wait', until it's all been handed over"""

        with self.monitor:
            self.incoming.extend(data)
        self._deliver()
        if wait:
            self.wait_for(lambda: not self.incoming and self._read_request)

    def fail(self, error: Exception):
        with self.monitor:
            self.read_error = error
        self._deliver()

    def complete_write(self, count: int | None = None, error=None):
        with self.monitor:
            data, on_complete = self._write_requests.pop(0)
            self.events.append(("complete", data))
            if not error:
                self.written.extend(data)
        on_complete(error, len(data) if count is None else count)

    def pending_writes(self) -> int:
        with self.monitor:
            return len(self._write_requests)

    def read_pending(self) -> bool:
        with self.monitor:
            return self._read_request is not None

    def wait_for(self, predicate, timeout: float = 5.0):
        with self.monitor:
            assert self.monitor.wait_for(predicate, timeout=timeout)

    def _deliver(self):
        with self.monitor:
            if not self._read_request:
                return
            size, on_complete = self._read_request
            if self.cancelled:
                error, data = duino_serial.SerialIoClosed("closed", self.port), b""
            elif self.read_error:
                error, data = self.read_error, b""
            elif self.incoming:
                error, data = None, bytes(self.incoming[:size])
                del self.incoming[:size]
            else:
                return
            self._read_request = None
            self.monitor.notify_all()
        on_complete(error, data)


@pytest.fixture
def fake_io():
    return FakeSerialIo()


@pytest.fixture
def fake_conn(fake_io):
    """Connects to fake_io with a given timeout (ms) and buffer size"""

    with contextlib.ExitStack() as cleanup:

        def connect(timeout_ms: int = 1000, buffer_size: int = 4096):
            opts = duino_serial.SerialOptions(
                timeout_ms=timeout_ms, buffer_size=buffer_size
            )
            conn = duino_serial.SerialConnection(fake_io, opts)
            cleanup.enter_context(conn)
            fake_io.wait_for(fake_io.read_pending)
            return conn

        yield connect
