import concurrent.futures
import contextlib
import logging
import threading
from typing import Annotated

import pydantic

from duino_serial import _buffer
from duino_serial import _exceptions
from duino_serial import _format
from duino_serial import _ingestion
from duino_serial import _io
from duino_serial import _options
from duino_serial import _timeout_math

log = logging.getLogger("duino_serial.connection")
data_log = logging.getLogger(log.name + ".data")

ByteValue = Annotated[int, pydantic.Field(ge=0, le=255)]
Count = Annotated[int, pydantic.Field(ge=0)]

_ALLOW_IO = pydantic.ConfigDict(arbitrary_types_allowed=True)


class SerialConnection(contextlib.AbstractContextManager):
    """
    An open serial port with an Arduino-style API. Incoming bytes are
    buffered by a background thread; reads take from that buffer (some
    waiting up to the configured timeout), and writes block until the
    transport reports completion. I/O faults never raise from the read/write
    API; poll good() / get_err() instead.
    """

    @pydantic.validate_call(config=_ALLOW_IO)
    def __init__(
        self,
        port: str | _io.AsyncSerialIo,
        opts: _options.SerialOptions | int = _options.SerialOptions(),
    ):
        if isinstance(opts, int):
            opts = _options.SerialOptions(baud=opts)

        self._opts = opts
        self._closed = False
        self._errors = _ErrorSlot()
        self._gate = _WriteGate()
        self._buffer = _buffer.ReceiveBuffer(opts.buffer_size)

        with contextlib.ExitStack() as cleanup:
            if isinstance(port, str):
                port = _io.PySerialIo(port, opts)
            self._io = cleanup.enter_context(port)
            self._ingestion = cleanup.enter_context(
                _ingestion.IngestionLoop(self._io, self._buffer, self._errors.record)
            )
            cleanup.callback(self._gate.abort, self._io.port)
            self._ingestion.start()
            self._cleanup = cleanup.pop_all()

        log.debug("Opened %s", self._io.port)

    def __del__(self) -> None:
        if hasattr(self, "_cleanup"):
            self._cleanup.close()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialConnection({self._io.port!r})"

    @property
    def port_name(self) -> str:
        return self._io.port

    @property
    def is_open(self) -> bool:
        return not self._closed

    @pydantic.validate_call
    def close(self) -> None:
        if not self._closed:
            log.debug("Closing %s", self._io.port)
        self._closed = True
        self._cleanup.close()

    #
    # Error state
    #

    @property
    def last_error(self) -> _exceptions.SerialException | None:
        return self._errors.get()

    @pydantic.validate_call
    def get_err(self) -> int:
        """The errno of the last recorded failure, or 0 if none"""

        error = self._errors.get()
        return error.errno if error else 0

    @pydantic.validate_call
    def good(self) -> bool:
        return self.is_open and self._errors.get() is None

    @pydantic.validate_call
    def clear(self) -> None:
        """Forgets the last error and discards all unread bytes"""

        self._errors.clear()
        discarded = self._buffer.drain_all()
        data_log.debug("Cleared, discarded %db", len(discarded))

    #
    # Reading
    #

    @pydantic.validate_call
    def read(self) -> int | None:
        """Takes the next byte, or returns None at once if none is buffered"""

        return self._buffer.pop_front()

    @pydantic.validate_call
    def peek(self) -> int | None:
        return self._buffer.peek_front()

    @pydantic.validate_call
    def read_buffer(self) -> bytes:
        return self._buffer.drain_all()

    @pydantic.validate_call
    def flush(self) -> None:
        self._buffer.drain_all()

    @pydantic.validate_call
    def available(self) -> int:
        return len(self._buffer)

    @pydantic.validate_call
    def idle(self) -> bool:
        return not self._ingestion.outstanding and not len(self._buffer)

    @pydantic.validate_call
    def read_bytes(self, max_count: Count = 0xFFFF) -> bytes:
        """Collects up to 'max_count' bytes, waiting up to the timeout"""

        return self._read_until(None, max_count)

    @pydantic.validate_call
    def read_bytes_until(
        self, terminator: ByteValue, max_count: Count = 0xFFFF
    ) -> bytes:
        """
        Like read_bytes(), but also stops after 'terminator', which is
        removed from the buffer and left out of the result.
        """

        return self._read_until(terminator, max_count)

    @pydantic.validate_call
    def read_string_until(self, terminator: str = "\0") -> str:
        encoding = self._opts.encoding
        term_bytes = terminator.encode(encoding)
        if len(term_bytes) != 1:
            raise ValueError(f"Terminator {terminator!r} is not one byte")
        data = self._read_until(term_bytes[0], None)
        return data.decode(encoding, errors="replace")

    @pydantic.validate_call
    def read_string(self) -> str:
        return self.read_string_until("\0")

    def _read_until(self, terminator: int | None, max_count: int | None) -> bytes:
        if max_count is not None and max_count <= 0:
            return b""

        deadline = _timeout_math.to_deadline(self._opts.timeout_ms)
        out = bytearray()
        monitor = self._buffer.monitor
        with monitor:
            while True:
                need = None if max_count is None else max_count - len(out)
                chunk, found = self._buffer.take(need, terminator)
                out.extend(chunk)
                if found or len(out) == max_count or self._buffer.finished:
                    return bytes(out)

                wait = _timeout_math.from_deadline(deadline)
                if wait <= 0:
                    data_log.debug("Read timeout with %db", len(out))
                    return bytes(out)
                monitor.wait(timeout=wait)

    #
    # Writing
    #

    @pydantic.validate_call
    def write(self, data: bytes | ByteValue) -> int:
        """Sends data (or one byte), returning once the transport is done"""

        if isinstance(data, int):
            data = bytes([data])
        if not data:
            return 0

        try:
            done = self._gate.acquire(self._io.port)

            def on_complete(error, count):
                if error:
                    self._errors.record(error)
                self._gate.complete(done, count)

            self._io.submit_write(bytes(data), on_complete)
            return done.result()
        except _exceptions.SerialIoClosed as exc:
            self._errors.record(exc)
            return 0

    @pydantic.validate_call
    def print(self, value: _format.Printable, fmt: int = _format.DEC) -> int:
        return self.write(_format.to_bytes(value, fmt, self._opts.encoding))

    @pydantic.validate_call
    def println(self, value: _format.Printable = "", fmt: int = _format.DEC) -> int:
        text = _format.to_bytes(value, fmt, self._opts.encoding)
        return self.write(text + b"\n")

    #
    # Configuration
    #

    @property
    def options(self) -> _options.SerialOptions:
        return self._opts

    @property
    def baud(self) -> int:
        return self._opts.baud

    @property
    def flow_control(self) -> _options.FlowControlType:
        return self._opts.flow_control

    @property
    def character_size(self) -> int:
        return self._opts.character_size

    @property
    def parity(self) -> _options.ParityType:
        return self._opts.parity

    @property
    def stop_bits(self) -> _options.StopBitsType:
        return self._opts.stop_bits

    @property
    def buffer_size(self) -> int:
        return self._buffer.capacity

    @property
    def timeout(self) -> int:
        """Read timeout in milliseconds"""

        return self._opts.timeout_ms

    @pydantic.validate_call
    def set_baud(self, baud: int = 115200) -> None:
        self._reconfigure(baud=baud)

    @pydantic.validate_call
    def set_flow_control(self, flow: _options.FlowControlType = "none") -> None:
        self._reconfigure(flow_control=flow)

    @pydantic.validate_call
    def set_character_size(self, size: int = 8) -> None:
        self._reconfigure(character_size=size)

    @pydantic.validate_call
    def set_parity(self, parity: _options.ParityType = "none") -> None:
        self._reconfigure(parity=parity)

    @pydantic.validate_call
    def set_stop_bits(self, stop_bits: _options.StopBitsType = 1) -> None:
        self._reconfigure(stop_bits=stop_bits)

    @pydantic.validate_call
    def set_timeout(self, timeout_ms: Count = 1000) -> None:
        self._opts = self._updated(timeout_ms=timeout_ms)

    @pydantic.validate_call
    def set_buffer_size(self, size: int = 256) -> bool:
        """Changes buffer capacity; refused (False) while unread bytes exist"""

        opts = self._updated(buffer_size=size)
        if not self._buffer.resize(size):
            unread = len(self._buffer)
            log.warning(
                "%s: Can't resize buffer to %db with %db unread",
                self._io.port,
                size,
                unread,
            )
            return False

        self._opts = opts
        return True

    def _updated(self, **changes) -> _options.SerialOptions:
        return _options.SerialOptions.model_validate(
            {**self._opts.model_dump(), **changes}
        )

    def _reconfigure(self, **changes) -> None:
        self._opts = self._updated(**changes)
        if self._closed:
            return
        try:
            self._io.apply(self._opts)
        except _exceptions.SerialIoException as exc:
            log.warning("%s", exc)
            self._errors.record(exc)


class _ErrorSlot:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._error: _exceptions.SerialException | None = None

    def record(self, error: _exceptions.SerialException) -> None:
        with self._lock:
            self._error = error
        log.debug("Recorded error: %s", error)

    def get(self) -> _exceptions.SerialException | None:
        with self._lock:
            return self._error

    def clear(self) -> None:
        with self._lock:
            self._error = None


class _WriteGate:
    """Allows one write in flight; each holds a future for its completion"""

    def __init__(self) -> None:
        self._monitor = threading.Condition()
        self._in_flight: concurrent.futures.Future[int] | None = None
        self._closed = False

    def acquire(self, port: str) -> concurrent.futures.Future[int]:
        with self._monitor:
            while self._in_flight and not self._closed:
                self._monitor.wait()
            if self._closed:
                raise _exceptions.SerialIoClosed("Serial port was closed", port)
            self._in_flight = concurrent.futures.Future()
            return self._in_flight

    def complete(self, done: concurrent.futures.Future[int], count: int) -> None:
        with self._monitor:
            if not done.done():
                done.set_result(count)
            if self._in_flight is done:
                self._in_flight = None
            self._monitor.notify_all()

    def abort(self, port: str) -> None:
        with self._monitor:
            self._closed = True
            if self._in_flight and not self._in_flight.done():
                message = "Serial port closed during write"
                error = _exceptions.SerialIoClosed(message, port)
                self._in_flight.set_exception(error)
            self._in_flight = None
            self._monitor.notify_all()
