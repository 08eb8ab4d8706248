"""
Asynchronous serial I/O facility: non-blocking read/write submission with
completion callbacks, and the pyserial-backed implementation of it.
"""

import abc
import concurrent.futures
import contextlib
import errno
import logging
import serial
import threading
import typing

from duino_serial import _exceptions
from duino_serial import _options

log = logging.getLogger("duino_serial.io")
data_log = logging.getLogger(log.name + ".data")

ReadCallback = typing.Callable[[_exceptions.SerialIoException | None, bytes], None]
WriteCallback = typing.Callable[[_exceptions.SerialIoException | None, int], None]

_PARITY = {
    "none": serial.PARITY_NONE,
    "odd": serial.PARITY_ODD,
    "even": serial.PARITY_EVEN,
}

_STOP_BITS = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}


class AsyncSerialIo(contextlib.AbstractContextManager, abc.ABC):
    """
    Completion-based access to one open device. Each submit_* call returns
    at once; its callback runs later (on some other thread, or inline if
    the facility is already closed) exactly once with (error, result).
    """

    port: str

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @abc.abstractmethod
    def submit_read(self, size: int, on_complete: ReadCallback) -> None:
        """Reads 1..size bytes; result is the bytes read"""

    @abc.abstractmethod
    def submit_write(self, data: bytes, on_complete: WriteCallback) -> None:
        """Writes data; result is the number of bytes written"""

    @abc.abstractmethod
    def apply(self, opts: _options.SerialOptions) -> None:
        """Applies line settings; raises SerialIoException on failure"""

    @abc.abstractmethod
    def cancel(self) -> None:
        """Fails outstanding and future requests with SerialIoClosed"""

    @abc.abstractmethod
    def close(self) -> None:
        """Cancels I/O and releases the device (idempotent)"""


class PySerialIo(AsyncSerialIo):
    def __init__(self, port: str, opts: _options.SerialOptions):
        self.port = port
        self._cancelled = threading.Event()
        self._closed = False

        log.debug("Opening %s (%s)", port, opts)
        try:
            self.pyserial = serial.Serial(port=port, **_pyserial_settings(opts))
        except OSError as ex:
            if ex.errno == errno.EBUSY:
                message = "Serial port busy (EBUSY)"
                raise _exceptions.SerialOpenBusy(message, port) from ex
            else:
                message = "Serial port open error"
                raise _exceptions.SerialOpenException(
                    message, port, code=ex.errno
                ) from ex
        except ValueError as ex:
            message = f"Bad serial settings ({ex})"
            raise _exceptions.SerialOpenException(message, port) from ex

        self._reader = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{port} reader"
        )
        self._writer = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{port} writer"
        )

    def __repr__(self) -> str:
        return f"PySerialIo({self.port!r})"

    def submit_read(self, size: int, on_complete: ReadCallback) -> None:
        try:
            if not self._cancelled.is_set():
                self._reader.submit(self._do_read, size, on_complete)
                return
        except RuntimeError:  # executor shut down by a racing close()
            pass
        on_complete(self._closed_error(), b"")

    def submit_write(self, data: bytes, on_complete: WriteCallback) -> None:
        try:
            if not self._cancelled.is_set():
                self._writer.submit(self._do_write, data, on_complete)
                return
        except RuntimeError:  # executor shut down by a racing close()
            pass
        on_complete(self._closed_error(), 0)

    def apply(self, opts: _options.SerialOptions) -> None:
        try:
            for name, value in _pyserial_settings(opts).items():
                setattr(self.pyserial, name, value)
        except (OSError, ValueError) as ex:
            message = f"Can't apply serial settings ({ex})"
            code = getattr(ex, "errno", None) or errno.EINVAL
            raise _exceptions.SerialIoException(message, self.port, code) from ex
        log.debug("Applied %s to %s", opts, self.port)

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return

        self._cancelled.set()
        try:
            self.pyserial.cancel_read()
            self.pyserial.cancel_write()
            log.debug("Cancelled %s I/O", self.port)
        except OSError:
            log.warning("Can't cancel %s I/O", self.port, exc_info=True)

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self.cancel()
        log.debug("Joining %s I/O workers", self.port)
        self._reader.shutdown(wait=True)
        self._writer.shutdown(wait=True)
        self.pyserial.close()
        log.debug("Closed %s", self.port)

    def _do_read(self, size: int, on_complete: ReadCallback) -> None:
        if self._cancelled.is_set():
            on_complete(self._closed_error(), b"")
            return

        incoming, error = b"", None
        try:
            # Block for at least one byte, then grab what else is waiting
            incoming = self.pyserial.read(size=1)
            if incoming and size > 1:
                waiting = min(self.pyserial.in_waiting, size - 1)
                if waiting > 0:
                    incoming += self.pyserial.read(size=waiting)
        except OSError as ex:
            message = "Serial read error"
            error = _exceptions.SerialIoException(message, self.port, ex.errno)
            error.__cause__ = ex
            data_log.warning("%s: %s", self.port, message, exc_info=True)

        if not incoming and not error and self._cancelled.is_set():
            error = self._closed_error()
        if incoming:
            data_log.debug("%s: Read %d/%db", self.port, len(incoming), size)
        on_complete(error, incoming)

    def _do_write(self, data: bytes, on_complete: WriteCallback) -> None:
        if self._cancelled.is_set():
            on_complete(self._closed_error(), 0)
            return

        written, error = 0, None
        try:
            written = self.pyserial.write(data) or 0
        except OSError as ex:
            message = "Serial write error"
            error = _exceptions.SerialIoException(message, self.port, ex.errno)
            error.__cause__ = ex
            data_log.warning("%s: %s", self.port, message, exc_info=True)

        if written < len(data) and not error and self._cancelled.is_set():
            error = self._closed_error()
        data_log.debug("%s: Wrote %d/%db", self.port, written, len(data))
        on_complete(error, written)

    def _closed_error(self) -> _exceptions.SerialIoClosed:
        return _exceptions.SerialIoClosed("Serial port was closed", self.port)


def _pyserial_settings(opts: _options.SerialOptions) -> dict:
    return dict(
        baudrate=opts.baud,
        bytesize=opts.character_size,
        parity=_PARITY[opts.parity],
        stopbits=_STOP_BITS[opts.stop_bits],
        xonxoff=opts.flow_control == "software",
        rtscts=opts.flow_control == "hardware",
    )
