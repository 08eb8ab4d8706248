import concurrent.futures
import contextlib
import logging
import threading
import typing

from duino_serial import _buffer
from duino_serial import _exceptions
from duino_serial import _io

log = logging.getLogger("duino_serial.ingestion")
data_log = logging.getLogger(log.name + ".data")

CHUNK_SIZE = 256


class IngestionLoop(contextlib.AbstractContextManager):
    """
    Background thread that keeps one read request outstanding against the
    I/O facility and appends each completion to the receive buffer. Stalls
    (without reading) while the buffer is full, and exits for good on the
    first transport error.
    """

    def __init__(
        self,
        io: _io.AsyncSerialIo,
        buffer: _buffer.ReceiveBuffer,
        on_error: typing.Callable[[_exceptions.SerialException], None],
    ) -> None:
        self._io = io
        self._buffer = buffer
        self._on_error = on_error
        self._thread: threading.Thread | None = None
        self._stopping = False
        self._outstanding = False

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()

    @property
    def outstanding(self) -> bool:
        """True while a read request is in flight"""

        with self._buffer.monitor:
            return self._outstanding

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self._thread:
            raise RuntimeError(f"{self._io.port}: Ingestion already started")
        name = f"{self._io.port} ingestion"
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        with self._buffer.monitor:
            self._stopping = True
            self._buffer.monitor.notify_all()

        self._io.cancel()
        if self._thread:
            log.debug("Joining %s ingestion thread", self._io.port)
            self._thread.join()

    def _run(self) -> None:
        log.debug("Starting thread")
        try:
            self._ingest()
        except Exception as exc:
            log.exception("%s: Ingestion failed", self._io.port)
            message = f"Ingestion failed: {exc!r}"
            error = _exceptions.SerialIoException(message, self._io.port)
            self._on_error(error)
        finally:
            with self._buffer.monitor:
                self._outstanding = False
            self._buffer.finish()
            log.debug("Stopping thread")

    def _ingest(self) -> None:
        monitor = self._buffer.monitor
        while True:
            with monitor:
                while not self._stopping and self._buffer.room() <= 0:
                    data_log.debug("Buffer full (%db), stalling", len(self._buffer))
                    monitor.wait()
                if self._stopping:
                    return
                size = self._buffer.reserve(CHUNK_SIZE)
                self._outstanding = True

            done: concurrent.futures.Future = concurrent.futures.Future()
            self._io.submit_read(size, lambda e, d: done.set_result((e, d)))
            error, incoming = done.result()

            with monitor:
                self._outstanding = False
                if incoming:
                    data_log.debug(
                        "Read %db buf=%db", len(incoming), len(self._buffer)
                    )
                    self._buffer.append(incoming)
                stopping = self._stopping

            if error:
                if not stopping:
                    log.warning("%s", error)
                    self._on_error(error)
                return
