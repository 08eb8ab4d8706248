import threading


class ReceiveBuffer:
    """
    Thread-safe FIFO of received bytes with a fixed capacity. All access is
    serialized by 'monitor', which is notified whenever bytes are added or
    removed, so readers can wait for data and the ingestion loop for room.
    """

    def __init__(self, capacity: int):
        self.monitor = threading.Condition()
        self._data = bytearray()
        self._capacity = capacity
        self._reserved = 0
        self._finished = False

    def __len__(self) -> int:
        with self.monitor:
            return len(self._data)

    def __repr__(self) -> str:
        with self.monitor:
            return f"ReceiveBuffer({len(self._data)}/{self._capacity}b)"

    @property
    def capacity(self) -> int:
        with self.monitor:
            return self._capacity

    @property
    def finished(self) -> bool:
        """True once no more bytes will ever be appended"""

        with self.monitor:
            return self._finished

    def room(self) -> int:
        with self.monitor:
            return max(0, self._capacity - len(self._data))

    def reserve(self, max_size: int) -> int:
        """
        Grants the next append() up to 'max_size' bytes, capped at the
        current room. The grant holds even if resize() shrinks the capacity
        before the bytes arrive.
        """

        with self.monitor:
            self._reserved = min(max_size, self.room())
            return self._reserved

    def append(self, data: bytes) -> None:
        with self.monitor:
            assert len(data) <= max(self.room(), self._reserved)
            self._reserved = 0
            self._data.extend(data)
            self.monitor.notify_all()

    def peek_front(self) -> int | None:
        with self.monitor:
            return self._data[0] if self._data else None

    def pop_front(self) -> int | None:
        with self.monitor:
            if not self._data:
                return None
            value = self._data.pop(0)
            self.monitor.notify_all()
            return value

    def drain_all(self) -> bytes:
        with self.monitor:
            out = bytes(self._data)
            self._data.clear()
            self.monitor.notify_all()
            return out

    def take(
        self, max_count: int | None = None, terminator: int | None = None
    ) -> tuple[bytes, bool]:
        """
        Removes up to 'max_count' bytes (None = no limit) from the front.
        If 'terminator' occurs within that span, stops there instead and
        removes (but does not return) the terminator.
        Returns the bytes and whether the terminator was found.
        """

        with self.monitor:
            end = len(self._data) if max_count is None else max_count
            if terminator is not None:
                if (index := self._data.find(terminator, 0, end)) >= 0:
                    out = bytes(self._data[:index])
                    del self._data[: index + 1]
                    self.monitor.notify_all()
                    return out, True

            out = bytes(self._data[:end])
            if out:
                del self._data[:end]
                self.monitor.notify_all()
            return out, False

    def resize(self, capacity: int) -> bool:
        """Changes capacity, only allowed while no unread bytes remain"""

        with self.monitor:
            if self._data:
                return False
            self._capacity = capacity
            self.monitor.notify_all()
            return True

    def finish(self) -> None:
        with self.monitor:
            self._finished = True
            self.monitor.notify_all()
