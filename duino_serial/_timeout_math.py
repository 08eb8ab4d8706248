import threading
import time

TIMEOUT_MAX = threading.TIMEOUT_MAX


def to_deadline(timeout_ms: int) -> float:
    """Converts a relative timeout in milliseconds to a monotonic deadline"""

    if timeout_ms <= 0:
        return 0.0
    return min(time.monotonic() + timeout_ms / 1000, TIMEOUT_MAX)


def from_deadline(deadline: float) -> float:
    """Seconds remaining until a deadline (never negative)"""

    if deadline >= TIMEOUT_MAX:
        return TIMEOUT_MAX
    return max(0.0, deadline - time.monotonic())
