"""
Arduino-style serial port API (PySerial wrapper): background buffering,
timeout-bounded reads, and synchronous writes over asynchronous I/O.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from duino_serial._connection import SerialConnection

from duino_serial._exceptions import (
    SerialException,
    SerialIoClosed,
    SerialIoException,
    SerialOpenBusy,
    SerialOpenException,
)

from duino_serial._format import BIN, DEC, HEX, OCT, Format
from duino_serial._io import AsyncSerialIo, PySerialIo
from duino_serial._options import SerialOptions

__all__ = [n for n in dir() if not n.startswith("_")]
