"""Text rendering of values for SerialConnection.print() and println()"""

import enum
import typeguard


class Format(enum.IntEnum):
    BIN = 0
    OCT = 1
    DEC = 2
    HEX = 3


BIN, OCT, DEC, HEX = Format.BIN, Format.OCT, Format.DEC, Format.HEX

_INT_CODES = {BIN: "b", OCT: "o", DEC: "d", HEX: "X"}

Printable = int | float | str | bytes


@typeguard.typechecked
def to_bytes(value: Printable, fmt: int = DEC, encoding: str = "utf-8") -> bytes:
    """
    Renders 'value' for output: integers in the radix selected by 'fmt',
    floats with 'fmt' decimal places, text encoded, raw bytes as they are.
    """

    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    elif isinstance(value, str):
        return value.encode(encoding)
    elif isinstance(value, int):
        return format_int(int(value), fmt).encode("ascii")
    elif isinstance(value, float):
        return format_float(value, fmt).encode("ascii")
    raise TypeError(f"Can't print {type(value).__name__}")


@typeguard.typechecked
def format_int(value: int, fmt: int = DEC) -> str:
    try:
        code = _INT_CODES[Format(fmt)]
    except ValueError as ex:
        raise ValueError(f"Bad integer format {fmt!r}") from ex
    return ("-" if value < 0 else "") + format(abs(value), code)


@typeguard.typechecked
def format_float(value: float, digits: int = 2) -> str:
    if digits < 0:
        raise ValueError(f"Bad float precision {digits!r}")
    return f"{value:.{digits}f}"
