from typing import Literal

import pydantic

FlowControlType = Literal["none", "software", "hardware"]
ParityType = Literal["none", "odd", "even"]
StopBitsType = int | float

STOP_BITS_VALUES = (1, 1.5, 2)


class SerialOptions(pydantic.BaseModel):
    """Line settings and buffering policy for one SerialConnection"""

    model_config = pydantic.ConfigDict(frozen=True)

    baud: int = pydantic.Field(default=115200, gt=0)
    flow_control: FlowControlType = "none"
    character_size: int = pydantic.Field(default=8, ge=5, le=8)
    parity: ParityType = "none"
    stop_bits: StopBitsType = 1
    buffer_size: int = pydantic.Field(default=256, gt=0)
    timeout_ms: int = pydantic.Field(default=1000, ge=0)
    encoding: str = "utf-8"

    @pydantic.field_validator("stop_bits")
    @classmethod
    def _check_stop_bits(cls, value):
        if value not in STOP_BITS_VALUES:
            raise ValueError(f"Stop bits must be 1, 1.5 or 2, not {value!r}")
        return value
