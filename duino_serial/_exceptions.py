"""Exception hierarchy for duino_serial"""

import errno as _errno


class SerialException(OSError):
    default_errno = _errno.EIO

    def __init__(
        self,
        message: str,
        port: str | None = None,
        code: int | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port
        self.errno = code or self.default_errno


class SerialIoException(SerialException):
    pass


class SerialIoClosed(SerialIoException):
    default_errno = _errno.ECANCELED


class SerialOpenException(SerialException):
    default_errno = _errno.ENODEV


class SerialOpenBusy(SerialOpenException):
    default_errno = _errno.EBUSY
