"""Exception hierarchy and error taxonomy for ok_serial_link"""

import enum
import typing


class SerialErrorKind(enum.Enum):
    INVALID_PORT = "invalid_port"
    NOT_WRITABLE = "not_writable"
    OPEN_FAILED = "open_failed"
    TRANSPORT_ERROR = "transport_error"


class SerialLinkException(OSError):
    kind: typing.ClassVar[SerialErrorKind | None] = None

    def __init__(
        self,
        message: str,
        port: str | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port


class SerialPortInvalid(SerialLinkException):
    kind = SerialErrorKind.INVALID_PORT


class SerialNotWritable(SerialLinkException):
    kind = SerialErrorKind.NOT_WRITABLE


class SerialOpenException(SerialLinkException):
    kind = SerialErrorKind.OPEN_FAILED


class SerialOpenBusy(SerialOpenException):
    pass


class SerialIoException(SerialLinkException):
    kind = SerialErrorKind.TRANSPORT_ERROR


class SerialScanException(SerialLinkException):
    pass
