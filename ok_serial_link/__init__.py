"""
Serial link manager (PySerial wrapper): one port, an open/close lifecycle,
and status, data and error events delivered on an asyncio loop.
"""

from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me()

from ok_serial_link._connection import (
    ConnectResult,
    LinkOptions,
    LinkState,
    SerialLink,
)

from ok_serial_link._events import (
    ErrorOccurred,
    EventKind,
    PacketEmpty,
    PacketReady,
    SerialEvent,
    SerialEvents,
    StatusChanged,
)

from ok_serial_link._exceptions import (
    SerialErrorKind,
    SerialIoException,
    SerialLinkException,
    SerialNotWritable,
    SerialOpenBusy,
    SerialOpenException,
    SerialPortInvalid,
    SerialScanException,
)

from ok_serial_link._scanning import SerialPort, scan_serial_ports
from ok_serial_link._trigger import (
    BreakTiming,
    EdgeTrigger,
    IntervalTrigger,
    SampleTrigger,
)

__all__ = [n for n in dir() if not n.startswith("_")]
