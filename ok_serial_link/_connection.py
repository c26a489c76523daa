import asyncio
import collections.abc
import contextlib
import enum
import errno
import logging
import os
import select
import serial

import msgspec
import pydantic

from ok_serial_link import _events
from ok_serial_link import _exceptions
from ok_serial_link import _scanning
from ok_serial_link import _scheduler
from ok_serial_link import _trigger

log = logging.getLogger("ok_serial_link.connection")
data_log = logging.getLogger(log.name + ".data")


class LinkState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LinkOptions(pydantic.BaseModel, frozen=True):
    trigger: _trigger.SampleTrigger = _trigger.EdgeTrigger()
    auto_break: bool = False
    break_timing: _trigger.BreakTiming = _trigger.BreakTiming()
    check_writable: bool = os.name == "posix"
    edge_poll_interval: pydantic.PositiveFloat = 0.005


class ConnectResult(msgspec.Struct, frozen=True):
    error: _exceptions.SerialErrorKind | None = None

    def __bool__(self) -> bool:
        return self.error is None


class SerialLink(contextlib.AbstractContextManager):
    """
    Owns one serial transport and its open/configure/close lifecycle.
    Link conditions (bad port, open failure, I/O failure) are reported
    through ErrorOccurred events on .events rather than raised.
    Must be used from a single asyncio event loop.
    """

    @pydantic.validate_call(config={"arbitrary_types_allowed": True})
    def __init__(
        self,
        opts: LinkOptions = LinkOptions(),
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        transport_factory: collections.abc.Callable = serial.Serial,
    ):
        self._opts = opts
        self._loop = loop or asyncio.get_running_loop()
        self._events = _events.SerialEvents()
        self._pyserial = transport_factory()
        self._state = LinkState.DISCONNECTED
        self._auto_break = opts.auto_break
        self._scheduler = _scheduler.build_scheduler(
            opts.trigger,
            self._loop,
            self._events,
            self._on_transport_error,
            poll_interval=opts.edge_poll_interval,
        )
        self._breaker = _scheduler.BreakPulser(
            self._loop, opts.break_timing, self._on_transport_error
        )
        log.debug("Created link (%s)", opts)

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.disconnect()

    def __repr__(self) -> str:
        return f"SerialLink({self.port!r}, {self._state.value})"

    @property
    def events(self) -> _events.SerialEvents:
        return self._events

    @property
    def options(self) -> LinkOptions:
        return self._opts

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def port(self) -> str | None:
        return self._pyserial.port

    @property
    def baud(self) -> int:
        return self._pyserial.baudrate

    @property
    def auto_break(self) -> bool:
        return self._auto_break

    def list_ports(self) -> list[_scanning.SerialPort]:
        try:
            return _scanning.scan_serial_ports()
        except _exceptions.SerialScanException:
            log.warning("Can't list serial ports", exc_info=True)
            return []

    @pydantic.validate_call
    def is_valid_port(self, port: str) -> bool:
        return any(p.name == port for p in self.list_ports())

    def is_connected(self) -> bool:
        return bool(self._pyserial.is_open)

    def status_text(self) -> str:
        if self.is_connected():
            return f"Serial connected to {self._pyserial.port}"
        return "Serial not connected"

    @pydantic.validate_call
    def connect(self, port: str, baud: pydantic.PositiveInt) -> ConnectResult:
        try:
            if not self.is_valid_port(port):
                raise _exceptions.SerialPortInvalid("Invalid serial port", port)
            if self.is_connected():
                if port != self._pyserial.port:
                    log.warning(
                        "Connect %s ignored, already on %s",
                        port,
                        self._pyserial.port,
                    )
                else:
                    log.debug("Already connected to %s", port)
            else:
                self._state = LinkState.CONNECTING
                self._open(port, baud)
        except _exceptions.SerialLinkException as exc:
            if self._state == LinkState.CONNECTING:
                self._state = LinkState.DISCONNECTED
            self._report(exc)
            if not isinstance(exc, _exceptions.SerialPortInvalid):
                status = _events.StatusChanged(connected=self.is_connected())
                self._events.emit(status)
            return ConnectResult(error=exc.kind)

        if self._state != LinkState.CONNECTED:
            self._state = LinkState.CONNECTED
            self._scheduler.arm(self._pyserial)
            log.info("Connected to %s (%d baud)", port, baud)
        self._events.emit(_events.StatusChanged(connected=self.is_connected()))
        return ConnectResult()

    def disconnect(self) -> None:
        self._close(flush=True)

    def close(self) -> None:
        self.disconnect()

    @pydantic.validate_call
    def toggle(self, port: str, baud: pydantic.PositiveInt) -> bool:
        if self.is_connected():
            self.disconnect()
        else:
            self.connect(port, baud)
        return self.is_connected()

    @pydantic.validate_call
    def set_auto_break(self, enabled: bool) -> None:
        log.debug("Auto-break %s", "on" if enabled else "off")
        self._auto_break = enabled

    @pydantic.validate_call
    def write(self, packet: bytes) -> int:
        if self._state != LinkState.CONNECTED:
            data_log.debug("Write %db rejected, not connected", len(packet))
            return -1

        try:
            if not self._output_ready():
                data_log.debug("Wrote 0/%db, output full", len(packet))
                return 0
            written = self._pyserial.write(packet)
        except serial.SerialTimeoutException:
            data_log.debug("Write %db timed out, output full", len(packet))
            return 0
        except OSError as ex:
            port = self._pyserial.port
            error = _exceptions.SerialIoException("Serial write error", port)
            error.__cause__ = ex
            data_log.warning("%s", error, exc_info=ex)
            self._on_transport_error(error)
            return -1

        written = len(packet) if written is None else written
        data_log.debug("Wrote %d/%db", written, len(packet))
        if written and self._auto_break:
            self._breaker.schedule(self._pyserial)
        return written

    def _output_ready(self) -> bool:
        """True if the driver will take at least one byte without blocking"""

        if not hasattr(self._pyserial, "fileno"):
            return True
        fd = self._pyserial.fileno()
        _, ready, _ = select.select([], [fd], [], 0)
        return bool(ready)

    def _open(self, port: str, baud: int) -> None:
        if self._opts.check_writable:
            if os.path.exists(port) and not os.access(port, os.W_OK):
                message = "Serial port not writable (check permissions)"
                raise _exceptions.SerialNotWritable(message, port)

        log.debug("Opening %s", port)
        self._pyserial.port = port
        try:
            self._pyserial.open()
        except OSError as ex:
            if ex.errno == errno.EBUSY:
                message = "Serial port busy (EBUSY)"
                raise _exceptions.SerialOpenBusy(message, port) from ex
            else:
                message = "Serial port open error"
                raise _exceptions.SerialOpenException(message, port) from ex

        try:
            self._configure(baud)
        except (OSError, ValueError) as ex:
            self._pyserial.close()
            message = f"Serial port setup error ({baud} baud)"
            raise _exceptions.SerialOpenException(message, port) from ex

    def _configure(self, baud: int) -> None:
        """Applies line settings; only valid on an open handle"""

        assert self._pyserial.is_open
        self._pyserial.baudrate = baud
        self._pyserial.bytesize = serial.EIGHTBITS
        self._pyserial.parity = serial.PARITY_NONE
        self._pyserial.stopbits = serial.STOPBITS_ONE
        self._pyserial.xonxoff = False
        self._pyserial.rtscts = False
        self._pyserial.dsrdtr = False
        self._pyserial.timeout = 0
        self._pyserial.write_timeout = 0  # non-blocking, returns count accepted

    def _close(self, flush: bool) -> None:
        self._scheduler.disarm()
        self._breaker.cancel()
        if self._pyserial.is_open:
            port = self._pyserial.port
            if flush:
                try:
                    self._pyserial.flush()
                except Exception:  # pyserial raises termios.error too
                    log.warning("Can't flush %s", port, exc_info=True)
            self._pyserial.close()
            log.info("Disconnected from %s", port)
        self._state = LinkState.DISCONNECTED
        self._events.emit(_events.StatusChanged(connected=self.is_connected()))

    def _report(self, exc: _exceptions.SerialLinkException) -> None:
        if isinstance(exc, _exceptions.SerialIoException):
            log.warning("%s", exc)
        else:
            log.warning("Can't connect: %s", exc)
        event = _events.ErrorOccurred(
            error=exc.kind, message=str(exc), port=exc.port
        )
        self._events.emit(event)

    def _on_transport_error(self, exc: _exceptions.SerialIoException) -> None:
        if self._state == LinkState.DISCONNECTED:
            return
        self._report(exc)
        self._close(flush=False)
