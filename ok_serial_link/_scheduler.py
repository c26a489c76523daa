import asyncio
import collections.abc
import logging
import threading

from ok_serial_link import _events
from ok_serial_link import _exceptions
from ok_serial_link import _trigger

log = logging.getLogger("ok_serial_link.scheduler")
data_log = logging.getLogger(log.name + ".data")

FailureHandler = collections.abc.Callable[[_exceptions.SerialIoException], None]


class IoScheduler:
    """Decides when an open transport gets drained into packet events"""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: _events.SerialEvents,
        on_failure: FailureHandler,
    ) -> None:
        self._loop = loop
        self._events = events
        self._on_failure = on_failure
        self._pyserial = None

    @property
    def armed(self) -> bool:
        return self._pyserial is not None

    def arm(self, pyserial) -> None:
        self._pyserial = pyserial

    def disarm(self) -> None:
        self._pyserial = None

    def _drain(self, check_hangup: bool = False) -> bytes | None:
        """Reads until nothing is waiting; None if the transport failed"""

        pyserial = self._pyserial
        packet = bytearray()
        try:
            if check_hangup:
                # Zero-timeout read; raises if the device hung up
                packet += pyserial.read(1)
            while (waiting := pyserial.in_waiting) > 0:
                packet += pyserial.read(waiting)
        except OSError as ex:
            self._fail("Serial read error", ex)
            return None

        if packet:
            data_log.debug("Drained %db", len(packet))
        return bytes(packet)

    def _fail(self, message: str, cause: BaseException) -> None:
        port = getattr(self._pyserial, "port", None)
        error = _exceptions.SerialIoException(message, port)
        error.__cause__ = cause
        data_log.warning("%s", error, exc_info=cause)
        self._on_failure(error)


class EdgeScheduler(IoScheduler):
    """
    Drains on every arrival notification. Transports with a file descriptor
    are watched by the event loop itself; others get a watcher thread that
    polls in_waiting and hands each drain back to the loop.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: _events.SerialEvents,
        on_failure: FailureHandler,
        poll_interval: float | int = 0.005,
    ) -> None:
        super().__init__(loop, events, on_failure)
        self._poll_interval = poll_interval
        self._fd: int | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._drained = threading.Event()

    def arm(self, pyserial) -> None:
        super().arm(pyserial)
        if hasattr(pyserial, "fileno"):
            try:
                fd = pyserial.fileno()
                self._loop.add_reader(fd, self._on_ready_read, True)
                self._fd = fd
                log.debug("Watching %s (fd=%d)", pyserial.port, fd)
                return
            except (OSError, NotImplementedError):
                log.debug("Can't watch %s fd", pyserial.port, exc_info=True)

        self._stop = threading.Event()
        self._drained = threading.Event()
        self._thread = threading.Thread(
            target=self._watchloop,
            args=(pyserial, self._stop, self._drained),
            name=f"{pyserial.port} watcher",
            daemon=True,
        )
        self._thread.start()

    def disarm(self) -> None:
        if self._fd is not None:
            self._loop.remove_reader(self._fd)
            self._fd = None
        if self._thread:
            self._stop.set()
            self._drained.set()
            if self._thread is not threading.current_thread():
                self._thread.join()
            self._thread = None
        super().disarm()

    def _on_ready_read(self, check_hangup: bool = False) -> None:
        try:
            if not self.armed:
                return
            packet = self._drain(check_hangup=check_hangup)
            if packet:
                self._events.emit(_events.PacketReady(packet=packet))
        finally:
            self._drained.set()

    def _on_watch_error(self, stop: threading.Event, ex: OSError) -> None:
        # Errors from a thread left over from an earlier arm() are stale
        if self.armed and stop is self._stop and not stop.is_set():
            self._fail("Serial status error", ex)

    def _watchloop(
        self, pyserial, stop: threading.Event, drained: threading.Event
    ) -> None:
        log.debug("Starting thread")
        while not stop.is_set():
            try:
                waiting = pyserial.in_waiting
            except OSError as ex:
                if not stop.is_set():
                    report = self._on_watch_error
                    self._loop.call_soon_threadsafe(report, stop, ex)
                return

            if waiting > 0:
                drained.clear()
                self._loop.call_soon_threadsafe(self._on_ready_read)
                drained.wait()
            else:
                stop.wait(self._poll_interval)


class IntervalScheduler(IoScheduler):
    """Drains on a fixed clock, emitting PacketEmpty for quiet ticks"""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: _events.SerialEvents,
        on_failure: FailureHandler,
        period: float | int,
    ) -> None:
        super().__init__(loop, events, on_failure)
        self._period = period
        self._next_tick = 0.0
        self._timer: asyncio.TimerHandle | None = None

    def arm(self, pyserial) -> None:
        super().arm(pyserial)
        self._next_tick = self._loop.time() + self._period
        self._timer = self._loop.call_at(self._next_tick, self._on_tick)
        log.debug("Sampling %s every %.3fs", pyserial.port, self._period)

    def disarm(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None
        super().disarm()

    def _on_tick(self) -> None:
        # Stay on the original grid, skipping ticks the loop was too busy for
        now = self._loop.time()
        self._next_tick += self._period
        while self._next_tick <= now:
            self._next_tick += self._period
        self._timer = self._loop.call_at(self._next_tick, self._on_tick)

        packet = self._drain()
        if packet:
            self._events.emit(_events.PacketReady(packet=packet))
        elif packet is not None:
            self._events.emit(_events.PacketEmpty())


def build_scheduler(
    trigger: _trigger.EdgeTrigger | _trigger.IntervalTrigger,
    loop: asyncio.AbstractEventLoop,
    events: _events.SerialEvents,
    on_failure: FailureHandler,
    poll_interval: float | int = 0.005,
) -> IoScheduler:
    if isinstance(trigger, _trigger.IntervalTrigger):
        return IntervalScheduler(loop, events, on_failure, trigger.period)
    return EdgeScheduler(loop, events, on_failure, poll_interval)


class BreakPulser:
    """Schedules settle -> assert break -> hold -> release after writes"""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        timing: _trigger.BreakTiming,
        on_failure: FailureHandler,
    ) -> None:
        self._loop = loop
        self._timing = timing
        self._on_failure = on_failure
        self._pending: set[asyncio.TimerHandle] = set()
        self._asserted = None
        self._holding = 0  # pulses between assert and release

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, pyserial) -> None:
        self._later(self._timing.settle_ms / 1000.0, self._start, pyserial)

    def cancel(self) -> None:
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()
        self._holding = 0
        if self._asserted is not None:
            pyserial, self._asserted = self._asserted, None
            try:
                pyserial.break_condition = False
            except OSError:
                port = pyserial.port
                log.warning("Can't release %s break", port, exc_info=True)

    def _start(self, pyserial) -> None:
        if not self._holding and not self._set_break(pyserial, True):
            return
        self._holding += 1
        self._asserted = pyserial
        self._later(self._timing.hold_ms / 1000.0, self._finish, pyserial)

    def _finish(self, pyserial) -> None:
        # Overlapping pulses merge; release when the last hold ends
        self._holding -= 1
        if not self._holding:
            self._asserted = None
            self._set_break(pyserial, False)

    def _set_break(self, pyserial, level: bool) -> bool:
        try:
            pyserial.break_condition = level
        except OSError as ex:
            self._asserted, self._holding = None, 0
            message, port = "Serial break error", pyserial.port
            error = _exceptions.SerialIoException(message, port)
            error.__cause__ = ex
            log.warning("%s", error, exc_info=ex)
            self._on_failure(error)
            return False
        state = "on" if level else "off"
        data_log.debug("Break %s on %s", state, pyserial.port)
        return True

    def _later(self, delay: float, callback, *args) -> None:
        def run():
            self._pending.discard(handle)
            callback(*args)

        handle = self._loop.call_later(delay, run)
        self._pending.add(handle)
