"""Typed link events and their fan-out to subscribers"""

import asyncio
import collections.abc
import contextlib
import enum
import logging
import typing

import msgspec

from ok_serial_link import _exceptions

log = logging.getLogger("ok_serial_link.events")


class EventKind(enum.Enum):
    STATUS_CHANGED = "status_changed"
    ERROR_OCCURRED = "error_occurred"
    PACKET_READY = "packet_ready"
    PACKET_EMPTY = "packet_empty"


class StatusChanged(msgspec.Struct, frozen=True):
    kind: typing.ClassVar[EventKind] = EventKind.STATUS_CHANGED
    connected: bool


class ErrorOccurred(msgspec.Struct, frozen=True):
    kind: typing.ClassVar[EventKind] = EventKind.ERROR_OCCURRED
    error: _exceptions.SerialErrorKind
    message: str
    port: str | None = None


class PacketReady(msgspec.Struct, frozen=True):
    kind: typing.ClassVar[EventKind] = EventKind.PACKET_READY
    packet: bytes


class PacketEmpty(msgspec.Struct, frozen=True):
    kind: typing.ClassVar[EventKind] = EventKind.PACKET_EMPTY


SerialEvent = StatusChanged | ErrorOccurred | PacketReady | PacketEmpty
EventHandler = collections.abc.Callable[[SerialEvent], typing.Any]


class SerialEvents:
    """
    Delivers each event once, in emit order, to every handler subscribed
    at the time of the emit. Handlers run synchronously on the emitting
    (event loop) thread.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[EventKind | None, EventHandler]] = []

    def __repr__(self) -> str:
        return f"SerialEvents({len(self._handlers)} handlers)"

    def subscribe(
        self, kind: EventKind, handler: EventHandler
    ) -> collections.abc.Callable[[], None]:
        """Calls handler(event) for events of one kind; returns unsubscriber"""

        return self._add(kind, handler)

    def subscribe_all(
        self, handler: EventHandler
    ) -> collections.abc.Callable[[], None]:
        return self._add(None, handler)

    @contextlib.contextmanager
    def channel(self) -> collections.abc.Iterator[asyncio.Queue]:
        """Yields a queue that receives every event while the block is open"""

        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.subscribe_all(queue.put_nowait)
        try:
            yield queue
        finally:
            unsubscribe()

    def emit(self, event: SerialEvent) -> None:
        log.debug("Emit %r", event)
        for kind, handler in list(self._handlers):
            if kind is None or kind == event.kind:
                try:
                    handler(event)
                except Exception:
                    log.exception("Handler %r failed on %r", handler, event)

    def _add(
        self, kind: EventKind | None, handler: EventHandler
    ) -> collections.abc.Callable[[], None]:
        entry = (kind, handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe
