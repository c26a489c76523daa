import contextlib
import io
import json
import ok_logging_setup
import os
import pty
import pytest
import time
import typing

import ok_serial_link

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "ok_serial_link=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


class FakeSerial:
    """Stands in for serial.Serial with scriptable input and failures"""

    def __init__(self):
        self.port = None
        self.is_open = False
        self.bytesize = self.parity = self.stopbits = None
        self.xonxoff = self.rtscts = self.dsrdtr = None
        self.timeout = self.write_timeout = None
        self.incoming: list[bytes] = []
        self.written = bytearray()
        self.breaks: list[tuple[float, bool]] = []
        self.baud_sets: list[int] = []
        self.flushes = 0
        self.open_error: OSError | None = None
        self.read_error: OSError | None = None
        self.write_error: OSError | None = None
        self.break_error: OSError | None = None
        self.bad_baud: int | None = None
        self.accept_limit: int | None = None
        self._baudrate = 9600

    @property
    def baudrate(self):
        return self._baudrate

    @baudrate.setter
    def baudrate(self, baud):
        assert self.is_open, "configured while closed"
        if baud == self.bad_baud:
            raise ValueError(f"Invalid baud rate: {baud}")
        self.baud_sets.append(baud)
        self._baudrate = baud

    @property
    def break_condition(self):
        return bool(self.breaks and self.breaks[-1][1])

    @break_condition.setter
    def break_condition(self, level):
        if self.break_error:
            raise self.break_error
        self.breaks.append((time.monotonic(), level))

    @property
    def in_waiting(self):
        if self.read_error:
            raise self.read_error
        return sum(len(chunk) for chunk in self.incoming)

    def open(self):
        if self.open_error:
            raise self.open_error
        self.is_open = True

    def close(self):
        self.is_open = False

    def flush(self):
        self.flushes += 1

    def read(self, size=1):
        # Hands back at most one arrival per call, like a partial readAll
        if self.read_error:
            raise self.read_error
        if not self.incoming:
            return b""
        chunk = self.incoming.pop(0)
        if len(chunk) > size:
            self.incoming.insert(0, chunk[size:])
            chunk = chunk[:size]
        return chunk

    def write(self, data):
        if self.write_error:
            raise self.write_error
        accepted = data[: self.accept_limit]
        self.written.extend(accepted)
        return len(accepted)


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


@pytest.fixture
def set_scan_override(monkeypatch, tmp_path):
    path = tmp_path / "scan.json"
    path.write_text("{}")
    monkeypatch.setenv("OK_SERIAL_SCAN_OVERRIDE", str(path))

    def set_ports(ports: dict[str, dict[str, str]]):
        path.write_text(json.dumps(ports))

    return set_ports


@pytest.fixture
def fake_serial():
    return FakeSerial()


@pytest.fixture
def make_link(fake_serial):
    """Builds SerialLinks over fake_serial; call from inside a running loop"""

    links = []

    def make(**opts) -> ok_serial_link.SerialLink:
        link = ok_serial_link.SerialLink(
            ok_serial_link.LinkOptions(**opts),
            transport_factory=lambda: fake_serial,
        )
        links.append(link)
        return link

    yield make
    for link in links:
        link.disconnect()


@pytest.fixture
def record_events():
    def record(link: ok_serial_link.SerialLink) -> list:
        events = []
        link.events.subscribe_all(events.append)
        return events

    return record
