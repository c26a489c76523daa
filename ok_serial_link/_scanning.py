"""
Port registry: the list of endpoints a link may open. Nothing here is
cached. Every call asks the OS (or the override file) again, so a device
unplugged since the last listing is never reported as connectable, and
SerialLink.connect() re-checks its port against a fresh scan each time.
"""

import dataclasses
import json
import logging
import natsort
import os
import pathlib
from serial.tools import list_ports
from serial.tools import list_ports_common

from ok_serial_link import _exceptions

log = logging.getLogger("ok_serial_link.scanning")

# Path to a JSON {name: {attr: value}} file that replaces the OS scan
OVERRIDE_ENV = "OK_SERIAL_SCAN_OVERRIDE"

_by_name = natsort.natsort_keygen(key=lambda p: p.name, alg=natsort.ns.P)


@dataclasses.dataclass(frozen=True)
class SerialPort:
    """
    One registry entry as seen at scan time. The name is what connect()
    takes; attr holds whatever descriptive fields the OS reported
    (description, serial_number, hwid, ...), lowercased, blanks dropped.
    A SerialPort says nothing about whether the device is still present.
    """

    name: str
    attr: dict[str, str]

    def __str__(self):
        return self.name


def scan_serial_ports() -> list[SerialPort]:
    """
    Takes a new snapshot of the registry, naturally sorted by name
    (COM2 before COM10). Raises SerialScanException if the OS listing
    or the override file can't be read. Results are never memoized, so
    callers decide how often to pay for a scan.
    """

    if override := os.getenv(OVERRIDE_ENV):
        found = _load_override(override)
        log.debug("$%s (%s): %d ports", OVERRIDE_ENV, override, len(found))
    else:
        try:
            found = [_from_port_info(i) for i in list_ports.comports()]
        except OSError as ex:
            raise _exceptions.SerialScanException("Can't scan serial") from ex

    found.sort(key=_by_name)
    log.debug("Registry scan: %s", ", ".join(map(str, found)) or "(empty)")
    return found


def _load_override(path: str) -> list[SerialPort]:
    try:
        entries = json.loads(pathlib.Path(path).read_text())
        if not isinstance(entries, dict):
            raise ValueError("Override data is not a dict")
        ports = []
        for name, attr in entries.items():
            if not isinstance(attr, dict) or not all(
                isinstance(v, str) for v in attr.values()
            ):
                raise ValueError(f"Override entry {name!r} is not a str dict")
            ports.append(SerialPort(name=name, attr=attr))
    except (OSError, ValueError) as ex:
        message = f"Can't read ${OVERRIDE_ENV} {path}"
        raise _exceptions.SerialScanException(message) from ex

    return ports


def _from_port_info(info: list_ports_common.ListPortInfo) -> SerialPort:
    blank = (None, "", "n/a")
    attr = {k.lower(): str(v) for k, v in vars(info).items() if v not in blank}
    return SerialPort(name=info.device, attr=attr)
