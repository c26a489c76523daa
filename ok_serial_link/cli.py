#!/usr/bin/env python3

"""CLI tool to list serial ports and watch traffic on one of them"""

import argparse
import asyncio
import logging
import ok_logging_setup
import ok_serial_link

ok_logging_setup.skip_traceback_for(ok_serial_link.SerialScanException)

logger = logging.getLogger("ok_serial_link.cli")


def main():
    parser = argparse.ArgumentParser(description="Watch serial ports.")
    subparsers = parser.add_subparsers(title="actions", dest="command")
    list_parser = subparsers.add_parser("list", help="List known serial ports")
    list_parser.add_argument(
        "--verbose", "-v", action="store_true", help="print detailed properties"
    )

    mon_parser = subparsers.add_parser("monitor", help="Print received packets")
    mon_parser.add_argument("port", help="port device name")
    mon_parser.add_argument("baud", type=int, help="baud rate")
    sample_group = mon_parser.add_mutually_exclusive_group()
    sample_group.add_argument(
        "--interval-ms", type=float, help="sample every N milliseconds"
    )
    sample_group.add_argument(
        "--hz", type=float, help="sample N times a second"
    )
    mon_parser.add_argument(
        "--auto-break", action="store_true", help="send break after writes"
    )
    mon_parser.add_argument("--send", help="text to write after connecting")

    args = parser.parse_args()
    if not args.command:
        args = parser.parse_args(["list"])

    ok_logging_setup.install({"OK_LOGGING_LEVEL": "info"})

    if args.command == "list":
        found = ok_serial_link.scan_serial_ports()
        if not found:
            ok_logging_setup.exit("❌ No serial ports found")
        logging.info("🔌 %d serial port%s found", *plural(len(found)))
        for port in found:
            print(format_port(port, args.verbose))

    if args.command == "monitor":
        if args.interval_ms:
            trigger = ok_serial_link.IntervalTrigger(period_ms=args.interval_ms)
        elif args.hz:
            trigger = ok_serial_link.IntervalTrigger.from_hz(args.hz)
        else:
            trigger = ok_serial_link.EdgeTrigger()
        opts = ok_serial_link.LinkOptions(
            trigger=trigger, auto_break=args.auto_break
        )
        try:
            asyncio.run(monitor(args.port, args.baud, opts, args.send))
        except KeyboardInterrupt:
            pass


async def monitor(
    port: str,
    baud: int,
    opts: ok_serial_link.LinkOptions,
    send: str | None = None,
):
    with ok_serial_link.SerialLink(opts) as link:
        with link.events.channel() as queue:
            if not link.connect(port, baud):
                event = queue.get_nowait()
                ok_logging_setup.exit(f"❌ {event.message}")

            logging.info("✅ %s", link.status_text())
            if send is not None:
                link.write(send.encode())

            while True:
                event = await queue.get()
                if isinstance(event, ok_serial_link.PacketReady):
                    print(format_packet(event.packet), flush=True)
                elif isinstance(event, ok_serial_link.PacketEmpty):
                    logger.debug("(empty)")
                elif isinstance(event, ok_serial_link.ErrorOccurred):
                    logging.error("💥 %s", event.message)
                elif not event.connected:
                    ok_logging_setup.exit(f"🔌 {link.status_text()}")


def format_port(port: ok_serial_link.SerialPort, verbose: bool = False) -> str:
    if verbose:
        return f"Serial port: {port.name}" + "".join(
            f"\n   {k}={v!r}" for k, v in port.attr.items()
        )
    words = [port.name]
    words.extend(port.attr.get(k, "") for k in ("serial_number", "description"))
    return " ".join(w for w in words if w)


def format_packet(packet: bytes) -> str:
    text = "".join(chr(b) if 32 <= b < 127 else "." for b in packet)
    return f"{len(packet):4d}b {packet.hex(' ')}  |{text}|"


def plural(n: int) -> tuple[int, str]:
    return n, "" if n == 1 else "s"


if __name__ == "__main__":
    main()
