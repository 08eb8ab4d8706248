#!/usr/bin/env python3

"""CLI tool to send lines to a serial port and print what comes back"""

import argparse
import logging
import ok_logging_setup
import duino_serial

ok_logging_setup.skip_traceback_for(duino_serial.SerialOpenException)


def main():
    parser = argparse.ArgumentParser(description="Talk to a serial device.")
    parser.add_argument("port", help="device path, e.g. /dev/ttyUSB0")
    parser.add_argument(
        "--baud", "-b", default=115200, type=int, help="baud rate"
    )
    parser.add_argument(
        "--timeout",
        "-t",
        default=1000,
        type=int,
        help="milliseconds to wait for each record",
    )
    parser.add_argument(
        "--send",
        "-s",
        action="append",
        default=[],
        help="text to send (with newline), may be repeated",
    )
    parser.add_argument(
        "--until",
        "-u",
        default="\n",
        help="record terminator character (default newline)",
    )
    parser.add_argument(
        "--count",
        "-n",
        default=0,
        type=int,
        help="stop after this many records (0 = run until interrupted)",
    )

    args = parser.parse_args()
    opts = duino_serial.SerialOptions(baud=args.baud, timeout_ms=args.timeout)
    if len(args.until.encode(opts.encoding)) != 1:
        parser.error(f"--until {args.until!r} must be a single-byte character")

    ok_logging_setup.install({"OK_LOGGING_LEVEL": "info"})
    with duino_serial.SerialConnection(args.port, opts) as conn:
        logging.info("🔌 Opened %s at %d baud", conn.port_name, conn.baud)
        for text in args.send:
            conn.println(text)
            if not conn.good():
                ok_logging_setup.exit(f"❌ Write failed: {conn.last_error}")

        received = 0
        while not args.count or received < args.count:
            record = conn.read_string_until(args.until)
            if record:
                print(record)
                received += 1
            elif not conn.good():
                ok_logging_setup.exit(f"❌ Read failed: {conn.last_error}")


if __name__ == "__main__":
    main()
