#!/usr/bin/env python3
"""nartar — convert between NAR and tar archives."""

import argparse
import contextlib
import logging
import sys

from nartar.errors import NarTarError
from nartar.nar2tar import nar_to_tar
from nartar.tar2nar import tar_to_nar


def setup_logging(level=logging.WARNING):
    # stdout may carry the archive itself, so logs go to stderr.
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def open_input(name: str):
    if name in ("", "-"):
        return contextlib.nullcontext(sys.stdin.buffer)
    return open(name, "rb")


def open_output(name: str):
    if name in ("", "-"):
        return contextlib.nullcontext(sys.stdout.buffer)
    return open(name, "wb")


def cmd_nar2tar(args):
    with open_input(args.input) as src, open_output(args.output) as dst:
        nar_to_tar(src, dst)
        dst.flush()


def cmd_tar2nar(args):
    with open_input(args.input) as src, open_output(args.output) as dst:
        tar_to_nar(src, dst)
        dst.flush()


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="nartar",
        description="Convert between NAR and tar archives",
        epilog="Use '-' for stdin/stdout. Timestamps are normalized to the Unix epoch.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every converted entry")
    sub = parser.add_subparsers(dest="command")

    # nar2tar
    p = sub.add_parser("nar2tar", help="Convert a NAR archive to tar")
    p.add_argument("-i", "--input", default="-", help="Input NAR file ('-' for stdin)")
    p.add_argument("-o", "--output", default="-", help="Output tar file ('-' for stdout)")
    p.set_defaults(func=cmd_nar2tar)

    # tar2nar
    p = sub.add_parser("tar2nar", help="Convert a tar archive to NAR")
    p.add_argument("-i", "--input", default="-", help="Input tar file ('-' for stdin)")
    p.add_argument("-o", "--output", default="-", help="Output NAR file ('-' for stdout)")
    p.set_defaults(func=cmd_tar2nar)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)
    try:
        args.func(args)
    except (NarTarError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
