"""Command that reads a JEDEC file, reports on it and optionally writes it back."""

from __future__ import annotations

import sys
from typing import IO, Sequence

from .jedec import JedecError, JedecFile


def _read_input(jed: JedecFile, name: str) -> None:
    if name.startswith("-"):
        jed.read(getattr(sys.stdin, "buffer", sys.stdin))
        return
    with open(name, "rb") as stream:
        jed.read(stream)


def _open_output(name: str) -> IO[str] | None:
    if name.startswith("-"):
        return sys.stdout
    try:
        return open(name, "w", encoding="latin-1", newline="")
    except OSError as exc:
        print(f" Can't open {name}: {exc.strerror}  ", file=sys.stderr)
        return None


def main(argv: Sequence[str] | None = None) -> int:
    """Parse a JEDEC file, print its summary and save it to an optional output."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: jedecparse infile.jed [outfile.jed]", file=sys.stderr)
        return 0

    jed = JedecFile()
    try:
        _read_input(jed, args[0])
    except OSError as exc:
        print(f"Can't open datafile {args[0]}: {exc.strerror}", file=sys.stderr)
        return 1
    except JedecError as exc:
        print(f"IOException: {exc}", file=sys.stderr)
        return 1

    out = _open_output(args[1]) if len(args) > 1 else None

    print(
        f"Device {jed.device}: {jed.fuse_count} Fuses\n"
        f"Checksum calculated: 0x{jed.calc_checksum():04x},"
        f"Checksum from file 0x{jed.checksum:04x}",
        file=sys.stderr,
    )
    print(f"Version : {jed.version} Date {jed.date}", file=sys.stderr)

    if out is not None:
        try:
            jed.save(jed.device, out)
        finally:
            if out is not sys.stdout:
                out.close()
    return 0