"""Reading and writing JEDEC fuse map (.jed) files."""

from __future__ import annotations

import enum
import time
from typing import IO, Callable, Iterator

MAX_ITEM = 8
MAX_SIZE = 256
DEFAULT_VERSION = "JTAGTOOLS"

_SPACE = frozenset(" \t\n\v\f\r")
_DIGITS = frozenset("0123456789")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class JedecError(ValueError):
    """Raised for malformed JEDEC input or an out-of-range fuse index."""


class _Layout(enum.Enum):
    XC95X = "xc95x"
    XC2C = "xc2c"
    XC95 = "xc95"


_XC95_NAMES = frozenset(
    {"XC9536", "XC9572", "XC95108", "XC95144", "XC95216", "XC95288"}
)
_XC95X_PREFIXES = (
    ("XC9536X", 2),
    ("XC9572X", 4),
    ("XC95144X", 8),
    ("XC95288X", 16),
)


def _layout(device: str) -> tuple[_Layout | None, int]:
    """Pick the fuse line layout and data register length for a device name."""
    name = device.upper()
    if name in _XC95_NAMES:
        return _Layout.XC95, 0
    for prefix, dreg_length in _XC95X_PREFIXES:
        if name.startswith(prefix):
            return _Layout.XC95X, dreg_length
    if name.startswith("XC2C"):
        return _Layout.XC2C, 0
    return None, 0


class _Parser:
    """Character-driven state machine filling a JedecFile."""

    def __init__(self, jed: JedecFile) -> None:
        self._jed = jed
        self.state: Callable[[str], None] = self._startup
        self._header = ""
        self._cur_fuse = 0
        self._item = -1
        self._items: list[str] = [""] * MAX_ITEM

    def _startup(self, ch: str) -> None:
        if ch == "\x02":
            self.state = self._base
        elif ch == "D":
            self.state = self._header_line

    def _header_line(self, ch: str) -> None:
        if ch in ("\n", "\r"):
            colon = self._header.find(":")
            if colon >= 0:
                self._jed.date = self._header[colon:][: MAX_SIZE - 1]
            self.state = self._startup
        else:
            self._header += ch

    def _base(self, ch: str) -> None:
        if ch in _SPACE:
            return
        if ch == "L":
            self._cur_fuse = 0
            self.state = self._fuse_address
        elif ch == "Q":
            self.state = self._query
        elif ch == "C":
            self._jed.checksum = 0
            self.state = self._checksum
        elif ch == "N":
            self._item = -1
            self._items = [""] * MAX_ITEM
            self.state = self._note
        else:
            self.state = self._skip

    def _checksum(self, ch: str) -> None:
        if ch in _SPACE:
            return
        if ch == "*":
            self.state = self._base
            return
        if ch not in _HEX_DIGITS:
            raise JedecError(f"unexpected character {ch!r} in checksum field")
        self._jed.checksum = ((self._jed.checksum << 4) | int(ch, 16)) & 0xFFFF

    def _fuse_address(self, ch: str) -> None:
        if ch in _DIGITS:
            self._cur_fuse = self._cur_fuse * 10 + int(ch)
        elif ch in _SPACE:
            self.state = self._fuse_bits
        elif ch == "*":
            self.state = self._base
        else:
            raise JedecError(f"unexpected character {ch!r} in fuse address")

    def _fuse_bits(self, ch: str) -> None:
        if ch == "*":
            self.state = self._base
        elif ch in ("0", "1"):
            self._jed.set_fuse(self._cur_fuse, ch == "1")
            self._cur_fuse += 1
        elif ch in (" ", "\n", "\r"):
            return
        else:
            raise JedecError(f"unexpected character {ch!r} in fuse list")

    def _note(self, ch: str) -> None:
        if ch == "*":
            key = self._items[0].upper()
            if key == "DEVICE":
                self._jed.device = self._items[1]
            elif key == "VERSION":
                self._jed.version = self._items[1]
            self.state = self._base
            self._item = -1
        elif ch == " ":
            # Too many items (as in some XC2C files) are dropped, not an error.
            if self._item < MAX_ITEM:
                self._item += 1
        elif ch in ("\n", "\r"):
            return
        elif 0 <= self._item < MAX_ITEM and len(self._items[self._item]) < MAX_SIZE - 1:
            self._items[self._item] += ch

    def _query(self, ch: str) -> None:
        if ch == "F":
            if self._jed.fuse_count:
                raise JedecError("fuse count (QF) given more than once")
            self.state = self._fuse_count
        elif ch == "P":
            if self._jed.pin_count:
                raise JedecError("pin count (QP) given more than once")
            self.state = self._pin_count
        else:
            self.state = self._skip

    def _fuse_count(self, ch: str) -> None:
        if ch in _SPACE:
            return
        if ch in _DIGITS:
            self._jed.fuse_count = self._jed.fuse_count * 10 + int(ch)
        elif ch == "*":
            self._jed._fuses = bytearray((self._jed.fuse_count + 7) // 8)
            self.state = self._base
        else:
            raise JedecError(f"unexpected character {ch!r} in fuse count")

    def _pin_count(self, ch: str) -> None:
        if ch in _SPACE:
            return
        if ch in _DIGITS:
            self._jed.pin_count = self._jed.pin_count * 10 + int(ch)
        elif ch == "*":
            self.state = self._base
        else:
            raise JedecError(f"unexpected character {ch!r} in pin count")

    def _skip(self, ch: str) -> None:
        if ch == "*":
            self.state = self._base


class JedecFile:
    """A JEDEC fuse map with its header fields."""

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.device = ""
        self.version = ""
        self.date = ""
        self.fuse_count = 0
        self.pin_count = 0
        self.checksum = 0
        self._fuses = bytearray()

    def __len__(self) -> int:
        return self.fuse_count

    def read(self, stream: IO) -> None:
        """Parse a JEDEC file from a text or binary stream."""
        content = stream.read()
        if isinstance(content, (bytes, bytearray)):
            content = bytes(content).decode("latin-1")
        self._reset()
        parser = _Parser(self)
        for ch in content:
            parser.state(ch)
        if not self.fuse_count:
            raise JedecError("no fuse count (QF) found")

    def _check_index(self, index: int, action: str) -> None:
        if not 0 <= index < self.fuse_count:
            raise JedecError(f"{action}: fuse index {index} out of range")

    def get_fuse(self, index: int) -> int:
        """Return the state (0 or 1) of one fuse."""
        self._check_index(index, "get_fuse")
        return (self._fuses[index >> 3] >> (index & 7)) & 1

    def set_fuse(self, index: int, blow: bool) -> None:
        """Set one fuse to 1 when ``blow`` is true, else to 0."""
        self._check_index(index, "set_fuse")
        mask = 1 << (index & 7)
        if blow:
            self._fuses[index >> 3] |= mask
        else:
            self._fuses[index >> 3] &= ~mask & 0xFF

    def set_length(self, count: int) -> None:
        """Resize the fuse map: growing sets every fuse to 1, shrinking clears the cut-off ones."""
        nbytes = (count + 7) // 8
        if count > self.fuse_count:
            self._fuses = bytearray(b"\xff" * nbytes)
        else:
            for index in range(count, self.fuse_count):
                self.set_fuse(index, False)
            del self._fuses[nbytes:]
        self.fuse_count = count

    def calc_checksum(self) -> int:
        """16-bit sum of the bytes of the fuse map."""
        return sum(self._fuses[: (self.fuse_count + 7) // 8]) & 0xFFFF

    def _iter_fuses(self) -> Iterator[int]:
        for byte_index in range(self.fuse_count):
            yield (self._fuses[byte_index >> 3] >> (byte_index & 7)) & 1

    def _xc95x_body(self, dreg_length: int) -> Iterator[str]:
        b = line = word = 0
        for i, bit in enumerate(self._iter_fuses()):
            if not word and not b:
                yield f"L{i:07d}"
            if not b:
                yield " "
            yield str(bit)
            last = 7 if line < 9 else 5
            b = 0 if b == last else b + 1
            if not b:
                if word == dreg_length - 1:
                    yield "*\n"
                    word = 0
                    line += 1
                else:
                    word += 1
            if line == 15:
                line = 0

    def _xc95_body(self) -> Iterator[str]:
        b = word = 0
        for i, bit in enumerate(self._iter_fuses()):
            if not b and word % 5 == 0:
                yield f"L{i:07d}"
            if not b:
                yield " "
            yield str(bit)
            if i % 9072 < 7776:
                last = 7 if word % 15 < 9 else 5
            else:
                last = 7 if word % 5 == 0 else 6
            if b == last:
                b = 0
                word += 1
            else:
                b += 1
            if not b and word % 5 == 0:
                yield "*\n"

    def _xc2c_body(self) -> Iterator[str]:
        for i, bit in enumerate(self._iter_fuses()):
            if i % 64 == 0:
                yield f"L{i:07d} "
            yield str(bit)
            if i % 64 == 63:
                yield "*\n"
        yield "*\n"

    def save(self, device: str, stream: IO[str]) -> None:
        """Write the fuse map as a JEDEC file laid out for ``device``."""
        parts: list[str] = []
        if self.date:
            parts.append(f"Date Extracted{self.date}\n\n")
        else:
            stamp = time.strftime("%a %b %d %H:%M:%S %Y")
            parts.append(f"Date Extracted: {stamp}\n\n")
        parts.append(f"\x02QF{self.fuse_count}*\nQV0*\nF0*\nX0*\nJ0 0*\n")
        parts.append(f"N VERSION {self.version or DEFAULT_VERSION}*\n")
        parts.append(f"N DEVICE {device}*\n")
        layout, dreg_length = _layout(device)
        if layout is _Layout.XC95X:
            parts.extend(self._xc95x_body(dreg_length))
        elif layout is _Layout.XC95:
            parts.extend(self._xc95_body())
        elif layout is _Layout.XC2C:
            parts.extend(self._xc2c_body())
        parts.append(f"C{self.calc_checksum():04X}*\n\x030000\n")
        stream.write("".join(parts))