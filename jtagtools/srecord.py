"""Reading Motorola S-record files into a memory image."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass
from typing import Iterable


class SRecordError(ValueError):
    """Raised for malformed S-record input or an image that does not fit."""


class RecordKind(enum.IntEnum):
    START = 0
    DATA = 1
    END = 2
    OTHER = 3


# Width in hex digits of the address field, per record type.
_ADDRESS_DIGITS = {0: 4, 1: 4, 2: 6, 3: 8, 7: 8, 8: 6, 9: 4}
# Bytes of a data-bearing record's length that are not payload (address + checksum).
_OVERHEAD = {0: 3, 1: 3, 2: 4, 3: 5}

UNSUPPORTED_TYPE = 255
DATA_ADDRESS_LIMIT = 0x800000


@dataclass(frozen=True)
class SRecord:
    """One decoded S-record line."""

    type: int
    address: int
    length: int
    data: bytes = b""

    @property
    def data_length(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ReadResult:
    """Extent of the data loaded from an S-record file."""

    start_address: int | None
    end_address: int
    bytes_read: int


def _hex(text: str) -> int:
    try:
        return int(text, 16)
    except ValueError:
        raise SRecordError(f"invalid hex field {text!r}") from None


def decode_line(line: str) -> SRecord:
    """Decode one S-record line; the checksum is not checked."""
    line = line.rstrip("\r\n")
    if not line.startswith("S") or len(line) < 2:
        raise SRecordError(f"not an S-record: {line!r}")
    record_type = ord(line[1]) - ord("0")
    if record_type not in _ADDRESS_DIGITS:
        return SRecord(type=UNSUPPORTED_TYPE, address=0, length=0)
    length = _hex(line[2:4])
    digits = _ADDRESS_DIGITS[record_type]
    pos = 4 + digits
    address = _hex(line[4:pos])
    overhead = _OVERHEAD.get(record_type)
    if overhead is None:
        return SRecord(type=record_type, address=address, length=length)
    count = max(length - overhead, 0)
    payload = line[pos : pos + 2 * count]
    if len(payload) != 2 * count:
        raise SRecordError(f"record shorter than its length field: {line!r}")
    try:
        data = bytes.fromhex(payload)
    except ValueError:
        raise SRecordError(f"invalid data bytes in {line!r}") from None
    return SRecord(type=record_type, address=address, length=length, data=data)


def record_kind(record_type: int) -> RecordKind:
    """Classify an S-record type number."""
    if record_type == 0:
        return RecordKind.START
    if record_type in (1, 2, 3):
        return RecordKind.DATA
    if record_type in (7, 8, 9):
        return RecordKind.END
    return RecordKind.OTHER


def read_data(stream: Iterable[str], data: bytearray) -> ReadResult:
    """Load the data records of an S-record stream into the image ``data``.

    Reading stops at the first line of two characters or fewer. Bytes at
    addresses above 0x800000 end the record they are in and are not stored.
    """
    start: int | None = None
    end = 0
    count = 0
    for line in stream:
        if len(line) <= 2:
            break
        record = decode_line(line)
        if record_kind(record.type) is not RecordKind.DATA:
            continue
        for offset, value in enumerate(record.data):
            address = record.address + offset
            if start is None or address < start:
                start = address
            if address > DATA_ADDRESS_LIMIT:
                break
            if address >= len(data):
                print(f"\n Address: 0x{address:x}", file=sys.stderr)
                raise SRecordError(
                    f"buffer too small, number of bytes read = {count}"
                )
            data[address] = value
            count += 1
            end = max(end, address)
    return ReadResult(start_address=start, end_address=end, bytes_read=count)