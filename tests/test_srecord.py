import io

import pytest

from jtagtools.srecord import (
    RecordKind,
    SRecord,
    SRecordError,
    UNSUPPORTED_TYPE,
    decode_line,
    read_data,
    record_kind,
)


def test_decode_s1_record():
    record = decode_line("S10500101234B4\n")
    assert record == SRecord(type=1, address=0x0010, length=5, data=b"\x12\x34")
    assert record.data_length == 2


def test_decode_s2_record():
    record = decode_line("S2060100AABBCC00")
    assert record.type == 2
    assert record.address == 0x0100AA
    assert record.data == b"\xbb\xcc"


def test_decode_s3_record():
    record = decode_line("S30600000010FF00")
    assert record.address == 0x00000010
    assert record.data == b"\xff"


def test_decode_end_record():
    record = decode_line("S9030000FC")
    assert record.type == 9
    assert record.data == b""
    assert record_kind(record.type) is RecordKind.END


def test_decode_unsupported_type():
    record = decode_line("S5030001FB")
    assert record.type == UNSUPPORTED_TYPE
    assert record_kind(record.type) is RecordKind.OTHER


def test_decode_rejects_non_srecord():
    with pytest.raises(SRecordError):
        decode_line(":10000000")


def test_decode_rejects_truncated_record():
    with pytest.raises(SRecordError):
        decode_line("S10800001234")


@pytest.mark.parametrize(
    "record_type,kind",
    [(0, RecordKind.START), (1, RecordKind.DATA), (3, RecordKind.DATA),
     (7, RecordKind.END), (9, RecordKind.END), (5, RecordKind.OTHER)],
)
def test_record_kind(record_type, kind):
    assert record_kind(record_type) is kind


def test_read_data_fills_image():
    text = "S0030000FC\nS10500041234B4\nS10500061234B4\nS9030000FC\n"
    image = bytearray(b"\xff" * 16)
    result = read_data(io.StringIO(text), image)
    assert result.start_address == 4
    assert result.end_address == 7
    assert result.bytes_read == 4
    assert image[4:8] == b"\x12\x34\x12\x34"
    assert image[:4] == b"\xff" * 4


def test_read_data_stops_at_blank_line():
    text = "S10500001234B4\n\nS10500081234B4\n"
    image = bytearray(16)
    result = read_data(io.StringIO(text), image)
    assert result.bytes_read == 2
    assert image[8:10] == b"\x00\x00"


def test_read_data_buffer_too_small():
    image = bytearray(4)
    with pytest.raises(SRecordError):
        read_data(io.StringIO("S10500041234B4\n"), image)


def test_read_data_invalid_line():
    with pytest.raises(SRecordError):
        read_data(io.StringIO("S10500001234B4\nnot a record\n"), bytearray(16))


def test_read_data_skips_high_section():
    text = "S10500001234B4\nS3070081000012340\n"
    image = bytearray(16)
    result = read_data(io.StringIO(text), image)
    assert result.bytes_read == 2
    assert result.end_address == 1


def test_read_data_empty():
    result = read_data(io.StringIO(""), bytearray(4))
    assert result.bytes_read == 0
    assert result.start_address is None