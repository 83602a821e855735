import pytest

from jtagtools.avrlink import (
    AvrError,
    AvrInstruction,
    AvrLink,
    JtagPort,
    bits_to_bytes,
    bytes_to_bits,
)


class FakePort(JtagPort):
    def __init__(self, replies=None):
        self.ir = []
        self.dr = []
        self.replies = list(replies or [])

    def shift_ir(self, data):
        self.ir.append(bytes(data))

    def shift_dr(self, data, length, capture):
        self.dr.append((bytes(data), length, capture))
        if not capture:
            return None
        if self.replies:
            return self.replies.pop(0)
        return bytes(len(data))


def make_link(replies=None):
    port = FakePort(replies)
    sleeps = []
    return AvrLink(port, sleep=sleeps.append), port, sleeps


def test_bits_to_bytes_lsb_first():
    assert bits_to_bytes("1000") == b"\x01"
    assert bits_to_bytes("0011") == bytes([AvrInstruction.AVR_RESET])


def test_bits_to_bytes_accepts_ints():
    assert bits_to_bytes([1, 0, 0, 0]) == bits_to_bytes("1000")


@pytest.mark.parametrize("bits", ["", "1", "0110", "101010101", "1111000011110000"])
def test_bits_round_trip(bits):
    packed = bits_to_bytes(bits)
    assert len(packed) == (len(bits) + 7) // 8
    assert bytes_to_bits(packed, len(bits)) == bits


def test_bytes_to_bits_too_short():
    with pytest.raises(ValueError):
        bytes_to_bits(b"\x00", 9)


def test_send_instruction_shifts_ir():
    link, port, _ = make_link()
    link.send_instruction(AvrInstruction.PROG_COMMANDS)
    assert port.ir == [bytes([0x5])]


def test_send_instruction_rejects_wide_value():
    link, _, _ = make_link()
    with pytest.raises(AvrError):
        link.send_instruction(0x10)


def test_send_data_does_not_capture():
    link, port, _ = make_link()
    link.send_data("101")
    assert port.dr == [(bits_to_bytes("101"), 3, False)]


def test_send_data_output_returns_reply_bits():
    reply = bits_to_bytes("0110")
    link, _, _ = make_link([reply])
    assert link.send_data_output("0000") == "0110"


def test_prog_command_sends_15_bits():
    link, port, _ = make_link([b"\xff\xff"])
    result = link.prog_command(0x2302)
    assert port.dr[0] == ((0x2302).to_bytes(2, "little"), 15, True)
    assert result == 0x7FFF


def test_reset_and_release():
    link, port, _ = make_link()
    link.reset()
    link.release_reset()
    assert port.ir == [
        bytes([AvrInstruction.AVR_RESET]),
        bytes([AvrInstruction.AVR_RESET]),
        bytes([AvrInstruction.BYPASS]),
    ]
    assert [d[0] for d in port.dr] == [bits_to_bytes("1"), bits_to_bytes("0")]


def test_prog_enable_sends_signature():
    link, port, _ = make_link()
    link.prog_enable()
    assert port.ir == [bytes([AvrInstruction.PROG_ENABLE])]
    assert port.dr == [(bytes([0x70, 0xA3]), 16, False)]


def test_prog_disable_sends_zero():
    link, port, _ = make_link()
    link.prog_disable()
    assert port.dr == [(b"\x00\x00", 16, False)]


def test_chip_erase_succeeds_when_ready():
    ready = (0x0200).to_bytes(2, "little")
    link, port, sleeps = make_link([b"\x00\x00"] * 4 + [ready])
    link.chip_erase()
    assert port.ir == [bytes([AvrInstruction.PROG_COMMANDS])]
    sent = [int.from_bytes(d[0], "little") for d in port.dr]
    assert sent == [0x2380, 0x3180, 0x3380, 0x3380, 0x3380]
    assert len(sleeps) == 1


def test_chip_erase_times_out():
    link, port, sleeps = make_link()
    with pytest.raises(AvrError):
        link.chip_erase()
    assert len(sleeps) > 1
    assert len(port.dr) == 4 + len(sleeps)