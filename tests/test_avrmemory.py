import itertools

import pytest

from jtagtools.avrlink import BUSY_FLAG, AvrError, AvrInstruction, AvrLink, JtagPort
from jtagtools.avrmemory import AvrMemory, nearest_block_size
from jtagtools.devices import FILL_BYTE, DeviceIndex, find_device
from jtagtools.devices import DEVICES
from jtagtools.fusebits import FuseSettings


def _device(index):
    return next(d for d in DEVICES if d.index is index)


class SimulatedAvr(JtagPort):
    """Minimal model of the AVR JTAG programming interface."""

    def __init__(self, device, busy=True):
        self.flash = bytearray([0xFF]) * device.flash
        self.eeprom = bytearray([0xFF]) * device.eeprom
        self.fuses = {"ext": 0xFD, "high": 0x99, "low": 0xE1, "lock": 0xFF}
        self.instruction = None
        self.mode = None
        self.ext = self.hi = self.lo = 0
        self.pending = 0
        self.page = bytearray()
        self.cursor = 0
        self.busy = busy
        self.commands = []
        self.pageload_lengths = []

    def _flash_address(self):
        return ((self.ext << 16) | (self.hi << 8) | self.lo) * 2

    def _eeprom_address(self):
        return (self.hi << 8) | self.lo

    def shift_ir(self, data):
        self.instruction = data[0]
        if self.instruction == AvrInstruction.PROG_PAGEREAD:
            self.cursor = self._flash_address()
        elif self.instruction == AvrInstruction.PROG_PAGELOAD:
            self.page = bytearray()

    def shift_dr(self, data, length, capture):
        if self.instruction == AvrInstruction.PROG_COMMANDS and length == 15:
            value = self._command(int.from_bytes(data[:2], "little"))
            value |= BUSY_FLAG if self.busy else 0
            return value.to_bytes(2, "little")
        if self.instruction == AvrInstruction.PROG_PAGEREAD:
            nbytes = length // 8
            if nbytes == 1:
                out = bytes([self.flash[self.cursor]])
                self.cursor += 1
                return out
            return b"\x00" + bytes(self.flash[self.cursor : self.cursor + nbytes - 1])
        if self.instruction == AvrInstruction.PROG_PAGELOAD:
            self.pageload_lengths.append(length)
            self.page += data[: length // 8]
            return None
        return bytes((length + 7) // 8) if capture else None

    def _command(self, cmd):
        self.commands.append(cmd)
        high, low = cmd >> 8, cmd & 0xFF
        if high == 0x23:
            self.mode = low
            self.ext = 0
            return 0
        if high == 0x0B:
            self.ext = low
            return 0
        if high == 0x07:
            self.hi = low
            return 0
        if high == 0x03:
            self.lo = low
            return 0
        if high == 0x13:
            self.pending = low
            return 0
        if self.mode == 0x02:
            addr = self._flash_address()
            if cmd == 0x3600:
                return self.flash[addr]
            if cmd == 0x3700:
                return self.flash[addr + 1]
        elif self.mode == 0x03 and cmd == 0x3300:
            return self.eeprom[self._eeprom_address()]
        elif self.mode == 0x10 and cmd == 0x3500:
            addr = self._flash_address()
            self.flash[addr : addr + len(self.page)] = self.page
        elif self.mode == 0x11 and cmd == 0x7700:
            self.eeprom[self._eeprom_address()] = self.pending
        elif self.mode == 0x04:
            return {
                0x3E00: self.fuses["ext"],
                0x3200: self.fuses["high"],
                0x3600: self.fuses["low"],
                0x3700: self.fuses["lock"],
            }.get(cmd, 0)
        elif self.mode == 0x40:
            key = {0x3900: "ext", 0x3500: "high", 0x3100: "low"}.get(cmd)
            if key:
                self.fuses[key] = self.pending
        elif self.mode == 0x20 and cmd == 0x3100:
            self.fuses["lock"] = self.pending
        return 0


def _setup(index, busy=True, clock=None):
    device = _device(index)
    sim = SimulatedAvr(device, busy=busy)
    link = AvrLink(sim, sleep=lambda _s: None)
    kwargs = {"clock": clock} if clock is not None else {}
    return sim, AvrMemory(link, device, **kwargs)


def test_nearest_block_size_is_next_power_of_two():
    for x in range(0, 5000, 37):
        size = nearest_block_size(x)
        assert size & (size - 1) == 0
        assert size > x
        assert size // 2 <= x or size == 1


def test_nearest_block_size_rejects_negative():
    with pytest.raises(ValueError):
        nearest_block_size(-1)


def test_flash_block_round_trip_aligned():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    data = bytes((i * 7) & 0xFF for i in range(300))
    start = 2 * mem.device.pagesize
    mem.write_flash_block(start, data)
    assert mem.read_flash_block(start, len(data)) == data


def test_flash_block_unaligned_fills_page_start():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    sim.flash[:] = bytes(len(sim.flash))
    pagesize = mem.device.pagesize
    start = pagesize + 2
    data = bytes(range(1, 201))
    mem.write_flash_block(start, data)
    assert mem.read_flash_block(start, len(data)) == data
    assert sim.flash[pagesize:start] == bytes([FILL_BYTE]) * 2


def test_flash_round_trip_bytewise_device():
    sim, mem = _setup(DeviceIndex.AT90CAN128)
    data = bytes((255 - i) & 0xFF for i in range(600))
    mem.write_flash_block(0, data)
    assert mem.read_flash_block(0, len(data)) == data


def test_flash_page_load_shift_widths():
    sim, mem = _setup(DeviceIndex.AT90CAN128)
    pagesize = mem.device.pagesize
    mem.write_flash_page(0, pagesize, bytes(pagesize))
    assert sim.pageload_lengths == [8] * pagesize

    sim, mem = _setup(DeviceIndex.ATMEGA16)
    pagesize = mem.device.pagesize
    mem.write_flash_page(0, pagesize, bytes(pagesize))
    assert sim.pageload_lengths == [pagesize * 8]


def test_write_flash_page_program_sequence():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    pagesize = mem.device.pagesize
    mem.write_flash_page(1, pagesize, bytes(pagesize))
    assert sim.commands[0] == 0x2310
    start = sim.commands.index(0x3500) - 1
    assert sim.commands[start : start + 4] == [0x3700, 0x3500, 0x3700, 0x3700]


def test_write_flash_page_timeout():
    sim, mem = _setup(DeviceIndex.ATMEGA16, busy=False)
    with pytest.raises(AvrError):
        mem.write_flash_page(0, mem.device.pagesize, bytes(mem.device.pagesize))


def test_write_flash_page_short_data():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    with pytest.raises(ValueError):
        mem.write_flash_page(0, mem.device.pagesize, b"\x00")


def test_read_flash_word():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    sim.flash[0x10:0x12] = b"\x34\x12"
    assert mem.read_flash_word(8) == 0x1234


def test_read_flash_block_beyond_flash():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    assert mem.read_flash_block(mem.device.flash, 10) == b""


def test_verify_flash_block_counts_mismatches():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    data = bytes(i & 0xFF for i in range(400))
    mem.write_flash_block(0, data)
    assert mem.verify_flash_block(0, data) == 0
    sim.flash[3] ^= 0xFF
    sim.flash[300] ^= 0x01
    assert mem.verify_flash_block(0, data) == 2


def test_eeprom_block_round_trip():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    data = b"hello world"
    mem.write_eeprom_block(5, data)
    assert mem.read_eeprom_block(5, len(data)) == data


def test_eeprom_block_round_trip_eight_byte_pages():
    sim, mem = _setup(DeviceIndex.AT90CAN128)
    data = bytes(range(40))
    mem.write_eeprom_block(3, data)
    assert mem.read_eeprom_block(3, len(data)) == data


def test_eeprom_write_fills_rest_of_page():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    sim.eeprom[:] = bytes(len(sim.eeprom))
    mem.write_eeprom_block(9, b"\x5a")
    assert sim.eeprom[8:12] == bytes([FILL_BYTE, 0x5A, FILL_BYTE, FILL_BYTE])


def test_read_eeprom_block_clipped_and_out_of_range():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    size = mem.device.eeprom
    sim.eeprom[-3:] = b"abc"
    assert mem.read_eeprom_block(size - 3, 10) == b"abc"
    assert mem.read_eeprom_block(size, 4) == b""


def test_read_eeprom_byte_and_page():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    sim.eeprom[0x42] = 0x5A
    assert mem.read_eeprom_byte(0x42) == 0x5A
    sim.eeprom[16:32] = bytes(range(16))
    assert mem.read_eeprom_page(1) == bytes(range(16))


def test_write_eeprom_page_timeout():
    clock = itertools.count(0, 1).__next__
    sim, mem = _setup(DeviceIndex.ATMEGA16, busy=False, clock=clock)
    with pytest.raises(AvrError):
        mem.write_eeprom_page(0, 4, b"abcd")


def test_read_fuses_matches_defaults():
    sim, mem = _setup(DeviceIndex.ATMEGA162)
    settings = mem.read_fuses()
    expected = FuseSettings.defaults(DeviceIndex.ATMEGA162)
    assert settings.fuse_bytes == expected.fuse_bytes
    assert settings.bits == expected.bits
    assert settings.lock == expected.lock


def test_read_fuses_skips_extended_byte():
    sim, mem = _setup(DeviceIndex.ATMEGA32)
    sim.fuses["ext"] = 0x12
    settings = mem.read_fuses()
    assert 0x3E00 not in sim.commands
    assert settings.extended == FuseSettings().extended


def test_write_fuses_round_trip():
    sim, mem = _setup(DeviceIndex.ATMEGA162)
    settings = FuseSettings.defaults(DeviceIndex.ATMEGA162)
    settings.bits.EESAVE = 0
    settings.bits.SUT = 1
    settings.encode(DeviceIndex.ATMEGA162)
    mem.write_fuses(settings)
    back = mem.read_fuses()
    assert back.fuse_bytes == settings.fuse_bytes
    assert back.bits == settings.bits


def test_write_fuses_keeps_jtag_enabled():
    sim, mem = _setup(DeviceIndex.ATMEGA162)
    settings = FuseSettings.defaults(DeviceIndex.ATMEGA162)
    settings.bits.JTAGEN = 1
    settings.encode(DeviceIndex.ATMEGA162)
    assert settings.high & 0x40
    mem.write_fuses(settings)
    assert settings.bits.JTAGEN == 0
    assert sim.fuses["high"] & 0x40 == 0


def test_write_fuses_timeout():
    sim, mem = _setup(DeviceIndex.ATMEGA162, busy=False)
    with pytest.raises(AvrError):
        mem.write_fuses(FuseSettings.defaults(DeviceIndex.ATMEGA162))


def test_write_lock_only_when_updated():
    sim, mem = _setup(DeviceIndex.ATMEGA16)
    settings = FuseSettings.defaults(DeviceIndex.ATMEGA16)
    settings.lock_bits.LB = 0
    settings.encode(DeviceIndex.ATMEGA16)
    assert mem.write_lock(settings) is False
    assert sim.fuses["lock"] == FuseSettings.defaults(DeviceIndex.ATMEGA16).lock
    settings.lock_updated = True
    assert mem.write_lock(settings) is True
    assert sim.fuses["lock"] == settings.lock


def test_device_lookup_used_by_memory():
    device = find_device(0x9403)
    sim = SimulatedAvr(device)
    mem = AvrMemory(AvrLink(sim, sleep=lambda _s: None), device)
    data = b"\x01\x02\x03"
    mem.write_eeprom_block(0, data)
    assert mem.read_eeprom_block(0, 3) == data