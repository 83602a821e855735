"""Reading and writing flash, EEPROM, fuses and lock bits of AVR devices over JTAG."""

from __future__ import annotations

import logging
import time
from typing import Callable

from .avrlink import BUSY_FLAG, AvrError, AvrInstruction, AvrLink, bits_to_bytes, bytes_to_bits
from .devices import FILL_BYTE, T_WLRH, T_WLRH_CE, AvrDevice, DeviceIndex
from .fusebits import FuseSettings

log = logging.getLogger(__name__)

EEPROM_READ_PAGE_SIZE = 16
MIN_VERIFY_BLOCK = 256
MAX_VERIFY_BLOCK = 2048
VERIFY_DIVISOR = 78
MAX_VERIFY_ERRORS = 5
FUSE_POLL_LIMIT = 1000

_D = DeviceIndex
_EXTENDED_ADDRESS = frozenset({_D.AT90USB1287, _D.ATMEGA640})
_BYTEWISE_PAGE = frozenset({_D.AT90USB1287, _D.AT90CAN128, _D.ATMEGA640})
_EEPROM_BLOCK_8 = frozenset({_D.AT90USB1287, _D.AT90CAN128, _D.ATMEGA128, _D.ATMEGA64})
_NO_EXTENDED_FUSE = frozenset({_D.ATMEGA323, _D.ATMEGA32, _D.ATMEGA64})


def nearest_block_size(x: int) -> int:
    """Smallest power of two that is greater than ``x``."""
    if x < 0:
        raise ValueError(f"negative size {x}")
    return 1 << x.bit_length()


class AvrMemory:
    """Memory access of one AVR device; programming mode must be enabled by the caller."""

    def __init__(
        self,
        link: AvrLink,
        device: AvrDevice,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.link = link
        self.device = device
        self._clock = clock

    # -- helpers -----------------------------------------------------------

    def _cmd(self, command: int) -> int:
        return self.link.prog_command(command & 0xFFFF)

    def _enter_commands(self) -> None:
        self.link.send_instruction(AvrInstruction.PROG_COMMANDS)

    def _load_flash_address(self, word: int) -> None:
        if self.device.index in _EXTENDED_ADDRESS:
            self._cmd(0x0B00 | ((word >> 16) & 0xFF))
        self._cmd(0x0700 | ((word >> 8) & 0xFF))
        self._cmd(0x0300 | (word & 0xFF))

    def _poll_fuse(self, command: int, what: str) -> None:
        for _ in range(FUSE_POLL_LIMIT):
            if self._cmd(command) & BUSY_FLAG:
                return
        raise AvrError(f"problem writing {what}")

    @property
    def _eeprom_block_size(self) -> int:
        return 8 if self.device.index in _EEPROM_BLOCK_8 else 4

    # -- flash -------------------------------------------------------------

    def read_flash_page(self, page: int, pagesize: int) -> bytes:
        """Read one flash page of ``pagesize`` bytes."""
        self._enter_commands()
        self._cmd(0x2302)
        self._load_flash_address((page * pagesize) >> 1)
        self.link.send_instruction(AvrInstruction.PROG_PAGEREAD)
        if self.device.index in _BYTEWISE_PAGE:
            bits = "".join(self.link.send_data_output("0" * 8) for _ in range(pagesize))
        else:
            # One extra byte is shifted; the first eight bits are not page data.
            bits = self.link.send_data_output("0" * ((pagesize + 1) * 8))[8:]
        self._enter_commands()
        return bits_to_bytes(bits[: pagesize * 8])

    def write_flash_page(self, page: int, pagesize: int, data: bytes) -> None:
        """Load and program one flash page from the first ``pagesize`` bytes of ``data``."""
        if len(data) < pagesize:
            raise ValueError(f"page needs {pagesize} bytes, got {len(data)}")
        page_bits = bytes_to_bits(bytes(data[:pagesize]), pagesize * 8)
        self._enter_commands()
        self._cmd(0x2310)
        self._load_flash_address(page * (pagesize // 2))
        self.link.send_instruction(AvrInstruction.PROG_PAGELOAD)
        if self.device.index in _BYTEWISE_PAGE:
            for offset in range(0, len(page_bits), 8):
                self.link.send_data(page_bits[offset : offset + 8])
        else:
            self.link.send_data(page_bits)
        self._enter_commands()
        for command in (0x3700, 0x3500, 0x3700, 0x3700):
            self._cmd(command)
        if not self.link.wait_ready(0x3700, T_WLRH_CE):
            raise AvrError(f"writing page {page} failed")

    def read_flash_word(self, address: int) -> int:
        """Read the flash word at word address ``address``."""
        self._enter_commands()
        self._cmd(0x2302)
        self._cmd(0x0700 | ((address >> 8) & 0xFF))
        self._cmd(0x0300 | (address & 0xFF))
        self._cmd(0x3200)
        low = self._cmd(0x3600) & 0xFF
        high = self._cmd(0x3700)
        return ((high << 8) | low) & 0xFFFF

    def read_flash_block(self, start: int, length: int) -> bytes:
        """Read ``length`` bytes of flash from ``start``, clipped to the flash size."""
        if length < 0:
            raise ValueError(f"negative length {length}")
        size = self.device.flash
        if start >= size:
            return b""
        length = min(length, size - start) or 1
        pagesize = self.device.pagesize
        page, offset = divmod(start, pagesize)
        out = bytearray()
        while len(out) < length:
            out += self.read_flash_page(page, pagesize)[offset:]
            log.debug("read flash page %d", page)
            offset = 0
            page += 1
        return bytes(out[:length])

    def write_flash_block(self, start: int, data: bytes) -> None:
        """Program ``data`` at ``start``; partial pages are filled with 0xFF."""
        size = self.device.flash
        if start >= size:
            raise ValueError(f"start address 0x{start:X} beyond flash size")
        data = bytes(data[: size - start])
        if not data:
            return
        pagesize = self.device.pagesize
        page, index = divmod(start, pagesize)
        image = bytearray([FILL_BYTE]) * index + data
        image += bytearray([FILL_BYTE]) * (-len(image) % pagesize)
        for offset in range(0, len(image), pagesize):
            self.write_flash_page(page, pagesize, image[offset : offset + pagesize])
            log.info("Written Flash page %4d", page)
            page += 1
        log.info("Written Flash from 0x%X to 0x%X", start, start + len(data) - 1)

    def verify_flash_block(self, start: int, data: bytes) -> int:
        """Compare flash from ``start`` with ``data``; return the number of mismatches."""
        length = len(data)
        if not length:
            return 0
        bsize = min(max(nearest_block_size(length // VERIFY_DIVISOR), MIN_VERIFY_BLOCK), MAX_VERIFY_BLOCK)
        errors = 0
        for offset in range(0, length, bsize):
            self.link.prog_enable()
            block = self.read_flash_block(start + offset, bsize)
            self.link.prog_disable()
            for k, expected in enumerate(data[offset : offset + bsize]):
                found = block[k] if k < len(block) else None
                if found != expected:
                    errors += 1
                    if errors <= MAX_VERIFY_ERRORS:
                        log.warning(
                            "Verify failed at 0x%05X: Read %s Expected 0x%02X",
                            start + offset + k,
                            "nothing" if found is None else f"0x{found:02X}",
                            expected,
                        )
        return errors

    # -- EEPROM ------------------------------------------------------------

    def read_eeprom_byte(self, address: int) -> int:
        """Read one EEPROM byte."""
        self._enter_commands()
        self._cmd(0x2303)
        self._cmd(0x0700 | ((address >> 8) & 0xFF))
        self._cmd(0x0300 | (address & 0xFF))
        self._cmd(0x3300 | (address & 0xFF))
        self._cmd(0x3200)
        return self._cmd(0x3300) & 0xFF

    def read_eeprom_page(self, page: int) -> bytes:
        """Read a 16-byte EEPROM page."""
        self._enter_commands()
        self._cmd(0x2303)
        address = (page * EEPROM_READ_PAGE_SIZE) & 0xFFFF
        out = bytearray()
        for _ in range(EEPROM_READ_PAGE_SIZE):
            self._cmd(0x0700 | (address >> 8))
            self._cmd(0x0300 | (address & 0xFF))
            self._cmd(0x3300 | (address & 0xFF))
            self._cmd(0x3200)
            out.append(self._cmd(0x3300) & 0xFF)
            address = (address + 1) & 0xFFFF
        return bytes(out)

    def write_eeprom_page(self, page: int, pagesize: int, data: bytes) -> None:
        """Program one EEPROM page of ``pagesize`` bytes."""
        if len(data) < pagesize:
            raise ValueError(f"page needs {pagesize} bytes, got {len(data)}")
        self._enter_commands()
        self._cmd(0x2311)
        address = (page * pagesize) & 0xFFFF
        self._cmd(0x0700 | (address >> 8))
        for value in data[:pagesize]:
            self._cmd(0x0300 | (address & 0xFF))
            address = (address + 1) & 0xFFFF
            self._cmd(0x1300 | (value & 0xFF))
            for command in (0x3700, 0x7700, 0x3700):
                self._cmd(command)
        for command in (0x3300, 0x3100, 0x3300, 0x3300):
            self._cmd(command)
        deadline = self._clock() + T_WLRH / 1_000_000
        while True:
            if self._cmd(0x3300) & BUSY_FLAG:
                return
            if self._clock() > deadline:
                raise AvrError(f"problem writing EEPROM page {page}")

    def read_eeprom_block(self, start: int, length: int) -> bytes:
        """Read ``length`` EEPROM bytes from ``start``, clipped to the EEPROM size."""
        if length < 0:
            raise ValueError(f"negative length {length}")
        size = self.device.eeprom
        if start >= size:
            return b""
        length = min(length, size - start) or 1
        page, offset = divmod(start, EEPROM_READ_PAGE_SIZE)
        out = bytearray()
        while len(out) < length:
            out += self.read_eeprom_page(page)[offset:]
            offset = 0
            page += 1
        return bytes(out[:length])

    def write_eeprom_block(self, start: int, data: bytes) -> None:
        """Program ``data`` at ``start``; untouched bytes of a written page become 0xFF."""
        blocksize = self._eeprom_block_size
        page, index = divmod(start, blocksize)
        pos = 0
        while pos < len(data):
            buffer = bytearray([FILL_BYTE]) * blocksize
            chunk = data[pos : pos + blocksize - index]
            buffer[index : index + len(chunk)] = chunk
            pos += len(chunk)
            index = 0
            self.write_eeprom_page(page, blocksize, buffer)
            log.info("Written EEPROM page %d", page)
            page += 1
        if data:
            log.info("Written EEPROM from 0x%03X to 0x%03X", start, start + len(data) - 1)

    # -- fuses and lock bits ----------------------------------------------

    def read_fuses(self) -> FuseSettings:
        """Read and decode the fuse and lock bytes."""
        settings = FuseSettings()
        self._enter_commands()
        self._cmd(0x2304)
        self._cmd(0x3A00)
        if self.device.index not in _NO_EXTENDED_FUSE:
            settings.extended = self._cmd(0x3E00) & 0xFF
        settings.high = self._cmd(0x3200) & 0xFF
        settings.low = self._cmd(0x3600) & 0xFF
        settings.lock = self._cmd(0x3700) & 0xFF
        settings.decode(self.device.index)
        return settings

    def write_fuses(self, settings: FuseSettings) -> None:
        """Program the fuse bytes; JTAG is always left enabled."""
        if settings.bits.JTAGEN:
            settings.bits.JTAGEN = 0
            settings.high &= ~(1 << 6) & 0xFF
        self._enter_commands()
        self._cmd(0x2340)
        if self.device.index not in _NO_EXTENDED_FUSE:
            self._cmd(0x1300 | (settings.extended & 0xFF))
            for command in (0x3B00, 0x3900, 0x3B00, 0x3B00):
                self._cmd(command)
            self._poll_fuse(0x3B00, "fuse extended byte")
            log.info("Fuse Extended Byte Written")
        self._cmd(0x1300 | (settings.high & 0xFF))
        for command in (0x3700, 0x3500, 0x3700, 0x3700):
            self._cmd(command)
        self._poll_fuse(0x3700, "fuse high byte")
        log.info("Fuse High Byte Written")
        self._cmd(0x1300 | (settings.low & 0xFF))
        for command in (0x3300, 0x3100, 0x3300, 0x3300):
            self._cmd(command)
        self._poll_fuse(0x3300, "fuse low byte")
        log.info("Fuse Low Byte Written")

    def write_lock(self, settings: FuseSettings) -> bool:
        """Program the lock byte if it was given; return whether it was written."""
        if not settings.lock_updated:
            return False
        self._enter_commands()
        self._cmd(0x2320)
        log.info("Lockbits: %02X", settings.lock)
        self._cmd(0x13C0 | (settings.lock & 0xFF))
        for command in (0x3300, 0x3100, 0x3300, 0x3300):
            self._cmd(command)
        self._poll_fuse(0x3300, "lock bits")
        log.info("Lock Bits Written")
        return True