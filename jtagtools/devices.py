"""Table of AVR parts that can be programmed over JTAG, and IDCODE decoding."""

from __future__ import annotations

import enum
from dataclasses import dataclass

MAX_FLASH_SIZE = 1024 * 128
MAX_EEPROM_SIZE = 16384
FILL_BYTE = 0xFF

# Flash page write timing in microseconds (5 ms in the datasheet).
T_WLRH = 7000
# Chip erase timing in microseconds (10 ms in the datasheet).
T_WLRH_CE = 12000

ATMEL_MANUFACTURER = 0x01F

TAP_STATE_NAMES = (
    "EXIT2_DR",
    "EXIT1_DR",
    "SHIFT_DR",
    "PAUSE_DR",
    "SELECT_IR_SCAN",
    "UPDATE_DR",
    "CAPTURE_DR",
    "SELECT_DR_SCAN",
    "EXIT2_IR",
    "EXIT1_IR",
    "SHIFT_IR",
    "PAUSE_IR",
    "RUN_TEST_IDLE",
    "UPDATE_IR",
    "CAPTURE_IR",
    "TEST_LOGIC_RESET",
)


class DeviceIndex(enum.IntEnum):
    """Known AVR devices."""

    ATMEGA128 = 0
    ATMEGA64 = 1
    ATMEGA323 = 2
    ATMEGA32 = 3
    ATMEGA16 = 4
    ATMEGA162 = 5
    ATMEGA169 = 6
    AT90CAN128 = 7
    AT90USB1287 = 8
    ATMEGA640 = 9
    ATMEGA1280 = 10
    ATMEGA1281 = 11
    ATMEGA2560 = 12
    ATMEGA2561 = 13
    AT90CAN32 = 14
    AT90CAN64 = 15
    ATMEGA329 = 16
    ATMEGA3290 = 17
    ATMEGA649 = 18
    ATMEGA6490 = 19
    UNKNOWN_DEVICE = 0xFF


@dataclass(frozen=True)
class AvrDevice:
    """Memory layout and identity of one AVR part."""

    jtag_id: int
    eeprom: int
    flash: int
    ram: int
    bootsize: int
    pagesize: int
    index: DeviceIndex
    name: str

    @property
    def is_known(self) -> bool:
        return self.index is not DeviceIndex.UNKNOWN_DEVICE


@dataclass(frozen=True)
class JtagId:
    """The fields of a JTAG IDCODE."""

    version: int
    manuf_id: int
    partnumber: int

    @property
    def is_atmel(self) -> bool:
        return self.manuf_id == ATMEL_MANUFACTURER


_D = DeviceIndex

DEVICES: tuple[AvrDevice, ...] = (
    AvrDevice(0x9702, 4096, 131072, 4096, 2, 256, _D.ATMEGA128, "ATMega128"),
    AvrDevice(0x9602, 2048, 65536, 4096, 2, 256, _D.ATMEGA64, "ATMega64"),
    AvrDevice(0x9501, 1024, 32768, 2048, 1, 128, _D.ATMEGA323, "ATMega323"),
    AvrDevice(0x9502, 1024, 32768, 2048, 1, 256, _D.ATMEGA32, "ATMega32"),
    AvrDevice(0x9403, 512, 16384, 1024, 0, 128, _D.ATMEGA16, "ATMega16"),
    AvrDevice(0x9404, 512, 16384, 1024, 0, 128, _D.ATMEGA162, "ATMega162"),
    AvrDevice(0x9405, 512, 16384, 1024, 0, 128, _D.ATMEGA169, "ATMega169"),
    AvrDevice(0x9781, 4096, 131072, 4096, 2, 256, _D.AT90CAN128, "AT90CAN128"),
    AvrDevice(0x9782, 4096, 131072, 8192, 2, 256, _D.AT90USB1287, "AT90USB1287"),
    AvrDevice(0x9608, 4096, 65536, 8192, 2, 256, _D.ATMEGA640, "ATMega640"),
    AvrDevice(0x9703, 4096, 131072, 8192, 2, 256, _D.ATMEGA1280, "ATMega1280"),
    AvrDevice(0x9704, 4096, 131072, 8192, 2, 256, _D.ATMEGA1281, "ATMega1281"),
    AvrDevice(0x9801, 4096, 262144, 8192, 2, 256, _D.ATMEGA2560, "ATMega2560"),
    AvrDevice(0x9802, 4096, 262144, 8192, 2, 256, _D.ATMEGA2561, "ATMega2561"),
    AvrDevice(0x9781, 1024, 32768, 2048, 2, 256, _D.AT90CAN32, "AT90CAN32"),
    AvrDevice(0x9781, 2048, 65536, 4096, 2, 256, _D.AT90CAN64, "AT90CAN64"),
    AvrDevice(0x950B, 512, 16384, 1024, 1, 128, _D.ATMEGA329, "ATMega329"),
    AvrDevice(0x950C, 512, 16384, 1024, 1, 128, _D.ATMEGA3290, "ATMega3290"),
    AvrDevice(0x960B, 512, 16384, 1024, 1, 256, _D.ATMEGA649, "ATMega649"),
    AvrDevice(0x960C, 512, 16384, 1024, 1, 256, _D.ATMEGA6490, "ATMega6490"),
)

UNKNOWN = AvrDevice(0, 0, 0, 0, 0, 0, _D.UNKNOWN_DEVICE, "Unknown")


def find_device(partnumber: int) -> AvrDevice:
    """Return the first table entry with this JTAG part number, or UNKNOWN."""
    return next((d for d in DEVICES if d.jtag_id == partnumber), UNKNOWN)


def parse_jtag_id(idcode: int) -> JtagId:
    """Split a 32-bit IDCODE into version, manufacturer and part number."""
    value = idcode >> 1
    manuf_id = value & 0x7FF
    value >>= 11
    partnumber = value & 0xFFFF
    value >>= 16
    version = value & 0xF
    return JtagId(version=version, manuf_id=manuf_id, partnumber=partnumber)


def describe_device(device: AvrDevice, version: int) -> str:
    """One-line description of a device and its silicon revision."""
    revision = chr(ord("A") + version)
    return (
        f"{device.name}, Rev {revision} with {device.flash // 1024}K Flash, "
        f"{device.eeprom} Bytes EEPROM and {device.ram} Bytes RAM"
    )