"""Fuse and lock bit fields of ATMega devices, packed into and out of fuse bytes."""

from __future__ import annotations

from dataclasses import dataclass, field

from .devices import DeviceIndex

_D = DeviceIndex

_NO_EXTENDED_BYTE_WRITE = frozenset({_D.ATMEGA16, _D.ATMEGA32, _D.ATMEGA323})
_MEGA_OLD = frozenset({_D.ATMEGA16, _D.ATMEGA32, _D.ATMEGA64, _D.ATMEGA128})
_MEGA_169_FAMILY = frozenset(
    {_D.ATMEGA169, _D.ATMEGA329, _D.ATMEGA3290, _D.ATMEGA649, _D.ATMEGA6490}
)
_CAN_FAMILY = frozenset({_D.AT90CAN32, _D.AT90CAN64, _D.AT90CAN128})
_MEGA_2560_FAMILY = frozenset(
    {_D.ATMEGA640, _D.ATMEGA1280, _D.ATMEGA1281, _D.ATMEGA2560, _D.ATMEGA2561}
)
_NEWER = (
    {_D.ATMEGA162, _D.AT90USB1287}
    | _MEGA_169_FAMILY
    | _CAN_FAMILY
    | _MEGA_2560_FAMILY
)

# Unused extended fuse bits read as 1 on the ATMega640 family.
_MEGA_2560_EXT_BASE = 0xF8


def _bit(value: int, position: int) -> int:
    return (value >> position) & 1


def _field(value: int, width: int) -> int:
    return value & ((1 << width) - 1)


@dataclass
class FuseBits:
    """Logical fuse fields; 0 means programmed."""

    M103C: int = 0
    M161C: int = 0
    WDTON: int = 0
    OCDEN: int = 0
    JTAGEN: int = 0
    SPIEN: int = 0
    CKOPT: int = 0
    EESAVE: int = 0
    BOOTSIZE: int = 0
    BOOTRST: int = 0
    BODLEVEL: int = 0
    BODEN: int = 0
    SUT: int = 0
    CKSEL: int = 0
    CKDIV8: int = 0
    CKOUT: int = 0
    TA0SEL: int = 0
    HWBE: int = 0
    RESETDIS: int = 0


@dataclass
class LockBits:
    """Lock and boot lock bit fields."""

    LB: int = 0
    BLB0: int = 0
    BLB1: int = 0


@dataclass
class FuseSettings:
    """Raw fuse and lock bytes together with their decoded fields."""

    low: int = 0
    high: int = 0
    extended: int = 0
    lock: int = 0
    lock_updated: bool = False
    bits: FuseBits = field(default_factory=FuseBits)
    lock_bits: LockBits = field(default_factory=LockBits)

    @property
    def fuse_bytes(self) -> tuple[int, int, int]:
        """The fuse bytes as (low, high, extended)."""
        return (self.low, self.high, self.extended)

    def decode(self, index: DeviceIndex) -> None:
        """Update the bit fields from the raw bytes for device ``index``."""
        b = self.bits
        high, low, ext = self.high, self.low, self.extended
        b.OCDEN = _bit(high, 7)
        b.JTAGEN = _bit(high, 6)
        b.SPIEN = _bit(high, 5)
        b.EESAVE = _bit(high, 3)
        b.BOOTSIZE = (high >> 1) & 0x03
        b.BOOTRST = _bit(high, 0)
        b.CKSEL = low & 0x0F
        self.lock_bits.LB = self.lock & 0x03
        self.lock_bits.BLB0 = (self.lock >> 2) & 0x03
        self.lock_bits.BLB1 = (self.lock >> 4) & 0x03

        if index in (_D.ATMEGA64, _D.ATMEGA128):
            b.M103C = _bit(ext, 1)
            b.WDTON = _bit(ext, 0)
        elif index is _D.ATMEGA162:
            b.M161C = _bit(ext, 4)
            b.BODLEVEL = (ext >> 1) & 0x07
        elif index in _MEGA_169_FAMILY:
            b.BODLEVEL = (ext >> 1) & 0x07
            b.RESETDIS = _bit(ext, 0)
        elif index in _CAN_FAMILY:
            b.BODLEVEL = (ext >> 1) & 0x07
            b.TA0SEL = _bit(ext, 0)
        elif index is _D.AT90USB1287 or index in _MEGA_2560_FAMILY:
            if index is _D.AT90USB1287:
                b.HWBE = _bit(ext, 3)
            b.BODLEVEL = ext & 0x07

        if index in _MEGA_OLD:
            b.CKOPT = _bit(high, 4)
            b.BODLEVEL = _bit(low, 7)
            b.BODEN = _bit(low, 6)
            b.SUT = (low >> 4) & 0x03
        elif index is _D.ATMEGA323:
            b.BODLEVEL = _bit(low, 7)
            b.BODEN = _bit(low, 6)
        elif index in _NEWER:
            b.WDTON = _bit(high, 4)
            b.CKDIV8 = _bit(low, 7)
            b.CKOUT = _bit(low, 6)
            b.SUT = (low >> 4) & 0x03

    def encode(self, index: DeviceIndex) -> None:
        """Rebuild the raw bytes from the bit fields for device ``index``."""
        b = self.bits
        bodlevel = _field(b.BODLEVEL, 3)

        if index in _NO_EXTENDED_BYTE_WRITE:
            self.extended = 0xFF
        elif index in (_D.ATMEGA64, _D.ATMEGA128) or index in _CAN_FAMILY:
            self.extended = 0xFC | (_field(b.M103C, 1) << 1) | _field(b.WDTON, 1)
        elif index is _D.ATMEGA162:
            self.extended = 0xE1 | (_field(b.M161C, 1) << 4) | (bodlevel << 1)
        elif index in _MEGA_169_FAMILY:
            self.extended = (0xF0 | (bodlevel << 1) | _field(b.RESETDIS, 1)) & 0xFF
        elif index is _D.AT90USB1287:
            ext = 0xF4 & ~(_field(b.HWBE, 1) << 3) & 0xFF
            self.extended = ext | bodlevel
        elif index in _MEGA_2560_FAMILY:
            self.extended = _MEGA_2560_EXT_BASE | bodlevel

        high = (
            (_field(b.OCDEN, 1) << 7)
            | (_field(b.JTAGEN, 1) << 6)
            | (_field(b.SPIEN, 1) << 5)
            | (_field(b.WDTON, 1) << 4)
            | (_field(b.EESAVE, 1) << 3)
            | _field(b.BOOTRST, 1)
            | (_field(b.BOOTSIZE, 2) << 1)
        )
        if index in _MEGA_OLD:
            high = (high & 0xEF) | (_field(b.CKOPT, 1) << 4)
        elif index is _D.ATMEGA323:
            high &= 0xEF
        self.high = high

        low = _field(b.CKSEL, 4)
        if index in _MEGA_OLD or index is _D.ATMEGA323:
            if index in _MEGA_OLD:
                low |= _field(b.SUT, 2) << 4
            low |= (bodlevel << 7) & 0xFF
            low |= _field(b.BODEN, 1) << 6
        else:
            low |= _field(b.CKDIV8, 1) << 7
            low |= _field(b.CKOUT, 1) << 6
            low |= _field(b.SUT, 2) << 4
        self.low = low & 0xFF

        lb = self.lock_bits
        self.lock = (
            0xC0
            | _field(lb.LB, 2)
            | (_field(lb.BLB0, 2) << 2)
            | (_field(lb.BLB1, 2) << 4)
        )

    @staticmethod
    def defaults(index: DeviceIndex) -> FuseSettings:
        """Factory fuse settings, decoded for device ``index``."""
        settings = FuseSettings(low=0xE1, high=0x99, extended=0xFD, lock=0xFF)
        settings.decode(index)
        return settings