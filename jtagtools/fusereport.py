"""Human-readable reports and fuse files for decoded ATMega fuse settings."""

from __future__ import annotations

import os
from typing import Iterator

from .devices import AvrDevice, DeviceIndex
from .fusebits import FuseBits, FuseSettings

_D = DeviceIndex

# CKOPT, CKSEL3..0
CKSEL_DATA = (
    "External Clock - 36p Capacitor Switched in",
    "Internal RC Clock (Invalid CKOPT should not be programmed)",
    "Internal RC Clock (Invalid CKOPT should not be programmed)",
    "Internal RC Clock (Invalid CKOPT should not be programmed)",
    "Internal RC Clock (Invalid CKOPT should not be programmed)",
    "External RC Clock - 36p Capacitor Switched in (-0.9 MHz)",
    "External RC Clock - 36p Capacitor Switched in (0.9-3 MHz)",
    "External RC Clock - 36p Capacitor Switched in (3-8 MHz)",
    "External RC Clock - 36p Capacitor Switched in (8-12 MHz)",
    "Extenal Low Freq Crystal - 36p Capcitors switched in",
    "External Crystal (1 - 16MHz)",
    "External Crystal (1 - 16MHz)",
    "External Crystal (1 - 16MHz)",
    "External Crystal (1 - 16MHz)",
    "External Crystal (1 - 16MHz)",
    "External Crystal (1 - 16MHz)",
    "External Clock",
    "Internal RC Clock (1 MHz Nominal)",
    "Internal RC Clock (2 MHz Nominal)",
    "Internal RC Clock (4 MHz Nominal)",
    "Internal RC Clock (8 MHz Nominal)",
    "External RC Clock (-0.9 MHz)",
    "External RC Clock (0.9-3 MHz)",
    "External RC Clock (3-8 MHz)",
    "External RC Clock (8-12 MHz)",
    "Extenal Low Freq Crystal",
    "External Crystal (0.4 - 0.9MHz)",
    "External Crystal (0.4 - 0.9MHz)",
    "External Crystal (0.9 - 3.0MHz)",
    "External Crystal (0.9 - 3.0MHz)",
    "External Crystal (3.0 - 8MHz)",
    "External Crystal (3.0 - 8MHz)",
)

CKSEL_DATA1 = (
    "External Clock",
    "Reserved",
    "Internal 8 MHz RC Clock",
    "Reserved",
    "External LF Crystal 1K CK",
    "External LF Crystal 32 CK",
    "External LF Crystal 1K CK",
    "External LF Crystal 32 CK",
    "External Ceramic Resonator(0.4 - 0.9 MHz)",
    "External Ceramic Resonator(0.4 - 0.9 MHz)",
    "External Crystal (0.9 - 3MHz)",
    "External Crystal (0.9 - 3MHz)",
    "External Crystal (3 - 8MHz)",
    "External Crystal (3 - 8MHz)",
    "External Crystal (8 - 16MHz)",
    "External Crystal (8 - 16MHz)",
)

TRUE_FALSE = ("True", "False")

# CKSEL0, SUT1..0
SUT_XTAL = (
    "258CK + 4ms (Reset) Ceramic Resonator, fast rising power",
    "258CK + 64ms (Reset) Ceramic Resonator, slow rising power",
    "1K CK Ceramic Resonator, BOD enabled",
    "1K CK + 4ms (Reset) Ceramic Resonator, fast rising power",
    "1K CK + 64ms (Reset) Ceramic Resonator, slow rising power",
    "16K CK Crystal, BOD enabled",
    "16K CK + 4ms (Reset), Crystal, fast rising power",
    "16K CK + 64ms (Reset), Crystal, slow rising power",
)

SUT_LOW_XTAL = (
    "1K CK + 4ms (Reset) fast rising power or BOD Enabled",
    "1K CK + 64ms (Reset), slow rising power",
    "32K CK + 64ms (Reset), stable frequency at start-up",
    "Reserved",
)

SUT_EXT_RC = (
    "18 CK, BOD Enabled",
    "18 CK + 4ms (Reset), Fast rising power",
    "18 CK + 64ms (Reset), Slow rising power",
    "6 CK + 4ms (Reset), Fast rising power or BOD Enabled",
)

SUT_INT_RC = (
    "6 CK, BOD Enabled",
    "6 CK + 4ms (Reset), Fast rising power",
    "6 CK + 64ms (Reset), Slow rising power",
    "Reserved",
)

_MEGA_OLD = frozenset({_D.ATMEGA64, _D.ATMEGA128, _D.ATMEGA16, _D.ATMEGA32, _D.ATMEGA323})
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
_NO_EXTENDED_DISPLAY = frozenset(
    {_D.ATMEGA64, _D.ATMEGA323, _D.ATMEGA32, _D.ATMEGA16, _D.UNKNOWN_DEVICE}
)
_NO_EXTENDED_FILE = frozenset({_D.ATMEGA323, _D.ATMEGA32, _D.ATMEGA64})

_CAN_BOD = {0: 2.5, 1: 2.6, 2: 2.7, 3: 3.8, 4: 3.9, 5: 4.0, 6: 4.1, 7: 0.0}
_USB1287_BOD = {0: 4.3, 1: 3.5, 2: 3.4, 3: 2.6, 7: 0.0}
_MEGA162_BOD = {3: 2.3, 4: 4.3, 5: 2.7, 6: 1.8, 7: 0.0}
_MEGA_NEW_BOD = {4: 4.3, 5: 2.7, 6: 1.8, 7: 0.0}


def _tf(value: int) -> str:
    return TRUE_FALSE[value & 1]


def startup_time_text(bits: FuseBits) -> str:
    """Describe the start-up time selected by the CKSEL and SUT fields."""
    cksel = bits.CKSEL & 0x0F
    sut = bits.SUT & 0x03
    if cksel == 0:
        return "None"
    if 1 <= cksel <= 4:
        return SUT_INT_RC[sut]
    if 5 <= cksel <= 8:
        return SUT_EXT_RC[sut]
    if cksel == 9:
        return SUT_LOW_XTAL[sut]
    return SUT_XTAL[((cksel & 0x01) << 2) | sut]


def brownout_threshold(index: DeviceIndex, bits: FuseBits) -> float | None:
    """Brown-out threshold in volts; 0.0 when disabled, None when reserved."""
    level = bits.BODLEVEL
    if index in _MEGA_OLD:
        if not bits.BODEN:
            return 0.0
        return 4.0 if level else 2.7
    if index in _CAN_FAMILY:
        return _CAN_BOD.get(level, 0.0)
    if index is _D.AT90USB1287:
        return _USB1287_BOD.get(level)
    if index is _D.ATMEGA162:
        return _MEGA162_BOD.get(level)
    if index in _MEGA_2560_FAMILY or index in _MEGA_169_FAMILY:
        return _MEGA_NEW_BOD.get(level)
    return 0.0


def _bootsize(device: AvrDevice, bits: FuseBits) -> int:
    return 256 << ((~bits.BOOTSIZE & 3) + device.bootsize)


def _display_lines(device: AvrDevice, settings: FuseSettings) -> Iterator[str]:
    index = device.index
    b = settings.bits
    lb = settings.lock_bits

    yield 'Fuse Bits: 0="Programmed" => True\n'
    if index not in _NO_EXTENDED_DISPLAY:
        yield f"Extended Fuse Byte: 0x{settings.extended:02X} "
    yield f"High Fuse Byte: 0x{settings.high:02X} "
    yield f"Low Fuse Byte: 0x{settings.low:02X}\n"

    cksel = b.CKSEL & 0x0F
    if index in (_D.ATMEGA128, _D.ATMEGA16, _D.ATMEGA32):
        selector = cksel | ((b.CKOPT & 1) << 4)
        yield f"CKSEL: {b.CKSEL:X} CKOPT: {b.CKOPT}  {CKSEL_DATA[selector]}\n"
    elif index is _D.ATMEGA323:
        yield f"CKSEL: {b.CKSEL:X} {CKSEL_DATA1[cksel]} \n"
    elif index is not _D.UNKNOWN_DEVICE:
        divided = "" if b.CKDIV8 else " divided by 8"
        yield f"CKSEL: {b.CKSEL:X} {CKSEL_DATA1[cksel]}{divided}\n"

    if index is not _D.ATMEGA32:
        yield f"SUT: {b.SUT:X}   {startup_time_text(b)}\n"

    if index in (_D.ATMEGA128, _D.ATMEGA64):
        yield f"M103C   : {b.M103C}  ({_tf(b.M103C)})\n"
        yield f"WDTON   : {b.WDTON}  ({_tf(b.WDTON)})\n"
    elif index is _D.ATMEGA162:
        yield f"M61C    : {b.M161C}  ({_tf(b.M161C)})\n"
        yield f"BODLEVEL: {b.BODLEVEL}\n"
    elif index in _MEGA_169_FAMILY:
        yield f"BODLEVEL: {b.BODLEVEL}\n"
        yield f"RESETDIS: {b.RESETDIS}  ({_tf(b.RESETDIS)})\n"
    elif index in _CAN_FAMILY:
        yield f"BODLEVEL: {b.BODLEVEL}\n"
        yield f"TA0SEL: {b.TA0SEL}  ({_tf(b.TA0SEL)})\n"
    elif index is _D.AT90USB1287 or index in _MEGA_2560_FAMILY:
        if index is _D.AT90USB1287:
            yield f"HWBE    : {b.HWBE}  ({_tf(b.HWBE)})\n"
        yield f"BODLEVEL: {b.BODLEVEL}\n"

    if index in _MEGA_OLD or index in _NEWER:
        bootsize = _bootsize(device, b)
        yield f"OCDEN   : {b.OCDEN}  ({_tf(b.OCDEN)})\n"
        yield f"JTAGEN  : {b.JTAGEN}  ({_tf(b.JTAGEN)})\n"
        yield f"SPIEN   : {b.SPIEN}  ({_tf(b.SPIEN)})\n"
        yield f"WDTON   : {b.WDTON}  ({_tf(b.WDTON)})\n"
        yield f"EESAVE  : {b.EESAVE}  ({_tf(b.EESAVE)})\n"
        yield f"BOOTSIZE: {b.BOOTSIZE:X}  Size: {bootsize} Bytes"
        if bootsize:
            yield f"  Start:0x{device.flash - bootsize:05X}\n"
        else:
            yield "\n"
        yield f"BOOTRST : {b.BOOTRST}  ({_tf(b.BOOTRST)})\n"
        if index in _NEWER:
            yield f"CKDIV8  : {b.CKDIV8}  ({_tf(b.CKDIV8)})\n"
            yield f"CKOUT   : {b.CKOUT}  ({_tf(b.CKOUT)})\n"

    threshold = brownout_threshold(index, b)
    if threshold is None:
        yield "Reserved Brownout Threshold\n"
    elif threshold > 0.01:
        yield f"Brownout Threshold {threshold:1.1f} Volt\n"
    else:
        yield "Brownout Disabled\n"

    yield f"Lock Byte: 0x{settings.lock:02X} \n"
    yield f"BLB0     : {lb.BLB0}\n"
    yield f"BLB1     : {lb.BLB1}\n"
    yield f"LB       : {lb.LB}\n"


def format_fuse_data(device: AvrDevice, settings: FuseSettings) -> str:
    """Report of the fuse bytes, their fields and the lock bits of ``device``."""
    return "".join(_display_lines(device, settings))


def _file_lines(device: AvrDevice, settings: FuseSettings) -> Iterator[str]:
    index = device.index
    b = settings.bits
    lb = settings.lock_bits

    yield f";{device.name} Fuse Bit definitions\n"
    yield ";0 => Programmed, 1 => Not Programmed\n"
    ext = "" if index in _NO_EXTENDED_FILE else f"Ext 0x{settings.extended:02x} "
    yield (
        f";{ext}High 0x{settings.high:02x} Low 0x{settings.low:02x} "
        f"Lock 0x{settings.lock:02x}\n"
    )

    common_newer = (
        f"OCDEN: {b.OCDEN}\n",
        f"JTAGEN: {b.JTAGEN}\n",
        f"SPIEN: {b.SPIEN}\n",
        f"WDTON: {b.WDTON}\n",
        f"EESAVE: {b.EESAVE}\n",
        f"BOOTSIZE: {b.BOOTSIZE}\n",
        f"BOOTRST: {b.BOOTRST}\n",
        f"CKDIV8: {b.CKDIV8}\n",
        f"CKOUT: {b.CKOUT}\n",
        f"SUT: {b.SUT}\n",
        f"CKSEL: 0x{b.CKSEL:X}\n",
    )

    if index in _MEGA_OLD:
        if index in (_D.ATMEGA64, _D.ATMEGA128):
            yield f"M103C: {b.M103C}\n"
            yield f"WDTON: {b.WDTON}\n"
        if index is not _D.ATMEGA323:
            yield f"SUT: {b.SUT}\n"
            yield f"CKOPT: {b.CKOPT}\n"
        yield f"OCDEN: {b.OCDEN}\n"
        yield f"JTAGEN: {b.JTAGEN}\n"
        yield f"SPIEN: {b.SPIEN}\n"
        yield f"EESAVE: {b.EESAVE}\n"
        yield f"BOOTSIZE: {b.BOOTSIZE}\n"
        yield f"BOOTRST: {b.BOOTRST}\n"
        yield f"BODLEVEL: 0x{b.BODLEVEL:X}\n"
        yield f"BODEN: {b.BODEN}\n"
        yield f"CKSEL: 0x{b.CKSEL:X}\n"
    elif index is _D.ATMEGA162:
        yield f"M161C: {b.M161C}\n"
        yield f"BODLEVEL: 0x{b.BODLEVEL:X}\n"
        yield from common_newer
    elif index in _MEGA_169_FAMILY:
        yield f"BODLEVEL: 0x{b.BODLEVEL:X}\n"
        yield f"RESETDIS: 0x{b.RESETDIS:X}\n"
        yield from common_newer
        yield f"CKSEL: 0x{b.CKSEL:X}\n"
    elif index in _CAN_FAMILY:
        yield f"BODLEVEL: 0x{b.BODLEVEL:X}\n"
        yield f"TA0SEL: 0x{b.TA0SEL:X}\n"
        yield from common_newer
        yield f"CKSEL: 0x{b.CKSEL:X}\n"
    elif index is _D.AT90USB1287 or index in _MEGA_2560_FAMILY:
        if index is _D.AT90USB1287:
            yield f"HWBE: 0x{b.HWBE:X}\n"
        yield f"BODLEVEL: 0x{b.BODLEVEL:X}\n"
        yield from common_newer
        yield f"CKSEL: 0x{b.CKSEL:X}\n"

    yield "; Lock Bit definitions (Need -L command line option to write)\n"
    yield f"BLB1: {lb.BLB1}\n"
    yield f"BLB0: {lb.BLB0}\n"
    yield f"LB: {lb.LB}\n"


def format_fuse_file(device: AvrDevice, settings: FuseSettings) -> str:
    """Text of a fuse definition file for ``device``."""
    return "".join(_file_lines(device, settings))


def write_fuse_file(
    path: str | os.PathLike[str], device: AvrDevice, settings: FuseSettings
) -> None:
    """Write a fuse definition file for ``device`` to ``path``."""
    with open(path, "w", encoding="ascii", newline="") as stream:
        stream.write(format_fuse_file(device, settings))