"""Low-level AVR JTAG programming link: instructions, data shifts and programming commands."""

from __future__ import annotations

import abc
import enum
import logging
import time
from typing import Callable, Iterable

from .devices import T_WLRH_CE

log = logging.getLogger(__name__)

PROG_ENABLE_SIGNATURE = 0xA370
PROG_COMMAND_BITS = 15
INSTRUCTION_BITS = 4
BUSY_FLAG = 0x0200
POLL_INTERVAL_US = 1000


class AvrError(RuntimeError):
    """Raised when the AVR does not respond as expected."""


class AvrInstruction(enum.IntEnum):
    """4-bit JTAG instructions understood by AVR devices."""

    EXTEST = 0x0
    IDCODE = 0x1
    SAMPLE_PRELOAD = 0x2
    PROG_ENABLE = 0x4
    PROG_COMMANDS = 0x5
    PROG_PAGELOAD = 0x6
    PROG_PAGEREAD = 0x7
    AVR_RESET = 0xC
    BYPASS = 0xF


class JtagPort(abc.ABC):
    """A JTAG chain with the target device already selected."""

    @abc.abstractmethod
    def shift_ir(self, data: bytes) -> None:
        """Shift an instruction into the selected device."""

    @abc.abstractmethod
    def shift_dr(self, data: bytes, length: int, capture: bool) -> bytes | None:
        """Shift ``length`` bits of ``data`` through the data register.

        Returns the captured bits, least significant first, when ``capture``
        is true, otherwise None.
        """


def _bit_value(value: object) -> bool:
    if isinstance(value, str):
        return value == "1"
    return bool(value)


def bits_to_bytes(bits: Iterable[object]) -> bytes:
    """Pack bits (first bit is the least significant) into bytes.

    ``bits`` may be a string of '0'/'1' characters or a sequence of ints or bools;
    any character other than '1' counts as 0.
    """
    out = bytearray()
    for position, value in enumerate(bits):
        if position % 8 == 0:
            out.append(0)
        if _bit_value(value):
            out[-1] |= 1 << (position % 8)
    return bytes(out)


def bytes_to_bits(data: bytes, length: int) -> str:
    """Unpack the first ``length`` bits of ``data`` as a '0'/'1' string, least significant first."""
    if length < 0:
        raise ValueError(f"negative bit length {length}")
    if len(data) * 8 < length:
        raise ValueError(f"{len(data)} bytes cannot hold {length} bits")
    return "".join(
        "1" if data[i >> 3] & (1 << (i & 7)) else "0" for i in range(length)
    )


class AvrLink:
    """Programming interface of one AVR device on a JTAG chain."""

    def __init__(
        self, port: JtagPort, sleep: Callable[[float], None] = time.sleep
    ) -> None:
        self.port = port
        self._sleep = sleep

    def send_instruction(self, instruction: int) -> None:
        """Load a 4-bit instruction into the instruction register."""
        value = int(instruction)
        if not 0 <= value < (1 << INSTRUCTION_BITS):
            raise AvrError(f"instruction 0x{value:x} does not fit in 4 bits")
        log.debug("send instruction 0x%02x", value)
        self.port.shift_ir(bytes([value]))

    def send_data(self, bits: str | Iterable[object]) -> None:
        """Shift bits into the data register without reading back."""
        bits = list(bits)
        log.debug("send data, %d bits", len(bits))
        self.port.shift_dr(bits_to_bytes(bits), len(bits), False)

    def send_data_output(self, bits: str | Iterable[object]) -> str:
        """Shift bits through the data register and return what came out."""
        bits = list(bits)
        reply = self.port.shift_dr(bits_to_bytes(bits), len(bits), True)
        if reply is None:
            raise AvrError("no data captured from the data register")
        return bytes_to_bits(reply, len(bits))

    def prog_command(self, command: int) -> int:
        """Send a 15-bit programming command and return the 15 bits read back."""
        data = (command & 0xFFFF).to_bytes(2, "little")
        reply = self.port.shift_dr(data, PROG_COMMAND_BITS, True)
        if reply is None or len(reply) < 2:
            raise AvrError("no reply to programming command")
        result = int.from_bytes(reply[:2], "little") & ((1 << PROG_COMMAND_BITS) - 1)
        log.debug("prog command send 0x%04x rec 0x%04x", command, result)
        return result

    def reset(self) -> None:
        """Hold the AVR in reset through the JTAG reset register."""
        self.send_instruction(AvrInstruction.AVR_RESET)
        self.send_data("1")

    def release_reset(self) -> None:
        """Take the AVR out of reset and leave it bypassed."""
        self.send_instruction(AvrInstruction.AVR_RESET)
        self.send_data("0")
        self.send_instruction(AvrInstruction.BYPASS)

    def _send_word(self, value: int) -> None:
        self.port.shift_dr(value.to_bytes(2, "little"), 16, False)

    def prog_enable(self) -> None:
        """Enter programming mode."""
        self.send_instruction(AvrInstruction.PROG_ENABLE)
        self._send_word(PROG_ENABLE_SIGNATURE)

    def prog_disable(self) -> None:
        """Leave programming mode."""
        self.send_instruction(AvrInstruction.PROG_ENABLE)
        self._send_word(0)

    def wait_ready(self, command: int, timeout_us: int) -> bool:
        """Poll with ``command`` until the busy flag clears; False on timeout."""
        for _ in range(0, timeout_us + 999, POLL_INTERVAL_US):
            self._sleep(POLL_INTERVAL_US / 1_000_000)
            if self.prog_command(command) & BUSY_FLAG:
                return True
        return False

    def chip_erase(self) -> None:
        """Erase flash (and EEPROM unless EESAVE is programmed); prog_enable must come first."""
        self.send_instruction(AvrInstruction.PROG_COMMANDS)
        for command in (0x2380, 0x3180, 0x3380, 0x3380):
            self.prog_command(command)
        if not self.wait_ready(0x3380, T_WLRH_CE):
            raise AvrError("erase failed")
        log.debug("device erased")