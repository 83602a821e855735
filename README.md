# jtagtools

Tools for programmable-logic fuse maps, microcontroller images and AVR
programming over JTAG.

- **JEDEC fuse maps** (`jtagtools.jedec`): `JedecFile` reads `.jed` files
  from text or binary streams, exposes `device`, `version`, `date`,
  `fuse_count`, `pin_count` and the `checksum` given in the file, lets you
  read and change single fuses (`get_fuse`, `set_fuse`), resize the map
  (`set_length`), compute the 16-bit byte-sum checksum (`calc_checksum`) and
  write the map back out with `save`, laid out for XC95, XC95xxxX and XC2C
  device names. Malformed input or a fuse index out of range raises
  `JedecError`.
- **Motorola S-records** (`jtagtools.srecord`): `decode_line` decodes one
  line into an `SRecord`, `record_kind` classifies a record type, and
  `read_data` loads the data records of a stream into a `bytearray` and
  returns a `ReadResult` with start address, end address and byte count.
  Bad lines, or data that does not fit the buffer, raise `SRecordError`.
- **AVR device data** (`jtagtools.devices`): the table of known ATmega and
  AT90 parts (`DEVICES`, `AvrDevice`, `DeviceIndex`), `find_device` by JTAG
  part number, `parse_jtag_id` to split an IDCODE into a `JtagId`, and
  `describe_device` for a one-line summary.
- **AVR fuses** (`jtagtools.fusebits`, `jtagtools.fusereport`):
  `FuseSettings` holds the raw low/high/extended/lock bytes and their named
  fields (`FuseBits`, `LockBits`), with `decode`, `encode` and the factory
  `defaults` for a given device. `format_fuse_data` gives a readable report,
  `format_fuse_file` and `write_fuse_file` produce a fuse definition file,
  and `startup_time_text` and `brownout_threshold` describe single settings.
- **AVR JTAG programming** (`jtagtools.avrlink`, `jtagtools.avrmemory`):
  `AvrLink` sends AVR JTAG instructions (`AvrInstruction`), data shifts and
  15-bit programming commands, handles reset, programming mode and chip
  erase. `AvrMemory` builds on it for flash and EEPROM page and block reads
  and writes, flash verification, and fuse and lock reads and writes.
  Both work over any object implementing the abstract `JtagPort`
  (`shift_ir`, `shift_dr`). Timeouts and missing replies raise `AvrError`;
  progress is reported through the `logging` module.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

`jedecparse` reads a JEDEC file, prints its device, fuse count, calculated
and stored checksums, version and date to standard error, and, when given an
output name, writes the map out again:

```
jedecparse design.jed            # report only
jedecparse design.jed out.jed    # report and write a normalised copy
jedecparse - < design.jed        # read from standard input
jedecparse design.jed -          # write the copy to standard output
```

## Library use

```python
from jtagtools.jedec import JedecFile

jed = JedecFile()
with open("design.jed", "rb") as stream:
    jed.read(stream)
print(jed.calc_checksum())
jed.set_fuse(0, True)
with open("copy.jed", "w", newline="") as out:
    jed.save("XC2C64A", out)
```

```python
from jtagtools.srecord import read_data

image = bytearray(b"\xff" * 0x20000)
with open("firmware.srec") as stream:
    result = read_data(stream, image)
print(result.start_address, result.end_address, result.bytes_read)
```

```python
from jtagtools.devices import parse_jtag_id, find_device, describe_device

jtag_id = parse_jtag_id(0x4970203F)
device = find_device(jtag_id.partnumber)
print(describe_device(device, jtag_id.version))
# ATMega128, Rev E with 128K Flash, 4096 Bytes EEPROM and 4096 Bytes RAM
```

```python
from jtagtools.devices import DEVICES
from jtagtools.fusebits import FuseSettings
from jtagtools.fusereport import format_fuse_data

device = DEVICES[0]
settings = FuseSettings.defaults(device.index)
print(format_fuse_data(device, settings))
```

## What this package does not do

- It has no cable drivers. To talk to a real part you must supply your own
  `JtagPort` implementation with the target device already selected on the
  chain; the package does not scan or identify a JTAG chain.
- There is no command for programming AVR parts and no interactive menu;
  AVR programming is available only as a library through `AvrLink` and
  `AvrMemory`.
- Fuse definition files can be written but not read back.