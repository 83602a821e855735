"""JEDEC fuse maps, S-record images, AVR device data, fuse handling and AVR JTAG programming."""

__version__ = "0.1.0"