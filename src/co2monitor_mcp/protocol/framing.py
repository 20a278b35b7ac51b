"""Decoded frame layout for the CO2 monitor.

Frame layout after decryption::

    +--------+----------+----------+----------+------------+---------+
    |   Op   | Value Hi | Value Lo | Checksum | Terminator | Unused  |
    | 1 byte |  1 byte  |  1 byte  |  1 byte  | 1 byte 0D  | 3 bytes |
    +--------+----------+----------+----------+------------+---------+

- Op: identifies the measured quantity (see :class:`OpCode`)
- Value: big-endian unsigned 16-bit measurement
- Checksum: (Op + Value Hi + Value Lo) & 0xFF
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .cipher import FRAME_SIZE, TERMINATOR, checksum, validate


class OpCode(IntEnum):
    """Op-codes the aggregator understands. Others are ignored."""

    TEMPERATURE = 0x42
    CO2 = 0x50


@dataclass(frozen=True)
class DecodedFrame:
    """A decrypted 8-byte frame."""

    op: int
    value_hi: int
    value_lo: int
    checksum: int
    terminator: int
    raw: bytes

    @property
    def value(self) -> int:
        return self.value_hi << 8 | self.value_lo

    @property
    def is_valid(self) -> bool:
        return validate(self.raw)

    def __repr__(self) -> str:
        return (
            f"DecodedFrame(op=0x{self.op:02X}, value={self.value}, "
            f"raw={self.raw.hex(' ')})"
        )


def parse_frame(decoded: bytes) -> DecodedFrame:
    """Wrap 8 decrypted bytes in a :class:`DecodedFrame`.

    No validation happens here; check :attr:`DecodedFrame.is_valid`.
    """
    if len(decoded) != FRAME_SIZE:
        raise ValueError(
            f"Decoded frame must be {FRAME_SIZE} bytes, got {len(decoded)}"
        )
    decoded = bytes(decoded)
    return DecodedFrame(
        op=decoded[0],
        value_hi=decoded[1],
        value_lo=decoded[2],
        checksum=decoded[3],
        terminator=decoded[4],
        raw=decoded,
    )


def build_frame(op: int, value: int) -> bytes:
    """Build a valid decoded frame for an op-code and 16-bit value."""
    if not 0 <= op <= 0xFF:
        raise ValueError(f"Op-code must be 0-255, got {op}")
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"Value must be 0-65535, got {value}")
    head = bytes([op, value >> 8, value & 0xFF])
    return head + bytes([checksum(head), TERMINATOR]) + b"\x00" * 3


def split_frames(buffer: bytes) -> list[bytes]:
    """Split a transfer buffer into 8-byte frames, in order.

    A trailing fragment shorter than one frame is dropped.
    """
    return [
        bytes(buffer[offset : offset + FRAME_SIZE])
        for offset in range(0, len(buffer) - FRAME_SIZE + 1, FRAME_SIZE)
    ]
