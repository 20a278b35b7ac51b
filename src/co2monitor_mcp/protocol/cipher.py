"""Frame cipher for the 04D9:A052 CO2 monitor.

Every 8-byte report read from the interrupt endpoint is obfuscated with
the key sent during the handshake. Decryption runs three stages::

    raw[8] --(un-shuffle, XOR key)--> xor[8]
           --(rotate ring right by 3 bits)--> tmp[8]
           --(subtract nibble-swapped "Htemp99e")--> decoded[8]

A decoded frame is valid when byte 4 is the ``0x0D`` terminator and
byte 3 equals the sum of bytes 0-2 modulo 256.

See https://hackaday.io/project/5301-reverse-engineering-a-low-cost-usb-co-monitor
"""

from __future__ import annotations

FRAME_SIZE = 8
TERMINATOR = 0x0D

KEY = bytes([0xC4, 0xC6, 0xC0, 0x92, 0x40, 0x23, 0xDC, 0x96])
CIPHER_STATE = b"Htemp99e"
SHUFFLE_TABLE = (2, 4, 0, 7, 1, 6, 5, 3)

# Nibble-swapped cipher state, subtracted in the last decrypt stage.
_CTMP = bytes(((c >> 4) | (c << 4)) & 0xFF for c in CIPHER_STATE)


def _check_length(name: str, data: bytes) -> None:
    if len(data) != FRAME_SIZE:
        raise ValueError(f"{name} must be {FRAME_SIZE} bytes, got {len(data)}")


def decrypt(key: bytes, frame: bytes) -> bytes:
    """Decrypt one raw 8-byte frame.

    Pure function: the same key and frame always yield the same result,
    whether or not the frame turns out to be valid.

    Args:
        key: The 8-byte handshake key.
        frame: A raw frame as read from the endpoint.

    Returns:
        The 8 decoded bytes.
    """
    _check_length("key", key)
    _check_length("frame", frame)

    data_xor = [0] * FRAME_SIZE
    for i, idx in enumerate(SHUFFLE_TABLE):
        data_xor[idx] = frame[i] ^ key[idx]

    data_tmp = [
        ((data_xor[i] >> 3) | (data_xor[(i - 1 + 8) % 8] << 5)) & 0xFF
        for i in range(FRAME_SIZE)
    ]

    return bytes(
        (0x100 + data_tmp[i] - _CTMP[i]) & 0xFF for i in range(FRAME_SIZE)
    )


def encrypt(key: bytes, decoded: bytes) -> bytes:
    """Inverse of :func:`decrypt`.

    The device never needs this; it produces frames the way the monitor
    would, for test vectors and simulated devices.
    """
    _check_length("key", key)
    _check_length("decoded frame", decoded)

    data_tmp = [(decoded[i] + _CTMP[i]) & 0xFF for i in range(FRAME_SIZE)]

    data_xor = [
        ((data_tmp[i] << 3) | (data_tmp[(i + 1) % 8] >> 5)) & 0xFF
        for i in range(FRAME_SIZE)
    ]

    return bytes(
        data_xor[idx] ^ key[idx] for idx in SHUFFLE_TABLE
    )


def checksum(decoded: bytes) -> int:
    """Sum of the op and value bytes, modulo 256."""
    return sum(decoded[0:3]) & 0xFF


def validate(decoded: bytes) -> bool:
    """Return True if a decoded frame carries the terminator and a good checksum."""
    if len(decoded) < 5:
        return False
    return decoded[4] == TERMINATOR and decoded[3] == checksum(decoded)
