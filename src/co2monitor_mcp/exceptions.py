"""Exception hierarchy for co2monitor_mcp."""

from __future__ import annotations


class CO2MonitorError(Exception):
    """Base exception for all co2monitor_mcp errors."""


class MonitorConfigError(CO2MonitorError):
    """Invalid configuration value."""


class DeviceNotFoundError(CO2MonitorError, ConnectionError):
    """No device matches the configured vendor/product id."""

    def __init__(self, vendor_id: int, product_id: int) -> None:
        self.vendor_id = vendor_id
        self.product_id = product_id
        super().__init__(
            f"Device not found ({vendor_id:#06x}:{product_id:#06x})"
        )


class InterfaceNotFoundError(CO2MonitorError, ConnectionError):
    """The device exposes no usable interface or endpoint."""


class ControlTransferError(CO2MonitorError, ConnectionError):
    """The key handshake control transfer failed."""


class EndpointTransferError(CO2MonitorError, IOError):
    """A read from the interrupt endpoint failed."""


class TransferTimeoutError(EndpointTransferError):
    """No complete reading arrived within the transfer timeout."""


class ChecksumError(CO2MonitorError):
    """A decrypted frame failed the checksum or terminator check.

    ``raw`` holds the frame as read from the endpoint and ``decoded``
    the bytes after decryption.
    """

    def __init__(self, raw: bytes, decoded: bytes) -> None:
        self.raw = bytes(raw)
        self.decoded = bytes(decoded)
        super().__init__(
            f"Checksum error: decoded={self.decoded.hex(' ')} raw={self.raw.hex(' ')}"
        )
