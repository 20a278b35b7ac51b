"""Driver and MCP server for USB CO2/temperature monitors."""

from .config import MonitorConfig
from .exceptions import (
    CO2MonitorError,
    ChecksumError,
    ControlTransferError,
    DeviceNotFoundError,
    EndpointTransferError,
    InterfaceNotFoundError,
    MonitorConfigError,
    TransferTimeoutError,
)
from .models.reading import Reading
from .monitor import CO2Monitor, transfer
from .transport.usb_connection import DeviceSession

__version__ = "0.1.0"
