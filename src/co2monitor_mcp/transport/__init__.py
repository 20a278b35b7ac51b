"""Transport layer: USB session and endpoint polling."""

from .usb_connection import DeviceInfo, DeviceSession
from .poller import EndpointPoller
