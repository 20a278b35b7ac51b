"""USB connection to the CO2 monitor.

Supports ``pyusb`` (default) and ``hidapi`` backends. The monitor is a
single-interface HID device; a SET_REPORT control transfer carrying the
8-byte key switches it into streaming mode, after which it pushes
encrypted 8-byte reports on its interrupt IN endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import PRODUCT_ID, VENDOR_ID
from ..exceptions import (
    ControlTransferError,
    DeviceNotFoundError,
    EndpointTransferError,
    InterfaceNotFoundError,
)
from ..protocol.cipher import KEY

logger = logging.getLogger(__name__)

# HID SET_REPORT (class request, host-to-device, interface recipient),
# report type Feature, report id 0.
REQUEST_TYPE = 0x21
REQUEST = 0x09
REQUEST_VALUE = 0x0300
REQUEST_INDEX = 0x00
CONTROL_TIMEOUT_MS = 1000


@dataclass
class DeviceInfo:
    """Basic device identification from USB descriptors."""

    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    manufacturer: str = ""
    product: str = ""
    backend: str = ""


class DeviceSession:
    """Owns the device handle, interface claim and endpoint of one monitor.

    Usage::

        session = DeviceSession()
        session.connect()
        data = session.read(8, 1000)
        session.disconnect()

    A session is not shared: only one :func:`~co2monitor_mcp.monitor.transfer`
    may run against it at a time, and callers must not issue reads of
    their own while one is outstanding.
    """

    def __init__(
        self,
        vendor_id: int = VENDOR_ID,
        product_id: int = PRODUCT_ID,
        backend: str = "pyusb",
        key: bytes = KEY,
    ) -> None:
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._backend = backend
        self._key = bytes(key)
        self._device = None
        self._interface_number: int | None = None
        self._endpoint = None
        self._detached_kernel_driver = False
        self._connected = False
        self._device_info = DeviceInfo(vendor_id=vendor_id, product_id=product_id)
        # Set by the poll loop while a transfer is outstanding.
        self.transfer_active = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def endpoint(self):
        return self._endpoint

    def connect(self) -> DeviceInfo:
        """Locate the device, send the key handshake and claim the interface.

        Returns:
            DeviceInfo with USB descriptor information.

        Raises:
            DeviceNotFoundError: No device with the configured ids.
            InterfaceNotFoundError: The device has no interface or endpoint.
            ControlTransferError: The handshake control transfer failed.
        """
        if self._connected:
            return self._device_info

        if self._backend == "hidapi":
            info = self._connect_hidapi()
        else:
            info = self._connect_pyusb()

        logger.info(
            "Connected via %s: %s %s (%#06x:%#06x)",
            self._backend,
            info.manufacturer,
            info.product,
            self._vendor_id,
            self._product_id,
        )
        return info

    def _connect_pyusb(self) -> DeviceInfo:
        import usb.core
        import usb.util

        dev = usb.core.find(idVendor=self._vendor_id, idProduct=self._product_id)
        if dev is None:
            raise DeviceNotFoundError(self._vendor_id, self._product_id)

        try:
            cfg = dev.get_active_configuration()
        except usb.core.USBError:
            cfg = None
        if cfg is None:
            try:
                dev.set_configuration()
                cfg = dev.get_active_configuration()
            except usb.core.USBError as e:
                usb.util.dispose_resources(dev)
                raise InterfaceNotFoundError(f"Could not configure device: {e}") from e

        interfaces = cfg.interfaces()
        if not interfaces:
            usb.util.dispose_resources(dev)
            raise InterfaceNotFoundError("Interface not found")
        intf = interfaces[0]
        number = intf.bInterfaceNumber

        # The kernel HID driver binds the monitor on Linux
        try:
            if dev.is_kernel_driver_active(number):
                dev.detach_kernel_driver(number)
                self._detached_kernel_driver = True
        except NotImplementedError:
            pass
        except usb.core.USBError as e:
            usb.util.dispose_resources(dev)
            raise InterfaceNotFoundError(
                f"Could not detach kernel driver from interface {number}: {e}"
            ) from e

        try:
            written = dev.ctrl_transfer(
                REQUEST_TYPE,
                REQUEST,
                REQUEST_VALUE,
                REQUEST_INDEX,
                self._key,
                CONTROL_TIMEOUT_MS,
            )
        except usb.core.USBError as e:
            self._abandon_pyusb(dev, number)
            raise ControlTransferError(f"Key handshake failed: {e}") from e
        if written != len(self._key):
            self._abandon_pyusb(dev, number)
            raise ControlTransferError(
                f"Key handshake wrote {written} of {len(self._key)} bytes"
            )

        try:
            usb.util.claim_interface(dev, number)
        except usb.core.USBError as e:
            self._abandon_pyusb(dev, number)
            raise InterfaceNotFoundError(f"Could not claim interface {number}: {e}") from e
        endpoints = intf.endpoints()
        if not endpoints:
            usb.util.release_interface(dev, number)
            self._abandon_pyusb(dev, number)
            raise InterfaceNotFoundError("Interface has no endpoint")

        self._device = dev
        self._interface_number = number
        self._endpoint = endpoints[0]
        self._connected = True
        self._device_info = DeviceInfo(
            vendor_id=self._vendor_id,
            product_id=self._product_id,
            manufacturer=_usb_string(dev, "iManufacturer"),
            product=_usb_string(dev, "iProduct"),
            backend="pyusb",
        )
        return self._device_info

    def _abandon_pyusb(self, dev, number: int) -> None:
        import usb.util

        if self._detached_kernel_driver:
            try:
                dev.attach_kernel_driver(number)
            except Exception as e:
                logger.warning("Could not reattach kernel driver: %s", e)
            self._detached_kernel_driver = False
        usb.util.dispose_resources(dev)

    def _connect_hidapi(self) -> DeviceInfo:
        import hid

        if not hid.enumerate(self._vendor_id, self._product_id):
            raise DeviceNotFoundError(self._vendor_id, self._product_id)

        device = hid.device()
        try:
            device.open(self._vendor_id, self._product_id)
        except OSError as e:
            # Enumerated but not openable, usually a permissions problem
            raise InterfaceNotFoundError(f"Failed to open HID device: {e}") from e

        # Feature report id 0 is the same 0x21/0x09/0x0300 control transfer
        report = [0x00] + list(self._key)
        try:
            written = device.send_feature_report(report)
        except OSError as e:
            device.close()
            raise ControlTransferError(f"Key handshake failed: {e}") from e
        if written != len(report):
            device.close()
            raise ControlTransferError(
                f"Key handshake wrote {written} of {len(report)} bytes"
            )

        self._device = device
        self._endpoint = device
        self._connected = True
        self._device_info = DeviceInfo(
            vendor_id=self._vendor_id,
            product_id=self._product_id,
            manufacturer=device.get_manufacturer_string() or "",
            product=device.get_product_string() or "",
            backend="hidapi",
        )
        return self._device_info

    def disconnect(self) -> None:
        """Release the interface, then close the device.

        Both steps are always attempted and the session counts as closed
        afterwards, even if one of them raised. The first failure is
        re-raised.

        Raises:
            EndpointTransferError: If releasing the interface or closing
                the device failed.
        """
        if not self._connected:
            return

        errors: list[Exception] = []
        try:
            if self._backend == "hidapi":
                self._disconnect_hidapi(errors)
            else:
                self._disconnect_pyusb(errors)
        finally:
            self._device = None
            self._endpoint = None
            self._interface_number = None
            self._connected = False
            logger.info("Disconnected")

        if errors:
            raise EndpointTransferError(f"Error closing device: {errors[0]}") from errors[0]

    def _disconnect_pyusb(self, errors: list[Exception]) -> None:
        import usb.util

        dev = self._device
        number = self._interface_number
        try:
            usb.util.release_interface(dev, number)
        except Exception as e:
            logger.warning("Error releasing interface: %s", e)
            errors.append(e)
        if self._detached_kernel_driver:
            try:
                dev.attach_kernel_driver(number)
            except Exception as e:
                logger.warning("Could not reattach kernel driver: %s", e)
            self._detached_kernel_driver = False
        try:
            usb.util.dispose_resources(dev)
        except Exception as e:
            logger.warning("Error closing device: %s", e)
            errors.append(e)

    def _disconnect_hidapi(self, errors: list[Exception]) -> None:
        try:
            self._device.close()
        except Exception as e:
            logger.warning("Error closing device: %s", e)
            errors.append(e)

    def read(self, size: int, timeout_ms: int) -> bytes | None:
        """Read one transfer from the interrupt endpoint.

        Args:
            size: Transfer buffer size in bytes.
            timeout_ms: Read timeout in milliseconds.

        Returns:
            The bytes received, or None if the read timed out.

        Raises:
            EndpointTransferError: If not connected or the transfer failed.
        """
        if not self._connected:
            raise EndpointTransferError("Not connected to device")

        if self._backend == "hidapi":
            try:
                data = self._device.read(size, timeout_ms)
            except OSError as e:
                raise EndpointTransferError(f"Endpoint read failed: {e}") from e
            return bytes(data) if data else None

        import usb.core

        try:
            data = self._endpoint.read(size, timeout=timeout_ms)
        except usb.core.USBTimeoutError:
            return None
        except usb.core.USBError as e:
            raise EndpointTransferError(f"Endpoint read failed: {e}") from e
        return bytes(data)


def _usb_string(dev, attr: str) -> str:
    import usb.core
    import usb.util

    index = getattr(dev, attr, 0)
    if not index:
        return ""
    try:
        return usb.util.get_string(dev, index) or ""
    except (ValueError, NotImplementedError, usb.core.USBError) as e:
        logger.debug("Could not read %s: %s", attr, e)
        return ""
