"""Monitor configuration."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from .exceptions import MonitorConfigError

VENDOR_ID = 0x04D9
PRODUCT_ID = 0xA052
BACKENDS = ("pyusb", "hidapi")


def _env_int(name: str, value: str) -> int:
    try:
        return int(value, 0)
    except ValueError as e:
        raise MonitorConfigError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise MonitorConfigError(f"{name} must be a number, got {value!r}") from e


@dataclasses.dataclass(frozen=True)
class MonitorConfig:
    """Monitor configuration.

    Parameters
    ----------
    vid : int
        USB vendor id.
    pid : int
        USB product id.
    backend : str
        ``"pyusb"`` (libusb control + interrupt transfers) or ``"hidapi"``
        (feature report + HID reads).
    read_timeout_ms : int
        Timeout of a single endpoint read. Timeouts are not errors; the
        poller simply reads again.
    transfer_timeout : float or None
        Seconds to wait for a complete reading before giving up.
        ``None`` waits indefinitely.
    n_transfers : int
        Maximum number of buffers in flight between the poller and the
        consumer.
    transfer_size : int
        Size of each polling transfer buffer in bytes.
    """

    vid: int = VENDOR_ID
    pid: int = PRODUCT_ID
    backend: str = "pyusb"
    read_timeout_ms: int = 1000
    transfer_timeout: float | None = None
    n_transfers: int = 8
    transfer_size: int = 64

    def __post_init__(self) -> None:
        for name in ("vid", "pid"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFFFF:
                raise MonitorConfigError(f"{name} must fit in 16 bits, got {value:#x}")
        if self.backend not in BACKENDS:
            raise MonitorConfigError(
                f"Unknown backend '{self.backend}'. Valid: {list(BACKENDS)}"
            )
        if self.n_transfers < 1:
            raise MonitorConfigError("n_transfers must be at least 1")
        if self.transfer_size < 8:
            raise MonitorConfigError("transfer_size must hold at least one frame")

    @classmethod
    def from_env(cls, **overrides: Any) -> MonitorConfig:
        """Create configuration from environment variables.

        Reads ``CO2MON_VID``, ``CO2MON_PID`` (hex with ``0x`` prefix or
        decimal), ``CO2MON_BACKEND``, ``CO2MON_READ_TIMEOUT_MS`` and
        ``CO2MON_TRANSFER_TIMEOUT``. Explicit keyword arguments override
        environment values.
        """
        env = os.environ
        kwargs: dict[str, Any] = {}

        for env_key, field_name in (("CO2MON_VID", "vid"), ("CO2MON_PID", "pid")):
            val = env.get(env_key)
            if val is not None:
                kwargs[field_name] = _env_int(env_key, val)

        backend = env.get("CO2MON_BACKEND")
        if backend is not None:
            kwargs["backend"] = backend.strip().lower()

        read_timeout = env.get("CO2MON_READ_TIMEOUT_MS")
        if read_timeout is not None:
            kwargs["read_timeout_ms"] = _env_int("CO2MON_READ_TIMEOUT_MS", read_timeout)

        transfer_timeout = env.get("CO2MON_TRANSFER_TIMEOUT")
        if transfer_timeout is not None:
            kwargs["transfer_timeout"] = _env_float(
                "CO2MON_TRANSFER_TIMEOUT", transfer_timeout
            )

        kwargs.update(overrides)
        return cls(**kwargs)
