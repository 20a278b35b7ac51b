"""Reading CO2 and temperature from a connected monitor.

:func:`transfer` is one complete poll cycle: prime the endpoint, stream
frames through the cipher into a :class:`ReadingAggregator`, and return
once both values are known. :class:`CO2Monitor` wraps a session and
configuration for callers that just want numbers.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging

from .config import MonitorConfig
from .exceptions import ChecksumError, TransferTimeoutError
from .models.reading import Reading
from .protocol.aggregator import ReadingAggregator
from .protocol.cipher import FRAME_SIZE, decrypt, validate
from .protocol.framing import parse_frame, split_frames
from .transport.poller import (
    N_TRANSFERS,
    READ_TIMEOUT_MS,
    TRANSFER_SIZE,
    EndpointPoller,
)
from .transport.usb_connection import DeviceInfo, DeviceSession

logger = logging.getLogger(__name__)


async def transfer(
    session: DeviceSession,
    *,
    timeout: float | None = None,
    n_transfers: int = N_TRANSFERS,
    transfer_size: int = TRANSFER_SIZE,
    read_timeout_ms: int = READ_TIMEOUT_MS,
) -> Reading:
    """Poll the session's endpoint until a full reading has arrived.

    Only one transfer may be outstanding per session. Polling is always
    stopped before this coroutine returns or raises.

    Args:
        session: A connected :class:`DeviceSession`.
        timeout: Seconds to wait for a complete reading, or None.
        n_transfers: Maximum buffers in flight.
        transfer_size: Polling transfer buffer size in bytes.
        read_timeout_ms: Timeout of each endpoint read.

    Returns:
        A complete :class:`Reading`.

    Raises:
        ChecksumError: A frame failed validation.
        EndpointTransferError: The endpoint reported a transport error.
        TransferTimeoutError: ``timeout`` elapsed first.
        RuntimeError: Another transfer is already running on the session.
    """
    if session.transfer_active:
        raise RuntimeError("A transfer is already in progress on this session")
    session.transfer_active = True
    try:
        return await _transfer(
            session, timeout, n_transfers, transfer_size, read_timeout_ms
        )
    finally:
        session.transfer_active = False


async def _transfer(
    session: DeviceSession,
    timeout: float | None,
    n_transfers: int,
    transfer_size: int,
    read_timeout_ms: int,
) -> Reading:
    loop = asyncio.get_running_loop()
    prime = loop.run_in_executor(None, session.read, FRAME_SIZE, read_timeout_ms)
    try:
        await asyncio.shield(prime)
    except asyncio.CancelledError:
        # The endpoint stays busy until the read returns
        await asyncio.wait({prime})
        if not prime.cancelled():
            prime.exception()
        raise

    aggregator = ReadingAggregator()
    poller = EndpointPoller(
        session,
        n_transfers=n_transfers,
        transfer_size=transfer_size,
        read_timeout_ms=read_timeout_ms,
    )
    poller.start()
    try:
        if timeout is None:
            return await _consume(poller, aggregator, session.key)
        return await asyncio.wait_for(
            _consume(poller, aggregator, session.key), timeout
        )
    except asyncio.TimeoutError as e:
        raise TransferTimeoutError(
            f"No complete reading within {timeout} s "
            f"(state: {aggregator.state.value})"
        ) from e
    finally:
        await poller.stop()


async def _consume(
    poller: EndpointPoller, aggregator: ReadingAggregator, key: bytes
) -> Reading:
    while True:
        buffer = await poller.get()
        for raw in split_frames(buffer):
            decoded = decrypt(key, raw)
            if not validate(decoded):
                raise ChecksumError(raw, decoded)
            frame = parse_frame(decoded)
            logger.debug("Received %r", frame)
            if aggregator.ingest(frame):
                return aggregator.reading


class CO2Monitor:
    """CO2 monitor connection.

    Usage::

        async with CO2Monitor() as monitor:
            reading = await monitor.transfer()
            print(monitor.temperature, monitor.co2)
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        vid: int | None = None,
        pid: int | None = None,
    ) -> None:
        config = config or MonitorConfig()
        overrides = {k: v for k, v in (("vid", vid), ("pid", pid)) if v is not None}
        if overrides:
            config = dataclasses.replace(config, **overrides)
        self._config = config
        self._session = DeviceSession(config.vid, config.pid, backend=config.backend)
        self._reading = Reading()

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def session(self) -> DeviceSession:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session.connected

    @property
    def device_info(self) -> DeviceInfo:
        return self._session.device_info

    @property
    def reading(self) -> Reading:
        """Latest completed reading."""
        return self._reading

    @property
    def temperature(self) -> float | None:
        """Latest ambient temperature in Celsius."""
        return self._reading.temperature

    @property
    def co2(self) -> int | None:
        """Latest CO2 concentration in ppm."""
        return self._reading.co2

    def connect(self) -> DeviceInfo:
        return self._session.connect()

    def disconnect(self) -> None:
        self._session.disconnect()

    async def transfer(self) -> Reading:
        """Fetch one complete reading and remember it."""
        reading = await transfer(
            self._session,
            timeout=self._config.transfer_timeout,
            n_transfers=self._config.n_transfers,
            transfer_size=self._config.transfer_size,
            read_timeout_ms=self._config.read_timeout_ms,
        )
        self._reading = reading
        logger.debug("Reading: %s", reading)
        return reading

    async def __aenter__(self) -> CO2Monitor:
        self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
