"""Tests for the poll loop and the CO2Monitor facade."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest

from co2monitor_mcp.config import MonitorConfig
from co2monitor_mcp.exceptions import (
    ChecksumError,
    EndpointTransferError,
    TransferTimeoutError,
)
from co2monitor_mcp.monitor import CO2Monitor, transfer
from co2monitor_mcp.protocol.cipher import FRAME_SIZE, KEY, encrypt
from co2monitor_mcp.protocol.framing import OpCode, build_frame

from fakes import FakeSession, raw_frame

FAST = {"read_timeout_ms": 10}


@pytest.mark.asyncio
async def test_transfer_single_buffer():
    """Temperature and CO2 frames in one 16-byte buffer complete a reading."""
    session = FakeSession([
        raw_frame(OpCode.TEMPERATURE, 4383) + raw_frame(OpCode.CO2, 750),
    ])
    reading = await transfer(session, **FAST)
    assert reading.co2 == 750
    assert reading.temperature == 0.79
    assert session.prime_reads == 1
    assert not session.transfer_active


@pytest.mark.asyncio
async def test_transfer_separate_buffers_with_unknown_op():
    session = FakeSession([
        raw_frame(OpCode.CO2, 1200),
        raw_frame(0x6D, 42),
        None,
        raw_frame(OpCode.TEMPERATURE, 4700),
    ])
    reading = await transfer(session, **FAST)
    assert reading.co2 == 1200
    assert reading.temperature == round(4700 / 16 - 273.15, 2)


@pytest.mark.asyncio
async def test_transfer_ignores_frames_after_completion():
    """Frames after the completing one are not processed."""
    bad = bytearray(build_frame(OpCode.CO2, 800))
    bad[4] = 0x00
    session = FakeSession([
        raw_frame(OpCode.CO2, 750)
        + raw_frame(OpCode.TEMPERATURE, 4383)
        + encrypt(KEY, bytes(bad)),
    ])
    reading = await transfer(session, **FAST)
    assert reading.co2 == 750


@pytest.mark.asyncio
async def test_transfer_checksum_error():
    decoded = bytearray(build_frame(OpCode.TEMPERATURE, 4383))
    decoded[3] ^= 0xFF
    session = FakeSession([encrypt(KEY, bytes(decoded))])
    with pytest.raises(ChecksumError) as exc_info:
        await transfer(session, **FAST)
    assert exc_info.value.decoded == bytes(decoded)
    assert not session.transfer_active


@pytest.mark.asyncio
async def test_transfer_missing_terminator():
    decoded = bytearray(build_frame(OpCode.CO2, 750))
    decoded[4] = 0x0A
    session = FakeSession([raw_frame(OpCode.TEMPERATURE, 4383), encrypt(KEY, bytes(decoded))])
    with pytest.raises(ChecksumError):
        await transfer(session, **FAST)


@pytest.mark.asyncio
async def test_transfer_endpoint_error():
    session = FakeSession([
        raw_frame(OpCode.CO2, 750),
        EndpointTransferError("LIBUSB_ERROR_NO_DEVICE"),
    ])
    with pytest.raises(EndpointTransferError):
        await transfer(session, **FAST)


@pytest.mark.asyncio
async def test_transfer_prime_error_skips_polling():
    session = FakeSession(
        [raw_frame(OpCode.CO2, 750)], prime=EndpointTransferError("stall")
    )
    with pytest.raises(EndpointTransferError):
        await transfer(session, **FAST)
    assert session.poll_reads == 0
    assert not session.transfer_active


@pytest.mark.asyncio
async def test_transfer_timeout():
    """Only temperature frames never complete; the timeout ends polling."""
    session = FakeSession([raw_frame(OpCode.TEMPERATURE, 4383)])
    with pytest.raises(TransferTimeoutError) as exc_info:
        await transfer(session, timeout=0.2, **FAST)
    assert isinstance(exc_info.value, EndpointTransferError)
    reads = session.poll_reads
    await asyncio.sleep(0.1)
    assert session.poll_reads == reads


@pytest.mark.asyncio
async def test_polling_stopped_before_result():
    """No endpoint reads happen once transfer has returned."""
    session = FakeSession([raw_frame(OpCode.TEMPERATURE, 4383), raw_frame(OpCode.CO2, 750)])
    await transfer(session, **FAST)
    reads = session.poll_reads
    await asyncio.sleep(0.1)
    assert session.poll_reads == reads


@pytest.mark.asyncio
async def test_transfer_rejects_concurrent_call():
    session = FakeSession()
    session.transfer_active = True
    with pytest.raises(RuntimeError):
        await transfer(session, **FAST)
    assert session.transfer_active


@pytest.mark.asyncio
async def test_each_transfer_starts_fresh():
    """A second transfer does not reuse values from the first."""
    session = FakeSession([
        raw_frame(OpCode.TEMPERATURE, 4383) + raw_frame(OpCode.CO2, 750),
    ])
    await transfer(session, **FAST)
    with pytest.raises(TransferTimeoutError):
        await transfer(session, timeout=0.1, **FAST)


# ─── CO2Monitor ───────────────────────────────────────────────────────

def test_monitor_vid_pid_override():
    monitor = CO2Monitor(vid=0x1234, pid=0x5678)
    assert monitor.config.vid == 0x1234
    assert monitor.config.pid == 0x5678
    assert monitor.temperature is None
    assert monitor.co2 is None
    assert not monitor.connected


@pytest.mark.asyncio
async def test_monitor_transfer_keeps_latest_values():
    session = FakeSession([
        raw_frame(OpCode.TEMPERATURE, 4383) + raw_frame(OpCode.CO2, 750),
    ])
    monitor = CO2Monitor(MonitorConfig(read_timeout_ms=10))
    monitor._session = session
    reading = await monitor.transfer()
    assert reading.is_complete
    assert monitor.co2 == 750
    assert monitor.temperature == 0.79


@pytest.mark.asyncio
async def test_monitor_context_manager():
    with patch("co2monitor_mcp.monitor.DeviceSession") as session_cls:
        session = MagicMock()
        session_cls.return_value = session
        async with CO2Monitor() as monitor:
            session.connect.assert_called_once()
            assert monitor.session is session
        session.disconnect.assert_called_once()
    session_cls.assert_called_once_with(0x04D9, 0xA052, backend="pyusb")


@pytest.mark.asyncio
async def test_transfer_fails_on_unexpected_read_error():
    """A closed handle raising ValueError fails the transfer instead of hanging."""
    session = FakeSession([raw_frame(OpCode.CO2, 750), ValueError("not open")])
    with pytest.raises(EndpointTransferError):
        await asyncio.wait_for(transfer(session, **FAST), 2)
    assert not session.transfer_active


class BlockingPrimeSession(FakeSession):
    """The priming read blocks until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def read(self, size, timeout_ms):
        if size == FRAME_SIZE:
            self.release.wait(2)
            return None
        return super().read(size, timeout_ms)


@pytest.mark.asyncio
async def test_cancel_during_prime_keeps_guard_until_read_returns():
    """Cancelling while priming does not free the session mid-read."""
    session = BlockingPrimeSession()
    task = asyncio.create_task(transfer(session, **FAST))
    await asyncio.sleep(0.05)
    task.cancel()
    await asyncio.sleep(0.05)
    assert not task.done()
    assert session.transfer_active

    session.release.set()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not session.transfer_active
    assert session.poll_reads == 0
