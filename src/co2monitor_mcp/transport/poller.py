"""Continuous polling of the monitor's interrupt endpoint.

Blocking endpoint reads run on a worker thread. Each buffer is handed to
the event loop with ``call_soon_threadsafe`` and queued in arrival order.
At most ``n_transfers`` buffers are in flight between the worker and the
consumer; the worker waits for the consumer before reading further.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from ..exceptions import EndpointTransferError
from .usb_connection import DeviceSession

logger = logging.getLogger(__name__)

N_TRANSFERS = 8
TRANSFER_SIZE = 64
READ_TIMEOUT_MS = 1000
_WINDOW_WAIT_S = 0.1


class EndpointPoller:
    """Streams endpoint buffers from a :class:`DeviceSession` into asyncio.

    Usage::

        poller = EndpointPoller(session)
        poller.start()
        try:
            data = await poller.get()
        finally:
            await poller.stop()
    """

    def __init__(
        self,
        session: DeviceSession,
        n_transfers: int = N_TRANSFERS,
        transfer_size: int = TRANSFER_SIZE,
        read_timeout_ms: int = READ_TIMEOUT_MS,
    ) -> None:
        self._session = session
        self._n_transfers = n_transfers
        self._transfer_size = transfer_size
        self._read_timeout_ms = read_timeout_ms
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._window = threading.Semaphore(n_transfers)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._started = False
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._started and not self._stopped

    def start(self) -> None:
        """Start polling. Must be called from within the running event loop."""
        if self._started:
            raise RuntimeError("Poller already started")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._thread = threading.Thread(
            target=self._run, name="co2monitor-poller", daemon=True
        )
        self._started = True
        self._thread.start()
        logger.debug(
            "Polling started (%d in flight, %d-byte transfers)",
            self._n_transfers,
            self._transfer_size,
        )

    async def get(self) -> bytes:
        """Wait for the next buffer.

        Raises:
            EndpointTransferError: If the worker hit a transport error.
            RuntimeError: If the poller is not running.
        """
        if not self.active:
            raise RuntimeError("Poller is not running")
        item = await self._queue.get()
        self._window.release()
        if isinstance(item, Exception):
            raise item
        return item

    async def stop(self) -> None:
        """Stop polling and wait for the worker to exit. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive():
            await asyncio.get_running_loop().run_in_executor(None, thread.join)
        logger.debug("Polling stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self._window.acquire(timeout=_WINDOW_WAIT_S):
                continue
            try:
                data = self._session.read(self._transfer_size, self._read_timeout_ms)
            except EndpointTransferError as e:
                logger.debug("Endpoint error: %s", e)
                self._post(e)
                return
            except Exception as e:
                logger.debug("Endpoint error: %s", e)
                error = EndpointTransferError(f"Endpoint read failed: {e}")
                error.__cause__ = e
                self._post(error)
                return
            if data is None or self._stop_event.is_set():
                self._window.release()
                continue
            if not self._post(data):
                return

    def _post(self, item) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed
            self._stop_event.set()
            return False
        return True
