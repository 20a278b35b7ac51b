"""Aggregation of decoded frames into a complete reading."""

from __future__ import annotations

import logging
from enum import Enum

from ..models.reading import Reading
from .framing import DecodedFrame, OpCode

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15


class AggregatorState(Enum):
    """Progress towards a complete reading."""

    EMPTY = "empty"
    PARTIAL_TEMP = "partial_temp"
    PARTIAL_CO2 = "partial_co2"
    COMPLETE = "complete"


def decode_temperature(value: int) -> float:
    """Convert a raw temperature value (1/16 K) to Celsius, 2 decimals."""
    return round(value / 16 - KELVIN_OFFSET, 2)


class ReadingAggregator:
    """Collects temperature and CO2 frames until both are known.

    Frames must already have passed validation; a checksum failure is the
    caller's error to raise. Op-codes other than :class:`OpCode` members
    are dropped without changing state.
    """

    def __init__(self) -> None:
        self._reading = Reading()

    @property
    def reading(self) -> Reading:
        return self._reading

    @property
    def state(self) -> AggregatorState:
        has_temp = self._reading.temperature is not None
        has_co2 = self._reading.co2 is not None
        if has_temp and has_co2:
            return AggregatorState.COMPLETE
        if has_temp:
            return AggregatorState.PARTIAL_TEMP
        if has_co2:
            return AggregatorState.PARTIAL_CO2
        return AggregatorState.EMPTY

    @property
    def complete(self) -> bool:
        return self.state is AggregatorState.COMPLETE

    def reset(self) -> None:
        self._reading = Reading()

    def ingest(self, frame: DecodedFrame) -> bool:
        """Apply one validated frame.

        Returns:
            True once the reading is complete.

        Raises:
            RuntimeError: If called after the reading completed.
        """
        if self.complete:
            raise RuntimeError("Reading already complete; reset before ingesting")

        if frame.op == OpCode.TEMPERATURE:
            self._reading.temperature = decode_temperature(frame.value)
        elif frame.op == OpCode.CO2:
            self._reading.co2 = frame.value
        else:
            logger.debug("Ignoring op-code 0x%02X", frame.op)
            return False

        return self.complete
