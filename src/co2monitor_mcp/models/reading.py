"""Reading model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Reading:
    """One CO2/temperature measurement pair.

    Fields stay ``None`` until the matching frame has been received.
    """

    co2: int | None = None
    temperature: float | None = None

    @property
    def is_complete(self) -> bool:
        return self.co2 is not None and self.temperature is not None

    def to_dict(self) -> dict:
        return {
            "co2_ppm": self.co2,
            "temperature_c": self.temperature,
            "complete": self.is_complete,
        }
