"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Tier(str, Enum):
    """Resolution levels, finest first."""

    raw = "raw"
    hourly = "hourly"
    daily = "daily"


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single temperature/humidity reading received from the sensor topic.

    ``timestamp`` is ``None`` when the publisher sent a value that could not be
    parsed; such readings are stored but never match a time-range scan.
    """

    temperature: float
    humidity: float
    timestamp: Optional[datetime]

    def to_document(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class FieldSummary:
    avg: float
    min: float
    max: float

    def to_document(self) -> Dict[str, float]:
        return {"avg": self.avg, "min": self.min, "max": self.max}


@dataclass(frozen=True, slots=True)
class WindowSummary:
    """Pre-aggregated statistics for one hourly or daily window."""

    temperature: FieldSummary
    humidity: FieldSummary
    window_start: datetime
    count: int

    def to_document(self, time_field: str) -> Dict[str, Any]:
        return {
            "temperature": self.temperature.to_document(),
            "humidity": self.humidity.to_document(),
            time_field: self.window_start,
            "count": self.count,
        }
