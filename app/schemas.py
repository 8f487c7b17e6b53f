"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Type

from pydantic import BaseModel, Field

from models.records import Tier


class RawReadingOut(BaseModel):
    """A stored raw reading."""

    temperature: float
    humidity: float
    timestamp: Optional[datetime] = None


class FieldSummaryOut(BaseModel):
    avg: float
    min: float
    max: float


class HourlySummaryOut(BaseModel):
    """Aggregate of the raw readings in one hour."""

    temperature: FieldSummaryOut
    humidity: FieldSummaryOut
    timestamp: datetime = Field(..., description="Start of the hour window.")
    count: int = Field(..., ge=1)


class DailySummaryOut(BaseModel):
    """Aggregate of the hourly rows in one day."""

    temperature: FieldSummaryOut
    humidity: FieldSummaryOut
    date: datetime = Field(..., description="Start of the day window.")
    count: int = Field(..., ge=1)


class StatsOut(BaseModel):
    """Range-wide summary over the tier selected for the range."""

    avgTemp: float
    minTemp: float
    maxTemp: float
    avgHumidity: float
    minHumidity: float
    maxHumidity: float
    count: int = Field(..., ge=1)


class HealthOut(BaseModel):
    status: str
    store: str
    mqtt: str


ROW_MODELS: Dict[Tier, Type[BaseModel]] = {
    Tier.raw: RawReadingOut,
    Tier.hourly: HourlySummaryOut,
    Tier.daily: DailySummaryOut,
}
