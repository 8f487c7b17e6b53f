"""Aggregation logic for sensor readings and window summaries."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from datastore.collections import GroupSpec
from models.records import FieldSummary, Tier, WindowSummary

# Raw readings carry the measured values directly.
RAW_GROUP: GroupSpec = {
    "avgTemp": ("avg", "temperature"),
    "minTemp": ("min", "temperature"),
    "maxTemp": ("max", "temperature"),
    "avgHumidity": ("avg", "humidity"),
    "minHumidity": ("min", "humidity"),
    "maxHumidity": ("max", "humidity"),
    "count": ("count", None),
}

# Summary rows are folded per statistic: mean of means, extrema of extrema,
# and the sum of the contributing counts.
SUMMARY_GROUP: GroupSpec = {
    "avgTemp": ("avg", "temperature.avg"),
    "minTemp": ("min", "temperature.min"),
    "maxTemp": ("max", "temperature.max"),
    "avgHumidity": ("avg", "humidity.avg"),
    "minHumidity": ("min", "humidity.min"),
    "maxHumidity": ("max", "humidity.max"),
    "count": ("sum", "count"),
}

STATS_KEYS = (
    "avgTemp",
    "minTemp",
    "maxTemp",
    "avgHumidity",
    "minHumidity",
    "maxHumidity",
    "count",
)


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def group_for(self, tier: Tier) -> GroupSpec:
        return RAW_GROUP if tier is Tier.raw else SUMMARY_GROUP

    def to_window_summary(
        self, result: Optional[Mapping[str, Any]], window_start: datetime
    ) -> Optional[WindowSummary]:
        """Build a summary row from a grouped result.

        Windows without contributing records yield ``None`` so that no row is
        written for them.
        """
        if not result or not result.get("count"):
            return None
        return WindowSummary(
            temperature=FieldSummary(
                avg=result["avgTemp"], min=result["minTemp"], max=result["maxTemp"]
            ),
            humidity=FieldSummary(
                avg=result["avgHumidity"],
                min=result["minHumidity"],
                max=result["maxHumidity"],
            ),
            window_start=window_start,
            count=int(result["count"]),
        )

    def to_stats(self, result: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if not result or not result.get("count"):
            return {}
        return {key: result[key] for key in STATS_KEYS}
