"""Routes time-range queries to the coarsest tier that covers the span."""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from datastore.collections import (
    DataStore,
    Document,
    DocumentCollection,
    build_default_store,
)
from models.records import Tier
from services.aggregator import Aggregator
from services.errors import ClientInputError, DependencyError
from services.windows import DAY, WEEK, parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")


def select_tier(start: datetime, end: datetime) -> Tier:
    """Pick the tier for a range; each bound belongs to the finer tier."""
    span = end - start
    if span <= DAY:
        return Tier.raw
    if span <= WEEK:
        return Tier.hourly
    return Tier.daily


def parse_range(start: Optional[str], end: Optional[str]) -> Tuple[datetime, datetime]:
    if not start or not end:
        raise ClientInputError("Both start and end parameters are required")
    try:
        start_at = parse_timestamp(start)
        end_at = parse_timestamp(end)
    except ValueError as exc:
        raise ClientInputError(
            "Invalid date format. Use ISO format (e.g., 2023-06-05T12:00:00Z)"
        ) from exc
    if start_at > end_at:
        raise ClientInputError("start must not be after end")
    return start_at, end_at


class ResolutionRouter:
    """Answers data, stats and latest-reading queries against the store."""

    def __init__(self, store: DataStore, aggregator: Optional[Aggregator] = None) -> None:
        self.store = store
        self.aggregator = aggregator or Aggregator()

    def collection_for(self, tier: Tier) -> DocumentCollection:
        return {
            Tier.raw: self.store.raw,
            Tier.hourly: self.store.hourly,
            Tier.daily: self.store.daily,
        }[tier]

    def query(self, start: datetime, end: datetime) -> List[Document]:
        tier = select_tier(start, end)
        collection = self.collection_for(tier)
        rows = self._call(tier, start, end, lambda: collection.find_range(start, end))
        logger.debug(
            "Range query served",
            extra={"tier": tier.value, "start": start, "end": end, "count": len(rows)},
        )
        return rows

    def stats(self, start: datetime, end: datetime) -> Dict[str, Any]:
        tier = select_tier(start, end)
        collection = self.collection_for(tier)
        group = self.aggregator.group_for(tier)
        result = self._call(tier, start, end, lambda: collection.aggregate(start, end, group))
        return self.aggregator.to_stats(result)

    def latest(self) -> Optional[Document]:
        return self._call(Tier.raw, None, None, self.store.raw.find_latest)

    def _call(
        self,
        tier: Tier,
        start: Optional[datetime],
        end: Optional[datetime],
        operation: Callable[[], T],
    ) -> T:
        try:
            return operation()
        except Exception as exc:
            logger.error(
                "Store query failed: %s",
                exc,
                extra={"tier": tier.value, "start": start, "end": end},
            )
            raise DependencyError(f"{tier.value} store query failed") from exc


@lru_cache
def build_default_router() -> ResolutionRouter:
    """Factory that wires the router to the default store."""
    return ResolutionRouter(store=build_default_store())
