"""Periodic rollup of raw readings into hourly rows and hourly rows into daily rows."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence

from datastore.collections import DataStore, DocumentCollection
from models.records import Tier, WindowSummary
from services.aggregator import Aggregator
from services.windows import DAY, HOUR, Clock, truncate_to_day, truncate_to_hour, utc_now

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RollupJob:
    """Folds one window of ``source`` rows into a single ``target`` row.

    The job owns its schedule: ``next_fire_at`` advances by ``period`` each
    time the job fires. Missed windows are never revisited.
    """

    name: str
    period: timedelta
    source: DocumentCollection
    source_tier: Tier
    target: DocumentCollection
    truncate: Callable[[datetime], datetime]
    aggregator: Aggregator
    completed_windows: bool = False
    next_fire_at: Optional[datetime] = None

    def schedule_from(self, started_at: datetime) -> None:
        self.next_fire_at = started_at + self.period

    def window_for(self, now: datetime) -> tuple[datetime, datetime]:
        window_start = self.truncate(now)
        if self.completed_windows:
            window_start -= self.period
        return window_start, window_start + self.period

    def run_once(self, now: datetime) -> Optional[WindowSummary]:
        """Aggregate the window for ``now`` and store a row if anything matched."""
        window_start, window_end = self.window_for(now)
        context = {
            "job": self.name,
            "window_start": window_start,
            "window_end": window_end,
        }
        result = self.source.aggregate(
            window_start,
            window_end,
            self.aggregator.group_for(self.source_tier),
            end_inclusive=False,
        )
        summary = self.aggregator.to_window_summary(result, window_start)
        if summary is None:
            logger.info("No rows in window, nothing to roll up", extra=context)
            return None

        self.target.insert(summary.to_document(self.target.time_field))
        logger.info("Window rolled up", extra={**context, "count": summary.count})
        return summary


class RollupScheduler:
    """Drives a set of rollup jobs from an injectable clock."""

    def __init__(
        self,
        jobs: Sequence[RollupJob],
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.jobs: List[RollupJob] = list(jobs)
        self.clock = clock
        self.sleep = sleep
        self.start(clock())

    def start(self, started_at: datetime) -> None:
        for job in self.jobs:
            job.schedule_from(started_at)

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Fire every job due at ``now`` once and return the names that fired.

        A failing job is logged and skipped until its next period.
        """
        moment = now if now is not None else self.clock()
        fired: List[str] = []
        for job in self.jobs:
            next_fire_at = job.next_fire_at
            if next_fire_at is None or moment < next_fire_at:
                continue
            # Ticks missed while the loop was blocked are skipped, not replayed.
            while next_fire_at <= moment:
                next_fire_at += job.period
            job.next_fire_at = next_fire_at
            fired.append(job.name)
            try:
                job.run_once(moment)
            except Exception as exc:
                logger.error(
                    "Rollup tick abandoned: %s",
                    exc,
                    extra={"job": job.name, "reason": type(exc).__name__},
                )
        return fired

    def seconds_until_next(self, now: datetime) -> float:
        upcoming = [job.next_fire_at for job in self.jobs if job.next_fire_at is not None]
        if not upcoming:
            return HOUR.total_seconds()
        return max((min(upcoming) - now).total_seconds(), 0.0)

    async def run(self) -> None:
        while True:
            await self.sleep(self.seconds_until_next(self.clock()))
            self.tick()


def build_rollup_jobs(
    store: DataStore,
    aggregator: Optional[Aggregator] = None,
    completed_windows: bool = False,
) -> List[RollupJob]:
    aggregator = aggregator or Aggregator()
    return [
        RollupJob(
            name="hourly",
            period=HOUR,
            source=store.raw,
            source_tier=Tier.raw,
            target=store.hourly,
            truncate=truncate_to_hour,
            aggregator=aggregator,
            completed_windows=completed_windows,
        ),
        RollupJob(
            name="daily",
            period=DAY,
            source=store.hourly,
            source_tier=Tier.hourly,
            target=store.daily,
            truncate=truncate_to_day,
            aggregator=aggregator,
            completed_windows=completed_windows,
        ),
    ]
