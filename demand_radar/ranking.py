from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta, tzinfo

from .config import (
    MULTI_PLATFORM_SOURCES,
    NOTABLE_DEMAND_FREQUENCY,
    RANKING_TOP_N,
    STRONG_DEMAND_FREQUENCY,
)
from .models import (
    TREND_DOWN,
    TREND_NEW,
    TREND_STABLE,
    TREND_UP,
    DemandRanking,
    ExtractedDemand,
)
from .utils import day_range, stable_id


log = logging.getLogger(__name__)


@dataclass
class DemandGroup:
    demand: ExtractedDemand
    frequency: int = 0
    source_ids: set[str] = field(default_factory=set)

    @property
    def source_count(self) -> int:
        return len(self.source_ids)


def group_demands(demands: list[ExtractedDemand]) -> list[DemandGroup]:
    """Group rows by demand key, keeping first-seen order."""
    groups: dict[str, DemandGroup] = {}
    for demand in demands:
        group = groups.get(demand.demand_key)
        if group is None:
            group = groups[demand.demand_key] = DemandGroup(demand=demand)
        group.frequency += 1
        if demand.source_id:
            group.source_ids.add(demand.source_id)
    return list(groups.values())


def classify_trend(frequency: int, previous_frequency: int | None) -> str:
    if previous_frequency is None:
        return TREND_NEW
    if frequency > previous_frequency:
        return TREND_UP
    if frequency < previous_frequency:
        return TREND_DOWN
    return TREND_STABLE


def build_notes(frequency: int, category: str | None, source_count: int) -> str | None:
    notes: list[str] = []
    if frequency > STRONG_DEMAND_FREQUENCY:
        notes.append('strong demand')
    elif frequency > NOTABLE_DEMAND_FREQUENCY:
        notes.append('notable demand')
    if category:
        notes.append(f'{category} use case')
    if source_count > MULTI_PLATFORM_SOURCES:
        notes.append('multi-platform discussion')
    return '; '.join(notes) or None


class RankingAggregator:
    """Builds and replaces the ranking snapshot for one calendar day.

    Generation always deletes the day's existing rows before inserting the new
    set, including when the day has no demands, so a regenerated day never
    keeps stale entries. Calls for the same day are serialized with a per-day
    lock because delete-then-insert is not atomic in the store.
    """

    def __init__(self, store, tz: tzinfo, top_n: int = RANKING_TOP_N):
        self.store = store
        self.tz = tz
        self.top_n = top_n
        self._locks: dict[date, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, day: date) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(day)
            if lock is None:
                lock = self._locks[day] = threading.Lock()
            return lock

    def _previous_frequency(self, day: date, demand_key: str) -> int | None:
        previous = self.store.find_ranking_for_day(day - timedelta(days=1), demand_key)
        if previous is None:
            return None
        return previous.frequency or 0

    def compute_rankings(self, day: date) -> list[DemandRanking]:
        start, end = day_range(day, self.tz)
        demands = self.store.find_extracted_demands_in_range(start, end)
        log.info('Loaded %d demand row(s) for %s.', len(demands), day.isoformat())
        if not demands:
            return []

        groups = group_demands(demands)
        ranked = sorted(groups, key=lambda group: group.frequency, reverse=True)[: self.top_n]
        log.info(
            'Ranking %d of %d unique demand(s); frequency range %d-%d.',
            len(ranked),
            len(groups),
            ranked[-1].frequency,
            ranked[0].frequency,
        )

        rows: list[DemandRanking] = []
        for idx, group in enumerate(ranked):
            demand = group.demand
            rows.append(
                DemandRanking(
                    id=stable_id(day.isoformat(), demand.demand_key),
                    demand_id=demand.id,
                    demand_key=demand.demand_key,
                    ranking_date=day,
                    rank=idx + 1,
                    frequency=group.frequency,
                    source_count=group.source_count,
                    trend=classify_trend(group.frequency, self._previous_frequency(day, demand.demand_key)),
                    cleaned_text=demand.cleaned_text,
                    category=demand.category,
                    notes=build_notes(group.frequency, demand.category, group.source_count),
                )
            )
        return rows

    def generate_daily_ranking(self, day: date) -> int:
        with self._lock_for(day):
            rows = self.compute_rankings(day)
            deleted = self.store.delete_rankings_for_day(day)
            if deleted:
                log.info('Deleted %d stale ranking row(s) for %s.', deleted, day.isoformat())
            if not rows:
                log.warning('No demands for %s; ranking is empty.', day.isoformat())
                return 0
            self.store.bulk_insert_rankings(rows)
        trends = Counter(row.trend for row in rows)
        log.info(
            'Stored %d ranking row(s) for %s (new=%d up=%d down=%d stable=%d).',
            len(rows),
            day.isoformat(),
            trends[TREND_NEW],
            trends[TREND_UP],
            trends[TREND_DOWN],
            trends[TREND_STABLE],
        )
        return len(rows)

    def get_rankings(self, day: date) -> list[DemandRanking]:
        return self.store.find_rankings_for_day(day)
