##########################################################################################
#
# Script name: store.py
#
# Description: Repository for tasks, sources, extracted demands and daily rankings.
#
##########################################################################################

import json
import logging
import os
import threading
import uuid
from dataclasses import asdict, replace
from datetime import date, datetime, timezone
from pathlib import Path

from .errors import StoreError
from .models import (
    DemandCandidate,
    DemandRanking,
    DemandSource,
    ExtractedDemand,
    PlatformStats,
    RadarTask,
    RawDocument,
)
from .utils import utc_now


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)
STORE_VERSION = 1


# ****************************************************************************************
# Classes
# ****************************************************************************************


class MemoryStore:
    """In-process repository.

    Day ranges passed to ``find_extracted_demands_in_range`` are inclusive on
    both ends, and ``bulk_insert_rankings`` either inserts every row or none.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.tasks: dict[str, RadarTask] = {}
        self.sources: dict[str, DemandSource] = {}
        self.demands: list[ExtractedDemand] = []
        self.rankings: list[DemandRanking] = []

    def _new_id(self) -> str:
        return uuid.uuid4().hex

    def _changed(self) -> None:
        """Hook for subclasses that persist after each mutation."""

    # Tasks

    def create_task(self, platforms: list[str]) -> RadarTask:
        with self._lock:
            task = RadarTask(id=self._new_id(), platforms=list(platforms))
            self.tasks[task.id] = task
            self._changed()
            return replace(task)

    def update_task(self, task: RadarTask) -> RadarTask:
        with self._lock:
            existing = self.tasks.get(task.id)
            if existing is None:
                raise StoreError(f'Unknown task: {task.id}')
            if existing.is_terminal:
                raise StoreError(f'Task {task.id} is already {existing.status}')
            stored = replace(task, platform_stats=dict(task.platform_stats))
            self.tasks[task.id] = stored
            self._changed()
            return replace(stored)

    def get_task(self, task_id: str) -> RadarTask | None:
        with self._lock:
            task = self.tasks.get(task_id)
            return replace(task) if task else None

    def list_tasks(self, limit: int = 10) -> list[RadarTask]:
        with self._lock:
            ordered = sorted(
                self.tasks.values(),
                key=lambda task: task.started_at or datetime.min.replace(tzinfo=timezone.utc),
                reverse=True,
            )
            return [replace(task) for task in ordered[:limit]]

    # Sources and demands

    def create_source(
        self,
        task_id: str,
        platform: str,
        document: RawDocument,
        crawled_at: datetime | None = None,
    ) -> DemandSource:
        if not document.content:
            raise StoreError('Source content must not be empty')
        with self._lock:
            source = DemandSource(
                id=self._new_id(),
                task_id=task_id,
                platform=platform,
                content=document.content,
                crawled_at=crawled_at or document.published_at or utc_now(),
                source_id=document.source_id,
                title=document.title,
                url=document.url,
                author=document.author,
                upvotes=int(document.upvotes or 0),
                comments=int(document.comments or 0),
                metadata=dict(document.metadata or {}),
            )
            self.sources[source.id] = source
            self._changed()
            return source

    def create_extracted_demand(
        self,
        source: DemandSource,
        candidate: DemandCandidate,
        created_at: datetime | None = None,
    ) -> ExtractedDemand:
        with self._lock:
            if source.id not in self.sources:
                raise StoreError(f'Unknown source: {source.id}')
            demand = ExtractedDemand(
                id=self._new_id(),
                source_id=source.id,
                task_id=source.task_id,
                original_text=candidate.original_text,
                cleaned_text=candidate.cleaned_text,
                created_at=created_at or utc_now(),
                keywords=tuple(candidate.keywords),
                category=candidate.category,
            )
            self.demands.append(demand)
            self._changed()
            return demand

    def find_extracted_demands_in_range(self, start: datetime, end: datetime) -> list[ExtractedDemand]:
        with self._lock:
            return [demand for demand in self.demands if start <= demand.created_at <= end]

    # Rankings

    def find_ranking_for_day(self, day: date, demand_key: str) -> DemandRanking | None:
        with self._lock:
            for ranking in self.rankings:
                if ranking.ranking_date == day and ranking.demand_key == demand_key:
                    return ranking
            return None

    def find_rankings_for_day(self, day: date) -> list[DemandRanking]:
        with self._lock:
            rows = [ranking for ranking in self.rankings if ranking.ranking_date == day]
            return sorted(rows, key=lambda ranking: ranking.rank)

    def delete_rankings_for_day(self, day: date) -> int:
        with self._lock:
            kept = [ranking for ranking in self.rankings if ranking.ranking_date != day]
            deleted = len(self.rankings) - len(kept)
            if deleted:
                self.rankings = kept
                self._changed()
            return deleted

    def bulk_insert_rankings(self, rows: list[DemandRanking]) -> int:
        with self._lock:
            taken = {(ranking.ranking_date, ranking.rank) for ranking in self.rankings}
            ids = {ranking.id for ranking in self.rankings}
            for row in rows:
                slot = (row.ranking_date, row.rank)
                if slot in taken or row.id in ids:
                    raise StoreError(f'Duplicate ranking row for {row.ranking_date} rank {row.rank}')
                taken.add(slot)
                ids.add(row.id)
            if rows:
                self.rankings.extend(rows)
                self._changed()
            return len(rows)


class JsonStore(MemoryStore):
    """MemoryStore that rewrites a JSON snapshot after every mutation."""

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._loading = False
        if self.path.exists():
            self._load()

    def _changed(self) -> None:
        if self._loading:
            return
        payload = {
            'version': STORE_VERSION,
            'tasks': [_task_to_json(task) for task in self.tasks.values()],
            'sources': [_jsonable(asdict(source)) for source in self.sources.values()],
            'demands': [_jsonable(asdict(demand)) for demand in self.demands],
            'rankings': [_jsonable(asdict(ranking)) for ranking in self.rankings],
        }
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding='utf-8')
            os.replace(tmp_path, self.path)
        except OSError as exc:
            log.error('Failed writing store %s; reverting to last snapshot: %s', self.path, exc)
            tmp_path.unlink(missing_ok=True)
            self._revert()
            raise StoreError(f'Failed writing store {self.path}: {exc}') from exc

    def _revert(self) -> None:
        """Drop unsaved changes so memory matches the last snapshot on disk."""
        self.tasks, self.sources, self.demands, self.rankings = {}, {}, [], []
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with self.path.open('r', encoding='utf-8') as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            raise StoreError(f'Failed reading store {self.path}: {exc}') from exc
        if not isinstance(payload, dict):
            raise StoreError(f'Store {self.path} is not a JSON object')
        self._loading = True
        try:
            for row in payload.get('tasks', []):
                task = _task_from_json(row)
                self.tasks[task.id] = task
            for row in payload.get('sources', []):
                row['crawled_at'] = _parse_datetime(row['crawled_at'])
                source = DemandSource(**row)
                self.sources[source.id] = source
            for row in payload.get('demands', []):
                row['created_at'] = _parse_datetime(row['created_at'])
                row['keywords'] = tuple(row.get('keywords') or ())
                self.demands.append(ExtractedDemand(**row))
            for row in payload.get('rankings', []):
                row['ranking_date'] = date.fromisoformat(row['ranking_date'])
                self.rankings.append(DemandRanking(**row))
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f'Corrupt store {self.path}: {exc}') from exc
        finally:
            self._loading = False
        log.debug(
            'Loaded store %s: %d task(s), %d source(s), %d demand(s), %d ranking(s).',
            self.path,
            len(self.tasks),
            len(self.sources),
            len(self.demands),
            len(self.rankings),
        )


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _jsonable(value):
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _task_to_json(task: RadarTask) -> dict:
    return _jsonable(asdict(task))


def _task_from_json(row: dict) -> RadarTask:
    stats = {platform: PlatformStats(**values) for platform, values in (row.get('platform_stats') or {}).items()}
    return RadarTask(
        id=row['id'],
        platforms=list(row.get('platforms') or []),
        status=row.get('status', 'pending'),
        started_at=_parse_datetime(row.get('started_at')),
        completed_at=_parse_datetime(row.get('completed_at')),
        sources_count=int(row.get('sources_count') or 0),
        demands_count=int(row.get('demands_count') or 0),
        rankings_count=int(row.get('rankings_count') or 0),
        error_message=row.get('error_message'),
        platform_stats=stats,
    )
