##########################################################################################
#
# Script name: orchestrator.py
#
# Description: Runs one demand radar task: fetch, persist, extract, then rank the day.
#
##########################################################################################

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable

from .config import RadarConfig
from .extractor import DemandExtractor
from .fetchers import FetchResult, get_fetcher
from .httpclient import HttpClient
from .models import (
    PLATFORM_FAILED,
    PLATFORM_SKIPPED,
    PLATFORM_SUCCEEDED,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_RUNNING,
    PlatformStats,
    RadarTask,
    RawDocument,
    RunConfig,
    TaskResult,
)
from .ranking import RankingAggregator
from .utils import local_day, utc_now


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)
PROGRESS_EVERY = 10


# ****************************************************************************************
# Classes
# ****************************************************************************************


class TaskOrchestrator:
    """Drives a RadarTask through pending -> running -> completed/failed.

    A platform that raises is recorded as failed and the run moves on. Only an
    error outside the per-platform loop (usually ranking generation) fails the
    task; sources and demands persisted before that point are kept.
    """

    def __init__(
        self,
        store,
        client: HttpClient,
        config: RadarConfig | None = None,
        extractor: DemandExtractor | None = None,
        aggregator: RankingAggregator | None = None,
        fetcher_factory: Callable = get_fetcher,
        clock: Callable = utc_now,
    ):
        self.store = store
        self.client = client
        self.config = config or RadarConfig()
        self.tz = self.config.tzinfo()
        self.extractor = extractor or DemandExtractor()
        self.aggregator = aggregator or RankingAggregator(store, self.tz)
        self.fetcher_factory = fetcher_factory
        self.clock = clock

    def _fetch_platform(self, platform: str, hours_back: int, max_results: int) -> FetchResult:
        fetcher = self.fetcher_factory(platform, self.client, config=self.config, clock=self.clock)
        if fetcher is None:
            log.warning('Unknown platform: %s', platform)
            return FetchResult.unsupported_platform(f'Unknown platform: {platform}')
        result = fetcher.fetch(hours_back, max_results)
        if not result.is_unsupported:
            result.documents = result.documents[:max_results]
        return result

    def _timed_fetch(self, platform: str, hours_back: int, max_results: int):
        started = time.monotonic()
        try:
            result = self._fetch_platform(platform, hours_back, max_results)
            error = None
        except Exception as exc:  # noqa: BLE001
            result, error = None, exc
        return result, error, int((time.monotonic() - started) * 1000)

    def _persist_documents(self, task: RadarTask, platform: str, documents: list[RawDocument]) -> PlatformStats:
        stats = PlatformStats()
        total = len(documents)
        for idx, document in enumerate(documents, start=1):
            try:
                source = self.store.create_source(
                    task.id,
                    platform,
                    document,
                    crawled_at=document.published_at or self.clock(),
                )
                # Counts track stored rows, so a partial document still counts.
                stats.sources += 1
                for candidate in self.extractor.extract(source.content):
                    self.store.create_extracted_demand(source, candidate, created_at=self.clock())
                    stats.demands += 1
            except Exception as exc:  # noqa: BLE001
                log.exception(
                    'Failed to persist %s document %d/%d (%s): %s',
                    platform,
                    idx,
                    total,
                    (document.title or '')[:50],
                    exc,
                )
                continue
            if idx % PROGRESS_EVERY == 0 or idx == total:
                log.info('%s progress: %d/%d, %d demand(s) extracted.', platform, idx, total, stats.demands)
        return stats

    def _iter_fetches(self, platforms: list[str], run: RunConfig):
        """Yield (platform, result, error, duration_ms) in configured order."""
        if run.max_workers <= 1 or len(platforms) <= 1:
            for platform in platforms:
                log.info('Fetching %s (hours_back=%d, max=%d).', platform, run.hours_back, run.max_results_per_platform)
                yield (platform, *self._timed_fetch(platform, run.hours_back, run.max_results_per_platform))
            return
        with ThreadPoolExecutor(max_workers=min(run.max_workers, len(platforms))) as pool:
            futures = [
                pool.submit(self._timed_fetch, platform, run.hours_back, run.max_results_per_platform)
                for platform in platforms
            ]
            for platform, future in zip(platforms, futures):
                yield (platform, *future.result())

    def run_task(self, run: RunConfig) -> TaskResult:
        platforms = list(run.platforms)
        task = self.store.create_task(platforms)
        task = self.store.update_task(replace(task, status=TASK_RUNNING, started_at=self.clock()))
        log.info('Task %s started for platform(s): %s', task.id, ', '.join(platforms) or '(none)')

        try:
            for idx, (platform, result, error, duration_ms) in enumerate(self._iter_fetches(platforms, run), start=1):
                if error is not None:
                    log.error('[%d/%d] %s fetch failed: %s', idx, len(platforms), platform, error)
                    task.platform_stats[platform] = PlatformStats(
                        status=PLATFORM_FAILED, error=str(error), duration_ms=duration_ms
                    )
                    continue
                if result.is_unsupported:
                    log.warning('[%d/%d] %s skipped: %s', idx, len(platforms), platform, result.unsupported)
                    task.platform_stats[platform] = PlatformStats(
                        status=PLATFORM_SKIPPED, error=result.unsupported, duration_ms=duration_ms
                    )
                    continue
                log.info(
                    '[%d/%d] %s returned %d document(s) in %dms.',
                    idx,
                    len(platforms),
                    platform,
                    len(result.documents),
                    duration_ms,
                )
                stats = self._persist_documents(task, platform, result.documents)
                stats.status = PLATFORM_SUCCEEDED
                stats.duration_ms = duration_ms
                task.platform_stats[platform] = stats
                task.sources_count += stats.sources
                task.demands_count += stats.demands

            succeeded = sum(1 for stats in task.platform_stats.values() if stats.status == PLATFORM_SUCCEEDED)
            log.info(
                'Platforms done: %d succeeded, %d failed, %d skipped; %d source(s), %d demand(s).',
                succeeded,
                sum(1 for stats in task.platform_stats.values() if stats.status == PLATFORM_FAILED),
                sum(1 for stats in task.platform_stats.values() if stats.status == PLATFORM_SKIPPED),
                task.sources_count,
                task.demands_count,
            )

            ranking_day = local_day(self.clock(), self.tz)
            task.rankings_count = self.aggregator.generate_daily_ranking(ranking_day)
            task.status = TASK_COMPLETED
            task.completed_at = self.clock()
            task = self.store.update_task(task)
        except Exception as exc:
            log.exception('Task %s failed: %s', task.id, exc)
            task.status = TASK_FAILED
            task.error_message = str(exc) or exc.__class__.__name__
            task.completed_at = self.clock()
            try:
                self.store.update_task(task)
            except Exception:  # noqa: BLE001
                log.exception('Could not record failure for task %s.', task.id)
            raise

        log.info(
            'Task %s completed: %d source(s), %d demand(s), %d ranking(s).',
            task.id,
            task.sources_count,
            task.demands_count,
            task.rankings_count,
        )
        return TaskResult(
            task_id=task.id,
            status=task.status,
            sources_count=task.sources_count,
            demands_count=task.demands_count,
            rankings_count=task.rankings_count,
            platform_stats=dict(task.platform_stats),
        )


# ****************************************************************************************
# Functions
# ****************************************************************************************


def build_orchestrator(store, config: RadarConfig) -> TaskOrchestrator:
    client = HttpClient.from_settings(config.http)
    return TaskOrchestrator(store=store, client=client, config=config)


def run_task(store, config: RadarConfig, run: RunConfig | None = None) -> TaskResult:
    orchestrator = build_orchestrator(store, config)
    try:
        return orchestrator.run_task(
            run
            or RunConfig(
                platforms=list(config.platforms),
                hours_back=config.hours_back,
                max_results_per_platform=config.max_results_per_platform,
                max_workers=config.max_workers,
            )
        )
    finally:
        orchestrator.client.close()
