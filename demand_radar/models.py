from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


TASK_PENDING = "pending"
TASK_RUNNING = "running"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TERMINAL_STATUSES = {TASK_COMPLETED, TASK_FAILED}

PLATFORM_SUCCEEDED = "succeeded"
PLATFORM_FAILED = "failed"
PLATFORM_SKIPPED = "skipped"

TREND_NEW = "new"
TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"


@dataclass
class RawDocument:
    content: str
    source_id: str | None = None
    title: str | None = None
    url: str | None = None
    author: str | None = None
    upvotes: int = 0
    comments: int = 0
    metadata: dict = field(default_factory=dict)
    published_at: datetime | None = None


@dataclass
class PlatformStats:
    sources: int = 0
    demands: int = 0
    status: str = PLATFORM_SUCCEEDED
    error: str | None = None
    duration_ms: int = 0


@dataclass
class RadarTask:
    id: str
    platforms: list[str]
    status: str = TASK_PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    sources_count: int = 0
    demands_count: int = 0
    rankings_count: int = 0
    error_message: str | None = None
    platform_stats: dict[str, PlatformStats] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class DemandSource:
    id: str
    task_id: str
    platform: str
    content: str
    crawled_at: datetime
    source_id: str | None = None
    title: str | None = None
    url: str | None = None
    author: str | None = None
    upvotes: int = 0
    comments: int = 0
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DemandCandidate:
    original_text: str
    cleaned_text: str
    keywords: tuple[str, ...] = ()
    category: str | None = None


@dataclass(frozen=True)
class ExtractedDemand:
    id: str
    source_id: str
    task_id: str
    original_text: str
    cleaned_text: str
    created_at: datetime
    keywords: tuple[str, ...] = ()
    category: str | None = None

    @property
    def demand_key(self) -> str:
        return self.cleaned_text.lower()


@dataclass(frozen=True)
class DemandRanking:
    id: str
    demand_id: str
    demand_key: str
    ranking_date: date
    rank: int
    frequency: int
    source_count: int
    trend: str
    cleaned_text: str = ""
    category: str | None = None
    notes: str | None = None


@dataclass
class RunConfig:
    platforms: list[str]
    hours_back: int = 24
    max_results_per_platform: int = 100
    max_workers: int = 1


@dataclass
class TaskResult:
    task_id: str
    status: str
    sources_count: int
    demands_count: int
    rankings_count: int
    platform_stats: dict[str, PlatformStats] = field(default_factory=dict)
