##########################################################################################
#
# Script name: config.py
#
# Description: Static extraction tables, pipeline defaults and YAML config loading.
#
##########################################################################################

import logging
import os
import re
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .errors import ConfigError


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

_ENDS = r'(?:[.!?]|$)'
_CJK_ENDS = r'(?:[。？！]|$)'
_FLAGS = re.IGNORECASE | re.MULTILINE

DEMAND_PATTERNS = (
    re.compile(rf'I need a tool that (.+?){_ENDS}', _FLAGS),
    re.compile(rf'Does anyone know a tool for (.+?){_ENDS}', _FLAGS),
    re.compile(rf'I wish there was a tool (.+?){_ENDS}', _FLAGS),
    re.compile(rf'Looking for a tool to (.+?){_ENDS}', _FLAGS),
    re.compile(rf'Need a solution for (.+?){_ENDS}', _FLAGS),
    re.compile(rf'Is there a tool that (.+?){_ENDS}', _FLAGS),
    re.compile(rf'Can someone recommend a tool (.+?){_ENDS}', _FLAGS),
    re.compile(rf'有什么工具可以(.+?){_CJK_ENDS}', _FLAGS),
    re.compile(rf'有没有工具(.+?){_CJK_ENDS}', _FLAGS),
)

STOP_WORDS = frozenset(
    [
        'a', 'an', 'the', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
        'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'should',
        'could', 'may', 'might', 'must', 'can', 'to', 'for', 'of', 'in', 'on',
        'at', 'by', 'with', 'from', 'as', 'that', 'this', 'it', 'i', 'you', 'he',
        'she', 'we', 'they', 'what', 'which', 'who', 'where', 'when', 'why', 'how',
    ]
)

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3

# Order matters: the first category with a matching term wins.
CATEGORIES = (
    ('email', ('email', 'mail', 'newsletter', 'smtp')),
    ('seo', ('seo', 'search', 'ranking', 'keyword')),
    ('automation', ('automate', 'automation', 'workflow', 'scheduler')),
    ('analytics', ('analytics', 'tracking', 'metrics', 'data')),
    ('social', ('social', 'twitter', 'facebook', 'instagram', 'linkedin')),
    ('ecommerce', ('shop', 'store', 'cart', 'payment', 'checkout')),
    ('design', ('design', 'ui', 'ux', 'mockup', 'prototype')),
    ('development', ('code', 'api', 'deploy', 'server', 'backend')),
)

DEFAULT_PLATFORMS = ['reddit', 'producthunt', 'hackernews', 'g2', 'toolify', 'twitter']
DEFAULT_HOURS_BACK = 24
DEFAULT_MAX_RESULTS = 100
DEFAULT_MAX_WORKERS = 1
DEFAULT_TIMEZONE = 'UTC'
DEFAULT_SUBREDDITS = ['SaaS', 'entrepreneur']

RANKING_TOP_N = 20
STRONG_DEMAND_FREQUENCY = 30
NOTABLE_DEMAND_FREQUENCY = 20
MULTI_PLATFORM_SOURCES = 5

HTTP_TIMEOUT_SECONDS = 10.0
HTTP_RETRIES = 3
USER_AGENT = 'demand-radar-bot/1.0 (+https://github.com/)'


# ****************************************************************************************
# Classes
# ****************************************************************************************


@dataclass(frozen=True)
class HttpSettings:
    timeout: float = HTTP_TIMEOUT_SECONDS
    retries: int = HTTP_RETRIES
    follow_robots_txt: bool = False
    user_agent: str = USER_AGENT


@dataclass(frozen=True)
class RadarConfig:
    platforms: list[str] = field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    hours_back: int = DEFAULT_HOURS_BACK
    max_results_per_platform: int = DEFAULT_MAX_RESULTS
    max_workers: int = DEFAULT_MAX_WORKERS
    timezone: str = DEFAULT_TIMEZONE
    subreddits: list[str] = field(default_factory=lambda: list(DEFAULT_SUBREDDITS))
    http: HttpSettings = field(default_factory=HttpSettings)

    def tzinfo(self) -> ZoneInfo:
        return resolve_timezone(self.timezone)


# ****************************************************************************************
# Functions
# ****************************************************************************************


def resolve_timezone(name: str | None) -> ZoneInfo:
    tz_name = name or os.getenv('RADAR_TIMEZONE') or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f'Unknown timezone: {tz_name}') from exc


def _positive_int(payload: dict, key: str, default: int) -> int:
    value = payload.get(key, default)
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'{key} must be an integer, got {value!r}') from exc
    if number < 1:
        raise ConfigError(f'{key} must be >= 1, got {number}')
    return number


def _string_list(payload: dict, key: str, default: list[str]) -> list[str]:
    value = payload.get(key)
    if value is None:
        return list(default)
    if not isinstance(value, list):
        raise ConfigError(f'{key} must be a list')
    return [str(item).strip() for item in value if str(item).strip()]


def parse_config(payload: dict) -> RadarConfig:
    if not isinstance(payload, dict):
        raise ConfigError('config root must be a mapping')
    http_payload = payload.get('http') or {}
    if not isinstance(http_payload, dict):
        raise ConfigError('http must be a mapping')
    http = HttpSettings(
        timeout=float(http_payload.get('timeout', HTTP_TIMEOUT_SECONDS)),
        retries=int(http_payload.get('retries', HTTP_RETRIES)),
        follow_robots_txt=bool(http_payload.get('follow_robots_txt', False)),
        user_agent=str(http_payload.get('user_agent') or USER_AGENT),
    )
    timezone_name = payload.get('timezone') or os.getenv('RADAR_TIMEZONE') or DEFAULT_TIMEZONE
    config = RadarConfig(
        platforms=[platform.lower() for platform in _string_list(payload, 'platforms', DEFAULT_PLATFORMS)],
        hours_back=_positive_int(payload, 'hours_back', DEFAULT_HOURS_BACK),
        max_results_per_platform=_positive_int(payload, 'max_results_per_platform', DEFAULT_MAX_RESULTS),
        max_workers=_positive_int(payload, 'max_workers', DEFAULT_MAX_WORKERS),
        timezone=str(timezone_name),
        subreddits=_string_list(payload, 'subreddits', DEFAULT_SUBREDDITS),
        http=http,
    )
    resolve_timezone(config.timezone)
    return config


def load_config(path: str | None) -> RadarConfig:
    if not path:
        return parse_config({})
    if not os.path.exists(path):
        raise ConfigError(f'Config file not found: {path}')
    with open(path, 'r', encoding='utf-8') as handle:
        try:
            payload = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f'Invalid YAML in {path}: {exc}') from exc
    config = parse_config(payload)
    log.info('Loaded radar config from %s (%d platform(s)).', path, len(config.platforms))
    return config
