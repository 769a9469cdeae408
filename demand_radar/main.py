##########################################################################################
#
# Script name: main.py
#
# Description: CLI entrypoint for running the demand radar and printing daily rankings.
#
##########################################################################################

import argparse
import logging
import os
import sys
from datetime import date, datetime

from .config import load_config
from .errors import RadarError
from .models import RunConfig
from .orchestrator import run_task
from .ranking import RankingAggregator
from .store import JsonStore
from .utils import local_day, utc_now


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(os.path.basename(sys.argv[0]))
log.setLevel(logging.DEBUG)
log.propagate = False
formatter = logging.Formatter(
    '%(asctime)-15s [%(funcName)25s:%(lineno)-5s] %(levelname)-8s %(message)s'
)

DEFAULT_STORE_PATH = 'data/demand_radar.json'
LOG_FILE = 'demand_radar.log'


# ****************************************************************************************
# Functions
# ****************************************************************************************


def configure_logging(verbose: bool = False, quiet: bool = False, log_file: str | None = LOG_FILE) -> None:
    root_log = logging.getLogger()
    root_log.setLevel(logging.DEBUG)
    if log_file and not any(isinstance(handler, logging.FileHandler) for handler in root_log.handlers):
        fh = logging.FileHandler(log_file, mode='w')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        log.addHandler(fh)
        root_log.addHandler(fh)

    ch = next((handler for handler in log.handlers if type(handler) is logging.StreamHandler), None)
    if ch is None:
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(formatter)
        log.addHandler(ch)
        root_log.addHandler(ch)
    if verbose:
        ch.setLevel(logging.DEBUG)
    elif quiet:
        ch.setLevel(logging.ERROR)
    else:
        ch.setLevel(logging.INFO)


def _parse_day(value: str | None, tz) -> date:
    if not value:
        return local_day(utc_now(), tz)
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError as exc:
        raise RadarError(f'--date must be YYYY-MM-DD, got {value!r}') from exc


def format_rankings(rankings) -> str:
    if not rankings:
        return '(no rankings)'
    lines = []
    for row in rankings:
        line = f'{row.rank:>3}. [{row.trend:<6}] x{row.frequency:<4} {row.cleaned_text}'
        if row.notes:
            line += f'  ({row.notes})'
        lines.append(line)
    return '\n'.join(lines)


def format_tasks(tasks) -> str:
    if not tasks:
        return '(no tasks)'
    lines = []
    for task in tasks:
        started = task.started_at.isoformat() if task.started_at else '-'
        line = (
            f'{task.id}  {task.status:<9} {started}  '
            f'sources={task.sources_count} demands={task.demands_count} rankings={task.rankings_count}'
        )
        if task.error_message:
            line += f'  error={task.error_message}'
        lines.append(line)
    return '\n'.join(lines)


# ****************************************************************************************
# Handle the arguments
# ****************************************************************************************


def handle_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Extract and rank unmet demands from discussion platforms.')
    parser.add_argument('--config', default=None, help='Path to radar config YAML.')
    parser.add_argument('--store', default=DEFAULT_STORE_PATH, help='Path to the JSON data store.')
    parser.add_argument('--platforms', default=None, help='Comma separated platform ids (overrides config).')
    parser.add_argument('--hours-back', type=int, default=None, help='Trailing fetch window in hours.')
    parser.add_argument('--max-results', type=int, default=None, help='Max documents per platform.')
    parser.add_argument('--workers', type=int, default=None, help='Concurrent platform fetches.')
    parser.add_argument('--rank-only', action='store_true', help='Regenerate the ranking without fetching.')
    parser.add_argument('--date', default=None, help='Ranking day in YYYY-MM-DD format (default: today).')
    parser.add_argument('--show', action='store_true', help='Print the ranking for --date and exit.')
    parser.add_argument('--list-tasks', type=int, metavar='N', default=None, help='Print the N most recent tasks.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output to stdout.')
    parser.add_argument('-q', '--quiet', action='store_true', help='Minimal stdout.')
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose, quiet=args.quiet)

    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    log.info('+  %s', os.path.basename(sys.argv[0]))
    log.info('+  Python Version: %s', sys.version.split()[0])
    log.info('+  Today is: %s', date.today())
    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    return args


# ****************************************************************************************
# Main
# ****************************************************************************************


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    tz = config.tzinfo()
    store = JsonStore(args.store)

    if args.list_tasks is not None:
        print(format_tasks(store.list_tasks(args.list_tasks)))
        return 0

    aggregator = RankingAggregator(store, tz)
    day = _parse_day(args.date, tz)
    if args.show:
        print(format_rankings(aggregator.get_rankings(day)))
        return 0
    if args.rank_only:
        count = aggregator.generate_daily_ranking(day)
        log.info('Generated %d ranking row(s) for %s.', count, day)
        print(format_rankings(aggregator.get_rankings(day)))
        return 0

    platforms = [item.strip().lower() for item in args.platforms.split(',') if item.strip()] if args.platforms else config.platforms
    run_config = RunConfig(
        platforms=platforms,
        hours_back=args.hours_back or config.hours_back,
        max_results_per_platform=args.max_results or config.max_results_per_platform,
        max_workers=args.workers or config.max_workers,
    )
    result = run_task(store, config, run_config)
    for platform, stats in result.platform_stats.items():
        log.info('  %-12s %-9s sources=%d demands=%d', platform, stats.status, stats.sources, stats.demands)
    log.info(
        'Task %s %s: %d source(s), %d demand(s), %d ranking(s).',
        result.task_id,
        result.status,
        result.sources_count,
        result.demands_count,
        result.rankings_count,
    )
    print(format_rankings(aggregator.get_rankings(local_day(utc_now(), tz))))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = handle_args(argv)
    try:
        return run(args)
    except RadarError as exc:
        log.error('%s', exc)
        return 1


if __name__ == '__main__':
    sys.exit(main())
