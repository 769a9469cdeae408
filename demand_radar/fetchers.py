##########################################################################################
#
# Script name: fetchers.py
#
# Description: Platform fetchers (Reddit, Hacker News, Product Hunt, X) and their registry.
#
##########################################################################################

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

import feedparser

from .config import DEFAULT_SUBREDDITS, RadarConfig
from .errors import FetchError
from .httpclient import HttpClient
from .models import RawDocument
from .utils import parse_timestamp, strip_html, truncate, utc_now, within_window


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

REDDIT_LISTING_LIMIT = 25
REDDIT_COMMENTS_MAX_CHARS = 5000
HN_API = 'https://hacker-news.firebaseio.com/v0'
HN_MAX_STORIES = 50
HN_MAX_COMMENTS = 10
PRODUCTHUNT_FEED_URL = 'https://www.producthunt.com/feed'
X_SEARCH_ENDPOINT = 'https://api.x.com/2/tweets/search/recent'
X_MAX_LOOKBACK_HOURS = 167
X_DEFAULT_QUERY = (
    '("need a tool" OR "looking for a tool" OR "is there a tool" OR "recommend a tool") '
    '-is:retweet lang:en'
)

_REGISTRY: dict[str, type['PlatformFetcher']] = {}


# ****************************************************************************************
# Classes
# ****************************************************************************************


@dataclass
class FetchResult:
    documents: list[RawDocument] = field(default_factory=list)
    unsupported: str | None = None

    @classmethod
    def unsupported_platform(cls, reason: str) -> 'FetchResult':
        return cls(documents=[], unsupported=reason)

    @property
    def is_unsupported(self) -> bool:
        return self.unsupported is not None


class PlatformFetcher:
    """Base class for one platform's fetch strategy.

    ``fetch`` returns documents published within the trailing window, capped
    at ``max_results``. Bad individual items are skipped; a ``FetchError`` is
    raised only when the platform cannot be read at all.
    """

    platform_id = ''

    def __init__(
        self,
        client: HttpClient,
        config: RadarConfig | None = None,
        clock: Callable = utc_now,
    ):
        self.client = client
        self.config = config or RadarConfig()
        self.clock = clock

    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        raise NotImplementedError


# ****************************************************************************************
# Registry
# ****************************************************************************************


def register_fetcher(platform_id: str):
    def decorator(cls):
        cls.platform_id = platform_id
        _REGISTRY[platform_id] = cls
        return cls

    return decorator


def available_platforms() -> list[str]:
    return sorted(_REGISTRY)


def get_fetcher(
    platform_id: str,
    client: HttpClient,
    config: RadarConfig | None = None,
    clock: Callable = utc_now,
) -> PlatformFetcher | None:
    fetcher_cls = _REGISTRY.get((platform_id or '').strip().lower())
    if fetcher_cls is None:
        return None
    return fetcher_cls(client, config=config, clock=clock)


# ****************************************************************************************
# Platform adapters
# ****************************************************************************************


def _flatten_reddit_comments(node, bodies: list[str]) -> None:
    if isinstance(node, list):
        for child in node:
            _flatten_reddit_comments(child, bodies)
        return
    if not isinstance(node, dict):
        return
    data = node.get('data')
    if not isinstance(data, dict):
        return
    if node.get('kind') == 't1' and data.get('body'):
        bodies.append(str(data['body']))
    for child in data.get('children') or []:
        _flatten_reddit_comments(child, bodies)
    replies = data.get('replies')
    if isinstance(replies, dict):
        _flatten_reddit_comments(replies, bodies)


@register_fetcher('reddit')
class RedditFetcher(PlatformFetcher):
    def _fetch_comments(self, subreddit: str, post_id: str) -> str:
        url = f'https://www.reddit.com/r/{subreddit}/comments/{post_id}.json'
        try:
            payload = self.client.fetch_json(url)
        except FetchError as exc:
            log.debug('Reddit comments unavailable for %s: %s', post_id, exc)
            return ''
        bodies: list[str] = []
        _flatten_reddit_comments(payload[1:] if isinstance(payload, list) else payload, bodies)
        return truncate('\n'.join(bodies), REDDIT_COMMENTS_MAX_CHARS)

    def _build_document(self, subreddit: str, post: dict, hours_back: int) -> RawDocument | None:
        published_at = parse_timestamp(post.get('created_utc'))
        if not within_window(published_at, hours_back, self.clock()):
            return None
        post_id = str(post['id'])
        title = (post.get('title') or '').strip()
        comments = self._fetch_comments(subreddit, post_id)
        content = '\n'.join([title, post.get('selftext') or '', comments])
        return RawDocument(
            source_id=post_id,
            title=title,
            content=content,
            url=f"https://www.reddit.com{post.get('permalink') or ''}",
            author=post.get('author'),
            upvotes=int(post.get('ups') or 0),
            comments=int(post.get('num_comments') or 0),
            metadata={'subreddit': subreddit},
            published_at=published_at,
        )

    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        subreddits = self.config.subreddits or DEFAULT_SUBREDDITS
        documents: list[RawDocument] = []
        failures = 0
        for subreddit in subreddits:
            if len(documents) >= max_results:
                break
            url = f'https://www.reddit.com/r/{subreddit}/hot.json'
            try:
                payload = self.client.fetch_json(url, params={'limit': REDDIT_LISTING_LIMIT})
            except FetchError as exc:
                failures += 1
                log.warning('Reddit r/%s listing failed: %s', subreddit, exc)
                continue
            listing = payload.get('data') if isinstance(payload, dict) else None
            children = (listing or {}).get('children') or []
            for child in children:
                if len(documents) >= max_results:
                    break
                try:
                    document = self._build_document(subreddit, child.get('data') or {}, hours_back)
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    log.debug('Skipping malformed Reddit post in r/%s: %s', subreddit, exc)
                    continue
                if document is not None:
                    documents.append(document)
        if failures and failures == len(subreddits):
            raise FetchError(f'All {failures} subreddit listing(s) failed')
        return FetchResult(documents=documents[:max_results])


@register_fetcher('hackernews')
class HackerNewsFetcher(PlatformFetcher):
    def _fetch_comments(self, kids: list) -> str:
        texts: list[str] = []
        for comment_id in kids[:HN_MAX_COMMENTS]:
            try:
                comment = self.client.fetch_json(f'{HN_API}/item/{comment_id}.json') or {}
            except FetchError as exc:
                log.debug('Hacker News comment %s unavailable: %s', comment_id, exc)
                continue
            if isinstance(comment, dict) and comment.get('text'):
                texts.append(strip_html(comment['text']))
        return '\n'.join(texts)

    def _build_document(self, story: dict, hours_back: int) -> RawDocument | None:
        if story.get('type') != 'story':
            return None
        published_at = parse_timestamp(story.get('time'))
        if not within_window(published_at, hours_back, self.clock()):
            return None
        story_id = str(story['id'])
        title = (story.get('title') or '').strip()
        comments = self._fetch_comments(story.get('kids') or [])
        content = '\n'.join([title, strip_html(story.get('text') or ''), comments])
        return RawDocument(
            source_id=story_id,
            title=title,
            content=content,
            url=story.get('url') or f'https://news.ycombinator.com/item?id={story_id}',
            author=story.get('by'),
            upvotes=int(story.get('score') or 0),
            comments=int(story.get('descendants') or 0),
            published_at=published_at,
        )

    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        story_ids = self.client.fetch_json(f'{HN_API}/topstories.json')
        if not isinstance(story_ids, list):
            raise FetchError('Hacker News top stories payload is not a list')
        log.info('Hacker News returned %d story id(s); scanning %d.', len(story_ids), min(HN_MAX_STORIES, len(story_ids)))
        documents: list[RawDocument] = []
        for story_id in story_ids[:HN_MAX_STORIES]:
            try:
                story = self.client.fetch_json(f'{HN_API}/item/{story_id}.json') or {}
                document = self._build_document(story, hours_back)
            except (FetchError, KeyError, TypeError, ValueError, AttributeError) as exc:
                log.debug('Skipping Hacker News story %s: %s', story_id, exc)
                continue
            if document is None:
                continue
            documents.append(document)
            if len(documents) >= max_results:
                log.info('Hacker News reached max results (%d).', max_results)
                break
        return FetchResult(documents=documents)


@register_fetcher('producthunt')
class ProductHuntFetcher(PlatformFetcher):
    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        body = self.client.fetch_text(PRODUCTHUNT_FEED_URL)
        parsed = feedparser.parse(body)
        if getattr(parsed, 'bozo', False):
            if not parsed.entries:
                raise FetchError(f'Product Hunt feed could not be parsed: {parsed.get("bozo_exception")}')
            log.warning('Product Hunt feed parse warning; continuing with %d entries.', len(parsed.entries))
        now = self.clock()
        documents: list[RawDocument] = []
        for entry in parsed.entries:
            if len(documents) >= max_results:
                break
            title = (entry.get('title') or '').strip()
            description = strip_html(entry.get('summary') or entry.get('description') or '')
            if not title or not description:
                continue
            published_at = parse_timestamp(entry.get('published') or entry.get('updated'))
            if not within_window(published_at, hours_back, now):
                continue
            documents.append(
                RawDocument(
                    source_id=entry.get('id') or None,
                    title=title,
                    content=f'{title}\n{description}',
                    url=entry.get('link'),
                    author=entry.get('author'),
                    published_at=published_at,
                )
            )
        return FetchResult(documents=documents)


@register_fetcher('twitter')
class TwitterFetcher(PlatformFetcher):
    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        bearer_token = os.getenv('X_BEARER_TOKEN')
        if not bearer_token:
            log.warning('Skipping X: X_BEARER_TOKEN is not set.')
            return FetchResult.unsupported_platform('X_BEARER_TOKEN is not set')

        now = self.clock()
        start_time = now - timedelta(hours=min(hours_back, X_MAX_LOOKBACK_HOURS))
        params = {
            'query': os.getenv('X_DEMAND_QUERY') or X_DEFAULT_QUERY,
            'max_results': max(10, min(max_results, 100)),
            'start_time': start_time.replace(microsecond=0).isoformat().replace('+00:00', 'Z'),
            'tweet.fields': 'created_at,public_metrics,author_id,lang',
            'user.fields': 'username,name',
            'expansions': 'author_id',
        }
        payload = self.client.fetch_json(
            X_SEARCH_ENDPOINT,
            headers={'Authorization': f'Bearer {bearer_token}'},
            params=params,
        ) or {}
        users_by_id = {
            user.get('id'): user
            for user in (payload.get('includes') or {}).get('users', [])
            if isinstance(user, dict) and user.get('id')
        }
        documents: list[RawDocument] = []
        for tweet in payload.get('data') or []:
            if len(documents) >= max_results:
                break
            try:
                document = self._build_document(tweet, users_by_id, hours_back, now)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                log.debug('Skipping malformed tweet: %s', exc)
                continue
            if document is not None:
                documents.append(document)
        return FetchResult(documents=documents)

    def _build_document(self, tweet: dict, users_by_id: dict, hours_back: int, now) -> RawDocument | None:
        tweet_id = str(tweet['id'])
        text = strip_html(tweet.get('text') or '')
        published_at = parse_timestamp(tweet.get('created_at'))
        if not text or not within_window(published_at, hours_back, now):
            return None
        username = (users_by_id.get(tweet.get('author_id')) or {}).get('username') or ''
        metrics = tweet.get('public_metrics') or {}
        url = f'https://x.com/{username}/status/{tweet_id}' if username else f'https://x.com/i/web/status/{tweet_id}'
        return RawDocument(
            source_id=tweet_id,
            title=None,
            content=text,
            url=url,
            author=username or None,
            upvotes=int(metrics.get('like_count') or 0),
            comments=int(metrics.get('reply_count') or 0),
            metadata={'reposts': int(metrics.get('retweet_count') or 0), 'lang': tweet.get('lang')},
            published_at=published_at,
        )


@register_fetcher('g2')
class G2Fetcher(PlatformFetcher):
    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        log.warning('G2 reviews require paid API access; skipping.')
        return FetchResult.unsupported_platform('G2 requires paid API access')


@register_fetcher('toolify')
class ToolifyFetcher(PlatformFetcher):
    def fetch(self, hours_back: int, max_results: int) -> FetchResult:
        log.warning('Toolify has no public listing strategy; skipping.')
        return FetchResult.unsupported_platform('Toolify has no public listing strategy')
