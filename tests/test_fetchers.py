##########################################################################################
#
# Script name: test_fetchers.py
#
# Description: Platform adapter parsing, window filtering and registry tests.
#
##########################################################################################

from datetime import datetime, timedelta, timezone

import pytest

from demand_radar import fetchers
from demand_radar.config import RadarConfig
from demand_radar.errors import FetchError
from demand_radar.fetchers import (
    FetchResult,
    HackerNewsFetcher,
    PlatformFetcher,
    ProductHuntFetcher,
    RedditFetcher,
    TwitterFetcher,
    available_platforms,
    get_fetcher,
    register_fetcher,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
RECENT = NOW - timedelta(hours=2)
OLD = NOW - timedelta(hours=48)


class FakeClient:
    """Serves canned payloads keyed by URL; exceptions are raised."""

    def __init__(self, responses: dict):
        self.responses = responses
        self.requests: list[tuple[str, dict]] = []

    def _lookup(self, url: str, kwargs: dict):
        self.requests.append((url, kwargs))
        if url not in self.responses:
            raise FetchError(f'HTTP 404 for {url}', url=url, status_code=404)
        value = self.responses[url]
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_json(self, url: str, **kwargs):
        return self._lookup(url, kwargs)

    def fetch_text(self, url: str, **kwargs):
        return self._lookup(url, kwargs)


def _clock():
    return NOW


def test_registry_lists_builtin_platforms() -> None:
    assert available_platforms() == ['g2', 'hackernews', 'producthunt', 'reddit', 'toolify', 'twitter']
    assert isinstance(get_fetcher('HackerNews', FakeClient({})), HackerNewsFetcher)
    assert get_fetcher('myspace', FakeClient({})) is None


def test_new_platform_registers_without_orchestrator_changes(monkeypatch) -> None:
    monkeypatch.setattr(fetchers, '_REGISTRY', dict(fetchers._REGISTRY))

    @register_fetcher('forum')
    class ForumFetcher(PlatformFetcher):
        def fetch(self, hours_back, max_results):
            return FetchResult(documents=[])

    assert 'forum' in available_platforms()
    assert isinstance(get_fetcher('forum', FakeClient({})), ForumFetcher)
    assert ForumFetcher.platform_id == 'forum'


def test_hackernews_collects_recent_stories_with_comments() -> None:
    base = fetchers.HN_API
    client = FakeClient(
        {
            f'{base}/topstories.json': [1, 2, 3, 4],
            f'{base}/item/1.json': {
                'id': 1,
                'type': 'story',
                'title': 'Ask HN: expense tooling?',
                'text': '<p>Curious what people use</p>',
                'time': int(RECENT.timestamp()),
                'by': 'pg',
                'score': 42,
                'descendants': 7,
                'kids': [11, 12],
            },
            f'{base}/item/11.json': {'id': 11, 'text': 'I need a tool that tracks expenses &amp; receipts.'},
            f'{base}/item/12.json': FetchError('comment gone'),
            f'{base}/item/2.json': {'id': 2, 'type': 'story', 'title': 'Old', 'time': int(OLD.timestamp())},
            f'{base}/item/3.json': FetchError('timeout'),
            f'{base}/item/4.json': {'id': 4, 'type': 'job', 'title': 'Hiring', 'time': int(RECENT.timestamp())},
        }
    )
    result = HackerNewsFetcher(client, clock=_clock).fetch(hours_back=24, max_results=10)

    assert len(result.documents) == 1
    document = result.documents[0]
    assert document.source_id == '1'
    assert document.url == 'https://news.ycombinator.com/item?id=1'
    assert document.upvotes == 42
    assert document.comments == 7
    assert document.published_at == RECENT.replace(microsecond=0)
    assert 'Curious what people use' in document.content
    assert 'I need a tool that tracks expenses & receipts.' in document.content


def test_hackernews_top_stories_failure_is_adapter_failure() -> None:
    client = FakeClient({f'{fetchers.HN_API}/topstories.json': FetchError('network unreachable')})

    with pytest.raises(FetchError):
        HackerNewsFetcher(client, clock=_clock).fetch(hours_back=24, max_results=10)


def test_hackernews_stops_at_max_results() -> None:
    base = fetchers.HN_API
    responses = {f'{base}/topstories.json': [1, 2, 3]}
    for story_id in (1, 2, 3):
        responses[f'{base}/item/{story_id}.json'] = {
            'id': story_id,
            'type': 'story',
            'title': f'Story {story_id}',
            'time': int(RECENT.timestamp()),
            'url': f'https://example.com/{story_id}',
        }
    result = HackerNewsFetcher(FakeClient(responses), clock=_clock).fetch(hours_back=24, max_results=2)

    assert [document.source_id for document in result.documents] == ['1', '2']
    assert result.documents[0].url == 'https://example.com/1'


def _reddit_post(post_id: str, created: datetime) -> dict:
    return {
        'kind': 't3',
        'data': {
            'id': post_id,
            'title': f'Post {post_id}',
            'selftext': 'Looking for a tool to schedule posts.',
            'created_utc': created.timestamp(),
            'permalink': f'/r/SaaS/comments/{post_id}/post/',
            'author': 'founder',
            'ups': 12,
            'num_comments': 3,
        },
    }


def test_reddit_flattens_comments_and_skips_bad_items() -> None:
    comments_payload = [
        {'kind': 'Listing', 'data': {'children': [_reddit_post('abc', RECENT)]}},
        {
            'kind': 'Listing',
            'data': {
                'children': [
                    {
                        'kind': 't1',
                        'data': {
                            'body': 'Is there a tool that merges PDFs?',
                            'replies': {
                                'kind': 'Listing',
                                'data': {'children': [{'kind': 't1', 'data': {'body': 'nested reply', 'replies': ''}}]},
                            },
                        },
                    }
                ]
            },
        },
    ]
    malformed = {'kind': 't3', 'data': {'title': 'no id', 'created_utc': RECENT.timestamp()}}
    client = FakeClient(
        {
            'https://www.reddit.com/r/SaaS/hot.json': {
                'data': {'children': [_reddit_post('abc', RECENT), _reddit_post('old', OLD), malformed, 'junk']}
            },
            'https://www.reddit.com/r/SaaS/comments/abc.json': comments_payload,
            'https://www.reddit.com/r/entrepreneur/hot.json': FetchError('HTTP 429'),
        }
    )
    result = RedditFetcher(client, config=RadarConfig(), clock=_clock).fetch(hours_back=24, max_results=10)

    assert len(result.documents) == 1
    document = result.documents[0]
    assert document.source_id == 'abc'
    assert document.url == 'https://www.reddit.com/r/SaaS/comments/abc/post/'
    assert document.metadata == {'subreddit': 'SaaS'}
    assert 'Is there a tool that merges PDFs?' in document.content
    assert 'nested reply' in document.content
    assert client.requests[0][1] == {'params': {'limit': 25}}


def test_reddit_all_listings_failing_raises() -> None:
    client = FakeClient({})

    with pytest.raises(FetchError):
        RedditFetcher(client, config=RadarConfig(subreddits=['SaaS']), clock=_clock).fetch(24, 10)


PRODUCT_HUNT_FEED = '''<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Product Hunt</title>
    <link>https://www.producthunt.com</link>
    <item>
      <title>ExpenseBot</title>
      <link>https://www.producthunt.com/posts/expensebot</link>
      <guid>ph-1</guid>
      <description>&lt;p&gt;Tracks expenses from receipts&lt;/p&gt;</description>
      <pubDate>Sun, 01 Mar 2026 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>OldLaunch</title>
      <link>https://www.producthunt.com/posts/old</link>
      <guid>ph-2</guid>
      <description>Launched long ago</description>
      <pubDate>Thu, 26 Feb 2026 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>NoDescription</title>
      <link>https://www.producthunt.com/posts/empty</link>
      <pubDate>Sun, 01 Mar 2026 11:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>
'''


def test_producthunt_parses_feed_within_window() -> None:
    client = FakeClient({fetchers.PRODUCTHUNT_FEED_URL: PRODUCT_HUNT_FEED})
    result = ProductHuntFetcher(client, clock=_clock).fetch(hours_back=24, max_results=10)

    assert len(result.documents) == 1
    document = result.documents[0]
    assert document.title == 'ExpenseBot'
    assert document.content == 'ExpenseBot\nTracks expenses from receipts'
    assert document.url == 'https://www.producthunt.com/posts/expensebot'
    assert document.source_id == 'ph-1'


def test_twitter_without_token_is_unsupported(monkeypatch) -> None:
    monkeypatch.delenv('X_BEARER_TOKEN', raising=False)
    client = FakeClient({})
    result = TwitterFetcher(client, clock=_clock).fetch(hours_back=24, max_results=10)

    assert result.is_unsupported
    assert result.documents == []
    assert client.requests == []


def test_twitter_parses_recent_search(monkeypatch) -> None:
    monkeypatch.setenv('X_BEARER_TOKEN', 'token-123')
    client = FakeClient(
        {
            fetchers.X_SEARCH_ENDPOINT: {
                'data': [
                    {
                        'id': '99',
                        'text': 'Does anyone know a tool for SEO audits?',
                        'author_id': 'u1',
                        'created_at': '2026-03-01T11:00:00.000Z',
                        'public_metrics': {'like_count': 5, 'reply_count': 2, 'retweet_count': 1},
                    },
                    {'id': '100', 'text': 'too old', 'created_at': '2026-02-20T11:00:00.000Z'},
                    {'text': 'missing id'},
                ],
                'includes': {'users': [{'id': 'u1', 'username': 'maker'}]},
            }
        }
    )
    result = TwitterFetcher(client, clock=_clock).fetch(hours_back=24, max_results=5)

    assert len(result.documents) == 1
    document = result.documents[0]
    assert document.url == 'https://x.com/maker/status/99'
    assert document.upvotes == 5
    assert document.comments == 2
    url, kwargs = client.requests[0]
    assert kwargs['headers'] == {'Authorization': 'Bearer token-123'}
    assert kwargs['params']['max_results'] == 10
    assert kwargs['params']['start_time'] == '2026-02-28T12:00:00Z'


def test_twitter_skips_tweet_with_bad_metrics(monkeypatch) -> None:
    monkeypatch.setenv('X_BEARER_TOKEN', 'token-123')
    client = FakeClient(
        {
            fetchers.X_SEARCH_ENDPOINT: {
                'data': [
                    {
                        'id': '1',
                        'text': 'I need a tool that merges PDFs.',
                        'created_at': '2026-03-01T11:00:00.000Z',
                        'public_metrics': {'like_count': 'n/a'},
                    },
                    {
                        'id': '2',
                        'text': 'Looking for a tool to plan meals.',
                        'created_at': '2026-03-01T11:30:00.000Z',
                        'public_metrics': ['not', 'a', 'dict'],
                    },
                    {
                        'id': '3',
                        'text': 'Is there a tool that tracks habits?',
                        'created_at': '2026-03-01T11:45:00.000Z',
                        'public_metrics': {'like_count': 4},
                    },
                ]
            }
        }
    )
    result = TwitterFetcher(client, clock=_clock).fetch(hours_back=24, max_results=10)

    assert [document.source_id for document in result.documents] == ['3']


@pytest.mark.parametrize('platform', ['g2', 'toolify'])
def test_platforms_without_strategy_are_unsupported(platform: str) -> None:
    result = get_fetcher(platform, FakeClient({})).fetch(hours_back=24, max_results=10)

    assert result.is_unsupported
    assert result.documents == []
