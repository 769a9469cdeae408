##########################################################################################
#
# Script name: test_httpclient.py
#
# Description: Fetch layer error mapping, timeout and robots.txt tests.
#
##########################################################################################

import pytest
import requests

from demand_radar.errors import FetchError
from demand_radar.httpclient import HttpClient


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = '', payload=None):
        self.status_code = status_code
        self.text = text
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError('no json')
        return self._payload


class FakeSession:
    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        value = self.responses.get(url, FakeResponse(404))
        if isinstance(value, Exception):
            raise value
        return value

    def close(self) -> None:
        pass


def test_fetch_json_returns_payload_with_timeout() -> None:
    session = FakeSession({'https://api.example.com/items': FakeResponse(payload=[1, 2])})
    client = HttpClient(timeout=4.5, session=session)

    assert client.fetch_json('https://api.example.com/items') == [1, 2]
    url, kwargs = session.calls[0]
    assert kwargs['timeout'] == 4.5
    assert kwargs['headers']['Accept'].startswith('application/json')


def test_error_status_becomes_fetch_error() -> None:
    session = FakeSession({'https://api.example.com/secret': FakeResponse(403)})
    client = HttpClient(session=session)

    with pytest.raises(FetchError) as excinfo:
        client.fetch_text('https://api.example.com/secret')
    assert excinfo.value.status_code == 403


def test_transport_error_becomes_fetch_error() -> None:
    session = FakeSession({'https://api.example.com/slow': requests.Timeout('read timed out')})
    client = HttpClient(session=session)

    with pytest.raises(FetchError, match='read timed out'):
        client.fetch_text('https://api.example.com/slow', timeout=1)


def test_invalid_json_becomes_fetch_error() -> None:
    session = FakeSession({'https://api.example.com/html': FakeResponse(text='<html>')})
    client = HttpClient(session=session)

    with pytest.raises(FetchError, match='Invalid JSON'):
        client.fetch_json('https://api.example.com/html')


def test_robots_txt_is_honored_when_enabled() -> None:
    session = FakeSession(
        {
            'https://forum.example.com/robots.txt': FakeResponse(text='User-agent: *\nDisallow: /private\n'),
            'https://forum.example.com/public': FakeResponse(text='ok'),
        }
    )
    client = HttpClient(session=session, follow_robots_txt=True)

    assert client.fetch_text('https://forum.example.com/public') == 'ok'
    with pytest.raises(FetchError, match='robots.txt'):
        client.fetch_text('https://forum.example.com/private/page')
    robots_calls = [url for url, _ in session.calls if url.endswith('/robots.txt')]
    assert robots_calls == ['https://forum.example.com/robots.txt']


def test_robots_txt_can_be_skipped_per_call() -> None:
    session = FakeSession(
        {
            'https://forum.example.com/robots.txt': FakeResponse(text='User-agent: *\nDisallow: /\n'),
            'https://forum.example.com/feed': FakeResponse(text='feed'),
        }
    )
    client = HttpClient(session=session, follow_robots_txt=True)

    assert client.fetch_text('https://forum.example.com/feed', follow_robots_txt=False) == 'feed'
