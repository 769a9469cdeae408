##########################################################################################
#
# Script name: httpclient.py
#
# Description: Shared HTTP fetch layer with timeouts, retries and robots.txt checks.
#
##########################################################################################

import logging
import threading
from urllib import robotparser
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import HTTP_RETRIES, HTTP_TIMEOUT_SECONDS, USER_AGENT, HttpSettings
from .errors import FetchError


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
JSON_ACCEPT = 'application/json, text/plain, */*'


# ****************************************************************************************
# Classes
# ****************************************************************************************


class HttpClient:
    """Thin wrapper over a ``requests.Session``.

    Every call carries a timeout. Transport errors, non-2xx responses and
    undecodable JSON are raised as ``FetchError`` so platform adapters only
    have one exception type to reason about.
    """

    def __init__(
        self,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        retries: int = HTTP_RETRIES,
        follow_robots_txt: bool = False,
        user_agent: str = USER_AGENT,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout
        self.retries = retries
        self.follow_robots_txt = follow_robots_txt
        self.user_agent = user_agent
        self._sessions: dict[int, requests.Session] = {}
        self._session = session or self._create_session(retries)
        self._robots: dict[str, robotparser.RobotFileParser | None] = {}
        self._robots_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: HttpSettings) -> 'HttpClient':
        return cls(
            timeout=settings.timeout,
            retries=settings.retries,
            follow_robots_txt=settings.follow_robots_txt,
            user_agent=settings.user_agent,
        )

    def _create_session(self, retries: int) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=retries,
            backoff_factor=1.0,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=['GET', 'HEAD'],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        session.headers.update({'User-Agent': self.user_agent})
        return session

    def _session_for(self, retries: int | None) -> requests.Session:
        if retries is None or retries == self.retries:
            return self._session
        session = self._sessions.get(retries)
        if session is None:
            session = self._create_session(retries)
            self._sessions[retries] = session
        return session

    def _robots_for(self, url: str) -> robotparser.RobotFileParser | None:
        parsed = urlparse(url)
        origin = f'{parsed.scheme}://{parsed.netloc}'
        with self._robots_lock:
            if origin in self._robots:
                return self._robots[origin]
        parser = None
        try:
            response = self._session.get(f'{origin}/robots.txt', timeout=self.timeout)
            if response.status_code == 200:
                parser = robotparser.RobotFileParser()
                parser.parse(response.text.splitlines())
        except requests.RequestException as exc:
            log.debug('robots.txt unavailable for %s: %s', origin, exc)
        with self._robots_lock:
            self._robots[origin] = parser
        return parser

    def allowed_by_robots(self, url: str) -> bool:
        parser = self._robots_for(url)
        if parser is None:
            return True
        return parser.can_fetch(self.user_agent, url)

    def _get(
        self,
        url: str,
        timeout: float | None,
        retries: int | None,
        follow_robots_txt: bool | None,
        headers: dict | None,
        params: dict | None,
    ) -> requests.Response:
        check_robots = self.follow_robots_txt if follow_robots_txt is None else follow_robots_txt
        if check_robots and not self.allowed_by_robots(url):
            raise FetchError(f'Disallowed by robots.txt: {url}', url=url)
        session = self._session_for(retries)
        try:
            response = session.get(
                url,
                headers=headers,
                params=params,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.RequestException as exc:
            raise FetchError(f'Request failed for {url}: {exc}', url=url) from exc
        if response.status_code >= 400:
            raise FetchError(
                f'HTTP {response.status_code} for {url}',
                url=url,
                status_code=response.status_code,
            )
        return response

    def fetch_text(
        self,
        url: str,
        timeout: float | None = None,
        retries: int | None = None,
        follow_robots_txt: bool | None = None,
        headers: dict | None = None,
        params: dict | None = None,
    ) -> str:
        response = self._get(url, timeout, retries, follow_robots_txt, headers, params)
        return response.text

    def fetch_json(
        self,
        url: str,
        timeout: float | None = None,
        retries: int | None = None,
        follow_robots_txt: bool | None = None,
        headers: dict | None = None,
        params: dict | None = None,
    ):
        merged_headers = {'Accept': JSON_ACCEPT}
        merged_headers.update(headers or {})
        response = self._get(url, timeout, retries, follow_robots_txt, merged_headers, params)
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f'Invalid JSON from {url}', url=url) from exc

    def close(self) -> None:
        self._session.close()
        for session in self._sessions.values():
            session.close()
