"""
1.0 HTTP Probe Module
Checks the response code of a single URL under a shared fetch quota.

Key features:
- Bounded retries with exponential backoff when the fetch service reports
  a short-term rate limit
- Daily quota exhaustion aborts the caller's scan (returned, not raised)
- Transport errors are terminal and recorded as the error message text
- HTTP error statuses are returned as codes, never raised
- Optional fixed throttle after each request
"""

import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from link_checker.errors import (
    ErrorKind,
    FetchServiceError,
    QUOTA_MESSAGE,
    RATE_LIMIT_MESSAGE,
    classify_fetch_error,
)

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """
    Outcome of probing one URL.

    Exactly one of response_code / error_message is set when failure is None.
    failure carries QPS_EXHAUSTED or QUOTA_EXHAUSTED when the probe gave up
    and the URL has no result.
    """
    url: str
    response_code: Optional[int] = None
    error_message: Optional[str] = None
    failure: Optional[ErrorKind] = None
    attempts: int = 0

    @property
    def result(self):
        """Response code, or the error text when the request failed."""
        return self.response_code if self.response_code is not None else self.error_message


# =============================================================================
# 2.0 FETCH QUOTA
# =============================================================================

class FetchQuota:
    """
    2.1 Request budget shared by every worker of an invocation.

    - Per-second ceiling: exceeding it raises the short-time rate limit message
    - Daily budget: counted per UTC date and persisted so later invocations
      on the same day see what was already spent
    """

    def __init__(
        self,
        max_requests_per_second: Optional[float] = None,
        daily_limit: Optional[int] = None,
        state_file: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests_per_second = max_requests_per_second
        self.daily_limit = daily_limit
        self.state_file = state_file
        self._clock = clock
        self._lock = threading.Lock()
        self._recent = deque()
        self.state = self._load_state()

    @staticmethod
    def _today() -> str:
        return datetime.now(timezone.utc).date().isoformat()

    def _load_state(self) -> Dict[str, Any]:
        state = {"date": self._today(), "count": 0}
        if self.state_file and os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r') as f:
                    saved = json.load(f)
                if saved.get("date") == state["date"]:
                    state["count"] = int(saved.get("count", 0))
            except (OSError, ValueError) as e:
                logger.warning(f"Could not load fetch quota state: {e}")
        return state

    def save(self) -> None:
        """2.2 Persist today's request count."""
        if not self.state_file:
            return
        os.makedirs(os.path.dirname(self.state_file) or ".", exist_ok=True)
        with self._lock:
            with open(self.state_file, 'w') as f:
                json.dump(self.state, f, indent=2)

    @property
    def used_today(self) -> int:
        return self.state["count"]

    def acquire(self) -> None:
        """
        2.3 Reserve one request or raise FetchServiceError.

        Rejected requests are not counted against either budget.
        """
        with self._lock:
            today = self._today()
            if self.state["date"] != today:
                self.state = {"date": today, "count": 0}

            if self.daily_limit is not None and self.state["count"] >= self.daily_limit:
                raise FetchServiceError(f"{QUOTA_MESSAGE} urlfetch (daily limit {self.daily_limit})")

            if self.max_requests_per_second:
                now = self._clock()
                while self._recent and now - self._recent[0] >= 1.0:
                    self._recent.popleft()
                if len(self._recent) >= self.max_requests_per_second:
                    raise FetchServiceError(f"{RATE_LIMIT_MESSAGE} urlfetch")
                self._recent.append(now)

            self.state["count"] += 1


# =============================================================================
# 3.0 FETCHERS
# =============================================================================

class Fetcher:
    """3.0 Returns the HTTP status code of a URL or raises with a message."""

    def fetch(self, url: str) -> int:
        raise NotImplementedError


class RequestsFetcher(Fetcher):
    """
    3.1 Fetcher backed by a pooled requests Session.

    Redirects are followed; 4xx/5xx come back as codes. Retries are left to
    HttpProbe so that every attempt is visible to the quota.
    """

    def __init__(
        self,
        quota: Optional[FetchQuota] = None,
        user_agent: str = "LinkChecker/1.0",
        timeout: float = 30,
        method: str = "GET",
        pool_size: int = 10,
    ):
        self.quota = quota
        self.timeout = timeout
        self.method = method.upper()
        self.session = self._create_session(user_agent, pool_size)

    @staticmethod
    def _create_session(user_agent: str, pool_size: int) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"User-Agent": user_agent})
        return session

    def fetch(self, url: str) -> int:
        if self.quota is not None:
            self.quota.acquire()
        # stream=True so GET does not download bodies we never read
        response = self.session.request(
            self.method,
            url,
            timeout=self.timeout,
            allow_redirects=True,
            stream=True,
        )
        try:
            return response.status_code
        finally:
            response.close()

    def close(self) -> None:
        self.session.close()


# =============================================================================
# 4.0 PROBE
# =============================================================================

class HttpProbe:
    """
    4.0 Requests a URL with bounded retries on rate limiting.

    Backoff: init_sleep, init_sleep * factor, init_sleep * factor^2, ...
    between attempts; no sleep follows the final attempt.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        init_sleep: float = 0.15,
        backoff_factor: float = 1.5,
        max_tries: int = 3,
        throttle: float = 0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.init_sleep = init_sleep
        self.backoff_factor = backoff_factor
        self.max_tries = max(1, int(max_tries))
        self.throttle = throttle
        self._sleep = sleep

    @classmethod
    def from_config(cls, fetcher: Fetcher, quota_config: Dict[str, Any], throttle: float = 0) -> "HttpProbe":
        return cls(
            fetcher,
            init_sleep=float(quota_config["init_sleep_seconds"]),
            backoff_factor=float(quota_config["backoff_factor"]),
            max_tries=int(quota_config["max_tries"]),
            throttle=float(throttle or 0),
        )

    def request_url(self, url: str) -> ProbeResult:
        """
        4.1 Request one URL.

        Returns a ProbeResult holding either the response code or the error
        text. failure is set to QUOTA_EXHAUSTED on a daily quota signal and to
        QPS_EXHAUSTED when every attempt was rate limited.
        """
        sleep_time = self.init_sleep

        for attempt in range(1, self.max_tries + 1):
            try:
                response_code = self.fetcher.fetch(url)
            except (FetchServiceError, requests.exceptions.RequestException) as e:
                message = str(e)
                kind = classify_fetch_error(message)

                if kind is ErrorKind.QUOTA_EXHAUSTED:
                    logger.warning(f"Daily fetch quota exhausted while requesting {url}")
                    return ProbeResult(url=url, failure=ErrorKind.QUOTA_EXHAUSTED, attempts=attempt)

                if kind is ErrorKind.TRANSPORT_ERROR:
                    logger.debug(f"Transport error for {url}: {message}")
                    return ProbeResult(url=url, error_message=message, attempts=attempt)

                if attempt < self.max_tries:
                    logger.debug(f"Rate limited on {url}, sleeping {sleep_time:.3f}s (attempt {attempt}/{self.max_tries})")
                    self._sleep(sleep_time)
                    sleep_time *= self.backoff_factor
                continue

            if self.throttle > 0:
                self._sleep(self.throttle)
            return ProbeResult(url=url, response_code=response_code, attempts=attempt)

        logger.warning(f"Rate limit retries exhausted for {url} after {self.max_tries} attempts")
        return ProbeResult(url=url, failure=ErrorKind.QPS_EXHAUSTED, attempts=self.max_tries)
