"""
Shared Adapter Machinery

Exchange adapters do not inherit from a common base. Each one composes a
FailoverClient, configured with its own endpoint list and failure ceiling,
which provides:
- Endpoint rotation (round-robin over primary + mirrors)
- Retry backoff (exponential, optional jitter)
- Request pacing (page delay + periodic pause)
"""

import random
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import structlog

from data.pipeline.config import SourceConfig
from data.pipeline.errors import SourceUnavailable
from data.pipeline.models import DailyCandle

logger = structlog.get_logger()

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)

REQUEST_ERRORS = (requests.exceptions.RequestException, ValueError)

# Raised by int()/float()/fromtimestamp on a malformed provider row
CONVERSION_ERRORS = (TypeError, ValueError, OverflowError, OSError)


@dataclass
class FetchResult:
    """Result of one adapter's fetch, as seen by the orchestrator."""

    source: str
    candles: List[DailyCandle] = field(default_factory=list)
    success: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def count(self) -> int:
        return len(self.candles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "success": self.success,
            "records": self.count,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class RetryPolicy:
    """
    Retry policy for failed requests.

    Implements exponential backoff with optional jitter.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """
        Get delay for a retry attempt.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self.initial_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay = delay * (0.5 + random.random())

        return delay


class EndpointRotator:
    """Round-robin cursor over a fixed endpoint list, primary first."""

    def __init__(self, endpoints: Iterable[str]):
        self.endpoints = [e.rstrip("/") for e in endpoints]
        if not self.endpoints:
            raise ValueError("EndpointRotator needs at least one endpoint")
        self.index = 0

    @property
    def current(self) -> str:
        return self.endpoints[self.index]

    def rotate(self) -> str:
        self.index = (self.index + 1) % len(self.endpoints)
        return self.current

    def reset(self) -> None:
        self.index = 0


def build_session() -> requests.Session:
    """HTTP session with a light transport-level retry for 429/5xx."""
    session = requests.Session()
    retries = Retry(
        total=1,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        raise_on_status=False,
    )
    session.mount("https://", HTTPAdapter(max_retries=retries))
    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
    })
    return session


class FailoverClient:
    """
    JSON-over-HTTP client that rotates endpoints and counts consecutive failures.

    Usage:
        client = FailoverClient(config)
        while ...:
            try:
                payload = client.get_json("/api/v3/klines", params)
            except REQUEST_ERRORS as e:
                if client.record_failure(e):
                    break  # ceiling reached
                continue
            client.record_success()
    """

    def __init__(
        self,
        config: SourceConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.session = session or build_session()
        self.rotator = EndpointRotator(config.endpoints)
        self.retry = RetryPolicy(
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            jitter=config.retry_jitter,
        )
        self._sleep = sleep

        self.consecutive_failures = 0
        self.total_failures = 0
        self.last_error: Optional[BaseException] = None

    @property
    def base_url(self) -> str:
        return self.rotator.current

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Single GET against the current endpoint. Raises on any failure."""
        url = f"{self.base_url}{path}"
        response = self.session.get(url, params=params, timeout=self.config.timeout)
        response.raise_for_status()
        return response.json()

    def record_failure(self, error: BaseException) -> bool:
        """
        Count a failed attempt, rotate endpoint and back off.

        Returns:
            True if the consecutive-failure ceiling has been reached.
        """
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = error

        logger.warning(
            f"{self.config.name} request failed",
            endpoint=self.base_url,
            attempt=self.consecutive_failures,
            max_failures=self.config.max_failures,
            error=str(error),
        )

        if self.consecutive_failures >= self.config.max_failures:
            return True

        next_url = self.rotator.rotate()
        logger.info(f"{self.config.name} switching endpoint", endpoint=next_url)
        self._sleep(self.retry.get_delay(self.consecutive_failures - 1))
        return False

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def pace(self, accumulated: int, page_rows: int) -> None:
        """Delay between pages, with a longer pause every N accumulated records."""
        if self.config.page_delay > 0:
            self._sleep(self.config.page_delay)

        every = self.config.pause_every
        if every > 0 and self.config.pause_seconds > 0:
            # Crossed a multiple of `every` with this page
            if accumulated // every > (accumulated - page_rows) // every:
                logger.debug(f"{self.config.name} rate-limit pause", records=accumulated)
                self._sleep(self.config.pause_seconds)


def finalize_candles(
    source: str,
    candles: Iterable[DailyCandle],
    start: date,
    end: date,
) -> List[DailyCandle]:
    """Clip to [start, end], de-duplicate by date (last wins) and sort ascending."""
    by_date: Dict[date, DailyCandle] = {}
    for candle in candles:
        if start <= candle.date <= end:
            by_date[candle.date] = candle

    result = [by_date[d] for d in sorted(by_date)]

    if result:
        logger.info(
            f"Downloaded {len(result)} daily candles from {source}",
            start=result[0].date.isoformat(),
            end=result[-1].date.isoformat(),
        )
    return result


def finish_fetch(
    source: str,
    client: FailoverClient,
    candles: List[DailyCandle],
    start: date,
    end: date,
    exhausted: bool,
) -> List[DailyCandle]:
    """
    Apply the partial-success discipline.

    Whatever was accumulated is returned; SourceUnavailable is raised only if
    the failure ceiling was hit and zero records were ever obtained.
    """
    result = finalize_candles(source, candles, start, end)

    if exhausted:
        if not result:
            raise SourceUnavailable(source, client.consecutive_failures, client.last_error)
        logger.warning(
            f"{source} gave up after repeated failures, keeping partial data",
            records=len(result),
        )

    return result
