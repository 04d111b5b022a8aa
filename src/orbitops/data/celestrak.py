"""CelesTrak TLE client.

Fetches public GP element sets in TLE format from CelesTrak. No account is
needed; requests carry a descriptive user agent and are retried on network
errors and server-side failures.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import requests

from orbitops.core.elements import OrbitalElements, parse_tle

logger = logging.getLogger(__name__)

GP_URL = "https://celestrak.org/NORAD/elements/gp.php"


@dataclass(frozen=True)
class TLESource:
    """A CelesTrak query and how often it is worth refreshing.

    Attributes:
        name: Human-readable label.
        query: Query parameter pairs, e.g. ``(("GROUP", "stations"),)``.
        refresh_interval_s: Suggested minimum time between fetches.
    """

    name: str
    query: tuple[tuple[str, str], ...]
    refresh_interval_s: float = 3600.0

    @property
    def params(self) -> dict[str, str]:
        return {**dict(self.query), "FORMAT": "tle"}


def _group(name: str, group: str, minutes: int) -> TLESource:
    return TLESource(name, (("GROUP", group),), minutes * 60.0)


def _special(name: str, special: str, minutes: int) -> TLESource:
    return TLESource(name, (("SPECIAL", special),), minutes * 60.0)


CELESTRAK_SOURCES: dict[str, TLESource] = {
    "stations": _group("Space Stations", "stations", 30),
    "starlink": _group("Starlink", "starlink", 60),
    "active": _group("Active Satellites", "active", 120),
    "debris": _special("Space Debris", "debris", 180),
    "visual": _group("Visual Satellites", "visual", 60),
    "weather": _group("Weather Satellites", "weather", 60),
    "noaa": _group("NOAA Satellites", "noaa", 60),
    "gps": _group("GPS Constellation", "gps-ops", 180),
    "galileo": _group("Galileo Constellation", "galileo", 180),
    "recent": _special("Recent Launches", "gpz-plus", 15),
}


@dataclass
class FetchResult:
    """Outcome of fetching one source.

    Attributes:
        source: The source that was fetched.
        success: False when every attempt failed.
        elements: Parsed elements (empty on failure).
        error_message: Last error when ``success`` is False.
        fetched_at: Unix time the fetch finished.
        bytes_downloaded: Size of the response body.
    """

    source: TLESource
    success: bool
    elements: list[OrbitalElements] = field(default_factory=list)
    error_message: str = ""
    fetched_at: float = 0.0
    bytes_downloaded: int = 0


@dataclass
class FetchStats:
    total_fetches: int = 0
    successful_fetches: int = 0
    failed_fetches: int = 0
    total_elements_fetched: int = 0
    last_successful_fetch: float | None = None


@dataclass
class CelesTrakClient:
    """Client for the CelesTrak GP endpoint.

    Attributes:
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per fetch before giving up.
        retry_backoff_s: Base delay between attempts (doubles each retry).
        user_agent: Sent with every request.
    """

    timeout: float = 30.0
    max_retries: int = 3
    retry_backoff_s: float = 1.0
    user_agent: str = "OrbitOps/0.1 (conjunction screening)"
    base_url: str = GP_URL
    stats: FetchStats = field(default_factory=FetchStats)
    _session: requests.Session = field(default_factory=requests.Session, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")

    def _get(self, params: dict[str, str]) -> str:
        """GET the endpoint with retries.

        Raises:
            requests.RequestException: When every attempt fails.
        """
        last_error: requests.RequestException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._session.get(
                    self.base_url,
                    params=params,
                    headers={"User-Agent": self.user_agent},
                    timeout=self.timeout,
                )
                if response.status_code >= 500:
                    raise requests.HTTPError(f"CelesTrak returned HTTP {response.status_code}", response=response)
                response.raise_for_status()
                return response.text
            except requests.HTTPError as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status is not None and status < 500:
                    raise
                last_error = exc
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_error = exc
            logger.warning("CelesTrak request %s failed (attempt %d/%d): %s",
                           params, attempt, self.max_retries, last_error)
            if attempt < self.max_retries:
                time.sleep(self.retry_backoff_s * 2 ** (attempt - 1))
        raise last_error

    def fetch(self, source: TLESource | str) -> FetchResult:
        """Fetch and parse one source; failures are reported in the result."""
        if isinstance(source, str):
            source = CELESTRAK_SOURCES[source]
        self.stats.total_fetches += 1
        try:
            text = self._get(source.params)
        except requests.RequestException as exc:
            self.stats.failed_fetches += 1
            logger.warning("Fetching %s failed: %s", source.name, exc)
            return FetchResult(source, False, error_message=str(exc), fetched_at=time.time())

        if text.strip().lower().startswith(("no gp data", "<!doctype", "<html")):
            self.stats.failed_fetches += 1
            message = f"Unexpected response: {text.strip()[:60]!r}"
            logger.warning("Fetching %s failed: %s", source.name, message)
            return FetchResult(source, False, error_message=message, fetched_at=time.time(),
                               bytes_downloaded=len(text))

        elements = parse_tle(text)
        now = time.time()
        self.stats.successful_fetches += 1
        self.stats.total_elements_fetched += len(elements)
        self.stats.last_successful_fetch = now
        logger.info("Fetched %d element sets from %s", len(elements), source.name)
        return FetchResult(source, True, elements, fetched_at=now, bytes_downloaded=len(text))

    def fetch_all(self, sources: list[TLESource | str] | None = None) -> list[FetchResult]:
        """Fetch several sources sequentially (default: every known source)."""
        if sources is None:
            sources = list(CELESTRAK_SOURCES.values())
        return [self.fetch(source) for source in sources]

    def fetch_catnr(self, norad_id: int) -> OrbitalElements:
        """Latest element set of a single object.

        Raises:
            ValueError: If CelesTrak has no elements for the id.
            requests.RequestException: If the request fails.
        """
        text = self._get({"CATNR": str(norad_id), "FORMAT": "tle"})
        elements = parse_tle(text)
        if not elements:
            raise ValueError(f"No TLE found for NORAD ID {norad_id}")
        return elements[0]
