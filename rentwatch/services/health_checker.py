# rentwatch/services/health_checker.py

"""Lightweight reachability probe for the listing sources."""

import asyncio
import logging
import time
from dataclasses import dataclass

import cloudscraper  # type: ignore[import-untyped]
from curl_cffi import requests as curl_requests

from rentwatch.config.settings import Settings

logger = logging.getLogger("rentwatch.health")


@dataclass
class HealthResult:
    """Result of a single source health check."""

    source_id: str
    status: str  # "ok", "slow", "down"
    latency_ms: float
    message: str


def _classify(
    source_id: str, status_code: int, elapsed_ms: float,
) -> HealthResult:
    if status_code >= 400:
        return HealthResult(
            source_id, "down", elapsed_ms, f"HTTP {status_code}",
        )
    if elapsed_ms > Settings.HEALTH_SLOW_MS:
        return HealthResult(source_id, "slow", elapsed_ms, "High latency")
    return HealthResult(source_id, "ok", elapsed_ms, "")


def probe_source(source: dict[str, str]) -> HealthResult:
    """GET the source URL, impersonating a browser.

    Falls back to cloudscraper when curl_cffi cannot complete the
    request at all.
    """
    source_id = source["id"]
    url = source["url"]
    headers = {"User-Agent": Settings.USER_AGENT, **Settings.EXTRA_HEADERS}

    start = time.monotonic()
    try:
        resp = curl_requests.get(
            url,
            headers=headers,
            impersonate=Settings.IMPERSONATE_BROWSER,
            timeout=Settings.HEALTH_TIMEOUT,
        )
        return _classify(
            source_id, resp.status_code, (time.monotonic() - start) * 1000,
        )
    except Exception as exc:
        logger.debug(
            "[%s] curl_cffi probe failed, trying cloudscraper: %s",
            source_id,
            exc,
        )

    start = time.monotonic()
    try:
        scraper = cloudscraper.create_scraper()
        resp = scraper.get(
            url, headers=headers, timeout=Settings.HEALTH_TIMEOUT,
        )
        return _classify(
            source_id, resp.status_code, (time.monotonic() - start) * 1000,
        )
    except Exception as exc:
        return HealthResult(
            source_id=source_id,
            status="down",
            latency_ms=(time.monotonic() - start) * 1000,
            message=str(exc)[:80],
        )


class HealthChecker:
    """Probes the listing sources and the leasing page in parallel."""

    def __init__(self, include_availability: bool = True) -> None:
        self.sources = list(Settings.enabled_sources())
        if include_availability and Settings.AVAILABILITY_URL:
            self.sources.append(
                {"id": "availability", "url": Settings.AVAILABILITY_URL}
            )

    async def check_all(self) -> list[HealthResult]:
        """Return one :class:`HealthResult` per source, in registry order."""
        results = list(
            await asyncio.gather(
                *(asyncio.to_thread(probe_source, s) for s in self.sources)
            )
        )
        down = [r.source_id for r in results if r.status == "down"]
        for r in results:
            log = logger.warning if r.status == "down" else logger.info
            log(
                "[%s] %s in %.0fms %s",
                r.source_id,
                r.status,
                r.latency_ms,
                r.message,
            )
        if down:
            logger.warning("Unreachable sources: %s", ", ".join(down))
        return results
