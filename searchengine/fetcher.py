import asyncio
import contextlib
import random
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger

from searchengine.monitoring.metrics import FETCH_FAILURES, FETCH_LATENCY, FETCH_REQUESTS
from searchengine.utils.config_loader import Config

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


@dataclass
class FetchResult:
    url: str
    status_code: int
    content: str
    content_type: str
    skipped: bool = False
    skip_reason: Optional[str] = None


class PageFetcher:
    """Fetches pages politely: random pauses, bounded attempts, shared slots."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Config,
        site_label: str = "-",
        fetch_slots: Optional[asyncio.Semaphore] = None,
    ):
        self.client = client
        self.site_label = site_label
        self.fetch_slots = fetch_slots
        self.user_agent = config.user_agent
        self.referrer = config.referrer
        self.max_attempts = max(1, config.max_fetch_attempts)
        self.delay_min = config.crawl_delay_min
        self.delay_max = max(config.crawl_delay_min, config.crawl_delay_max)

    async def politeness_delay(self) -> None:
        delay = random.uniform(self.delay_min, self.delay_max)
        if delay > 0:
            await asyncio.sleep(delay)

    # --------------------------
    #  Single HTTP request
    # --------------------------
    async def _fetch(self, url: str) -> FetchResult:
        FETCH_REQUESTS.labels(site=self.site_label).inc()

        start = time.perf_counter()
        try:
            async with self.fetch_slots or contextlib.nullcontext():
                resp = await self.client.get(
                    url,
                    headers={
                        "User-Agent": self.user_agent,
                        "Referer": self.referrer,
                        "Accept": (
                            "text/html,application/xhtml+xml,application/xml;q=0.9,"
                            "*/*;q=0.8"
                        ),
                        "Accept-Language": "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7",
                    },
                )

            content_type = (resp.headers.get("Content-Type") or "").lower()

            if resp.status_code >= 400:
                return FetchResult(
                    url=url,
                    status_code=resp.status_code,
                    content="",
                    content_type=content_type,
                    skipped=True,
                    skip_reason="http_status",
                )

            if not any(kind in content_type for kind in HTML_CONTENT_TYPES):
                return FetchResult(
                    url=url,
                    status_code=resp.status_code,
                    content="",
                    content_type=content_type,
                    skipped=True,
                    skip_reason="non_html_content",
                )

            return FetchResult(
                url=url,
                status_code=resp.status_code,
                content=resp.text or "",
                content_type=content_type,
            )
        finally:
            FETCH_LATENCY.labels(site=self.site_label).observe(time.perf_counter() - start)

    # --------------------------
    #  Retry policy
    # --------------------------
    async def fetch_with_retries(self, url: str) -> Optional[FetchResult]:
        """Fetch ``url`` or return None when the page cannot be obtained.

        Timeouts are retried after another politeness delay and other
        transport errors are retried straight away, both up to
        ``max_attempts``. HTTP error statuses and non-HTML content are final.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._fetch(url)
            except httpx.TimeoutException:
                FETCH_FAILURES.labels(site=self.site_label, reason="timeout").inc()
                logger.warning(
                    f"[{self.site_label}] Read timeout for {url}. Retrying {attempt}/{self.max_attempts}"
                )
                if attempt < self.max_attempts:
                    await self.politeness_delay()
                continue
            except httpx.TransportError as e:
                FETCH_FAILURES.labels(site=self.site_label, reason="transport").inc()
                logger.error(
                    f"[{self.site_label}] Error fetching {url} ({attempt}/{self.max_attempts}): {e}"
                )
                continue

            if result.skipped:
                FETCH_FAILURES.labels(site=self.site_label, reason=result.skip_reason).inc()
                logger.warning(
                    f"[{self.site_label}] Skipping {url}: {result.skip_reason} "
                    f"(status={result.status_code}, content-type={result.content_type or 'none'})"
                )
                return None

            return result

        logger.warning(f"[{self.site_label}] Giving up on {url} after {self.max_attempts} attempts")
        return None
