from __future__ import annotations

import asyncio
from dataclasses import dataclass
from uuid import uuid4

from searchengine.storage.models import Site
from searchengine.utils.url_utils import normalize_url


@dataclass
class CrawlTask:
    url: str


class IndexingRun:
    """State shared by every crawl task of one indexing run.

    A new run is created for each start of indexing, so URLs claimed by an
    earlier run can be visited again. Queueing and claiming happen on the
    event loop thread without awaiting, which makes check-and-add atomic.
    """

    def __init__(self, max_concurrent_fetches: int):
        self.run_id = uuid4().hex[:8]
        self.fetch_slots = asyncio.Semaphore(max(1, max_concurrent_fetches))
        self._queued: set[str] = set()
        self._claimed: set[str] = set()
        self._cancelled = False
        self._superseded = False

    def mark_queued(self, url: str) -> bool:
        """Record ``url`` as submitted; False when it was queued or claimed before."""
        key = normalize_url(url)
        if key in self._queued or key in self._claimed:
            return False
        self._queued.add(key)
        return True

    def claim(self, url: str) -> bool:
        key = normalize_url(url)
        if key in self._claimed:
            return False
        self._claimed.add(key)
        return True

    def is_known(self, url: str) -> bool:
        key = normalize_url(url)
        return key in self._queued or key in self._claimed

    def cancel(self) -> None:
        self._cancelled = True

    def supersede(self) -> None:
        """A newer run owns the sites now; this one must not write to them."""
        self._superseded = True
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def superseded(self) -> bool:
        return self._superseded

    @property
    def claimed_count(self) -> int:
        return len(self._claimed)

    @property
    def queued_count(self) -> int:
        return len(self._queued)


class SiteFrontier:
    """Work queue of one site's crawl; drained when the task tree is done."""

    def __init__(self, site: Site, run: IndexingRun):
        self.site = site
        self.run = run
        self.queue: asyncio.Queue[CrawlTask] = asyncio.Queue()

    def submit(self, task: CrawlTask) -> bool:
        # each URL enters the queue at most once per run
        if not self.run.mark_queued(task.url):
            return False
        self.queue.put_nowait(task)
        return True

    async def join(self) -> None:
        await self.queue.join()
