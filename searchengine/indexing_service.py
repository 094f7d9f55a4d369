from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import httpx
from loguru import logger
from tortoise import timezone

from searchengine.fetcher import PageFetcher
from searchengine.frontier import CrawlTask, IndexingRun, SiteFrontier
from searchengine.lemmas.extractor import LemmaExtractor
from searchengine.monitoring.metrics import PAGES_INDEXED, SITES_INDEXING
from searchengine.parsing.html_extractor import extract_text, parse_html
from searchengine.storage.index_writer import IndexWriter
from searchengine.storage.models import Site, SiteStatus
from searchengine.utils.config_loader import Config, SiteConfig, find_site_config
from searchengine.utils.url_utils import to_page_path
from searchengine.worker import Worker


ALREADY_STARTED = "Indexing has already started"
NOT_RUNNING = "Indexing is not running"
STOPPED_BY_USER = "Indexing was stopped"
SITE_NOT_CONFIGURED = "Site not found in configuration"
PAGE_NOT_FOUND = "Page not found"


class IndexingState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


@dataclass
class OperationResult:
    result: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "OperationResult":
        return cls(result=True)

    @classmethod
    def failed(cls, error: str) -> "OperationResult":
        return cls(result=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if self.result:
            return {"result": True}
        return {"result": False, "error": self.error}


# -------------------------------
# Per-site coordinator
# -------------------------------
class SiteIndexer:
    """Crawls one site from its root URL and records the outcome on the Site row."""

    def __init__(
        self,
        config: Config,
        extractor: LemmaExtractor,
        writer: IndexWriter,
        client: httpx.AsyncClient,
    ):
        self.config = config
        self.extractor = extractor
        self.writer = writer
        self.client = client

    async def index(self, site_config: SiteConfig, run: IndexingRun) -> Optional[Site]:
        site: Optional[Site] = None
        SITES_INDEXING.inc()
        try:
            site = await self._prepare_site(site_config)
            logger.info(f"Started indexing site: {site.url} (run {run.run_id})")

            await self._crawl(site, run)

            if run.cancelled:
                site.status = SiteStatus.FAILED
                site.last_error = STOPPED_BY_USER
                logger.info(f"Indexing stopped by user for site: {site.url}")
            else:
                site.status = SiteStatus.INDEXED
                site.last_error = None
                logger.info(f"Successfully indexed site: {site.url}")
        except Exception as e:
            logger.error(f"Error indexing site: {site_config.url} - {e}")
            if site is None:
                site = await Site.get_or_none(url=site_config.url)
            if site is not None:
                site.status = SiteStatus.FAILED
                site.last_error = str(e) or e.__class__.__name__
        finally:
            SITES_INDEXING.dec()
            if site is not None and run.superseded:
                logger.info(f"Run {run.run_id} superseded; leaving status of {site.url} alone")
            elif site is not None:
                site.status_time = timezone.now()
                await site.save()
        return site

    async def _prepare_site(self, site_config: SiteConfig) -> Site:
        site = await Site.get_or_none(url=site_config.url)
        if site is None:
            site = Site(url=site_config.url, name=site_config.name)
        site.status = SiteStatus.INDEXING
        site.status_time = timezone.now()
        site.last_error = None
        await site.save()

        await self.writer.purge_site(site)
        return site

    async def _crawl(self, site: Site, run: IndexingRun) -> None:
        frontier = SiteFrontier(site, run)
        fetcher = PageFetcher(
            self.client,
            self.config,
            site_label=site.url,
            fetch_slots=run.fetch_slots,
        )
        workers = [
            Worker(frontier, fetcher, self.writer, self.extractor, i)
            for i in range(max(1, self.config.workers_per_site))
        ]
        worker_tasks = [asyncio.create_task(worker.run()) for worker in workers]

        frontier.submit(CrawlTask(url=site.url))
        join_task = asyncio.create_task(frontier.join())

        try:
            done, _ = await asyncio.wait(
                [join_task, *worker_tasks],
                return_when=asyncio.FIRST_COMPLETED,
            )
            # workers loop forever; one that returned has crashed
            for task in worker_tasks:
                if task in done and task.exception() is not None:
                    raise task.exception()
        finally:
            join_task.cancel()
            for task in worker_tasks:
                task.cancel()
            await asyncio.gather(join_task, *worker_tasks, return_exceptions=True)

        logger.info(f"Crawled site: {site.url} ({run.claimed_count} URLs claimed in run)")


# -------------------------------
# Orchestrator
# -------------------------------
class IndexingService:
    def __init__(
        self,
        config: Config,
        extractor: LemmaExtractor,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.extractor = extractor
        self.writer = IndexWriter()
        self._transport = transport

        self._state = IndexingState.IDLE
        self._state_lock = threading.Lock()
        self._run: Optional[IndexingRun] = None
        self._runs: Set[asyncio.Task] = set()

    # --------------------------
    #  State machine
    # --------------------------
    @property
    def is_indexing(self) -> bool:
        return self._state is IndexingState.RUNNING

    def _compare_and_set(self, expected: IndexingState, new: IndexingState) -> bool:
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def _begin_run(self) -> Optional[IndexingRun]:
        if not self._compare_and_set(IndexingState.IDLE, IndexingState.RUNNING):
            return None
        run = IndexingRun(self.config.max_concurrent_fetches)
        if self._run is not None:
            self._run.supersede()
        self._run = run
        return run

    def _spawn(self, run: IndexingRun) -> asyncio.Task:
        earlier = list(self._runs)
        task = asyncio.create_task(self._run_sites(run, earlier))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    def _finish_run(self, run: IndexingRun) -> None:
        # a stop followed by a new start owns the state now
        if self._run is run:
            self._compare_and_set(IndexingState.RUNNING, IndexingState.IDLE)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.request_timeout),
            follow_redirects=True,
            transport=self._transport,
        )

    # --------------------------
    #  Full indexing
    # --------------------------
    async def start_indexing(self) -> OperationResult:
        """Index every configured site and return once all of them finished."""
        run = self._begin_run()
        if run is None:
            logger.warning(ALREADY_STARTED)
            return OperationResult.failed(ALREADY_STARTED)

        await self._spawn(run)
        return OperationResult.ok()

    def launch_indexing(self) -> OperationResult:
        """Start indexing in a background task and return immediately."""
        run = self._begin_run()
        if run is None:
            logger.warning(ALREADY_STARTED)
            return OperationResult.failed(ALREADY_STARTED)

        self._spawn(run)
        return OperationResult.ok()

    async def _run_sites(self, run: IndexingRun, earlier: List[asyncio.Task]) -> List[Optional[Site]]:
        try:
            # a stopped run may still be finishing its in-flight pages
            if earlier:
                logger.info(f"Indexing run {run.run_id} waiting for {len(earlier)} earlier runs to finish")
                await asyncio.gather(*earlier, return_exceptions=True)
            if run.cancelled:
                logger.info(f"Indexing run {run.run_id} stopped before it began")
                return []

            logger.info(f"Indexing run {run.run_id} started for {len(self.config.sites)} sites")
            async with self._client() as client:
                indexer = SiteIndexer(self.config, self.extractor, self.writer, client)
                return await asyncio.gather(
                    *(indexer.index(site_config, run) for site_config in self.config.sites)
                )
        finally:
            self._finish_run(run)
            logger.info(f"Indexing run {run.run_id} finished")

    async def stop_indexing(self) -> OperationResult:
        if not self._compare_and_set(IndexingState.RUNNING, IndexingState.IDLE):
            logger.warning(NOT_RUNNING)
            return OperationResult.failed(NOT_RUNNING)

        run = self._run
        if run is not None:
            run.cancel()

        for site_config in self.config.sites:
            # a run started after this stop owns the sites from here on
            if run is not None and run.superseded:
                break
            site = await Site.get_or_none(url=site_config.url)
            if site is not None and site.status == SiteStatus.INDEXING:
                site.status = SiteStatus.FAILED
                site.last_error = STOPPED_BY_USER
                site.status_time = timezone.now()
                await site.save()
                logger.info(f"Marked {site.url} as stopped")

        return OperationResult.ok()

    async def wait_background(self) -> None:
        """Wait until every launched run, including stopped ones, has finished."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    # --------------------------
    #  Single page
    # --------------------------
    async def index_page(self, url: str) -> OperationResult:
        site_config = find_site_config(self.config, url)
        if site_config is None:
            logger.warning(f"{SITE_NOT_CONFIGURED}: {url}")
            return OperationResult.failed(SITE_NOT_CONFIGURED)

        site = await Site.get_or_none(url=site_config.url)
        if site is None:
            site = await Site.create(
                url=site_config.url,
                name=site_config.name,
                status=SiteStatus.INDEXED,
                status_time=timezone.now(),
            )

        async with self._client() as client:
            fetcher = PageFetcher(client, self.config, site_label=site.url)
            fetch_result = await fetcher.fetch_with_retries(url)

        if fetch_result is None or fetch_result.status_code >= 400:
            return OperationResult.failed(PAGE_NOT_FOUND)

        text = extract_text(parse_html(fetch_result.content))
        lemmas = await asyncio.to_thread(self.extractor.extract, text)
        await self.writer.save_indexed_page(
            site,
            to_page_path(url),
            fetch_result.status_code,
            fetch_result.content,
            lemmas,
        )
        PAGES_INDEXED.labels(site=site.url).inc()
        logger.info(f"Indexed single page {url} ({len(lemmas)} lemmas)")
        return OperationResult.ok()
