import asyncio
from typing import List

from loguru import logger

from searchengine.fetcher import PageFetcher
from searchengine.frontier import CrawlTask, SiteFrontier
from searchengine.lemmas.extractor import LemmaExtractor
from searchengine.monitoring.metrics import PAGES_INDEXED, SKIPPED_LINKS, TASK_ERRORS
from searchengine.parsing.html_extractor import extract_links, extract_text, parse_html
from searchengine.storage.index_writer import IndexWriter
from searchengine.storage.models import Page
from searchengine.utils.filters import is_crawlable_link
from searchengine.utils.url_utils import to_page_path


class Worker:
    def __init__(
        self,
        frontier: SiteFrontier,
        fetcher: PageFetcher,
        writer: IndexWriter,
        extractor: LemmaExtractor,
        worker_id: int,
    ):
        self.frontier = frontier
        self.fetcher = fetcher
        self.writer = writer
        self.extractor = extractor
        self.worker_id = worker_id
        self.site = frontier.site
        self.run_state = frontier.run
        self.name = f"{self.site.url}#{worker_id}"

    # --------------------------
    #  Main processing
    # --------------------------
    async def process_url(self, task: CrawlTask) -> None:
        url = task.url

        # --------------------------
        # 1) Claim
        # --------------------------
        if not self.run_state.claim(url):
            return
        if self.run_state.cancelled:
            return

        try:
            # --------------------------
            # 2) Fetch stage
            # --------------------------
            await self.fetcher.politeness_delay()
            fetch_result = await self.fetcher.fetch_with_retries(url)
            if fetch_result is None:
                return

            status_code = fetch_result.status_code
            if status_code >= 400:
                logger.info(f"[{self.name}] Skipping {url} due to HTTP status {status_code}")
                return

            # --------------------------
            # 3) Parsing stage
            # --------------------------
            html = fetch_result.content
            soup = parse_html(html)
            links = extract_links(url, soup)
            text = extract_text(soup)
            lemmas = await asyncio.to_thread(self.extractor.extract, text)

            # --------------------------
            # 4) Storage stage
            # --------------------------
            if self.run_state.cancelled:
                logger.info(f"[{self.name}] Indexing stopped; dropping {url}")
                return

            await self.writer.save_indexed_page(
                self.site,
                to_page_path(url),
                status_code,
                html,
                lemmas,
            )
            PAGES_INDEXED.labels(site=self.site.url).inc()
            logger.info(
                f"[{self.name}] Indexed: {url} ({len(html)} bytes, status={status_code}, "
                f"lemmas={len(lemmas)}, links={len(links)})"
            )

            # --------------------------
            # 5) Link enqueue stage
            # --------------------------
            await self._submit_children(task, links)

        except Exception as e:
            TASK_ERRORS.labels(site=self.site.url).inc()
            logger.error(f"[{self.name}] Error processing {url}: {e}")

    async def _submit_children(self, task: CrawlTask, links: List[str]) -> None:
        queued = 0
        for link in links:
            if self.run_state.cancelled:
                logger.info(f"[{self.name}] Indexing stopped; not following links of {task.url}")
                return

            if not is_crawlable_link(self.site.url, link):
                SKIPPED_LINKS.labels(reason="out_of_scope").inc()
                continue

            if self.run_state.is_known(link):
                continue

            if await Page.filter(site_id=self.site.id, path=to_page_path(link)).exists():
                SKIPPED_LINKS.labels(reason="already_indexed").inc()
                continue

            if self.frontier.submit(CrawlTask(url=link)):
                queued += 1

        if queued:
            logger.debug(f"[{self.name}] Queued {queued} links from {task.url}")

    # --------------------------
    #  Worker loop
    # --------------------------
    async def run(self) -> None:
        logger.debug(f"{self.name} started.")
        queue = self.frontier.queue
        while True:
            task = await queue.get()
            try:
                await self.process_url(task)
            finally:
                queue.task_done()
