from __future__ import annotations

import asyncio
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from loguru import logger

from searchengine.lemmas.extractor import LemmaExtractor
from searchengine.monitoring.metrics import SEARCH_LATENCY, SEARCH_REQUESTS
from searchengine.storage.models import Index, Lemma, Page, Site

EMPTY_QUERY = "Query is empty"
UNTITLED = "Без заголовка"

DEFAULT_LIMIT = 20


@dataclass
class SearchResult:
    site: str
    siteName: str
    uri: str
    title: str
    snippet: str
    relevance: float


@dataclass
class SearchResponse:
    result: bool
    count: int = 0
    data: List[SearchResult] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def empty(cls) -> "SearchResponse":
        return cls(result=True)

    def to_dict(self) -> Dict[str, Any]:
        if not self.result:
            return {"result": False, "error": self.error}
        return {
            "result": True,
            "count": self.count,
            "data": [asdict(item) for item in self.data],
        }


def extract_title(content: str) -> str:
    """Text between the first ``<title>`` and ``</title>`` markers."""
    start = content.find("<title>")
    if start == -1:
        return UNTITLED
    start += len("<title>")
    end = content.find("</title>", start)
    if end == -1:
        return UNTITLED
    return content[start:end].strip() or UNTITLED


def highlight(text: str, lemmas: Sequence[str]) -> str:
    """Wrap case-insensitive occurrences of each lemma in ``<b>`` tags."""
    words = sorted({lemma for lemma in lemmas if lemma}, key=len, reverse=True)
    if not words:
        return text
    pattern = re.compile("|".join(re.escape(word) for word in words), re.IGNORECASE)
    return pattern.sub(lambda match: f"<b>{match.group(0)}</b>", text)


def build_snippet(content: str, lemmas: Sequence[str], length: int = 300) -> str:
    """Window of ``length`` characters centered on the first occurrences of
    the lemmas, or the beginning of the content when none occurs verbatim."""
    lower_content = content.lower()
    start: Optional[int] = None
    end = 0

    for lemma in lemmas:
        position = lower_content.find(lemma.lower())
        if position == -1:
            continue
        start = position if start is None else min(start, position)
        end = max(end, position + len(lemma))

    if start is None:
        return highlight(content[:length], lemmas)

    center = (start + end) // 2
    window_start = max(0, center - length // 2)
    window_end = min(len(content), window_start + length)
    window_start = max(0, window_end - length)

    return highlight(content[window_start:window_end], lemmas)


class SearchService:
    def __init__(
        self,
        extractor: LemmaExtractor,
        frequent_lemma_threshold: float = 0.1,
        snippet_length: int = 300,
    ):
        self.extractor = extractor
        self.frequent_lemma_threshold = frequent_lemma_threshold
        self.snippet_length = snippet_length

    async def search(
        self,
        query: str,
        site_url: Optional[str] = None,
        offset: int = 0,
        limit: int = DEFAULT_LIMIT,
    ) -> SearchResponse:
        start = time.perf_counter()
        try:
            response = await self._search(query, site_url, max(0, offset), max(0, limit))
        finally:
            SEARCH_LATENCY.observe(time.perf_counter() - start)

        outcome = "rejected" if not response.result else ("hit" if response.count else "miss")
        SEARCH_REQUESTS.labels(outcome=outcome).inc()
        return response

    async def _search(
        self,
        query: str,
        site_url: Optional[str],
        offset: int,
        limit: int,
    ) -> SearchResponse:
        lemmas = await asyncio.to_thread(self.extractor.query_lemmas, query or "")
        if not lemmas:
            return SearchResponse(result=False, error=EMPTY_QUERY)

        site: Optional[Site] = None
        if site_url:
            site = await Site.get_or_none(url=site_url.strip().rstrip("/"))
            if site is None:
                logger.info(f"Search against unknown site {site_url}")
                return SearchResponse.empty()

        ordered = await self._discriminative_lemmas(lemmas, site)
        if not ordered:
            return SearchResponse.empty()

        page_ids = await self._find_pages(ordered, site)
        if not page_ids:
            return SearchResponse.empty()

        relevance = await self._absolute_relevance(page_ids, ordered, site)
        max_relevance = max(relevance.values(), default=0.0) or 1.0

        ranked = sorted(page_ids, key=lambda page_id: (-relevance.get(page_id, 0.0), page_id))
        selected = ranked[offset : offset + limit]

        pages = await Page.filter(id__in=selected).prefetch_related("site")
        pages_by_id = {page.id: page for page in pages}

        data = []
        for page_id in selected:
            page = pages_by_id.get(page_id)
            if page is None:
                continue
            data.append(
                SearchResult(
                    site=page.site.url,
                    siteName=page.site.name,
                    uri=page.path,
                    title=extract_title(page.content),
                    snippet=build_snippet(page.content, ordered, self.snippet_length),
                    relevance=relevance.get(page_id, 0.0) / max_relevance,
                )
            )

        logger.debug(f"Query {query!r}: lemmas={ordered}, {len(ranked)} pages")
        return SearchResponse(result=True, count=len(ranked), data=data)

    # --------------------------
    #  Lemma filtering
    # --------------------------
    async def _discriminative_lemmas(self, lemmas: Set[str], site: Optional[Site]) -> List[str]:
        """Known lemmas that are rare enough to narrow results, rarest first."""
        lemma_query = Lemma.filter(lemma__in=list(lemmas))
        page_query = Page.all()
        if site is not None:
            lemma_query = lemma_query.filter(site_id=site.id)
            page_query = page_query.filter(site_id=site.id)

        frequencies: Dict[str, int] = {lemma: 0 for lemma in lemmas}
        for lemma, frequency in await lemma_query.values_list("lemma", "frequency"):
            frequencies[lemma] += frequency

        # every lemma must match, so an unindexed one rules out all pages
        if any(frequency <= 0 for frequency in frequencies.values()):
            return []

        # a lemma found on a single page always discriminates
        total_pages = await page_query.count()
        limit = max(self.frequent_lemma_threshold * total_pages, 1)

        kept = [lemma for lemma, frequency in frequencies.items() if frequency <= limit]
        return sorted(kept, key=lambda lemma: (frequencies[lemma], lemma))

    # --------------------------
    #  Candidate narrowing
    # --------------------------
    async def _pages_with_lemma(self, lemma: str, site: Optional[Site]) -> Set[int]:
        query = Index.filter(lemma__lemma=lemma)
        if site is not None:
            query = query.filter(lemma__site_id=site.id)
        return set(await query.values_list("page_id", flat=True))

    async def _find_pages(self, lemmas: List[str], site: Optional[Site]) -> List[int]:
        candidates = await self._pages_with_lemma(lemmas[0], site)
        for lemma in lemmas[1:]:
            if not candidates:
                break
            candidates &= await self._pages_with_lemma(lemma, site)
        return sorted(candidates)

    async def _absolute_relevance(
        self,
        page_ids: List[int],
        lemmas: List[str],
        site: Optional[Site],
    ) -> Dict[int, float]:
        query = Index.filter(page_id__in=page_ids, lemma__lemma__in=lemmas)
        if site is not None:
            query = query.filter(lemma__site_id=site.id)

        relevance: Dict[int, float] = {page_id: 0.0 for page_id in page_ids}
        for page_id, rank in await query.values_list("page_id", "rank"):
            relevance[page_id] += rank
        return relevance
