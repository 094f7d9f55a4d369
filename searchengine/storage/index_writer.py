import asyncio
from typing import Dict

from loguru import logger
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from searchengine.storage.models import Index, Lemma, Page, Site


class IndexWriter:
    """Writes pages together with their lemma index.

    Writes for one site are serialized by a per-site lock and each page is
    stored in a single transaction, so a page's lemmas become visible to
    searches only together with the page itself.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def _site_lock(self, site_id: int) -> asyncio.Lock:
        lock = self._locks.get(site_id)
        if lock is None:
            lock = self._locks[site_id] = asyncio.Lock()
        return lock

    async def save_indexed_page(
        self,
        site: Site,
        path: str,
        code: int,
        content: str,
        lemmas: Dict[str, int],
    ) -> Page:
        """Store a page and its lemma counts, replacing a page at the same path."""
        async with self._site_lock(site.id):
            async with in_transaction() as conn:
                existing = await Page.filter(site_id=site.id, path=path).using_db(conn).first()
                if existing is not None:
                    logger.debug(f"Replacing page {path} of {site.url}")
                    await self._delete_page(existing, conn)

                page = await Page.create(
                    site=site,
                    path=path,
                    code=code,
                    content=content,
                    using_db=conn,
                )
                await self._index_lemmas(page, site, lemmas, conn)
        return page

    async def _index_lemmas(self, page: Page, site: Site, lemmas: Dict[str, int], conn) -> None:
        entries = []
        for text, count in sorted(lemmas.items()):
            lemma, created = await Lemma.get_or_create(
                site=site,
                lemma=text,
                defaults={"frequency": 1},
                using_db=conn,
            )
            if not created:
                await Lemma.filter(id=lemma.id).using_db(conn).update(frequency=F("frequency") + 1)
            entries.append(Index(page=page, lemma=lemma, rank=float(count)))

        if entries:
            await Index.bulk_create(entries, using_db=conn)

    async def _delete_page(self, page: Page, conn) -> None:
        # only this page's lemmas lose a document
        lemma_ids = await Index.filter(page_id=page.id).using_db(conn).values_list("lemma_id", flat=True)
        await Index.filter(page_id=page.id).using_db(conn).delete()
        if lemma_ids:
            await Lemma.filter(id__in=lemma_ids).using_db(conn).update(frequency=F("frequency") - 1)
            await Lemma.filter(id__in=lemma_ids, frequency__lte=0).using_db(conn).delete()
        await Page.filter(id=page.id).using_db(conn).delete()

    async def purge_site(self, site: Site) -> None:
        """Drop every page, lemma and index row of ``site``; the site row stays."""
        async with self._site_lock(site.id):
            async with in_transaction() as conn:
                page_ids = await Page.filter(site_id=site.id).using_db(conn).values_list("id", flat=True)
                if page_ids:
                    await Index.filter(page_id__in=page_ids).using_db(conn).delete()
                await Page.filter(site_id=site.id).using_db(conn).delete()
                await Lemma.filter(site_id=site.id).using_db(conn).delete()
        logger.info(f"Cleared previous index of {site.url}")
