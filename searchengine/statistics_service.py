from typing import Any, Callable, Dict

from searchengine.storage.models import Lemma, Page, Site, SiteStatus


class StatisticsService:
    """Read-only rollup of sites, pages and lemmas for the dashboard."""

    def __init__(self, is_indexing: Callable[[], bool] = lambda: False):
        self.is_indexing = is_indexing

    async def get_statistics(self) -> Dict[str, Any]:
        sites = await Site.all().order_by("id")

        total_pages = 0
        total_lemmas = 0
        indexing = self.is_indexing()
        detailed = []

        for site in sites:
            pages = await Page.filter(site_id=site.id).count()
            lemmas = await Lemma.filter(site_id=site.id).count()
            total_pages += pages
            total_lemmas += lemmas
            if site.status == SiteStatus.INDEXING:
                indexing = True

            item = {
                "url": site.url,
                "name": site.name,
                "status": site.status.value,
                "statusTime": int(site.status_time.timestamp()),
                "pages": pages,
                "lemmas": lemmas,
            }
            if site.status == SiteStatus.FAILED:
                item["error"] = site.last_error
            detailed.append(item)

        return {
            "result": True,
            "statistics": {
                "total": {
                    "sites": len(sites),
                    "pages": total_pages,
                    "lemmas": total_lemmas,
                    "indexing": indexing,
                },
                "detailed": detailed,
            },
        }
