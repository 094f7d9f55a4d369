from aiohttp import web
from loguru import logger

from searchengine.api.routes import (
    INDEXING_SERVICE,
    SEARCH_SERVICE,
    STATISTICS_SERVICE,
    setup_routes,
)
from searchengine.indexing_service import IndexingService
from searchengine.monitoring.metrics import metrics_handler
from searchengine.search_service import SearchService
from searchengine.statistics_service import StatisticsService


async def _stop_indexing_on_cleanup(app: web.Application) -> None:
    service = app[INDEXING_SERVICE]
    if service.is_indexing:
        logger.info("Shutting down: stopping indexing")
        await service.stop_indexing()
    await service.wait_background()


def create_app(
    indexing_service: IndexingService,
    search_service: SearchService,
    statistics_service: StatisticsService,
) -> web.Application:
    app = web.Application()
    app[INDEXING_SERVICE] = indexing_service
    app[SEARCH_SERVICE] = search_service
    app[STATISTICS_SERVICE] = statistics_service

    setup_routes(app)
    app.router.add_get("/metrics", metrics_handler)
    app.on_cleanup.append(_stop_indexing_on_cleanup)
    return app
