from aiohttp import web
from loguru import logger

from searchengine.indexing_service import IndexingService, OperationResult
from searchengine.search_service import DEFAULT_LIMIT, EMPTY_QUERY, SearchService
from searchengine.statistics_service import StatisticsService

INDEXING_SERVICE = web.AppKey("indexing_service", IndexingService)
SEARCH_SERVICE = web.AppKey("search_service", SearchService)
STATISTICS_SERVICE = web.AppKey("statistics_service", StatisticsService)


def _error(message: str) -> web.Response:
    return web.json_response({"result": False, "error": message}, status=400)


def _operation_response(outcome: OperationResult) -> web.Response:
    return web.json_response(outcome.to_dict(), status=200 if outcome.result else 400)


async def statistics(request: web.Request) -> web.Response:
    data = await request.app[STATISTICS_SERVICE].get_statistics()
    return web.json_response(data)


async def start_indexing(request: web.Request) -> web.Response:
    return _operation_response(request.app[INDEXING_SERVICE].launch_indexing())


async def stop_indexing(request: web.Request) -> web.Response:
    return _operation_response(await request.app[INDEXING_SERVICE].stop_indexing())


async def index_page(request: web.Request) -> web.Response:
    url = request.query.get("url")
    if not url and request.can_read_body:
        url = (await request.post()).get("url")
    if not url or not str(url).strip():
        return _error("URL is empty")

    try:
        outcome = await request.app[INDEXING_SERVICE].index_page(str(url).strip())
    except Exception as e:
        logger.error(f"Indexing page {url} failed: {e}")
        return _error(str(e) or e.__class__.__name__)
    return _operation_response(outcome)


async def search(request: web.Request) -> web.Response:
    query = (request.query.get("query") or "").strip()
    if not query:
        return _error(EMPTY_QUERY)

    try:
        offset = int(request.query.get("offset", 0))
        limit = int(request.query.get("limit", DEFAULT_LIMIT))
    except ValueError:
        return _error("offset and limit must be integers")

    response = await request.app[SEARCH_SERVICE].search(
        query,
        request.query.get("site") or None,
        offset,
        limit,
    )
    if not response.result:
        return _error(response.error or "Search failed")
    return web.json_response(response.to_dict())


def setup_routes(app: web.Application) -> None:
    app.router.add_get("/api/statistics", statistics)
    app.router.add_get("/api/startIndexing", start_indexing)
    app.router.add_get("/api/stopIndexing", stop_indexing)
    app.router.add_post("/api/indexPage", index_page)
    app.router.add_get("/api/search", search)
