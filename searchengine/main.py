import asyncio
import signal
import sys

from aiohttp import web
from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from searchengine.api.app import create_app
from searchengine.indexing_service import IndexingService
from searchengine.lemmas.extractor import LemmaExtractor
from searchengine.lemmas.morphology import MorphologyUnavailableError, RussianMorphology
from searchengine.search_service import SearchService
from searchengine.statistics_service import StatisticsService
from searchengine.storage.db_init import close_db, init_db
from searchengine.utils.config_loader import load_config
from searchengine.utils.env_loader import load_environment
from searchengine.utils.logger import setup_logger


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> int:
    load_environment()
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting search engine...")

    # ---- Morphology ----
    try:
        extractor = LemmaExtractor(RussianMorphology())
    except MorphologyUnavailableError as e:
        logger.critical(f"Cannot start without morphology: {e}")
        return 1

    # ---- Database ----
    await init_db(config.database_url)

    # ---- Services ----
    indexing_service = IndexingService(config, extractor)
    search_service = SearchService(
        extractor,
        frequent_lemma_threshold=config.frequent_lemma_threshold,
        snippet_length=config.snippet_length,
    )
    statistics_service = StatisticsService(lambda: indexing_service.is_indexing)

    # ---- HTTP API ----
    app = create_app(indexing_service, search_service, statistics_service)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.api_host, config.api_port)
    await site.start()

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(
        f"Search engine listening on http://{config.api_host}:{config.api_port} "
        f"({len(config.sites)} sites configured)"
    )

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
        await close_db()

    return 0


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
