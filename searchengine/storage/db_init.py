from loguru import logger
from tortoise import Tortoise

from searchengine.storage.models import MODEL_MODULES
from searchengine.utils.db_utils import to_tortoise_url


async def init_db(db_url: str) -> None:
    """
    Connect Tortoise to the configured database and create missing tables.
    """
    db_url = to_tortoise_url(db_url)

    logger.info("Initializing database and ORM models...")

    await Tortoise.init(
        db_url=db_url,
        modules={"models": MODEL_MODULES},
    )

    await Tortoise.generate_schemas(safe=True)
    logger.info("Database tables created or verified.")


async def close_db() -> None:
    await Tortoise.close_connections()
