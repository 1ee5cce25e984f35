import asyncio
import logging

from gatekeeper.app.db.base import Base, engine
# Import models so the engine sees their metadata
from gatekeeper.app.models import user  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_models():
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created: %s", ", ".join(Base.metadata.tables))
    except Exception as e:
        logger.error("Could not create tables: %s", e)
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_models())
