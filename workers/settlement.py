"""Worker that settles ended auctions without serving the API."""

import asyncio
import logging

from config import get_settings
from database import create_repository, close as db_close
from engine import build_engine

logger = logging.getLogger(__name__)

async def run_worker():
    """Main worker loop."""
    settings = get_settings()
    if settings['storage_backend'] == 'memory':
        logger.warning("A standalone worker on memory storage only sees its own data")

    engine = build_engine(await create_repository(settings), settings)
    sweep_loop = engine.sweep_loop()

    logger.info("Settlement worker starting up")
    try:
        await sweep_loop.run()
    finally:
        await db_close()

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
