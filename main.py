"""Run the API server and the settlement sweep loop in one process."""
import asyncio
import logging
import signal

import uvicorn

from api import create_app
from config import get_settings
from database import create_repository, close as db_close
from engine import build_engine

logger = logging.getLogger(__name__)

# Global instances
sweep_loop = None
server = None
should_exit = False

def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True

class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app, host: str = "0.0.0.0", port: int = 8000, log_level: str = "info"):
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=log_level
        )
        self.server = uvicorn.Server(self.config)
        # Shutdown signals are handled by main()
        self.server.install_signal_handlers = lambda: None

    async def run(self):
        """Run the server in a way that can be stopped."""
        await self.server.serve()

    async def stop(self):
        """Stop the server."""
        self.server.should_exit = True

async def main():
    """Run the API server and the settlement sweep loop until signalled."""
    global sweep_loop, server, should_exit

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings['log_level'], logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    tasks = []
    try:
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        logger.info(f"Initializing {settings['storage_backend']} storage...")
        engine = build_engine(await create_repository(settings), settings)

        sweep_loop = engine.sweep_loop()
        server = UvicornServer(
            create_app(engine),
            host=settings['api_host'],
            port=settings['api_port'],
            log_level=settings['log_level'].lower()
        )

        tasks = [
            asyncio.create_task(server.run(), name="api"),
            asyncio.create_task(sweep_loop.run(), name="sweep")
        ]
        logger.info("All services started")

        # Wait for shutdown signal
        while not should_exit:
            await asyncio.sleep(1)

            # Check if any tasks failed
            for task in tasks:
                if task.done() and not task.cancelled():
                    exc = task.exception()
                    if exc:
                        logger.error(f"Task {task.get_name()} failed with error: {exc}")
                    else:
                        logger.info(f"Task {task.get_name()} exited")
                    should_exit = True
                    break

        logger.info("Starting cleanup...")

    except Exception as e:
        logger.error(f"Fatal error: {e}")
    finally:
        if sweep_loop:
            logger.info("Stopping sweep loop...")
            sweep_loop.stop()

        if server:
            logger.info("Stopping API server...")
            await server.stop()

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Closing database connections...")
        await db_close()

        logger.info("Cleanup complete.")

if __name__ == "__main__":
    asyncio.run(main())
