"""
Trading simulator service process.

Connects the database, wires services and runs the portfolio snapshot
scheduler until SIGINT/SIGTERM.
"""

import asyncio
import signal
import sys

from tradesim import __version__
from tradesim.config import Settings, get_settings
from tradesim.db.database import Database
from tradesim.services import create_services
from tradesim.utils.logging import setup_logging, get_logger

logger = get_logger(__name__)


async def run(settings: Settings) -> None:
    """Run the simulator with graceful shutdown support."""
    logger.info("Initializing database...")
    database = Database(settings.database_url)
    await database.connect()
    await database.create_tables()
    logger.info("Database ready")

    services = create_services(settings, database)
    await services.initialize()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())

    try:
        await services.scheduler.start()
        logger.info("Simulator started! Press Ctrl+C to stop.", health=await services.is_healthy())
        await stop_event.wait()
    finally:
        logger.info("Shutting down services...")
        await services.close()
        await database.close()
        logger.info("Shutdown complete")


def main() -> None:
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    logger.info(
        "Trading simulator",
        version=__version__,
        log_level=settings.log_level,
    )

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Simulator stopped by user")
    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
