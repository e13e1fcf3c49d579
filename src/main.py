"""Scheduler entry point."""

import asyncio
import logging
import signal

from src.app import SchedulerApp, load_runtime
from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def serve() -> None:
    """Run the scheduler until SIGINT or SIGTERM."""
    app = SchedulerApp(runtime=load_runtime())

    shutdown = asyncio.Event()

    def _on_signal() -> None:
        logger.info("Received shutdown signal")
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal)

    try:
        await app.start()
        await shutdown.wait()
    finally:
        await app.stop()


def main() -> None:
    logger.info(
        "Starting scheduler (db=%s, interval=%ds)",
        settings.database_path,
        settings.scheduler_check_interval_seconds,
    )
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
