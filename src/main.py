"""callme service entry point."""

import asyncio
import logging
import signal

import httpx

from src.api.server import ApiServer
from src.config import settings
from src.scheduler.catchup import CatchupScanner
from src.scheduler.dispatch import Dispatcher
from src.scheduler.engine import SchedulerEngine
from src.scheduler.executor import CallbackExecutor
from src.scheduler.service import SchedulingService
from src.scheduler.store import TaskStore

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.effective_log_level()),
)
logger = logging.getLogger(__name__)


async def serve() -> None:
    """Wire the components, run until SIGINT/SIGTERM, then shut down in reverse order."""
    store = TaskStore.get()
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with httpx.AsyncClient(timeout=settings.http_timeout()) as client:
        executor = CallbackExecutor(store=store, client=client)
        dispatcher = Dispatcher(
            executor,
            workers=settings.dispatch_workers,
            queue_size=settings.dispatch_queue_size,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )
        catchup = CatchupScanner(store, dispatcher, page_size=settings.catchup_page_size)
        engine = SchedulerEngine(store=store, dispatcher=dispatcher, catchup=catchup)
        api = ApiServer(SchedulingService(store, page_size=settings.status_page_size))

        await engine.start()
        await api.start()
        logger.info("callme ready")
        try:
            await stop.wait()
        finally:
            logger.info("Shutting down...")
            await api.stop()
            await engine.stop()


def main() -> None:
    """Start the scheduler and the HTTP API."""
    logger.debug("Application configuration: %s", settings.model_dump(exclude={"turso_auth_token"}))
    asyncio.run(serve())


if __name__ == "__main__":
    main()
