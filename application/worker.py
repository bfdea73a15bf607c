"""
Stand-alone refresh worker.

Runs the feed scheduler without the HTTP API so the on-disk archive keeps
filling even when no query process is up.
"""
import asyncio
import logging
import signal
import sys

from pydantic import ValidationError

from application.services.refresh_scheduler import RateRefreshScheduler
from application.services.registry import ProviderRegistry
from config.settings import Settings, get_settings
from infrastructure.monitoring.logger import configure_logging
from infrastructure.persistence.archive import RateArchive
from infrastructure.providers import build_adapters
from infrastructure.store.rate_store import RateStore

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings) -> None:
    store = RateStore()
    adapters = build_adapters(settings)
    registry = ProviderRegistry.from_adapters(adapters, settings)

    archive = None
    if settings.ARCHIVE_ENABLED:
        archive = RateArchive(settings.DATABASE_URL, keep=settings.RETENTION_DAYS)
        await archive.create_tables()
        await archive.warm(store)

    scheduler = RateRefreshScheduler.from_settings(store, registry, settings, archive)

    logger.info("=" * 60)
    logger.info("RATE REFRESH WORKER STARTING")
    for adapter in adapters:
        logger.info(
            f"Feed {adapter.provider_id}: {adapter.url} every {adapter.refresh_interval}s "
            f"(priority {registry.priority(adapter.provider_id)})"
        )
    logger.info("=" * 60)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, scheduler.stop)

    try:
        await scheduler.run(settings.SCHEDULER_TICK_SECONDS)
    finally:
        await registry.close()
        if archive is not None:
            await archive.close()
        logger.info("Cleanup completed")


def main() -> None:
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid worker configuration: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings.LOG_DIRECTORY, settings.LOG_CONSOLE_LEVEL, settings.LOG_FILE_LEVEL)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
