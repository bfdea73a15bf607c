import logging

from application.services import ConversionService, ProviderRegistry, RateRefreshScheduler, RateService
from config.settings import get_settings
from infrastructure.persistence.archive import RateArchive
from infrastructure.providers import build_adapters
from infrastructure.store.rate_store import RateStore

logger = logging.getLogger(__name__)


class AppDependencies:
	"""Container for application-wide singleton dependencies."""

	store: RateStore | None = None
	registry: ProviderRegistry | None = None
	archive: RateArchive | None = None
	scheduler: RateRefreshScheduler | None = None
	rate_service: RateService | None = None


deps = AppDependencies()


def init_dependencies() -> None:
	"""Initialize all singleton dependencies. Called at app startup."""
	logger.info('Initializing dependencies...')
	settings = get_settings()

	deps.store = RateStore()
	deps.registry = ProviderRegistry.from_adapters(build_adapters(settings), settings)
	deps.archive = RateArchive(settings.DATABASE_URL, keep=settings.RETENTION_DAYS) if settings.ARCHIVE_ENABLED else None
	deps.scheduler = RateRefreshScheduler.from_settings(
		deps.store, deps.registry, settings, deps.archive
	)
	deps.rate_service = RateService.from_settings(deps.store, deps.registry, settings)
	logger.info(f'Dependencies initialized with feeds: {deps.registry.provider_ids()}')


async def bootstrap() -> None:
	"""Load archived rates. Called after init_dependencies() at startup."""
	if deps.store is None:
		raise RuntimeError('Dependencies not initialized. Call init_dependencies() first.')

	if deps.archive is not None:
		await deps.archive.create_tables()
		await deps.archive.warm(deps.store)


async def cleanup_dependencies() -> None:
	logger.info('Cleaning up dependencies...')

	if deps.scheduler:
		deps.scheduler.stop()
	if deps.registry:
		await deps.registry.close()
	if deps.archive:
		await deps.archive.close()

	logger.info('Cleanup complete')


def get_rate_service() -> RateService:
	if deps.rate_service is None:
		raise RuntimeError('Rate service not initialized')
	return deps.rate_service


def get_conversion_service() -> ConversionService:
	return ConversionService(rate_service=get_rate_service())


def get_scheduler() -> RateRefreshScheduler:
	if deps.scheduler is None:
		raise RuntimeError('Scheduler not initialized')
	return deps.scheduler
