import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import bootstrap, cleanup_dependencies, deps, init_dependencies
from api.error_handlers import register_exception_handlers
from api.routes import feeds, rates
from config.settings import get_settings
from infrastructure.monitoring.logger import configure_logging

logger = logging.getLogger(__name__)


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
	configure_logging(settings.LOG_DIRECTORY, settings.LOG_CONSOLE_LEVEL, settings.LOG_FILE_LEVEL)
	logger.info('Starting FX Rate Cache API...')

	init_dependencies()
	await bootstrap()

	scheduler_task = asyncio.create_task(deps.scheduler.run(settings.SCHEDULER_TICK_SECONDS))
	logger.info('Application ready')

	yield

	logger.info('Shutting down...')
	deps.scheduler.stop()
	scheduler_task.cancel()
	try:
		await scheduler_task
	except asyncio.CancelledError:
		pass
	await cleanup_dependencies()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
	logger.error(f'Unhandled exception: {exc}', exc_info=True)
	return JSONResponse(status_code=500, content={'detail': 'Internal server error'})


@app.get('/health', tags=['health'])
async def health() -> dict:
	statuses = deps.scheduler.status() if deps.scheduler else []
	return {
		'status': 'healthy' if deps.store is not None and deps.store.record_count() else 'degraded',
		'cached_records': deps.store.record_count() if deps.store else 0,
		'feeds': {feed['provider_id']: feed['state'] for feed in statuses},
	}


app.include_router(rates.router)
app.include_router(feeds.router)
register_exception_handlers(app)


def run() -> None:
	uvicorn.run('api.main:app', host='0.0.0.0', port=8000, reload=settings.DEBUG)


if __name__ == '__main__':
	run()
