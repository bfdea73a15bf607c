import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.exceptions.currency import InvalidCurrencyError, RateNotFoundError, UnknownFeedError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
	@app.exception_handler(InvalidCurrencyError)
	async def invalid_currency_handler(request: Request, exc: InvalidCurrencyError):
		return JSONResponse(status_code=400, content={'detail': str(exc), 'error': 'invalid_pair'})

	@app.exception_handler(RateNotFoundError)
	async def rate_not_found_handler(request: Request, exc: RateNotFoundError):
		logger.info(f'Rate lookup miss: {exc}')
		return JSONResponse(status_code=404, content={'detail': str(exc), 'error': 'no_rate_available'})

	@app.exception_handler(UnknownFeedError)
	async def unknown_feed_handler(request: Request, exc: UnknownFeedError):
		return JSONResponse(status_code=404, content={'detail': str(exc), 'error': 'unknown_feed'})
