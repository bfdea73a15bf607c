from .responses import (
	ConversionResponse,
	ExchangeRateResponse,
	FeedStatusResponse,
	RateHistoryResponse,
	RefreshResponse,
)

__all__ = [
	'ConversionResponse',
	'ExchangeRateResponse',
	'FeedStatusResponse',
	'RateHistoryResponse',
	'RefreshResponse',
]
