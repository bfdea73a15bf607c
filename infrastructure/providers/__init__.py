import httpx

from config.settings import Settings

from .base import ParseOutcome, RateFeedAdapter
from .frb import FederalReserveFeedAdapter, FederalReserveRateType
from .market import MarketQuoteFeedAdapter, MarketRateType


def build_adapters(settings: Settings, client: httpx.AsyncClient | None = None) -> list[RateFeedAdapter]:
	"""Create the enabled feed adapters from configuration."""
	common = {
		'client': client,
		'timeout': settings.FETCH_TIMEOUT_SECONDS,
		'attempts': settings.DOWNLOAD_ATTEMPTS,
	}
	adapters: list[RateFeedAdapter] = []

	if settings.FRB.enabled:
		adapters.append(
			FederalReserveFeedAdapter(
				provider_id='FRB',
				url=settings.FRB.url,
				refresh_interval=settings.FRB.refresh_interval,
				rate_type=FederalReserveRateType.from_code(settings.FRB.rate_type or 'FRB'),
				**common,
			)
		)
	if settings.MARKET.enabled:
		adapters.append(
			MarketQuoteFeedAdapter(
				provider_id='MARKET',
				url=settings.MARKET.url,
				refresh_interval=settings.MARKET.refresh_interval,
				**common,
			)
		)
	return adapters


__all__ = [
	'FederalReserveFeedAdapter',
	'FederalReserveRateType',
	'MarketQuoteFeedAdapter',
	'MarketRateType',
	'ParseOutcome',
	'RateFeedAdapter',
	'build_adapters',
]
