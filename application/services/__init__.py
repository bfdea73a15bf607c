from .chain_composer import ChainComposer
from .conversion_service import ConversionService
from .rate_service import RateService
from .refresh_scheduler import AdapterState, RateRefreshScheduler, RefreshOutcome
from .registry import ProviderRegistry

__all__ = [
	'AdapterState',
	'ChainComposer',
	'ConversionService',
	'ProviderRegistry',
	'RateRefreshScheduler',
	'RateService',
	'RefreshOutcome',
]
