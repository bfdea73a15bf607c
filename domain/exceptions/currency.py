from domain.models.currency import RateRecord
from domain.models.results import InvalidPair, NoRateAvailable, RateLookup


class CurrencyException(Exception):
    pass


class InvalidCurrencyError(CurrencyException):
    def __init__(self, result: InvalidPair):
        self.result = result
        super().__init__(f'Invalid currency pair {result.base}/{result.target}: {result.reason}')


class RateNotFoundError(CurrencyException):
    def __init__(self, result: NoRateAvailable):
        self.result = result
        on = result.date.isoformat() if result.date else 'latest'
        super().__init__(f'No rate for {result.pair} on {on}: {result.reason}')


class ProviderError(CurrencyException):
    pass


class UnknownFeedError(CurrencyException):
    pass


class ConfigurationError(CurrencyException):
    pass


def raise_for_lookup(result: RateLookup) -> RateRecord:
    if isinstance(result, InvalidPair):
        raise InvalidCurrencyError(result)
    if isinstance(result, NoRateAvailable):
        raise RateNotFoundError(result)
    return result
