import logging
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_EVEN, Decimal, localcontext

from application.services.chain_composer import ChainComposer
from application.services.registry import ProviderRegistry
from config.settings import Settings
from domain.exceptions.currency import raise_for_lookup
from domain.models.currency import CHAIN_PRECISION, CurrencyPair, RateRecord
from domain.models.results import InvalidPair, NoRateAvailable, RateLookup
from infrastructure.providers.base import CURRENCY_CODE
from infrastructure.store.rate_store import RateStore

logger = logging.getLogger(__name__)

IDENTITY_PROVIDER = 'identity'
MAX_RANGE_DAYS = 366 * 5


def utc_today() -> date:
    return datetime.now(UTC).date()


def _recency(record: RateRecord) -> tuple:
    fetched = record.fetched_at.replace(tzinfo=None) if record.fetched_at else datetime.min
    return (record.date, fetched)


class RateService:
    """
    Answers rate queries from the cache only; never touches the network.

    Direct rates are picked by provider priority, then by the most recent
    record, then by the most recent fetch. Missing pairs fall back to the
    chain composer before giving up.
    """

    def __init__(
        self,
        store: RateStore,
        registry: ProviderRegistry,
        composer: ChainComposer | None = None,
        known_currencies: Iterable[str] | None = None,
        today: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.registry = registry
        self.composer = composer
        self.known_currencies = frozenset(known_currencies) if known_currencies else None
        self._today = today

    @classmethod
    def from_settings(cls, store: RateStore, registry: ProviderRegistry, settings: Settings) -> 'RateService':
        composer = ChainComposer(
            store,
            registry,
            allow_inverse=settings.ALLOW_INVERSE_RATES,
            max_hops=settings.MAX_CHAIN_HOPS,
        )
        return cls(store, registry, composer, known_currencies=settings.KNOWN_CURRENCIES)

    def validate_pair(self, base: str, target: str) -> InvalidPair | None:
        for code in (base, target):
            if not isinstance(code, str) or not CURRENCY_CODE.fullmatch(code):
                return InvalidPair(str(base), str(target), f'{code!r} is not a 3-letter currency code')
            if self.known_currencies is not None and code not in self.known_currencies:
                return InvalidPair(base, target, f'{code} is not a recognized currency')
        return None

    def get_rate(
        self,
        base: str,
        target: str,
        on: date | None = None,
        precision: int | None = None,
    ) -> RateLookup:
        """
        Resolve base -> target as of `on` (latest when omitted).

        Returns the RateRecord, or InvalidPair / NoRateAvailable. Only the final
        factor is rounded, to `precision` decimal places when given.
        """
        invalid = self.validate_pair(base, target)
        if invalid is not None:
            return invalid

        pair = CurrencyPair(base, target)
        if base == target:
            return RateRecord(pair, on or self._today(), Decimal(1), IDENTITY_PROVIDER)

        record = self._direct(pair, on)
        if record is None and self.composer is not None:
            chain = self.composer.compose(base, target, on)
            if chain is not None:
                record = chain.as_record()

        if record is None:
            logger.info(f'No rate available for {pair} on {on.isoformat() if on else "latest"}')
            return NoRateAvailable(pair, on)

        return self._scaled(record, precision)

    def require_rate(
        self, base: str, target: str, on: date | None = None, precision: int | None = None
    ) -> RateRecord:
        return raise_for_lookup(self.get_rate(base, target, on, precision))

    def get_rates(
        self,
        base: str,
        target: str,
        start: date,
        end: date,
        precision: int | None = None,
    ) -> list[RateRecord] | InvalidPair | NoRateAvailable:
        """One resolved rate per calendar day in [start, end]; days before any data are left out."""
        invalid = self.validate_pair(base, target)
        if invalid is not None:
            return invalid
        if end < start:
            return InvalidPair(base, target, f'range end {end} is before start {start}')
        if (end - start).days > MAX_RANGE_DAYS:
            return InvalidPair(base, target, f'range longer than {MAX_RANGE_DAYS} days')

        rates = []
        day = start
        while day <= end:
            result = self.get_rate(base, target, day, precision)
            if isinstance(result, RateRecord):
                rates.append(result)
            day += timedelta(days=1)

        if not rates:
            return NoRateAvailable(CurrencyPair(base, target), end, f'no rate between {start} and {end}')
        return rates

    def _direct(self, pair: CurrencyPair, on: date | None) -> RateRecord | None:
        best: tuple[tuple, RateRecord] | None = None
        for registration in self.registry.providers_for(pair):
            if on is None:
                record = self.store.latest(registration.provider_id, pair)
            else:
                record = self.store.on_or_before(registration.provider_id, pair, on)
            if record is None:
                continue
            rank = (registration.priority, *_recency(record))
            if best is None or rank > best[0]:
                best = (rank, record)
        return best[1] if best else None

    @staticmethod
    def _scaled(record: RateRecord, precision: int | None) -> RateRecord:
        if precision is None:
            return record
        with localcontext() as ctx:
            # Room for every integer digit plus the requested places.
            ctx.prec = max(CHAIN_PRECISION, record.factor.adjusted() + 1 + precision)
            factor = record.factor.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_EVEN)
        if factor <= 0:
            # Too coarse a precision for this rate; keep the exact value.
            return record
        return RateRecord(record.pair, record.date, factor, record.provider_id, record.fetched_at, record.chain)
