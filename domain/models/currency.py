from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, localcontext
from enum import Enum

# Working precision for composed factors; only the final value is ever rounded.
CHAIN_PRECISION = 50


class FeedFormat(Enum):
    """Wire formats a source adapter can decode"""
    BANK_XML = "bank_xml"
    MARKET_JSON = "market_json"


@dataclass(frozen=True, order=True)
class CurrencyPair:
    base: str
    target: str

    def reversed(self) -> "CurrencyPair":
        return CurrencyPair(self.target, self.base)

    def __str__(self) -> str:
        return f"{self.base}/{self.target}"


@dataclass(frozen=True)
class RateRecord:
    """One exchange rate observation: amount_in_target = amount_in_base * factor"""
    pair: CurrencyPair
    date: date
    factor: Decimal
    provider_id: str
    fetched_at: datetime | None = field(default=None, compare=False)
    chain: tuple["RateRecord", ...] = field(default=(), compare=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.factor, Decimal):
            raise ValueError(f"factor must be a Decimal, got {type(self.factor).__name__}")
        if not self.factor.is_finite() or self.factor <= 0:
            raise ValueError(f"factor must be positive and finite, got {self.factor}")

    @property
    def key(self) -> tuple[str, CurrencyPair, date]:
        return (self.provider_id, self.pair, self.date)

    @property
    def base(self) -> str:
        return self.pair.base

    @property
    def target(self) -> str:
        return self.pair.target

    @property
    def is_composed(self) -> bool:
        return bool(self.chain)


@dataclass(frozen=True)
class ProviderRegistration:
    provider_id: str
    priority: int = 0
    supported_pairs: frozenset[CurrencyPair] | None = None  # None means every pair

    def supports(self, pair: CurrencyPair) -> bool:
        return self.supported_pairs is None or pair in self.supported_pairs


@dataclass(frozen=True)
class ChainLeg:
    record: RateRecord
    inverted: bool = False

    @property
    def source(self) -> str:
        return self.record.target if self.inverted else self.record.base

    @property
    def destination(self) -> str:
        return self.record.base if self.inverted else self.record.target

    def factor(self) -> Decimal:
        if not self.inverted:
            return self.record.factor
        with localcontext() as ctx:
            ctx.prec = CHAIN_PRECISION
            return Decimal(1) / self.record.factor


@dataclass(frozen=True)
class ConversionChain:
    """Ordered legs connecting base to target; computed per query, never stored"""
    legs: tuple[ChainLeg, ...]
    priority_score: int = 0

    def __post_init__(self):
        if not self.legs:
            raise ValueError("a conversion chain needs at least one leg")
        for current, following in zip(self.legs, self.legs[1:]):
            if current.destination != following.source:
                raise ValueError(
                    f"broken chain: {current.destination} does not connect to {following.source}"
                )

    @property
    def base(self) -> str:
        return self.legs[0].source

    @property
    def target(self) -> str:
        return self.legs[-1].destination

    @property
    def hops(self) -> int:
        return len(self.legs)

    @property
    def inverted_legs(self) -> int:
        return sum(1 for leg in self.legs if leg.inverted)

    @property
    def oldest_date(self) -> date:
        return min(leg.record.date for leg in self.legs)

    @property
    def currencies(self) -> list[str]:
        return [self.base] + [leg.destination for leg in self.legs]

    def factor(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = CHAIN_PRECISION
            product = Decimal(1)
            for leg in self.legs:
                product *= leg.factor()
            return product

    def as_record(self) -> RateRecord:
        provider_id = "chain:" + ">".join(leg.record.provider_id for leg in self.legs)
        return RateRecord(
            pair=CurrencyPair(self.base, self.target),
            date=self.oldest_date,
            factor=self.factor(),
            provider_id=provider_id,
            chain=tuple(leg.record for leg in self.legs),
        )
