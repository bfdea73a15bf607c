"""Typed outcomes for fetches and rate lookups.

Missing data and bad input are values the caller branches on, not exceptions.
"""
from dataclasses import dataclass
from datetime import date
from enum import Enum

from domain.models.currency import CurrencyPair, RateRecord


class FetchErrorKind(Enum):
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"
    EMPTY_PAYLOAD = "empty_payload"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class FetchSuccess:
    provider_id: str
    records: tuple[RateRecord, ...]
    skipped: int = 0

    @property
    def is_successful(self) -> bool:
        return True


@dataclass(frozen=True)
class FetchError:
    provider_id: str
    cause: str
    kind: FetchErrorKind = FetchErrorKind.UNEXPECTED
    http_status_code: int | None = None

    @property
    def is_successful(self) -> bool:
        return False


FetchResult = FetchSuccess | FetchError


@dataclass(frozen=True)
class InvalidPair:
    base: str
    target: str
    reason: str


@dataclass(frozen=True)
class NoRateAvailable:
    pair: CurrencyPair
    date: date | None
    reason: str = "no direct or composed rate available"


RateLookup = RateRecord | InvalidPair | NoRateAvailable
