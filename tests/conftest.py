"""
Shared fixtures: a controllable clock, record factories and scripted feed adapters.
"""
import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from domain.models.currency import CurrencyPair, RateRecord
from domain.models.results import FetchError, FetchErrorKind, FetchResult, FetchSuccess
from infrastructure.providers.base import ParseOutcome, RateFeedAdapter


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedAdapter(RateFeedAdapter):
    """Feed adapter whose fetch results are queued up by the test."""

    def __init__(self, provider_id: str, refresh_interval: float = 60, delay: float = 0):
        super().__init__(
            provider_id,
            f'https://feeds.example/{provider_id.lower()}',
            refresh_interval,
            client=AsyncMock(spec=httpx.AsyncClient),
        )
        self.results: list[FetchResult] = []
        self.delay = delay
        self.calls = 0
        self.release: asyncio.Event | None = None

    def parse(self, raw: bytes, today: date) -> ParseOutcome:
        return ParseOutcome()

    def succeed_with(self, *records: RateRecord, skipped: int = 0) -> None:
        self.results.append(FetchSuccess(self.provider_id, tuple(records), skipped))

    def fail_with(self, cause: str = 'Request failed: ConnectError',
                  kind: FetchErrorKind = FetchErrorKind.NETWORK) -> None:
        self.results.append(FetchError(self.provider_id, cause, kind))

    async def fetch(self) -> FetchResult:
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.results.pop(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def make_record() -> Callable[..., RateRecord]:
    def _make(base: str, target: str, on: date, factor: str, provider_id: str = 'FRB',
              fetched_at: datetime | None = None) -> RateRecord:
        return RateRecord(
            pair=CurrencyPair(base, target),
            date=on,
            factor=Decimal(factor),
            provider_id=provider_id,
            fetched_at=fetched_at,
        )
    return _make


@pytest.fixture
def make_adapter() -> Callable[..., ScriptedAdapter]:
    return ScriptedAdapter
