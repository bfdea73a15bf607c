import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from domain.exceptions.currency import ProviderError
from domain.models.currency import CurrencyPair, FeedFormat, RateRecord
from domain.models.results import FetchError, FetchErrorKind, FetchResult, FetchSuccess

logger = logging.getLogger(__name__)

CURRENCY_CODE = re.compile(r'[A-Z]{3}', re.ASCII)


class RecordSkipped(ValueError):
    """A single row in a feed payload could not be turned into a rate."""


@dataclass
class ParseOutcome:
    records: list[RateRecord] = field(default_factory=list)
    skipped: int = 0

    def skip(self, reason: str, provider_id: str) -> None:
        self.skipped += 1
        logger.debug(f'{provider_id}: skipped row ({reason})')


def utc_today() -> date:
    return datetime.now(UTC).date()


def parse_code(value: str | None) -> str:
    code = (value or '').strip().upper()
    if not CURRENCY_CODE.fullmatch(code):
        raise RecordSkipped(f'bad currency code {value!r}')
    return code


def parse_factor(value) -> Decimal:
    try:
        factor = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise RecordSkipped(f'bad number {value!r}') from e
    if not factor.is_finite() or factor <= 0:
        raise RecordSkipped(f'non-positive or non-finite factor {value!r}')
    return factor


class RateFeedAdapter(ABC):
    """One remote feed: its transport and its wire format."""

    feed_format: FeedFormat

    def __init__(
        self,
        provider_id: str,
        url: str,
        refresh_interval: float,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10,
        attempts: int = 2,
        today: Callable[[], date] = utc_today,
    ):
        self.provider_id = provider_id
        self.url = url
        self.refresh_interval = refresh_interval
        self.attempts = attempts
        self._today = today
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={'User-Agent': 'fx-ratecache/1.0'},
            follow_redirects=True,
        )

    @property
    def name(self) -> str:
        return self.provider_id

    @abstractmethod
    def parse(self, raw: bytes, today: date) -> ParseOutcome:
        """Decode a payload. Bad rows are counted, a bad document raises ProviderError."""
        ...

    async def _download(self) -> bytes:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                response = await self._client.get(self.url)
                response.raise_for_status()
        return response.content

    def _error(self, kind: FetchErrorKind, cause: str, status: int | None = None) -> FetchError:
        logger.warning(f'Fetch failed for {self.provider_id} ({kind.value}): {cause}')
        return FetchError(self.provider_id, cause, kind, status)

    async def fetch(self) -> FetchResult:
        """Download and parse the feed. Never raises; failures come back as FetchError."""
        start_time = datetime.now()
        try:
            raw = await self._download()
        except httpx.HTTPStatusError as e:
            return self._error(
                FetchErrorKind.HTTP_STATUS,
                f'HTTP {e.response.status_code}: {e.response.text[:200]}',
                e.response.status_code,
            )
        except httpx.TimeoutException as e:
            return self._error(FetchErrorKind.TIMEOUT, f'Request timed out: {e.__class__.__name__}')
        except httpx.RequestError as e:
            return self._error(FetchErrorKind.NETWORK, f'Request failed: {e.__class__.__name__}')

        if not raw or not raw.strip():
            return self._error(FetchErrorKind.EMPTY_PAYLOAD, 'Empty response body')

        try:
            outcome = self.parse(raw, self._today())
        except ProviderError as e:
            return self._error(FetchErrorKind.MALFORMED_PAYLOAD, str(e))
        except Exception as e:
            logger.exception(f'Unexpected error parsing {self.provider_id} payload')
            return self._error(FetchErrorKind.UNEXPECTED, f'An unexpected error occurred: {str(e)}')

        if not outcome.records:
            if outcome.skipped:
                return self._error(
                    FetchErrorKind.MALFORMED_PAYLOAD, f'All {outcome.skipped} rows were malformed'
                )
            return self._error(FetchErrorKind.EMPTY_PAYLOAD, 'Payload contained no rates')

        response_time_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        logger.info(
            f'Fetched {len(outcome.records)} rates from {self.provider_id} '
            f'in {response_time_ms}ms ({outcome.skipped} rows skipped)'
        )
        return FetchSuccess(self.provider_id, tuple(outcome.records), outcome.skipped)

    def _record(self, base: str, target: str, on: date, factor: Decimal) -> RateRecord:
        return RateRecord(
            pair=CurrencyPair(base, target), date=on, factor=factor, provider_id=self.provider_id
        )

    async def close(self) -> None:
        """Cleanly close the HTTP client."""
        await self._client.aclose()

    def __repr__(self):
        return f'<{self.__class__.__name__}(provider_id={self.provider_id})>'
