import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from application.services.registry import ProviderRegistry
from config.settings import Settings
from domain.exceptions.currency import UnknownFeedError
from domain.models.results import FetchError, FetchErrorKind, FetchResult, FetchSuccess
from infrastructure.persistence.archive import RateArchive
from infrastructure.providers.base import RateFeedAdapter
from infrastructure.store.rate_store import CommitSummary, RateStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class AdapterState(Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


@dataclass
class FeedSchedule:
    """Refresh bookkeeping for one adapter"""
    provider_id: str
    interval: timedelta
    backoff: timedelta
    next_due: datetime
    state: AdapterState = AdapterState.IDLE
    consecutive_failures: int = 0
    last_attempt: datetime | None = None
    last_success: datetime | None = None
    last_error: FetchError | None = None
    last_skipped: int = 0
    last_commit: CommitSummary | None = None
    history: list[AdapterState] = field(default_factory=list, repr=False)

    def transition(self, new_state: AdapterState) -> None:
        if new_state is not self.state:
            logger.debug(f"{self.provider_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        del self.history[:-20]

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "state": self.state.value,
            "interval_seconds": self.interval.total_seconds(),
            "backoff_seconds": self.backoff.total_seconds(),
            "next_due": self.next_due,
            "consecutive_failures": self.consecutive_failures,
            "last_attempt": self.last_attempt,
            "last_success": self.last_success,
            "last_error": self.last_error.cause if self.last_error else None,
            "last_skipped": self.last_skipped,
            "last_committed": self.last_commit.total if self.last_commit else None,
        }


@dataclass(frozen=True)
class RefreshOutcome:
    provider_id: str
    state: AdapterState
    result: FetchResult
    next_due: datetime
    commit: CommitSummary | None = None

    @property
    def was_successful(self) -> bool:
        return self.state is AdapterState.COMMITTED


class RateRefreshScheduler:
    """
    Drives every registered feed on its own cadence and commits results to the store.

    A failed or timed out fetch never touches cached data; the feed is retried
    after a shortened backoff until a success restores the normal interval.
    """

    def __init__(
        self,
        store: RateStore,
        registry: ProviderRegistry,
        fetch_timeout: float = 20.0,
        min_backoff: float = 30.0,
        backoff_factor: float = 0.5,
        retention_days: int | None = None,
        archive: RateArchive | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.fetch_timeout = fetch_timeout
        self.min_backoff = min_backoff
        self.backoff_factor = backoff_factor
        self.retention_days = retention_days
        self.archive = archive
        self._clock = clock
        self._in_flight: set[str] = set()
        self._stop_event = asyncio.Event()
        self.is_running = False

        now = self._clock()
        self.schedules: dict[str, FeedSchedule] = {
            adapter.provider_id: self._schedule_for(adapter, now)
            for adapter in registry.adapters()
        }

    @classmethod
    def from_settings(
        cls,
        store: RateStore,
        registry: ProviderRegistry,
        settings: Settings,
        archive: RateArchive | None = None,
    ) -> "RateRefreshScheduler":
        return cls(
            store,
            registry,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
            min_backoff=settings.MIN_BACKOFF_SECONDS,
            backoff_factor=settings.BACKOFF_FACTOR,
            retention_days=settings.RETENTION_DAYS,
            archive=archive,
        )

    def _schedule_for(self, adapter: RateFeedAdapter, now: datetime) -> FeedSchedule:
        interval = adapter.refresh_interval
        backoff = min(interval, max(self.min_backoff, interval * self.backoff_factor))
        return FeedSchedule(
            provider_id=adapter.provider_id,
            interval=timedelta(seconds=interval),
            backoff=timedelta(seconds=backoff),
            next_due=now,
        )

    def is_in_flight(self, provider_id: str) -> bool:
        return provider_id in self._in_flight

    def due(self, now: datetime | None = None) -> list[str]:
        now = now or self._clock()
        return [
            provider_id
            for provider_id, schedule in self.schedules.items()
            if schedule.next_due <= now and provider_id not in self._in_flight
        ]

    def _claim(self, provider_id: str) -> bool:
        # Check and mark in one step, with no await in between.
        if provider_id in self._in_flight:
            return False
        self._in_flight.add(provider_id)
        return True

    async def tick(self, now: datetime | None = None) -> list[RefreshOutcome]:
        """Fetch every due feed concurrently; feeds already fetching are left alone."""
        claimed = [provider_id for provider_id in self.due(now) if self._claim(provider_id)]
        if not claimed:
            return []
        return list(await asyncio.gather(*(self._refresh(provider_id) for provider_id in claimed)))

    async def refresh_now(self, provider_id: str) -> RefreshOutcome | None:
        """Fetch one feed immediately. Returns None if it is already fetching."""
        if provider_id not in self.schedules:
            raise UnknownFeedError(f"No feed adapter registered for {provider_id}")
        if not self._claim(provider_id):
            logger.info(f"Refresh of {provider_id} requested while a fetch is in flight; skipped")
            return None
        return await self._refresh(provider_id)

    async def _refresh(self, provider_id: str) -> RefreshOutcome:
        """Run one claimed fetch; the claim is released when it finishes."""
        try:
            schedule = self.schedules[provider_id]
            adapter = self.registry.adapter(provider_id)

            if schedule.state is AdapterState.FAILED:
                schedule.transition(AdapterState.IDLE)
            schedule.transition(AdapterState.FETCHING)
            schedule.last_attempt = self._clock()

            result = await self._fetch(adapter)
            commit = None
            if isinstance(result, FetchSuccess):
                commit, result = self._commit(result)

            finished = self._clock()
            if commit is None:
                self._on_failure(schedule, result, finished)
                return RefreshOutcome(provider_id, AdapterState.FAILED, result, schedule.next_due)

            self._on_success(schedule, result, commit, finished)
            await self._archive(result)
            return RefreshOutcome(provider_id, AdapterState.COMMITTED, result, schedule.next_due, commit)
        finally:
            self._in_flight.discard(provider_id)

    async def _fetch(self, adapter: RateFeedAdapter) -> FetchResult:
        try:
            async with asyncio.timeout(self.fetch_timeout):
                return await adapter.fetch()
        except TimeoutError:
            return FetchError(
                adapter.provider_id,
                f"Fetch exceeded {self.fetch_timeout}s and was abandoned",
                FetchErrorKind.TIMEOUT,
            )
        except Exception as e:
            logger.exception(f"Adapter {adapter.provider_id} raised instead of returning a result")
            return FetchError(adapter.provider_id, str(e), FetchErrorKind.UNEXPECTED)

    def _commit(self, result: FetchSuccess) -> tuple[CommitSummary | None, FetchResult]:
        fetched_at = self._clock()
        records = [replace(record, fetched_at=fetched_at) for record in result.records]
        try:
            commit = self.store.commit(result.provider_id, records)
        except ValueError as e:
            logger.error(f"Rejected batch from {result.provider_id}: {e}")
            return None, FetchError(result.provider_id, str(e), FetchErrorKind.MALFORMED_PAYLOAD)

        if self.retention_days:
            self.store.apply_retention(self.retention_days, result.provider_id)
        return commit, FetchSuccess(result.provider_id, tuple(records), result.skipped)

    def _on_success(
        self, schedule: FeedSchedule, result: FetchSuccess, commit: CommitSummary, now: datetime
    ) -> None:
        if schedule.consecutive_failures:
            logger.info(
                f"{schedule.provider_id} recovered after {schedule.consecutive_failures} failed attempts"
            )
        schedule.transition(AdapterState.COMMITTED)
        schedule.consecutive_failures = 0
        schedule.last_error = None
        schedule.last_success = now
        schedule.last_skipped = result.skipped
        schedule.last_commit = commit
        schedule.next_due = now + schedule.interval
        logger.info(
            f"Committed {commit.total} rates from {schedule.provider_id} "
            f"({result.skipped} skipped); next refresh at {schedule.next_due.isoformat()}"
        )
        schedule.transition(AdapterState.IDLE)

    def _on_failure(self, schedule: FeedSchedule, error: FetchError, now: datetime) -> None:
        schedule.transition(AdapterState.FAILED)
        schedule.consecutive_failures += 1
        schedule.last_error = error
        schedule.next_due = now + schedule.backoff
        logger.warning(
            f"Refresh of {schedule.provider_id} failed ({error.kind.value}: {error.cause}); "
            f"attempt {schedule.consecutive_failures}, cached rates kept, "
            f"retrying at {schedule.next_due.isoformat()}"
        )

    async def _archive(self, result: FetchSuccess) -> None:
        if self.archive is not None:
            await self.archive.save(result.records)

    async def run(self, poll_interval: float = 5.0) -> None:
        """Main scheduler loop. Runs until stop() is called or the task is cancelled."""
        self.is_running = True
        self._stop_event.clear()
        logger.info(f"Refresh scheduler started for feeds: {', '.join(self.schedules) or 'none'}")

        while self.is_running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                logger.info("Refresh scheduler received cancellation signal")
                break
            except Exception as e:
                logger.error(f"Error in scheduler tick: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=poll_interval)
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                logger.info("Refresh scheduler received cancellation signal")
                break

        self.is_running = False
        logger.info("Refresh scheduler stopped")

    def stop(self) -> None:
        """Gracefully stop the loop after the current tick"""
        logger.info("Stopping refresh scheduler...")
        self.is_running = False
        self._stop_event.set()

    def status(self) -> list[dict[str, Any]]:
        return [
            {**schedule.to_dict(), "in_flight": provider_id in self._in_flight}
            for provider_id, schedule in self.schedules.items()
        ]
