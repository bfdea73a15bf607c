import logging
import threading
from bisect import bisect_left, bisect_right
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType

from domain.models.currency import CurrencyPair, RateRecord

logger = logging.getLogger(__name__)


class RateSeries:
    """Immutable, date-ascending run of records for one (provider, pair)."""

    __slots__ = ('_records', '_dates')

    def __init__(self, records: Iterable[RateRecord] = ()):
        ordered = sorted(records, key=lambda r: r.date)
        for previous, current in zip(ordered, ordered[1:]):
            if previous.date >= current.date:
                raise ValueError(f'duplicate or unordered date {current.date} in series')
        self._records: tuple[RateRecord, ...] = tuple(ordered)
        self._dates: tuple[date, ...] = tuple(r.date for r in ordered)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    @property
    def records(self) -> tuple[RateRecord, ...]:
        return self._records

    def exact(self, on: date) -> RateRecord | None:
        i = bisect_left(self._dates, on)
        if i < len(self._dates) and self._dates[i] == on:
            return self._records[i]
        return None

    def on_or_before(self, on: date) -> RateRecord | None:
        i = bisect_right(self._dates, on)
        return self._records[i - 1] if i else None

    def latest(self) -> RateRecord | None:
        return self._records[-1] if self._records else None

    def between(self, start: date, end: date) -> tuple[RateRecord, ...]:
        return self._records[bisect_left(self._dates, start):bisect_right(self._dates, end)]

    def merged(self, incoming: Iterable[RateRecord]) -> tuple['RateSeries', int, int]:
        """Upsert by date; returns (new series, inserted, replaced)."""
        by_date = dict(zip(self._dates, self._records))
        inserted = replaced = 0
        for record in incoming:
            if record.date in by_date:
                replaced += 1
            else:
                inserted += 1
            by_date[record.date] = record
        return RateSeries(by_date.values()), inserted, replaced

    def trimmed(self, keep: int) -> 'RateSeries':
        if keep <= 0:
            return RateSeries()
        return RateSeries(self._records[-keep:])


Snapshot = Mapping[str, Mapping[CurrencyPair, RateSeries]]


@dataclass(frozen=True)
class CommitSummary:
    provider_id: str
    inserted: int
    replaced: int
    pairs: int

    @property
    def total(self) -> int:
        return self.inserted + self.replaced


class RateStore:
    """
    Indexed, date-aware cache of rate records per (provider, pair).

    Writers build a new immutable snapshot under a lock and publish it with a
    single assignment. Readers only dereference the current snapshot, so they
    never lock and never see half of a committed batch.
    """

    def __init__(self):
        self._snapshot: Snapshot = MappingProxyType({})
        self._write_lock = threading.Lock()

    def snapshot(self) -> Snapshot:
        return self._snapshot

    def providers(self) -> list[str]:
        return sorted(self._snapshot)

    def pairs(self, provider_id: str) -> list[CurrencyPair]:
        return sorted(self._snapshot.get(provider_id, {}))

    def series(self, provider_id: str, pair: CurrencyPair) -> RateSeries:
        return self._snapshot.get(provider_id, {}).get(pair) or RateSeries()

    def exact(self, provider_id: str, pair: CurrencyPair, on: date) -> RateRecord | None:
        return self.series(provider_id, pair).exact(on)

    def on_or_before(self, provider_id: str, pair: CurrencyPair, on: date) -> RateRecord | None:
        return self.series(provider_id, pair).on_or_before(on)

    def latest(self, provider_id: str, pair: CurrencyPair) -> RateRecord | None:
        return self.series(provider_id, pair).latest()

    def between(
        self, provider_id: str, pair: CurrencyPair, start: date, end: date
    ) -> tuple[RateRecord, ...]:
        return self.series(provider_id, pair).between(start, end)

    def record_count(self, provider_id: str | None = None) -> int:
        providers = [provider_id] if provider_id else list(self._snapshot)
        return sum(
            len(series)
            for pid in providers
            for series in self._snapshot.get(pid, {}).values()
        )

    def commit(self, provider_id: str, records: Iterable[RateRecord]) -> CommitSummary:
        """Upsert a whole batch for one provider and publish it atomically."""
        incoming: dict[CurrencyPair, list[RateRecord]] = {}
        for record in records:
            if record.provider_id != provider_id:
                raise ValueError(
                    f'record from {record.provider_id} committed under {provider_id}'
                )
            incoming.setdefault(record.pair, []).append(record)

        inserted = replaced = 0
        with self._write_lock:
            current = self._snapshot
            provider_series = dict(current.get(provider_id, {}))
            for pair, pair_records in incoming.items():
                existing = provider_series.get(pair) or RateSeries()
                merged, added, swapped = existing.merged(pair_records)
                provider_series[pair] = merged
                inserted += added
                replaced += swapped

            updated = dict(current)
            updated[provider_id] = MappingProxyType(provider_series)
            self._snapshot = MappingProxyType(updated)

        summary = CommitSummary(provider_id, inserted, replaced, len(incoming))
        logger.debug(
            f'Committed {summary.total} records for {provider_id} '
            f'({inserted} new, {replaced} replaced, {len(incoming)} pairs)'
        )
        return summary

    def apply_retention(self, keep: int, provider_id: str | None = None) -> int:
        """Keep only the `keep` most recent records per series. Returns evicted count."""
        if keep < 1:
            raise ValueError('retention must keep at least one record per series')

        evicted = 0
        with self._write_lock:
            updated = dict(self._snapshot)
            targets = [provider_id] if provider_id else list(updated)
            for pid in targets:
                if pid not in updated:
                    continue
                provider_series = dict(updated[pid])
                for pair, series in provider_series.items():
                    if len(series) > keep:
                        evicted += len(series) - keep
                        provider_series[pair] = series.trimmed(keep)
                updated[pid] = MappingProxyType(provider_series)
            self._snapshot = MappingProxyType(updated)

        if evicted:
            logger.info(f'Retention evicted {evicted} records (keep={keep}, provider={provider_id or "all"})')
        return evicted

    def clear_provider(self, provider_id: str) -> int:
        with self._write_lock:
            updated = dict(self._snapshot)
            removed = updated.pop(provider_id, {})
            self._snapshot = MappingProxyType(updated)
        count = sum(len(series) for series in removed.values())
        logger.warning(f'Cleared {count} cached records for {provider_id}')
        return count
