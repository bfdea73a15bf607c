from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from domain.models.currency import CurrencyPair, RateRecord
from infrastructure.persistence.models.rates import RateRecordDB

DELETE_CHUNK = 100


class RateRepository:
	def __init__(self, db_session: AsyncSession):
		self.db_session = db_session

	async def upsert_records(self, records: Iterable[RateRecord]) -> int:
		"""Insert-or-replace keyed by (provider, pair, date)."""
		rows = {record.key: record for record in records}
		if not rows:
			return 0

		keys = list(rows)
		# SQLite caps expression depth, so existing keys are removed in chunks.
		for start in range(0, len(keys), DELETE_CHUNK):
			key_filters = [
				and_(
					RateRecordDB.provider_id == provider_id,
					RateRecordDB.base_currency == pair.base,
					RateRecordDB.target_currency == pair.target,
					RateRecordDB.rate_date == on,
				)
				for provider_id, pair, on in keys[start:start + DELETE_CHUNK]
			]
			await self.db_session.execute(delete(RateRecordDB).where(or_(*key_filters)))

		self.db_session.add_all(
			[
				RateRecordDB(
					provider_id=record.provider_id,
					base_currency=record.base,
					target_currency=record.target,
					rate_date=record.date,
					factor=str(record.factor),
					fetched_at=record.fetched_at,
				)
				for record in rows.values()
			]
		)
		return len(rows)

	async def get_records(
		self, provider_id: str | None = None, since: date | None = None
	) -> list[RateRecord]:
		stmt = select(RateRecordDB).order_by(
			RateRecordDB.provider_id, RateRecordDB.base_currency, RateRecordDB.target_currency, RateRecordDB.rate_date
		)
		if provider_id is not None:
			stmt = stmt.filter(RateRecordDB.provider_id == provider_id)
		if since is not None:
			stmt = stmt.filter(RateRecordDB.rate_date >= since)

		result = await self.db_session.execute(stmt)
		return [
			RateRecord(
				pair=CurrencyPair(r.base_currency, r.target_currency),
				date=r.rate_date,
				factor=Decimal(r.factor),
				provider_id=r.provider_id,
				fetched_at=r.fetched_at,
			)
			for r in result.scalars().all()
		]

	async def prune(
		self, keep: int, series: Iterable[tuple[str, CurrencyPair]] | None = None
	) -> int:
		"""Delete all but the `keep` most recent dates of each (provider, pair) series."""
		if series is None:
			result = await self.db_session.execute(
				select(
					RateRecordDB.provider_id, RateRecordDB.base_currency, RateRecordDB.target_currency
				).distinct()
			)
			series = [(provider_id, CurrencyPair(base, target)) for provider_id, base, target in result.all()]

		pruned = 0
		for provider_id, pair in series:
			same_series = and_(
				RateRecordDB.provider_id == provider_id,
				RateRecordDB.base_currency == pair.base,
				RateRecordDB.target_currency == pair.target,
			)
			cutoff = await self.db_session.scalar(
				select(RateRecordDB.rate_date)
				.where(same_series)
				.order_by(RateRecordDB.rate_date.desc())
				.offset(keep - 1)
				.limit(1)
			)
			if cutoff is None:
				continue
			result = await self.db_session.execute(
				delete(RateRecordDB).where(same_series, RateRecordDB.rate_date < cutoff)
			)
			pruned += result.rowcount
		return pruned
