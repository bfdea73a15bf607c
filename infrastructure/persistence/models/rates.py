from datetime import date, datetime

from sqlalchemy import Date, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
	pass


class RateRecordDB(Base):
	__tablename__ = 'rate_records'

	id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
	provider_id: Mapped[str] = mapped_column(String(50), nullable=False)
	base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
	target_currency: Mapped[str] = mapped_column(String(3), nullable=False)
	rate_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
	# Kept as text: SQLite has no exact decimal column type.
	factor: Mapped[str] = mapped_column(String(64), nullable=False)
	fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

	__table_args__ = (
		Index('idx_rate_records_pair', 'base_currency', 'target_currency'),
		UniqueConstraint(
			'provider_id', 'base_currency', 'target_currency', 'rate_date', name='uq_provider_pair_date'
		),
	)
