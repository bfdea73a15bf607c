from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from domain.models.currency import RateRecord


class ChainLegResponse(BaseModel):
	from_currency: str
	to_currency: str
	rate: Decimal
	rate_date: date
	source: str


class ExchangeRateResponse(BaseModel):
	from_currency: str = Field(..., description='Source currency code')
	to_currency: str = Field(..., description='Target currency code')
	rate: Decimal = Field(..., description='Factor such that target = base * rate')
	rate_date: date = Field(..., description='Date of the observation used')
	source: str = Field(..., description='Provider, or chain of providers, of the rate')
	fetched_at: datetime | None = Field(None, description='When the rate was fetched')
	chain: list[ChainLegResponse] = Field(default_factory=list, description='Legs of a composed rate')

	@classmethod
	def from_record(cls, record: RateRecord) -> 'ExchangeRateResponse':
		return cls(
			from_currency=record.base,
			to_currency=record.target,
			rate=record.factor,
			rate_date=record.date,
			source=record.provider_id,
			fetched_at=record.fetched_at,
			chain=[
				ChainLegResponse(
					from_currency=leg.base,
					to_currency=leg.target,
					rate=leg.factor,
					rate_date=leg.date,
					source=leg.provider_id,
				)
				for leg in record.chain
			],
		)

	class ConfigDict:
		json_schema_extra = {
			'example': {
				'from_currency': 'USD',
				'to_currency': 'EUR',
				'rate': 0.8550,
				'rate_date': '2025-09-26',
				'source': 'FRB',
			}
		}


class RateHistoryResponse(BaseModel):
	from_currency: str
	to_currency: str
	start: date
	end: date
	rates: list[ExchangeRateResponse]


class ConversionResponse(BaseModel):
	from_currency: str = Field(..., description='Source currency code')
	to_currency: str = Field(..., description='Target currency code')
	original_amount: Decimal = Field(..., description='Original amount requested')
	converted_amount: Decimal = Field(..., description='Converted amount')
	exchange_rate: Decimal = Field(..., description='Exchange rate used for conversion')
	rate_date: date = Field(..., description='Date of the rate used')
	source: str = Field(..., description='Provider of the rate')


class FeedStatusResponse(BaseModel):
	provider_id: str
	state: str
	priority: int
	interval_seconds: float
	backoff_seconds: float
	next_due: datetime
	in_flight: bool
	consecutive_failures: int
	last_attempt: datetime | None = None
	last_success: datetime | None = None
	last_error: str | None = None
	last_skipped: int = 0
	last_committed: int | None = None
	cached_records: int = 0


class RefreshResponse(BaseModel):
	provider_id: str
	state: str
	next_due: datetime | None = None
	committed: int | None = None
	error: str | None = None
