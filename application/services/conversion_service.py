from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal

from application.services.rate_service import RateService


class ConversionService:
	def __init__(self, rate_service: RateService):
		self.rate_service = rate_service

	def convert(
		self,
		amount: Decimal,
		from_currency: str,
		to_currency: str,
		on: date | None = None,
		places: int | None = None,
	) -> dict:
		rate = self.rate_service.require_rate(from_currency, to_currency, on)

		converted_amount = amount * rate.factor
		if places is not None:
			converted_amount = converted_amount.quantize(
				Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN
			)

		return {
			'from_currency': from_currency,
			'to_currency': to_currency,
			'original_amount': amount,
			'converted_amount': converted_amount,
			'exchange_rate': rate.factor,
			'rate_date': rate.date,
			'source': rate.provider_id,
		}
