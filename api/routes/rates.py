from datetime import date
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from api.dependencies import get_conversion_service, get_rate_service
from api.schemas import ConversionResponse, ExchangeRateResponse, RateHistoryResponse
from application.services import ConversionService, RateService
from domain.exceptions.currency import raise_for_lookup

router = APIRouter(prefix='/api', tags=['rates'])

CurrencyCode = Annotated[str, Path(min_length=1, max_length=10)]


@router.get(
	'/rate/{from_currency}/{to_currency}',
	response_model=ExchangeRateResponse,
	status_code=status.HTTP_200_OK,
	summary='Get the exchange rate as of a date (latest when omitted)',
)
async def get_exchange_rate(
	from_currency: CurrencyCode,
	to_currency: CurrencyCode,
	service: Annotated[RateService, Depends(get_rate_service)],
	on: Annotated[date | None, Query(alias='date')] = None,
	precision: Annotated[int | None, Query(ge=0, le=20)] = None,
) -> ExchangeRateResponse:
	record = service.require_rate(from_currency.upper(), to_currency.upper(), on, precision)
	return ExchangeRateResponse.from_record(record)


@router.get(
	'/rates/{from_currency}/{to_currency}',
	response_model=RateHistoryResponse,
	status_code=status.HTTP_200_OK,
	summary='Get one resolved rate per day over a date range',
)
async def get_rate_history(
	from_currency: CurrencyCode,
	to_currency: CurrencyCode,
	start: date,
	end: date,
	service: Annotated[RateService, Depends(get_rate_service)],
	precision: Annotated[int | None, Query(ge=0, le=20)] = None,
) -> RateHistoryResponse:
	from_currency = from_currency.upper()
	to_currency = to_currency.upper()

	result = service.get_rates(from_currency, to_currency, start, end, precision)
	if not isinstance(result, list):
		raise_for_lookup(result)

	return RateHistoryResponse(
		from_currency=from_currency,
		to_currency=to_currency,
		start=start,
		end=end,
		rates=[ExchangeRateResponse.from_record(record) for record in result],
	)


@router.get(
	'/convert/{from_currency}/{to_currency}/{amount}',
	response_model=ConversionResponse,
	status_code=status.HTTP_200_OK,
	summary='Convert currency amount',
)
async def convert_currency(
	from_currency: CurrencyCode,
	to_currency: CurrencyCode,
	amount: Annotated[Decimal, Path(gt=0)],
	service: Annotated[ConversionService, Depends(get_conversion_service)],
	on: Annotated[date | None, Query(alias='date')] = None,
	places: Annotated[int | None, Query(ge=0, le=20)] = None,
) -> ConversionResponse:
	result = service.convert(amount, from_currency.upper(), to_currency.upper(), on, places)
	return ConversionResponse(**result)
