import json
from datetime import date
from enum import Enum
from typing import Any

from domain.exceptions.currency import ProviderError
from domain.models.currency import FeedFormat

from .base import ParseOutcome, RateFeedAdapter, RecordSkipped, parse_code, parse_factor


class MarketRateType(Enum):
    MARKET = ('MARKET', 'Current market quotes for currency pairs, no historical depth.')

    def __init__(self, code: str, description: str):
        self.code = code
        self.description = description


class MarketQuoteFeedAdapter(RateFeedAdapter):
    """
    Quote resource list feed:

        {"list": {"meta": {...},
                  "resources": [{"resource": {"classname": "Quote",
                                              "fields": {"name": "USD/EUR", "price": "0.85"}}}]}}

    Every quote is a current price, so records are dated today.
    """

    feed_format = FeedFormat.MARKET_JSON
    BASE_URL = 'https://finance.yahoo.com/webservice/v1/symbols/allcurrencies/quote?format=json'

    def __init__(
        self,
        provider_id: str = 'MARKET',
        url: str = BASE_URL,
        refresh_interval: float = 5 * 60,
        rate_type: MarketRateType = MarketRateType.MARKET,
        **kwargs,
    ):
        super().__init__(provider_id, url, refresh_interval, **kwargs)
        self.rate_type = rate_type

    def parse(self, raw: bytes, today: date) -> ParseOutcome:
        try:
            document = json.loads(raw)
            resources = document['list']['resources']
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProviderError(f'Market feed is not valid JSON: {e}') from e
        except (KeyError, TypeError) as e:
            raise ProviderError(f'Market feed is missing the resource list: {e}') from e
        if not isinstance(resources, list):
            raise ProviderError('Market feed resources is not a list')

        outcome = ParseOutcome()
        for item in resources:
            try:
                resource = self._resource(item)
                if resource.get('classname', 'Quote') != 'Quote':
                    continue
                outcome.records.append(self._parse_quote(resource.get('fields') or {}, today))
            except (RecordSkipped, ValueError) as e:
                outcome.skip(str(e), self.provider_id)
        return outcome

    @staticmethod
    def _resource(item: Any) -> dict[str, Any]:
        resource = item.get('resource') if isinstance(item, dict) else None
        if not isinstance(resource, dict):
            raise RecordSkipped('resource entry is not an object')
        return resource

    def _parse_quote(self, fields: Any, today: date):
        if not isinstance(fields, dict):
            raise RecordSkipped('quote fields are not an object')
        name = fields.get('name')
        if not isinstance(name, str) or '/' not in name:
            raise RecordSkipped(f'quote name {name!r} is not a currency pair')
        base_code, target_code = name.split('/', 1)
        base, target = parse_code(base_code), parse_code(target_code)
        if base == target:
            raise RecordSkipped(f'quote {name} has the same currency on both sides')

        if 'price' not in fields:
            raise RecordSkipped(f'quote {name} has no price')
        return self._record(base, target, today, parse_factor(fields['price']))
