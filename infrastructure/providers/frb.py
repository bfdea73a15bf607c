import xml.etree.ElementTree as ET
from datetime import date
from enum import Enum

from domain.exceptions.currency import ProviderError
from domain.models.currency import FeedFormat

from .base import ParseOutcome, RateFeedAdapter, RecordSkipped, parse_code, parse_factor


class FederalReserveRateType(Enum):
    FRB = ('FRB', "Exchange rate to the Federal Reserve Bank of the United States, providing the prior week's Monday-Friday data.")
    FRB_WEEKLY = ('FRB_WEEKLY', 'Weekly averages of the Federal Reserve Bank of the United States exchange rates.')

    def __init__(self, code: str, description: str):
        self.code = code
        self.description = description

    @property
    def frequency(self) -> str:
        return 'weekly' if self is FederalReserveRateType.FRB_WEEKLY else 'daily'

    @classmethod
    def from_code(cls, code: str) -> 'FederalReserveRateType':
        for member in cls:
            if member.code == code.upper():
                return member
        raise ValueError(f'Unknown Federal Reserve rate type: {code}')


def _local(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _child_text(element: ET.Element, name: str) -> str | None:
    for child in element:
        if _local(child.tag) == name:
            return child.text
    return None


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


class FederalReserveFeedAdapter(RateFeedAdapter):
    """
    H.10 style RSS feed. Each item carries a cb:exchangeRate observation
    quoted against the US dollar, either as foreign-per-USD
    (baseCurrency=USD) or USD-per-foreign (targetCurrency=USD).
    """

    feed_format = FeedFormat.BANK_XML
    BASE_CURRENCY = 'USD'
    BASE_URL = 'https://www.federalreserve.gov/feeds/h10.xml'

    def __init__(
        self,
        provider_id: str = 'FRB',
        url: str = BASE_URL,
        refresh_interval: float = 24 * 60 * 60,
        rate_type: FederalReserveRateType = FederalReserveRateType.FRB,
        **kwargs,
    ):
        super().__init__(provider_id, url, refresh_interval, **kwargs)
        self.rate_type = rate_type

    def parse(self, raw: bytes, today: date) -> ParseOutcome:
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as e:
            raise ProviderError(f'Federal Reserve feed is not valid XML: {e}') from e

        observations = [el for el in root.iter() if _local(el.tag) == 'exchangeRate']
        if not observations:
            raise ProviderError('Federal Reserve feed contains no exchangeRate observations')

        outcome = ParseOutcome()
        for observation in observations:
            period = _child(observation, 'observationPeriod')
            frequency = (period.get('frequency') if period is not None else None) or 'daily'
            if frequency != self.rate_type.frequency:
                continue
            try:
                outcome.records.append(self._parse_observation(observation, period))
            except (RecordSkipped, ValueError) as e:
                outcome.skip(str(e), self.provider_id)
        return outcome

    def _parse_observation(self, observation: ET.Element, period: ET.Element | None):
        if period is None or not (period.text or '').strip():
            raise RecordSkipped('missing observationPeriod')
        on = date.fromisoformat(period.text.strip()[:10])

        base = parse_code(_child_text(observation, 'baseCurrency') or self.BASE_CURRENCY)
        target = parse_code(_child_text(observation, 'targetCurrency'))
        if self.BASE_CURRENCY not in (base, target) or base == target:
            raise RecordSkipped(f'{base}/{target} is not quoted against {self.BASE_CURRENCY}')

        factor = parse_factor(_child_text(observation, 'value'))
        return self._record(base, target, on, factor)
