from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from domain.exceptions.currency import InvalidCurrencyError, RateNotFoundError, raise_for_lookup
from domain.models.currency import ChainLeg, ConversionChain, CurrencyPair, ProviderRegistration, RateRecord
from domain.models.results import InvalidPair, NoRateAvailable

DAY = date(2025, 3, 10)


@pytest.mark.parametrize('factor', [Decimal('0'), Decimal('-1.5'), Decimal('NaN'), Decimal('Infinity')])
def test_rate_record_rejects_non_positive_or_non_finite_factor(factor):
    with pytest.raises(ValueError):
        RateRecord(CurrencyPair('USD', 'EUR'), DAY, factor, 'FRB')


def test_rate_record_rejects_float_factor():
    with pytest.raises(ValueError, match='Decimal'):
        RateRecord(CurrencyPair('USD', 'EUR'), DAY, 0.85, 'FRB')


def test_rate_record_equality_ignores_fetch_time(make_record):
    first = make_record('USD', 'EUR', DAY, '0.85', fetched_at=datetime(2025, 3, 10, tzinfo=UTC))
    second = make_record('USD', 'EUR', DAY, '0.85', fetched_at=datetime(2025, 3, 11, tzinfo=UTC))

    assert first == second
    assert first.key == ('FRB', CurrencyPair('USD', 'EUR'), DAY)


def test_currency_pair_is_directional():
    pair = CurrencyPair('USD', 'EUR')

    assert pair.reversed() == CurrencyPair('EUR', 'USD')
    assert pair != pair.reversed()
    assert str(pair) == 'USD/EUR'


def test_registration_without_pairs_supports_everything():
    open_registration = ProviderRegistration('FRB', 10)
    limited = ProviderRegistration('ECB', 5, frozenset({CurrencyPair('EUR', 'USD')}))

    assert open_registration.supports(CurrencyPair('USD', 'JPY'))
    assert limited.supports(CurrencyPair('EUR', 'USD'))
    assert not limited.supports(CurrencyPair('USD', 'EUR'))


def test_inverted_leg_swaps_direction_and_takes_reciprocal(make_record):
    leg = ChainLeg(make_record('USD', 'EUR', DAY, '0.8'), inverted=True)

    assert leg.source == 'EUR'
    assert leg.destination == 'USD'
    assert leg.factor() == Decimal('1.25')


def test_chain_multiplies_leg_factors_without_intermediate_rounding(make_record):
    chain = ConversionChain((
        ChainLeg(make_record('USD', 'EUR', DAY, '1.1')),
        ChainLeg(make_record('EUR', 'GBP', date(2025, 3, 7), '1.2', provider_id='ECB')),
        ChainLeg(make_record('GBP', 'CHF', DAY, '1.3')),
    ))

    assert chain.factor() == Decimal('1.716')
    assert chain.currencies == ['USD', 'EUR', 'GBP', 'CHF']
    assert chain.oldest_date == date(2025, 3, 7)

    record = chain.as_record()
    assert record.pair == CurrencyPair('USD', 'CHF')
    assert record.provider_id == 'chain:FRB>ECB>FRB'
    assert record.date == date(2025, 3, 7)
    assert record.is_composed
    assert len(record.chain) == 3


def test_chain_rejects_disconnected_legs(make_record):
    with pytest.raises(ValueError, match='broken chain'):
        ConversionChain((
            ChainLeg(make_record('USD', 'EUR', DAY, '0.85')),
            ChainLeg(make_record('GBP', 'CHF', DAY, '1.1')),
        ))


def test_chain_needs_at_least_one_leg():
    with pytest.raises(ValueError):
        ConversionChain(())


def test_raise_for_lookup_maps_results_to_exceptions(make_record):
    record = make_record('USD', 'EUR', DAY, '0.85')

    assert raise_for_lookup(record) is record
    with pytest.raises(InvalidCurrencyError, match='Invalid currency pair US/EUR'):
        raise_for_lookup(InvalidPair('US', 'EUR', 'too short'))
    with pytest.raises(RateNotFoundError, match='No rate for USD/EUR on latest'):
        raise_for_lookup(NoRateAvailable(CurrencyPair('USD', 'EUR'), None))
