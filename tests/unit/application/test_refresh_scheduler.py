import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from application.services.refresh_scheduler import AdapterState, RateRefreshScheduler
from application.services.registry import ProviderRegistry
from domain.exceptions.currency import UnknownFeedError
from domain.models.currency import CurrencyPair, ProviderRegistration
from domain.models.results import FetchErrorKind
from infrastructure.persistence.archive import RateArchive
from infrastructure.store.rate_store import RateStore

DAY = date(2025, 3, 13)
USD_EUR = CurrencyPair('USD', 'EUR')


@pytest.fixture
def store():
    return RateStore()


def build_registry(*adapters):
    registry = ProviderRegistry()
    for priority, adapter in enumerate(adapters):
        registry.register(ProviderRegistration(adapter.provider_id, priority), adapter)
    return registry


@pytest.mark.asyncio
async def test_successful_fetch_commits_and_schedules_next_interval(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB', refresh_interval=3600)
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'), skipped=2)
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    outcomes = await scheduler.tick()

    assert len(outcomes) == 1
    outcome = outcomes[0]
    assert outcome.was_successful
    assert outcome.state is AdapterState.COMMITTED
    assert outcome.commit.inserted == 1
    assert outcome.next_due == clock.now + timedelta(hours=1)

    record = store.latest('FRB', USD_EUR)
    assert str(record.factor) == '0.85'
    assert record.fetched_at == clock.now

    schedule = scheduler.schedules['FRB']
    assert schedule.state is AdapterState.IDLE
    assert schedule.history == [AdapterState.FETCHING, AdapterState.COMMITTED, AdapterState.IDLE]
    assert schedule.last_skipped == 2
    assert scheduler.due() == []

    clock.advance(hours=1)
    assert scheduler.due() == ['FRB']


@pytest.mark.asyncio
async def test_failed_fetch_keeps_cached_rates_and_backs_off(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB', refresh_interval=3600)
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    frb.fail_with()
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)
    await scheduler.tick()
    before = store.snapshot()

    clock.advance(hours=1)
    outcomes = await scheduler.tick()

    assert outcomes[0].state is AdapterState.FAILED
    assert outcomes[0].result.kind is FetchErrorKind.NETWORK
    assert store.snapshot() is before
    assert str(store.latest('FRB', USD_EUR).factor) == '0.85'

    schedule = scheduler.schedules['FRB']
    assert schedule.state is AdapterState.FAILED
    assert schedule.consecutive_failures == 1
    assert schedule.next_due == clock.now + timedelta(seconds=1800)

    clock.advance(seconds=1799)
    assert scheduler.due() == []


@pytest.mark.asyncio
async def test_success_after_failure_restores_normal_interval(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB', refresh_interval=3600)
    frb.fail_with()
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    await scheduler.tick()
    clock.advance(seconds=1800)
    outcomes = await scheduler.tick()

    schedule = scheduler.schedules['FRB']
    assert outcomes[0].was_successful
    assert schedule.consecutive_failures == 0
    assert schedule.last_error is None
    assert schedule.next_due == clock.now + timedelta(hours=1)
    assert schedule.history == [
        AdapterState.FETCHING,
        AdapterState.FAILED,
        AdapterState.IDLE,
        AdapterState.FETCHING,
        AdapterState.COMMITTED,
        AdapterState.IDLE,
    ]


@pytest.mark.asyncio
async def test_slow_fetch_is_abandoned_as_timeout(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB', refresh_interval=60, delay=1)
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    scheduler = RateRefreshScheduler(store, build_registry(frb), fetch_timeout=0.05, clock=clock)

    outcomes = await scheduler.tick()

    assert outcomes[0].state is AdapterState.FAILED
    assert outcomes[0].result.kind is FetchErrorKind.TIMEOUT
    assert scheduler.schedules['FRB'].state is AdapterState.FAILED
    assert not scheduler.is_in_flight('FRB')
    assert store.record_count() == 0


@pytest.mark.asyncio
async def test_one_failing_feed_does_not_block_another(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB')
    frb.fail_with('HTTP 503: Service Unavailable', FetchErrorKind.HTTP_STATUS)
    market = make_adapter('MARKET')
    market.succeed_with(make_record('USD', 'EUR', DAY, '0.90', provider_id='MARKET'))
    scheduler = RateRefreshScheduler(store, build_registry(frb, market), clock=clock)

    outcomes = await scheduler.tick()

    states = {outcome.provider_id: outcome.state for outcome in outcomes}
    assert states == {'FRB': AdapterState.FAILED, 'MARKET': AdapterState.COMMITTED}
    assert store.providers() == ['MARKET']


@pytest.mark.asyncio
async def test_feed_already_fetching_is_not_fetched_again(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB')
    frb.release = asyncio.Event()
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    first_tick = asyncio.create_task(scheduler.tick())
    while frb.calls == 0:
        await asyncio.sleep(0)

    assert scheduler.is_in_flight('FRB')
    assert scheduler.schedules['FRB'].state is AdapterState.FETCHING
    assert await scheduler.tick() == []
    assert await scheduler.refresh_now('FRB') is None

    frb.release.set()
    outcomes = await first_tick

    assert outcomes[0].was_successful
    assert frb.calls == 1
    assert not scheduler.is_in_flight('FRB')


@pytest.mark.asyncio
async def test_manual_refresh_during_tick_does_not_fetch_twice(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB')
    frb.release = asyncio.Event()
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.86'))
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    async def release_later():
        while frb.calls == 0:
            await asyncio.sleep(0)
        frb.release.set()

    tick_outcomes, manual_outcome, _ = await asyncio.gather(
        scheduler.tick(), scheduler.refresh_now('FRB'), release_later()
    )

    assert frb.calls == 1
    assert manual_outcome is None
    assert [outcome.provider_id for outcome in tick_outcomes] == ['FRB']
    assert not scheduler.is_in_flight('FRB')


@pytest.mark.asyncio
async def test_adapter_that_raises_is_treated_as_failure(store, clock, make_adapter):
    frb = make_adapter('FRB')
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    outcomes = await scheduler.tick()

    assert outcomes[0].state is AdapterState.FAILED
    assert outcomes[0].result.kind is FetchErrorKind.UNEXPECTED


@pytest.mark.asyncio
async def test_batch_with_foreign_records_is_rejected(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB')
    frb.succeed_with(
        make_record('USD', 'EUR', DAY, '0.85'),
        make_record('USD', 'GBP', DAY, '0.78', provider_id='MARKET'),
    )
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    outcomes = await scheduler.tick()

    assert outcomes[0].result.kind is FetchErrorKind.MALFORMED_PAYLOAD
    assert store.record_count() == 0


@pytest.mark.parametrize('interval, expected_backoff', [(3600, 1800), (40, 30), (10, 10)])
def test_backoff_is_shorter_than_interval_but_not_below_minimum(store, clock, make_adapter, interval, expected_backoff):
    frb = make_adapter('FRB', refresh_interval=interval)
    scheduler = RateRefreshScheduler(store, build_registry(frb), min_backoff=30, backoff_factor=0.5, clock=clock)

    schedule = scheduler.schedules['FRB']
    assert schedule.backoff == timedelta(seconds=expected_backoff)
    assert schedule.next_due == clock.now


@pytest.mark.asyncio
async def test_retention_is_applied_after_commit(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB')
    frb.succeed_with(*[make_record('USD', 'EUR', DAY - timedelta(days=n), '0.85') for n in range(5)])
    scheduler = RateRefreshScheduler(store, build_registry(frb), retention_days=2, clock=clock)

    await scheduler.tick()

    assert [r.date for r in store.series('FRB', USD_EUR)] == [DAY - timedelta(days=1), DAY]


@pytest.mark.asyncio
async def test_committed_batches_are_archived(store, clock, make_adapter, make_record):
    archive = AsyncMock(spec=RateArchive)
    frb = make_adapter('FRB', refresh_interval=60)
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    frb.fail_with()
    scheduler = RateRefreshScheduler(store, build_registry(frb), archive=archive, clock=clock)

    await scheduler.tick()
    clock.advance(minutes=1)
    await scheduler.tick()

    archive.save.assert_awaited_once()
    saved = archive.save.await_args.args[0]
    assert [record.fetched_at for record in saved] == [clock.now - timedelta(minutes=1)]


@pytest.mark.asyncio
async def test_refresh_now_unknown_feed(store, clock):
    scheduler = RateRefreshScheduler(store, ProviderRegistry(), clock=clock)

    with pytest.raises(UnknownFeedError):
        await scheduler.refresh_now('ECB')


@pytest.mark.asyncio
async def test_refresh_now_ignores_schedule(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB', refresh_interval=3600)
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.86'))
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)
    await scheduler.tick()

    outcome = await scheduler.refresh_now('FRB')

    assert outcome.was_successful
    assert outcome.commit.replaced == 1
    assert str(store.latest('FRB', USD_EUR).factor) == '0.86'


@pytest.mark.asyncio
async def test_run_loop_until_stopped(store, clock, make_adapter, make_record):
    frb = make_adapter('FRB')
    frb.succeed_with(make_record('USD', 'EUR', DAY, '0.85'))
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)

    task = asyncio.create_task(scheduler.run(poll_interval=0.01))
    while frb.calls == 0:
        await asyncio.sleep(0.01)
    scheduler.stop()
    await asyncio.wait_for(task, timeout=1)

    assert not scheduler.is_running
    assert store.record_count('FRB') == 1


@pytest.mark.asyncio
async def test_status_reports_each_feed(store, clock, make_adapter):
    frb = make_adapter('FRB', refresh_interval=3600)
    frb.fail_with('Request timed out: ReadTimeout', FetchErrorKind.TIMEOUT)
    scheduler = RateRefreshScheduler(store, build_registry(frb), clock=clock)
    await scheduler.tick()

    status = scheduler.status()

    assert status == [
        {
            'provider_id': 'FRB',
            'state': 'FAILED',
            'interval_seconds': 3600.0,
            'backoff_seconds': 1800.0,
            'next_due': clock.now + timedelta(seconds=1800),
            'consecutive_failures': 1,
            'last_attempt': clock.now,
            'last_success': None,
            'last_error': 'Request timed out: ReadTimeout',
            'last_skipped': 0,
            'last_committed': None,
            'in_flight': False,
        }
    ]
