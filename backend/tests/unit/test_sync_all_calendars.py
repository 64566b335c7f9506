from datetime import timedelta

import pytest

from calsync.domain.models import CalendarInfo, CalendarSyncRecord, EventListing
from calsync.errors import AuthorizationRequiredError, TransientProviderError
from calsync.usecases.sync_all_calendars import AUTH_REQUIRED_MESSAGE, SyncAllCalendarsUseCase
from fakes import FakeProvider, event

INTERVAL = timedelta(minutes=15)


def calendars(n):
    return [CalendarInfo(id=f"cal{i}", name=f"Calendar {i}") for i in range(n)]


@pytest.fixture
def sleeps():
    return []


def make_use_case(provider, cache_repo, clock, sleeps):
    return SyncAllCalendarsUseCase(lambda: provider, cache_repo, sleep=sleeps.append, clock=clock)


def test_first_pass_full_syncs_every_calendar(cache_repo, clock, sleeps):
    cals = calendars(3)
    provider = FakeProvider(cals, full={c.id: EventListing(events=[event(f"{c.id}-e", clock())]) for c in cals})
    res = make_use_case(provider, cache_repo, clock, sleeps).execute(INTERVAL)

    assert (res.full, res.incremental, res.unchanged, res.failed) == (3, 0, 0, 0)
    for c in cals:
        record = cache_repo.get(c.id)
        assert record.sync_token == f"tok-{c.id}"
        assert [e.id for e in record.events] == [f"{c.id}-e"]
    assert cache_repo.get_global_marker() == clock()


def test_rate_limit_delays_escalate_every_fifth_calendar(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(7))
    make_use_case(provider, cache_repo, clock, sleeps).execute(INTERVAL)
    assert sleeps == [1.0, 1.0, 1.0, 1.0, 2.0, 1.0]


def test_back_to_back_passes_make_no_event_calls(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(4))
    uc = make_use_case(provider, cache_repo, clock, sleeps)
    uc.execute(INTERVAL)
    provider.calls.clear()
    sleeps.clear()

    res = uc.execute(INTERVAL)

    assert res.unchanged == 4
    assert provider.event_calls() == []
    assert sleeps == []


def test_pass_after_interval_is_incremental(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(2))
    uc = make_use_case(provider, cache_repo, clock, sleeps)
    uc.execute(INTERVAL)
    clock.advance(minutes=15)
    res = uc.execute(INTERVAL)
    assert res.incremental == 2
    assert cache_repo.get_global_marker() == clock()


def test_one_failing_calendar_does_not_abort_the_pass(cache_repo, clock, sleeps):
    cals = calendars(3)
    provider = FakeProvider(cals, full={"cal1": TransientProviderError("boom")})
    uc = make_use_case(provider, cache_repo, clock, sleeps)

    res = uc.execute(INTERVAL)

    assert res.full == 2 and res.failed == 1
    assert cache_repo.get("cal0") is not None
    assert cache_repo.get("cal1") is None
    assert cache_repo.get("cal2") is not None
    assert uc.last_error == "1 of 3 calendars failed to sync"
    assert cache_repo.get_global_marker() == clock()


def test_unexpected_error_is_contained_to_its_calendar(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(2), full={"cal0": KeyError("start")})
    res = make_use_case(provider, cache_repo, clock, sleeps).execute(INTERVAL)
    assert res.failed == 1 and res.full == 1


def test_unauthorized_enumeration_aborts_pass(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(2))
    provider.list_calendars_error = AuthorizationRequiredError()
    uc = make_use_case(provider, cache_repo, clock, sleeps)

    with pytest.raises(AuthorizationRequiredError):
        uc.execute(INTERVAL)

    assert provider.event_calls() == []
    assert cache_repo.get_global_marker() is None
    assert uc.last_error == AUTH_REQUIRED_MESSAGE
    assert uc.in_progress is False


def test_missing_credential_aborts_pass(cache_repo, clock, sleeps):
    def no_credential():
        raise AuthorizationRequiredError("No Google credential available")

    uc = SyncAllCalendarsUseCase(no_credential, cache_repo, sleep=sleeps.append, clock=clock)
    with pytest.raises(AuthorizationRequiredError):
        uc.execute(INTERVAL)
    assert uc.last_error == AUTH_REQUIRED_MESSAGE


def test_unauthorized_mid_pass_stops_remaining_calendars(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(3), full={"cal1": AuthorizationRequiredError()})
    with pytest.raises(AuthorizationRequiredError):
        make_use_case(provider, cache_repo, clock, sleeps).execute(INTERVAL)
    assert provider.event_calls("cal2") == []
    assert cache_repo.get("cal0") is not None


def test_transient_enumeration_failure_aborts_without_marker(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(2))
    provider.list_calendars_error = TransientProviderError("timeout")
    uc = make_use_case(provider, cache_repo, clock, sleeps)
    res = uc.execute(INTERVAL)
    assert res.aborted is True
    assert uc.last_error == "timeout"
    assert cache_repo.get_global_marker() is None


def test_fresh_pass_clears_tokens_and_full_syncs(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(2))
    uc = make_use_case(provider, cache_repo, clock, sleeps)
    uc.execute(INTERVAL)

    res = uc.execute(INTERVAL, fresh=True)

    assert res.full == 2
    assert all(cache_repo.get(c).sync_token for c in ("cal0", "cal1"))


def test_concurrent_trigger_is_a_noop(cache_repo, clock, sleeps):
    nested = []

    class ReentrantProvider(FakeProvider):
        def list_calendars(self):
            nested.append(uc.execute(INTERVAL))
            return super().list_calendars()

    provider = ReentrantProvider(calendars(1))
    uc = make_use_case(provider, cache_repo, clock, sleeps)

    res = uc.execute(INTERVAL)

    assert res.skipped is False and res.full == 1
    assert nested[0].skipped is True
    assert uc.in_progress is False


def test_success_clears_previous_error(cache_repo, clock, sleeps):
    provider = FakeProvider(calendars(1), full={"cal0": [TransientProviderError("x"), EventListing()]})
    uc = make_use_case(provider, cache_repo, clock, sleeps)
    uc.execute(INTERVAL)
    assert uc.last_error is not None
    uc.execute(INTERVAL)
    assert uc.last_error is None


def test_delay_escalation_counts_only_calendars_that_hit_the_network(cache_repo, clock, sleeps):
    cals = calendars(10)
    for cal in cals[:3]:
        cache_repo.put(CalendarSyncRecord(cal.id, cal.name, clock(), sync_token="t"))
    provider = FakeProvider(cals)

    res = make_use_case(provider, cache_repo, clock, sleeps).execute(INTERVAL)

    assert (res.unchanged, res.full) == (3, 7)
    # no pause after fresh calendars; the fifth network-bound calendar gets the long pause
    assert sleeps == [1.0, 1.0, 1.0, 1.0, 2.0, 1.0]
