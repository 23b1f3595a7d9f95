import pytest

from giftwheel.wheel.models import GiftEvent, ResolveOutcome
from giftwheel.wheel.resolver import ComboResolver


def gift(repeat_count, coin_value, username="alice", gift_id="5655"):
    return GiftEvent(username=username, gift_id=gift_id, repeat_count=repeat_count, coin_value=coin_value)


@pytest.fixture
def sink():
    return []


@pytest.fixture
def resolver(sink, scheduler):
    return ComboResolver(sink.append, scheduler)


def test_low_value_gift_is_processed_immediately(resolver, sink):
    assert resolver.submit(gift(1, 5)) is ResolveOutcome.PROCESSED

    assert len(sink) == 1
    assert sink[0].repeat_delta == 1
    assert sink[0].coin_delta == 5
    assert resolver.get_combo("alice", "5655").processed is True


def test_exact_redelivery_within_window_is_dropped(resolver, sink, scheduler):
    assert resolver.submit(gift(1, 5)) is ResolveOutcome.PROCESSED
    scheduler.advance(4999)
    assert resolver.submit(gift(1, 5)) is ResolveOutcome.DUPLICATE

    assert len(sink) == 1


def test_combo_burst_collapses_into_one_allocation(resolver, sink, scheduler):
    assert resolver.submit(gift(1, 1000)) is ResolveOutcome.SCHEDULED
    scheduler.advance(500)
    assert resolver.submit(gift(5, 5000)) is ResolveOutcome.SCHEDULED
    scheduler.advance(500)
    assert resolver.submit(gift(5, 5000)) is ResolveOutcome.DUPLICATE

    assert sink == []
    scheduler.advance(5000)

    assert len(sink) == 1
    assert sink[0].event.repeat_count == 5
    assert sink[0].repeat_delta == 5
    assert sink[0].coin_delta == 5000
    assert resolver.stats()["pending"] == 0
    assert resolver.get_combo("alice", "5655").processed is True


def test_upgrade_restarts_the_combo_delay(resolver, sink, scheduler):
    resolver.submit(gift(1, 1000))
    scheduler.advance(4000)
    resolver.submit(gift(3, 3000))
    scheduler.advance(4000)

    # the first timer would have fired by now had it not been cancelled
    assert sink == []

    scheduler.advance(1000)
    assert [g.event.repeat_count for g in sink] == [3]


def test_stale_update_is_dropped_without_touching_the_record(resolver, sink, scheduler):
    resolver.submit(gift(5, 50))
    scheduler.advance(100)

    assert resolver.submit(gift(3, 30)) is ResolveOutcome.STALE

    record = resolver.get_combo("alice", "5655")
    assert record.repeat_count == 5
    assert record.coin_value == 50
    assert len(sink) == 1


def test_trailing_duplicate_after_finalize_is_dropped(resolver, sink, scheduler):
    resolver.submit(gift(2, 500))
    scheduler.advance(5000)
    assert len(sink) == 1

    # same counts, new fingerprint window; still the same combo
    scheduler.advance(1000)
    assert resolver.submit(gift(2, 500)) is ResolveOutcome.DUPLICATE
    assert len(sink) == 1


def test_high_value_gift_without_upgrade_fires_once(resolver, sink, scheduler):
    resolver.submit(gift(1, 200))
    scheduler.advance(60000)

    assert len(sink) == 1
    assert scheduler.pending == []


def test_upgrade_after_immediate_processing_allocates_only_the_difference(resolver, sink, scheduler):
    resolver.submit(gift(1, 10))
    scheduler.advance(500)
    assert resolver.submit(gift(4, 40)) is ResolveOutcome.PROCESSED

    assert [(g.repeat_delta, g.coin_delta) for g in sink] == [(1, 10), (3, 30)]


def test_expired_combo_starts_fresh(resolver, sink, scheduler):
    resolver.submit(gift(5, 50))
    scheduler.advance(30000)

    assert resolver.submit(gift(1, 10)) is ResolveOutcome.PROCESSED
    assert resolver.get_combo("alice", "5655").repeat_count == 1
    assert sink[-1].repeat_delta == 1


def test_independent_keys_do_not_interfere(resolver, sink, scheduler):
    resolver.submit(gift(1, 1000, username="alice"))
    resolver.submit(gift(1, 1000, username="bob"))
    resolver.submit(gift(1, 1000, username="alice", gift_id="other"))
    scheduler.advance(5000)

    assert sorted(g.event.combo_key for g in sink) == [
        ("alice", "5655"),
        ("alice", "other"),
        ("bob", "5655"),
    ]


def test_purge_removes_expired_state(resolver, scheduler):
    resolver.submit(gift(1, 5))
    assert resolver.stats()["fingerprints"] == 1

    scheduler.advance(5000)
    assert resolver.purge_expired() == (1, 0)

    scheduler.advance(25000)
    assert resolver.purge_expired() == (0, 1)
    assert resolver.stats() == {"fingerprints": 0, "combos": 0, "pending": 0}


def test_flush_pending_finalizes_waiting_combos(resolver, sink, scheduler):
    resolver.submit(gift(2, 400))
    assert resolver.flush_pending() == 1
    assert len(sink) == 1

    scheduler.advance(10000)
    assert len(sink) == 1


def test_sink_error_on_immediate_path_propagates(scheduler):
    def failing_sink(_gift):
        raise RuntimeError("store unavailable")

    resolver = ComboResolver(failing_sink, scheduler)
    with pytest.raises(RuntimeError):
        resolver.submit(gift(1, 5))
    assert resolver.get_combo("alice", "5655").processed is False


def test_replaced_combo_timer_does_not_finalize_the_new_combo(sink, scheduler):
    resolver = ComboResolver(sink.append, scheduler, combo_delay_ms=40000, combo_lifetime_ms=30000)

    resolver.submit(gift(1, 1000))
    scheduler.advance(30000)
    assert resolver.submit(gift(1, 2000)) is ResolveOutcome.SCHEDULED
    assert [g.coin_delta for g in sink] == [1000]

    # the first combo's timer was due at 40000 and must stay silent
    scheduler.advance(10000)
    assert len(sink) == 1
    assert resolver.stats()["pending"] == 1

    scheduler.advance(30000)
    assert len(sink) == 2
    assert sink[1].event.coin_value == 2000


def test_timer_for_superseded_handle_is_ignored(resolver, sink, scheduler):
    resolver.submit(gift(1, 1000))
    first_handle = resolver.state.pending[("alice", "5655")].handle
    scheduler.advance(100)
    resolver.submit(gift(2, 2000))

    resolver._on_timer(("alice", "5655"), first_handle)

    assert sink == []
    assert resolver.stats()["pending"] == 1
