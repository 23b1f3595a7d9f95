from giftwheel.wheel.roster import MAX_ENTRIES_PER_CALL


def test_append_trims_and_rejects_empty_names(roster):
    assert roster.append("  alice  ") is True
    assert roster.append("   ") is False
    assert roster.entries() == ["alice"]


def test_unbounded_roster(roster):
    assert roster.capacity() == 0
    assert roster.remaining() is None
    assert roster.extend("alice", 500) == 500
    assert roster.snapshot()["isFull"] is False


def test_extend_stops_at_capacity(store, roster):
    store.update_settings(max_limit=3)

    assert roster.extend("alice", 2) == 2
    assert roster.extend("bob", 5) == 1
    assert roster.append("carol") is False
    assert roster.entries() == ["alice", "alice", "bob"]
    assert roster.remaining() == 0


def test_lowering_capacity_keeps_existing_entries(store, roster):
    roster.extend("alice", 4)
    store.update_settings(max_limit=2)

    assert len(roster) == 4
    assert roster.remaining() == 0
    assert roster.snapshot() == {
        "participants": ["alice"] * 4,
        "count": 4,
        "maxLimit": 2,
        "isFull": True,
    }


def test_remove_one_drops_first_occurrence_only(roster):
    for name in ("alice", "bob", "alice"):
        roster.append(name)

    assert roster.remove_one("alice") is True
    assert roster.entries() == ["bob", "alice"]
    assert roster.remove_one("zoe") is False


def test_remove_last_and_clear(roster):
    assert roster.remove_last() is None
    roster.extend("alice", 2)
    roster.append("bob")

    assert roster.remove_last() == "bob"
    assert roster.clear() == 2
    assert roster.clear() == 0
    assert len(roster) == 0


def test_every_mutation_is_persisted_and_published(store, roster):
    updates = []
    store.add_listener("roster_update", updates.append)

    roster.extend("alice", 2)
    roster.remove_last()

    assert store.persistence.get("roster") == ["alice"]
    assert [u["count"] for u in updates] == [2, 1]


def test_oversized_extend_is_clamped(roster):
    assert roster.extend("alice", 1_000_000_000) == MAX_ENTRIES_PER_CALL
    assert len(roster) == MAX_ENTRIES_PER_CALL
