import json

from giftwheel.utils.persistence import JsonFileStore
from giftwheel.wheel.models import WheelSettings
from giftwheel.wheel.roster import ParticipantRoster
from giftwheel.wheel.store import WheelStore


def test_values_survive_a_reload(tmp_path):
    path = tmp_path / "state.json"
    store = JsonFileStore(path)
    assert store.set("roster", ["alice", "bob"]) is True
    assert store.set("min_coins", 100) is True

    reopened = JsonFileStore(path)
    assert reopened.get("roster") == ["alice", "bob"]
    assert reopened.get("min_coins") == 100
    assert reopened.get("missing", "fallback") == "fallback"


def test_get_returns_a_copy(tmp_path):
    store = JsonFileStore(tmp_path / "state.json")
    store.set("roster", ["alice"])

    store.get("roster").append("mallory")

    assert store.get("roster") == ["alice"]


def test_non_json_values_are_refused(tmp_path):
    store = JsonFileStore(tmp_path / "state.json")
    assert store.set("bad", {1, 2}) is False
    assert "bad" not in store.keys()


def test_delete(tmp_path):
    path = tmp_path / "state.json"
    store = JsonFileStore(path)
    store.set("a", 1)
    assert store.delete("a") is True
    assert json.loads(path.read_text()) == {}


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")

    store = JsonFileStore(path)

    assert store.keys() == []


def test_write_failure_keeps_in_memory_value(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    store = JsonFileStore(blocker / "state.json")

    assert store.set("roster", ["alice"]) is False
    assert store.get("roster") == ["alice"]


def test_wheel_state_round_trip(tmp_path):
    path = tmp_path / "wheel_state.json"
    store = WheelStore(JsonFileStore(path))
    store.load()
    roster = ParticipantRoster(store)
    roster.load()

    store.update_settings(max_limit=10, min_coins=100, target_gift="Rose")
    roster.extend("alice", 2)
    account = store.get_account("alice", create=True)
    account.coin_balance = 20
    account.total_coins = 220
    account.submissions = 2
    store.save_accounts()

    restored = WheelStore(JsonFileStore(path), defaults=WheelSettings(max_limit=99))
    restored.load()
    restored_roster = ParticipantRoster(restored)
    restored_roster.load()

    settings = restored.get_settings()
    assert (settings.max_limit, settings.min_coins, settings.target_gift) == (10, 100, "Rose")
    assert restored_roster.entries() == ["alice", "alice"]
    alice = restored.get_account("alice")
    assert (alice.coin_balance, alice.total_coins, alice.submissions) == (20, 220, 2)

    on_disk = json.loads(path.read_text())
    assert on_disk["coin_balances"] == {"alice": 20}
    assert on_disk["user_stats"] == {"alice": {"totalCoins": 220, "submissions": 2}}


def test_defaults_apply_when_nothing_was_saved(tmp_path):
    store = WheelStore(JsonFileStore(tmp_path / "fresh.json"), defaults=WheelSettings(max_limit=25, min_coins=50))
    store.load()

    settings = store.get_settings()
    assert settings.max_limit == 25
    assert settings.min_coins == 50
    assert settings.mode.value == "coin"
