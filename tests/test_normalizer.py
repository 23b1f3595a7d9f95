import pytest

from giftwheel.wheel.normalizer import (
    MalformedPayloadError,
    as_positive_int,
    as_text,
    normalize_payload,
)


def test_typical_platform_payload():
    event = normalize_payload(
        {
            "username": "alice",
            "giftId": "5655",
            "giftName": "Rose",
            "coins": "1",
            "repeatCount": "5",
        },
        received_at=1700000000000,
    )

    assert event.username == "alice"
    assert event.gift_id == "5655"
    assert event.gift_name == "Rose"
    assert event.repeat_count == 5
    assert event.coin_value == 1
    assert event.received_at == 1700000000000
    assert event.combo_key == ("alice", "5655")
    assert event.fingerprint == ("alice", "5655", 1, 5)


def test_unique_id_wins_over_nickname():
    event = normalize_payload({"nickname": "Alice ✨", "uniqueId": "alice_01"})
    assert event.username == "alice_01"


def test_first_usable_value_wins_in_table_order():
    # diamondCount outranks coins; giftCount outranks repeatCount
    event = normalize_payload(
        {"username": "bob", "coins": 10, "diamondCount": 25, "repeatCount": 9, "giftCount": 3}
    )
    assert event.coin_value == 25
    assert event.repeat_count == 3


def test_unusable_values_fall_through_to_next_field():
    event = normalize_payload(
        {"username": "  ", "nickname": "carol", "diamondCount": "abc", "coins": "40", "count": 0, "quantity": 2}
    )
    assert event.username == "carol"
    assert event.coin_value == 40
    assert event.repeat_count == 2


def test_nested_data_and_user_objects_are_searched():
    event = normalize_payload(
        {
            "event": "gift",
            "user": {"uniqueId": "dave"},
            "data": {"giftId": 7934, "giftName": "Galaxy", "diamondCount": 1000, "repeatCount": 2},
        }
    )
    assert event.username == "dave"
    assert event.gift_id == "7934"
    assert event.coin_value == 1000
    assert event.repeat_count == 2


def test_top_level_fields_take_precedence_over_nested():
    event = normalize_payload({"username": "erin", "data": {"username": "someone-else", "coins": 5}})
    assert event.username == "erin"
    assert event.coin_value == 5


def test_defaults_when_fields_are_missing():
    event = normalize_payload({"username": "frank"})
    assert event.repeat_count == 1
    assert event.coin_value == 0
    assert event.gift_id == "unknown"
    assert event.gift_name == ""


def test_gift_name_stands_in_for_missing_gift_id():
    event = normalize_payload({"username": "gina", "giftName": "Rose"})
    assert event.gift_id == "Rose"


def test_fallback_username_uses_receive_time():
    event = normalize_payload({"coins": 5}, received_at=1234)
    assert event.username == "User_1234"


def test_raw_payload_is_kept_but_not_compared():
    body = {"username": "hank", "coins": 1}
    event = normalize_payload(body, received_at=1)
    assert event.raw_payload is body
    assert event == normalize_payload({"username": "hank", "coins": "1", "extra": True}, received_at=1)


@pytest.mark.parametrize("payload", [[], "gift", 42, None])
def test_non_object_bodies_are_rejected(payload):
    with pytest.raises(MalformedPayloadError):
        normalize_payload(payload)


@pytest.mark.parametrize(
    "value, expected",
    [
        (5, 5),
        (2.9, 2),
        ("12", 12),
        (" 7 coins", 7),
        ("0", None),
        (-3, None),
        ("x1", None),
        (True, None),
        (None, None),
        ({"value": 1}, None),
    ],
)
def test_as_positive_int(value, expected):
    assert as_positive_int(value) == expected


def test_as_text_rejects_objects_and_blank_strings():
    assert as_text({"uniqueId": "x"}) is None
    assert as_text("   ") is None
    assert as_text(" ivy ") == "ivy"
    assert as_text(123) == "123"


@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
def test_non_finite_numbers_are_unusable(value):
    assert as_positive_int(value) is None


def test_non_finite_count_falls_back_to_default():
    event = normalize_payload({"username": "jo", "repeatCount": float("inf"), "coins": float("nan")})
    assert event.repeat_count == 1
    assert event.coin_value == 0
