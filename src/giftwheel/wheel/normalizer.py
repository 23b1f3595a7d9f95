"""Turns heterogeneous upstream webhook bodies into GiftEvent instances.

Upstream tools name the same field in many ways. Each attribute has an ordered
table of candidate names; the first usable value wins, looking at the top level
first and then one level down under ``data`` and ``user``.
"""

from __future__ import annotations

import math
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from giftwheel.utils.logger import get_logger
from giftwheel.wheel.models import GiftEvent

logger = get_logger(__name__)


USERNAME_FIELDS = (
    "uniqueId", "unique_id",
    "username", "user", "userName", "user_name",
    "nickname", "nick", "displayName", "display_name",
    "name", "screenName", "screen_name",
)

COIN_FIELDS = (
    "diamondCount", "diamond_count", "diamonds",
    "coinValue", "coin_value", "coins", "coinCount", "coin_count",
    "value", "price", "cost",
)

COUNT_FIELDS = (
    "giftCount", "gift_count", "count",
    "quantity", "amount", "combo",
    "repeatCount", "repeat_count", "num",
)

GIFT_ID_FIELDS = ("giftId", "gift_id", "giftID")

GIFT_NAME_FIELDS = ("giftName", "gift_name", "giftname")

NESTED_SOURCES = ("data", "user")

UNKNOWN_GIFT_ID = "unknown"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class MalformedPayloadError(ValueError):
    """Raised when a webhook body cannot be interpreted as a gift event."""


def as_positive_int(value: Any) -> Optional[int]:
    """Coerce a candidate numeric field; None when absent, unparsable or <= 0."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        number = int(value)
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        if not match:
            return None
        number = int(match.group(1))
    else:
        return None
    return number if number > 0 else None


def as_text(value: Any) -> Optional[str]:
    """Coerce a candidate name field; nested objects are never names."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


# attribute, candidate fields, coercer
EXTRACTORS: Tuple[Tuple[str, Tuple[str, ...], Callable[[Any], Any]], ...] = (
    ("username", USERNAME_FIELDS, as_text),
    ("coin_value", COIN_FIELDS, as_positive_int),
    ("repeat_count", COUNT_FIELDS, as_positive_int),
    ("gift_id", GIFT_ID_FIELDS, as_text),
    ("gift_name", GIFT_NAME_FIELDS, as_text),
)


def candidate_sources(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    sources = [payload]
    for key in NESTED_SOURCES:
        nested = payload.get(key)
        if isinstance(nested, dict):
            sources.append(nested)
    return sources


def extract_first(sources: Iterable[Dict[str, Any]], fields: Iterable[str], coerce: Callable[[Any], Any]) -> Any:
    for source in sources:
        for name in fields:
            if name not in source:
                continue
            value = coerce(source[name])
            if value is not None:
                return value
    return None


def extract_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Run the extractor table over a payload; missing attributes map to None."""
    sources = candidate_sources(payload)
    return {attr: extract_first(sources, fields, coerce) for attr, fields, coerce in EXTRACTORS}


def normalize_payload(payload: Any, *, received_at: Optional[int] = None) -> GiftEvent:
    """Build a GiftEvent from a decoded webhook body."""
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"expected a JSON object, got {type(payload).__name__}")

    if received_at is None:
        received_at = int(time.time() * 1000)

    found = extract_fields(payload)

    username = found["username"]
    if not username:
        username = f"User_{received_at}"
        logger.warning("Could not find username in payload, using fallback %s", username)

    gift_name = found["gift_name"] or ""
    gift_id = found["gift_id"] or gift_name or UNKNOWN_GIFT_ID

    event = GiftEvent(
        username=username,
        gift_id=gift_id,
        repeat_count=found["repeat_count"] or 1,
        coin_value=found["coin_value"] or 0,
        gift_name=gift_name,
        raw_payload=payload,
        received_at=received_at,
    )
    logger.info(
        "Extracted username: %s, gift: %s, gift count: %s, coin value: %s",
        event.username, event.gift_id, event.repeat_count, event.coin_value,
    )
    return event
