"""Core data models for the gift wheel backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

if TYPE_CHECKING:
    from giftwheel.wheel.scheduler import TaskHandle


ComboKey = Tuple[str, str]
Fingerprint = Tuple[str, str, int, int]


class AllocationMode(str, Enum):
    """Economic policy used to turn gifts into wheel entries."""

    COUNT = "count"
    COIN = "coin"


class ResolveOutcome(str, Enum):
    """What the combo resolver decided for one inbound gift event."""

    DUPLICATE = "duplicate"
    STALE = "stale"
    SCHEDULED = "scheduled"
    PROCESSED = "processed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class GiftEvent:
    """One normalized upstream gift notification. Never mutated."""

    username: str
    gift_id: str
    repeat_count: int = 1
    coin_value: int = 0
    gift_name: str = ""
    raw_payload: Any = field(default=None, compare=False, repr=False)
    received_at: int = 0

    @property
    def combo_key(self) -> ComboKey:
        return (self.username, self.gift_id)

    @property
    def fingerprint(self) -> Fingerprint:
        return (self.username, self.gift_id, self.coin_value, self.repeat_count)


@dataclass
class ComboRecord:
    """Highest known state of an in-progress or recently finished combo."""

    coin_value: int
    repeat_count: int
    last_updated_at: float
    processed: bool = False
    allocated_repeat_count: int = 0
    allocated_coin_value: int = 0


@dataclass
class PendingAllocation:
    """A combo cooling down while it waits for a possible upgrade."""

    event: GiftEvent
    handle: "TaskHandle"


@dataclass(frozen=True)
class CanonicalGift:
    """Resolver output: the final combo values and the part not yet allocated."""

    event: GiftEvent
    repeat_delta: int
    coin_delta: int


@dataclass
class UserAccount:
    """Per-user balance and lifetime statistics."""

    username: str
    coin_balance: int = 0
    total_coins: int = 0
    submissions: int = 0


@dataclass
class WheelSettings:
    """Process-wide settings, mutated only through WheelStore.update_settings."""

    max_limit: int = 0
    min_coins: int = 0
    target_gift: str = ""

    @property
    def mode(self) -> AllocationMode:
        return AllocationMode.COIN if self.min_coins > 0 else AllocationMode.COUNT


@dataclass
class AllocationResult:
    username: str
    mode: AllocationMode
    entries_requested: int
    entries_added: int
    coin_balance: int
    total_coins: int
    submissions: int


@dataclass
class DrawResult:
    """Winner chosen before any animation starts, plus where the wheel stops."""

    index: int
    winner: str
    participant_count: int
    rotation: float
    duration_ms: int
    drawn_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class LeaderboardEntry:
    rank: int
    username: str
    total_coins: int
    submissions: int


@dataclass
class LiveFeedItem:
    """Entry pushed to the frontend status log."""

    event_type: str
    message: str
    details: Dict[str, Any]
    created_at: datetime = field(default_factory=datetime.utcnow)
    severity: str = "info"

    def get_item_id(self) -> str:
        return f"{self.created_at.isoformat()}-{self.event_type}"


@dataclass
class IngestResult:
    event: GiftEvent
    outcome: ResolveOutcome
    detail: Optional[str] = None
