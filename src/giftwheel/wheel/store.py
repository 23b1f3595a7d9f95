"""In-memory state manager for the gift wheel backend."""

from __future__ import annotations

from collections import defaultdict, deque
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from giftwheel.utils.logger import get_logger
from giftwheel.utils.persistence import JsonFileStore
from giftwheel.wheel import leaderboard
from giftwheel.wheel.models import LeaderboardEntry, LiveFeedItem, UserAccount, WheelSettings

logger = get_logger(__name__)

# Persisted state layout
ROSTER_KEY = "roster"
MAX_LIMIT_KEY = "max_limit"
MIN_COINS_KEY = "min_coins"
TARGET_GIFT_KEY = "target_gift"
COIN_BALANCES_KEY = "coin_balances"
USER_STATS_KEY = "user_stats"

_UNSET = object()


class WheelStore:
    """Authoritative state for accounts, settings and the live feed.

    Mutations are written through to the key/value store immediately. When a
    write fails the in-memory copy keeps serving for the rest of the process.
    ``pipeline_lock`` serializes the whole gift pipeline (resolver, allocation,
    roster) so that timer callbacks and request handlers never interleave.
    """

    def __init__(
        self,
        persistence: JsonFileStore,
        *,
        defaults: Optional[WheelSettings] = None,
        feed_capacity: int = 50,
    ) -> None:
        self.persistence = persistence
        self.pipeline_lock = RLock()
        self._listeners: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        self._feed_capacity = feed_capacity
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._accounts: Dict[str, UserAccount] = {}
        defaults = defaults or WheelSettings()
        self._settings = WheelSettings(
            max_limit=defaults.max_limit,
            min_coins=defaults.min_coins,
            target_gift=defaults.target_gift,
        )

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Callable[[Any], None]) -> None:
        with self.pipeline_lock:
            self._listeners[event_type].append(callback)
        logger.debug(f"[WheelStore] Adding listener for event_type={event_type}, callback={callback}")

    def emit(self, event_type: str, payload: Any) -> None:
        listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                logger.debug("Emitting %s event to listener", event_type)
                callback(payload)
            except Exception as exc:  # pragma: no cover
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------
    def load(self) -> None:
        """Restore settings and accounts from the persisted layout."""
        balances = self.persistence.get(COIN_BALANCES_KEY, {}) or {}
        stats = self.persistence.get(USER_STATS_KEY, {}) or {}
        with self.pipeline_lock:
            self._settings = WheelSettings(
                max_limit=max(0, int(self.persistence.get(MAX_LIMIT_KEY, self._settings.max_limit))),
                min_coins=max(0, int(self.persistence.get(MIN_COINS_KEY, self._settings.min_coins))),
                target_gift=str(self.persistence.get(TARGET_GIFT_KEY, self._settings.target_gift) or ""),
            )
            accounts: Dict[str, UserAccount] = {}
            for username in set(balances) | set(stats):
                entry = stats.get(username) or {}
                accounts[username] = UserAccount(
                    username=username,
                    coin_balance=int(balances.get(username, 0)),
                    total_coins=int(entry.get("totalCoins", 0)),
                    submissions=int(entry.get("submissions", 0)),
                )
            self._accounts = accounts
        logger.info(
            f"[WheelStore] Loaded {len(self._accounts)} accounts, settings={self._settings}"
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_settings(self) -> WheelSettings:
        with self.pipeline_lock:
            return WheelSettings(
                max_limit=self._settings.max_limit,
                min_coins=self._settings.min_coins,
                target_gift=self._settings.target_gift,
            )

    def update_settings(
        self,
        *,
        max_limit: Optional[int] = None,
        min_coins: Optional[int] = None,
        target_gift: Any = _UNSET,
    ) -> WheelSettings:
        with self.pipeline_lock:
            if max_limit is not None:
                if max_limit < 0:
                    raise ValueError("max_limit must be >= 0")
                self._settings.max_limit = max_limit
                self.persistence.set(MAX_LIMIT_KEY, max_limit)
            if min_coins is not None:
                if min_coins < 0:
                    raise ValueError("min_coins must be >= 0")
                self._settings.min_coins = min_coins
                self.persistence.set(MIN_COINS_KEY, min_coins)
            if target_gift is not _UNSET:
                self._settings.target_gift = (target_gift or "").strip()
                self.persistence.set(TARGET_GIFT_KEY, self._settings.target_gift)
            settings = self.get_settings()

        logger.info(
            "Settings updated: max limit %s, min coins %s (%s mode), target gift %r",
            settings.max_limit or "none", settings.min_coins, settings.mode.value, settings.target_gift,
        )
        self.emit("config_update", self.serialize_settings(settings))
        return settings

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def get_account(self, username: str, *, create: bool = False) -> Optional[UserAccount]:
        with self.pipeline_lock:
            account = self._accounts.get(username)
            if account is None and create:
                account = UserAccount(username=username)
                self._accounts[username] = account
            return account

    def get_accounts(self) -> List[UserAccount]:
        with self.pipeline_lock:
            return list(self._accounts.values())

    def save_accounts(self) -> None:
        """Persist balances and statistics, then publish the new leaderboard."""
        with self.pipeline_lock:
            balances = {name: acc.coin_balance for name, acc in self._accounts.items()}
            stats = {
                name: {"totalCoins": acc.total_coins, "submissions": acc.submissions}
                for name, acc in self._accounts.items()
            }
            self.persistence.set(COIN_BALANCES_KEY, balances)
            self.persistence.set(USER_STATS_KEY, stats)
        self.emit("leaderboard_update", self.serialize_leaderboard(self.get_leaderboard()))

    def reset_statistics(self) -> int:
        with self.pipeline_lock:
            count = len(self._accounts)
            self._accounts = {}
        self.save_accounts()
        logger.info("[WheelStore] Reset statistics for %d accounts", count)
        return count

    def get_leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        return leaderboard.rank(self.get_accounts(), limit=limit)

    # ------------------------------------------------------------------
    # Live feed
    # ------------------------------------------------------------------
    def add_live_feed(
        self,
        *,
        event_type: str,
        message: str,
        details: Dict[str, Any] | None = None,
        severity: str = "info",
    ) -> LiveFeedItem:
        feed_item = LiveFeedItem(
            event_type=event_type,
            message=message,
            details=dict(details or {}),
            severity=severity,
        )
        with self.pipeline_lock:
            self._live_feed.append(feed_item)
        logger.info("[WheelStore] %s: %s", event_type, message)
        self.emit("live_feed", self.serialize_feed_item(feed_item))
        return feed_item

    def get_live_feed(self, limit: Optional[int] = None) -> List[LiveFeedItem]:
        with self.pipeline_lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:]
        return items

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    @staticmethod
    def serialize_settings(settings: WheelSettings) -> dict:
        return {
            "maxLimit": settings.max_limit,
            "minCoins": settings.min_coins,
            "targetGift": settings.target_gift,
            "mode": settings.mode.value,
        }

    @staticmethod
    def serialize_leaderboard(entries: List[LeaderboardEntry]) -> dict:
        return {
            "leaderboard": [
                {
                    "rank": entry.rank,
                    "username": entry.username,
                    "totalCoins": entry.total_coins,
                    "submissions": entry.submissions,
                }
                for entry in entries
            ],
            "totalUsers": len(entries),
        }

    @staticmethod
    def serialize_account(account: UserAccount) -> dict:
        return {
            "username": account.username,
            "coinBalance": account.coin_balance,
            "totalCoins": account.total_coins,
            "submissions": account.submissions,
        }

    @staticmethod
    def serialize_feed_item(item: LiveFeedItem) -> dict:
        return {
            "id": item.get_item_id(),
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "severity": item.severity,
            "timestamp": item.created_at.isoformat(),
        }
