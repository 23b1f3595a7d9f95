"""
Entry Allocation - converts canonical gifts into wheel entries
"""

from giftwheel.utils.logger import get_logger
from giftwheel.wheel.models import AllocationMode, AllocationResult, CanonicalGift, UserAccount
from giftwheel.wheel.roster import ParticipantRoster
from giftwheel.wheel.store import WheelStore

logger = get_logger(__name__)


class EntryAllocator:
    """Applies the count or coin policy selected by the current min_coins.

    Count mode: every gift in the combo earns one entry.
    Coin mode: coins accumulate in the user's balance and each ``min_coins``
    buys one entry; coins that could not be spent (roster full) stay in the
    balance.
    """

    def __init__(self, store: WheelStore, roster: ParticipantRoster) -> None:
        self._store = store
        self._roster = roster

    def allocate(self, gift: CanonicalGift) -> AllocationResult:
        event = gift.event
        with self._store.pipeline_lock:
            settings = self._store.get_settings()
            account = self._store.get_account(event.username, create=True)

            if settings.mode == AllocationMode.COIN:
                requested, added = self._allocate_by_coins(account, gift.coin_delta, settings.min_coins)
            else:
                requested, added = self._allocate_by_count(account, gift.repeat_delta, gift.coin_delta)

            self._store.save_accounts()

            result = AllocationResult(
                username=account.username,
                mode=settings.mode,
                entries_requested=requested,
                entries_added=added,
                coin_balance=account.coin_balance,
                total_coins=account.total_coins,
                submissions=account.submissions,
            )

        if added < requested:
            logger.warning(
                "Roster full: %s earned %d entries but only %d were placed",
                result.username, requested, added,
            )
        logger.info(
            "Allocated %d entries to %s (%s mode, balance %d, total coins %d)",
            added, result.username, result.mode.value, result.coin_balance, result.total_coins,
        )
        return result

    def _allocate_by_count(self, account: UserAccount, repeat_count: int, coin_value: int):
        account.total_coins += max(0, coin_value)
        requested = max(0, repeat_count)
        added = self._roster.extend(account.username, requested)
        account.submissions += added
        return requested, added

    def _allocate_by_coins(self, account: UserAccount, coin_value: int, min_coins: int):
        coins = max(0, coin_value)
        account.coin_balance += coins
        account.total_coins += coins
        requested = account.coin_balance // min_coins
        added = self._roster.extend(account.username, requested)
        account.coin_balance -= added * min_coins
        account.submissions += added
        return requested, added
