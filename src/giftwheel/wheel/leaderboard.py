"""Ranked views over per-user gift statistics."""

from typing import Iterable, List, Optional

from giftwheel.wheel.models import LeaderboardEntry, UserAccount

TOP_VIEW_SIZE = 10


def rank(accounts: Iterable[UserAccount], limit: Optional[int] = None) -> List[LeaderboardEntry]:
    """Sort by lifetime coins, highest first; ties fall back to username."""
    ordered = sorted(accounts, key=lambda acc: (-acc.total_coins, acc.username))
    if limit is not None:
        ordered = ordered[:max(0, limit)]
    return [
        LeaderboardEntry(
            rank=position,
            username=acc.username,
            total_coins=acc.total_coins,
            submissions=acc.submissions,
        )
        for position, acc in enumerate(ordered, start=1)
    ]


def top(accounts: Iterable[UserAccount]) -> List[LeaderboardEntry]:
    return rank(accounts, limit=TOP_VIEW_SIZE)
