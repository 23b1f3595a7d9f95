"""
Participant Roster - ordered, capacity-bounded list of wheel entries
"""

from typing import List, Optional

from giftwheel.utils.logger import get_logger
from giftwheel.wheel.store import ROSTER_KEY, WheelStore

logger = get_logger(__name__)

# Most entries a single extend() may place, bounded roster or not
MAX_ENTRIES_PER_CALL = 10_000


class ParticipantRoster:
    """Entries backing the drawing. The same user may hold many slots.

    Capacity is read from the store's current ``max_limit`` (0 means no
    limit). Every mutation persists the full snapshot and publishes a
    ``roster_update`` event.
    """

    def __init__(self, store: WheelStore) -> None:
        self._store = store
        self._entries: List[str] = []

    def load(self) -> None:
        saved = self._store.persistence.get(ROSTER_KEY, []) or []
        with self._store.pipeline_lock:
            self._entries = [str(name) for name in saved if str(name).strip()]
        logger.info("Loaded roster with %d entries", len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[str]:
        with self._store.pipeline_lock:
            return list(self._entries)

    def capacity(self) -> int:
        return self._store.get_settings().max_limit

    def remaining(self) -> Optional[int]:
        """Free slots, or None when the roster is unbounded."""
        limit = self.capacity()
        if limit <= 0:
            return None
        return max(0, limit - len(self._entries))

    def append(self, name: str) -> bool:
        return self.extend(name, 1) == 1

    def extend(self, name: str, count: int) -> int:
        """Append ``name`` up to ``count`` times, stopping when full.

        Returns how many entries were actually added.
        """
        name = (name or "").strip()
        if not name or count <= 0:
            return 0
        with self._store.pipeline_lock:
            remaining = self.remaining()
            if count > MAX_ENTRIES_PER_CALL:
                logger.warning("Clamping %s x%d to %d entries", name, count, MAX_ENTRIES_PER_CALL)
                count = MAX_ENTRIES_PER_CALL
            added = count if remaining is None else min(count, remaining)
            if added <= 0:
                logger.info("Max limit reached (%s); %s not added", self.capacity(), name)
                return 0
            self._entries.extend([name] * added)
            self._persist()
        logger.info("Added %s x%d (%d/%s)", name, added, len(self._entries), self.capacity() or "∞")
        return added

    def remove_one(self, name: str) -> bool:
        with self._store.pipeline_lock:
            try:
                self._entries.remove(name)
            except ValueError:
                return False
            self._persist()
        logger.info("Removed: %s", name)
        return True

    def remove_last(self) -> Optional[str]:
        with self._store.pipeline_lock:
            if not self._entries:
                return None
            removed = self._entries.pop()
            self._persist()
        logger.info("Removed: %s", removed)
        return removed

    def clear(self) -> int:
        with self._store.pipeline_lock:
            count = len(self._entries)
            if count == 0:
                return 0
            self._entries = []
            self._persist()
        logger.info("Cleared %d participant(s)", count)
        return count

    def snapshot(self) -> dict:
        entries = self.entries()
        limit = self.capacity()
        return {
            "participants": entries,
            "count": len(entries),
            "maxLimit": limit,
            "isFull": limit > 0 and len(entries) >= limit,
        }

    def _persist(self) -> None:
        self._store.persistence.set(ROSTER_KEY, list(self._entries))
        self._store.emit("roster_update", self.snapshot())
