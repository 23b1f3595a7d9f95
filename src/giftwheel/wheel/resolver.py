"""Deduplication and combo resolution for upstream gift notifications.

The upstream platform reports one gift combo as a short burst: a few
notifications with increasing repeat counts followed by a duplicate of the
final one. The resolver collapses each burst into a single canonical gift:

* exact re-deliveries (same fingerprint) inside the dedupe window are dropped;
* a higher repeat count for a live combo upgrades it and restarts its delay;
* lower counts are stale, equal counts are trailing duplicates;
* gifts above the value threshold wait ``combo_delay_ms`` for upgrades, all
  others are finalized immediately.
"""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from giftwheel.utils.logger import get_logger
from giftwheel.wheel.models import (
    CanonicalGift,
    ComboKey,
    ComboRecord,
    Fingerprint,
    GiftEvent,
    PendingAllocation,
    ResolveOutcome,
)
from giftwheel.wheel.scheduler import TaskHandle, TaskScheduler

logger = get_logger(__name__)

DEFAULT_DEDUPE_WINDOW_MS = 5000
DEFAULT_COMBO_LIFETIME_MS = 30000
DEFAULT_COMBO_DELAY_MS = 5000
DEFAULT_VALUE_THRESHOLD = 99


@dataclass
class ResolverState:
    """Tables owned by one resolver instance."""

    fingerprints: Dict[Fingerprint, float] = field(default_factory=dict)
    combos: Dict[ComboKey, ComboRecord] = field(default_factory=dict)
    pending: Dict[ComboKey, PendingAllocation] = field(default_factory=dict)


class ComboResolver:
    """Decides, per inbound event, whether to drop, defer or finalize it.

    ``sink`` receives one CanonicalGift per finalized combo state. Sink errors
    on the immediate path propagate to the caller of ``submit``; errors on the
    delayed path are logged by the scheduler.
    """

    def __init__(
        self,
        sink: Callable[[CanonicalGift], Any],
        scheduler: TaskScheduler,
        *,
        dedupe_window_ms: float = DEFAULT_DEDUPE_WINDOW_MS,
        combo_lifetime_ms: float = DEFAULT_COMBO_LIFETIME_MS,
        combo_delay_ms: float = DEFAULT_COMBO_DELAY_MS,
        value_threshold: int = DEFAULT_VALUE_THRESHOLD,
        lock=None,
    ) -> None:
        self._sink = sink
        self._scheduler = scheduler
        self.dedupe_window_ms = dedupe_window_ms
        self.combo_lifetime_ms = combo_lifetime_ms
        self.combo_delay_ms = combo_delay_ms
        self.value_threshold = value_threshold
        self._lock = lock if lock is not None else nullcontext()
        self.state = ResolverState()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def submit(self, event: GiftEvent) -> ResolveOutcome:
        with self._lock:
            now = self._scheduler.now()
            self._purge(now)

            # 1-2. exact re-delivery check, then remember this fingerprint
            fingerprint = event.fingerprint
            first_seen = self.state.fingerprints.get(fingerprint)
            if first_seen is not None and now - first_seen < self.dedupe_window_ms:
                logger.info(
                    "Duplicate webhook dropped: %s %s x%d (%d coins)",
                    event.username, event.gift_id, event.repeat_count, event.coin_value,
                )
                return ResolveOutcome.DUPLICATE
            self.state.fingerprints[fingerprint] = now

            # 3. combo state transition
            key = event.combo_key
            record = self.state.combos.get(key)
            if record is None or now - record.last_updated_at >= self.combo_lifetime_ms:
                stale_pending = self.state.pending.pop(key, None)
                if stale_pending is not None:
                    # a previous combo is still waiting; it cannot be upgraded any more
                    self._scheduler.cancel(stale_pending.handle)
                    self._finalize(key, stale_pending.event)
                self.state.combos[key] = ComboRecord(
                    coin_value=event.coin_value,
                    repeat_count=event.repeat_count,
                    last_updated_at=now,
                )
                logger.debug("New combo %s x%d", key, event.repeat_count)
            elif event.repeat_count > record.repeat_count:
                self._cancel_pending(key)
                logger.info(
                    "Combo upgrade %s: x%d -> x%d", key, record.repeat_count, event.repeat_count,
                )
                record.coin_value = event.coin_value
                record.repeat_count = event.repeat_count
                record.last_updated_at = now
                record.processed = False
            elif event.repeat_count < record.repeat_count:
                logger.info(
                    "Stale combo update dropped %s: x%d < x%d", key, event.repeat_count, record.repeat_count,
                )
                return ResolveOutcome.STALE
            else:
                logger.info(
                    "Combo duplicate dropped %s x%d (processed=%s)", key, event.repeat_count, record.processed,
                )
                return ResolveOutcome.DUPLICATE

            # 4. timing decision
            if event.coin_value > self.value_threshold:
                self._cancel_pending(key)
                handle = None

                def fire():
                    self._on_timer(key, handle)

                handle = self._scheduler.schedule(self.combo_delay_ms, fire)
                self.state.pending[key] = PendingAllocation(event=event, handle=handle)
                logger.info(
                    "High-value gift from %s (%d coins); waiting %.0f ms for combo upgrades",
                    event.username, event.coin_value, self.combo_delay_ms,
                )
                return ResolveOutcome.SCHEDULED

            self._finalize(key, event)
            return ResolveOutcome.PROCESSED

    def purge_expired(self) -> Tuple[int, int]:
        """Drop expired fingerprints and combo records; returns the counts removed."""
        with self._lock:
            return self._purge(self._scheduler.now())

    def flush_pending(self) -> int:
        """Finalize every waiting combo now instead of after its delay."""
        with self._lock:
            keys = list(self.state.pending)
            for key in keys:
                pending = self.state.pending.get(key)
                if pending is None:
                    continue
                pending.handle.cancel()
                self._finalize(key, pending.event)
            if keys:
                logger.info("Flushed %d pending allocation(s)", len(keys))
            return len(keys)

    def get_combo(self, username: str, gift_id: str) -> Optional[ComboRecord]:
        return self.state.combos.get((username, gift_id))

    def stats(self) -> Dict[str, int]:
        return {
            "fingerprints": len(self.state.fingerprints),
            "combos": len(self.state.combos),
            "pending": len(self.state.pending),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _on_timer(self, key: ComboKey, handle: TaskHandle) -> None:
        with self._lock:
            pending = self.state.pending.get(key)
            if pending is None or pending.handle is not handle:
                logger.debug("Ignoring timer for %s: no longer the pending allocation", key)
                return
            self._finalize(key, pending.event)

    def _finalize(self, key: ComboKey, event: GiftEvent) -> None:
        pending = self.state.pending.get(key)
        if pending is not None and pending.event is event:
            del self.state.pending[key]

        record = self.state.combos.get(key)
        allocated_repeat = record.allocated_repeat_count if record else 0
        allocated_coins = record.allocated_coin_value if record else 0
        gift = CanonicalGift(
            event=event,
            repeat_delta=max(0, event.repeat_count - allocated_repeat),
            coin_delta=max(0, event.coin_value - allocated_coins),
        )
        logger.info(
            "Finalizing combo %s x%d (%d coins); allocating +%d gifts / +%d coins",
            key, event.repeat_count, event.coin_value, gift.repeat_delta, gift.coin_delta,
        )

        self._sink(gift)

        if record is not None:
            record.processed = True
            record.allocated_repeat_count = max(allocated_repeat, event.repeat_count)
            record.allocated_coin_value = max(allocated_coins, event.coin_value)

    def _cancel_pending(self, key: ComboKey) -> None:
        pending = self.state.pending.pop(key, None)
        if pending is not None:
            self._scheduler.cancel(pending.handle)
            logger.debug("Cancelled pending allocation for %s", key)

    def _purge(self, now: float) -> Tuple[int, int]:
        expired_fingerprints = [
            fp for fp, first_seen in self.state.fingerprints.items()
            if now - first_seen >= self.dedupe_window_ms
        ]
        for fp in expired_fingerprints:
            del self.state.fingerprints[fp]

        expired_combos = [
            key for key, record in self.state.combos.items()
            if now - record.last_updated_at >= self.combo_lifetime_ms and key not in self.state.pending
        ]
        for key in expired_combos:
            del self.state.combos[key]

        if expired_fingerprints or expired_combos:
            logger.debug(
                "Purged %d fingerprints and %d combo records", len(expired_fingerprints), len(expired_combos),
            )
        return len(expired_fingerprints), len(expired_combos)


