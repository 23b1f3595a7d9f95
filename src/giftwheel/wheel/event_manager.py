"""Gift ingestion pipeline: webhook body -> resolver -> entry allocation."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

from giftwheel.utils.common import shorten_username
from giftwheel.utils.config import get_config_value
from giftwheel.utils.logger import get_logger
from giftwheel.wheel.allocation import EntryAllocator
from giftwheel.wheel.models import CanonicalGift, GiftEvent, IngestResult, ResolveOutcome
from giftwheel.wheel.normalizer import normalize_payload
from giftwheel.wheel.resolver import ComboResolver
from giftwheel.wheel.roster import ParticipantRoster
from giftwheel.wheel.scheduler import AsyncioTaskScheduler, TaskHandle, TaskScheduler
from giftwheel.wheel.store import WheelStore

logger = get_logger(__name__)

# Relative delays of the simulated upstream burst: 1x, final x, duplicate final x
SIMULATED_BURST_DELAYS_MS = (0, 500, 1000)


class GiftEventManager:
    """Feeds normalized gift events through the resolver into the store.

    Responsibilities:
    - Normalize webhook bodies and apply the target gift filter.
    - Hand events to the ComboResolver, which calls back with canonical gifts.
    - Allocate entries for each canonical gift and publish a ``gift`` message.
    - Periodically purge expired resolver state.
    """

    def __init__(
        self,
        store: WheelStore,
        roster: ParticipantRoster,
        config: Optional[Dict[str, Any]] = None,
        scheduler: Optional[TaskScheduler] = None,
    ) -> None:
        self.store = store
        self.roster = roster
        self.config = config or {}
        self.scheduler = scheduler or AsyncioTaskScheduler()
        self.allocator = EntryAllocator(store, roster)
        self.resolver = ComboResolver(
            self._on_canonical_gift,
            self.scheduler,
            dedupe_window_ms=float(get_config_value(self.config, "wheel.dedupe_window_ms", 5000)),
            combo_lifetime_ms=float(get_config_value(self.config, "wheel.combo_lifetime_ms", 30000)),
            combo_delay_ms=float(get_config_value(self.config, "wheel.combo_delay_ms", 5000)),
            value_threshold=int(get_config_value(self.config, "wheel.combo_value_threshold", 99)),
            lock=store.pipeline_lock,
        )
        self._housekeeping_interval = float(get_config_value(self.config, "wheel.housekeeping_interval_sec", 10))
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._simulations: List[TaskHandle] = []

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def ingest(self, payload: Any) -> IngestResult:
        """Normalize one webhook body and run it through the resolver."""
        event = normalize_payload(payload, received_at=int(time.time() * 1000))
        return self.submit(event)

    def submit(self, event: GiftEvent) -> IngestResult:
        target = self.store.get_settings().target_gift
        if target and not self._matches_target(event, target):
            logger.info("Ignoring %s from %s: not the target gift %r", event.gift_name or event.gift_id, event.username, target)
            return IngestResult(event=event, outcome=ResolveOutcome.IGNORED, detail=f"target gift is {target}")

        outcome = self.resolver.submit(event)
        logger.debug("Resolver outcome for %s/%s x%d: %s", event.username, event.gift_id, event.repeat_count, outcome.value)
        return IngestResult(event=event, outcome=outcome)

    @staticmethod
    def _matches_target(event: GiftEvent, target: str) -> bool:
        wanted = target.strip().lower()
        return wanted in (event.gift_name.lower(), event.gift_id.lower())

    def _on_canonical_gift(self, gift: CanonicalGift) -> None:
        event = gift.event
        result = self.allocator.allocate(gift)

        gift_label = event.gift_name or event.gift_id
        message = f"🎁 {shorten_username(event.username)} sent {gift_label} x{event.repeat_count}"
        if result.entries_added:
            message += f" (+{result.entries_added} entries)"
        elif result.entries_requested:
            message += " (wheel is full)"
        self.store.add_live_feed(
            event_type="gift",
            message=message,
            details={
                "username": event.username,
                "giftId": event.gift_id,
                "giftCount": event.repeat_count,
                "coinValue": event.coin_value,
                "entriesAdded": result.entries_added,
            },
        )
        self.store.emit("gift", {
            "event": "gift",
            "username": event.username,
            "giftId": event.gift_id,
            "giftName": event.gift_name,
            "giftCount": event.repeat_count,
            "coinValue": event.coin_value,
            "entriesAdded": result.entries_added,
            "mode": result.mode.value,
            "coinBalance": result.coin_balance,
            "timestamp": event.received_at,
        })

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------
    def simulate_combo(
        self,
        *,
        username: str = "TestUser",
        gift_count: int = 1,
        coin_value: int = 0,
        gift_id: str = "11046",
        gift_name: str = "Galaxy",
    ) -> List[Dict[str, Any]]:
        """Replay the burst the upstream platform sends for one combo.

        Three bodies are delivered through ``ingest`` at 0, 500 and 1000 ms:
        the first gift alone, the final count, then a duplicate of the final.
        """
        gift_count = max(1, int(gift_count))
        coin_value = max(0, int(coin_value))
        unit_value = coin_value // gift_count
        counts = (1, gift_count, gift_count)
        coins = (unit_value, coin_value, coin_value)

        payloads = []
        for delay_ms, count, value in zip(SIMULATED_BURST_DELAYS_MS, counts, coins):
            payload = {
                "username": username,
                "nickname": username,
                "userId": "1234567890",
                "giftId": gift_id,
                "giftName": gift_name,
                "coins": str(value),
                "repeatCount": str(count),
                "content": "Add to Wheel",
                "triggerTypeId": "3",
            }
            payloads.append({"delayMs": delay_ms, "payload": payload})
            self._simulations.append(self.scheduler.schedule(delay_ms, lambda body=payload: self._deliver(body)))

        self._simulations = [handle for handle in self._simulations if handle.active]
        logger.info("Test webhook triggered: %s x%d (%d coins) from %s", gift_name, gift_count, coin_value, username)
        return payloads

    def _deliver(self, payload: Dict[str, Any]) -> None:
        result = self.ingest(payload)
        logger.info("Simulated delivery for %s x%s -> %s", result.event.username, result.event.repeat_count, result.outcome.value)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start the background purge loop."""
        if self._tasks:
            return
        self._stop_event.clear()
        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self._housekeeping_loop())]
        logger.info("Gift event manager started (housekeeping every %.0fs)", self._housekeeping_interval)

    async def stop(self) -> None:
        """Stop background tasks and finalize gifts that are still waiting."""
        self._stop_event.set()
        for t in self._tasks:
            t.cancel()
        for t in self._tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._tasks = []

        for handle in self._simulations:
            self.scheduler.cancel(handle)
        self._simulations = []

        flushed = self.resolver.flush_pending()
        logger.info("Gift event manager stopped (%d pending allocations flushed)", flushed)

    async def _housekeeping_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                fingerprints, combos = self.resolver.purge_expired()
                if fingerprints or combos:
                    logger.debug("Housekeeping purged %d fingerprints, %d combos", fingerprints, combos)
            except Exception as exc:
                logger.error("GiftEventManager housekeeping error: %s", exc)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._housekeeping_interval)
                break
            except asyncio.TimeoutError:
                continue

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._tasks else "stopped",
            "resolver": self.resolver.stats(),
        }
