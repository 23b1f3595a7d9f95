import heapq
import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"

os.environ.setdefault("LOG_FILE", "-")

if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from giftwheel.utils.persistence import JsonFileStore  # noqa: E402
from giftwheel.wheel.event_manager import GiftEventManager  # noqa: E402
from giftwheel.wheel.roster import ParticipantRoster  # noqa: E402
from giftwheel.wheel.scheduler import TaskHandle, TaskScheduler  # noqa: E402
from giftwheel.wheel.store import WheelStore  # noqa: E402


class ManualScheduler(TaskScheduler):
    """Virtual clock: tasks only run when the test advances time."""

    def __init__(self, start_ms: float = 1_000_000.0) -> None:
        self._now = start_ms
        self._queue = []

    def now(self) -> float:
        return self._now

    def schedule(self, delay_ms, fn):
        handle = TaskHandle(fn, self._now + max(0.0, float(delay_ms)))
        heapq.heappush(self._queue, (handle.due_at, handle.task_id, handle))
        return handle

    def advance(self, ms: float) -> None:
        target = self._now + ms
        while self._queue and self._queue[0][0] <= target:
            due_at, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, due_at)
            handle.run()
        self._now = target

    @property
    def pending(self):
        return [handle for _, _, handle in self._queue if handle.active]


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def persistence():
    return JsonFileStore(None)


@pytest.fixture
def store(persistence):
    return WheelStore(persistence)


@pytest.fixture
def roster(store):
    return ParticipantRoster(store)


@pytest.fixture
def event_manager(store, roster, scheduler):
    return GiftEventManager(store, roster, {}, scheduler=scheduler)
