"""
Draw Engine - fair winner selection and the wheel stop position
"""

import math
import secrets
from typing import Callable, Sequence

from giftwheel.utils.logger import get_logger
from giftwheel.wheel.models import DrawResult

logger = get_logger(__name__)

FULL_TURN = 2 * math.pi


class EmptyRosterError(ValueError):
    """Raised when a draw is requested with nobody on the wheel."""


def terminal_rotation(index: int, participant_count: int, full_rotations: int) -> float:
    """Rotation (radians) that stops the wheel with ``index`` under the pointer.

    Segment ``i`` spans ``[i * slice, (i + 1) * slice)`` from angle 0 where the
    pointer sits. The wheel turns a whole number of times and then backs off
    to the centre of the winning segment.
    """
    slice_angle = FULL_TURN / participant_count
    winner_angle = index * slice_angle + slice_angle / 2
    return full_rotations * FULL_TURN + (FULL_TURN - winner_angle)


def segment_at_rotation(rotation: float, participant_count: int) -> int:
    """Index of the segment under the pointer after turning by ``rotation``."""
    slice_angle = FULL_TURN / participant_count
    angle = (-rotation) % FULL_TURN
    return min(participant_count - 1, int(angle // slice_angle))


class DrawEngine:
    """Selects a winner uniformly, before any animation is started."""

    def __init__(
        self,
        *,
        spin_duration_ms: int = 4000,
        min_rotations: int = 5,
        max_rotations: int = 7,
        randbelow: Callable[[int], int] = secrets.randbelow,
    ) -> None:
        if min_rotations > max_rotations:
            raise ValueError("min_rotations must not exceed max_rotations")
        self.spin_duration_ms = spin_duration_ms
        self.min_rotations = min_rotations
        self.max_rotations = max_rotations
        self._randbelow = randbelow

    def pick_index(self, participant_count: int) -> int:
        if participant_count <= 0:
            raise EmptyRosterError("No participants to spin!")
        return self._randbelow(participant_count)

    def draw(self, entries: Sequence[str]) -> DrawResult:
        count = len(entries)
        index = self.pick_index(count)
        full_rotations = self.min_rotations + self._randbelow(self.max_rotations - self.min_rotations + 1)
        result = DrawResult(
            index=index,
            winner=entries[index],
            participant_count=count,
            rotation=terminal_rotation(index, count, full_rotations),
            duration_ms=self.spin_duration_ms,
        )
        logger.info(
            "Spinning... (%d participants, %.2f%% chance each) winner #%d: %s",
            count, 100.0 / count, index, result.winner,
        )
        return result
