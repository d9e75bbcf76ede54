"""Exponential smoothing of fetched counters into frame-by-frame display values."""

import math
import re
from dataclasses import dataclass

SMOOTHING_FACTOR = 0.15
SNAP_THRESHOLD = 1

COUNTER_KEYS = ("subscribers", "total_views", "videos", "live_viewers", "likes")

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def coerce_count(raw_value) -> int:
    """
    Coerce an API value to a non-negative integer.

    Numbers are truncated, strings yield their leading integer ("12abc" -> 12),
    and anything unusable (None, NaN, text, negatives) becomes 0.
    """
    if raw_value is None or isinstance(raw_value, bool):
        return 0

    if isinstance(raw_value, (int, float)):
        if isinstance(raw_value, float) and not math.isfinite(raw_value):
            return 0
        value = int(raw_value)
    elif isinstance(raw_value, str):
        match = _LEADING_INT.match(raw_value)
        if match is None:
            return 0
        value = int(match.group(1))
    else:
        return 0

    return max(value, 0)


@dataclass
class AnimatedValue:
    current: float = 0.0
    target: int = 0

    @property
    def display(self) -> int:
        # Half-up rounding; current is never negative
        return int(math.floor(self.current + 0.5))


class Animator:
    """Holds a current/target pair per counter and eases current toward target."""

    def __init__(self, keys=COUNTER_KEYS, smoothing=SMOOTHING_FACTOR):
        self.smoothing = smoothing
        # Pre-populated so the first tick renders zeros rather than missing values
        self.values = {key: AnimatedValue() for key in keys}

    def set_target(self, key, raw_value):
        """Store a new target for key; current is left to catch up on tick()."""
        value = self.values.get(key)
        if value is None:
            value = self.values[key] = AnimatedValue()
        value.target = coerce_count(raw_value)

    def target(self, key) -> int:
        return self.values[key].target

    def tick(self):
        """Advance every counter one smoothing step toward its target."""
        for value in self.values.values():
            value.current += (value.target - value.current) * self.smoothing
            if abs(value.target - value.current) <= SNAP_THRESHOLD:
                value.current = float(value.target)

    def display(self, key) -> int:
        return self.values[key].display

    def snapshot(self):
        """Displayed (rounded) value of every counter."""
        return {key: self.display(key) for key in self.values}

    def settled(self) -> bool:
        """True once every counter shows its target exactly."""
        return all(value.current == value.target for value in self.values.values())
