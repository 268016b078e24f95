"""
Trend Summaries
===============
Compact period-over-period trend for KPI cards, and helpers that map raw
movement onto "better" or "worse" using a metric's desired direction.

These are presentation helpers: the SPC math never looks at
DesiredDirection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .enums import DesiredDirection

# Changes within +/- this percentage are shown as flat
FLAT_THRESHOLD_PCT = 0.5


class TrendDirection(Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class Assessment(Enum):
    """Whether a movement or signal is good news for the metric."""
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class TrendSummary:
    """Percent change between the two most recent values."""
    value: float  # signed, one decimal
    direction: TrendDirection

    @property
    def magnitude(self) -> float:
        return abs(self.value)

    def to_dict(self):
        return {'value': self.value, 'direction': self.direction.value}


def calculate_trend(current: float, previous: float) -> TrendSummary:
    """
    Percent change from `previous` to `current`, rounded to one decimal.

    A previous value of 0 has nothing to compare against and yields a
    flat trend of 0.
    """
    if previous == 0:
        return TrendSummary(0.0, TrendDirection.FLAT)

    change = (current - previous) / abs(previous) * 100
    if change > FLAT_THRESHOLD_PCT:
        direction = TrendDirection.UP
    elif change < -FLAT_THRESHOLD_PCT:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.FLAT
    return TrendSummary(round(change, 1), direction)


def latest_trend(values: Sequence[float]) -> Optional[TrendSummary]:
    """Trend of the last two values of a series, or None with fewer than two."""
    if len(values) < 2:
        return None
    return calculate_trend(values[-1], values[-2])


def assess_trend(trend: TrendSummary, desired: DesiredDirection) -> Assessment:
    """Is this movement an improvement for a metric that should move `desired`?"""
    if trend.direction is TrendDirection.FLAT or desired is DesiredDirection.NEUTRAL:
        return Assessment.NEUTRAL
    improving = (
        (trend.direction is TrendDirection.UP and desired is DesiredDirection.INCREASE)
        or (trend.direction is TrendDirection.DOWN and desired is DesiredDirection.DECREASE)
    )
    return Assessment.FAVORABLE if improving else Assessment.UNFAVORABLE


def assess_signal(value: float, center_line: float, desired: DesiredDirection) -> Assessment:
    """
    Colour class for a special-cause point: above center is good news for
    an "increase" metric and bad news for a "decrease" metric.
    """
    if desired is DesiredDirection.NEUTRAL or value == center_line:
        return Assessment.NEUTRAL
    above = value > center_line
    if above == (desired is DesiredDirection.INCREASE):
        return Assessment.FAVORABLE
    return Assessment.UNFAVORABLE
