"""
Metric Series
=============
Ordered, validated time series of periodic metric values.

A MetricSeries is what callers hand to the SPC engine. Validation happens
here, at construction, so the engine itself can stay total over its input:
non-finite values, duplicate periods and out-of-order periods are rejected
with a ValueError before any limits are computed.

Missing periods are simply absent. When the series knows its reporting
cadence (period_type), a jump of more than one period is reported as a
continuity break so run and trend rules can restart there.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .enums import PeriodType

logger = logging.getLogger(__name__)


def period_key(period: Any) -> Any:
    """Normalise a period label for ordering: date-likes become Timestamps."""
    if isinstance(period, (date, np.datetime64)):
        return pd.Timestamp(period)
    return period


def coerce_bound(bound: Any, like: Any) -> Any:
    """Convert a baseline bound so it compares against periods shaped like `like`."""
    bound = period_key(bound)
    if isinstance(like, pd.Timestamp) and isinstance(bound, str):
        return pd.Timestamp(bound)
    return bound


def _finite(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return number


@dataclass(frozen=True)
class SPCDataPoint:
    """One period of a metric: its value and, for P/U charts, the counts behind it."""
    period: Any
    value: float
    numerator: Optional[float] = None
    denominator: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'SPCDataPoint':
        if 'period' in data:
            period = data['period']
        elif 'period_start' in data:
            period = data['period_start']
        else:
            raise ValueError(f"Point is missing 'period': {data!r}")
        if 'value' not in data:
            raise ValueError(f"Point is missing 'value': {data!r}")
        return cls(
            period=period,
            value=data['value'],
            numerator=data.get('numerator'),
            denominator=data.get('denominator'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period,
            'value': self.value,
            'numerator': self.numerator,
            'denominator': self.denominator,
        }


PointLike = Union[SPCDataPoint, Mapping[str, Any]]


def _as_point(item: PointLike) -> SPCDataPoint:
    point = item if isinstance(item, SPCDataPoint) else SPCDataPoint.from_mapping(item)
    value = _finite(f"Value for period {point.period!r}", point.value)
    numerator = point.numerator
    denominator = point.denominator
    if numerator is not None:
        numerator = _finite(f"Numerator for period {point.period!r}", numerator)
    if denominator is not None:
        denominator = _finite(f"Denominator for period {point.period!r}", denominator)
        if denominator < 0:
            raise ValueError(f"Denominator for period {point.period!r} must be >= 0")
    return SPCDataPoint(point.period, value, numerator, denominator)


# Period steps used for continuity checks, in (unit, size) form.
_PERIOD_STEPS = {
    PeriodType.DAILY: ('days', 1),
    PeriodType.WEEKLY: ('days', 7),
    PeriodType.BI_WEEKLY: ('days', 14),
    PeriodType.MONTHLY: ('months', 1),
    PeriodType.QUARTERLY: ('months', 3),
    PeriodType.ANNUAL: ('months', 12),
}


def _periods_apart(earlier: pd.Timestamp, later: pd.Timestamp, period_type: PeriodType) -> float:
    unit, size = _PERIOD_STEPS[period_type]
    if unit == 'days':
        return (later.normalize() - earlier.normalize()).days / size
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    return months / size


@dataclass
class MetricSeries:
    """
    Ordered series of SPCDataPoints for one metric dimension.

    Args:
        points: Data points in period order (SPCDataPoint or mappings with
            'period'/'period_start' and 'value' keys)
        period_type: Optional reporting cadence, enables gap detection

    Raises:
        ValueError: On non-finite values, duplicate or unordered periods
    """
    points: Sequence[SPCDataPoint] = field(default_factory=tuple)
    period_type: Optional[PeriodType] = None

    def __post_init__(self):
        self.points = tuple(_as_point(p) for p in self.points)
        if self.period_type is not None and not isinstance(self.period_type, PeriodType):
            self.period_type = PeriodType(self.period_type)
        self._check_order()

    def _check_order(self):
        keys = [period_key(p.period) for p in self.points]
        for i in range(1, len(keys)):
            try:
                ordered = keys[i] > keys[i - 1]
                duplicate = keys[i] == keys[i - 1]
            except TypeError:
                raise ValueError(
                    f"Periods {self.points[i - 1].period!r} and {self.points[i].period!r} "
                    "are not comparable"
                )
            if duplicate:
                raise ValueError(f"Duplicate period in series: {self.points[i].period!r}")
            if not ordered:
                raise ValueError(
                    f"Periods must be strictly increasing: {self.points[i].period!r} "
                    f"follows {self.points[i - 1].period!r}"
                )

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[SPCDataPoint]:
        return iter(self.points)

    def __getitem__(self, index):
        return self.points[index]

    @property
    def periods(self) -> List[Any]:
        return [p.period for p in self.points]

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.points], dtype=float)

    def segment_starts(self) -> List[int]:
        """
        Indices where a continuous run of periods begins.

        Index 0 always starts a segment. Further segments start after a
        missing period, which is only detectable when period_type is set
        and periods are dates.
        """
        if not self.points:
            return []
        starts = [0]
        if self.period_type is None:
            return starts

        keys = [period_key(p.period) for p in self.points]
        if not all(isinstance(k, pd.Timestamp) for k in keys):
            return starts

        for i in range(1, len(keys)):
            if _periods_apart(keys[i - 1], keys[i], self.period_type) > 1:
                starts.append(i)
        return starts

    @classmethod
    def from_values(
        cls,
        values: Iterable[float],
        periods: Optional[Iterable[Any]] = None,
        period_type: Optional[PeriodType] = None,
    ) -> 'MetricSeries':
        """Build a series from bare values, labelling periods 0..n-1 if none given."""
        values = list(values)
        periods = list(periods) if periods is not None else list(range(len(values)))
        if len(periods) != len(values):
            raise ValueError(
                f"Got {len(values)} values but {len(periods)} periods"
            )
        return cls([SPCDataPoint(p, v) for p, v in zip(periods, values)], period_type)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        value_col: str = 'value',
        period_col: str = 'period_start',
        numerator_col: Optional[str] = None,
        denominator_col: Optional[str] = None,
        period_type: Optional[PeriodType] = None,
    ) -> 'MetricSeries':
        """
        Build a series from a DataFrame of entries, one row per period.

        Rows with a missing value are dropped (a missing period, not a zero).
        Rows are sorted by period; duplicates still raise.
        """
        for col in (value_col, period_col, numerator_col, denominator_col):
            if col is not None and col not in df.columns:
                raise ValueError(f"Column '{col}' not found in data")

        valid = df[df[value_col].notna()].sort_values(period_col)
        dropped = len(df) - len(valid)
        if dropped:
            logger.debug(f"Dropped {dropped} rows with missing '{value_col}'")

        points = []
        for _, row in valid.iterrows():
            numerator = row[numerator_col] if numerator_col else None
            denominator = row[denominator_col] if denominator_col else None
            points.append(SPCDataPoint(
                period=row[period_col],
                value=row[value_col],
                numerator=None if pd.isna(numerator) else numerator,
                denominator=None if pd.isna(denominator) else denominator,
            ))
        return cls(points, period_type)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [p.to_dict() for p in self.points],
            columns=['period', 'value', 'numerator', 'denominator'],
        )
