"""
Special-Cause Detection
=======================
Run rules for separating special-cause variation from common-cause noise.

Each rule is evaluated on the window ending at the point being judged, so a
point is flagged when it completes a pattern. Default rules (healthcare QI /
IHI conventions):

1. Beyond limits   - value > UCL or value < LCL (strict)
2. Run of 8        - 8+ consecutive points strictly on one side of center
3. Trend of 6      - 6+ consecutive strictly increasing or decreasing points

Optional Western Electric zone rules:

4. Zone A 2-of-3   - 2 of 3 consecutive points beyond 2 sigma, same side
5. Zone B 4-of-5   - 4 of 5 consecutive points beyond 1 sigma, same side

A continuity break (missing period) restarts every window.
"""

from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from .enums import DEFAULT_RULES, SpecialCauseRule

RUN_LENGTH = 8
TREND_LENGTH = 6

ArrayLike = Union[float, Sequence[float], np.ndarray]


def _per_point(value: ArrayLike, n: int) -> np.ndarray:
    return np.broadcast_to(np.asarray(value, dtype=float), (n,))


def _zone_hits(
    values: np.ndarray,
    cl: np.ndarray,
    sigma: np.ndarray,
    start: int,
    end: int,
    multiple: float,
) -> int:
    """Largest same-side count of points beyond `multiple` sigma in [start, end]."""
    window = slice(start, end + 1)
    above = np.sum(values[window] > cl[window] + multiple * sigma[window])
    below = np.sum(values[window] < cl[window] - multiple * sigma[window])
    return int(max(above, below))


def check_special_cause_rules(
    values: ArrayLike,
    center_line: ArrayLike,
    ucl: ArrayLike,
    lcl: ArrayLike,
    rules: Iterable[SpecialCauseRule] = DEFAULT_RULES,
    segment_starts: Optional[Iterable[int]] = None,
    sigma: Optional[ArrayLike] = None,
    sigma_level: float = 3,
) -> List[List[SpecialCauseRule]]:
    """
    Apply special-cause rules to a series.

    Args:
        values: Measurements in period order
        center_line: Center line, scalar or one per point
        ucl: Upper control limit, scalar or one per point
        lcl: Lower control limit, scalar or one per point
        rules: Rules to evaluate
        segment_starts: Indices where a continuous run of periods begins
        sigma: Per-point sigma for zone rules; derived from the UCL when omitted
        sigma_level: Number of sigmas between center line and UCL

    Returns:
        List of fired rules for each point (empty list = common cause)
    """
    values = np.asarray(values, dtype=float)
    n = len(values)
    violations: List[List[SpecialCauseRule]] = [[] for _ in range(n)]
    if n == 0:
        return violations

    cl = _per_point(center_line, n)
    upper = _per_point(ucl, n)
    lower = _per_point(lcl, n)
    if sigma is None:
        sigma = (upper - cl) / sigma_level
    sig = _per_point(sigma, n)

    rules = set(rules)
    starts = set(segment_starts or ()) | {0}

    seg_start = 0
    above = below = 0
    rising = falling = 0

    for i, val in enumerate(values):
        if i in starts:
            seg_start = i
            above = below = 0
            rising = falling = 0

        # Run counters (equal to center breaks both)
        above = above + 1 if val > cl[i] else 0
        below = below + 1 if val < cl[i] else 0

        # Trend counters, measured in points (plateaus restart at 1)
        if i == seg_start:
            rising = falling = 1
        elif val > values[i - 1]:
            rising, falling = rising + 1, 1
        elif val < values[i - 1]:
            rising, falling = 1, falling + 1
        else:
            rising = falling = 1

        point_violations = []

        if SpecialCauseRule.BEYOND_LIMITS in rules:
            if val > upper[i] or val < lower[i]:
                point_violations.append(SpecialCauseRule.BEYOND_LIMITS)

        if SpecialCauseRule.RUN_OF_8 in rules:
            if above >= RUN_LENGTH or below >= RUN_LENGTH:
                point_violations.append(SpecialCauseRule.RUN_OF_8)

        if SpecialCauseRule.TREND_OF_6 in rules:
            if rising >= TREND_LENGTH or falling >= TREND_LENGTH:
                point_violations.append(SpecialCauseRule.TREND_OF_6)

        if SpecialCauseRule.ZONE_A_2OF3 in rules and i - seg_start >= 2:
            if _zone_hits(values, cl, sig, i - 2, i, 2) >= 2:
                point_violations.append(SpecialCauseRule.ZONE_A_2OF3)

        if SpecialCauseRule.ZONE_B_4OF5 in rules and i - seg_start >= 4:
            if _zone_hits(values, cl, sig, i - 4, i, 1) >= 4:
                point_violations.append(SpecialCauseRule.ZONE_B_4OF5)

        violations[i] = point_violations

    return violations
