"""
Statistical Process Control (SPC) Module
========================================
Control charts and special-cause detection for QI metrics.

Key Features:
- Individuals / Moving Range (I-MR) charts for continuous metrics
- P charts for proportions, U charts for rates
- Frozen baseline limits ("fixed points") for before/after comparisons
- LCL floored at zero for non-negative metrics
- Run rules for special-cause detection (see special_cause.py)

Use Cases:
- Judge whether a change in response time is signal or noise
- Lock limits after a PDSA cycle and judge later months against them
- Flag compliance rates that drift for 8+ months on one side of center
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config_validation import SPCOptions, validate_spc_options
from .enums import ChartType, DataType, SpecialCauseRule, ValueDomain, chart_type_for_data_type
from .series import MetricSeries, PointLike, SPCDataPoint, coerce_bound, period_key
from .special_cause import check_special_cause_rules

logger = logging.getLogger(__name__)

# d2 and D4 for a moving range of 2 consecutive points
MR_D2 = 1.128
MR_D4 = 3.267

# Fewer baseline points than this and limits come from the whole series
MIN_BASELINE_POINTS = 8

# Subgroup sizes this far from the average warrant variable limits (Wheeler)
VARIABLE_LIMIT_TOLERANCE = 0.25


# =============================================================================
# RESULT STRUCTURES
# =============================================================================

@dataclass
class ControlLimits:
    """Control chart limits."""
    center_line: float
    ucl: float  # Upper Control Limit
    lcl: float  # Lower Control Limit
    sigma: float
    sigma_level: int = 3

    mr_bar: Optional[float] = None  # I-MR only
    n_baseline: int = 0             # points the limits were computed from
    baseline_applied: bool = False
    insufficient_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'center_line': self.center_line,
            'ucl': self.ucl,
            'lcl': self.lcl,
            'sigma': self.sigma,
            'sigma_level': self.sigma_level,
            'mr_bar': self.mr_bar,
            'n_baseline': self.n_baseline,
            'baseline_applied': self.baseline_applied,
            'insufficient_data': self.insufficient_data,
        }


@dataclass
class SPCPoint:
    """A single point on a control chart."""
    period: Any
    value: float
    center_line: float
    ucl: float
    lcl: float
    special_cause: bool = False
    special_cause_rules: List[SpecialCauseRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period,
            'value': self.value,
            'center_line': self.center_line,
            'ucl': self.ucl,
            'lcl': self.lcl,
            'special_cause': self.special_cause,
            'special_cause_rules': [r.value for r in self.special_cause_rules],
        }


@dataclass
class MovingRangePoint:
    """A single point on the moving range chart of an I-MR pair."""
    period: Any
    value: float
    center_line: float
    ucl: float
    lcl: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period,
            'value': self.value,
            'center_line': self.center_line,
            'ucl': self.ucl,
            'lcl': self.lcl,
        }


@dataclass
class SPCResult:
    """Complete SPC results for one metric series."""
    chart_type: ChartType
    center_line: float
    points: List[SPCPoint]
    limits: Optional[ControlLimits] = None
    moving_range: Optional[List[MovingRangePoint]] = None
    fixed_points: Optional[List[SPCPoint]] = None
    supports_variable_limits: bool = False
    baseline_applied: bool = False
    insufficient_data: bool = False

    # Summary statistics
    n_points: int = 0
    n_special_causes: int = 0

    def __post_init__(self):
        self.n_points = len(self.points)
        self.n_special_causes = sum(1 for p in self.points if p.special_cause)

    def get_special_cause_points(self) -> List[SPCPoint]:
        return [p for p in self.points if p.special_cause]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chart_type': self.chart_type.value,
            'center_line': self.center_line,
            'points': [p.to_dict() for p in self.points],
            'limits': self.limits.to_dict() if self.limits else None,
            'moving_range': (
                [p.to_dict() for p in self.moving_range]
                if self.moving_range is not None else None
            ),
            'fixed_points': (
                [p.to_dict() for p in self.fixed_points]
                if self.fixed_points is not None else None
            ),
            'supports_variable_limits': self.supports_variable_limits,
            'baseline_applied': self.baseline_applied,
            'insufficient_data': self.insufficient_data,
            'n_points': self.n_points,
            'n_special_causes': self.n_special_causes,
        }


# =============================================================================
# CONTROL LIMIT CALCULATIONS
# =============================================================================

def _floor_lcl(lcl: float, center_line: float, value_domain: ValueDomain) -> float:
    if not value_domain.allows_negative:
        lcl = max(0.0, lcl)
    return min(lcl, center_line)


def resolve_baseline_window(
    periods: Sequence[Any],
    baseline_start: Any = None,
    baseline_end: Any = None,
) -> Optional[Tuple[int, int]]:
    """
    Find the index range [first, last] of periods inside the baseline bounds.

    Either bound may be omitted. Returns None (use the whole series) when no
    bound is given, when start is after end, or when fewer than
    MIN_BASELINE_POINTS periods fall inside.
    """
    if baseline_start is None and baseline_end is None:
        return None
    if not periods:
        return None

    keys = [period_key(p) for p in periods]
    try:
        lo = coerce_bound(baseline_start, keys[0]) if baseline_start is not None else None
        hi = coerce_bound(baseline_end, keys[0]) if baseline_end is not None else None
        if lo is not None and hi is not None and lo > hi:
            logger.debug(f"Baseline start {baseline_start!r} is after end {baseline_end!r}; using all points")
            return None
        inside = [
            i for i, key in enumerate(keys)
            if (lo is None or key >= lo) and (hi is None or key <= hi)
        ]
    except (TypeError, ValueError) as e:
        logger.debug(f"Baseline bounds not comparable with periods ({e}); using all points")
        return None

    if len(inside) < MIN_BASELINE_POINTS:
        logger.debug(
            f"Baseline holds {len(inside)} points, need {MIN_BASELINE_POINTS}; using all points"
        )
        return None

    return inside[0], inside[-1]


def calculate_imr_limits(
    values: Union[Sequence[float], np.ndarray],
    baseline: Optional[Tuple[int, int]] = None,
    sigma_level: int = 3,
    value_domain: ValueDomain = ValueDomain.UNBOUNDED,
) -> ControlLimits:
    """
    Calculate Individuals chart control limits.

    Args:
        values: Array of individual measurements in period order
        baseline: Optional inclusive (first, last) index range to freeze
            the limits on
        sigma_level: Limit width in sigmas
        value_domain: Floors the LCL at 0 unless UNBOUNDED

    Returns:
        ControlLimits; with fewer than 2 points sigma is 0 and
        ucl == lcl == center_line, flagged insufficient_data
    """
    values = np.asarray(values, dtype=float)
    if baseline is not None:
        first, last = baseline
        sample = values[first:last + 1]
    else:
        sample = values
    n = len(sample)
    applied = baseline is not None

    if n == 0:
        return ControlLimits(0.0, 0.0, 0.0, 0.0, sigma_level, insufficient_data=True)

    center = float(np.mean(sample))

    if n < 2:
        return ControlLimits(
            center_line=center,
            ucl=center,
            lcl=center,
            sigma=0.0,
            sigma_level=sigma_level,
            n_baseline=n,
            baseline_applied=applied,
            insufficient_data=True,
        )

    # Estimate sigma from moving range
    mr_bar = float(np.mean(np.abs(np.diff(sample))))
    sigma = mr_bar / MR_D2

    return ControlLimits(
        center_line=center,
        ucl=center + sigma_level * sigma,
        lcl=_floor_lcl(center - sigma_level * sigma, center, value_domain),
        sigma=sigma,
        sigma_level=sigma_level,
        mr_bar=mr_bar,
        n_baseline=n,
        baseline_applied=applied,
    )


def denominators_vary_significantly(denominators: Sequence[float]) -> bool:
    """True when any subgroup size is more than 25% away from the average."""
    if len(denominators) < 2:
        return False
    avg = float(np.mean(denominators))
    if avg == 0:
        return False
    return any(abs(n - avg) / avg > VARIABLE_LIMIT_TOLERANCE for n in denominators)


# =============================================================================
# CHART ASSEMBLY
# =============================================================================

def _flag_special_causes(
    points: List[SPCPoint],
    series: MetricSeries,
    options: SPCOptions,
    sigma=None,
) -> None:
    violations = check_special_cause_rules(
        series.values,
        [p.center_line for p in points],
        [p.ucl for p in points],
        [p.lcl for p in points],
        rules=options.rules,
        segment_starts=series.segment_starts(),
        sigma=sigma,
        sigma_level=options.sigma_level,
    )
    for point, rules in zip(points, violations):
        point.special_cause = len(rules) > 0
        point.special_cause_rules = rules


def _constant_limit_points(series: MetricSeries, center: float, ucl: float, lcl: float) -> List[SPCPoint]:
    return [SPCPoint(p.period, p.value, center, ucl, lcl) for p in series]


def _copy_points(points: List[SPCPoint]) -> List[SPCPoint]:
    return [replace(p, special_cause_rules=list(p.special_cause_rules)) for p in points]


def _baseline_points(series: MetricSeries, window: Optional[Tuple[int, int]]) -> Sequence[SPCDataPoint]:
    if window is None:
        return series.points
    first, last = window
    return series.points[first:last + 1]


def _calculate_imr(series: MetricSeries, options: SPCOptions) -> SPCResult:
    window = resolve_baseline_window(series.periods, options.baseline_start, options.baseline_end)
    values = series.values
    limits = calculate_imr_limits(values, window, options.sigma_level, options.value_domain)
    insufficient = len(series) < 2

    points = _constant_limit_points(series, limits.center_line, limits.ucl, limits.lcl)
    if not insufficient:
        _flag_special_causes(points, series, options, sigma=limits.sigma)

    # MR chart over every point, centred on the baseline MR-bar
    mr_bar = limits.mr_bar or 0.0
    moving_range = [
        MovingRangePoint(
            period=series[i].period,
            value=abs(values[i] - values[i - 1]),
            center_line=mr_bar,
            ucl=MR_D4 * mr_bar,
        )
        for i in range(1, len(series))
    ]

    logger.debug(
        f"I-MR: CL={limits.center_line:.4f} UCL={limits.ucl:.4f} LCL={limits.lcl:.4f} "
        f"(baseline={'yes' if window else 'no'})"
    )

    return SPCResult(
        chart_type=ChartType.I_MR,
        center_line=limits.center_line,
        points=points,
        limits=limits,
        moving_range=moving_range,
        fixed_points=_copy_points(points) if window is not None else None,
        baseline_applied=window is not None,
        insufficient_data=insufficient,
    )


def _calculate_p_chart(series: MetricSeries, options: SPCOptions) -> SPCResult:
    z = options.sigma_level
    window = resolve_baseline_window(series.periods, options.baseline_start, options.baseline_end)
    baseline = _baseline_points(series, window)
    insufficient = len(series) < 2

    if options.percentage_scale is not None:
        percentage = options.percentage_scale
    else:
        # Values above 1 mean the metric is stored as a percentage (0-100)
        percentage = any(p.value > 1 for p in series)
    scale = 100.0 if percentage else 1.0

    def denominator(p: SPCDataPoint) -> float:
        return p.denominator if p.denominator is not None else 1.0

    def numerator(p: SPCDataPoint) -> float:
        if p.numerator is not None:
            return p.numerator
        return p.value * denominator(p) / scale

    total_num = sum(numerator(p) for p in baseline)
    total_den = sum(denominator(p) for p in baseline)
    if total_den > 0:
        p_bar = total_num / total_den * scale
    else:
        p_bar = float(np.mean([p.value for p in baseline]))

    # A proportion cannot leave [0, scale], even when numerators exceed denominators
    p_bar = min(max(p_bar, 0.0), scale)
    p_frac = p_bar / scale

    def limits_for(n: float) -> Tuple[float, float, float]:
        se = math.sqrt(p_frac * (1 - p_frac) / n) * scale if n > 0 else 0.0
        ucl = min(p_bar + z * se, scale)
        lcl = min(max(p_bar - z * se, 0.0), p_bar)
        return ucl, lcl, se

    # Variable limits (per-point denominator)
    points, sigmas = [], []
    for p in series:
        ucl, lcl, se = limits_for(denominator(p))
        points.append(SPCPoint(p.period, p.value, p_bar, ucl, lcl))
        sigmas.append(se)

    # Fixed limits (average denominator)
    denominators = [denominator(p) for p in series]
    fixed_ucl, fixed_lcl, fixed_se = limits_for(float(np.mean(denominators)))
    fixed_points = _constant_limit_points(series, p_bar, fixed_ucl, fixed_lcl)

    if not insufficient:
        _flag_special_causes(points, series, options, sigma=sigmas)
        _flag_special_causes(fixed_points, series, options, sigma=fixed_se)

    return SPCResult(
        chart_type=ChartType.P_CHART,
        center_line=p_bar,
        points=points,
        limits=ControlLimits(
            center_line=p_bar,
            ucl=fixed_ucl,
            lcl=fixed_lcl,
            sigma=fixed_se,
            sigma_level=z,
            n_baseline=len(baseline),
            baseline_applied=window is not None,
            insufficient_data=insufficient,
        ),
        fixed_points=fixed_points,
        supports_variable_limits=denominators_vary_significantly(denominators),
        baseline_applied=window is not None,
        insufficient_data=insufficient,
    )


def _calculate_u_chart(series: MetricSeries, options: SPCOptions) -> SPCResult:
    z = options.sigma_level
    window = resolve_baseline_window(series.periods, options.baseline_start, options.baseline_end)
    baseline = _baseline_points(series, window)
    insufficient = len(series) < 2

    def exposure(p: SPCDataPoint) -> float:
        return p.denominator if p.denominator is not None else 1.0

    total_events = sum(p.numerator if p.numerator is not None else p.value for p in baseline)
    total_exposure = sum(exposure(p) for p in baseline)
    u_bar = total_events / total_exposure if total_exposure > 0 else 0.0

    def limits_for(n: float) -> Tuple[float, float, float]:
        se = math.sqrt(max(u_bar, 0.0) / n) if n > 0 else 0.0
        return u_bar + z * se, min(max(u_bar - z * se, 0.0), u_bar), se

    points, sigmas = [], []
    for p in series:
        ucl, lcl, se = limits_for(exposure(p))
        points.append(SPCPoint(p.period, p.value, u_bar, ucl, lcl))
        sigmas.append(se)

    denominators = [exposure(p) for p in series]
    fixed_ucl, fixed_lcl, fixed_se = limits_for(float(np.mean(denominators)))
    fixed_points = _constant_limit_points(series, u_bar, fixed_ucl, fixed_lcl)

    if not insufficient:
        _flag_special_causes(points, series, options, sigma=sigmas)
        _flag_special_causes(fixed_points, series, options, sigma=fixed_se)

    return SPCResult(
        chart_type=ChartType.U_CHART,
        center_line=u_bar,
        points=points,
        limits=ControlLimits(
            center_line=u_bar,
            ucl=fixed_ucl,
            lcl=fixed_lcl,
            sigma=fixed_se,
            sigma_level=z,
            n_baseline=len(baseline),
            baseline_applied=window is not None,
            insufficient_data=insufficient,
        ),
        fixed_points=fixed_points,
        supports_variable_limits=denominators_vary_significantly(denominators),
        baseline_applied=window is not None,
        insufficient_data=insufficient,
    )


# =============================================================================
# MAIN SPC FUNCTIONS
# =============================================================================

def calculate_spc(
    data_type: Union[DataType, str],
    data: Union[MetricSeries, Sequence[PointLike]],
    options: Optional[Union[SPCOptions, Mapping[str, Any]]] = None,
) -> SPCResult:
    """
    Calculate SPC results for a metric series.

    Args:
        data_type: 'proportion' (P chart), 'rate' (U chart) or
            'continuous' (I-MR chart)
        data: MetricSeries, or points/mappings with period and value
        options: SPCOptions or equivalent dict (sigma level, baseline,
            value domain, rules)

    Returns:
        SPCResult with center line, per-point limits and special causes.
        Empty input gives center_line 0 and no points.

    Raises:
        ValueError: If the data or options are invalid
    """
    data_type = DataType(data_type)
    if options is None:
        options = SPCOptions()
    elif not isinstance(options, SPCOptions):
        options = validate_spc_options(dict(options))

    series = data if isinstance(data, MetricSeries) else MetricSeries(data)
    chart_type = chart_type_for_data_type(data_type)

    if len(series) == 0:
        return SPCResult(chart_type=chart_type, center_line=0.0, points=[], insufficient_data=True)

    if chart_type is ChartType.P_CHART:
        return _calculate_p_chart(series, options)
    elif chart_type is ChartType.U_CHART:
        return _calculate_u_chart(series, options)
    return _calculate_imr(series, options)


def format_spc_summary(result: SPCResult, metric_name: str = '') -> str:
    """Format SPC results as a markdown summary."""
    title = f"## SPC Analysis: {metric_name}" if metric_name else "## SPC Analysis"
    lines = [
        title,
        "",
        f"**Chart Type:** {result.chart_type.value}",
        f"**Points Analyzed:** {result.n_points}",
    ]

    if result.insufficient_data:
        lines.extend(["", "Insufficient data for control limits (need at least 2 points)"])
        return "\n".join(lines)

    limits = result.limits
    lines.extend([
        "",
        "### Control Limits",
        f"- Center Line: {limits.center_line:.4f}",
        f"- UCL ({limits.sigma_level}σ): {limits.ucl:.4f}",
        f"- LCL ({limits.sigma_level}σ): {limits.lcl:.4f}",
    ])
    if result.baseline_applied:
        lines.append(f"- Frozen on a baseline of {limits.n_baseline} points")
    if result.supports_variable_limits:
        lines.append("- Subgroup sizes vary by more than 25%: variable limits shown")

    lines.extend([
        "",
        "### Special Causes",
        f"- Flagged: {result.n_special_causes} of {result.n_points} points",
    ])
    for point in result.get_special_cause_points():
        rules = ', '.join(r.value for r in point.special_cause_rules)
        lines.append(f"  - {point.period}: {rules}")

    return "\n".join(lines)
