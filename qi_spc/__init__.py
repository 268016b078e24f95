"""
QI SPC Engine
=============
Statistical Process Control for EMS quality-improvement metrics.

Components:
- spc: Control limits (I-MR, P, U charts), frozen baselines, SPC results
- special_cause: Run rules for special-cause detection
- series: Validated metric series with continuity detection
- aggregation: Per-period roll-up of raw entries (simple and weighted)
- trend: KPI-card trend summaries and desired-direction assessment
- config_validation: pydantic schemas for SPC options and metric definitions
- metric_analysis: Definition + entries -> SPC result, batch analysis
- export: DataFrame / JSON views of results for chart renderers

Usage:
    from qi_spc import calculate_spc, MetricSeries
    from qi_spc.config_validation import validate_metric_definition
    from qi_spc.metric_analysis import analyze_metric
    from qi_spc.trend import calculate_trend
"""

from .enums import (
    AggregationType,
    ChartType,
    DataType,
    DEFAULT_RULES,
    DesiredDirection,
    MetricUnit,
    PeriodType,
    SpecialCauseRule,
    ValueDomain,
    chart_type_for_data_type,
)

from .series import (
    MetricSeries,
    SPCDataPoint,
)

from .special_cause import check_special_cause_rules

from .spc import (
    ControlLimits,
    MovingRangePoint,
    SPCPoint,
    SPCResult,
    MIN_BASELINE_POINTS,
    calculate_imr_limits,
    calculate_spc,
    format_spc_summary,
    resolve_baseline_window,
)

from .trend import (
    Assessment,
    TrendDirection,
    TrendSummary,
    assess_signal,
    assess_trend,
    calculate_trend,
    latest_trend,
)

from .aggregation import (
    aggregate_by_period,
    aggregate_by_period_weighted,
    aggregate_values,
    build_spc_series,
)

from .config_validation import (
    MetricDefinition,
    SPCOptions,
    validate_metric_definition,
    validate_metric_definition_file,
    validate_spc_options,
)

from .metric_analysis import (
    analyze_metric,
    analyze_metrics_spc,
    metric_trend,
)

from .export import (
    moving_range_to_dataframe,
    spc_result_to_dataframe,
    spc_result_to_json,
    spc_result_to_records,
)

__version__ = "1.0.0"
