"""
Metric Analysis
===============
High-level API joining a metric definition and its raw entries to an SPC
result. This is the call a dashboard, scorecard or QI campaign report
makes; everything below it is pure computation.

Usage:
    definition = validate_metric_definition({'name': 'Response time', 'unit': 'duration'})
    result = analyze_metric(definition, entries)
"""

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .aggregation import Entries, build_spc_series
from .config_validation import MetricDefinition
from .enums import DEFAULT_RULES, DataType, SpecialCauseRule
from .spc import SPCResult, calculate_spc
from .trend import TrendSummary, latest_trend

logger = logging.getLogger(__name__)


def analyze_metric(
    definition: MetricDefinition,
    entries: Entries,
    rules: Iterable[SpecialCauseRule] = DEFAULT_RULES,
) -> Optional[SPCResult]:
    """
    Compute SPC results for one metric.

    Args:
        definition: Validated metric definition (chart type, sigma level,
            baseline, value domain, cadence)
        entries: Raw entries with period_start, value and optional
            numerator/denominator
        rules: Special-cause rules to evaluate

    Returns:
        SPCResult, or None when fewer than 2 periods have data

    Raises:
        ValueError: If the entries contain invalid values
    """
    series = build_spc_series(
        entries,
        definition.data_type,
        definition.aggregation_type,
        definition.period_type,
    )
    if len(series) < 2:
        logger.debug(f"'{definition.name}': {len(series)} periods, not enough for SPC")
        return None

    # build_spc_series stores proportions as percentages
    percentage_scale = True if definition.data_type is DataType.PROPORTION else None
    options = definition.to_spc_options(tuple(rules), percentage_scale=percentage_scale)
    return calculate_spc(definition.data_type, series, options)


def metric_trend(definition: MetricDefinition, entries: Entries) -> Optional[TrendSummary]:
    """KPI-card trend for a metric: change between its last two periods."""
    series = build_spc_series(
        entries,
        definition.data_type,
        definition.aggregation_type,
        definition.period_type,
    )
    return latest_trend(series.values)


def analyze_metrics_spc(
    jobs: Mapping[str, Tuple[MetricDefinition, Entries]],
    rules: Iterable[SpecialCauseRule] = DEFAULT_RULES,
) -> Dict[str, SPCResult]:
    """
    Run SPC analysis for several metrics.

    Args:
        jobs: Dict of key -> (definition, entries)
        rules: Special-cause rules to evaluate

    Returns:
        Dictionary mapping keys to SPCResult. Metrics with too little data
        or invalid entries are logged and left out.
    """
    rules = tuple(rules)
    results = {}

    for key, (definition, entries) in jobs.items():
        try:
            result = analyze_metric(definition, entries, rules)
        except ValueError as e:
            logger.warning(f"SPC analysis failed for {key}: {e}")
            continue
        if result is not None:
            results[key] = result

    logger.info(f"SPC analysis complete: {len(results)} of {len(jobs)} metrics charted")
    return results
