"""
Period Aggregation
==================
Roll raw metric entries (one per department, division or individual) up to
one value per period before charting.

For proportion and rate metrics, averaging pre-computed values gives every
department equal weight regardless of its exposure (the "average of
averages" problem). When numerator/denominator are available the weighted
value sum(numerators) / sum(denominators) is used instead.

Missing data is not zero: a period only exists if some entry reports it.
"""

from typing import Any, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .enums import AggregationType, DataType, PeriodType
from .series import MetricSeries, SPCDataPoint

Entries = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]

ENTRY_COLUMNS = ['period_start', 'value', 'numerator', 'denominator']

# Rounding for stored aggregates; keeps small raw rates (e.g. 2.64 per 100K)
ROUND_DECIMALS = 6


def _entries_frame(entries: Entries) -> pd.DataFrame:
    df = entries.copy() if isinstance(entries, pd.DataFrame) else pd.DataFrame(list(entries))
    if df.empty:
        return pd.DataFrame(columns=ENTRY_COLUMNS)

    for col in ('period_start', 'value'):
        if col not in df.columns:
            raise ValueError(f"Column '{col}' not found in entries")
    for col in ('numerator', 'denominator'):
        if col not in df.columns:
            df[col] = np.nan
        df[col] = pd.to_numeric(df[col])

    df['period_start'] = pd.to_datetime(df['period_start'])
    df['value'] = pd.to_numeric(df['value'])
    return df


def aggregate_values(
    values: Iterable[float],
    aggregation_type: Union[AggregationType, str],
) -> Optional[float]:
    """
    Aggregate values with the given method.

    Returns None for an empty input; 'latest' assumes chronological order.
    """
    values = list(values)
    if not values:
        return None

    aggregation_type = AggregationType(aggregation_type)
    arr = np.asarray(values, dtype=float)

    if aggregation_type is AggregationType.SUM:
        result = arr.sum()
    elif aggregation_type is AggregationType.MIN:
        result = arr.min()
    elif aggregation_type is AggregationType.MAX:
        result = arr.max()
    elif aggregation_type is AggregationType.LATEST:
        result = arr[-1]
    else:
        result = arr.mean()

    return round(float(result), ROUND_DECIMALS)


def aggregate_by_period(
    entries: Entries,
    aggregation_type: Union[AggregationType, str],
) -> pd.DataFrame:
    """
    Group entries by period_start and aggregate each period's values.

    Returns:
        DataFrame with 'period_start' and 'value', sorted by period
    """
    df = _entries_frame(entries)
    df = df[df['value'].notna()]
    if df.empty:
        return pd.DataFrame(columns=['period_start', 'value'])

    grouped = df.groupby('period_start', sort=True)['value'].apply(
        lambda s: aggregate_values(s.tolist(), aggregation_type)
    )
    return grouped.reset_index()


def _weighted_value(group: pd.DataFrame, data_type: DataType) -> Optional[float]:
    """sum(num) / sum(den) for the rows that carry both, or None."""
    nd = group[group['numerator'].notna() & group['denominator'].notna()]
    total_den = nd['denominator'].sum()
    if nd.empty or total_den <= 0:
        return None
    rate = nd['numerator'].sum() / total_den
    return float(rate * 100 if data_type is DataType.PROPORTION else rate)


def aggregate_by_period_weighted(
    entries: Entries,
    data_type: Union[DataType, str],
    aggregation_type: Union[AggregationType, str],
) -> pd.DataFrame:
    """
    Weighted aggregation for rate and proportion metrics.

    Proportions are returned as percentages, rates as raw ratios. Periods
    without usable numerator/denominator fall back to `aggregation_type`.
    """
    data_type = DataType(data_type)
    if data_type is DataType.CONTINUOUS:
        return aggregate_by_period(entries, aggregation_type)

    df = _entries_frame(entries)
    rows = []
    for period, group in df.groupby('period_start', sort=True):
        value = _weighted_value(group, data_type)
        if value is not None:
            value = round(value, ROUND_DECIMALS)
        else:
            value = aggregate_values(group['value'].dropna().tolist(), aggregation_type)
        if value is None:
            continue
        rows.append({'period_start': period, 'value': value})
    return pd.DataFrame(rows, columns=['period_start', 'value'])


def build_spc_series(
    entries: Entries,
    data_type: Union[DataType, str],
    aggregation_type: Union[AggregationType, str] = AggregationType.AVERAGE,
    period_type: Optional[PeriodType] = None,
) -> MetricSeries:
    """
    Turn raw entries into the per-period series the SPC engine expects.

    Proportion and rate periods keep their summed numerator and denominator
    so P and U charts can size their limits; continuous metrics are
    aggregated with `aggregation_type`.
    """
    data_type = DataType(data_type)
    df = _entries_frame(entries)
    points = []

    for period, group in df.groupby('period_start', sort=True):
        if data_type is not DataType.CONTINUOUS:
            value = _weighted_value(group, data_type)
            if value is not None:
                nd = group[group['numerator'].notna() & group['denominator'].notna()]
                points.append(SPCDataPoint(
                    period=period,
                    value=value,
                    numerator=float(nd['numerator'].sum()),
                    denominator=float(nd['denominator'].sum()),
                ))
                continue
        value = aggregate_values(group['value'].dropna().tolist(), aggregation_type)
        if value is not None:
            points.append(SPCDataPoint(period=period, value=value))

    return MetricSeries(points, period_type)
