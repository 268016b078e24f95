"""
Test Suite for Metric Series and Period Aggregation
===================================================
Run with: python -m pytest tests/test_series_aggregation.py -v
"""

import sys
from datetime import date
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from qi_spc.aggregation import (
    aggregate_by_period,
    aggregate_by_period_weighted,
    aggregate_values,
    build_spc_series,
)
from qi_spc.enums import AggregationType, DataType, PeriodType
from qi_spc.series import MetricSeries, SPCDataPoint


def create_entries_dataframe():
    """Two departments reporting a compliance metric for three months."""
    return pd.DataFrame({
        'period_start': pd.to_datetime([
            '2025-01-01', '2025-01-01',
            '2025-02-01', '2025-02-01',
            '2025-03-01', '2025-03-01',
        ]),
        'department': ['North', 'South'] * 3,
        'value': [90.0, 80.0, 95.0, 70.0, 88.0, 84.0],
        'numerator': [45, 160, 19, 70, 44, 168],
        'denominator': [50, 200, 20, 100, 50, 200],
    })


class TestMetricSeries:

    def test_from_values(self):
        series = MetricSeries.from_values([1.0, 2.0, 3.0])

        assert len(series) == 3
        assert series.periods == [0, 1, 2]
        np.testing.assert_array_equal(series.values, [1.0, 2.0, 3.0])

    def test_accepts_mappings(self):
        series = MetricSeries([{'period_start': date(2025, 1, 1), 'value': 4}])
        assert series[0] == SPCDataPoint(date(2025, 1, 1), 4.0)

    def test_rejects_nan(self):
        with pytest.raises(ValueError, match="finite"):
            MetricSeries.from_values([1.0, float('nan')])

    def test_rejects_infinity(self):
        with pytest.raises(ValueError, match="finite"):
            MetricSeries.from_values([1.0, float('inf')])

    def test_rejects_non_numeric(self):
        with pytest.raises(ValueError, match="numeric"):
            MetricSeries.from_values([1.0, 'n/a'])

    def test_rejects_mapping_without_value(self):
        with pytest.raises(ValueError, match="missing 'value'"):
            MetricSeries([{'period': 'P1'}, {'period': 'P2', 'value': 1}])

    def test_rejects_mapping_without_period(self):
        with pytest.raises(ValueError, match="missing 'period'"):
            MetricSeries([{'value': 1}])

    def test_rejects_duplicate_period(self):
        with pytest.raises(ValueError, match="Duplicate"):
            MetricSeries.from_values([1.0, 2.0], periods=[date(2025, 1, 1), date(2025, 1, 1)])

    def test_rejects_unordered_periods(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            MetricSeries.from_values([1.0, 2.0], periods=['2025-02', '2025-01'])

    def test_rejects_negative_denominator(self):
        with pytest.raises(ValueError, match="Denominator"):
            MetricSeries([SPCDataPoint('2025-01', 0.5, 1, -2)])

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            MetricSeries.from_values([1.0, 2.0], periods=['a'])

    def test_segments_without_period_type(self):
        series = MetricSeries.from_values(
            [1, 2, 3], periods=[date(2025, 1, 1), date(2025, 2, 1), date(2025, 6, 1)],
        )
        assert series.segment_starts() == [0]

    def test_monthly_gap(self):
        series = MetricSeries.from_values(
            [1, 2, 3, 4],
            periods=[date(2025, 1, 1), date(2025, 2, 1), date(2025, 4, 1), date(2025, 5, 1)],
            period_type=PeriodType.MONTHLY,
        )
        assert series.segment_starts() == [0, 2]

    def test_weekly_gap(self):
        series = MetricSeries.from_values(
            [1, 2, 3],
            periods=[date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 27)],
            period_type='weekly',
        )
        assert series.period_type is PeriodType.WEEKLY
        assert series.segment_starts() == [0, 2]

    def test_quarterly_no_gap(self):
        series = MetricSeries.from_values(
            [1, 2, 3],
            periods=[date(2024, 10, 1), date(2025, 1, 1), date(2025, 4, 1)],
            period_type=PeriodType.QUARTERLY,
        )
        assert series.segment_starts() == [0]

    def test_empty_segments(self):
        assert MetricSeries().segment_starts() == []

    def test_from_dataframe_drops_missing_and_sorts(self):
        df = pd.DataFrame({
            'period_start': pd.to_datetime(['2025-03-01', '2025-01-01', '2025-02-01']),
            'value': [3.0, 1.0, np.nan],
        })

        series = MetricSeries.from_dataframe(df)

        assert len(series) == 2
        assert series.values.tolist() == [1.0, 3.0]

    def test_from_dataframe_missing_column(self):
        df = pd.DataFrame({'period_start': [], 'value': []})
        with pytest.raises(ValueError, match="not found"):
            MetricSeries.from_dataframe(df, numerator_col='numerator')

    def test_to_dataframe(self):
        series = MetricSeries([SPCDataPoint('2025-01', 0.9, 9, 10)])
        df = series.to_dataframe()

        assert list(df.columns) == ['period', 'value', 'numerator', 'denominator']
        assert df.iloc[0]['denominator'] == 10


class TestAggregateValues:

    @pytest.mark.parametrize("method,expected", [
        ('sum', 6.0),
        ('average', 2.0),
        ('min', 1.0),
        ('max', 3.0),
        ('latest', 3.0),
    ])
    def test_methods(self, method, expected):
        assert aggregate_values([1.0, 2.0, 3.0], method) == expected

    def test_empty_is_none(self):
        assert aggregate_values([], AggregationType.SUM) is None

    def test_rounded_to_six_places(self):
        assert aggregate_values([0.00000264444], 'average') == 0.000003

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            aggregate_values([1.0], 'median')


class TestPeriodAggregation:

    def test_simple_average(self):
        result = aggregate_by_period(create_entries_dataframe(), 'average')

        assert len(result) == 3
        assert result['value'].tolist() == [85.0, 82.5, 86.0]
        assert result['period_start'].is_monotonic_increasing

    def test_from_records(self):
        entries = [
            {'period_start': '2025-02-01', 'value': 4.0},
            {'period_start': '2025-01-01', 'value': 2.0},
            {'period_start': '2025-01-01', 'value': 6.0},
        ]
        result = aggregate_by_period(entries, 'sum')

        assert result['value'].tolist() == [8.0, 4.0]

    def test_empty_entries(self):
        assert aggregate_by_period([], 'average').empty

    @pytest.mark.parametrize("data_type", ['continuous', 'proportion'])
    def test_missing_values_ignored(self, data_type):
        entries = [
            {'period_start': '2025-01-01', 'value': 90.0},
            {'period_start': '2025-01-01', 'value': None},
            {'period_start': '2025-02-01', 'value': None},
        ]
        result = aggregate_by_period_weighted(entries, data_type, 'average')
        series = build_spc_series(entries, data_type)

        assert result['value'].tolist() == [90.0]
        assert series.values.tolist() == [90.0]

    def test_weighted_proportion(self):
        result = aggregate_by_period_weighted(create_entries_dataframe(), 'proportion', 'average')

        # January: (45 + 160) / (50 + 200) = 82%
        assert result['value'].tolist() == pytest.approx([82.0, 74.166667, 84.8])

    def test_weighted_rate(self):
        result = aggregate_by_period_weighted(create_entries_dataframe(), DataType.RATE, 'average')
        assert result['value'].iloc[0] == pytest.approx(0.82)

    def test_weighted_falls_back_without_counts(self):
        entries = [
            {'period_start': '2025-01-01', 'value': 90.0},
            {'period_start': '2025-01-01', 'value': 70.0},
        ]
        result = aggregate_by_period_weighted(entries, 'proportion', 'average')
        assert result['value'].tolist() == [80.0]

    def test_continuous_ignores_counts(self):
        result = aggregate_by_period_weighted(create_entries_dataframe(), 'continuous', 'max')
        assert result['value'].tolist() == [90.0, 95.0, 88.0]


class TestBuildSPCSeries:

    def test_proportion_keeps_counts(self):
        series = build_spc_series(create_entries_dataframe(), 'proportion', period_type=PeriodType.MONTHLY)

        assert len(series) == 3
        first = series[0]
        assert first.value == pytest.approx(82.0)
        assert first.numerator == 205
        assert first.denominator == 250
        assert series.period_type is PeriodType.MONTHLY

    def test_continuous_aggregates(self):
        series = build_spc_series(create_entries_dataframe(), 'continuous', 'min')

        assert series.values.tolist() == [80.0, 70.0, 84.0]
        assert series[0].denominator is None

    def test_periods_are_timestamps(self):
        series = build_spc_series(create_entries_dataframe(), 'continuous')
        assert series.periods[0] == pd.Timestamp('2025-01-01')
