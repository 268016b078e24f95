"""
Domain Enumerations
===================
Shared vocabulary for metric definitions, control charts and special-cause
rules. Kept in one module so the engine and the configuration layer can
both depend on it without importing each other.
"""

from enum import Enum


class DataType(Enum):
    """How a metric's values are produced."""
    PROPORTION = "proportion"   # numerator / denominator, e.g. compliance rate
    RATE = "rate"               # events per unit of exposure
    CONTINUOUS = "continuous"   # individual measurements, e.g. response time


class ChartType(Enum):
    """Types of control charts."""
    P_CHART = "p-chart"
    U_CHART = "u-chart"
    I_MR = "i-mr"


class ValueDomain(Enum):
    """Natural value range of a metric, used to floor the LCL."""
    COUNT = "count"
    RATE = "rate"
    DURATION = "duration"
    RATIO = "ratio"
    UNBOUNDED = "unbounded"

    @property
    def allows_negative(self) -> bool:
        return self is ValueDomain.UNBOUNDED


class PeriodType(Enum):
    """Reporting cadence of a metric."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class AggregationType(Enum):
    """How multiple entries in one period are rolled up."""
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    LATEST = "latest"


class DesiredDirection(Enum):
    """Which way a metric should move to count as improvement."""
    INCREASE = "increase"
    DECREASE = "decrease"
    NEUTRAL = "neutral"


class MetricUnit(Enum):
    """Display unit of a metric definition."""
    COUNT = "count"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DURATION = "duration"
    SCORE = "score"
    RATE = "rate"


class SpecialCauseRule(Enum):
    """Run rules used to flag special-cause variation."""
    BEYOND_LIMITS = "Beyond control limits"
    RUN_OF_8 = "Run of 8+ on one side of center"
    TREND_OF_6 = "Trend of 6+ increasing or decreasing"
    ZONE_A_2OF3 = "2 of 3 beyond 2 sigma"
    ZONE_B_4OF5 = "4 of 5 beyond 1 sigma"


DEFAULT_RULES = (
    SpecialCauseRule.BEYOND_LIMITS,
    SpecialCauseRule.RUN_OF_8,
    SpecialCauseRule.TREND_OF_6,
)


def chart_type_for_data_type(data_type: DataType) -> ChartType:
    """Pick the control chart appropriate for a metric's data type."""
    if data_type is DataType.PROPORTION:
        return ChartType.P_CHART
    elif data_type is DataType.RATE:
        return ChartType.U_CHART
    elif data_type is DataType.CONTINUOUS:
        return ChartType.I_MR
    raise ValueError(f"Unknown data type: {data_type}")
