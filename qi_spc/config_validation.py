"""
Configuration Validation Module
===============================
Schema validation for SPC options and metric definitions using pydantic.

Key Principle: Fail fast on bad configs. A typo in a metric definition
should raise an immediate, clear error - not silently produce a chart
with the wrong limits.

Features:
- Strict enum validation for units, cadences and data types
- Value range constraints (sigma level 1-3, positive rate multiplier)
- Unit to value-domain mapping for LCL clamping
- Helpful error messages wrapped in ValueError
"""

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .enums import (
    DEFAULT_RULES,
    AggregationType,
    DataType,
    DesiredDirection,
    MetricUnit,
    PeriodType,
    SpecialCauseRule,
    ValueDomain,
)

logger = logging.getLogger(__name__)

PeriodLabel = Union[datetime, date, int, str]

# Natural value range for each display unit. Currency and scores may be
# negative (refunds, net scores), so they stay unbounded.
UNIT_VALUE_DOMAINS = {
    MetricUnit.COUNT: ValueDomain.COUNT,
    MetricUnit.PERCENTAGE: ValueDomain.RATIO,
    MetricUnit.DURATION: ValueDomain.DURATION,
    MetricUnit.RATE: ValueDomain.RATE,
    MetricUnit.CURRENCY: ValueDomain.UNBOUNDED,
    MetricUnit.SCORE: ValueDomain.UNBOUNDED,
}


# =============================================================================
# SPC OPTIONS
# =============================================================================

class SPCOptions(BaseModel):
    """Options for a single SPC computation."""
    model_config = ConfigDict(frozen=True)

    sigma_level: int = Field(3, ge=1, le=3, description="Control limit width in sigmas")
    baseline_start: Optional[PeriodLabel] = Field(None, description="First period of the frozen baseline")
    baseline_end: Optional[PeriodLabel] = Field(None, description="Last period of the frozen baseline")
    value_domain: ValueDomain = Field(ValueDomain.UNBOUNDED, description="Floors the LCL at 0 unless unbounded")
    rules: Tuple[SpecialCauseRule, ...] = Field(DEFAULT_RULES, description="Special-cause rules to evaluate")
    percentage_scale: Optional[bool] = Field(
        None, description="P chart values are 0-100 (True) or 0-1 (False); None infers it from the values"
    )

    @field_validator('rules', mode='before')
    @classmethod
    def parse_rules(cls, v):
        if v is None:
            return DEFAULT_RULES
        parsed = []
        for rule in v:
            if isinstance(rule, str) and rule.upper() in SpecialCauseRule.__members__:
                rule = SpecialCauseRule[rule.upper()]
            if rule not in parsed:
                parsed.append(rule)
        return tuple(parsed)

    @property
    def has_baseline(self) -> bool:
        return self.baseline_start is not None or self.baseline_end is not None


# =============================================================================
# METRIC DEFINITION
# =============================================================================

class MetricDefinition(BaseModel):
    """A metric as configured by QI staff: what it measures and how to chart it."""
    name: str = Field(..., min_length=1, max_length=150, description="Metric name")
    unit: MetricUnit = Field(..., description="Display unit")
    period_type: PeriodType = Field(PeriodType.MONTHLY, description="Reporting cadence")
    aggregation_type: AggregationType = Field(AggregationType.AVERAGE, description="Roll-up within a period")
    data_type: DataType = Field(DataType.CONTINUOUS, description="Selects the control chart")
    spc_sigma_level: int = Field(3, ge=1, le=3, description="Control limit width in sigmas")
    baseline_start: Optional[date] = Field(None, description="First period of the frozen baseline")
    baseline_end: Optional[date] = Field(None, description="Last period of the frozen baseline")
    desired_direction: DesiredDirection = Field(DesiredDirection.NEUTRAL, description="Direction of improvement")
    value_domain: Optional[ValueDomain] = Field(None, description="Overrides the unit's natural value range")
    target: Optional[float] = Field(None, description="Goal value for scorecards")
    rate_multiplier: Optional[int] = Field(None, gt=0, description="Display multiplier for rates")
    rate_suffix: Optional[str] = Field(None, max_length=100, description="Display suffix for rates")

    @field_validator('name')
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator('baseline_start', 'baseline_end', mode='before')
    @classmethod
    def drop_time(cls, v):
        if isinstance(v, datetime):
            return v.date()
        if v == '':
            return None
        return v

    def resolved_value_domain(self) -> ValueDomain:
        if self.value_domain is not None:
            return self.value_domain
        return UNIT_VALUE_DOMAINS[self.unit]

    def to_spc_options(self, rules=DEFAULT_RULES, percentage_scale: Optional[bool] = None) -> SPCOptions:
        return SPCOptions(
            sigma_level=self.spc_sigma_level,
            baseline_start=self.baseline_start,
            baseline_end=self.baseline_end,
            value_domain=self.resolved_value_domain(),
            rules=rules,
            percentage_scale=percentage_scale,
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def validate_spc_options(options: Dict[str, Any]) -> SPCOptions:
    """
    Validate an SPC options dictionary.

    Raises:
        ValueError: If validation fails with detailed error message
    """
    try:
        return SPCOptions(**options)
    except ValidationError as e:
        raise ValueError(f"SPC options validation failed:\n{e}") from e


def validate_metric_definition(config: Dict[str, Any]) -> MetricDefinition:
    """
    Validate a metric definition dictionary.

    Args:
        config: Metric definition, e.g. {'name': 'Response time', 'unit': 'duration'}

    Returns:
        Validated MetricDefinition

    Raises:
        ValueError: If validation fails with detailed error message
    """
    try:
        return MetricDefinition(**config)
    except ValidationError as e:
        raise ValueError(f"Metric definition validation failed:\n{e}") from e


def validate_metric_definition_file(path: Union[str, Path]) -> List[MetricDefinition]:
    """
    Load and validate a JSON file holding one metric definition or a list of them.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the JSON is malformed or any definition is invalid
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Metric definition file not found: {path}")

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {str(e)}")

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"Expected an object or a list of objects in {path}")

    definitions = [validate_metric_definition(item) for item in data]
    logger.debug(f"Loaded {len(definitions)} metric definitions from {path}")
    return definitions
