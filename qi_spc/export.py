"""
SPC Result Export
=================
Tabular and JSON-ready views of SPC results for chart renderers.

Computed SPC fields come straight from the result. Presentation fields
(the favorable/unfavorable signal class of a special-cause point) are
added here, in a separate step, from the metric's desired direction.
"""

import json
from typing import Any, Dict, List, Optional

import pandas as pd

from .enums import DesiredDirection
from .spc import SPCPoint, SPCResult
from .trend import assess_signal

POINT_COLUMNS = [
    'period', 'value', 'center_line', 'ucl', 'lcl',
    'special_cause', 'special_cause_rules', 'signal',
]


def _signal(point: SPCPoint, desired: Optional[DesiredDirection]) -> Optional[str]:
    if not point.special_cause or desired is None:
        return None
    return assess_signal(point.value, point.center_line, desired).value


def spc_result_to_records(
    result: SPCResult,
    desired_direction: Optional[DesiredDirection] = None,
    fixed: bool = False,
) -> List[Dict[str, Any]]:
    """
    One dict per point, with a 'signal' presentation field.

    Args:
        result: SPC result
        desired_direction: Direction of improvement; None leaves signal empty
        fixed: Use fixed_points (frozen / average-denominator limits)
            instead of points
    """
    points = result.fixed_points if fixed else result.points
    if points is None:
        raise ValueError(f"{result.chart_type.value} result has no fixed points")

    records = []
    for point in points:
        record = point.to_dict()
        record['signal'] = _signal(point, desired_direction)
        records.append(record)
    return records


def spc_result_to_dataframe(
    result: SPCResult,
    desired_direction: Optional[DesiredDirection] = None,
    fixed: bool = False,
) -> pd.DataFrame:
    """Points as a DataFrame; rules are joined into one string per point."""
    df = pd.DataFrame(
        spc_result_to_records(result, desired_direction, fixed),
        columns=POINT_COLUMNS,
    )
    df['special_cause_rules'] = df['special_cause_rules'].apply(lambda rules: '; '.join(rules))
    return df


def moving_range_to_dataframe(result: SPCResult) -> pd.DataFrame:
    """Moving range chart of an I-MR result (empty for P/U charts)."""
    rows = [p.to_dict() for p in result.moving_range or []]
    return pd.DataFrame(rows, columns=['period', 'value', 'center_line', 'ucl', 'lcl'])


def spc_result_to_json(result: SPCResult, indent: Optional[int] = 2) -> str:
    """Serialise a result; dates and timestamps become ISO strings."""
    return json.dumps(result.to_dict(), indent=indent, default=_json_default)


def _json_default(obj: Any) -> Any:
    if hasattr(obj, 'isoformat'):
        return obj.isoformat()
    if hasattr(obj, 'item'):
        return obj.item()
    return str(obj)
