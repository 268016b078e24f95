"""
Test Suite for Special-Cause Rules
==================================
Tests for limit, run, trend and zone rules and continuity breaks.

Run with: python -m pytest tests/test_special_cause.py -v
"""

import sys
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from qi_spc.enums import DEFAULT_RULES, SpecialCauseRule
from qi_spc.special_cause import check_special_cause_rules

ALL_RULES = list(SpecialCauseRule)


def flagged(violations):
    return [i for i, v in enumerate(violations) if v]


class TestBeyondLimits:
    """Rule 1: a single point outside the control limits."""

    def test_point_above_ucl(self):
        violations = check_special_cause_rules([10.0, 10.0, 10.0, 10.0, 15.0], 10.0, 10.5, 9.5)

        assert SpecialCauseRule.BEYOND_LIMITS in violations[-1]
        assert flagged(violations) == [4]

    def test_point_below_lcl(self):
        violations = check_special_cause_rules([10.0, 9.0], 10.0, 10.5, 9.5)
        assert violations[1] == [SpecialCauseRule.BEYOND_LIMITS]

    def test_point_on_ucl_not_flagged(self):
        violations = check_special_cause_rules([10.0, 13.0, 7.0], 10.0, 13.0, 7.0)
        assert flagged(violations) == []

    def test_point_just_past_ucl_flagged(self):
        violations = check_special_cause_rules([10.0, 13.0001], 10.0, 13.0, 7.0)
        assert flagged(violations) == [1]

    def test_first_point_only_rule_one(self):
        violations = check_special_cause_rules([20.0], 10.0, 13.0, 7.0)
        assert violations == [[SpecialCauseRule.BEYOND_LIMITS]]

    def test_per_point_limits(self):
        values = [0.5, 0.5]
        violations = check_special_cause_rules(values, 0.4, [0.6, 0.45], [0.2, 0.35])
        assert flagged(violations) == [1]

    def test_empty_series(self):
        assert check_special_cause_rules([], 0.0, 0.0, 0.0) == []


class TestRunOfEight:
    """Rule 2: a sustained shift on one side of the center line."""

    def test_eighth_point_flagged(self):
        values = [11.0] * 8
        violations = check_special_cause_rules(values, 10.0, 20.0, 0.0)

        assert flagged(violations) == [7]
        assert violations[7] == [SpecialCauseRule.RUN_OF_8]

    def test_seven_points_not_flagged(self):
        violations = check_special_cause_rules([9.0] * 7, 10.0, 20.0, 0.0)
        assert flagged(violations) == []

    def test_longer_run_keeps_flagging(self):
        violations = check_special_cause_rules([9.0] * 10, 10.0, 20.0, 0.0)
        assert flagged(violations) == [7, 8, 9]

    def test_point_on_center_breaks_run(self):
        values = [11.0] * 4 + [10.0] + [11.0] * 4
        violations = check_special_cause_rules(values, 10.0, 20.0, 0.0)
        assert flagged(violations) == []

    def test_constant_on_center_never_runs(self):
        violations = check_special_cause_rules([10.0] * 12, 10.0, 10.0, 10.0)
        assert flagged(violations) == []

    def test_gap_restarts_run(self):
        values = [11.0] * 8

        continuous = check_special_cause_rules(values, 10.0, 20.0, 0.0)
        broken = check_special_cause_rules(values, 10.0, 20.0, 0.0, segment_starts=[0, 4])

        assert flagged(continuous) == [7]
        assert flagged(broken) == []


class TestTrendOfSix:
    """Rule 3: a monotonic run of consecutive points."""

    def test_increasing_sixth_point_flagged(self):
        violations = check_special_cause_rules([1, 2, 3, 4, 5, 6], 3.5, 100.0, -100.0)

        assert flagged(violations) == [5]
        assert violations[5] == [SpecialCauseRule.TREND_OF_6]

    def test_decreasing(self):
        violations = check_special_cause_rules([6, 5, 4, 3, 2, 1, 0], 3.0, 100.0, -100.0)
        assert flagged(violations) == [5, 6]

    def test_plateau_resets(self):
        violations = check_special_cause_rules([1, 2, 3, 3, 5, 6], 3.5, 100.0, -100.0)
        assert flagged(violations) == []

    def test_plateau_restart_needs_six_more(self):
        values = [1, 2, 3, 3, 4, 5, 6, 7, 8]
        violations = check_special_cause_rules(values, 4.0, 100.0, -100.0)

        # Counting restarts at the second 3 (index 3); six points end at index 8
        assert flagged(violations) == [8]

    def test_gap_restarts_trend(self):
        values = [1, 2, 3, 4, 5, 6]
        violations = check_special_cause_rules(
            values, 3.5, 100.0, -100.0, segment_starts=[3],
        )
        assert flagged(violations) == []


class TestZoneRules:
    """Optional Western Electric zone rules."""

    def test_zone_rules_off_by_default(self):
        assert SpecialCauseRule.ZONE_A_2OF3 not in DEFAULT_RULES
        assert SpecialCauseRule.ZONE_B_4OF5 not in DEFAULT_RULES

        values = [10.0, 12.5, 12.5]
        violations = check_special_cause_rules(values, 10.0, 13.0, 7.0)
        assert flagged(violations) == []

    def test_two_of_three_beyond_two_sigma(self):
        values = [10.0, 12.5, 10.5, 12.2]
        violations = check_special_cause_rules(values, 10.0, 13.0, 7.0, rules=ALL_RULES)

        assert SpecialCauseRule.ZONE_A_2OF3 in violations[3]
        assert SpecialCauseRule.ZONE_A_2OF3 not in violations[2]

    def test_opposite_sides_do_not_count(self):
        values = [10.0, 12.5, 7.5]
        violations = check_special_cause_rules(values, 10.0, 13.0, 7.0, rules=ALL_RULES)
        assert SpecialCauseRule.ZONE_A_2OF3 not in violations[2]

    def test_four_of_five_beyond_one_sigma(self):
        values = [8.5, 11.5, 11.2, 9.0, 11.4, 11.3]
        violations = check_special_cause_rules(values, 10.0, 13.0, 7.0, rules=ALL_RULES)

        assert SpecialCauseRule.ZONE_B_4OF5 in violations[5]
        assert SpecialCauseRule.ZONE_B_4OF5 not in violations[4]

    def test_explicit_sigma(self):
        values = [0.0, 2.5, 2.5]
        violations = check_special_cause_rules(
            values, 0.0, 100.0, -100.0,
            rules=[SpecialCauseRule.ZONE_A_2OF3], sigma=1.0,
        )
        assert violations[2] == [SpecialCauseRule.ZONE_A_2OF3]


class TestRealisticSeries:
    """Rules working together on noisy data."""

    def test_in_control_noise_rarely_flagged(self):
        np.random.seed(42)
        values = np.random.normal(10, 0.1, 50)

        violations = check_special_cause_rules(values, 10.0, 10.3, 9.7)
        n_flagged = len(flagged(violations))

        assert n_flagged < 10
        print(f"[PASS] {n_flagged} of {len(values)} in-control points flagged")

    def test_multiple_rules_on_one_point(self):
        values = [1, 2, 3, 4, 5, 50]
        violations = check_special_cause_rules(values, 3.0, 10.0, -4.0)

        assert SpecialCauseRule.BEYOND_LIMITS in violations[5]
        assert SpecialCauseRule.TREND_OF_6 in violations[5]
