"""
Tests for score computation.
"""

import pytest

from tabulator.errors import ValidationFailure
from tabulator.models import Criterion, JudgedFormat, QuizFormat, Round
from tabulator.scoring import (
    clamp_entries,
    compute_total,
    display_total,
    max_possible,
    raw_total,
    validate_format,
)


class TestQuizTotals:
    """Round entries are item counts worth `points` each."""

    def test_scenario_a(self, quiz_event):
        assert compute_total(quiz_event.format, {"R1": 5, "R2": 3}, 0) == 11

    def test_scenario_b_deduction(self, quiz_event):
        assert compute_total(quiz_event.format, {"R1": 5, "R2": 3}, 2) == 9

    def test_negative_entry_clamped_to_zero(self, quiz_event):
        assert compute_total(quiz_event.format, {"R1": -4, "R2": 3}) == 6

    def test_no_upper_clamp(self, quiz_event):
        assert compute_total(quiz_event.format, {"R1": 500}) == 500

    def test_display_rounds_half_up(self, quiz_event):
        assert display_total(quiz_event.format, 10.5) == 11
        assert display_total(quiz_event.format, 10.49) == 10

    def test_open_ended_max(self, quiz_event):
        assert max_possible(quiz_event.format) is None


class TestJudgedTotals:

    def test_scenario_c_clamps_above_weight(self, judged_event):
        assert compute_total(judged_event.format, {"C1": 70, "C2": 20}) == 80

    def test_negative_entry_clamped(self, judged_event):
        assert compute_total(judged_event.format, {"C1": -10, "C2": 20}) == 20

    def test_missing_and_non_numeric_entries_are_zero(self, judged_event):
        assert compute_total(judged_event.format, {"C1": "abc"}) == 0
        assert compute_total(judged_event.format, {}) == 0
        assert compute_total(judged_event.format, None) == 0

    def test_numeric_strings_accepted(self, judged_event):
        assert compute_total(judged_event.format, {"C1": "50.5", "C2": "10"}) == 60.5

    def test_display_two_decimals(self, judged_event):
        assert display_total(judged_event.format, 87.4567) == 87.46

    def test_max_possible(self, judged_event):
        assert max_possible(judged_event.format) == 100


class TestDeductions:

    def test_total_never_negative(self, judged_event):
        assert compute_total(judged_event.format, {"C1": 10}, 50) == 0

    def test_negative_deduction_ignored(self, judged_event):
        assert compute_total(judged_event.format, {"C1": 10}, -5) == 10

    def test_non_numeric_deduction_ignored(self, judged_event):
        assert compute_total(judged_event.format, {"C1": 10}, "two") == 10

    def test_formula_holds_across_inputs(self, judged_event):
        fmt = judged_event.format
        for c1 in (-5, 0, 30, 60, 75):
            for c2 in (0, 25, 40, 90):
                for deduction in (0, 5, 200):
                    expected = max(0, min(max(c1, 0), 60) + min(max(c2, 0), 40) - deduction)
                    total = compute_total(fmt, {"C1": c1, "C2": c2}, deduction)
                    assert total == expected
                    assert total >= 0


class TestActiveFieldSet:

    def test_stale_keys_ignored(self, judged_event):
        entries = {"C1": 50, "C2": 30, "OLD": 99}
        assert compute_total(judged_event.format, entries) == 80

    def test_recompute_after_criteria_edit(self):
        stored_entries = {"C1": 50, "C2": 30}
        edited = JudgedFormat(criteria=[
            Criterion(id="C1", name="Voice Quality", weight=70),
            Criterion(id="C3", name="Interpretation", weight=30),
        ])
        # C2 no longer exists; only C1 counts
        assert compute_total(edited, stored_entries) == 50
        assert compute_total(edited, stored_entries) == compute_total(edited, stored_entries)

    def test_raw_total_before_deduction(self, quiz_event):
        assert raw_total(quiz_event.format, {"R1": 1, "R2": 1, "R9": 100}) == 3


class TestClampEntries:

    def test_judged_clamped_and_filtered(self, judged_event):
        clean = clamp_entries(judged_event.format, {"C1": 70, "C2": "15", "X": 5})
        assert clean == {"C1": 60.0, "C2": 15.0}

    def test_quiz_keeps_large_values(self, quiz_event):
        clean = clamp_entries(quiz_event.format, {"R1": 12, "R2": -1})
        assert clean == {"R1": 12.0, "R2": 0.0}

    def test_absent_fields_not_added(self, judged_event):
        assert clamp_entries(judged_event.format, {"C2": 10}) == {"C2": 10.0}


class TestValidateFormat:

    def test_weights_must_total_100(self):
        fmt = JudgedFormat(criteria=[
            Criterion(id="a", name="Mastery", weight=50),
            Criterion(id="b", name="Delivery", weight=40),
        ])
        with pytest.raises(ValidationFailure):
            validate_format(fmt)

    def test_valid_weights(self, judged_event):
        validate_format(judged_event.format)

    def test_blank_name_rejected(self):
        fmt = QuizFormat(rounds=[Round(id="r", name="  ", points=1)])
        with pytest.raises(ValidationFailure):
            validate_format(fmt)

    def test_duplicate_ids_rejected(self):
        fmt = QuizFormat(rounds=[
            Round(id="r", name="Easy", points=1),
            Round(id="r", name="Hard", points=3),
        ])
        with pytest.raises(ValidationFailure):
            validate_format(fmt)
