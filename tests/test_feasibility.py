"""Tests for empirical clause feasibility.

Covers:
  - classify_feasibility() bands, including the mirrored low-operator case
  - EmpiricalFeasibilityAnalyzer over direct and delta clauses
  - Missing operands leave the denominator
"""

import pytest

from expression_diagnostics.clauses import ExtractedClause, extract_non_axis_clauses
from expression_diagnostics.feasibility import (
    ClauseClassification,
    EmpiricalFeasibilityAnalyzer,
    classify_feasibility,
)
from expression_diagnostics.thresholds import DEFAULT_THRESHOLDS


def _clause(path, op, t, operands=None):
    is_delta = operands is not None
    return ExtractedClause(path, op, t, is_delta,
                           "delta" if is_delta else "emotion",
                           "prereqs[0]", operands)


def _make_contexts(values, key="joy"):
    return [{"emotions": {key: v}} for v in values]


# ═══════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════

class TestClassifyFeasibility:
    """classify_feasibility() decision table."""

    def test_rare(self):
        assert classify_feasibility(10000, 0.0005, 0.9, 0.5, ">=") \
            == ClauseClassification.RARE

    def test_ok(self):
        assert classify_feasibility(100, 0.2, 0.9, 0.5, ">=") \
            == ClauseClassification.OK

    def test_rare_boundary_is_exclusive(self):
        assert classify_feasibility(1000, 0.001, 0.9, 0.5, ">=") \
            == ClauseClassification.OK

    def test_empirically_unreachable_high(self):
        assert classify_feasibility(100, 0.0, 0.4, 0.5, ">=") \
            == ClauseClassification.EMPIRICALLY_UNREACHABLE

    def test_empirically_unreachable_low(self):
        assert classify_feasibility(100, 0.0, 0.3, 0.2, "<=") \
            == ClauseClassification.EMPIRICALLY_UNREACHABLE

    def test_impossible_when_extreme_touches_threshold(self):
        # strict > at the observed ceiling
        assert classify_feasibility(100, 0.0, 0.5, 0.5, ">") \
            == ClauseClassification.IMPOSSIBLE

    def test_unknown(self):
        assert classify_feasibility(0, None, None, 0.5, ">=") \
            == ClauseClassification.UNKNOWN

    def test_custom_rare_threshold(self):
        assert classify_feasibility(100, 0.005, 0.9, 0.5, ">=",
                                    rare_threshold=0.01) \
            == ClauseClassification.RARE


# ═══════════════════════════════════════════════════════════════════
# Analyzer
# ═══════════════════════════════════════════════════════════════════

class TestEmpiricalFeasibilityAnalyzer:
    """EmpiricalFeasibilityAnalyzer.analyze()."""

    def test_direct_clause(self):
        contexts = _make_contexts([0.1, 0.4, 0.6, 0.8])
        (row,) = EmpiricalFeasibilityAnalyzer().analyze(
            [_clause("emotions.joy", ">=", 0.5)], contexts, "expr")
        assert row.pass_rate == pytest.approx(0.5)
        assert row.valid_count == 4
        assert row.pass_count == 2
        assert row.max_value == pytest.approx(0.8)
        assert row.min_value == pytest.approx(0.1)
        assert row.signal == "direct"
        assert row.classification == ClauseClassification.OK
        assert row.evidence.best_sample["index"] == 3
        assert "2/4 contexts pass" in row.evidence.note

    def test_low_operator_best_sample(self):
        contexts = _make_contexts([0.05, 0.15, 0.6])
        (row,) = EmpiricalFeasibilityAnalyzer().analyze(
            [_clause("emotions.joy", "<", 0.2)], contexts)
        assert row.pass_count == 2
        assert row.evidence.best_sample["index"] == 0
        assert row.evidence.best_sample["margin"] == pytest.approx(0.15)

    def test_never_reached(self):
        contexts = _make_contexts([0.1, 0.2, 0.3])
        (row,) = EmpiricalFeasibilityAnalyzer().analyze(
            [_clause("emotions.joy", ">=", 0.9)], contexts)
        assert row.pass_rate == 0.0
        assert row.classification == ClauseClassification.EMPIRICALLY_UNREACHABLE
        assert row.evidence.best_sample is None

    def test_missing_operand_left_out(self):
        contexts = _make_contexts([0.6, 0.7]) + [{"emotions": {}}, {}]
        (row,) = EmpiricalFeasibilityAnalyzer().analyze(
            [_clause("emotions.joy", ">=", 0.5)], contexts)
        assert row.valid_count == 2
        assert row.pass_rate == pytest.approx(1.0)

    def test_no_valid_context_is_unknown(self):
        (row,) = EmpiricalFeasibilityAnalyzer().analyze(
            [_clause("emotions.joy", ">=", 0.5)], [{}, {}])
        assert row.classification == ClauseClassification.UNKNOWN
        assert row.pass_rate is None
        assert row.to_dict()["pass_rate"] is None

    def test_delta_clause(self):
        contexts = [
            {"emotions": {"joy": 0.8}, "previousEmotions": {"joy": 0.2}},
            {"emotions": {"joy": 0.5}, "previousEmotions": {"joy": 0.4}},
            {"emotions": {"joy": 0.5}},
        ]
        clause = _clause("emotions.joy - previousEmotions.joy", ">=", 0.3,
                         ("emotions.joy", "previousEmotions.joy"))
        (row,) = EmpiricalFeasibilityAnalyzer().analyze([clause], contexts)
        assert row.signal == "delta"
        assert row.valid_count == 2
        assert row.pass_count == 1

    def test_rare_threshold_from_registry(self):
        th = DEFAULT_THRESHOLDS.replace({"feasibility.rare_threshold": 0.6})
        contexts = _make_contexts([0.1, 0.9])
        (row,) = EmpiricalFeasibilityAnalyzer(thresholds=th).analyze(
            [_clause("emotions.joy", ">=", 0.5)], contexts)
        assert row.classification == ClauseClassification.RARE

    def test_from_extracted_clauses(self):
        prereqs = [{"logic": {"and": [
            {">=": [{"var": "emotions.joy"}, 0.5]},
            {"<": [{"var": "emotions.fear"}, 0.2]},
        ]}}]
        contexts = [{"emotions": {"joy": 0.7, "fear": 0.1}}]
        rows = EmpiricalFeasibilityAnalyzer().analyze(
            extract_non_axis_clauses(prereqs), contexts)
        assert [r.var_path for r in rows] == ["emotions.joy", "emotions.fear"]
        assert all(r.pass_rate == 1.0 for r in rows)
        assert rows[1].to_dict()["classification"] == "OK"
        assert "OK" in rows[0].summary()
