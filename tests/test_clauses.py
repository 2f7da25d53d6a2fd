"""Tests for clause extraction."""

import pytest

from expression_diagnostics.clauses import (
    ExtractedClause,
    axis_leaf_constraint,
    classify_clause_type,
    extract_axis_constraints,
    extract_non_axis_clauses,
)
from expression_diagnostics.logic import parse_logic


def _cmp(path, op, t):
    return {op: [{"var": path}, t]}


def _delta(a, b, op, t):
    return {op: [{"-": [{"var": a}, {"var": b}]}, t]}


class TestExtractNonAxisClauses:
    """extract_non_axis_clauses()."""

    def test_non_list_gives_empty(self):
        assert extract_non_axis_clauses(None) == []
        assert extract_non_axis_clauses({"logic": {}}) == []

    def test_flattens_nested_logic(self):
        prereqs = [{"logic": {"and": [
            _cmp("emotions.joy", ">=", 0.5),
            {"or": [_cmp("sexualStates.lust", ">", 0.3),
                    _cmp("moodAxes.valence", ">=", 20)]},
        ]}}]
        clauses = extract_non_axis_clauses(prereqs)
        assert [c.var_path for c in clauses] == ["emotions.joy", "sexualStates.lust"]
        assert clauses[0].clause_type == "emotion"
        assert clauses[1].clause_type == "sexual"
        assert clauses[1].source_path == "prereqs[0].and[1].or[0]"

    def test_delta_clause(self):
        prereqs = [{"logic": _delta("emotions.joy", "previousEmotions.joy", ">=", 0.2)}]
        (clause,) = extract_non_axis_clauses(prereqs)
        assert clause.is_delta
        assert clause.clause_type == "delta"
        assert clause.operands == ("emotions.joy", "previousEmotions.joy")
        assert clause.var_path == "emotions.joy - previousEmotions.joy"

    def test_axis_delta_skipped(self):
        prereqs = [{"logic": _delta("moodAxes.valence", "previousMoodAxes.valence", ">", 5)}]
        # previousMoodAxes is not a raw axis namespace, so the delta is kept
        assert len(extract_non_axis_clauses(prereqs)) == 1
        prereqs = [{"logic": _delta("moodAxes.valence", "moodAxes.arousal", ">", 5)}]
        assert extract_non_axis_clauses(prereqs) == []

    def test_to_dict(self):
        (clause,) = extract_non_axis_clauses([{"logic": _cmp("emotions.joy", ">=", 0.5)}])
        assert clause.to_dict() == {
            "var_path": "emotions.joy",
            "operator": ">=",
            "threshold": 0.5,
            "is_delta": False,
            "clause_type": "emotion",
            "source_path": "prereqs[0]",
            "operands": None,
        }

    def test_classify_clause_type(self):
        assert classify_clause_type("previousEmotions.joy") == "emotion"
        assert classify_clause_type("sexualArousal") == "sexual"
        assert classify_clause_type("custom.value") == "other"


class TestAxisConstraints:
    """axis_leaf_constraint() and extract_axis_constraints()."""

    def test_leaf_constraint_normalised(self):
        gate = axis_leaf_constraint(parse_logic(_cmp("moodAxes.valence", ">=", 20)))
        assert gate.axis == "valence"
        assert gate.threshold == pytest.approx(0.2)

    def test_leaf_constraint_non_axis(self):
        assert axis_leaf_constraint(parse_logic(_cmp("emotions.joy", ">=", 0.2))) is None

    def test_and_only_intersection(self):
        expr = {"prerequisites": [
            {"logic": {"and": [_cmp("moodAxes.valence", ">=", 20),
                               _cmp("moodAxes.valence", "<=", 60),
                               {"or": [_cmp("moodAxes.threat", "<=", 10)]}]}},
            {"logic": _cmp("moodAxes.arousal", ">", -30)},
        ]}
        constraints = extract_axis_constraints(expr)
        assert constraints["valence"].lower == pytest.approx(0.2)
        assert constraints["valence"].upper == pytest.approx(0.6)
        assert constraints["arousal"].lower == pytest.approx(-0.3)
        assert constraints["arousal"].upper == 1.0
        assert "threat" not in constraints

    def test_extracted_clause_is_frozen(self):
        clause = ExtractedClause("emotions.joy", ">=", 0.5, False, "emotion", "prereqs[0]")
        with pytest.raises(AttributeError):
            clause.threshold = 0.1
