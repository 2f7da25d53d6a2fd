"""Tests for decision-stump gate suggestions.

Covers:
  - information_gain() and fit_stump()
  - ActionableSuggestionEngine on a pool with one separating axis
  - Skip hints, empty input, clamping and validity
"""

import numpy as np
import pytest

from expression_diagnostics.suggestions import (
    ActionableSuggestionEngine,
    Suggestion,
    fit_stump,
    information_gain,
)
from expression_diagnostics.thresholds import DEFAULT_THRESHOLDS


def _make_pool(n=30):
    """Arousal below zero for the first half, above for the rest."""
    return [
        {"moodAxes": {"arousal": (i - n // 2) * 4 + 2,
                      "valence": ((i * 7) % n) * 6 - 90}}
        for i in range(n)
    ]


def _make_vectors(pool):
    gates_a = [True] * len(pool)
    gates_b = [ctx["moodAxes"]["arousal"] >= 0 for ctx in pool]
    return ({"prototype_id": "joy", "gate_results": gates_a},
            {"prototype_id": "elation", "gate_results": gates_b})


class TestStumps:
    """information_gain() and fit_stump()."""

    def test_perfect_split(self):
        labels = np.array([False, False, True, True])
        assert information_gain(labels, ~labels) == pytest.approx(1.0)

    def test_useless_split(self):
        labels = np.array([False, True, False, True])
        split = np.array([True, True, False, False])
        assert information_gain(labels, split) == pytest.approx(0.0)

    def test_empty(self):
        assert information_gain(np.array([], dtype=bool), np.array([], dtype=bool)) == 0.0

    def test_fit_stump(self):
        t, gain = fit_stump([1.0, 2.0, 3.0, 4.0], [False, False, True, True])
        assert t == pytest.approx(2.5)
        assert gain == pytest.approx(1.0)

    def test_fit_stump_constant_values(self):
        assert fit_stump([0.5, 0.5, 0.5], [True, False, True]) is None


class TestActionableSuggestionEngine:
    """ActionableSuggestionEngine.generate_suggestions()."""

    def test_separating_axis_found(self):
        pool = _make_pool()
        vec_a, vec_b = _make_vectors(pool)
        suggestions = ActionableSuggestionEngine().generate_suggestions(
            vec_a, vec_b, pool)
        top = suggestions[0]
        assert top.axis == "arousal"
        assert top.operator == "<="
        assert top.threshold == pytest.approx(0.0, abs=1e-9)
        assert top.target_prototype == "joy"
        assert top.info_gain == pytest.approx(1.0)
        assert top.overlap_reduction_estimate == pytest.approx(1.0)
        assert top.activation_impact_estimate == pytest.approx(-0.5)
        assert top.is_valid
        assert top.validation_message == ""

    def test_sorted_and_capped(self):
        pool = _make_pool()
        vec_a, vec_b = _make_vectors(pool)
        th = DEFAULT_THRESHOLDS.replace({"suggestions.max_suggestions_per_pair": 1})
        suggestions = ActionableSuggestionEngine(th).generate_suggestions(
            vec_a, vec_b, pool)
        assert len(suggestions) == 1
        gains = [s.info_gain for s in ActionableSuggestionEngine()
                 .generate_suggestions(vec_a, vec_b, pool)]
        assert gains == sorted(gains, reverse=True)

    @pytest.mark.parametrize("hint", ["keep_distinct", "not_redundant"])
    def test_skip_hints(self, hint):
        pool = _make_pool()
        vec_a, vec_b = _make_vectors(pool)
        assert ActionableSuggestionEngine().generate_suggestions(
            vec_a, vec_b, pool, classification_hint=hint) == []

    def test_other_hints_still_suggest(self):
        pool = _make_pool()
        vec_a, vec_b = _make_vectors(pool)
        assert ActionableSuggestionEngine().generate_suggestions(
            vec_a, vec_b, pool, classification_hint="needs_separation")

    def test_empty_pool(self):
        assert ActionableSuggestionEngine().generate_suggestions(
            {"gate_results": []}, {"gate_results": []}, []) == []

    def test_no_co_activation(self):
        pool = _make_pool()
        vec_a = {"gate_results": [c["moodAxes"]["arousal"] < 0 for c in pool]}
        vec_b = {"gate_results": [c["moodAxes"]["arousal"] >= 0 for c in pool]}
        assert ActionableSuggestionEngine().generate_suggestions(
            vec_a, vec_b, pool) == []

    def test_too_few_samples(self):
        pool = _make_pool(10)
        vec_a, vec_b = _make_vectors(pool)
        assert ActionableSuggestionEngine().generate_suggestions(
            vec_a, vec_b, pool) == []

    def test_clamped_threshold(self):
        pool = _make_pool()
        vec_a, vec_b = _make_vectors(pool)
        engine = ActionableSuggestionEngine(axis_ranges={"arousal": (0.1, 1.0)})
        top = next(s for s in engine.generate_suggestions(vec_a, vec_b, pool)
                   if s.axis == "arousal")
        assert top.threshold == pytest.approx(0.1)
        assert "clamped" in top.validation_message
        assert top.overlap_reduction_estimate == pytest.approx(0.8)

    def test_invalid_when_too_little_activation_left(self):
        pool = _make_pool()
        vec_a, vec_b = _make_vectors(pool)
        th = DEFAULT_THRESHOLDS.replace({"suggestions.min_activation_rate_after": 0.9})
        top = next(s for s in ActionableSuggestionEngine(th).generate_suggestions(
            vec_a, vec_b, pool) if s.axis == "arousal")
        assert not top.is_valid
        assert "below minimum" in top.validation_message

    def test_axis_range(self):
        engine = ActionableSuggestionEngine(axis_ranges={"valence": (0, 0.5)})
        assert engine.axis_range("valence") == (0.0, 0.5)
        assert engine.axis_range("sex_excitation") == (0.0, 1.0)

    def test_suggestion_summary(self):
        s = Suggestion("arousal", ">=", 0.45, "elation", 0.62, -0.18, 0.4, True)
        assert s.summary() == ("elation: add gate arousal >= 0.45 "
                               "(overlap -62%, activation -18%)")
        assert s.to_dict()["is_valid"] is True
