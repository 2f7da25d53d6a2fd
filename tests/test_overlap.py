"""Tests for Monte Carlo behavioral overlap.

Covers:
  - GateOverlap rates and Jaccard
  - Intensity agreement, dominance and global metrics
  - Conditional pass rates below/above the sample floor
  - High co-activation at the three thresholds
  - Gate implication only on complete parses
  - Divergence examples ordering
  - Sample-count fallback and constructor validation
  - Candidate (weight-only) metrics
"""

import logging
import math

import numpy as np
import pytest

from expression_diagnostics.collaborators import MissingDependencyError
from expression_diagnostics.overlap import (
    BehavioralOverlapEvaluator,
    GateOverlap,
    compute_candidate_metrics,
    compute_output_vector,
    pearson_correlation,
)
from expression_diagnostics.prototypes import Prototype
from expression_diagnostics.thresholds import DEFAULT_THRESHOLDS


class _CyclingGenerator:
    """Returns pre-built contexts in order, wrapping around."""

    def __init__(self, contexts):
        self.contexts = list(contexts)
        self.calls = 0

    def generate(self):
        ctx = self.contexts[self.calls % len(self.contexts)]
        self.calls += 1
        return ctx


def _make_contexts(valences=(10, 30, 50, 70, 90)):
    return [{"moodAxes": {"valence": v}} for v in valences]


def _make_evaluator(contexts=None, **kwargs):
    gen = _CyclingGenerator(contexts or _make_contexts())
    return BehavioralOverlapEvaluator(gen, context_builder=lambda s: s, **kwargs)


JOY = Prototype("joy", weights={"valence": 1.0}, gates=("valence >= 0.2",))
CALM = Prototype("calm", weights={"valence": 0.5, "arousal": 0.5},
                 gates=("valence >= 0.6",))


# ═══════════════════════════════════════════════════════════════════
# Evaluator
# ═══════════════════════════════════════════════════════════════════

class TestBehavioralOverlapEvaluator:
    """BehavioralOverlapEvaluator.evaluate()."""

    def test_identical_prototypes(self):
        result = _make_evaluator().evaluate(JOY, JOY, sample_count=5)
        assert result.gate_overlap.jaccard == pytest.approx(1.0)
        assert result.intensity.pearson_correlation == pytest.approx(1.0)
        assert result.intensity.mean_abs_diff == pytest.approx(0.0)
        assert result.intensity.pct_within_eps == pytest.approx(1.0)
        assert result.gate_implication.relation == "equal"

    def test_gate_overlap_rates(self):
        result = _make_evaluator().evaluate(JOY, CALM, sample_count=5)
        go = result.gate_overlap
        assert go.on_either_rate == pytest.approx(0.8)
        assert go.on_both_rate == pytest.approx(0.4)
        assert go.p_only_rate == pytest.approx(0.4)
        assert go.q_only_rate == pytest.approx(0.0)
        assert go.jaccard == pytest.approx(0.5)

    def test_intensity_metrics(self):
        im = _make_evaluator().evaluate(JOY, CALM, sample_count=5).intensity
        assert im.mean_abs_diff == pytest.approx(0.4)
        assert im.pearson_correlation == pytest.approx(1.0)
        assert im.dominance_p == pytest.approx(1.0)
        assert im.dominance_q == pytest.approx(0.0)
        assert im.pct_within_eps == pytest.approx(0.0)
        assert not math.isnan(im.global_output_correlation)

    def test_conditionals_nan_below_floor(self):
        pr = _make_evaluator().evaluate(JOY, CALM, sample_count=5).pass_rates
        assert pr.pass_a_count == 4
        assert pr.pass_b_count == 2
        assert pr.co_pass_count == 2
        assert math.isnan(pr.p_a_given_b)
        assert math.isnan(pr.p_b_given_a)

    def test_conditionals_above_floor(self):
        th = DEFAULT_THRESHOLDS.replace(
            {"overlap.min_pass_samples_for_conditional": 1})
        pr = _make_evaluator(thresholds=th).evaluate(JOY, CALM, sample_count=5).pass_rates
        assert pr.p_a_given_b == pytest.approx(1.0)
        assert pr.p_b_given_a == pytest.approx(0.5)

    def test_high_coactivation(self):
        high = _make_evaluator().evaluate(JOY, CALM, sample_count=5).high_coactivation
        assert [h.t for h in high] == [0.4, 0.6, 0.75]
        h = high[0]
        assert h.p_high_a == pytest.approx(0.75)
        assert h.p_high_b == pytest.approx(0.25)
        assert h.p_high_both == pytest.approx(0.25)
        assert h.high_jaccard == pytest.approx(1 / 3)
        assert h.high_agreement == pytest.approx(0.5)

    def test_implication_requires_complete_parse(self):
        partial = Prototype("odd", weights={"valence": 1.0},
                            gates=("valence >= 0.2", "mood is good"))
        result = _make_evaluator().evaluate(JOY, partial, sample_count=5)
        assert result.gate_implication is None
        assert result.gate_parse_info["prototype_b"]["parse_status"] == "partial"
        assert result.gate_parse_info["prototype_a"]["parse_status"] == "complete"

    def test_implication_skipped_when_all_gates_malformed(self):
        broken = Prototype("broken", weights={"valence": 1.0}, gates=("garbage",))
        result = _make_evaluator().evaluate(broken, JOY, sample_count=5)
        assert result.gate_implication is None
        assert result.gate_parse_info["prototype_a"]["parse_status"] == "failed"
        assert result.gate_parse_info["prototype_a"]["unparsed_gates"] == ["garbage"]
        assert result.to_dict()["gate_implication"] is None

    def test_implication_relation(self):
        result = _make_evaluator().evaluate(JOY, CALM, sample_count=5)
        assert result.gate_implication.relation == "wider"

    def test_divergence_examples(self):
        result = _make_evaluator().evaluate(JOY, CALM, sample_count=5)
        first, second = result.divergence_examples
        assert first.index == 4
        assert first.abs_diff == pytest.approx(0.45)
        assert second.index == 3
        assert list(first.context_summary) == ["valence", "arousal"]
        assert first.context_summary["valence"] == pytest.approx(0.9)

    def test_divergence_k(self):
        th = DEFAULT_THRESHOLDS.replace({"overlap.divergence_examples_k": 1})
        result = _make_evaluator(thresholds=th).evaluate(JOY, CALM, sample_count=5)
        assert len(result.divergence_examples) == 1

    def test_never_active(self):
        never = Prototype("never", weights={"valence": 1.0}, gates=("valence >= 0.95",))
        result = _make_evaluator().evaluate(never, never, sample_count=5)
        assert result.gate_overlap.jaccard == 0.0
        assert math.isnan(result.intensity.pearson_correlation)
        assert result.high_coactivation[0].p_high_a == 0.0
        assert result.divergence_examples == ()

    def test_to_dict_and_summary(self):
        result = _make_evaluator().evaluate(JOY, CALM, sample_count=5)
        d = result.to_dict()
        assert d["prototype_a"] == "joy"
        assert d["sample_count"] == 5
        assert len(d["high_coactivation"]["thresholds"]) == 3
        assert d["gate_implication"]["relation"] == "wider"
        assert "joy vs calm" in result.summary()

    def test_debug_summary_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="expression_diagnostics.overlap"):
            _make_evaluator().evaluate(JOY, CALM, sample_count=5)
        assert "joy vs calm" in caplog.text

    def test_default_context_builder(self):
        class _StateGen:
            def generate(self):
                from expression_diagnostics.sampling import SampledState
                return SampledState(current={"mood": {"valence": 50}})

        result = BehavioralOverlapEvaluator(_StateGen()).evaluate(
            JOY, JOY, sample_count=3)
        assert result.pass_rates.pass_a_count == 3


class TestConstruction:
    """Constructor validation and sample-count resolution."""

    def test_requires_generator(self):
        with pytest.raises(MissingDependencyError):
            BehavioralOverlapEvaluator(None)
        with pytest.raises(MissingDependencyError):
            BehavioralOverlapEvaluator(object())

    def test_context_builder_must_be_callable(self):
        with pytest.raises(TypeError, match="callable"):
            BehavioralOverlapEvaluator(_CyclingGenerator([{}]), context_builder=42)

    @pytest.mark.parametrize("raw,expected", [
        (None, 8000),
        ("lots", 8000),
        (0, 8000),
        (-5, 8000),
        (float("inf"), 8000),
        (float("nan"), 8000),
        (True, 8000),
        (12.7, 12),
        (300, 300),
    ])
    def test_resolve_sample_count(self, raw, expected):
        assert _make_evaluator().resolve_sample_count(raw) == expected


# ═══════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════

class TestHelpers:
    """Output vectors, correlation, candidate metrics."""

    def test_output_vector(self):
        vec = compute_output_vector(JOY, _make_contexts())
        assert vec.activation_rate == pytest.approx(0.8)
        assert vec.gate_results.tolist() == [False, True, True, True, True]
        assert vec.intensities[0] == 0.0
        assert vec.intensities[4] == pytest.approx(0.9)

    def test_pearson_guards(self):
        assert math.isnan(pearson_correlation(np.array([1.0]), np.array([2.0])))
        assert math.isnan(pearson_correlation(np.ones(5), np.arange(5.0)))
        assert pearson_correlation(np.arange(5.0), -np.arange(5.0)) == pytest.approx(-1.0)

    def test_jaccard_zero_when_never_on(self):
        assert GateOverlap().jaccard == 0.0

    def test_candidate_metrics(self):
        a = Prototype("a", weights={"valence": 1.0, "arousal": 0.05})
        b = Prototype("b", weights={"valence": 1.0, "threat": -0.5})
        m = compute_candidate_metrics(a, b)
        assert m["active_axis_overlap"] == pytest.approx(0.5)
        assert m["sign_agreement"] == pytest.approx(1.0)
        assert 0.0 < m["weight_cosine_similarity"] < 1.0

    def test_candidate_metrics_no_active_axes(self):
        m = compute_candidate_metrics(Prototype("a"), Prototype("b"))
        assert m == {"active_axis_overlap": 0.0, "sign_agreement": 0.0,
                     "weight_cosine_similarity": 0.0}
