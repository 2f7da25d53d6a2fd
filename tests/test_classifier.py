"""Tests for overlap classification.

Covers:
  - extract_pair_metrics() from dicts and result objects
  - Every classification type, in priority order
  - Deterministic vs behavioral nesting
  - Near-miss detection and proximity
"""

import math

import pytest

from expression_diagnostics.classifier import (
    CLASSIFICATION_TYPES,
    OverlapClassifier,
    PairMetrics,
    extract_pair_metrics,
)
from expression_diagnostics.thresholds import DEFAULT_THRESHOLDS


def _implication(a_implies_b, b_implies_a, threat_upper_a=None, vacuous=False):
    evidence = []
    if threat_upper_a is not None:
        evidence.append({
            "axis": "threat",
            "interval_a": {"lower": None, "upper": threat_upper_a,
                           "unsatisfiable": False},
            "interval_b": {"lower": None, "upper": None, "unsatisfiable": False},
            "a_subset_b": True,
            "b_subset_a": False,
        })
    return {"a_implies_b": a_implies_b, "b_implies_a": b_implies_a,
            "is_vacuous": vacuous, "evidence": evidence}


def _make_metrics(on_either=0.3, on_both=0.29, p_only=0.005, q_only=0.005,
                  r=0.99, mad=0.01, dom_p=0.1, dom_q=0.1,
                  p_a_given_b=0.9, p_b_given_a=0.9, implication=None,
                  status="complete"):
    return {
        "gate_overlap": {"on_either_rate": on_either, "on_both_rate": on_both,
                         "p_only_rate": p_only, "q_only_rate": q_only},
        "intensity": {"pearson_correlation": r, "mean_abs_diff": mad,
                      "dominance_p": dom_p, "dominance_q": dom_q},
        "pass_rates": {"p_a_given_b": p_a_given_b, "p_b_given_a": p_b_given_a},
        "gate_implication": implication,
        "gate_parse_info": {"prototype_a": {"parse_status": status},
                            "prototype_b": {"parse_status": "complete"}},
    }


# ═══════════════════════════════════════════════════════════════════
# Metric extraction
# ═══════════════════════════════════════════════════════════════════

class TestExtractPairMetrics:
    """extract_pair_metrics()."""

    def test_from_dict(self):
        m = extract_pair_metrics(_make_metrics(), {"weight_cosine_similarity": 0.8})
        assert m.on_either_rate == pytest.approx(0.3)
        assert m.gate_overlap_ratio == pytest.approx(0.29 / 0.3)
        assert m.parse_complete
        assert m.has_pass_rates
        assert m.weight_cosine_similarity == pytest.approx(0.8)

    def test_missing_values_take_defaults(self):
        m = extract_pair_metrics({})
        assert m.on_either_rate == 0.0
        assert math.isnan(m.pearson_correlation)
        assert not m.has_pass_rates
        assert not m.parse_complete
        assert m.gate_overlap_ratio == 0.0

    def test_none_and_garbage(self):
        assert extract_pair_metrics(None) == PairMetrics()
        m = extract_pair_metrics({"intensity": {"pearson_correlation": "high"}})
        assert math.isnan(m.pearson_correlation)

    def test_partial_parse_not_complete(self):
        assert not extract_pair_metrics(_make_metrics(status="partial")).parse_complete

    def test_implication_without_parse_info(self):
        metrics = {"gate_implication": _implication(True, False)}
        assert extract_pair_metrics(metrics).parse_complete

    def test_from_result_object(self):
        class _Result:
            def to_dict(self):
                return _make_metrics(r=0.5)

        assert extract_pair_metrics(_Result()).pearson_correlation == 0.5


# ═══════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════

class TestClassify:
    """OverlapClassifier.classify() priority order."""

    def test_types_listed(self):
        assert CLASSIFICATION_TYPES[0] == "merge_recommended"
        assert CLASSIFICATION_TYPES[-1] == "keep_distinct"

    def test_merge(self):
        c = OverlapClassifier().classify(_make_metrics())
        assert c.type == "merge_recommended"
        assert "classifier.min_correlation_for_merge" in c.thresholds

    def test_merge_blocked_when_rarely_active(self):
        c = OverlapClassifier().classify(_make_metrics(on_either=0.01, on_both=0.0099))
        assert c.type != "merge_recommended"

    def test_merge_blocked_by_dominance(self):
        c = OverlapClassifier().classify(_make_metrics(dom_p=0.96))
        assert c.type != "merge_recommended"

    def test_subsumed_a(self):
        c = OverlapClassifier().classify(_make_metrics(mad=0.1, dom_q=0.96))
        assert c.type == "subsumed_recommended"
        assert c.subsumed_prototype == "a"
        assert c.to_dict()["subsumed_prototype"] == "a"

    def test_subsumed_b(self):
        c = OverlapClassifier().classify(
            _make_metrics(mad=0.1, p_only=0.2, dom_p=0.97))
        assert c.subsumed_prototype == "b"

    def test_convert_to_expression(self):
        c = OverlapClassifier().classify(_make_metrics(
            r=0.5, implication=_implication(True, False, threat_upper_a=0.1)))
        assert c.type == "convert_to_expression"
        assert c.narrower_prototype == "a"

    def test_convert_disabled(self):
        th = DEFAULT_THRESHOLDS.replace({"classifier.enable_convert_to_expression": 0})
        c = OverlapClassifier(th).classify(_make_metrics(
            r=0.5, implication=_implication(True, False, threat_upper_a=0.1)))
        assert c.type == "nested_siblings"

    def test_convert_needs_low_threat(self):
        c = OverlapClassifier().classify(_make_metrics(
            r=0.5, implication=_implication(True, False, threat_upper_a=0.5)))
        assert c.type == "nested_siblings"

    def test_deterministic_nesting_b(self):
        c = OverlapClassifier().classify(_make_metrics(
            r=0.5, implication=_implication(False, True)))
        assert c.type == "nested_siblings"
        assert c.narrower_prototype == "b"

    def test_vacuous_implication_ignored(self):
        c = OverlapClassifier().classify(_make_metrics(
            r=0.5, implication=_implication(True, False, vacuous=True)))
        assert c.type == "keep_distinct"

    def test_partial_parse_falls_back_to_behavioral(self):
        c = OverlapClassifier().classify(_make_metrics(
            r=0.5, status="partial", implication=_implication(True, False),
            p_b_given_a=0.99, p_a_given_b=0.4))
        assert c.type == "nested_siblings"
        assert c.narrower_prototype == "a"

    def test_behavioral_nesting_nan_never_nests(self):
        c = OverlapClassifier().classify(_make_metrics(
            r=0.5, p_b_given_a=float("nan"), p_a_given_b=0.1))
        assert c.type == "keep_distinct"

    def test_needs_separation(self):
        c = OverlapClassifier().classify(_make_metrics(
            on_both=0.25, r=0.85, mad=0.1, p_only=0.05, q_only=0.05))
        assert c.type == "needs_separation"

    def test_separation_requires_distinguishable_intensity(self):
        c = OverlapClassifier().classify(_make_metrics(
            on_both=0.25, r=0.85, mad=0.01, p_only=0.05, q_only=0.05))
        assert c.type == "keep_distinct"

    def test_keep_distinct(self):
        c = OverlapClassifier().classify(_make_metrics(
            on_both=0.05, r=0.2, mad=0.3, p_only=0.2, q_only=0.05))
        assert c.type == "keep_distinct"
        assert "narrower_prototype" not in c.to_dict()


# ═══════════════════════════════════════════════════════════════════
# Near miss
# ═══════════════════════════════════════════════════════════════════

class TestNearMiss:
    """OverlapClassifier.check_near_miss()."""

    def test_correlation_near_miss(self):
        nm = OverlapClassifier().check_near_miss(_make_metrics(r=0.93))
        assert nm.is_near_miss
        assert "correlation 0.930" in nm.reason
        assert nm.threshold_proximity["correlation"]["met"] is True
        assert nm.threshold_proximity["gate_overlap_ratio"]["merge_threshold"] == 0.9

    def test_both_reasons_joined(self):
        nm = OverlapClassifier().check_near_miss(_make_metrics(r=0.93, on_both=0.24))
        assert "; " in nm.reason
        assert "gate overlap 0.800" in nm.reason

    def test_mean_abs_diff_near_miss(self):
        nm = OverlapClassifier().check_near_miss(_make_metrics(r=0.99, mad=0.1))
        assert nm.is_near_miss
        assert "mean abs diff 0.100" in nm.reason

    def test_merge_is_not_near_miss(self):
        nm = OverlapClassifier().check_near_miss(_make_metrics())
        assert not nm.is_near_miss
        assert nm.threshold_proximity is None

    def test_dead_pair_never_near_miss(self):
        nm = OverlapClassifier().check_near_miss(
            _make_metrics(on_either=0.01, on_both=0.009, r=0.93))
        assert not nm.is_near_miss

    def test_far_pair(self):
        nm = OverlapClassifier().check_near_miss(_make_metrics(r=0.3, on_both=0.1))
        assert not nm.is_near_miss
        assert nm.to_dict()["reason"] == ""
