"""Tests for threshold sensitivity sweeps.

Covers:
  - Blocker flattening and deduplication
  - Grid construction for float and integer paths
  - Marginal sweeps (missing values count as failures)
  - Effective thresholds on integer grids
  - Global sweeps and the near-miss pool
  - threshold_for_rate() / suggest_thresholds()
"""

import logging

import pytest

from expression_diagnostics.sensitivity import (
    GLOBAL_SWEEP,
    MARGINAL_SWEEP,
    Blocker,
    GridPoint,
    SensitivityAnalyzer,
    SensitivityGrid,
    flatten_blockers,
    suggest_thresholds,
)
from expression_diagnostics.thresholds import DEFAULT_THRESHOLDS


def _cmp(path, op, t):
    return {"logic": {op: [{"var": path}, t]}}


def _make_contexts():
    return [
        {"emotions": {"joy": 0.46, "fear": 0.1}},
        {"emotions": {"joy": 0.52, "fear": 0.1}},
        {"emotions": {"joy": 0.60, "fear": 0.1}},
        {"emotions": {"joy": 0.70, "fear": 0.5}},
    ]


def _make_grid(rates, original=0.5, step=0.05):
    half = len(rates) // 2
    points = tuple(
        GridPoint(round(original + (i - half) * step, 10), r, int(r * 100))
        for i, r in enumerate(rates))
    return SensitivityGrid("emotions.joy", ">=", original, MARGINAL_SWEEP,
                           points, 100)


# ═══════════════════════════════════════════════════════════════════
# Blockers and grids
# ═══════════════════════════════════════════════════════════════════

class TestBlockers:
    """Blocker and flatten_blockers()."""

    def test_flatten_dedupes(self):
        joy = Blocker("emotions.joy", ">=", 0.5)
        fear = Blocker("emotions.fear", "<=", 0.2)
        compound = Blocker("and", "and", 0.0, children=(joy, fear))
        out = flatten_blockers([compound, Blocker("emotions.joy", ">=", 0.5), fear])
        assert [b.var_path for b in out] == ["emotions.joy", "emotions.fear"]

    def test_flatten_keeps_distinct_thresholds(self):
        out = flatten_blockers([Blocker("emotions.joy", ">=", 0.5),
                                Blocker("emotions.joy", ">=", 0.6)])
        assert len(out) == 2

    def test_integer_paths(self):
        assert Blocker("moodAxes.valence", ">=", 10).is_integer
        assert not Blocker("emotions.joy", ">=", 0.5).is_integer
        delta = Blocker("moodAxes.valence - previousMoodAxes.valence", ">", 5,
                        operands=("moodAxes.valence", "previousMoodAxes.valence"))
        assert delta.is_integer

    def test_passes_missing_is_fail(self):
        b = Blocker("emotions.joy", ">=", 0.5)
        assert b.passes({"emotions": {"joy": 0.6}})
        assert not b.passes({})
        assert b.passes({"emotions": {"joy": 0.45}}, threshold=0.4)

    def test_delta_passes(self):
        b = Blocker("emotions.joy - previousEmotions.joy", ">=", 0.2,
                    operands=("emotions.joy", "previousEmotions.joy"))
        ctx = {"emotions": {"joy": 0.7}, "previousEmotions": {"joy": 0.3}}
        assert b.passes(ctx)


class TestGridValues:
    """SensitivityAnalyzer.grid_values()."""

    def test_float_grid_centred(self):
        values = SensitivityAnalyzer().grid_values(Blocker("emotions.joy", ">=", 0.5))
        assert len(values) == 9
        assert values[4] == pytest.approx(0.5)
        assert values[0] == pytest.approx(0.3)
        assert values[-1] == pytest.approx(0.7)

    def test_integer_grid(self):
        values = SensitivityAnalyzer().grid_values(
            Blocker("moodAxes.valence", ">=", 10), steps=3)
        assert values == [9.0, 10.0, 11.0]

    def test_steps_from_registry(self):
        th = DEFAULT_THRESHOLDS.replace({"sensitivity.steps": 5,
                                         "sensitivity.float_step": 0.1})
        values = SensitivityAnalyzer(thresholds=th).grid_values(
            Blocker("emotions.joy", ">=", 0.5))
        assert values == pytest.approx([0.3, 0.4, 0.5, 0.6, 0.7])


# ═══════════════════════════════════════════════════════════════════
# Marginal sweeps
# ═══════════════════════════════════════════════════════════════════

class TestMarginalSweep:
    """SensitivityAnalyzer.compute_sensitivity_data()."""

    def test_float_sweep(self):
        (grid,) = SensitivityAnalyzer().compute_sensitivity_data(
            _make_contexts(), [Blocker("emotions.joy", ">=", 0.5)], steps=3)
        assert grid.kind == MARGINAL_SWEEP
        assert [p.pass_count for p in grid.points] == [4, 3, 2]
        assert grid.points[1].pass_rate == pytest.approx(0.75)
        assert grid.points[1].effective_threshold is None
        assert "effective_threshold" not in grid.to_dict()["grid"][0]
        assert "is_near_miss_pool" not in grid.to_dict()

    def test_missing_values_in_denominator(self):
        contexts = _make_contexts() + [{}, {"emotions": {}}]
        (grid,) = SensitivityAnalyzer().compute_sensitivity_data(
            contexts, [Blocker("emotions.joy", ">=", 0.5)], steps=1)
        assert grid.sample_count == 6
        assert grid.points[0].pass_rate == pytest.approx(3 / 6)

    def test_integer_sweep_effective_threshold(self):
        contexts = [{"moodAxes": {"valence": v}} for v in (8, 9, 10, 11, 12)]
        (grid,) = SensitivityAnalyzer().compute_sensitivity_data(
            contexts, [Blocker("moodAxes.valence", ">=", 10)], steps=3)
        assert grid.is_integer
        assert [p.effective_threshold for p in grid.points] == [9.0, 10.0, 11.0]
        assert [p.pass_count for p in grid.points] == [4, 3, 2]
        assert grid.to_dict()["grid"][1]["effective_threshold"] == 10.0

    def test_effective_threshold_rounding(self):
        th = DEFAULT_THRESHOLDS.replace({"sensitivity.integer_step": 0.5})
        analyzer = SensitivityAnalyzer(thresholds=th)
        contexts = [{"moodAxes": {"valence": 10}}]
        (high,) = analyzer.compute_sensitivity_data(
            contexts, [Blocker("moodAxes.valence", ">", 10)], steps=3)
        assert [p.effective_threshold for p in high.points] == [10.0, 10.0, 11.0]
        (low,) = analyzer.compute_sensitivity_data(
            contexts, [Blocker("moodAxes.valence", "<=", 10)], steps=3)
        assert [p.effective_threshold for p in low.points] == [9.0, 10.0, 10.0]

    def test_equality_has_no_effective_threshold(self):
        contexts = [{"moodAxes": {"valence": 10}}]
        (grid,) = SensitivityAnalyzer().compute_sensitivity_data(
            contexts, [Blocker("moodAxes.valence", "==", 10)], steps=3)
        assert all(p.effective_threshold is None for p in grid.points)

    def test_one_grid_per_distinct_blocker(self):
        blockers = [Blocker("emotions.joy", ">=", 0.5),
                    Blocker("emotions.joy", ">=", 0.5),
                    Blocker("emotions.fear", "<=", 0.2)]
        grids = SensitivityAnalyzer().compute_sensitivity_data(_make_contexts(), blockers)
        assert [g.var_path for g in grids] == ["emotions.joy", "emotions.fear"]


# ═══════════════════════════════════════════════════════════════════
# Global sweeps
# ═══════════════════════════════════════════════════════════════════

class TestGlobalSweep:
    """SensitivityAnalyzer.compute_global_sensitivity_data()."""

    def test_trigger_rate_sweep(self):
        expr = {"prerequisites": [_cmp("emotions.joy", ">=", 0.5),
                                  _cmp("emotions.fear", "<=", 0.2)]}
        (grid,) = SensitivityAnalyzer().compute_global_sensitivity_data(
            _make_contexts(), [Blocker("emotions.joy", ">=", 0.5)], expr, steps=3)
        assert grid.kind == GLOBAL_SWEEP
        assert [p.pass_count for p in grid.points] == [3, 2, 1]
        assert grid.sample_count == 4
        assert not grid.is_near_miss_pool

    def test_near_miss_pool(self, caplog):
        expr = {"prerequisites": [_cmp("emotions.joy", ">=", 0.9),
                                  _cmp("emotions.fear", "<=", 0.2)]}
        blockers = [Blocker("emotions.joy", ">=", 0.9, composite_score=0.9),
                    Blocker("emotions.fear", "<=", 0.2, composite_score=0.1)]
        th = DEFAULT_THRESHOLDS.replace({"sensitivity.near_miss_min_pool": 2})
        with caplog.at_level(logging.DEBUG, logger="expression_diagnostics.sensitivity"):
            grids = SensitivityAnalyzer(thresholds=th).compute_global_sensitivity_data(
                _make_contexts(), blockers, expr, steps=3)
        joy = grids[0]
        assert joy.is_near_miss_pool
        assert joy.sample_count == 3
        d = joy.to_dict()
        assert d["is_near_miss_pool"] is True
        assert d["excluded_blockers"][0]["var_path"] == "emotions.joy"
        assert "[near-miss pool]" in joy.summary()
        assert "near-miss pool of 3" in caplog.text

    def test_pool_too_small(self):
        expr = {"prerequisites": [_cmp("emotions.joy", ">=", 0.9),
                                  _cmp("emotions.fear", "<=", 0.2)]}
        blockers = [Blocker("emotions.joy", ">=", 0.9, composite_score=0.9),
                    Blocker("emotions.fear", "<=", 0.2, composite_score=0.1)]
        grids = SensitivityAnalyzer().compute_global_sensitivity_data(
            _make_contexts(), blockers, expr, steps=3)
        assert not any(g.is_near_miss_pool for g in grids)
        assert "excluded_blockers" not in grids[0].to_dict()

    def test_single_blocker_never_uses_pool(self):
        expr = {"prerequisites": [_cmp("emotions.joy", ">=", 0.9)]}
        th = DEFAULT_THRESHOLDS.replace({"sensitivity.near_miss_min_pool": 1})
        (grid,) = SensitivityAnalyzer(thresholds=th).compute_global_sensitivity_data(
            _make_contexts(), [Blocker("emotions.joy", ">=", 0.9)], expr, steps=3)
        assert not grid.is_near_miss_pool
        assert grid.sample_count == 4

    def test_empty_contexts(self):
        expr = {"prerequisites": [_cmp("emotions.joy", ">=", 0.5)]}
        (grid,) = SensitivityAnalyzer().compute_global_sensitivity_data(
            [], [Blocker("emotions.joy", ">=", 0.5)], expr, steps=1)
        assert grid.points[0].pass_rate == 0.0


# ═══════════════════════════════════════════════════════════════════
# Threshold lookup
# ═══════════════════════════════════════════════════════════════════

class TestThresholdForRate:
    """SensitivityGrid.threshold_for_rate() and suggest_thresholds()."""

    def test_nearest_to_original(self):
        grid = _make_grid([0.2, 0.08, 0.03, 0.01, 0.0])
        point = grid.threshold_for_rate(0.05)
        assert point.threshold == pytest.approx(0.45)
        assert grid.threshold_for_rate(0.03).threshold == pytest.approx(0.5)

    def test_unreachable_rate(self):
        assert _make_grid([0.0, 0.0, 0.0]).threshold_for_rate(0.01) is None

    def test_suggest_thresholds(self):
        out = suggest_thresholds(_make_grid([0.2, 0.08, 0.03, 0.01, 0.0]),
                                 targets=(0.01, 0.5))
        assert out[0]["target_rate"] == 0.01
        assert out[0]["threshold"] == pytest.approx(0.5)
        assert out[1] == {"target_rate": 0.5, "threshold": None,
                          "pass_rate": None, "effective_threshold": None}
