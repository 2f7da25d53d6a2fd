"""Tests for the ThresholdRegistry.

Covers:
1. ThresholdRegistry — read, immutability, replace, diff, section
2. DEFAULT_THRESHOLDS — structure, section coverage, open-question knobs
3. validate_thresholds — range checks and validated()
"""

import pytest
from expression_diagnostics.thresholds import (
    ThresholdRegistry,
    DEFAULT_THRESHOLDS,
    validate_thresholds,
)


# ═══════════════════════════════════════════════════════════════════
# 1. ThresholdRegistry core behaviour
# ═══════════════════════════════════════════════════════════════════

class TestThresholdRegistryRead:
    """Reading keys, contains, len, iter."""

    def test_getitem(self):
        reg = ThresholdRegistry({"a.b": 1.0, "a.c": 2.0})
        assert reg["a.b"] == 1.0
        assert reg["a.c"] == 2.0

    def test_getitem_missing_raises(self):
        reg = ThresholdRegistry({"a.b": 1.0})
        with pytest.raises(KeyError):
            _ = reg["z.z"]

    def test_get_with_default(self):
        reg = ThresholdRegistry({"a.b": 1.0})
        assert reg.get("z.z") == 0.0
        assert reg.get("z.z", -1.0) == -1.0

    def test_get_int_casts(self):
        reg = ThresholdRegistry({"a.count": 9.0})
        assert reg.get_int("a.count") == 9
        assert isinstance(reg.get_int("a.count"), int)
        assert reg.get_int("a.missing", 4) == 4

    def test_len_and_iter(self):
        reg = ThresholdRegistry({"a.b": 1.0, "a.c": 2.0, "x.y": 3.0})
        assert len(reg) == 3
        assert sorted(reg) == ["a.b", "a.c", "x.y"]

    def test_to_dict_returns_copy(self):
        reg = ThresholdRegistry({"a.b": 1.0})
        d = reg.to_dict()
        d["a.b"] = 999.0
        assert reg["a.b"] == 1.0

    def test_repr(self):
        reg = ThresholdRegistry({"a.b": 1.0}, name="test")
        assert "test" in repr(reg)
        assert "1 keys" in repr(reg)


class TestThresholdRegistryImmutability:
    """Registry is read-only."""

    def test_setitem_raises(self):
        reg = ThresholdRegistry({"a.b": 1.0})
        with pytest.raises(TypeError, match="read-only"):
            reg["a.b"] = 2.0

    def test_constructor_does_not_alias(self):
        data = {"a.b": 1.0}
        reg = ThresholdRegistry(data)
        data["a.b"] = 999.0
        assert reg["a.b"] == 1.0


class TestThresholdRegistryReplaceDiff:
    """replace() and diff()."""

    def test_replace_returns_new_registry(self):
        reg = ThresholdRegistry({"a.b": 1.0, "a.c": 2.0}, name="orig")
        new = reg.replace({"a.b": 99.0})
        assert new["a.b"] == 99.0
        assert new["a.c"] == 2.0
        assert reg["a.b"] == 1.0
        assert new.name == "orig+"

    def test_replace_unknown_key_raises(self):
        reg = ThresholdRegistry({"a.b": 1.0})
        with pytest.raises(KeyError, match="Unknown threshold key"):
            reg.replace({"z.z": 99.0})

    def test_diff(self):
        strict = DEFAULT_THRESHOLDS.replace({"feasibility.rare_threshold": 0.01})
        assert strict.diff(DEFAULT_THRESHOLDS) == {
            "feasibility.rare_threshold": (0.01, 0.001),
        }

    def test_diff_ignores_name(self):
        a = ThresholdRegistry({"a.b": 1.0}, name="x")
        b = ThresholdRegistry({"a.b": 1.0}, name="y")
        assert a.diff(b) == {}


class TestThresholdRegistrySection:
    """section() and sections."""

    def test_section_keeps_full_keys(self):
        reg = ThresholdRegistry({"a.b": 1.0, "a.c": 2.0, "ab.d": 3.0})
        assert reg.section("a") == {"a.b": 1.0, "a.c": 2.0}

    def test_sections_sorted(self):
        reg = ThresholdRegistry({"z.a": 1.0, "b.c": 2.0, "b.d": 3.0})
        assert reg.sections == ("b", "z")


# ═══════════════════════════════════════════════════════════════════
# 2. DEFAULT_THRESHOLDS
# ═══════════════════════════════════════════════════════════════════

class TestDefaultThresholds:
    """The production registry."""

    def test_name(self):
        assert DEFAULT_THRESHOLDS.name == "production"

    def test_all_sections_present(self):
        assert set(DEFAULT_THRESHOLDS.sections) == {
            "reachability", "feasibility", "fit", "overlap", "classifier",
            "recommendation", "suggestions", "sensitivity", "sampling",
        }

    def test_all_values_are_floats(self):
        for key, value in DEFAULT_THRESHOLDS.to_dict().items():
            assert isinstance(value, float), key

    def test_open_question_knobs(self):
        assert DEFAULT_THRESHOLDS["feasibility.rare_threshold"] == 0.001
        assert DEFAULT_THRESHOLDS["sensitivity.near_miss_min_pool"] == 50.0

    def test_ceilings(self):
        assert DEFAULT_THRESHOLDS.get_int("reachability.max_branches") == 100
        assert DEFAULT_THRESHOLDS.get_int("overlap.sample_count_per_pair") == 8000

    def test_fit_weights_sum_to_one(self):
        fit = DEFAULT_THRESHOLDS.section("fit")
        total = sum(v for k, v in fit.items() if k.startswith("fit.weight_"))
        assert total == pytest.approx(1.0)


# ═══════════════════════════════════════════════════════════════════
# 3. Validation
# ═══════════════════════════════════════════════════════════════════

class TestValidateThresholds:
    """validate_thresholds() and validated()."""

    def test_defaults_are_valid(self):
        assert validate_thresholds(DEFAULT_THRESHOLDS) == []
        assert DEFAULT_THRESHOLDS.validated() is DEFAULT_THRESHOLDS

    def test_probability_out_of_range(self):
        reg = DEFAULT_THRESHOLDS.replace({"feasibility.rare_threshold": 1.5})
        errors = validate_thresholds(reg)
        assert any("feasibility.rare_threshold" in e for e in errors)

    def test_correlation_out_of_range(self):
        reg = DEFAULT_THRESHOLDS.replace({"classifier.min_correlation_for_merge": -2.0})
        assert any("[-1, 1]" in e for e in validate_thresholds(reg))

    def test_count_must_be_positive_integer(self):
        reg = DEFAULT_THRESHOLDS.replace({"sensitivity.steps": 2.5})
        assert any("positive integer" in e for e in validate_thresholds(reg))

    def test_fit_weights_must_sum_to_one(self):
        reg = DEFAULT_THRESHOLDS.replace({"fit.weight_gate_pass": 0.5})
        assert any("fit weights" in e for e in validate_thresholds(reg))

    def test_validated_raises(self):
        reg = DEFAULT_THRESHOLDS.replace({"sensitivity.near_miss_min_pool": 0.0},
                                         name="broken")
        with pytest.raises(ValueError, match="broken"):
            reg.validated()

    def test_partial_registry_only_checks_present_keys(self):
        reg = ThresholdRegistry({"overlap.intensity_eps": 0.05})
        assert validate_thresholds(reg) == []
