"""Central registry of diagnostics tuning constants.

Collects the constants used across the diagnostics engine (branch
ceilings, rarity cut-offs, composite-score weights, overlap guardrails,
classifier gates, stump filters, sensitivity grids) into a typed,
immutable registry that can be:

* **inspected** — ``registry["feasibility.rare_threshold"]``
* **overridden** — ``registry.replace({"feasibility.rare_threshold": 0.01})``
* **diffed** — ``registry.diff(other)``
* **validated** — ``validate_thresholds(registry)``

Counts (branch limits, sample sizes, grid steps) are stored as floats
and cast with ``int()`` where they are used, so that every entry shares
the same type and can be swept the same way.

Usage
-----
>>> from expression_diagnostics.thresholds import DEFAULT_THRESHOLDS
>>> reg = DEFAULT_THRESHOLDS
>>> reg["reachability.max_branches"]              # 100.0
>>> strict = reg.replace({"feasibility.rare_threshold": 0.01})
>>> strict.diff(reg)        # {'feasibility.rare_threshold': (0.01, 0.001)}
>>> validate_thresholds(strict)                   # []

Historical notes
----------------
``feasibility.rare_threshold`` and ``sensitivity.near_miss_min_pool``
were fixture-derived constants before they moved here; treat them as
tuning knobs rather than invariants.
"""

from __future__ import annotations

import math
from typing import Dict, Iterator, List, Optional, Tuple

__all__ = [
    "ThresholdRegistry",
    "DEFAULT_THRESHOLDS",
    "validate_thresholds",
]


# ═══════════════════════════════════════════════════════════════════
# ThresholdRegistry
# ═══════════════════════════════════════════════════════════════════

class ThresholdRegistry:
    """Read-only mapping from ``section.name`` keys to float settings.

    Parameters
    ----------
    data : dict[str, float]
        Flat settings keyed by dotted name.  The registry keeps its own
        copy.
    name : str, optional
        Label shown in ``repr`` and error messages (``"production"``,
        ``"strict-rarity"``).

    Assigning an item raises ``TypeError``; derive variants with
    :meth:`replace` and compare them with :meth:`diff`.
    """

    def __init__(self, data: Dict[str, float], *, name: str = "custom"):
        self._data: Dict[str, float] = dict(data)
        self._name = name

    # ── read ────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    def __getitem__(self, key: str) -> float:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __repr__(self) -> str:
        return f"ThresholdRegistry({self._name!r}, {len(self._data)} keys)"

    def get(self, key: str, default: float = 0.0) -> float:
        """Float setting for *key*; *default* when the key is absent."""
        return self._data.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        """Return value for *key* cast to ``int`` (counts, steps)."""
        return int(self._data.get(key, default))

    def to_dict(self) -> Dict[str, float]:
        """Plain ``dict`` copy, safe to mutate."""
        return dict(self._data)

    # ── immutable mutation ──────────────────────────────────────

    def __setitem__(self, key: str, value: float):
        raise TypeError(
            "ThresholdRegistry is read-only; build a copy with .replace()")

    def replace(
        self,
        overrides: Dict[str, float],
        *,
        name: Optional[str] = None,
    ) -> "ThresholdRegistry":
        """Copy of this registry with *overrides* applied.

        Raises
        ------
        KeyError
            When an override names a key this registry does not define.
        """
        for k in overrides:
            if k not in self._data:
                raise KeyError(
                    f"Unknown threshold key {k!r}. "
                    f"Valid keys: {sorted(self._data.keys())}"
                )
        merged = dict(self._data)
        merged.update(overrides)
        return ThresholdRegistry(
            merged,
            name=name or (self._name + "+"),
        )

    def validated(self) -> "ThresholdRegistry":
        """Return *self* after checking it, or raise ``ValueError``."""
        errors = validate_thresholds(self)
        if errors:
            raise ValueError(
                f"Invalid threshold registry {self._name!r}: "
                + "; ".join(errors)
            )
        return self

    # ── comparison ──────────────────────────────────────────────

    def diff(
        self, other: "ThresholdRegistry",
    ) -> Dict[str, Tuple[float, float]]:
        """Map each key whose value differs to ``(mine, theirs)``."""
        result = {}
        all_keys = set(self._data) | set(other._data)
        for k in sorted(all_keys):
            v_self = self._data.get(k)
            v_other = other._data.get(k)
            if v_self != v_other:
                result[k] = (v_self, v_other)
        return result

    # ── section access ──────────────────────────────────────────

    def section(self, prefix: str) -> Dict[str, float]:
        """Entries under ``<prefix>.``, keyed by their full dotted name.

        >>> reg.section("fit")
        {'fit.weight_gate_pass': 0.3, ...}
        """
        return {
            k: v for k, v in self._data.items()
            if k.startswith(prefix + ".")
        }

    @property
    def sections(self) -> Tuple[str, ...]:
        """Distinct section names, sorted."""
        prefixes = set()
        for k in self._data:
            dot = k.find(".")
            if dot > 0:
                prefixes.add(k[:dot])
        return tuple(sorted(prefixes))


# ═══════════════════════════════════════════════════════════════════
# DEFAULT_THRESHOLDS: the production config
# ═══════════════════════════════════════════════════════════════════
#
# Naming convention: section.descriptive_name
#   section ∈ {reachability, feasibility, fit, overlap, classifier,
#              recommendation, suggestions, sensitivity, sampling}
# ═══════════════════════════════════════════════════════════════════

_DEFAULT_DATA: Dict[str, float] = {

    # ── reachability: branch enumeration & interval checks ─────
    "reachability.max_branches": 100.0,
    "reachability.knife_edge_width": 0.02,
    "reachability.volume_constrained_cutoff": 0.99,

    # ── feasibility: empirical clause classification ───────────
    "feasibility.rare_threshold": 0.001,

    # ── fit: composite score & leaderboard ─────────────────────
    "fit.weight_gate_pass": 0.30,
    "fit.weight_intensity": 0.35,
    "fit.weight_conflict": 0.20,
    "fit.weight_exclusion": 0.15,
    "fit.leaderboard_size": 10.0,
    "fit.default_threshold": 0.3,
    "fit.implied_cosine_weight": 0.6,
    "fit.implied_gate_weight": 0.4,
    "fit.implied_top_k": 5.0,

    # ── overlap: Monte Carlo pair evaluation ───────────────────
    "overlap.sample_count_per_pair": 8000.0,
    "overlap.max_candidate_pairs": 5000.0,
    "overlap.intensity_eps": 0.05,
    "overlap.dominance_delta": 0.05,
    "overlap.min_co_pass_samples": 1.0,
    "overlap.min_pass_samples_for_conditional": 200.0,
    "overlap.divergence_examples_k": 5.0,
    "overlap.high_threshold_low": 0.4,
    "overlap.high_threshold_mid": 0.6,
    "overlap.high_threshold_high": 0.75,

    # ── classifier: pair classification gates ─────────────────
    "classifier.min_on_either_rate_for_merge": 0.05,
    "classifier.min_gate_overlap_ratio": 0.9,
    "classifier.min_correlation_for_merge": 0.98,
    "classifier.max_mean_abs_diff_for_merge": 0.03,
    "classifier.max_exclusive_rate_for_subsumption": 0.01,
    "classifier.min_correlation_for_subsumption": 0.95,
    "classifier.min_dominance_for_subsumption": 0.95,
    "classifier.nested_conditional_threshold": 0.97,
    "classifier.separation_min_gate_overlap": 0.70,
    "classifier.separation_min_correlation": 0.80,
    "classifier.convert_max_threat_upper": 0.20,
    "classifier.enable_convert_to_expression": 1.0,   # 0 disables
    "classifier.near_miss_correlation": 0.9,
    "classifier.near_miss_gate_overlap": 0.75,

    # ── recommendation: evidence extraction ────────────────────
    "recommendation.active_axis_epsilon": 0.08,

    # ── suggestions: decision-stump engine ─────────────────────
    "suggestions.min_samples_for_stump": 20.0,
    "suggestions.max_suggestions_per_pair": 3.0,
    "suggestions.min_info_gain": 0.01,
    "suggestions.min_overlap_reduction": 0.1,
    "suggestions.min_activation_rate_after": 0.01,
    "suggestions.max_candidate_thresholds": 32.0,

    # ── sensitivity: threshold sweeps ──────────────────────────
    "sensitivity.steps": 9.0,
    "sensitivity.float_step": 0.05,
    "sensitivity.integer_step": 1.0,
    "sensitivity.near_miss_min_pool": 50.0,
    "sensitivity.near_miss_exclude_count": 1.0,

    # ── sampling: random state generation ──────────────────────
    "sampling.dynamic_sigma_mood": 15.0,
    "sampling.dynamic_sigma_sexual": 12.0,
    "sampling.dynamic_sigma_libido": 8.0,
}


DEFAULT_THRESHOLDS: ThresholdRegistry = ThresholdRegistry(
    _DEFAULT_DATA, name="production",
)
"""The production threshold registry."""


# ═══════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════

_PROBABILITY_KEYS = (
    "feasibility.rare_threshold",
    "fit.weight_gate_pass",
    "fit.weight_intensity",
    "fit.weight_conflict",
    "fit.weight_exclusion",
    "fit.default_threshold",
    "fit.implied_cosine_weight",
    "fit.implied_gate_weight",
    "overlap.intensity_eps",
    "overlap.dominance_delta",
    "overlap.high_threshold_low",
    "overlap.high_threshold_mid",
    "overlap.high_threshold_high",
    "classifier.min_on_either_rate_for_merge",
    "classifier.min_gate_overlap_ratio",
    "classifier.max_exclusive_rate_for_subsumption",
    "classifier.min_dominance_for_subsumption",
    "classifier.nested_conditional_threshold",
    "classifier.separation_min_gate_overlap",
    "classifier.near_miss_gate_overlap",
    "suggestions.min_info_gain",
    "suggestions.min_overlap_reduction",
    "suggestions.min_activation_rate_after",
)

_CORRELATION_KEYS = (
    "classifier.min_correlation_for_merge",
    "classifier.min_correlation_for_subsumption",
    "classifier.separation_min_correlation",
    "classifier.near_miss_correlation",
)

_COUNT_KEYS = (
    "reachability.max_branches",
    "fit.leaderboard_size",
    "fit.implied_top_k",
    "overlap.sample_count_per_pair",
    "overlap.max_candidate_pairs",
    "overlap.min_co_pass_samples",
    "overlap.min_pass_samples_for_conditional",
    "overlap.divergence_examples_k",
    "suggestions.min_samples_for_stump",
    "suggestions.max_suggestions_per_pair",
    "suggestions.max_candidate_thresholds",
    "sensitivity.steps",
    "sensitivity.near_miss_min_pool",
    "sensitivity.near_miss_exclude_count",
)

_FIT_WEIGHT_KEYS = (
    "fit.weight_gate_pass",
    "fit.weight_intensity",
    "fit.weight_conflict",
    "fit.weight_exclusion",
)


def validate_thresholds(registry: ThresholdRegistry) -> List[str]:
    """Check ranges of the known keys in *registry*.

    Keys absent from *registry* are not reported; a custom registry may
    carry only the sections one analyzer needs.

    Returns
    -------
    list of str
        One message per violation; empty when the registry is valid.
    """
    errors: List[str] = []

    for key in _PROBABILITY_KEYS:
        if key in registry:
            v = registry[key]
            if not (0.0 <= v <= 1.0):
                errors.append(f"{key}={v} must be in [0, 1]")

    for key in _CORRELATION_KEYS:
        if key in registry:
            v = registry[key]
            if not (-1.0 <= v <= 1.0):
                errors.append(f"{key}={v} must be in [-1, 1]")

    for key in _COUNT_KEYS:
        if key in registry:
            v = registry[key]
            if v < 1 or v != math.floor(v):
                errors.append(f"{key}={v} must be a positive integer")

    for key in ("sensitivity.float_step", "sensitivity.integer_step",
                "reachability.knife_edge_width",
                "recommendation.active_axis_epsilon"):
        if key in registry and registry[key] <= 0:
            errors.append(f"{key}={registry[key]} must be positive")

    if all(k in registry for k in _FIT_WEIGHT_KEYS):
        total = sum(registry[k] for k in _FIT_WEIGHT_KEYS)
        if abs(total - 1.0) > 1e-9:
            errors.append(f"fit weights sum to {total:.6f}, expected 1.0")

    return errors
