"""Decision-stump gate suggestions that pull two prototypes apart.

For a pair whose activations overlap, each prototype (the *target*) is
examined on its own active samples.  Those samples split into
*co-active* (the other prototype fires too) and *exclusive*.  For every
candidate axis a single-threshold stump is fitted to separate the two
groups, picking the threshold with the highest information gain
(:func:`scipy.stats.entropy`, base 2).  The winning stump becomes a gate
suggestion for the target: ``axis <= t`` or ``axis >= t``, whichever
side keeps fewer co-active samples.

Each suggestion estimates:

* ``overlap_reduction_estimate``: fraction of co-active samples removed
* ``activation_impact_estimate``: minus the fraction of the target's
  activations removed (always ≤ 0)
* ``is_valid``: the target's remaining activation rate over the whole
  pool stays at or above ``suggestions.min_activation_rate_after``

Usage
-----
>>> vec_a = compute_output_vector(joy, pool)
>>> vec_b = compute_output_vector(elation, pool)
>>> engine = ActionableSuggestionEngine()
>>> for s in engine.generate_suggestions(vec_a, vec_b, pool):
...     print(s.summary())
elation: add gate arousal >= 0.45 (overlap -62%, activation -18%)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import entropy

from .axes import CANONICAL_AXES, normalize_context_axes, normalized_range
from .collaborators import resolve_logger
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "Suggestion",
    "information_gain",
    "fit_stump",
    "ActionableSuggestionEngine",
]

CANDIDATE_AXES: Tuple[str, ...] = tuple(CANONICAL_AXES) + ("sexual_arousal",)

# Hints for which no gate change is proposed.
SKIP_HINTS = frozenset({"keep_distinct", "not_redundant"})


@dataclass(frozen=True)
class Suggestion:
    axis: str
    operator: str
    threshold: float
    target_prototype: str
    overlap_reduction_estimate: float
    activation_impact_estimate: float
    info_gain: float
    is_valid: bool
    validation_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "axis": self.axis,
            "operator": self.operator,
            "threshold": round(self.threshold, 6),
            "target_prototype": self.target_prototype,
            "overlap_reduction_estimate": round(self.overlap_reduction_estimate, 6),
            "activation_impact_estimate": round(self.activation_impact_estimate, 6),
            "info_gain": round(self.info_gain, 6),
            "is_valid": self.is_valid,
            "validation_message": self.validation_message,
        }

    def summary(self) -> str:
        return (f"{self.target_prototype}: add gate {self.axis} "
                f"{self.operator} {self.threshold:.2f} "
                f"(overlap -{self.overlap_reduction_estimate:.0%}, "
                f"activation {self.activation_impact_estimate:+.0%})")


# ═══════════════════════════════════════════════════════════════════
# Decision stumps
# ═══════════════════════════════════════════════════════════════════

def _entropy(labels: np.ndarray) -> float:
    if labels.size == 0:
        return 0.0
    positives = int(labels.sum())
    return float(entropy([positives, labels.size - positives], base=2))


def information_gain(labels: np.ndarray, split: np.ndarray) -> float:
    """Entropy reduction from splitting boolean *labels* by *split*."""
    labels = np.asarray(labels, dtype=bool)
    split = np.asarray(split, dtype=bool)
    n = labels.size
    if n == 0:
        return 0.0
    left, right = labels[split], labels[~split]
    weighted = (left.size * _entropy(left) + right.size * _entropy(right)) / n
    return _entropy(labels) - weighted


def _candidate_thresholds(values: np.ndarray, limit: int) -> np.ndarray:
    uniq = np.unique(values)
    if uniq.size < 2:
        return np.empty(0)
    mids = (uniq[:-1] + uniq[1:]) / 2.0
    if mids.size > limit > 0:
        mids = np.unique(np.quantile(mids, np.linspace(0.0, 1.0, limit)))
    return mids


def fit_stump(
    values: np.ndarray,
    labels: np.ndarray,
    max_candidates: int = 32,
) -> Optional[Tuple[float, float]]:
    """Best ``(threshold, info_gain)`` splitting *labels* at ``values <= t``.

    Returns ``None`` when *values* has fewer than two distinct points.
    """
    values = np.asarray(values, dtype=float)
    labels = np.asarray(labels, dtype=bool)
    best: Optional[Tuple[float, float]] = None
    for t in _candidate_thresholds(values, max_candidates):
        gain = information_gain(labels, values <= t)
        if best is None or gain > best[1]:
            best = (float(t), gain)
    return best


# ═══════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════

def _gate_results(vector: Any) -> np.ndarray:
    if isinstance(vector, Mapping):
        raw = vector.get("gate_results", ())
    else:
        raw = getattr(vector, "gate_results", vector)
    return np.asarray(raw, dtype=bool)


def _vector_id(vector: Any, fallback: str) -> str:
    if isinstance(vector, Mapping):
        return str(vector.get("prototype_id") or fallback)
    return str(getattr(vector, "prototype_id", None) or fallback)


class ActionableSuggestionEngine:
    """Propose single-axis gates that reduce a pair's co-activation.

    Parameters
    ----------
    thresholds : ThresholdRegistry
        ``suggestions.*`` keys.
    logger : logger-like, optional
    axis_ranges : dict, optional
        ``{axis: (lo, hi)}`` clamp ranges; axes not listed use their
        canonical normalised range.
    """

    def __init__(
        self,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
        logger: Optional[Any] = None,
        axis_ranges: Optional[Mapping[str, Tuple[float, float]]] = None,
    ):
        self._thresholds = thresholds
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        self._axis_ranges = dict(axis_ranges or {})

    def axis_range(self, axis: str) -> Tuple[float, float]:
        if axis in self._axis_ranges:
            lo, hi = self._axis_ranges[axis]
            return float(lo), float(hi)
        return normalized_range(axis)

    def generate_suggestions(
        self,
        vector_a: Any,
        vector_b: Any,
        context_pool: Sequence[Mapping[str, Any]],
        classification_hint: Optional[str] = None,
    ) -> List[Suggestion]:
        """Gate suggestions for both prototypes, best first.

        Parameters
        ----------
        vector_a, vector_b : OutputVector or dict
            Per-context ``gate_results`` aligned with *context_pool*.
        context_pool : list of dict
        classification_hint : str, optional
            ``keep_distinct`` / ``not_redundant`` yield no suggestions.
        """
        if classification_hint in SKIP_HINTS:
            return []

        gates_a = _gate_results(vector_a)
        gates_b = _gate_results(vector_b)
        n = min(gates_a.size, gates_b.size, len(context_pool))
        if n == 0:
            return []
        gates_a, gates_b = gates_a[:n], gates_b[:n]

        matrix = np.array([
            [normalize_context_axes(ctx).get(axis, 0.0) for axis in CANDIDATE_AXES]
            for ctx in context_pool[:n]
        ], dtype=float)
        both = gates_a & gates_b

        suggestions: List[Suggestion] = []
        for target_id, active in ((_vector_id(vector_a, "a"), gates_a),
                                  (_vector_id(vector_b, "b"), gates_b)):
            if not both.any() or not active.any():
                continue
            for j, axis in enumerate(CANDIDATE_AXES):
                try:
                    s = self._suggest_for_axis(
                        axis, matrix[:, j], active, both, target_id, n)
                except Exception as exc:
                    self._logger.warning(
                        f"Suggestion for {target_id} on {axis} failed: {exc}")
                    continue
                if s is not None:
                    suggestions.append(s)

        min_gain = self._thresholds.get("suggestions.min_info_gain", 0.01)
        min_reduction = self._thresholds.get("suggestions.min_overlap_reduction", 0.1)
        kept = [s for s in suggestions
                if s.info_gain >= min_gain
                and s.overlap_reduction_estimate >= min_reduction]
        kept.sort(key=lambda s: s.info_gain, reverse=True)
        cap = self._thresholds.get_int("suggestions.max_suggestions_per_pair", 3)
        self._logger.debug(
            f"{len(kept)}/{len(suggestions)} stump suggestions pass filters "
            f"(cap {cap})")
        return kept[:cap]

    def _suggest_for_axis(
        self,
        axis: str,
        column: np.ndarray,
        active: np.ndarray,
        both: np.ndarray,
        target_id: str,
        n: int,
    ) -> Optional[Suggestion]:
        values = column[active]
        labels = both[active]
        finite = np.isfinite(values)
        values, labels = values[finite], labels[finite]
        if values.size < self._thresholds.get_int("suggestions.min_samples_for_stump", 20):
            return None
        if labels.all() or not labels.any():
            return None

        stump = fit_stump(
            values, labels,
            self._thresholds.get_int("suggestions.max_candidate_thresholds", 32))
        if stump is None:
            return None
        threshold, gain = stump

        left = values <= threshold
        left_rate = labels[left].mean() if left.any() else 1.0
        right_rate = labels[~left].mean() if (~left).any() else 1.0
        operator = "<=" if left_rate < right_rate else ">="

        messages = []
        lo, hi = self.axis_range(axis)
        clamped = min(max(threshold, lo), hi)
        if clamped != threshold:
            messages.append(
                f"threshold clamped from {threshold:.4f} to {clamped:.4f} "
                f"(range [{lo:g}, {hi:g}])")
            threshold = clamped

        keep = values <= threshold if operator == "<=" else values >= threshold
        overlap_total = int(labels.sum())
        overlap_removed = int((labels & ~keep).sum())
        activations_removed = int((~keep).sum())

        remaining_rate = int(keep.sum()) / n
        min_rate = self._thresholds.get("suggestions.min_activation_rate_after", 0.01)
        is_valid = remaining_rate >= min_rate
        if not is_valid:
            messages.append(
                f"remaining activation rate {remaining_rate:.4f} "
                f"below minimum {min_rate:g}")

        return Suggestion(
            axis=axis,
            operator=operator,
            threshold=float(threshold),
            target_prototype=target_id,
            overlap_reduction_estimate=overlap_removed / overlap_total,
            activation_impact_estimate=-activations_removed / values.size,
            info_gain=float(gain),
            is_valid=is_valid,
            validation_message="; ".join(messages),
        )
