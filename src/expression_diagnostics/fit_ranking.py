"""Prototype fit ranking within an expression's mood regime.

Given an expression and a pool of sampled contexts, every candidate
prototype is scored on how well it would serve the expression:

    composite = w_gate·gate_pass_rate
              + w_int ·P(intensity ≥ threshold | gates pass)
              + w_conf·(1 − conflict_score)
              + w_excl·exclusion_compatibility

(weights ``fit.weight_*``, default 0.30 / 0.35 / 0.20 / 0.15).  All
rates are measured only over contexts inside the *mood regime*, the
axis intervals the expression pins on every path (see
:func:`~expression_diagnostics.clauses.extract_axis_constraints`).

Exclusion compatibility is not modelled yet and is always 1.0.

Usage
-----
>>> ranker = PrototypeFitRanker(registry)
>>> result = ranker.analyze_all_prototype_fit(expression, contexts)
>>> result.leaderboard[0].prototype_id
'contentment'
>>> result.best_alternative, result.improvement_factor
('contentment', 1.42)
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .axes import normalize_context_axes
from .clauses import extract_axis_constraints
from .collaborators import resolve_logger, validate_dependency
from .gates import AxisInterval, check_all_gates_pass, extract_gate_intervals
from .logic import iter_comparisons, parse_prerequisites
from .prototypes import Prototype, compute_intensity
from .reachability import PrototypeRequirement
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "IntensityDistribution",
    "ConflictAnalysis",
    "PrototypeFit",
    "FitRankingResult",
    "TargetSignatureEntry",
    "ImpliedPrototypeMatch",
    "ImpliedPrototypeResult",
    "percentile",
    "compute_intensity_distribution",
    "analyze_conflicts",
    "compute_composite_score",
    "filter_to_regime",
    "PrototypeFitRanker",
]


# ═══════════════════════════════════════════════════════════════════
# Result types
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IntensityDistribution:
    """Intensity percentiles over the gate-passing contexts."""

    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p_above_threshold: float = 0.0
    min: Optional[float] = None
    max: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "p50": round(self.p50, 6),
            "p90": round(self.p90, 6),
            "p95": round(self.p95, 6),
            "p_above_threshold": round(self.p_above_threshold, 6),
            "min": None if self.min is None else round(self.min, 6),
            "max": None if self.max is None else round(self.max, 6),
        }


@dataclass(frozen=True)
class ConflictAnalysis:
    """Weights pulling against the regime's direction."""

    score: float = 0.0
    magnitude: float = 0.0
    axes: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round(self.score, 6),
            "magnitude": round(self.magnitude, 6),
            "axes": [dict(a) for a in self.axes],
        }


@dataclass(frozen=True)
class PrototypeFit:
    prototype_id: str
    type: str
    gate_pass_rate: float
    intensity_distribution: IntensityDistribution
    conflicts: ConflictAnalysis
    composite_score: float
    gate_compatible: bool
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prototype_id": self.prototype_id,
            "type": self.type,
            "rank": self.rank,
            "gate_pass_rate": round(self.gate_pass_rate, 6),
            "intensity_distribution": self.intensity_distribution.to_dict(),
            "conflict_score": round(self.conflicts.score, 6),
            "conflict_magnitude": round(self.conflicts.magnitude, 6),
            "conflicting_axes": [dict(a) for a in self.conflicts.axes],
            "composite_score": round(self.composite_score, 6),
            "gate_compatible": self.gate_compatible,
        }


@dataclass(frozen=True)
class FitRankingResult:
    leaderboard: Tuple[PrototypeFit, ...] = ()
    current_prototype: Optional[PrototypeFit] = None
    best_alternative: Optional[str] = None
    improvement_factor: Optional[float] = None
    regime_context_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaderboard": [f.to_dict() for f in self.leaderboard],
            "current_prototype": (self.current_prototype.to_dict()
                                  if self.current_prototype else None),
            "best_alternative": self.best_alternative,
            "improvement_factor": (None if self.improvement_factor is None
                                   else round(self.improvement_factor, 6)),
            "regime_context_count": self.regime_context_count,
        }

    def summary(self) -> str:
        if not self.leaderboard:
            return "no prototypes ranked"
        top = self.leaderboard[0]
        text = f"leader {top.prototype_id} ({top.composite_score:.3f})"
        if self.best_alternative and self.improvement_factor is not None:
            text += (f", {self.improvement_factor:.2f}x better than "
                     f"{self.current_prototype.prototype_id}")
        return text


@dataclass(frozen=True)
class TargetSignatureEntry:
    direction: int              # +1, -1 or 0
    tightness: float
    last_mile_weight: float

    @property
    def importance(self) -> float:
        return 0.5 * self.tightness + 0.5 * self.last_mile_weight

    @property
    def weight(self) -> float:
        return self.direction * self.importance


@dataclass(frozen=True)
class ImpliedPrototypeMatch:
    prototype_id: str
    type: str
    cosine_similarity: float
    gate_pass_rate: float
    combined_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prototype_id": self.prototype_id,
            "type": self.type,
            "cosine_similarity": round(self.cosine_similarity, 6),
            "gate_pass_rate": round(self.gate_pass_rate, 6),
            "combined_score": round(self.combined_score, 6),
        }


@dataclass(frozen=True)
class ImpliedPrototypeResult:
    target_signature: Dict[str, TargetSignatureEntry] = field(default_factory=dict)
    by_similarity: Tuple[ImpliedPrototypeMatch, ...] = ()
    by_gate_pass: Tuple[ImpliedPrototypeMatch, ...] = ()
    by_combined: Tuple[ImpliedPrototypeMatch, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_signature": {
                a: {"direction": e.direction,
                    "tightness": round(e.tightness, 6),
                    "importance": round(e.importance, 6)}
                for a, e in self.target_signature.items()
            },
            "by_similarity": [m.to_dict() for m in self.by_similarity],
            "by_gate_pass": [m.to_dict() for m in self.by_gate_pass],
            "by_combined": [m.to_dict() for m in self.by_combined],
        }


# ═══════════════════════════════════════════════════════════════════
# Scoring helpers
# ═══════════════════════════════════════════════════════════════════

def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Floor-indexed percentile: ``sorted[floor(p·(n−1))]``."""
    if len(sorted_values) == 0:
        return 0.0
    return float(sorted_values[int(math.floor(p * (len(sorted_values) - 1)))])


def filter_to_regime(
    normalized: Sequence[Mapping[str, float]],
    constraints: Mapping[str, AxisInterval],
) -> List[int]:
    """Indices of normalised contexts inside every constraint."""
    if not constraints:
        return list(range(len(normalized)))
    return [
        i for i, axes in enumerate(normalized)
        if all(iv.contains(axes.get(a, 0.0)) for a, iv in constraints.items())
    ]


def _gate_pass_rate(prototype: Prototype, normalized) -> float:
    if not normalized:
        return 0.0
    if not prototype.gates:
        return 1.0
    passed = sum(1 for axes in normalized
                 if check_all_gates_pass(prototype.gates, axes))
    return passed / len(normalized)


def compute_intensity_distribution(
    prototype: Prototype,
    normalized: Sequence[Mapping[str, float]],
    threshold: float,
) -> IntensityDistribution:
    """Percentiles of intensity over the contexts whose gates pass."""
    values = np.sort(np.array([
        compute_intensity(prototype, axes) for axes in normalized
        if check_all_gates_pass(prototype.gates, axes)
    ], dtype=float))
    if values.size == 0:
        return IntensityDistribution()
    return IntensityDistribution(
        p50=percentile(values, 0.5),
        p90=percentile(values, 0.9),
        p95=percentile(values, 0.95),
        p_above_threshold=float(np.mean(values >= threshold)),
        min=float(values[0]),
        max=float(values[-1]),
    )


def analyze_conflicts(
    weights: Mapping[str, float],
    constraints: Mapping[str, AxisInterval],
) -> ConflictAnalysis:
    """Compare weight signs with the sign of each constraint's midpoint."""
    if not constraints:
        return ConflictAnalysis()
    conflicting = []
    magnitude = 0.0
    for axis, iv in constraints.items():
        w = weights.get(axis, 0.0)
        if w == 0:
            continue
        wanted = 1 if iv.midpoint >= 0 else -1
        sign = 1 if w > 0 else -1
        if sign != wanted:
            conflicting.append({
                "axis": axis,
                "weight": w,
                "direction": "positive" if sign > 0 else "negative",
            })
            magnitude += abs(w)
    return ConflictAnalysis(
        score=len(conflicting) / len(constraints),
        magnitude=magnitude,
        axes=tuple(conflicting),
    )


def compute_composite_score(
    gate_pass_rate: float,
    p_intensity_above: float,
    conflict_score: float,
    exclusion_compatibility: float = 1.0,
    thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
) -> float:
    th = thresholds
    return (th.get("fit.weight_gate_pass", 0.30) * gate_pass_rate
            + th.get("fit.weight_intensity", 0.35) * p_intensity_above
            + th.get("fit.weight_conflict", 0.20) * (1.0 - conflict_score)
            + th.get("fit.weight_exclusion", 0.15) * exclusion_compatibility)


def _gate_compatible(
    prototype: Prototype,
    constraints: Mapping[str, AxisInterval],
) -> bool:
    gate_intervals = extract_gate_intervals(prototype.gates)
    if gate_intervals.is_unsatisfiable:
        return False
    for axis, iv in gate_intervals.intervals.items():
        regime = constraints.get(axis)
        if regime is not None and not iv.overlaps(regime):
            return False
    return True


def _cosine(signature: Mapping[str, TargetSignatureEntry],
            weights: Mapping[str, float]) -> float:
    axes = sorted(set(signature) | set(weights))
    t = np.array([signature[a].weight if a in signature else 0.0 for a in axes])
    p = np.array([weights.get(a, 0.0) for a in axes])
    mag = float(np.linalg.norm(t) * np.linalg.norm(p))
    return 0.0 if mag == 0 else float(np.dot(t, p) / mag)


# ═══════════════════════════════════════════════════════════════════
# PrototypeFitRanker
# ═══════════════════════════════════════════════════════════════════

class PrototypeFitRanker:
    """Rank prototypes by fit to an expression's mood regime.

    Parameters
    ----------
    prototypes : PrototypeSource
        Required.  Must expose ``get_all(type)``.
    logger : logger-like, optional
    thresholds : ThresholdRegistry
        ``fit.*`` keys.
    """

    def __init__(
        self,
        prototypes: Any,
        logger: Optional[Any] = None,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
    ):
        self._prototypes = validate_dependency(
            prototypes, "prototypes", ("get_all",))
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        self._thresholds = thresholds

    # ── prototype discovery ─────────────────────────────────────

    @staticmethod
    def _requirements(expression: Any) -> List[PrototypeRequirement]:
        out = []
        for prefix, node in parse_prerequisites(expression):
            for cmp, _ in iter_comparisons(node, prefix):
                req = PrototypeRequirement.from_compare(cmp)
                if req is not None:
                    out.append(req)
        return out

    def _candidates(self, expression: Any) -> List[Prototype]:
        types = []
        for req in self._requirements(expression):
            if req.prototype_type not in types:
                types.append(req.prototype_type)
        if not types:
            types = ["emotion"]
        out: List[Prototype] = []
        for t in types:
            out.extend(self._prototypes.get_all(t) or ())
        return out

    # ── feature 1: fit leaderboard ──────────────────────────────

    def analyze_all_prototype_fit(
        self,
        expression: Any,
        contexts: Sequence[Mapping[str, Any]],
        axis_constraints: Optional[Mapping[str, AxisInterval]] = None,
        threshold: float = 0.3,
    ) -> FitRankingResult:
        """Score every candidate prototype against *expression*'s regime.

        Parameters
        ----------
        expression : dict or list
            Expression dict or its prerequisite list.
        contexts : list[dict]
            Raw sampled contexts.
        axis_constraints : dict, optional
            Pre-extracted ``{axis: AxisInterval}``; extracted from
            *expression* when omitted.
        threshold : float
            Intensity the expression needs from its prototype.

        Returns
        -------
        FitRankingResult
            Empty when there are no contexts or no prototypes.
        """
        if not contexts:
            self._logger.debug("No contexts for prototype fit analysis")
            return FitRankingResult()
        candidates = self._candidates(expression)
        if not candidates:
            self._logger.warning("No prototypes found for fit analysis")
            return FitRankingResult()

        if axis_constraints is None:
            axis_constraints = extract_axis_constraints(expression)
        normalized = [normalize_context_axes(c) for c in contexts]
        regime = [normalized[i]
                  for i in filter_to_regime(normalized, axis_constraints)]
        self._logger.debug(
            f"{len(regime)}/{len(contexts)} contexts in regime")

        fits: List[PrototypeFit] = []
        for proto in candidates:
            try:
                fits.append(self._score(proto, regime, axis_constraints,
                                        threshold))
            except Exception as exc:
                self._logger.warning(f"Skipping prototype {proto.id}: {exc}")

        fits.sort(key=lambda f: f.composite_score, reverse=True)
        ranked = [dataclasses.replace(f, rank=i + 1)
                  for i, f in enumerate(fits)]
        size = self._thresholds.get_int("fit.leaderboard_size", 10)
        leaderboard = tuple(ranked[:size])

        reqs = self._requirements(expression)
        current = None
        if reqs:
            ref = reqs[0]
            current = next(
                (f for f in ranked
                 if f.prototype_id == ref.prototype_id
                 and f.type == ref.prototype_type),
                None,
            )

        best_alternative = None
        improvement = None
        if (current is not None and leaderboard
                and leaderboard[0].prototype_id != current.prototype_id):
            best_alternative = leaderboard[0].prototype_id
            if current.composite_score > 0:
                improvement = (leaderboard[0].composite_score
                               / current.composite_score)

        result = FitRankingResult(
            leaderboard=leaderboard,
            current_prototype=current,
            best_alternative=best_alternative,
            improvement_factor=improvement,
            regime_context_count=len(regime),
        )
        self._logger.debug(result.summary())
        return result

    def _score(
        self,
        proto: Prototype,
        regime: Sequence[Mapping[str, float]],
        constraints: Mapping[str, AxisInterval],
        threshold: float,
    ) -> PrototypeFit:
        gate_rate = _gate_pass_rate(proto, regime)
        dist = compute_intensity_distribution(proto, regime, threshold)
        conflicts = analyze_conflicts(proto.weights, constraints)
        composite = compute_composite_score(
            gate_rate, dist.p_above_threshold, conflicts.score, 1.0,
            self._thresholds)
        return PrototypeFit(
            prototype_id=proto.id,
            type=proto.type,
            gate_pass_rate=gate_rate,
            intensity_distribution=dist,
            conflicts=conflicts,
            composite_score=composite,
            gate_compatible=_gate_compatible(proto, constraints),
        )

    # ── feature 2: implied prototype ────────────────────────────

    @staticmethod
    def build_target_signature(
        constraints: Mapping[str, AxisInterval],
        clause_failures: Sequence[Mapping[str, Any]] = (),
    ) -> Dict[str, TargetSignatureEntry]:
        """Direction, tightness and last-mile weight per constrained axis.

        *clause_failures* entries carry ``clause_description`` and
        ``last_mile_fail_rate``; an axis mentioned by none of them gets
        a last-mile weight of 0.5.
        """
        signature: Dict[str, TargetSignatureEntry] = {}
        for axis, iv in constraints.items():
            mid = iv.midpoint
            direction = 1 if mid > 0.1 else (-1 if mid < -0.1 else 0)
            full = AxisInterval.full(axis)
            tightness = max(0.0, 1.0 - iv.width / full.width) if full.width else 0.0
            last_mile = 0.5
            for failure in clause_failures:
                if axis in str(failure.get("clause_description", "")):
                    last_mile = failure.get("last_mile_fail_rate") or 0.5
                    break
            signature[axis] = TargetSignatureEntry(direction, tightness, last_mile)
        return signature

    def compute_implied_prototype(
        self,
        axis_constraints: Any,
        contexts: Sequence[Mapping[str, Any]],
        threshold: float = 0.3,
        clause_failures: Sequence[Mapping[str, Any]] = (),
    ) -> ImpliedPrototypeResult:
        """Which prototypes the regime itself looks like.

        *axis_constraints* may also be an expression or prerequisite
        list, in which case the constraints are extracted from it.
        """
        source = axis_constraints
        if not (isinstance(axis_constraints, Mapping)
                and all(isinstance(v, AxisInterval)
                        for v in axis_constraints.values())):
            axis_constraints = extract_axis_constraints(source)
            candidates = self._candidates(source)
        else:
            candidates = self._candidates(None)

        signature = self.build_target_signature(axis_constraints, clause_failures)
        if not candidates:
            return ImpliedPrototypeResult(target_signature=signature)

        normalized = [normalize_context_axes(c) for c in contexts or ()]
        regime = [normalized[i]
                  for i in filter_to_regime(normalized, axis_constraints)]

        w_cos = self._thresholds.get("fit.implied_cosine_weight", 0.6)
        w_gate = self._thresholds.get("fit.implied_gate_weight", 0.4)
        matches = []
        for proto in candidates:
            cos = _cosine(signature, proto.weights)
            gate = _gate_pass_rate(proto, regime)
            matches.append(ImpliedPrototypeMatch(
                prototype_id=proto.id,
                type=proto.type,
                cosine_similarity=cos,
                gate_pass_rate=gate,
                combined_score=w_cos * cos + w_gate * gate,
            ))

        k = self._thresholds.get_int("fit.implied_top_k", 5)
        return ImpliedPrototypeResult(
            target_signature=signature,
            by_similarity=tuple(sorted(
                matches, key=lambda m: m.cosine_similarity, reverse=True)[:k]),
            by_gate_pass=tuple(sorted(
                matches, key=lambda m: m.gate_pass_rate, reverse=True)[:k]),
            by_combined=tuple(sorted(
                matches, key=lambda m: m.combined_score, reverse=True)[:k]),
        )
