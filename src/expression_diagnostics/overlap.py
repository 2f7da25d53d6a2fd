"""Behavioral overlap between two prototypes by Monte Carlo sampling.

Two prototypes are *behaviorally redundant* when, over the simulation's
state space, they switch on together and produce near-identical
intensities.  :class:`BehavioralOverlapEvaluator` draws random states,
evaluates both prototypes on each, and reports:

* **gate overlap**: how often either/both/only-one prototype is active
* **intensity agreement** on co-active samples: Pearson r, mean
  absolute difference, RMSE, fraction within ε, and one-sided
  dominance.  Global variants over *all* samples (inactive = 0) guard
  against selection bias when co-activation is rare.
* **pass rates** with conditional probabilities P(A|B), P(B|A)
* **high co-activation** at intensity thresholds 0.4 / 0.6 / 0.75
* **deterministic gate implication**, but only when both gate lists
  parsed completely
* the top-K **divergence examples**

Candidate metrics (:func:`compute_candidate_metrics`) are the cheap,
weight-only comparison used to decide whether a pair is worth sampling.

Usage
-----
>>> gen = RandomStateGenerator(seed=42)
>>> evaluator = BehavioralOverlapEvaluator(gen)
>>> result = evaluator.evaluate(joy, contentment, sample_count=4000)
>>> result.gate_overlap.jaccard
0.71
>>> result.gate_implication.relation
'narrower'
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .axes import normalize_context_axes, resolve_axis_value
from .collaborators import resolve_logger, validate_dependency
from .gates import GateConstraint, extract_gate_intervals, parse_gate
from .implication import GateImplication, evaluate_gate_implication
from .prototypes import Prototype, compute_intensity
from .sampling import build_context
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "GateOverlap",
    "IntensityMetrics",
    "PassRates",
    "HighCoactivation",
    "DivergenceExample",
    "OverlapResult",
    "OutputVector",
    "compute_output_vector",
    "pearson_correlation",
    "compute_candidate_metrics",
    "BehavioralOverlapEvaluator",
]

NAN = float("nan")


def _r(x: Optional[float]) -> Optional[float]:
    return None if x is None else round(float(x), 6)


# ═══════════════════════════════════════════════════════════════════
# Result types
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GateOverlap:
    on_either_rate: float = 0.0
    on_both_rate: float = 0.0
    p_only_rate: float = 0.0
    q_only_rate: float = 0.0

    @property
    def jaccard(self) -> float:
        """on_both / on_either; 0 when neither prototype is ever active."""
        if self.on_either_rate <= 0:
            return 0.0
        return self.on_both_rate / self.on_either_rate

    def to_dict(self) -> Dict[str, float]:
        return {
            "on_either_rate": _r(self.on_either_rate),
            "on_both_rate": _r(self.on_both_rate),
            "p_only_rate": _r(self.p_only_rate),
            "q_only_rate": _r(self.q_only_rate),
            "jaccard": _r(self.jaccard),
        }


@dataclass(frozen=True)
class IntensityMetrics:
    """Agreement of intensities; NaN where not computable."""

    pearson_correlation: float = NAN
    mean_abs_diff: float = NAN
    rmse: float = NAN
    pct_within_eps: float = NAN
    dominance_p: float = 0.0
    dominance_q: float = 0.0
    global_mean_abs_diff: float = NAN
    global_l2_distance: float = NAN
    global_output_correlation: float = NAN

    def to_dict(self) -> Dict[str, float]:
        return {k: _r(getattr(self, k)) for k in (
            "pearson_correlation", "mean_abs_diff", "rmse", "pct_within_eps",
            "dominance_p", "dominance_q", "global_mean_abs_diff",
            "global_l2_distance", "global_output_correlation",
        )}


@dataclass(frozen=True)
class PassRates:
    pass_a_rate: float = 0.0
    pass_b_rate: float = 0.0
    p_a_given_b: float = NAN
    p_b_given_a: float = NAN
    co_pass_count: int = 0
    pass_a_count: int = 0
    pass_b_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass_a_rate": _r(self.pass_a_rate),
            "pass_b_rate": _r(self.pass_b_rate),
            "p_a_given_b": _r(self.p_a_given_b),
            "p_b_given_a": _r(self.p_b_given_a),
            "co_pass_count": self.co_pass_count,
            "pass_a_count": self.pass_a_count,
            "pass_b_count": self.pass_b_count,
        }


@dataclass(frozen=True)
class HighCoactivation:
    """Co-activation above one intensity threshold, over on-either samples."""

    t: float
    p_high_a: float = 0.0
    p_high_b: float = 0.0
    p_high_both: float = 0.0
    high_jaccard: float = 0.0
    high_agreement: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "t": self.t,
            "p_high_a": _r(self.p_high_a),
            "p_high_b": _r(self.p_high_b),
            "p_high_both": _r(self.p_high_both),
            "high_jaccard": _r(self.high_jaccard),
            "high_agreement": _r(self.high_agreement),
        }


@dataclass(frozen=True)
class DivergenceExample:
    index: int
    intensity_a: float
    intensity_b: float
    abs_diff: float
    context_summary: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "intensity_a": _r(self.intensity_a),
            "intensity_b": _r(self.intensity_b),
            "abs_diff": _r(self.abs_diff),
            "context_summary": {k: _r(v) for k, v in self.context_summary.items()},
        }


@dataclass(frozen=True)
class OverlapResult:
    prototype_a: str
    prototype_b: str
    sample_count: int
    gate_overlap: GateOverlap
    intensity: IntensityMetrics
    pass_rates: PassRates
    high_coactivation: Tuple[HighCoactivation, ...]
    gate_implication: Optional[GateImplication]
    gate_parse_info: Dict[str, Dict[str, Any]]
    divergence_examples: Tuple[DivergenceExample, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prototype_a": self.prototype_a,
            "prototype_b": self.prototype_b,
            "sample_count": self.sample_count,
            "gate_overlap": self.gate_overlap.to_dict(),
            "intensity": self.intensity.to_dict(),
            "pass_rates": self.pass_rates.to_dict(),
            "high_coactivation": {
                "thresholds": [h.to_dict() for h in self.high_coactivation],
            },
            "gate_implication": (self.gate_implication.to_dict()
                                 if self.gate_implication else None),
            "gate_parse_info": {k: dict(v) for k, v in self.gate_parse_info.items()},
            "divergence_examples": [d.to_dict() for d in self.divergence_examples],
        }

    def summary(self) -> str:
        r = self.intensity.pearson_correlation
        rel = self.gate_implication.relation if self.gate_implication else "none"
        return (f"{self.prototype_a} vs {self.prototype_b}: "
                f"{self.sample_count} samples, "
                f"on_both={self.gate_overlap.on_both_rate:.4f}, "
                f"r={'NaN' if math.isnan(r) else f'{r:.4f}'}, "
                f"implication={rel}")


# ═══════════════════════════════════════════════════════════════════
# Output vectors
# ═══════════════════════════════════════════════════════════════════

def _parsed_gates(prototype: Prototype) -> List[GateConstraint]:
    parsed = (parse_gate(text) for text in prototype.gates)
    return [g for g in parsed if g is not None]


def _passes(gates: Sequence[GateConstraint], axes: Mapping[str, float]) -> bool:
    return all(g.passes(resolve_axis_value(g.axis, axes)) for g in gates)


@dataclass(frozen=True)
class OutputVector:
    """Per-context gate results and gated intensities for one prototype."""

    prototype_id: str
    gate_results: np.ndarray
    intensities: np.ndarray

    @property
    def activation_rate(self) -> float:
        if self.gate_results.size == 0:
            return 0.0
        return float(np.mean(self.gate_results))


def compute_output_vector(
    prototype: Prototype,
    contexts: Sequence[Mapping[str, Any]],
) -> OutputVector:
    """Evaluate *prototype* on every context (inactive → intensity 0)."""
    parsed = _parsed_gates(prototype)
    gates = np.zeros(len(contexts), dtype=bool)
    values = np.zeros(len(contexts), dtype=float)
    for i, ctx in enumerate(contexts):
        axes = normalize_context_axes(ctx)
        if _passes(parsed, axes):
            gates[i] = True
            values[i] = compute_intensity(prototype, axes)
    return OutputVector(prototype.id, gates, values)


# ═══════════════════════════════════════════════════════════════════
# Statistics helpers
# ═══════════════════════════════════════════════════════════════════

def pearson_correlation(x: np.ndarray, y: np.ndarray) -> float:
    """:func:`scipy.stats.pearsonr`, or NaN for n < 2 or constant input."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.size < 2 or x.size != y.size:
        return NAN
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return NAN
    r, _ = stats.pearsonr(x, y)
    return float(r)


def compute_candidate_metrics(
    prototype_a: Prototype,
    prototype_b: Prototype,
    active_epsilon: float = 0.08,
) -> Dict[str, float]:
    """Weight-only similarity of two prototypes.

    Returns
    -------
    dict
        ``active_axis_overlap`` (Jaccard of axes with ``|w| ≥ ε``),
        ``sign_agreement`` (over the shared active axes) and
        ``weight_cosine_similarity``.
    """
    wa, wb = prototype_a.weights, prototype_b.weights
    active_a = {a for a, w in wa.items() if abs(w) >= active_epsilon}
    active_b = {a for a, w in wb.items() if abs(w) >= active_epsilon}
    union = active_a | active_b
    shared = active_a & active_b
    overlap = len(shared) / len(union) if union else 0.0
    agree = (sum(1 for a in shared if (wa[a] > 0) == (wb[a] > 0)) / len(shared)
             if shared else 0.0)

    axes = sorted(set(wa) | set(wb))
    va = np.array([wa.get(a, 0.0) for a in axes])
    vb = np.array([wb.get(a, 0.0) for a in axes])
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    cosine = float(np.dot(va, vb) / norm) if norm > 0 else 0.0
    return {
        "active_axis_overlap": overlap,
        "sign_agreement": agree,
        "weight_cosine_similarity": cosine,
    }


def _referenced_axes(prototype: Prototype) -> List[str]:
    axes = list(prototype.weights)
    for text in prototype.gates:
        gate = parse_gate(text)
        if gate is not None and gate.axis not in axes:
            axes.append(gate.axis)
    return axes


# ═══════════════════════════════════════════════════════════════════
# BehavioralOverlapEvaluator
# ═══════════════════════════════════════════════════════════════════

class BehavioralOverlapEvaluator:
    """Sample random states and compare two prototypes' behavior.

    Parameters
    ----------
    state_generator : StateGenerator
        Required.  ``generate()`` returns one sampled state per call.
    logger : logger-like, optional
    thresholds : ThresholdRegistry
        ``overlap.*`` keys.
    context_builder : callable
        ``state -> context dict``; defaults to
        :func:`~expression_diagnostics.sampling.build_context`.

    Raises
    ------
    MissingDependencyError
        If *state_generator* is missing or lacks ``generate``.
    """

    def __init__(
        self,
        state_generator: Any,
        logger: Optional[Any] = None,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
        context_builder: Callable[[Any], Dict[str, Any]] = build_context,
    ):
        self._generator = validate_dependency(
            state_generator, "state_generator", ("generate",))
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        self._thresholds = thresholds
        if not callable(context_builder):
            raise TypeError("context_builder must be callable")
        self._context_builder = context_builder

    def resolve_sample_count(self, sample_count: Any) -> int:
        """*sample_count* if it is a finite number ≥ 1, else the default."""
        default = self._thresholds.get_int("overlap.sample_count_per_pair", 8000)
        if sample_count is None or isinstance(sample_count, bool):
            return default
        try:
            value = float(sample_count)
        except (TypeError, ValueError):
            return default
        if not math.isfinite(value) or value < 1:
            return default
        return int(value)

    @property
    def high_thresholds(self) -> Tuple[float, ...]:
        th = self._thresholds
        return (th.get("overlap.high_threshold_low", 0.4),
                th.get("overlap.high_threshold_mid", 0.6),
                th.get("overlap.high_threshold_high", 0.75))

    def evaluate(
        self,
        prototype_a: Prototype,
        prototype_b: Prototype,
        sample_count: Optional[int] = None,
    ) -> OverlapResult:
        """Sample and compare.

        Parameters
        ----------
        prototype_a, prototype_b : Prototype
        sample_count : int, optional
            Falls back to ``overlap.sample_count_per_pair`` when missing,
            non-finite or below 1.

        Returns
        -------
        OverlapResult
        """
        n = self.resolve_sample_count(sample_count)
        th = self._thresholds
        gates_a = _parsed_gates(prototype_a)
        gates_b = _parsed_gates(prototype_b)

        pass_a = np.zeros(n, dtype=bool)
        pass_b = np.zeros(n, dtype=bool)
        out_a = np.zeros(n, dtype=float)
        out_b = np.zeros(n, dtype=float)
        sampled_axes: List[Dict[str, float]] = []
        for i in range(n):
            context = self._context_builder(self._generator.generate())
            axes = normalize_context_axes(context)
            sampled_axes.append(axes)
            if _passes(gates_a, axes):
                pass_a[i] = True
                out_a[i] = compute_intensity(prototype_a, axes)
            if _passes(gates_b, axes):
                pass_b[i] = True
                out_b[i] = compute_intensity(prototype_b, axes)

        either = pass_a | pass_b
        both = pass_a & pass_b
        n_either = int(either.sum())
        n_both = int(both.sum())

        gate_overlap = GateOverlap(
            on_either_rate=n_either / n,
            on_both_rate=n_both / n,
            p_only_rate=int((pass_a & ~pass_b).sum()) / n,
            q_only_rate=int((pass_b & ~pass_a).sum()) / n,
        )

        intensity = self._intensity_metrics(out_a, out_b, both)

        n_a, n_b = int(pass_a.sum()), int(pass_b.sum())
        min_cond = th.get_int("overlap.min_pass_samples_for_conditional", 200)
        pass_rates = PassRates(
            pass_a_rate=n_a / n,
            pass_b_rate=n_b / n,
            p_a_given_b=n_both / n_b if n_b >= min_cond else NAN,
            p_b_given_a=n_both / n_a if n_a >= min_cond else NAN,
            co_pass_count=n_both,
            pass_a_count=n_a,
            pass_b_count=n_b,
        )

        high = tuple(
            self._high_coactivation(t, out_a, out_b, either, n_either)
            for t in self.high_thresholds
        )

        intervals_a = extract_gate_intervals(prototype_a.gates)
        intervals_b = extract_gate_intervals(prototype_b.gates)
        implication = None
        if (intervals_a.parse_status == "complete"
                and intervals_b.parse_status == "complete"):
            implication = evaluate_gate_implication(
                intervals_a.intervals, intervals_b.intervals)

        divergence = self._divergence_examples(
            prototype_a, prototype_b, out_a, out_b, both, sampled_axes)

        result = OverlapResult(
            prototype_a=prototype_a.id,
            prototype_b=prototype_b.id,
            sample_count=n,
            gate_overlap=gate_overlap,
            intensity=intensity,
            pass_rates=pass_rates,
            high_coactivation=high,
            gate_implication=implication,
            gate_parse_info={
                "prototype_a": intervals_a.parse_info(),
                "prototype_b": intervals_b.parse_info(),
            },
            divergence_examples=divergence,
        )
        self._logger.debug(result.summary())
        return result

    # ── metric helpers ──────────────────────────────────────────

    def _intensity_metrics(
        self,
        out_a: np.ndarray,
        out_b: np.ndarray,
        both: np.ndarray,
    ) -> IntensityMetrics:
        th = self._thresholds
        a, b = out_a[both], out_b[both]
        joint = a.size
        delta = th.get("overlap.dominance_delta", 0.05)

        corr = mad = rmse = within = NAN
        if joint >= th.get_int("overlap.min_co_pass_samples", 1) and joint > 0:
            corr = pearson_correlation(a, b)
            diff = a - b
            mad = float(np.mean(np.abs(diff)))
            rmse = float(np.sqrt(np.mean(diff ** 2)))
            within = float(np.mean(
                np.abs(diff) <= th.get("overlap.intensity_eps", 0.05)))

        global_diff = out_a - out_b
        return IntensityMetrics(
            pearson_correlation=corr,
            mean_abs_diff=mad,
            rmse=rmse,
            pct_within_eps=within,
            dominance_p=float(np.mean(a > b + delta)) if joint else 0.0,
            dominance_q=float(np.mean(b > a + delta)) if joint else 0.0,
            global_mean_abs_diff=float(np.mean(np.abs(global_diff)))
            if global_diff.size else NAN,
            global_l2_distance=float(np.sqrt(np.mean(global_diff ** 2)))
            if global_diff.size else NAN,
            global_output_correlation=pearson_correlation(out_a, out_b),
        )

    @staticmethod
    def _high_coactivation(
        t: float,
        out_a: np.ndarray,
        out_b: np.ndarray,
        either: np.ndarray,
        n_either: int,
    ) -> HighCoactivation:
        if n_either == 0:
            return HighCoactivation(t=t)
        high_a = out_a[either] >= t
        high_b = out_b[either] >= t
        either_high = int((high_a | high_b).sum())
        both_high = int((high_a & high_b).sum())
        return HighCoactivation(
            t=t,
            p_high_a=float(high_a.mean()),
            p_high_b=float(high_b.mean()),
            p_high_both=both_high / n_either,
            high_jaccard=both_high / either_high if either_high else 0.0,
            high_agreement=float((high_a == high_b).mean()),
        )

    def _divergence_examples(
        self,
        prototype_a: Prototype,
        prototype_b: Prototype,
        out_a: np.ndarray,
        out_b: np.ndarray,
        both: np.ndarray,
        sampled_axes: Sequence[Mapping[str, float]],
    ) -> Tuple[DivergenceExample, ...]:
        k = self._thresholds.get_int("overlap.divergence_examples_k", 5)
        idx = np.flatnonzero(both)
        if idx.size == 0 or k <= 0:
            return ()
        diffs = np.abs(out_a[idx] - out_b[idx])
        order = np.argsort(-diffs, kind="stable")[:k]
        axes = _referenced_axes(prototype_a)
        axes += [a for a in _referenced_axes(prototype_b) if a not in axes]
        examples = []
        for j in order:
            i = int(idx[j])
            examples.append(DivergenceExample(
                index=i,
                intensity_a=float(out_a[i]),
                intensity_b=float(out_b[i]),
                abs_diff=float(diffs[j]),
                context_summary={a: float(sampled_axes[i].get(a, 0.0))
                                 for a in axes},
            ))
        return tuple(examples)
