"""Classify a prototype pair from its overlap metrics.

Checks run in priority order; the first match wins.

========================  =================================================
type                      condition
========================  =================================================
``merge_recommended``     active often enough, gates almost always
                          co-fire, r ≥ 0.98, mean |Δ| ≤ 0.03, and neither
                          side dominates
``subsumed_recommended``  r ≥ 0.95, one side almost never fires alone and
                          the other side dominates it
``convert_to_expression`` nested, and the narrower prototype is gated on
                          low threat (upper ≤ 0.20)
``nested_siblings``       one prototype's activation implies the other's
``needs_separation``      heavy gate overlap, correlated but not nested,
                          with distinguishable intensities
``keep_distinct``         everything else
========================  =================================================

Nesting is *deterministic* when both gate lists parsed completely and
the (non-vacuous) gate implication runs one way only.  Otherwise it is
*behavioral*: P(B|A) ≥ 0.97 while P(A|B) < 0.97 makes A the narrower
prototype.  NaN conditionals never count as nesting.

Usage
-----
>>> result = evaluator.evaluate(joy, contentment)
>>> c = OverlapClassifier().classify(result)
>>> c.type
'nested_siblings'
>>> c.narrower_prototype
'a'
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .collaborators import resolve_logger
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "CLASSIFICATION_TYPES",
    "PairMetrics",
    "OverlapClassification",
    "NearMissResult",
    "extract_pair_metrics",
    "OverlapClassifier",
]

NAN = float("nan")

CLASSIFICATION_TYPES = (
    "merge_recommended",
    "subsumed_recommended",
    "convert_to_expression",
    "nested_siblings",
    "needs_separation",
    "keep_distinct",
)


def _isnan(x: Any) -> bool:
    return isinstance(x, float) and math.isnan(x)


def _num(value: Any, default: float = NAN) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _section(source: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = source.get(key)
    return value if isinstance(value, Mapping) else {}


def _as_mapping(value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return value if isinstance(value, Mapping) else {}


# ═══════════════════════════════════════════════════════════════════
# Metrics
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PairMetrics:
    """Flat view of the metrics the classification rules read."""

    on_either_rate: float = 0.0
    on_both_rate: float = 0.0
    p_only_rate: float = 0.0
    q_only_rate: float = 0.0
    pearson_correlation: float = NAN
    mean_abs_diff: float = NAN
    dominance_p: float = 0.0
    dominance_q: float = 0.0
    p_a_given_b: float = NAN
    p_b_given_a: float = NAN
    has_pass_rates: bool = False
    gate_implication: Optional[Mapping[str, Any]] = None
    parse_complete: bool = False
    active_axis_overlap: float = 0.0
    sign_agreement: float = 0.0
    weight_cosine_similarity: float = 0.0

    @property
    def gate_overlap_ratio(self) -> float:
        if self.on_either_rate <= 0:
            return 0.0
        return self.on_both_rate / self.on_either_rate

    def to_dict(self) -> Dict[str, Any]:
        def _r(x):
            return round(x, 6) if isinstance(x, float) else x

        return {
            "on_either_rate": _r(self.on_either_rate),
            "on_both_rate": _r(self.on_both_rate),
            "p_only_rate": _r(self.p_only_rate),
            "q_only_rate": _r(self.q_only_rate),
            "gate_overlap_ratio": _r(self.gate_overlap_ratio),
            "pearson_correlation": _r(self.pearson_correlation),
            "mean_abs_diff": _r(self.mean_abs_diff),
            "dominance_p": _r(self.dominance_p),
            "dominance_q": _r(self.dominance_q),
            "p_a_given_b": _r(self.p_a_given_b),
            "p_b_given_a": _r(self.p_b_given_a),
            "active_axis_overlap": _r(self.active_axis_overlap),
            "sign_agreement": _r(self.sign_agreement),
            "weight_cosine_similarity": _r(self.weight_cosine_similarity),
        }


def extract_pair_metrics(
    behavior_metrics: Any,
    candidate_metrics: Optional[Mapping[str, Any]] = None,
) -> PairMetrics:
    """Flatten an :class:`~expression_diagnostics.overlap.OverlapResult`
    (or its ``to_dict()``) plus optional candidate metrics.

    Missing values take the :class:`PairMetrics` defaults.
    """
    behavior = _as_mapping(behavior_metrics)
    candidate = _as_mapping(candidate_metrics)
    gate = _section(behavior, "gate_overlap")
    intensity = _section(behavior, "intensity")
    pass_rates = _section(behavior, "pass_rates")
    parse_info = _section(behavior, "gate_parse_info")
    implication = behavior.get("gate_implication")

    complete = bool(parse_info) and all(
        _section(parse_info, side).get("parse_status") == "complete"
        for side in ("prototype_a", "prototype_b")
    )
    if not parse_info and isinstance(implication, Mapping):
        # implication is only computed from complete parses
        complete = True

    return PairMetrics(
        on_either_rate=_num(gate.get("on_either_rate"), 0.0),
        on_both_rate=_num(gate.get("on_both_rate"), 0.0),
        p_only_rate=_num(gate.get("p_only_rate"), 0.0),
        q_only_rate=_num(gate.get("q_only_rate"), 0.0),
        pearson_correlation=_num(intensity.get("pearson_correlation")),
        mean_abs_diff=_num(intensity.get("mean_abs_diff")),
        dominance_p=_num(intensity.get("dominance_p"), 0.0),
        dominance_q=_num(intensity.get("dominance_q"), 0.0),
        p_a_given_b=_num(pass_rates.get("p_a_given_b")),
        p_b_given_a=_num(pass_rates.get("p_b_given_a")),
        has_pass_rates=bool(pass_rates),
        gate_implication=implication if isinstance(implication, Mapping) else None,
        parse_complete=complete,
        active_axis_overlap=_num(candidate.get("active_axis_overlap"), 0.0),
        sign_agreement=_num(candidate.get("sign_agreement"), 0.0),
        weight_cosine_similarity=_num(candidate.get("weight_cosine_similarity"), 0.0),
    )


# ═══════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OverlapClassification:
    type: str
    metrics: PairMetrics
    thresholds: Dict[str, float] = field(default_factory=dict)
    subsumed_prototype: Optional[str] = None      # "a" | "b"
    narrower_prototype: Optional[str] = None      # "a" | "b"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.type,
            "thresholds": dict(self.thresholds),
            "metrics": self.metrics.to_dict(),
        }
        if self.subsumed_prototype is not None:
            out["subsumed_prototype"] = self.subsumed_prototype
        if self.narrower_prototype is not None:
            out["narrower_prototype"] = self.narrower_prototype
        return out


@dataclass(frozen=True)
class NearMissResult:
    is_near_miss: bool
    metrics: PairMetrics
    reason: str = ""
    threshold_proximity: Optional[Dict[str, Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_near_miss": self.is_near_miss,
            "reason": self.reason,
            "metrics": self.metrics.to_dict(),
            "threshold_proximity": self.threshold_proximity,
        }


# ═══════════════════════════════════════════════════════════════════
# OverlapClassifier
# ═══════════════════════════════════════════════════════════════════

class OverlapClassifier:
    """Rule-based pair classification over ``classifier.*`` thresholds.

    Parameters
    ----------
    thresholds : ThresholdRegistry
    logger : logger-like, optional
    """

    def __init__(
        self,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
        logger: Optional[Any] = None,
    ):
        self._thresholds = thresholds
        self._logger = resolve_logger(logger, logging.getLogger(__name__))

    def _t(self, name: str, default: float) -> float:
        return self._thresholds.get(f"classifier.{name}", default)

    # ── public API ──────────────────────────────────────────────

    def classify(
        self,
        behavior_metrics: Any,
        candidate_metrics: Optional[Mapping[str, Any]] = None,
    ) -> OverlapClassification:
        """Return the highest-priority matching classification."""
        m = extract_pair_metrics(behavior_metrics, candidate_metrics)
        thresholds = self._thresholds.section("classifier")

        if self._is_merge(m):
            result = OverlapClassification("merge_recommended", m, thresholds)
        else:
            subsumed = self._subsumed_side(m)
            converted = self._conversion_side(m)
            narrower = self._nesting(m)
            if subsumed is not None:
                result = OverlapClassification(
                    "subsumed_recommended", m, thresholds,
                    subsumed_prototype=subsumed)
            elif converted is not None:
                result = OverlapClassification(
                    "convert_to_expression", m, thresholds,
                    narrower_prototype=converted)
            elif narrower is not None:
                result = OverlapClassification(
                    "nested_siblings", m, thresholds,
                    narrower_prototype=narrower)
            elif self._needs_separation(m):
                result = OverlapClassification("needs_separation", m, thresholds)
            else:
                result = OverlapClassification("keep_distinct", m, thresholds)

        self._logger.debug(
            f"Classified pair as {result.type} "
            f"(r={m.pearson_correlation:.3f}, "
            f"gate_ratio={m.gate_overlap_ratio:.3f})")
        return result

    def check_near_miss(
        self,
        behavior_metrics: Any,
        candidate_metrics: Optional[Mapping[str, Any]] = None,
    ) -> NearMissResult:
        """Did the pair narrowly fail the merge criteria?

        A near miss has correlation in ``[near_miss_correlation,
        min_correlation_for_merge)``, gate overlap ratio in
        ``[near_miss_gate_overlap, min_gate_overlap_ratio)``, or both
        metrics at near-miss level with a failing mean |Δ|.  Dead pairs
        (below ``min_on_either_rate_for_merge``) are never near misses.
        """
        m = extract_pair_metrics(behavior_metrics, candidate_metrics)
        corr, ratio = m.pearson_correlation, m.gate_overlap_ratio
        near_corr = self._t("near_miss_correlation", 0.9)
        near_gate = self._t("near_miss_gate_overlap", 0.75)
        merge_corr = self._t("min_correlation_for_merge", 0.98)
        merge_gate = self._t("min_gate_overlap_ratio", 0.9)
        max_mad = self._t("max_mean_abs_diff_for_merge", 0.03)

        if m.on_either_rate < self._t("min_on_either_rate_for_merge", 0.05):
            return NearMissResult(False, m)

        high_corr = not _isnan(corr) and near_corr <= corr < merge_corr
        high_gate = near_gate <= ratio < merge_gate

        reasons: List[str] = []
        if high_corr:
            reasons.append(f"correlation {corr:.3f} (threshold: {merge_corr:g})")
        if high_gate:
            reasons.append(f"gate overlap {ratio:.3f} (threshold: {merge_gate:g})")
        if (not reasons and not _isnan(corr)
                and corr >= near_corr and ratio >= near_gate):
            mad = m.mean_abs_diff
            if _isnan(mad) or mad > max_mad:
                shown = "NaN" if _isnan(mad) else f"{mad:.3f}"
                reasons.append(f"mean abs diff {shown} (threshold: {max_mad:g})")

        if not reasons:
            return NearMissResult(False, m)

        proximity = {
            "correlation": {
                "value": corr,
                "near_miss_threshold": near_corr,
                "merge_threshold": merge_corr,
                "met": high_corr or (not _isnan(corr) and corr >= merge_corr),
            },
            "gate_overlap_ratio": {
                "value": ratio,
                "near_miss_threshold": near_gate,
                "merge_threshold": merge_gate,
                "met": high_gate or ratio >= merge_gate,
            },
        }
        return NearMissResult(True, m, "; ".join(reasons), proximity)

    # ── rules ───────────────────────────────────────────────────

    def _is_merge(self, m: PairMetrics) -> bool:
        min_dom = self._t("min_dominance_for_subsumption", 0.95)
        return (
            m.on_either_rate >= self._t("min_on_either_rate_for_merge", 0.05)
            and m.gate_overlap_ratio >= self._t("min_gate_overlap_ratio", 0.9)
            and not _isnan(m.pearson_correlation)
            and m.pearson_correlation >= self._t("min_correlation_for_merge", 0.98)
            and not _isnan(m.mean_abs_diff)
            and m.mean_abs_diff <= self._t("max_mean_abs_diff_for_merge", 0.03)
            and m.dominance_p < min_dom
            and m.dominance_q < min_dom
        )

    def _subsumed_side(self, m: PairMetrics) -> Optional[str]:
        corr = m.pearson_correlation
        if _isnan(corr) or corr < self._t("min_correlation_for_subsumption", 0.95):
            return None
        max_excl = self._t("max_exclusive_rate_for_subsumption", 0.01)
        min_dom = self._t("min_dominance_for_subsumption", 0.95)
        if m.p_only_rate <= max_excl and m.dominance_q >= min_dom:
            return "a"
        if m.q_only_rate <= max_excl and m.dominance_p >= min_dom:
            return "b"
        return None

    def _deterministic_nesting(self, m: PairMetrics) -> Optional[str]:
        impl = m.gate_implication
        if not m.parse_complete or impl is None or impl.get("is_vacuous"):
            return None
        a_b = bool(impl.get("a_implies_b"))
        b_a = bool(impl.get("b_implies_a"))
        if a_b == b_a:
            return None
        return "a" if a_b else "b"

    def _behavioral_nesting(self, m: PairMetrics) -> Optional[str]:
        p_ba, p_ab = m.p_b_given_a, m.p_a_given_b
        if _isnan(p_ba) or _isnan(p_ab):
            return None
        t = self._t("nested_conditional_threshold", 0.97)
        if p_ba >= t and p_ab < t:
            return "a"
        if p_ab >= t and p_ba < t:
            return "b"
        return None

    def _nesting(self, m: PairMetrics) -> Optional[str]:
        """Narrower side ("a"/"b"), or None when not nested."""
        side = self._deterministic_nesting(m)
        if side is not None:
            return side
        if not m.has_pass_rates:
            return None
        return self._behavioral_nesting(m)

    def _conversion_side(self, m: PairMetrics) -> Optional[str]:
        if self._t("enable_convert_to_expression", 1.0) < 0.5:
            return None
        if self._nesting(m) is None:
            return None
        impl = m.gate_implication
        if impl is None or impl.get("is_vacuous"):
            return None
        a_b = bool(impl.get("a_implies_b"))
        b_a = bool(impl.get("b_implies_a"))
        if a_b == b_a:
            return None
        narrower = "a" if a_b else "b"
        threat = next((e for e in impl.get("evidence") or ()
                       if isinstance(e, Mapping) and e.get("axis") == "threat"),
                      None)
        if threat is None:
            return None
        interval = threat.get(f"interval_{narrower}")
        upper = interval.get("upper") if isinstance(interval, Mapping) else None
        if upper is None or upper > self._t("convert_max_threat_upper", 0.20):
            return None
        return narrower

    def _needs_separation(self, m: PairMetrics) -> bool:
        t = self._t("nested_conditional_threshold", 0.97)
        p_ba, p_ab = m.p_b_given_a, m.p_a_given_b
        nested = (not _isnan(p_ba) and not _isnan(p_ab)
                  and (p_ba >= t or p_ab >= t))
        corr, mad = m.pearson_correlation, m.mean_abs_diff
        return (
            m.gate_overlap_ratio >= self._t("separation_min_gate_overlap", 0.70)
            and not nested
            and not _isnan(corr)
            and corr >= self._t("separation_min_correlation", 0.80)
            and not _isnan(mad)
            and mad > self._t("max_mean_abs_diff_for_merge", 0.03)
        )
