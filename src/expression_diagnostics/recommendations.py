"""Turn a pair classification into a report-ready recommendation.

:class:`OverlapRecommendationBuilder` maps the classifier's verdict to
an external recommendation type, writes human-readable actions, scores
severity and confidence, and packages the evidence behind it.

========================================  ===================================
classification                            recommendation type
========================================  ===================================
``merge`` / ``merge_recommended``         ``prototype_merge_suggestion``
``subsumed`` / ``subsumed_recommended``   ``prototype_subsumption_suggestion``
``nested_siblings``                       ``prototype_nested_siblings``
``needs_separation``                      ``prototype_needs_separation``
``keep_distinct``                         ``prototype_distinct_info``
``convert_to_expression``                 ``prototype_expression_conversion``
anything else                             ``prototype_overlap_info``
========================================  ===================================

Evidence never raises: a missing number is ``NaN``, a missing list is
``[]`` and a missing nested object is ``None``.

Usage
-----
>>> builder = OverlapRecommendationBuilder()
>>> rec = builder.build(joy, elation, classification,
...                     candidate_metrics, overlap_result)
>>> rec.type
'prototype_merge_suggestion'
>>> rec.actions[0]
'Consider merging joy and elation: their behavior is nearly identical.'
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .collaborators import resolve_logger, validate_dependency
from .prototypes import Prototype
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "RECOMMENDATION_TYPES",
    "Recommendation",
    "recommendation_type",
    "build_evidence",
    "compute_severity",
    "compute_confidence",
    "OverlapRecommendationBuilder",
]

NAN = float("nan")

RECOMMENDATION_TYPES: Dict[str, str] = {
    "merge": "prototype_merge_suggestion",
    "merge_recommended": "prototype_merge_suggestion",
    "subsumed": "prototype_subsumption_suggestion",
    "subsumed_recommended": "prototype_subsumption_suggestion",
    "nested_siblings": "prototype_nested_siblings",
    "needs_separation": "prototype_needs_separation",
    "keep_distinct": "prototype_distinct_info",
    "convert_to_expression": "prototype_expression_conversion",
    "not_redundant": "prototype_overlap_info",
}
DEFAULT_RECOMMENDATION_TYPE = "prototype_overlap_info"


def recommendation_type(classification: Optional[str]) -> str:
    return RECOMMENDATION_TYPES.get(classification or "", DEFAULT_RECOMMENDATION_TYPE)


# ── defensive accessors ─────────────────────────────────────────

def _as_mapping(value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return value if isinstance(value, Mapping) else {}


def _num(source: Mapping[str, Any], key: str) -> float:
    value = source.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return NAN
    return float(value)


def _sub(source: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = source.get(key)
    return value if isinstance(value, Mapping) else {}


def _nan_to(x: float, default: float) -> float:
    return default if math.isnan(x) else x


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


# ═══════════════════════════════════════════════════════════════════
# Evidence
# ═══════════════════════════════════════════════════════════════════

def _weights(prototype: Any) -> Dict[str, float]:
    if isinstance(prototype, Prototype):
        return dict(prototype.weights)
    if isinstance(prototype, Mapping) and isinstance(prototype.get("weights"), Mapping):
        return dict(prototype["weights"])
    return {}


def _drivers(
    prototype_a: Any,
    prototype_b: Any,
    epsilon: float,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    wa, wb = _weights(prototype_a), _weights(prototype_b)
    shared, different = [], []
    for axis in sorted(set(wa) | set(wb)):
        a, b = wa.get(axis, 0.0), wb.get(axis, 0.0)
        a_on, b_on = abs(a) >= epsilon, abs(b) >= epsilon
        if not (a_on or b_on):
            continue
        entry = {"axis": axis, "weight_a": a, "weight_b": b}
        if a_on and b_on and (a > 0) == (b > 0):
            shared.append(entry)
        else:
            different.append(dict(entry, difference=abs(a - b)))
    shared.sort(key=lambda e: min(abs(e["weight_a"]), abs(e["weight_b"])),
                reverse=True)
    different.sort(key=lambda e: e["difference"], reverse=True)
    return shared, different


def build_evidence(
    behavior_metrics: Any,
    prototype_a: Any = None,
    prototype_b: Any = None,
    divergence_examples: Optional[Sequence[Any]] = None,
    active_epsilon: float = 0.08,
) -> Dict[str, Any]:
    """Evidence payload for one pair.

    Parameters
    ----------
    behavior_metrics : OverlapResult, dict or None
    prototype_a, prototype_b : Prototype or dict, optional
        Needed for ``shared_drivers`` / ``key_differentiators``.
    divergence_examples : list, optional
        Overrides ``behavior_metrics["divergence_examples"]``.

    Returns
    -------
    dict
        Always carries every section, with NaN / ``[]`` / ``None``
        sentinels for anything missing.
    """
    bm = _as_mapping(behavior_metrics)
    gate = _sub(bm, "gate_overlap")
    intensity = _sub(bm, "intensity")
    pass_rates = _sub(bm, "pass_rates")
    high = _sub(bm, "high_coactivation").get("thresholds")
    implication = bm.get("gate_implication")

    if divergence_examples is None:
        divergence_examples = bm.get("divergence_examples")
    divergence = [_as_mapping(d) or d for d in (divergence_examples or [])]

    shared, differentiators = _drivers(prototype_a, prototype_b, active_epsilon)
    return {
        "pearson_correlation": _num(intensity, "pearson_correlation"),
        "gate_overlap": {
            "on_either_rate": _num(gate, "on_either_rate"),
            "on_both_rate": _num(gate, "on_both_rate"),
            "p_only_rate": _num(gate, "p_only_rate"),
            "q_only_rate": _num(gate, "q_only_rate"),
            "jaccard": _num(gate, "jaccard"),
        },
        "pass_rates": {
            "pass_a_rate": _num(pass_rates, "pass_a_rate"),
            "pass_b_rate": _num(pass_rates, "pass_b_rate"),
            "p_a_given_b": _num(pass_rates, "p_a_given_b"),
            "p_b_given_a": _num(pass_rates, "p_b_given_a"),
            "co_pass_count": _num(pass_rates, "co_pass_count"),
        },
        "intensity_similarity": {
            "mean_abs_diff": _num(intensity, "mean_abs_diff"),
            "rmse": _num(intensity, "rmse"),
            "pct_within_eps": _num(intensity, "pct_within_eps"),
            "dominance_p": _num(intensity, "dominance_p"),
            "dominance_q": _num(intensity, "dominance_q"),
        },
        "high_coactivation": list(high) if isinstance(high, (list, tuple)) else [],
        "gate_implication": dict(implication) if isinstance(implication, Mapping) else None,
        "shared_drivers": shared,
        "key_differentiators": differentiators,
        "divergence_examples": divergence,
    }


# ═══════════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════════

def compute_severity(
    classification: Optional[str],
    behavior_metrics: Any,
    candidate_metrics: Any = None,
) -> float:
    """Severity in ``[0, 1]``.

    * merge: ``clamp01((r + gate_ratio)/2 − mean|Δ|)``
    * subsumption: ``clamp01((r + max dominance)/2)``
    * other: ``0.3 · weight cosine``
    """
    bm = _as_mapping(behavior_metrics)
    gate = _sub(bm, "gate_overlap")
    intensity = _sub(bm, "intensity")
    corr = _nan_to(_num(intensity, "pearson_correlation"), 0.0)
    kind = recommendation_type(classification)

    if kind == "prototype_merge_suggestion":
        either = _nan_to(_num(gate, "on_either_rate"), 0.0)
        both = _nan_to(_num(gate, "on_both_rate"), 0.0)
        ratio = both / either if either > 0 else 0.0
        mad = _nan_to(_num(intensity, "mean_abs_diff"), 0.0)
        return _clamp01((corr + ratio) / 2.0 - mad)
    if kind == "prototype_subsumption_suggestion":
        dom = max(_nan_to(_num(intensity, "dominance_p"), 0.0),
                  _nan_to(_num(intensity, "dominance_q"), 0.0))
        return _clamp01((corr + dom) / 2.0)
    cosine = _nan_to(_num(_as_mapping(candidate_metrics), "weight_cosine_similarity"), 0.0)
    return _clamp01(0.3 * cosine)


def compute_confidence(behavior_metrics: Any) -> float:
    """Confidence tier from how often either prototype is active."""
    rate = _nan_to(_num(_sub(_as_mapping(behavior_metrics), "gate_overlap"),
                        "on_either_rate"), 0.0)
    if rate >= 0.2:
        return 0.95
    if rate >= 0.1:
        return 0.8
    if rate >= 0.05:
        return 0.6
    return 0.4


# ═══════════════════════════════════════════════════════════════════
# Recommendation
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Recommendation:
    type: str
    prototype_family: str
    prototypes: Dict[str, str]
    severity: float
    confidence: float
    actions: List[str]
    candidate_metrics: Dict[str, Any]
    behavior_metrics: Dict[str, Any]
    evidence: Dict[str, Any]
    suggestions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "prototype_family": self.prototype_family,
            "prototypes": dict(self.prototypes),
            "severity": round(self.severity, 6),
            "confidence": round(self.confidence, 6),
            "actions": list(self.actions),
            "candidate_metrics": dict(self.candidate_metrics),
            "behavior_metrics": dict(self.behavior_metrics),
            "evidence": dict(self.evidence),
            "suggestions": list(self.suggestions),
        }

    def summary(self) -> str:
        return (f"[{self.type}] {self.prototypes.get('a')} / "
                f"{self.prototypes.get('b')} "
                f"severity={self.severity:.2f} confidence={self.confidence:.2f}")


def _prototype_id(prototype: Any, fallback: str) -> str:
    if isinstance(prototype, Prototype):
        return prototype.id
    if isinstance(prototype, Mapping) and prototype.get("id"):
        return str(prototype["id"])
    if isinstance(prototype, str) and prototype:
        return prototype
    return fallback


def _classification_fields(classification: Any) -> Dict[str, Any]:
    if isinstance(classification, str):
        return {"type": classification}
    return dict(_as_mapping(classification))


class OverlapRecommendationBuilder:
    """Build :class:`Recommendation` objects for classified pairs.

    Parameters
    ----------
    thresholds : ThresholdRegistry
    logger : logger-like, optional
    suggestion_engine : ActionableSuggestionEngine, optional
        When given (must expose ``generate_suggestions``), gate
        suggestions are attached from ``suggestion_data``.
    """

    def __init__(
        self,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
        logger: Optional[Any] = None,
        suggestion_engine: Optional[Any] = None,
    ):
        self._thresholds = thresholds
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        if suggestion_engine is not None:
            validate_dependency(
                suggestion_engine, "suggestion_engine", ("generate_suggestions",))
        self._suggestion_engine = suggestion_engine

    def build(
        self,
        prototype_a: Any,
        prototype_b: Any,
        classification: Any,
        candidate_metrics: Any,
        behavior_metrics: Any,
        divergence_examples: Optional[Sequence[Any]] = None,
        prototype_family: str = "emotion",
        suggestion_data: Optional[Mapping[str, Any]] = None,
    ) -> Recommendation:
        """Assemble one recommendation.

        Parameters
        ----------
        prototype_a, prototype_b : Prototype, dict or str
        classification : str, OverlapClassification or dict
            Unknown or missing types map to ``prototype_overlap_info``.
        candidate_metrics : dict or None
        behavior_metrics : OverlapResult, dict or None
        divergence_examples : list, optional
        prototype_family : str
        suggestion_data : dict, optional
            ``{"vector_a", "vector_b", "context_pool"}`` for the
            suggestion engine.
        """
        fields = _classification_fields(classification)
        kind = fields.get("type")
        id_a = _prototype_id(prototype_a, "a")
        id_b = _prototype_id(prototype_b, "b")
        bm = _as_mapping(behavior_metrics)
        cm = _as_mapping(candidate_metrics)

        evidence = build_evidence(
            bm, prototype_a, prototype_b, divergence_examples,
            self._thresholds.get("recommendation.active_axis_epsilon", 0.08))

        return Recommendation(
            type=recommendation_type(kind),
            prototype_family=prototype_family,
            prototypes={"a": id_a, "b": id_b},
            severity=compute_severity(kind, bm, cm),
            confidence=compute_confidence(bm),
            actions=self._actions(kind, fields, id_a, id_b, bm),
            candidate_metrics=dict(cm),
            behavior_metrics=dict(bm),
            evidence=evidence,
            suggestions=self._suggestions(kind, suggestion_data, id_a, id_b),
        )

    # ── actions ─────────────────────────────────────────────────

    @staticmethod
    def _subsumed_side(fields: Mapping[str, Any], bm: Mapping[str, Any]) -> str:
        side = fields.get("subsumed_prototype")
        if side in ("a", "b"):
            return side
        gate = _sub(bm, "gate_overlap")
        p_only = _nan_to(_num(gate, "p_only_rate"), 0.0)
        q_only = _nan_to(_num(gate, "q_only_rate"), 0.0)
        return "a" if p_only <= q_only else "b"

    @staticmethod
    def _narrower_side(fields: Mapping[str, Any], bm: Mapping[str, Any]) -> Optional[str]:
        side = fields.get("narrower_prototype")
        if side in ("a", "b"):
            return side
        impl = bm.get("gate_implication")
        if isinstance(impl, Mapping) and impl.get("a_implies_b") != impl.get("b_implies_a"):
            return "a" if impl.get("a_implies_b") else "b"
        return None

    def _actions(
        self,
        kind: Optional[str],
        fields: Mapping[str, Any],
        id_a: str,
        id_b: str,
        bm: Mapping[str, Any],
    ) -> List[str]:
        ids = {"a": id_a, "b": id_b}
        other = {"a": "b", "b": "a"}

        if kind in ("merge", "merge_recommended"):
            return [
                f"Consider merging {id_a} and {id_b}: "
                f"their behavior is nearly identical.",
                f"Alias {id_b} to {id_a} in expressions that reference it.",
            ]
        if kind in ("subsumed", "subsumed_recommended"):
            side = self._subsumed_side(fields, bm)
            redundant, keeper = ids[side], ids[other[side]]
            return [
                f"Consider removing {redundant}: {keeper} covers its activations.",
                f"Tighten the gates of {redundant} if it must stay distinct "
                f"from {keeper}.",
            ]
        if kind in ("nested_siblings", "convert_to_expression"):
            side = self._narrower_side(fields, bm)
            if side is None:
                nesting = f"{id_a} and {id_b} are nested"
            else:
                nesting = (f"{ids[side]} is a narrower variant of "
                           f"{ids[other[side]]}")
            if kind == "nested_siblings":
                return [f"{nesting}; keep both only if the specialization "
                        f"is intentional."]
            narrow = ids[side] if side else id_a
            return [
                f"{nesting}.",
                f"Consider converting {narrow} into an expression gated on "
                f"{ids[other[side]] if side else id_b} with a low-threat "
                f"condition.",
            ]
        if kind == "needs_separation":
            return [f"{id_a} and {id_b} fire together but with different "
                    f"intensities; add a distinguishing gate."]
        if kind == "keep_distinct":
            return [f"{id_a} and {id_b} are behaviorally distinct."]
        return ["No action needed."]

    # ── suggestions ─────────────────────────────────────────────

    def _suggestions(
        self,
        kind: Optional[str],
        suggestion_data: Optional[Mapping[str, Any]],
        id_a: str,
        id_b: str,
    ) -> List[Dict[str, Any]]:
        if self._suggestion_engine is None or not suggestion_data:
            return []
        try:
            raw = self._suggestion_engine.generate_suggestions(
                suggestion_data.get("vector_a"),
                suggestion_data.get("vector_b"),
                suggestion_data.get("context_pool") or [],
                kind,
            )
        except Exception as exc:
            self._logger.warning(
                f"Suggestion generation failed for {id_a}/{id_b}: {exc}")
            return []

        valid = [s for s in raw if getattr(s, "is_valid", False)]
        if len(valid) < len(raw):
            self._logger.warning(
                f"Dropped {len(raw) - len(valid)} invalid suggestion(s) "
                f"for {id_a}/{id_b}")
        return [s.to_dict() for s in valid]
