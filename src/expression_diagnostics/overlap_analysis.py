"""Pairwise prototype overlap analysis.

Runs every unordered pair of one prototype family through the overlap
pipeline:

1. weight-only candidate metrics
2. Monte Carlo behavioral evaluation
3. classification
4. a recommendation for actionable classifications, otherwise a
   near-miss check

Pairs are isolated from each other.  A pair that raises is logged with
both prototype ids, recorded as a :class:`PairFailure` and skipped; the
rest of the batch still runs.  Recommendations come back most severe
first.

The number of pairs is capped at ``overlap.max_candidate_pairs``; a
larger family is truncated with a warning.

Usage
-----
>>> analyzer = PrototypeOverlapAnalyzer(
...     PrototypeRegistry.from_lookups(lookups),
...     BehavioralOverlapEvaluator(RandomStateGenerator(seed=7)),
...     OverlapClassifier(),
...     OverlapRecommendationBuilder(),
... )
>>> result = analyzer.analyze("emotion", sample_count=2000)
>>> print(result.summary())
emotion: 12 prototypes, 66 pairs, 3 recommendations, 2 near misses, 0 failures
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .classifier import CLASSIFICATION_TYPES, NearMissResult
from .collaborators import resolve_logger, validate_dependency
from .overlap import compute_candidate_metrics
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "ACTIONABLE_TYPES",
    "NearMissPair",
    "PairFailure",
    "OverlapAnalysisResult",
    "PrototypeOverlapAnalyzer",
]


ACTIONABLE_TYPES: Tuple[str, ...] = (
    "merge_recommended",
    "subsumed_recommended",
    "nested_siblings",
    "needs_separation",
    "convert_to_expression",
)


# ═══════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NearMissPair:
    prototype_a: str
    prototype_b: str
    near_miss: NearMissResult
    candidate_metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prototype_a": self.prototype_a,
            "prototype_b": self.prototype_b,
            "near_miss": self.near_miss.to_dict(),
            "candidate_metrics": {
                k: round(v, 6) for k, v in self.candidate_metrics.items()},
        }


@dataclass(frozen=True)
class PairFailure:
    prototype_a: str
    prototype_b: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "prototype_a": self.prototype_a,
            "prototype_b": self.prototype_b,
            "error": self.error,
        }


@dataclass(frozen=True)
class OverlapAnalysisResult:
    """Outcome of one family-wide overlap run.

    ``recommendations`` are sorted by descending severity.
    ``classification_breakdown`` counts every classification type,
    including those that produced no recommendation.
    """

    prototype_family: str
    prototype_count: int
    pairs_evaluated: int
    recommendations: Tuple[Any, ...] = ()
    near_misses: Tuple[NearMissPair, ...] = ()
    classification_breakdown: Dict[str, int] = field(default_factory=dict)
    failures: Tuple[PairFailure, ...] = ()
    truncated_from: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "prototype_family": self.prototype_family,
            "prototype_count": self.prototype_count,
            "pairs_evaluated": self.pairs_evaluated,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "near_misses": [n.to_dict() for n in self.near_misses],
            "classification_breakdown": dict(self.classification_breakdown),
            "failures": [f.to_dict() for f in self.failures],
        }
        if self.truncated_from is not None:
            out["truncated_from"] = self.truncated_from
        return out

    def summary(self) -> str:
        return (f"{self.prototype_family}: {self.prototype_count} prototypes, "
                f"{self.pairs_evaluated} pairs, "
                f"{len(self.recommendations)} recommendations, "
                f"{len(self.near_misses)} near misses, "
                f"{len(self.failures)} failures")


def _prototype_id(prototype: Any) -> str:
    return str(getattr(prototype, "id", prototype))


# ═══════════════════════════════════════════════════════════════════
# PrototypeOverlapAnalyzer
# ═══════════════════════════════════════════════════════════════════

class PrototypeOverlapAnalyzer:
    """Evaluate, classify and recommend over all prototype pairs.

    Parameters
    ----------
    prototype_source : PrototypeSource
        Must expose ``get_all(prototype_type)``.
    evaluator : BehavioralOverlapEvaluator
        Must expose ``evaluate(a, b, sample_count)``.
    classifier : OverlapClassifier
        Must expose ``classify`` and ``check_near_miss``.
    recommendation_builder : OverlapRecommendationBuilder
        Must expose ``build``.
    thresholds : ThresholdRegistry
    logger : logger-like, optional

    Raises
    ------
    MissingDependencyError
        If any collaborator is missing or incomplete.
    """

    def __init__(
        self,
        prototype_source: Any,
        evaluator: Any,
        classifier: Any,
        recommendation_builder: Any,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
        logger: Optional[Any] = None,
    ):
        self._source = validate_dependency(
            prototype_source, "prototype_source", ("get_all",))
        self._evaluator = validate_dependency(
            evaluator, "evaluator", ("evaluate",))
        self._classifier = validate_dependency(
            classifier, "classifier", ("classify", "check_near_miss"))
        self._builder = validate_dependency(
            recommendation_builder, "recommendation_builder", ("build",))
        self._thresholds = thresholds
        self._logger = resolve_logger(logger, logging.getLogger(__name__))

    def analyze(
        self,
        prototype_family: str = "emotion",
        sample_count: Optional[int] = None,
    ) -> OverlapAnalysisResult:
        """Run the pipeline over every pair in *prototype_family*.

        Parameters
        ----------
        prototype_family : str
            Passed to ``prototype_source.get_all``.
        sample_count : int, optional
            Per-pair sample count; the evaluator falls back to
            ``overlap.sample_count_per_pair``.
        """
        prototypes = list(self._source.get_all(prototype_family) or ())
        n = len(prototypes)
        self._logger.debug(
            f"Found {n} prototypes for family {prototype_family!r}")
        if n < 2:
            self._logger.info(
                f"Fewer than 2 prototypes ({n}) in {prototype_family!r}, "
                f"nothing to compare")
            return OverlapAnalysisResult(prototype_family, n, 0)

        total = n * (n - 1) // 2
        max_pairs = self._thresholds.get_int("overlap.max_candidate_pairs", 5000)
        truncated_from = None
        if total > max_pairs:
            self._logger.warning(
                f"Truncated candidate pairs from {total} to {max_pairs}")
            truncated_from = total
        pairs = itertools.islice(itertools.combinations(prototypes, 2), max_pairs)

        breakdown = {t: 0 for t in CLASSIFICATION_TYPES}
        recommendations: List[Any] = []
        near_misses: List[NearMissPair] = []
        failures: List[PairFailure] = []
        evaluated = 0
        epsilon = self._thresholds.get("recommendation.active_axis_epsilon", 0.08)

        for proto_a, proto_b in pairs:
            id_a, id_b = _prototype_id(proto_a), _prototype_id(proto_b)
            try:
                candidate = compute_candidate_metrics(proto_a, proto_b, epsilon)
                behavior = self._evaluator.evaluate(proto_a, proto_b, sample_count)
                classification = self._classifier.classify(behavior, candidate)
                kind = classification.type
                if kind in ACTIONABLE_TYPES:
                    recommendations.append(self._builder.build(
                        proto_a, proto_b, classification, candidate, behavior,
                        prototype_family=prototype_family))
                else:
                    near = self._classifier.check_near_miss(behavior, candidate)
                    if near.is_near_miss:
                        near_misses.append(
                            NearMissPair(id_a, id_b, near, candidate))
            except Exception as exc:
                self._logger.warning(
                    f"Overlap analysis failed for {id_a}/{id_b}: {exc}")
                failures.append(PairFailure(id_a, id_b, str(exc)))
                continue
            breakdown[kind] = breakdown.get(kind, 0) + 1
            evaluated += 1

        recommendations.sort(key=lambda r: r.severity, reverse=True)
        result = OverlapAnalysisResult(
            prototype_family=prototype_family,
            prototype_count=n,
            pairs_evaluated=evaluated,
            recommendations=tuple(recommendations),
            near_misses=tuple(near_misses),
            classification_breakdown=breakdown,
            failures=tuple(failures),
            truncated_from=truncated_from,
        )
        self._logger.debug(result.summary())
        return result
