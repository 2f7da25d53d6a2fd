"""Empirical clause feasibility over sampled simulation contexts.

For every extracted clause the analyzer measures how often it passes
over a pool of recorded or simulated contexts, keeps the observed
extremes of the signal, and classifies the clause:

===========================  ========================================
classification               meaning
===========================  ========================================
``UNKNOWN``                  no context carried every needed operand
``EMPIRICALLY_UNREACHABLE``  zero passes; the observed extreme never
                             got to the threshold
``IMPOSSIBLE``               zero passes although the signal reached
                             the threshold (strict ``>`` at the
                             observed ceiling, ``==`` between samples)
``RARE``                     ``0 < rate < feasibility.rare_threshold``
``OK``                       everything else
===========================  ========================================

Delta clauses (``a - b``) are evaluated on the difference of the two
lookups; a context missing either side is left out of the denominator.

Usage
-----
>>> clauses = extract_non_axis_clauses(expression["prerequisites"])
>>> rows = EmpiricalFeasibilityAnalyzer().analyze(clauses, contexts, "joy_burst")
>>> rows[0].classification
<ClauseClassification.RARE: 'RARE'>
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .clauses import ExtractedClause
from .collaborators import resolve_logger
from .gates import compare, is_high_operator
from .logic import Delta, Var, operand_value
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "ClauseClassification",
    "ClauseEvidence",
    "ClauseFeasibility",
    "classify_feasibility",
    "EmpiricalFeasibilityAnalyzer",
]


class ClauseClassification(str, enum.Enum):
    OK = "OK"
    RARE = "RARE"
    EMPIRICALLY_UNREACHABLE = "EMPIRICALLY_UNREACHABLE"
    IMPOSSIBLE = "IMPOSSIBLE"
    UNKNOWN = "UNKNOWN"


def classify_feasibility(
    valid_count: int,
    pass_rate: Optional[float],
    extreme: Optional[float],
    threshold: float,
    operator: str,
    rare_threshold: float = 0.001,
) -> ClauseClassification:
    """Classify a clause from its empirical statistics.

    Parameters
    ----------
    valid_count : int
        Contexts that carried every operand.
    pass_rate : float or None
    extreme : float or None
        Observed maximum for ``>=``/``>``/``==`` clauses, observed
        minimum for ``<=``/``<``.
    threshold, operator
        The clause's comparison.
    rare_threshold : float
        Upper bound (exclusive) of the ``RARE`` band.
    """
    if valid_count <= 0 or pass_rate is None:
        return ClauseClassification.UNKNOWN
    if pass_rate == 0:
        if extreme is not None:
            if is_high_operator(operator) and extreme < threshold:
                return ClauseClassification.EMPIRICALLY_UNREACHABLE
            if not is_high_operator(operator) and extreme > threshold:
                return ClauseClassification.EMPIRICALLY_UNREACHABLE
        return ClauseClassification.IMPOSSIBLE
    if pass_rate < rare_threshold:
        return ClauseClassification.RARE
    return ClauseClassification.OK


@dataclass(frozen=True)
class ClauseEvidence:
    """Human note plus the passing sample with the widest margin."""

    note: str
    best_sample: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"note": self.note, "best_sample": self.best_sample}


@dataclass(frozen=True)
class ClauseFeasibility:
    """Empirical statistics and classification for one clause."""

    var_path: str
    operator: str
    threshold: float
    signal: str                 # "delta" | "direct"
    source_path: str
    pass_rate: Optional[float]
    max_value: Optional[float]
    min_value: Optional[float]
    valid_count: int
    pass_count: int
    classification: ClauseClassification
    evidence: ClauseEvidence

    def to_dict(self) -> Dict[str, Any]:
        def _r(x):
            return None if x is None else round(x, 6)

        return {
            "var_path": self.var_path,
            "operator": self.operator,
            "threshold": round(self.threshold, 6),
            "signal": self.signal,
            "source_path": self.source_path,
            "pass_rate": _r(self.pass_rate),
            "max_value": _r(self.max_value),
            "min_value": _r(self.min_value),
            "valid_count": self.valid_count,
            "pass_count": self.pass_count,
            "classification": self.classification.value,
            "evidence": self.evidence.to_dict(),
        }

    def summary(self) -> str:
        rate = "n/a" if self.pass_rate is None else f"{self.pass_rate:.4%}"
        return (f"{self.var_path} {self.operator} {self.threshold:g}: "
                f"{self.classification.value} ({rate})")


def _clause_operand(clause: ExtractedClause):
    if clause.is_delta and clause.operands:
        return Delta(Var(clause.operands[0]), Var(clause.operands[1]))
    return Var(clause.var_path)


class EmpiricalFeasibilityAnalyzer:
    """Measure clause pass rates over a pool of contexts.

    Parameters
    ----------
    logger : logger-like, optional
    thresholds : ThresholdRegistry
        Uses ``feasibility.rare_threshold``.
    """

    def __init__(
        self,
        logger: Optional[Any] = None,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
    ):
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        self._thresholds = thresholds

    def analyze(
        self,
        clauses: Sequence[ExtractedClause],
        contexts: Sequence[Mapping[str, Any]],
        expr_id: Optional[str] = None,
    ) -> List[ClauseFeasibility]:
        """One :class:`ClauseFeasibility` per clause that could be scored.

        A clause whose evaluation raises is logged and left out.
        """
        results: List[ClauseFeasibility] = []
        for clause in clauses:
            try:
                results.append(self._analyze_clause(clause, contexts))
            except Exception as exc:
                self._logger.warning(
                    f"Skipping clause {getattr(clause, 'var_path', clause)!r}"
                    f" in {expr_id}: {exc}")
        self._logger.debug(
            f"{expr_id}: scored {len(results)}/{len(clauses)} clauses "
            f"over {len(contexts)} contexts")
        return results

    def _analyze_clause(
        self,
        clause: ExtractedClause,
        contexts: Sequence[Mapping[str, Any]],
    ) -> ClauseFeasibility:
        operand = _clause_operand(clause)
        op, t = clause.operator, clause.threshold
        high = is_high_operator(op)

        valid = passed = 0
        max_value: Optional[float] = None
        min_value: Optional[float] = None
        best: Optional[Dict[str, float]] = None

        for index, ctx in enumerate(contexts):
            value = operand_value(operand, ctx)
            if value is None:
                continue
            valid += 1
            max_value = value if max_value is None else max(max_value, value)
            min_value = value if min_value is None else min(min_value, value)
            if compare(value, op, t):
                passed += 1
                margin = value - t if high else t - value
                if best is None or margin > best["margin"]:
                    best = {"index": index, "value": value, "margin": margin}

        pass_rate = passed / valid if valid else None
        classification = classify_feasibility(
            valid,
            pass_rate,
            max_value if high else min_value,
            t,
            op,
            self._thresholds.get("feasibility.rare_threshold", 0.001),
        )
        signal = "delta" if clause.is_delta else "direct"
        note = (f"{signal} signal at {clause.source_path}: "
                f"{passed}/{valid} contexts pass")
        return ClauseFeasibility(
            var_path=clause.var_path,
            operator=op,
            threshold=t,
            signal=signal,
            source_path=clause.source_path,
            pass_rate=pass_rate,
            max_value=max_value,
            min_value=min_value,
            valid_count=valid,
            pass_count=passed,
            classification=classification,
            evidence=ClauseEvidence(note, best),
        )
