"""Deterministic gate implication between two prototypes.

Each prototype's gates define an axis-aligned box (one interval per
constrained axis, unbounded elsewhere).  Prototype A's gates *imply*
B's when A's box lies inside B's: whenever A is active, B is too.

An unsatisfiable box is empty and therefore implies anything.

================  ==============================================
relation          condition
================  ==============================================
``equal``         A ⇒ B and B ⇒ A
``narrower``      A ⇒ B only (A is the stricter prototype)
``wider``         B ⇒ A only
``disjoint``      some axis where the intervals do not touch
``overlapping``   everything else
================  ==============================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

from .gates import AxisInterval, GateIntervals

logger = logging.getLogger(__name__)

__all__ = [
    "AxisImplicationEvidence",
    "GateImplication",
    "evaluate_gate_implication",
]


@dataclass(frozen=True)
class AxisImplicationEvidence:
    axis: str
    interval_a: AxisInterval
    interval_b: AxisInterval
    a_subset_b: bool
    b_subset_a: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "axis": self.axis,
            "interval_a": self.interval_a.to_dict(),
            "interval_b": self.interval_b.to_dict(),
            "a_subset_b": self.a_subset_b,
            "b_subset_a": self.b_subset_a,
        }


@dataclass(frozen=True)
class GateImplication:
    a_implies_b: bool
    b_implies_a: bool
    relation: str
    counter_example_axes: Tuple[str, ...] = ()
    evidence: Tuple[AxisImplicationEvidence, ...] = ()
    is_vacuous: bool = False
    confidence: str = "deterministic"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "a_implies_b": self.a_implies_b,
            "b_implies_a": self.b_implies_a,
            "relation": self.relation,
            "counter_example_axes": list(self.counter_example_axes),
            "evidence": [e.to_dict() for e in self.evidence],
            "is_vacuous": self.is_vacuous,
            "confidence": self.confidence,
        }


def _as_intervals(value: Any, label: str) -> Dict[str, AxisInterval]:
    if isinstance(value, GateIntervals):
        return dict(value.intervals)
    if isinstance(value, Mapping):
        return {k: v for k, v in value.items() if isinstance(v, AxisInterval)}
    logger.warning(
        f"Gate intervals for {label} are not a mapping ({type(value).__name__}); "
        f"treating as unconstrained")
    return {}


def evaluate_gate_implication(
    intervals_a: Any,
    intervals_b: Any,
) -> GateImplication:
    """Compare two gate boxes axis by axis.

    Parameters
    ----------
    intervals_a, intervals_b : dict[str, AxisInterval] or GateIntervals
        Missing axes are unbounded.  Anything else is logged and treated
        as unconstrained.
    """
    a = _as_intervals(intervals_a, "prototype A")
    b = _as_intervals(intervals_b, "prototype B")

    a_empty = any(iv.is_empty for iv in a.values())
    b_empty = any(iv.is_empty for iv in b.values())

    evidence: List[AxisImplicationEvidence] = []
    counter: List[str] = []
    disjoint = False
    a_sub_all = b_sub_all = True
    for axis in sorted(set(a) | set(b)):
        iv_a = a.get(axis, AxisInterval())
        iv_b = b.get(axis, AxisInterval())
        a_sub = iv_a.is_subset_of(iv_b)
        b_sub = iv_b.is_subset_of(iv_a)
        evidence.append(AxisImplicationEvidence(axis, iv_a, iv_b, a_sub, b_sub))
        if not a_sub:
            counter.append(axis)
            a_sub_all = False
        if not b_sub:
            b_sub_all = False
        if not iv_a.is_empty and not iv_b.is_empty and not iv_a.overlaps(iv_b):
            disjoint = True

    a_implies_b = a_empty or a_sub_all
    b_implies_a = b_empty or b_sub_all

    if a_implies_b and b_implies_a:
        relation = "equal"
    elif a_implies_b:
        relation = "narrower"
    elif b_implies_a:
        relation = "wider"
    elif disjoint:
        relation = "disjoint"
    else:
        relation = "overlapping"

    return GateImplication(
        a_implies_b=a_implies_b,
        b_implies_a=b_implies_a,
        relation=relation,
        counter_example_axes=() if a_implies_b else tuple(counter),
        evidence=tuple(evidence),
        is_vacuous=a_empty or b_empty,
    )
