"""Clause extraction from expression prerequisites.

Two views of the same prerequisite tree:

* :func:`extract_non_axis_clauses` — every comparison on a *derived*
  signal (emotion intensities, sexual states, deltas between them),
  flattened across arbitrarily nested ``and``/``or``.  These are the
  clauses whose empirical pass rates the feasibility analyzer measures.
* :func:`extract_axis_constraints` — comparisons on raw mood/sexual/trait
  axes that hold on every path (reachable through ``and`` only),
  normalised and intersected into one :class:`AxisInterval` per axis.
  This is the "mood regime" used by prototype fit ranking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .axes import axis_name_from_path, get_axis, is_axis_path
from .gates import AxisInterval, GateConstraint
from .logic import (
    And,
    Compare,
    Delta,
    LogicNode,
    format_source_path,
    iter_comparisons,
    parse_prerequisites,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ExtractedClause",
    "classify_clause_type",
    "extract_non_axis_clauses",
    "axis_leaf_constraint",
    "extract_axis_constraints",
]

_EMOTION_PREFIXES = ("emotions.", "previousEmotions.")
_SEXUAL_PREFIXES = ("sexualStates.", "previousSexualStates.")


@dataclass(frozen=True)
class ExtractedClause:
    """One comparison on a derived (non-axis) signal.

    For delta clauses ``var_path`` is ``"a - b"`` and ``operands`` holds
    ``(a, b)``.
    """

    var_path: str
    operator: str
    threshold: float
    is_delta: bool
    clause_type: str            # "emotion" | "sexual" | "delta" | "other"
    source_path: str
    operands: Optional[Tuple[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "var_path": self.var_path,
            "operator": self.operator,
            "threshold": round(self.threshold, 6),
            "is_delta": self.is_delta,
            "clause_type": self.clause_type,
            "source_path": self.source_path,
            "operands": list(self.operands) if self.operands else None,
        }


def classify_clause_type(var_path: str, is_delta: bool = False) -> str:
    if is_delta:
        return "delta"
    if var_path.startswith(_EMOTION_PREFIXES):
        return "emotion"
    if var_path.startswith(_SEXUAL_PREFIXES) or var_path == "sexualArousal":
        return "sexual"
    return "other"


def extract_non_axis_clauses(prerequisites: Any) -> List[ExtractedClause]:
    """Flatten every non-axis comparison in *prerequisites*.

    Parameters
    ----------
    prerequisites : list
        ``[{"logic": {...}}, ...]``.  Anything that is not a list yields
        ``[]``.

    Returns
    -------
    list[ExtractedClause]
        In traversal order.  Comparisons on raw axis namespaces are
        skipped; a delta is skipped only when both of its operands are
        axis paths.
    """
    if not isinstance(prerequisites, (list, tuple)):
        return []

    clauses: List[ExtractedClause] = []
    for prefix, node in parse_prerequisites(prerequisites):
        for cmp, path in iter_comparisons(node, prefix):
            operand = cmp.operand
            if isinstance(operand, Delta):
                pair = (operand.left.path, operand.right.path)
                if is_axis_path(pair[0]) and is_axis_path(pair[1]):
                    continue
                clauses.append(ExtractedClause(
                    var_path=operand.path,
                    operator=cmp.operator,
                    threshold=cmp.threshold,
                    is_delta=True,
                    clause_type="delta",
                    source_path=format_source_path(path),
                    operands=pair,
                ))
                continue
            if is_axis_path(operand.path):
                continue
            clauses.append(ExtractedClause(
                var_path=operand.path,
                operator=cmp.operator,
                threshold=cmp.threshold,
                is_delta=False,
                clause_type=classify_clause_type(operand.path),
                source_path=format_source_path(path),
            ))
    return clauses


# ── axis constraints ────────────────────────────────────────────

def _and_only_comparisons(node: LogicNode) -> List[Compare]:
    if isinstance(node, Compare):
        return [node]
    if isinstance(node, And):
        found: List[Compare] = []
        for child in node.children:
            found.extend(_and_only_comparisons(child))
        return found
    return []


def axis_leaf_constraint(cmp: Compare) -> Optional[GateConstraint]:
    """Normalised :class:`GateConstraint` for a raw axis comparison."""
    if cmp.is_delta:
        return None
    name = axis_name_from_path(cmp.var_path)
    if name is None:
        return None
    axis = get_axis(name)
    scale = axis.scale if axis is not None else 100.0
    return GateConstraint(name, cmp.operator, cmp.threshold / scale)


def extract_axis_constraints(source: Any) -> Dict[str, AxisInterval]:
    """Normalised ``{axis: AxisInterval}`` that hold on every path.

    *source* is an expression dict or a prerequisite list.  Only axis
    comparisons reachable through ``and`` nodes count; anything under an
    ``or`` is optional and ignored.
    """
    constraints: Dict[str, AxisInterval] = {}
    for _, node in parse_prerequisites(source):
        for cmp in _and_only_comparisons(node):
            gate = axis_leaf_constraint(cmp)
            if gate is None:
                continue
            current = constraints.get(gate.axis, AxisInterval.full(gate.axis))
            constraints[gate.axis] = current.intersect(gate.to_interval())
    return constraints
