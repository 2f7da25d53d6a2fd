"""Gate parsing, gate checks and axis intervals.

A *gate* is a textual activation precondition such as
``"valence >= 0.20"``.  Gates decide whether a prototype is active at
all; they are independent of its intensity.

Parsing is permissive by contract: a gate that does not match the
grammar is logged and returned as ``None``, and every consumer treats an
unparsed gate as trivially satisfiable.  Nothing in this module raises
on malformed input.

Usage
-----
>>> g = parse_gate("threat <= 0.20")
>>> g.axis, g.operator, g.threshold
('threat', '<=', 0.2)
>>> g.to_interval()
AxisInterval(lower=-inf, upper=0.2)
>>> extract_gate_intervals(["valence >= 0.2", "oops"]).parse_status
'partial'
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .axes import normalized_range, resolve_axis_value

logger = logging.getLogger(__name__)

__all__ = [
    "OPERATORS",
    "FLIPPED_OPERATORS",
    "EQUALITY_TOLERANCE",
    "compare",
    "is_high_operator",
    "GateConstraint",
    "parse_gate",
    "check_all_gates_pass",
    "AxisInterval",
    "GateIntervals",
    "extract_gate_intervals",
]

OPERATORS = (">=", "<=", ">", "<", "==")

FLIPPED_OPERATORS = {">=": "<=", "<=": ">=", ">": "<", "<": ">", "==": "=="}

EQUALITY_TOLERANCE = 1e-4

_GATE_RE = re.compile(r"^\s*(\w+)\s*(>=|<=|>|<|==)\s*(-?\d*\.?\d+)\s*$")


def compare(value: float, operator: str, threshold: float) -> bool:
    """Apply *operator*; ``==`` uses :data:`EQUALITY_TOLERANCE`."""
    if operator == ">=":
        return value >= threshold
    if operator == ">":
        return value > threshold
    if operator == "<=":
        return value <= threshold
    if operator == "<":
        return value < threshold
    if operator == "==":
        return abs(value - threshold) < EQUALITY_TOLERANCE
    raise ValueError(f"Unknown comparison operator {operator!r}")


def is_high_operator(operator: str) -> bool:
    """``>=``/``>``/``==`` require a value at or above the threshold."""
    return operator in (">=", ">", "==")


# ═══════════════════════════════════════════════════════════════════
# AxisInterval
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AxisInterval:
    """Closed interval ``[lower, upper]``; ±inf means unbounded."""

    lower: float = -math.inf
    upper: float = math.inf

    @classmethod
    def full(cls, axis: str) -> "AxisInterval":
        """The whole normalised range of *axis*."""
        lo, hi = normalized_range(axis)
        return cls(lo, hi)

    @property
    def is_empty(self) -> bool:
        return self.lower > self.upper

    @property
    def width(self) -> float:
        return self.upper - self.lower

    @property
    def midpoint(self) -> float:
        return (self.lower + self.upper) / 2.0

    @property
    def lower_bound(self) -> Optional[float]:
        return None if math.isinf(self.lower) else self.lower

    @property
    def upper_bound(self) -> Optional[float]:
        return None if math.isinf(self.upper) else self.upper

    def intersect(self, other: "AxisInterval") -> "AxisInterval":
        return AxisInterval(max(self.lower, other.lower),
                            min(self.upper, other.upper))

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    def is_subset_of(self, other: "AxisInterval") -> bool:
        """Empty intervals are subsets of everything."""
        if self.is_empty:
            return True
        if other.is_empty:
            return False
        return self.lower >= other.lower and self.upper <= other.upper

    def overlaps(self, other: "AxisInterval") -> bool:
        """Touching intervals overlap."""
        if self.is_empty or other.is_empty:
            return False
        return self.lower <= other.upper and other.lower <= self.upper

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lower": self.lower_bound,
            "upper": self.upper_bound,
            "unsatisfiable": self.is_empty,
        }


# ═══════════════════════════════════════════════════════════════════
# GateConstraint
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GateConstraint:
    """One parsed ``axis op threshold`` gate."""

    axis: str
    operator: str
    threshold: float

    def passes(self, value: float) -> bool:
        return compare(value, self.operator, self.threshold)

    def to_interval(self) -> AxisInterval:
        """Interval of axis values satisfying this gate.

        Strict and non-strict bounds map to the same closed interval.
        """
        if self.operator in (">=", ">"):
            return AxisInterval(self.threshold, math.inf)
        if self.operator in ("<=", "<"):
            return AxisInterval(-math.inf, self.threshold)
        return AxisInterval(self.threshold, self.threshold)

    def __str__(self) -> str:
        return f"{self.axis} {self.operator} {self.threshold:g}"


def parse_gate(text: Any) -> Optional[GateConstraint]:
    """Parse ``"axis op value"``; return ``None`` (and log) if malformed."""
    if not isinstance(text, str):
        logger.warning(f"Unparseable gate (not a string): {text!r}")
        return None
    m = _GATE_RE.match(text)
    if m is None:
        logger.warning(f"Unparseable gate: {text!r}")
        return None
    return GateConstraint(m.group(1), m.group(2), float(m.group(3)))


def check_all_gates_pass(
    gates: Optional[Sequence[str]],
    normalized_axes: Mapping[str, float],
) -> bool:
    """True when every parseable gate holds; unparsed gates are skipped."""
    for text in gates or ():
        gate = parse_gate(text)
        if gate is None:
            continue
        if not gate.passes(resolve_axis_value(gate.axis, normalized_axes)):
            return False
    return True


# ═══════════════════════════════════════════════════════════════════
# Gate intervals
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GateIntervals:
    """Per-axis intervals implied by a gate list, with parse coverage.

    ``parse_status`` is ``"complete"`` when every gate parsed (including
    the empty gate list), ``"partial"`` when some did, and ``"failed"``
    when none did.
    """

    intervals: Dict[str, AxisInterval]
    parse_status: str
    unparsed_gates: Tuple[str, ...] = ()
    total_gate_count: int = 0

    @property
    def parsed_gate_count(self) -> int:
        return self.total_gate_count - len(self.unparsed_gates)

    @property
    def is_unsatisfiable(self) -> bool:
        return any(iv.is_empty for iv in self.intervals.values())

    def parse_info(self) -> Dict[str, Any]:
        return {
            "parse_status": self.parse_status,
            "total_gate_count": self.total_gate_count,
            "parsed_gate_count": self.parsed_gate_count,
            "unparsed_gates": list(self.unparsed_gates),
        }


def extract_gate_intervals(gates: Optional[Sequence[Any]]) -> GateIntervals:
    """Intersect all parseable gates into ``{axis: AxisInterval}``."""
    gates = list(gates or ())
    intervals: Dict[str, AxisInterval] = {}
    unparsed: List[str] = []
    for text in gates:
        gate = parse_gate(text)
        if gate is None:
            unparsed.append(str(text))
            continue
        current = intervals.get(gate.axis, AxisInterval())
        intervals[gate.axis] = current.intersect(gate.to_interval())

    if not unparsed:
        status = "complete"
    elif len(unparsed) < len(gates):
        status = "partial"
    else:
        status = "failed"
    return GateIntervals(
        intervals=intervals,
        parse_status=status,
        unparsed_gates=tuple(unparsed),
        total_gate_count=len(gates),
    )
