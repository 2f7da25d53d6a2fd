"""Interval reachability: can a prototype threshold be hit on some path?

The prerequisite tree is expanded into disjunctive normal form, one
:class:`Branch` per path through the ``or`` nodes.  For each branch the
raw axis comparisons and the gates of the prototypes the branch
requires to be *high* bound every axis to an interval; interval
arithmetic over a prototype's weights then bounds its intensity::

    w ≥ 0  →  [w·lo, w·hi]          w < 0  →  [w·hi, w·lo]
    intensity ∈ clamp([Σ lo, Σ hi], 0, Σ|w|) / Σ|w|

A requirement is reachable when that range admits the threshold.

Branch enumeration is bounded.  The number of paths is computed
arithmetically (``and`` multiplies, ``or`` adds) before anything is
materialised, paths are generated lazily, and only the first
``max_branches`` are kept; a warning names the limit and the true
count when it is exceeded.

Usage
-----
>>> reg = PrototypeRegistry.from_lookups({...})
>>> analyzer = PathSensitiveAnalyzer(reg)
>>> result = analyzer.analyze(expression)
>>> result.has_fully_reachable_branch
True
>>> interpret_volume(result.feasibility_volume)
'plausible'

Historical notes
----------------
A prototype's own gates are applied to the intervals for both
directions.  Earlier revisions applied them only to high-direction
requirements, which overstated the reachable range of low-direction
prototypes on gated axes.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .collaborators import resolve_logger, validate_dependency
from .gates import (
    AxisInterval,
    GateConstraint,
    extract_gate_intervals,
    is_high_operator,
    parse_gate,
)
from .clauses import axis_leaf_constraint
from .logic import (
    And,
    Compare,
    LogicNode,
    Or,
    Unknown,
    iter_comparisons,
    parse_logic,
    parse_prerequisites,
    prerequisite_logic,
)
from .prototypes import Prototype
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "PrototypeRequirement",
    "Branch",
    "count_paths",
    "enumerate_branches",
    "BranchReachability",
    "compute_reachability",
    "BranchReport",
    "PathAnalysisResult",
    "PathSensitiveAnalyzer",
    "interpret_volume",
]

_SINGLE_PATH = "Single path (no OR branches)"

_PROTOTYPE_NAMESPACES = {"emotions": "emotion", "sexualStates": "sexual"}


# ═══════════════════════════════════════════════════════════════════
# Branches
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PrototypeRequirement:
    """``emotions.<id> op t`` — a constraint on one prototype's intensity."""

    prototype_id: str
    prototype_type: str
    operator: str
    threshold: float

    @property
    def direction(self) -> str:
        return "high" if is_high_operator(self.operator) else "low"

    @classmethod
    def from_compare(cls, cmp: Compare) -> Optional["PrototypeRequirement"]:
        if cmp.is_delta:
            return None
        ns, _, pid = cmp.var_path.partition(".")
        ptype = _PROTOTYPE_NAMESPACES.get(ns)
        if ptype is None or not pid:
            return None
        return cls(pid, ptype, cmp.operator, cmp.threshold)


@dataclass(frozen=True)
class Branch:
    """One DNF path: the conjunction of its ``leaves``."""

    branch_id: str
    leaves: Tuple[Compare, ...] = ()
    description: str = _SINGLE_PATH

    @property
    def prototype_requirements(self) -> List[PrototypeRequirement]:
        out = []
        for leaf in self.leaves:
            req = PrototypeRequirement.from_compare(leaf)
            if req is not None:
                out.append(req)
        return out

    @property
    def axis_leaves(self) -> List[GateConstraint]:
        """Normalised raw-axis comparisons on this path."""
        out = []
        for leaf in self.leaves:
            gate = axis_leaf_constraint(leaf)
            if gate is not None:
                out.append(gate)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "description": self.description,
            "leaves": [f"{c.var_path} {c.operator} {c.threshold:g}"
                       for c in self.leaves],
        }


def count_paths(node: LogicNode) -> int:
    """Number of DNF paths through *node*, without enumerating them."""
    if isinstance(node, And):
        total = 1
        for child in node.children:
            total *= count_paths(child)
        return total
    if isinstance(node, Or):
        return sum(count_paths(child) for child in node.children)
    return 1


def _required_ids(node: LogicNode) -> List[str]:
    ids = []
    for cmp, _ in iter_comparisons(node):
        req = PrototypeRequirement.from_compare(cmp)
        if req is not None and req.prototype_id not in ids:
            ids.append(req.prototype_id)
    return ids


def _describe_choice(node: LogicNode) -> str:
    if isinstance(node, Compare):
        ids = _required_ids(node)
        return f"{ids[0]} path" if ids else "condition"
    if isinstance(node, And):
        ids = _required_ids(node)
        if ids:
            more = "+..." if len(ids) > 2 else ""
            return f"{'+'.join(ids[:2])}{more} path"
        return "AND block"
    if isinstance(node, Or):
        return "nested OR"
    return "branch"


Path = Tuple[Tuple[Compare, ...], Tuple[str, ...]]


def _iter_paths(node: LogicNode) -> Iterator[Path]:
    if isinstance(node, Compare):
        yield (node,), ()
    elif isinstance(node, And):
        yield from _iter_product(node.children)
    elif isinstance(node, Or):
        for child in node.children:
            label = _describe_choice(child)
            for leaves, labels in _iter_paths(child):
                yield leaves, (label,) + labels
    else:
        yield (), ()


def _iter_product(children: Sequence[LogicNode]) -> Iterator[Path]:
    if not children:
        yield (), ()
        return
    if any(count_paths(child) == 0 for child in children):
        return
    for head_leaves, head_labels in _iter_paths(children[0]):
        for tail_leaves, tail_labels in _iter_product(children[1:]):
            yield head_leaves + tail_leaves, head_labels + tail_labels


def _root_node(source: Any) -> LogicNode:
    if isinstance(source, (Compare, And, Or, Unknown)):
        return source
    if isinstance(source, (list, tuple)) or (
            isinstance(source, dict) and "prerequisites" in source):
        return And(tuple(node for _, node in parse_prerequisites(source)))
    return parse_logic(prerequisite_logic(source))


def enumerate_branches(
    source: Any,
    max_branches: int = 100,
    logger: Optional[Any] = None,
) -> List[Branch]:
    """Expand *source* into at most *max_branches* DNF branches.

    Parameters
    ----------
    source : dict | list | LogicNode
        An expression (all prerequisites are conjoined), a prerequisite
        list, a single logic dict, or an already-parsed node.
    max_branches : int
        Paths beyond this many are not materialised.
    logger : logger-like, optional
        Receives the truncation warning.  Defaults to the module logger.
    """
    log = resolve_logger(logger, logging.getLogger(__name__))
    root = _root_node(source)
    total = count_paths(root)
    if total > max_branches:
        log.warning(
            f"Branch limit ({max_branches}) reached, {total} paths found")

    if total == 0:
        return [Branch("branch_0")]

    branches = [
        Branch(
            branch_id=f"branch_{i}",
            leaves=leaves,
            description=" → ".join(labels) if labels else _SINGLE_PATH,
        )
        for i, (leaves, labels) in enumerate(
            itertools.islice(_iter_paths(root), max_branches))
    ]
    if not branches:
        branches.append(Branch("branch_0"))
    return branches


# ═══════════════════════════════════════════════════════════════════
# Interval arithmetic
# ═══════════════════════════════════════════════════════════════════

def _intersect_into(
    intervals: Dict[str, AxisInterval],
    extra: Dict[str, AxisInterval],
) -> Dict[str, AxisInterval]:
    out = dict(intervals)
    for axis, iv in extra.items():
        out[axis] = out.get(axis, AxisInterval.full(axis)).intersect(iv)
    return out


def _leaf_intervals(branch: Branch) -> Dict[str, AxisInterval]:
    intervals: Dict[str, AxisInterval] = {}
    for gate in branch.axis_leaves:
        current = intervals.get(gate.axis, AxisInterval.full(gate.axis))
        intervals[gate.axis] = current.intersect(gate.to_interval())
    return intervals


def _intensity_bounds(
    prototype: Prototype,
    intervals: Dict[str, AxisInterval],
) -> Tuple[float, float]:
    denom = prototype.weight_sum
    if denom == 0:
        return 0.0, 0.0
    lo_sum = hi_sum = 0.0
    for axis, w in prototype.weights.items():
        iv = intervals.get(axis, AxisInterval.full(axis))
        if w >= 0:
            lo_sum += w * iv.lower
            hi_sum += w * iv.upper
        else:
            lo_sum += w * iv.upper
            hi_sum += w * iv.lower
    lo_sum = max(0.0, min(denom, lo_sum))
    hi_sum = max(0.0, min(denom, hi_sum))
    return lo_sum / denom, hi_sum / denom


def _can_be_inactive(
    prototype: Prototype,
    intervals: Dict[str, AxisInterval],
) -> bool:
    """True if some own gate can fail somewhere inside *intervals*."""
    for text in prototype.gates:
        gate = parse_gate(text)
        if gate is None:
            continue
        allowed = intervals.get(gate.axis, AxisInterval.full(gate.axis))
        if not allowed.is_subset_of(gate.to_interval()):
            return True
    return False


def _knife_edges(
    intervals: Dict[str, AxisInterval],
    width: float,
) -> List[str]:
    return sorted(a for a, iv in intervals.items() if 0 <= iv.width <= width)


@dataclass(frozen=True)
class BranchReachability:
    """Whether one prototype requirement is reachable on one branch."""

    branch_id: str
    prototype_id: str
    direction: str
    operator: str
    threshold: float
    min_possible: float
    max_possible: float
    is_reachable: bool
    gap: float
    infeasible: bool = False
    knife_edges: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "prototype_id": self.prototype_id,
            "direction": self.direction,
            "operator": self.operator,
            "threshold": round(self.threshold, 6),
            "min_possible": round(self.min_possible, 6),
            "max_possible": round(self.max_possible, 6),
            "is_reachable": self.is_reachable,
            "gap": round(self.gap, 6),
            "infeasible": self.infeasible,
            "knife_edges": list(self.knife_edges),
        }

    def summary(self) -> str:
        status = "reachable" if self.is_reachable else f"gap {self.gap:.3f}"
        return (f"{self.branch_id}: {self.prototype_id} {self.operator} "
                f"{self.threshold:g} in [{self.min_possible:.3f}, "
                f"{self.max_possible:.3f}] ({status})")


def compute_reachability(
    branch: Branch,
    prototype: Prototype,
    requirement: PrototypeRequirement,
    prototypes: Optional[Any] = None,
    knife_edge_width: float = 0.02,
) -> BranchReachability:
    """Bound *prototype*'s intensity on *branch* and test *requirement*.

    Parameters
    ----------
    branch : Branch
    prototype : Prototype
        The prototype named by *requirement*.
    requirement : PrototypeRequirement
    prototypes : PrototypeSource, optional
        Used to look up the other high-direction prototypes on the
        branch, whose gates further narrow the axis intervals.  Without
        it only the branch's own axis leaves are used.
    knife_edge_width : float
        Intervals at most this wide are reported as knife edges.

    Returns
    -------
    BranchReachability
        ``gap`` is positive when the threshold is out of reach:
        ``t − max`` for high requirements, ``min − t`` for low ones.
    """
    base = _leaf_intervals(branch)
    if prototypes is not None:
        for other in branch.prototype_requirements:
            if other.direction != "high" or other.prototype_id == prototype.id:
                continue
            other_proto = prototypes.get_prototype(
                other.prototype_id, other.prototype_type)
            if other_proto is None:
                continue
            base = _intersect_into(
                base, extract_gate_intervals(other_proto.gates).intervals)

    intervals = _intersect_into(
        base, extract_gate_intervals(prototype.gates).intervals)
    direction = requirement.direction
    t = requirement.threshold

    if any(iv.is_empty for iv in intervals.values()):
        gap = t if direction == "high" else 1.0 - t
        return BranchReachability(
            branch_id=branch.branch_id,
            prototype_id=prototype.id,
            direction=direction,
            operator=requirement.operator,
            threshold=t,
            min_possible=1.0,
            max_possible=0.0,
            is_reachable=False,
            gap=gap,
            infeasible=True,
        )

    min_possible, max_possible = _intensity_bounds(prototype, intervals)
    if direction == "low" and _can_be_inactive(prototype, base):
        min_possible = 0.0

    op = requirement.operator
    if op == ">=":
        reachable = max_possible >= t
    elif op == ">":
        reachable = max_possible > t
    elif op == "<=":
        reachable = min_possible <= t
    elif op == "<":
        reachable = min_possible < t
    else:
        reachable = min_possible <= t <= max_possible

    gap = t - max_possible if direction == "high" else min_possible - t
    relevant = {a: iv for a, iv in intervals.items() if a in prototype.weights}
    return BranchReachability(
        branch_id=branch.branch_id,
        prototype_id=prototype.id,
        direction=direction,
        operator=op,
        threshold=t,
        min_possible=min_possible,
        max_possible=max_possible,
        is_reachable=reachable,
        gap=gap,
        knife_edges=tuple(_knife_edges(relevant, knife_edge_width)),
    )


# ═══════════════════════════════════════════════════════════════════
# Volume
# ═══════════════════════════════════════════════════════════════════

def _branch_volume(
    intervals: Dict[str, AxisInterval],
    constrained_cutoff: float = 0.99,
) -> float:
    """Product of normalised widths over the constrained axes."""
    volume = 1.0
    for axis, iv in intervals.items():
        if iv.is_empty:
            return 0.0
        full = AxisInterval.full(axis)
        fraction = iv.width / full.width if full.width > 0 else 0.0
        if fraction < constrained_cutoff:
            volume *= fraction
    return volume


def interpret_volume(volume: float) -> str:
    """Human category for a feasibility volume."""
    if volume <= 0:
        return "impossible"
    if volume < 0.001:
        return "extremely_unlikely"
    if volume < 0.01:
        return "very_unlikely"
    if volume < 0.1:
        return "unlikely"
    if volume < 0.5:
        return "plausible"
    return "likely"


# ═══════════════════════════════════════════════════════════════════
# PathSensitiveAnalyzer
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BranchReport:
    """Intervals, conflicts and reachability for one branch."""

    branch: Branch
    intervals: Dict[str, AxisInterval] = field(default_factory=dict)
    conflicts: Tuple[str, ...] = ()
    knife_edges: Tuple[str, ...] = ()
    volume: float = 1.0
    reachability: Tuple[BranchReachability, ...] = ()

    @property
    def is_infeasible(self) -> bool:
        return bool(self.conflicts)

    @property
    def is_fully_reachable(self) -> bool:
        return (not self.is_infeasible
                and all(r.is_reachable for r in self.reachability))

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.branch.to_dict(),
            "intervals": {a: iv.to_dict() for a, iv in self.intervals.items()},
            "conflicts": list(self.conflicts),
            "knife_edges": list(self.knife_edges),
            "volume": round(self.volume, 6),
            "reachability": [r.to_dict() for r in self.reachability],
        }


@dataclass(frozen=True)
class PathAnalysisResult:
    expression_id: Optional[str]
    branches: Tuple[BranchReport, ...] = ()
    feasibility_volume: float = 0.0

    @property
    def reachability_by_branch(self) -> Dict[str, List[BranchReachability]]:
        return {b.branch.branch_id: list(b.reachability) for b in self.branches}

    @property
    def has_fully_reachable_branch(self) -> bool:
        return any(b.is_fully_reachable for b in self.branches)

    def unreachable_requirements(self) -> List[BranchReachability]:
        return [r for b in self.branches for r in b.reachability
                if not r.is_reachable]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression_id": self.expression_id,
            "branches": [b.to_dict() for b in self.branches],
            "feasibility_volume": round(self.feasibility_volume, 6),
            "volume_category": interpret_volume(self.feasibility_volume),
            "has_fully_reachable_branch": self.has_fully_reachable_branch,
        }

    def summary(self) -> str:
        n_ok = sum(1 for b in self.branches if b.is_fully_reachable)
        return (f"{self.expression_id}: {n_ok}/{len(self.branches)} branches "
                f"fully reachable, volume {self.feasibility_volume:.4f} "
                f"({interpret_volume(self.feasibility_volume)})")


class PathSensitiveAnalyzer:
    """Per-branch interval reachability for an expression.

    Parameters
    ----------
    prototypes : PrototypeSource
        Required.  Must expose ``get_prototype(id, type)``.
    logger : logger-like, optional
        Defaults to the module logger.
    thresholds : ThresholdRegistry
        ``reachability.*`` keys.

    Raises
    ------
    MissingDependencyError
        If *prototypes* is missing or incomplete, or an injected logger
        lacks a logging method.
    """

    def __init__(
        self,
        prototypes: Any,
        logger: Optional[Any] = None,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
    ):
        self._prototypes = validate_dependency(
            prototypes, "prototypes", ("get_prototype",))
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        self._thresholds = thresholds

    def analyze(self, expression: Dict[str, Any]) -> PathAnalysisResult:
        th = self._thresholds
        knife_width = th.get("reachability.knife_edge_width", 0.02)
        cutoff = th.get("reachability.volume_constrained_cutoff", 0.99)
        branches = enumerate_branches(
            expression,
            max_branches=th.get_int("reachability.max_branches", 100),
            logger=self._logger,
        )

        reports: List[BranchReport] = []
        for branch in branches:
            try:
                reports.append(self._analyze_branch(branch, knife_width, cutoff))
            except Exception as exc:
                self._logger.warning(
                    f"Skipping {branch.branch_id}: {exc}")

        volume = max((r.volume for r in reports if not r.is_infeasible),
                     default=0.0)
        result = PathAnalysisResult(
            expression_id=expression.get("id") if isinstance(expression, dict) else None,
            branches=tuple(reports),
            feasibility_volume=volume,
        )
        self._logger.debug(result.summary())
        return result

    def _analyze_branch(
        self,
        branch: Branch,
        knife_width: float,
        cutoff: float,
    ) -> BranchReport:
        intervals = _leaf_intervals(branch)
        for req in branch.prototype_requirements:
            if req.direction != "high":
                continue
            proto = self._prototypes.get_prototype(
                req.prototype_id, req.prototype_type)
            if proto is not None:
                intervals = _intersect_into(
                    intervals, extract_gate_intervals(proto.gates).intervals)

        conflicts = tuple(sorted(a for a, iv in intervals.items() if iv.is_empty))
        volume = 0.0 if conflicts else _branch_volume(intervals, cutoff)

        results: List[BranchReachability] = []
        for req in branch.prototype_requirements:
            proto = self._prototypes.get_prototype(
                req.prototype_id, req.prototype_type)
            if proto is None:
                self._logger.warning(
                    f"Unknown {req.prototype_type} prototype "
                    f"{req.prototype_id!r} in {branch.branch_id}")
                continue
            try:
                results.append(compute_reachability(
                    branch, proto, req, self._prototypes, knife_width))
            except Exception as exc:
                self._logger.warning(
                    f"Skipping {req.prototype_id} in {branch.branch_id}: {exc}")

        return BranchReport(
            branch=branch,
            intervals=intervals,
            conflicts=conflicts,
            knife_edges=tuple(_knife_edges(intervals, knife_width)),
            volume=volume,
            reachability=tuple(results),
        )
