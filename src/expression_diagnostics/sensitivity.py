"""Threshold sensitivity sweeps for blocking clauses.

A *blocker* is a clause that keeps an expression from firing.  For each
distinct ``(var_path, operator, threshold)`` among the blockers (nested
compound blockers are flattened first) the analyzer sweeps the
threshold over a small grid centred on the original value and records
a pass rate at every point:

* **marginal** sweep: the clause's own pass rate
  (``kind="marginal_clause_pass_rate_sweep"``)
* **global** sweep: the whole expression's trigger rate with that one
  clause moved (``kind="expression_trigger_rate_sweep"``)

Grids step by ``sensitivity.float_step`` (0.05) on continuous paths and
by ``sensitivity.integer_step`` (1) on native integer axis paths.
Integer points also report the *effective* threshold the comparison
really applies: ``ceil`` for ``>=``/``>``, ``floor`` for ``<=``/``<``.

Near-miss pool
--------------
When the expression never fires (baseline trigger rate 0) and there is
more than one distinct blocker, global sweeps over the raw population
would be flat zeros.  The analyzer then restricts the population to
contexts that pass every blocker except the
``sensitivity.near_miss_exclude_count`` highest composite-scored ones,
provided at least ``sensitivity.near_miss_min_pool`` such contexts
exist.  Those grids carry ``is_near_miss_pool=True`` and the excluded
blockers.

Usage
-----
>>> analyzer = SensitivityAnalyzer()
>>> grids = analyzer.compute_global_sensitivity_data(contexts, blockers, expr)
>>> grids[0].threshold_for_rate(0.05)
GridPoint(threshold=0.55, pass_rate=0.061, pass_count=61, effective_threshold=None)
>>> suggest_thresholds(grids[0])
[{'target_rate': 0.01, 'threshold': 0.6, ...}, ...]
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .axes import is_integer_path
from .collaborators import resolve_logger
from .gates import compare
from .logic import (
    Delta,
    LogicNode,
    Var,
    evaluate_logic,
    operand_value,
    parse_prerequisites,
    replace_threshold,
)
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "MARGINAL_SWEEP",
    "GLOBAL_SWEEP",
    "Blocker",
    "flatten_blockers",
    "GridPoint",
    "SensitivityGrid",
    "suggest_thresholds",
    "SensitivityAnalyzer",
]

MARGINAL_SWEEP = "marginal_clause_pass_rate_sweep"
GLOBAL_SWEEP = "expression_trigger_rate_sweep"


# ═══════════════════════════════════════════════════════════════════
# Blockers
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Blocker:
    """A blocking clause, or a compound node grouping several.

    ``operands`` holds the two paths of a delta clause (``a - b``).
    """

    var_path: str
    operator: str
    threshold: float
    composite_score: float = 0.0
    children: Tuple["Blocker", ...] = ()
    operands: Optional[Tuple[str, str]] = None

    @property
    def is_compound(self) -> bool:
        return bool(self.children)

    @property
    def key(self) -> Tuple[str, str, float]:
        return (self.var_path, self.operator, float(self.threshold))

    @property
    def is_integer(self) -> bool:
        if self.operands:
            return all(is_integer_path(p) for p in self.operands)
        return is_integer_path(self.var_path)

    def operand(self):
        if self.operands:
            return Delta(Var(self.operands[0]), Var(self.operands[1]))
        return Var(self.var_path)

    def passes(self, context: Mapping[str, Any], threshold: Optional[float] = None) -> bool:
        value = operand_value(self.operand(), context)
        if value is None:
            return False
        t = self.threshold if threshold is None else threshold
        return compare(value, self.operator, t)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "var_path": self.var_path,
            "operator": self.operator,
            "threshold": self.threshold,
            "composite_score": round(self.composite_score, 6),
        }


def flatten_blockers(blockers: Iterable[Blocker]) -> List[Blocker]:
    """Leaf blockers in depth-first order, first occurrence per key."""
    seen = set()
    out: List[Blocker] = []

    def _walk(items: Iterable[Blocker]):
        for b in items:
            if b.is_compound:
                _walk(b.children)
            elif b.key not in seen:
                seen.add(b.key)
                out.append(b)

    _walk(blockers or ())
    return out


# ═══════════════════════════════════════════════════════════════════
# Grids
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GridPoint:
    threshold: float
    pass_rate: float
    pass_count: int
    effective_threshold: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "threshold": round(self.threshold, 6),
            "pass_rate": round(self.pass_rate, 6),
            "pass_count": self.pass_count,
        }
        if self.effective_threshold is not None:
            out["effective_threshold"] = self.effective_threshold
        return out


@dataclass(frozen=True)
class SensitivityGrid:
    var_path: str
    operator: str
    original_threshold: float
    kind: str
    points: Tuple[GridPoint, ...]
    sample_count: int
    is_integer: bool = False
    is_near_miss_pool: bool = False
    excluded_blockers: Tuple[Dict[str, Any], ...] = ()

    def threshold_for_rate(self, target: float) -> Optional[GridPoint]:
        """Grid point nearest the original whose pass rate reaches *target*."""
        hits = [p for p in self.points if p.pass_rate >= target]
        if not hits:
            return None
        return min(hits, key=lambda p: abs(p.threshold - self.original_threshold))

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "var_path": self.var_path,
            "operator": self.operator,
            "original_threshold": self.original_threshold,
            "kind": self.kind,
            "sample_count": self.sample_count,
            "is_integer": self.is_integer,
            "grid": [p.to_dict() for p in self.points],
        }
        if self.is_near_miss_pool:
            out["is_near_miss_pool"] = True
            out["excluded_blockers"] = [dict(b) for b in self.excluded_blockers]
        return out

    def summary(self) -> str:
        rates = ", ".join(f"{p.pass_rate:.3f}" for p in self.points)
        pool = " [near-miss pool]" if self.is_near_miss_pool else ""
        return (f"{self.var_path} {self.operator} {self.original_threshold:g}"
                f"{pool}: {rates}")


def suggest_thresholds(
    grid: SensitivityGrid,
    targets: Sequence[float] = (0.01, 0.05, 0.1),
) -> List[Dict[str, Any]]:
    """For each target rate, the nearest grid threshold that reaches it."""
    out = []
    for target in targets:
        point = grid.threshold_for_rate(target)
        out.append({
            "target_rate": target,
            "threshold": None if point is None else point.threshold,
            "pass_rate": None if point is None else point.pass_rate,
            "effective_threshold": None if point is None else point.effective_threshold,
        })
    return out


def _effective_threshold(value: float, operator: str) -> Optional[float]:
    if operator in (">=", ">"):
        return float(math.ceil(value - 1e-9))
    if operator in ("<=", "<"):
        return float(math.floor(value + 1e-9))
    return None


# ═══════════════════════════════════════════════════════════════════
# SensitivityAnalyzer
# ═══════════════════════════════════════════════════════════════════

class SensitivityAnalyzer:
    """Marginal and global threshold sweeps over a context population.

    Parameters
    ----------
    logger : logger-like, optional
    thresholds : ThresholdRegistry
        ``sensitivity.*`` keys.
    """

    def __init__(
        self,
        logger: Optional[Any] = None,
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
    ):
        self._logger = resolve_logger(logger, logging.getLogger(__name__))
        self._thresholds = thresholds

    # ── grid construction ───────────────────────────────────────

    def grid_values(self, blocker: Blocker, steps: Optional[int] = None) -> List[float]:
        """*steps* thresholds centred on the blocker's original value."""
        n = steps if steps is not None else self._thresholds.get_int("sensitivity.steps", 9)
        n = max(1, int(n))
        if blocker.is_integer:
            step = self._thresholds.get("sensitivity.integer_step", 1.0)
        else:
            step = self._thresholds.get("sensitivity.float_step", 0.05)
        half = n // 2
        return [round(blocker.threshold + (i - half) * step, 10) for i in range(n)]

    def _point(self, blocker: Blocker, value: float, passed: int, total: int) -> GridPoint:
        return GridPoint(
            threshold=value,
            pass_rate=passed / total if total else 0.0,
            pass_count=passed,
            effective_threshold=(_effective_threshold(value, blocker.operator)
                                 if blocker.is_integer else None),
        )

    # ── marginal ────────────────────────────────────────────────

    def compute_sensitivity_data(
        self,
        contexts: Sequence[Mapping[str, Any]],
        blockers: Iterable[Blocker],
        steps: Optional[int] = None,
    ) -> List[SensitivityGrid]:
        """Marginal pass-rate sweep for each distinct blocker."""
        grids: List[SensitivityGrid] = []
        for blocker in flatten_blockers(blockers):
            try:
                operand = blocker.operand()
                values = [v for v in (operand_value(operand, ctx) for ctx in contexts)
                          if v is not None]
                points = []
                for t in self.grid_values(blocker, steps):
                    passed = int(sum(
                        compare(v, blocker.operator, t) for v in values))
                    points.append(self._point(blocker, t, passed, len(contexts)))
                grids.append(SensitivityGrid(
                    var_path=blocker.var_path,
                    operator=blocker.operator,
                    original_threshold=blocker.threshold,
                    kind=MARGINAL_SWEEP,
                    points=tuple(points),
                    sample_count=len(contexts),
                    is_integer=blocker.is_integer,
                ))
            except Exception as exc:
                self._logger.warning(
                    f"Sensitivity sweep failed for {blocker.var_path}: {exc}")
        return grids

    # ── global ──────────────────────────────────────────────────

    def near_miss_pool(
        self,
        contexts: Sequence[Mapping[str, Any]],
        blockers: Sequence[Blocker],
    ) -> Tuple[List[Mapping[str, Any]], List[Blocker]]:
        """Contexts passing every blocker except the top-scored ones."""
        k = self._thresholds.get_int("sensitivity.near_miss_exclude_count", 1)
        ranked = sorted(blockers, key=lambda b: b.composite_score, reverse=True)
        excluded, kept = ranked[:k], ranked[k:]
        pool = [ctx for ctx in contexts if all(b.passes(ctx) for b in kept)]
        return pool, excluded

    def compute_global_sensitivity_data(
        self,
        contexts: Sequence[Mapping[str, Any]],
        blockers: Iterable[Blocker],
        expression: Any,
        steps: Optional[int] = None,
    ) -> List[SensitivityGrid]:
        """Expression trigger-rate sweep for each distinct blocker."""
        leaves = flatten_blockers(blockers)
        parsed = parse_prerequisites(expression)
        contexts = list(contexts)

        def trigger_count(nodes: Sequence[LogicNode], pool) -> int:
            return sum(1 for ctx in pool
                       if all(evaluate_logic(n, ctx) for n in nodes))

        nodes = [node for _, node in parsed]
        population = contexts
        near_miss = False
        excluded: List[Blocker] = []
        baseline = trigger_count(nodes, contexts) / len(contexts) if contexts else 0.0
        if baseline == 0 and len(leaves) > 1:
            pool, excluded = self.near_miss_pool(contexts, leaves)
            min_pool = self._thresholds.get_int("sensitivity.near_miss_min_pool", 50)
            if len(pool) >= min_pool:
                population, near_miss = pool, True
                self._logger.debug(
                    f"Using near-miss pool of {len(pool)} contexts "
                    f"(excluded {[b.var_path for b in excluded]})")

        grids: List[SensitivityGrid] = []
        for blocker in leaves:
            try:
                points = []
                for t in self.grid_values(blocker, steps):
                    moved = [replace_threshold(n, blocker.var_path, blocker.operator,
                                               blocker.threshold, t)
                             for n in nodes]
                    passed = trigger_count(moved, population)
                    points.append(self._point(blocker, t, passed, len(population)))
                grids.append(SensitivityGrid(
                    var_path=blocker.var_path,
                    operator=blocker.operator,
                    original_threshold=blocker.threshold,
                    kind=GLOBAL_SWEEP,
                    points=tuple(points),
                    sample_count=len(population),
                    is_integer=blocker.is_integer,
                    is_near_miss_pool=near_miss,
                    excluded_blockers=(tuple(b.to_dict() for b in excluded)
                                       if near_miss else ()),
                ))
            except Exception as exc:
                self._logger.warning(
                    f"Global sensitivity sweep failed for {blocker.var_path}: {exc}")
        return grids
