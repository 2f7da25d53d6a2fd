"""JSON-logic prerequisite AST, evaluation and traversal.

Expression prerequisites arrive as nested JSON-logic dicts::

    {"and": [
        {">=": [{"var": "emotions.joy"}, 0.5]},
        {"or": [
            {"<=": [{"var": "moodAxes.threat"}, 20]},
            {">":  [{"-": [{"var": "emotions.joy"},
                           {"var": "previousEmotions.joy"}]}, 0.1]},
        ]},
    ]}

:func:`parse_logic` turns them into a small tagged union of frozen
dataclasses (:class:`Var`, :class:`Delta`, :class:`Compare`,
:class:`And`, :class:`Or`, :class:`Unknown`) that every analyzer walks
instead of re-inspecting raw dicts.  Parsing never raises: anything the
grammar does not cover becomes an :class:`Unknown` node, which
evaluation treats as satisfied.

Comparisons are normalised so that the variable side is always on the
left: ``{"<=": [0.2, {"var": "x"}]}`` parses as ``x >= 0.2`` with
``reversed=True``.

Usage
-----
>>> node = parse_logic({">=": [{"var": "emotions.joy"}, 0.5]})
>>> node
Compare(operator='>=', operand=Var(path='emotions.joy', default=None), threshold=0.5, reversed=False)
>>> evaluate_logic(node, {"emotions": {"joy": 0.7}})
True
>>> format_source_path(("prereqs[0]", "and[1]", "or[0]"))
'prereqs[0].and[1].or[0]'
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .gates import FLIPPED_OPERATORS, OPERATORS, compare

logger = logging.getLogger(__name__)

__all__ = [
    "Var",
    "Delta",
    "Compare",
    "And",
    "Or",
    "Unknown",
    "LogicNode",
    "parse_logic",
    "prerequisites_of",
    "prerequisite_logic",
    "parse_prerequisites",
    "LogicVisitor",
    "format_source_path",
    "iter_comparisons",
    "lookup_path",
    "operand_value",
    "evaluate_logic",
    "evaluate_prerequisites",
    "replace_threshold",
]

_PATH_ALIASES = {"mood": "moodAxes", "moodAxes": "mood"}


# ═══════════════════════════════════════════════════════════════════
# AST nodes
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Var:
    """Reference to a dotted context path."""

    path: str
    default: Any = None


@dataclass(frozen=True)
class Delta:
    """``left − right`` where both sides are variable references."""

    left: Var
    right: Var

    @property
    def path(self) -> str:
        return f"{self.left.path} - {self.right.path}"


@dataclass(frozen=True)
class Compare:
    """``operand <operator> threshold`` with the variable on the left."""

    operator: str
    operand: Union[Var, Delta]
    threshold: float
    reversed: bool = False

    @property
    def var_path(self) -> str:
        return self.operand.path

    @property
    def is_delta(self) -> bool:
        return isinstance(self.operand, Delta)


@dataclass(frozen=True)
class And:
    children: Tuple["LogicNode", ...] = ()


@dataclass(frozen=True)
class Or:
    children: Tuple["LogicNode", ...] = ()


@dataclass(frozen=True)
class Unknown:
    """Anything outside the supported grammar.  Evaluates as satisfied."""

    raw: Any = None


LogicNode = Union[Compare, And, Or, Unknown]


# ═══════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_var(node: Any) -> Optional[Var]:
    if not isinstance(node, Mapping) or "var" not in node:
        return None
    ref = node["var"]
    if isinstance(ref, str):
        return Var(ref)
    if isinstance(ref, (list, tuple)) and ref and isinstance(ref[0], str):
        return Var(ref[0], ref[1] if len(ref) > 1 else None)
    return None


def _parse_operand(node: Any) -> Optional[Union[Var, Delta]]:
    var = _parse_var(node)
    if var is not None:
        return var
    if isinstance(node, Mapping) and len(node) == 1 and "-" in node:
        args = node["-"]
        if isinstance(args, (list, tuple)) and len(args) == 2:
            left, right = _parse_var(args[0]), _parse_var(args[1])
            if left is not None and right is not None:
                return Delta(left, right)
    return None


def parse_logic(node: Any) -> LogicNode:
    """Parse one JSON-logic node.  Never raises.

    Returns
    -------
    Compare | And | Or | Unknown
    """
    if not isinstance(node, Mapping) or len(node) != 1:
        logger.warning(f"Malformed logic node: {node!r}")
        return Unknown(node)

    (op, args), = node.items()

    if op in ("and", "or"):
        if not isinstance(args, (list, tuple)):
            logger.warning(f"Malformed {op!r} node (expected list): {args!r}")
            return Unknown(node)
        children = tuple(parse_logic(child) for child in args)
        return And(children) if op == "and" else Or(children)

    if op in OPERATORS:
        if not isinstance(args, (list, tuple)) or len(args) != 2:
            logger.warning(f"Malformed comparison {op!r}: {args!r}")
            return Unknown(node)
        lhs, rhs = args
        lhs_operand = _parse_operand(lhs)
        rhs_operand = _parse_operand(rhs)
        if lhs_operand is not None and _is_number(rhs):
            return Compare(op, lhs_operand, float(rhs))
        if rhs_operand is not None and _is_number(lhs):
            return Compare(FLIPPED_OPERATORS[op], rhs_operand, float(lhs),
                           reversed=True)
        logger.debug(f"Unsupported comparison operands for {op!r}: {args!r}")
        return Unknown(node)

    logger.debug(f"Unsupported logic operator {op!r}")
    return Unknown(node)


def prerequisites_of(source: Any) -> List[Any]:
    """The prerequisite list of an expression dict (or a bare list)."""
    if isinstance(source, Mapping):
        source = source.get("prerequisites")
    if isinstance(source, (list, tuple)):
        return list(source)
    return []


def prerequisite_logic(prerequisite: Any) -> Any:
    """``{"logic": {...}}`` → ``{...}``; bare logic dicts pass through."""
    if isinstance(prerequisite, Mapping) and "logic" in prerequisite:
        return prerequisite["logic"]
    return prerequisite


def parse_prerequisites(source: Any) -> List[Tuple[Tuple[str, ...], LogicNode]]:
    """Parse every prerequisite, paired with its ``prereqs[i]`` path."""
    return [
        ((f"prereqs[{i}]",), parse_logic(prerequisite_logic(p)))
        for i, p in enumerate(prerequisites_of(source))
    ]


# ═══════════════════════════════════════════════════════════════════
# Traversal
# ═══════════════════════════════════════════════════════════════════

def format_source_path(path: Sequence[str]) -> str:
    """``("prereqs[0]", "and[1]")`` → ``"prereqs[0].and[1]"``."""
    return ".".join(path)


class LogicVisitor:
    """Walks a logic AST carrying the source path of each node.

    Subclasses override ``visit_Compare``, ``visit_And``, ``visit_Or`` or
    ``visit_Unknown``; the defaults recurse into children and return
    ``None``.
    """

    def visit(self, node: LogicNode, path: Tuple[str, ...] = ()):
        method = getattr(self, f"visit_{type(node).__name__}", self.generic_visit)
        return method(node, path)

    def generic_visit(self, node: LogicNode, path: Tuple[str, ...]):
        if isinstance(node, (And, Or)):
            tag = "and" if isinstance(node, And) else "or"
            for i, child in enumerate(node.children):
                self.visit(child, path + (f"{tag}[{i}]",))
        return None


class _ComparisonCollector(LogicVisitor):

    def __init__(self):
        self.found: List[Tuple[Compare, Tuple[str, ...]]] = []

    def visit_Compare(self, node: Compare, path: Tuple[str, ...]):
        self.found.append((node, path))


def iter_comparisons(
    node: LogicNode,
    path: Tuple[str, ...] = (),
) -> Iterator[Tuple[Compare, Tuple[str, ...]]]:
    """Yield every :class:`Compare` leaf with its source path, in order."""
    collector = _ComparisonCollector()
    collector.visit(node, path)
    return iter(collector.found)


# ═══════════════════════════════════════════════════════════════════
# Evaluation
# ═══════════════════════════════════════════════════════════════════

def lookup_path(context: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Resolve a dotted path; ``mood`` and ``moodAxes`` alias each other."""
    if not isinstance(context, Mapping) or not isinstance(path, str):
        return default
    head, _, rest = path.partition(".")
    current = context.get(head)
    if current is None and head in _PATH_ALIASES:
        current = context.get(_PATH_ALIASES[head])
    if not rest:
        return default if current is None else current
    for part in rest.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return default if current is None else current


def _numeric(value: Any) -> Optional[float]:
    if not _is_number(value):
        return None
    value = float(value)
    return None if math.isnan(value) else value


def operand_value(operand: Union[Var, Delta], context: Mapping[str, Any]) -> Optional[float]:
    """Numeric operand value, or ``None`` when any input is missing."""
    if isinstance(operand, Delta):
        left = operand_value(operand.left, context)
        right = operand_value(operand.right, context)
        if left is None or right is None:
            return None
        return left - right
    return _numeric(lookup_path(context, operand.path, operand.default))


def evaluate_logic(node: LogicNode, context: Mapping[str, Any]) -> bool:
    """Evaluate with JSON-logic truthiness.

    A comparison whose operand is missing fails; :class:`Unknown` nodes
    pass.
    """
    if isinstance(node, Compare):
        value = operand_value(node.operand, context)
        if value is None:
            return False
        return compare(value, node.operator, node.threshold)
    if isinstance(node, And):
        return all(evaluate_logic(c, context) for c in node.children)
    if isinstance(node, Or):
        return any(evaluate_logic(c, context) for c in node.children)
    return True


def evaluate_prerequisites(
    parsed: Sequence[Tuple[Tuple[str, ...], LogicNode]],
    context: Mapping[str, Any],
) -> bool:
    """True when every parsed prerequisite holds for *context*."""
    return all(evaluate_logic(node, context) for _, node in parsed)


def replace_threshold(
    node: LogicNode,
    var_path: str,
    operator: str,
    old: float,
    new: float,
) -> LogicNode:
    """Copy of *node* with matching comparisons moved to *new*."""
    if isinstance(node, Compare):
        if (node.var_path == var_path and node.operator == operator
                and math.isclose(node.threshold, old, abs_tol=1e-12)):
            return dataclasses.replace(node, threshold=float(new))
        return node
    if isinstance(node, (And, Or)):
        return dataclasses.replace(node, children=tuple(
            replace_threshold(c, var_path, operator, old, new)
            for c in node.children
        ))
    return node
