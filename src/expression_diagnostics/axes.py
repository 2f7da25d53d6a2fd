"""Canonical simulation axes and context normalisation.

Every axis a prototype weight or gate may reference is declared here
with its native range (the integer scale stored in simulation
contexts) and its normalised range (the scale weights and gates are
written against).

=====================  ========  ===============  ==============
axis family            domain    native range     normalised
=====================  ========  ===============  ==============
mood (8 axes)          integer   [-100, 100]      [-1, 1]
sex_excitation/inhib.  integer   [0, 100]         [0, 1]
baseline_libido        integer   [-50, 50]        [-0.5, 0.5]
affect traits (3)      integer   [0, 100]         [0, 1]
sexual_arousal         derived   —                [0, 1]
=====================  ========  ===============  ==============

:func:`normalize_context_axes` always enumerates the full canonical set.
An axis missing from a context contributes its default (0, or the
trait default of 50) instead of being dropped, so the weighted sum and
its ``Σ|w|`` denominator always cover the same axes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

__all__ = [
    "Axis",
    "MOOD_AXES",
    "SEXUAL_AXES",
    "AFFECT_TRAIT_AXES",
    "CANONICAL_AXES",
    "AXIS_NAMESPACES",
    "INTEGER_NAMESPACES",
    "DEFAULT_TRAIT_VALUE",
    "get_axis",
    "normalized_range",
    "compute_sexual_arousal",
    "normalize_context_axes",
    "resolve_axis_value",
    "is_axis_path",
    "is_integer_path",
    "axis_name_from_path",
]


@dataclass(frozen=True)
class Axis:
    """One continuous simulation dimension."""

    name: str
    family: str                 # "mood" | "sexual" | "trait"
    native_min: float
    native_max: float
    scale: float = 100.0
    integer: bool = True
    default: float = 0.0        # native units

    @property
    def normalized_min(self) -> float:
        return self.native_min / self.scale

    @property
    def normalized_max(self) -> float:
        return self.native_max / self.scale

    def normalize(self, raw: float) -> float:
        """Map a native value onto the normalised scale (clamped)."""
        value = float(raw) / self.scale
        return max(self.normalized_min, min(self.normalized_max, value))


def _mood(name: str) -> Axis:
    return Axis(name, "mood", -100.0, 100.0)


MOOD_AXES: Tuple[Axis, ...] = tuple(_mood(n) for n in (
    "valence",
    "arousal",
    "agency_control",
    "threat",
    "engagement",
    "future_expectancy",
    "self_evaluation",
    "affiliation",
))

SEXUAL_AXES: Tuple[Axis, ...] = (
    Axis("sex_excitation", "sexual", 0.0, 100.0),
    Axis("sex_inhibition", "sexual", 0.0, 100.0),
    Axis("baseline_libido", "sexual", -50.0, 50.0),
)

DEFAULT_TRAIT_VALUE = 50.0

AFFECT_TRAIT_AXES: Tuple[Axis, ...] = tuple(
    Axis(n, "trait", 0.0, 100.0, default=DEFAULT_TRAIT_VALUE)
    for n in ("affective_empathy", "cognitive_empathy", "harm_aversion")
)

CANONICAL_AXES: Dict[str, Axis] = {
    a.name: a for a in MOOD_AXES + SEXUAL_AXES + AFFECT_TRAIT_AXES
}

# Context namespaces holding raw axis values.  ``mood`` is a legacy alias.
AXIS_NAMESPACES = frozenset({"moodAxes", "mood", "sexualAxes", "affectTraits"})

# Namespaces whose values are native integers (sensitivity step = 1).
INTEGER_NAMESPACES = AXIS_NAMESPACES | frozenset({
    "previousMoodAxes", "previousSexualAxes",
})

_AXIS_ALIASES = {
    "SA": "sexual_arousal",
    "sexual_inhibition": "sex_inhibition",
}

_FAMILY_NAMESPACES = {
    "mood": ("moodAxes", "mood"),
    "sexual": ("sexualAxes",),
    "trait": ("affectTraits",),
}


def get_axis(name: str) -> Optional[Axis]:
    """Return the canonical :class:`Axis` for *name* (aliases resolved)."""
    return CANONICAL_AXES.get(_AXIS_ALIASES.get(name, name))


def normalized_range(name: str) -> Tuple[float, float]:
    """Normalised ``(lo, hi)`` for *name*; unknown axes get ``(-1, 1)``."""
    resolved = _AXIS_ALIASES.get(name, name)
    if resolved == "sexual_arousal":
        return (0.0, 1.0)
    axis = CANONICAL_AXES.get(resolved)
    if axis is None:
        return (-1.0, 1.0)
    return (axis.normalized_min, axis.normalized_max)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def compute_sexual_arousal(sexual_axes: Mapping[str, Any]) -> float:
    """``clamp01((excitation − inhibition + baseline_libido) / 100)``."""
    exc = _number(sexual_axes.get("sex_excitation")) or 0.0
    inh = _number(sexual_axes.get("sex_inhibition"))
    if inh is None:
        inh = _number(sexual_axes.get("sexual_inhibition")) or 0.0
    lib = _number(sexual_axes.get("baseline_libido")) or 0.0
    return max(0.0, min(1.0, (exc - inh + lib) / 100.0))


def _raw_namespace(context: Mapping[str, Any], family: str) -> Mapping[str, Any]:
    for ns in _FAMILY_NAMESPACES[family]:
        values = context.get(ns)
        if isinstance(values, Mapping):
            return values
    return {}


def normalize_context_axes(context: Mapping[str, Any]) -> Dict[str, float]:
    """Normalise every canonical axis in *context*.

    Parameters
    ----------
    context : dict
        Simulation snapshot with raw ``moodAxes`` / ``sexualAxes`` /
        ``affectTraits`` namespaces.  An optional ``sexualArousal`` value
        overrides the derived arousal.

    Returns
    -------
    dict
        ``{axis: normalised value}`` for all canonical axes plus
        ``sexual_arousal``.  Missing or non-numeric entries fall back to
        the axis default.
    """
    if not isinstance(context, Mapping):
        context = {}
    out: Dict[str, float] = {}
    for family in ("mood", "sexual", "trait"):
        raw_values = _raw_namespace(context, family)
        for axis in CANONICAL_AXES.values():
            if axis.family != family:
                continue
            raw = _number(raw_values.get(axis.name))
            if raw is None and axis.name == "sex_inhibition":
                raw = _number(raw_values.get("sexual_inhibition"))
            out[axis.name] = axis.normalize(axis.default if raw is None else raw)

    arousal = _number(context.get("sexualArousal"))
    if arousal is None:
        arousal = compute_sexual_arousal(_raw_namespace(context, "sexual"))
    out["sexual_arousal"] = max(0.0, min(1.0, arousal))
    return out


def resolve_axis_value(axis: str, normalized_axes: Mapping[str, float]) -> float:
    """Look up *axis* (aliases resolved); a missing axis contributes 0."""
    return float(normalized_axes.get(_AXIS_ALIASES.get(axis, axis), 0.0))


# ── variable paths ──────────────────────────────────────────────

def _namespace(path: str) -> str:
    return path.split(".", 1)[0] if isinstance(path, str) else ""


def is_axis_path(path: str) -> bool:
    """True when *path* addresses a raw axis namespace."""
    return _namespace(path) in AXIS_NAMESPACES


def is_integer_path(path: str) -> bool:
    """True when *path* holds native integer axis values."""
    return _namespace(path) in INTEGER_NAMESPACES


def axis_name_from_path(path: str) -> Optional[str]:
    """``"moodAxes.valence"`` → ``"valence"``; ``None`` for non-axis paths."""
    if not is_axis_path(path) or "." not in path:
        return None
    return path.split(".", 1)[1]
