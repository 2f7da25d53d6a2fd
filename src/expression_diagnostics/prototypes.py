"""Prototypes, the prototype registry, and intensity computation.

A prototype is a weighted composite score over normalised axes::

    intensity = clamp(Σ wᵢ·vᵢ / Σ|wᵢ|, 0, 1)

gated by activation preconditions (see :mod:`.gates`).  Gates and
intensity are independent: :func:`compute_intensity` ignores gates,
:func:`compute_gated_intensity` returns 0 when any gate fails.

Prototype definitions are read from a data registry through named
lookups (``core:emotion_prototypes``, ``core:sexual_prototypes``);
:class:`PrototypeRegistry` is the in-memory implementation used by the
analyzers and the tests.

Usage
-----
>>> reg = PrototypeRegistry.from_lookups({
...     "core:emotion_prototypes": {
...         "joy": {"weights": {"valence": 1.0}, "gates": ["valence >= 0.2"]},
...     },
... })
>>> joy = reg.get_prototype("joy")
>>> compute_intensity(joy, {"moodAxes": {"valence": 60}})
0.6
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .axes import normalize_context_axes, resolve_axis_value
from .gates import check_all_gates_pass

logger = logging.getLogger(__name__)

__all__ = [
    "EMOTION_PROTOTYPES_LOOKUP",
    "SEXUAL_PROTOTYPES_LOOKUP",
    "LOOKUP_BY_TYPE",
    "Prototype",
    "PrototypeRegistry",
    "as_normalized_axes",
    "compute_intensity",
    "compute_gated_intensity",
]

EMOTION_PROTOTYPES_LOOKUP = "core:emotion_prototypes"
SEXUAL_PROTOTYPES_LOOKUP = "core:sexual_prototypes"

LOOKUP_BY_TYPE = {
    "emotion": EMOTION_PROTOTYPES_LOOKUP,
    "sexual": SEXUAL_PROTOTYPES_LOOKUP,
}


@dataclass(frozen=True)
class Prototype:
    """An emotion or sexual-state prototype; immutable per analysis run."""

    id: str
    type: str = "emotion"
    weights: Dict[str, float] = field(default_factory=dict)
    gates: Tuple[str, ...] = ()

    @classmethod
    def from_dict(
        cls,
        prototype_id: str,
        data: Mapping[str, Any],
        prototype_type: str = "emotion",
    ) -> "Prototype":
        """Build from a lookup entry ``{"weights": {...}, "gates": [...]}``."""
        weights = data.get("weights") or {}
        gates = data.get("gates") or ()
        return cls(
            id=prototype_id,
            type=data.get("type", prototype_type),
            weights={
                str(k): float(v) for k, v in dict(weights).items()
                if isinstance(v, (int, float)) and not isinstance(v, bool)
            },
            gates=tuple(gates),
        )

    @property
    def weight_sum(self) -> float:
        """``Σ|w|`` — the normalising denominator."""
        return sum(abs(w) for w in self.weights.values())

    @property
    def variable_path(self) -> str:
        """The context path holding this prototype's intensity."""
        ns = "sexualStates" if self.type == "sexual" else "emotions"
        return f"{ns}.{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "weights": dict(self.weights),
            "gates": list(self.gates),
        }


# ═══════════════════════════════════════════════════════════════════
# Intensity
# ═══════════════════════════════════════════════════════════════════

def as_normalized_axes(context_or_axes: Mapping[str, Any]) -> Mapping[str, float]:
    """Accept either a raw context or an already-normalised axis mapping.

    A mapping is treated as a raw context when it carries any of the
    context namespaces (``moodAxes``, ``mood``, ``sexualAxes``,
    ``affectTraits``); otherwise it is assumed to be normalised.
    """
    if any(k in context_or_axes
           for k in ("moodAxes", "mood", "sexualAxes", "affectTraits")):
        return normalize_context_axes(context_or_axes)
    return context_or_axes


def compute_intensity(
    prototype: Prototype,
    context_or_axes: Mapping[str, Any],
) -> float:
    """Weighted, normalised intensity in ``[0, 1]``; gates are ignored.

    Negative raw sums clamp to 0; a prototype with ``Σ|w| = 0`` has
    intensity 0.
    """
    denom = prototype.weight_sum
    if denom == 0:
        return 0.0
    axes = as_normalized_axes(context_or_axes)
    raw = sum(w * resolve_axis_value(axis, axes)
              for axis, w in prototype.weights.items())
    return max(0.0, min(1.0, raw / denom))


def compute_gated_intensity(
    prototype: Prototype,
    context_or_axes: Mapping[str, Any],
) -> float:
    """:func:`compute_intensity`, or 0 when any parseable gate fails."""
    axes = as_normalized_axes(context_or_axes)
    if not check_all_gates_pass(prototype.gates, axes):
        return 0.0
    return compute_intensity(prototype, axes)


# ═══════════════════════════════════════════════════════════════════
# PrototypeRegistry
# ═══════════════════════════════════════════════════════════════════

class PrototypeRegistry:
    """In-memory data registry keyed by lookup id.

    Parameters
    ----------
    lookups : dict
        ``{lookup_id: {prototype_id: {"weights": …, "gates": …}}}``.
        Entries may also be wrapped as ``{"entries": {...}}``.
    """

    def __init__(self, lookups: Optional[Mapping[str, Any]] = None):
        self._lookups: Dict[str, Dict[str, Any]] = {}
        for lookup_id, entries in dict(lookups or {}).items():
            if isinstance(entries, Mapping) and isinstance(
                    entries.get("entries"), Mapping):
                entries = entries["entries"]
            self._lookups[lookup_id] = dict(entries or {})
        self._cache: Dict[Tuple[str, str], Prototype] = {}

    @classmethod
    def from_lookups(cls, lookups: Mapping[str, Any]) -> "PrototypeRegistry":
        return cls(lookups)

    @classmethod
    def from_prototypes(cls, prototypes) -> "PrototypeRegistry":
        """Build from :class:`Prototype` objects."""
        lookups: Dict[str, Dict[str, Any]] = {}
        for p in prototypes:
            lookup = LOOKUP_BY_TYPE.get(p.type, EMOTION_PROTOTYPES_LOOKUP)
            lookups.setdefault(lookup, {})[p.id] = p.to_dict()
        return cls(lookups)

    def __repr__(self) -> str:
        counts = {k: len(v) for k, v in self._lookups.items()}
        return f"PrototypeRegistry({counts})"

    def get_lookup(self, lookup_id: str) -> Optional[Dict[str, Any]]:
        entries = self._lookups.get(lookup_id)
        if entries is None:
            logger.warning(f"Lookup {lookup_id!r} not found in registry")
        return entries

    def get_prototype(
        self,
        prototype_id: str,
        prototype_type: str = "emotion",
    ) -> Optional[Prototype]:
        key = (prototype_type, prototype_id)
        if key in self._cache:
            return self._cache[key]
        entries = self._lookups.get(LOOKUP_BY_TYPE.get(prototype_type, ""), {})
        data = entries.get(prototype_id)
        if not isinstance(data, Mapping):
            return None
        proto = Prototype.from_dict(prototype_id, data, prototype_type)
        self._cache[key] = proto
        return proto

    def get_all(self, prototype_type: str = "emotion") -> List[Prototype]:
        entries = self._lookups.get(LOOKUP_BY_TYPE.get(prototype_type, ""), {})
        out = []
        for pid in entries:
            proto = self.get_prototype(pid, prototype_type)
            if proto is not None:
                out.append(proto)
        return out
