"""Seeded random simulation states and context construction.

:class:`RandomStateGenerator` draws native-unit mood, sexual and trait
values; :func:`build_context` turns one draw into the context dict every
analyzer consumes, optionally filling in ``emotions`` /
``sexualStates`` from a set of prototypes.

==========  =================================================
setting     behaviour
==========  =================================================
uniform     integer draws over each axis' native range
gaussian    mean at the range centre, σ = range/6, clamped,
            rounded
static      current and previous states drawn independently
dynamic     current = previous + N(0, σ) per axis family
            (``sampling.dynamic_sigma_*``: 15 / 12 / 8)
==========  =================================================

Usage
-----
>>> gen = RandomStateGenerator(seed=7)
>>> state = gen.generate()
>>> ctx = build_context(state, prototypes=registry.get_all("emotion"))
>>> sorted(ctx)[:3]
['affectTraits', 'emotions', 'moodAxes']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .axes import AFFECT_TRAIT_AXES, MOOD_AXES, SEXUAL_AXES, Axis
from .prototypes import Prototype, compute_gated_intensity
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS

logger = logging.getLogger(__name__)

__all__ = [
    "DISTRIBUTIONS",
    "SAMPLING_MODES",
    "SampledState",
    "RandomStateGenerator",
    "build_context",
    "generate_contexts",
]

DISTRIBUTIONS = ("uniform", "gaussian")
SAMPLING_MODES = ("static", "dynamic")


@dataclass(frozen=True)
class SampledState:
    """One draw: current and previous axis values plus traits (native units)."""

    current: Dict[str, Dict[str, float]] = field(default_factory=dict)
    previous: Dict[str, Dict[str, float]] = field(default_factory=dict)
    affect_traits: Dict[str, float] = field(default_factory=dict)


class RandomStateGenerator:
    """Seeded generator of :class:`SampledState` draws.

    Parameters
    ----------
    seed : int, optional
        Seed for :class:`numpy.random.RandomState`.
    distribution : {"uniform", "gaussian"}
    sampling_mode : {"static", "dynamic"}
    thresholds : ThresholdRegistry
        ``sampling.dynamic_sigma_*`` keys.

    Raises
    ------
    ValueError
        On an unknown distribution or sampling mode.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        distribution: str = "uniform",
        sampling_mode: str = "static",
        thresholds: ThresholdRegistry = DEFAULT_THRESHOLDS,
    ):
        if distribution not in DISTRIBUTIONS:
            raise ValueError(
                f"Unknown distribution {distribution!r}; "
                f"expected one of {DISTRIBUTIONS}")
        if sampling_mode not in SAMPLING_MODES:
            raise ValueError(
                f"Unknown sampling mode {sampling_mode!r}; "
                f"expected one of {SAMPLING_MODES}")
        self.distribution = distribution
        self.sampling_mode = sampling_mode
        self._rng = np.random.RandomState(seed)
        self._sigma = {
            "mood": thresholds.get("sampling.dynamic_sigma_mood", 15.0),
            "sexual": thresholds.get("sampling.dynamic_sigma_sexual", 12.0),
            "libido": thresholds.get("sampling.dynamic_sigma_libido", 8.0),
        }

    def __repr__(self) -> str:
        return (f"RandomStateGenerator(distribution={self.distribution!r}, "
                f"sampling_mode={self.sampling_mode!r})")

    # ── per-axis draws ──────────────────────────────────────────

    def _draw(self, axis: Axis) -> float:
        lo, hi = axis.native_min, axis.native_max
        if self.distribution == "gaussian":
            value = self._rng.normal((lo + hi) / 2.0, (hi - lo) / 6.0)
            return float(np.clip(np.round(value), lo, hi))
        return float(self._rng.randint(int(lo), int(hi) + 1))

    def _step(self, axis: Axis, previous: float) -> float:
        if axis.name == "baseline_libido":
            sigma = self._sigma["libido"]
        else:
            sigma = self._sigma[axis.family]
        value = previous + self._rng.normal(0.0, sigma)
        return float(np.clip(np.round(value), axis.native_min, axis.native_max))

    def _draw_axes(self) -> Dict[str, Dict[str, float]]:
        return {
            "mood": {a.name: self._draw(a) for a in MOOD_AXES},
            "sexual": {a.name: self._draw(a) for a in SEXUAL_AXES},
        }

    def generate(self) -> SampledState:
        previous = self._draw_axes()
        if self.sampling_mode == "dynamic":
            current = {
                "mood": {a.name: self._step(a, previous["mood"][a.name])
                         for a in MOOD_AXES},
                "sexual": {a.name: self._step(a, previous["sexual"][a.name])
                           for a in SEXUAL_AXES},
            }
        else:
            current = self._draw_axes()
        traits = {a.name: self._draw(a) for a in AFFECT_TRAIT_AXES}
        return SampledState(current=current, previous=previous,
                            affect_traits=traits)


def _intensities(
    prototypes: Iterable[Prototype],
    mood: Dict[str, float],
    sexual: Dict[str, float],
    traits: Dict[str, float],
) -> Dict[str, Dict[str, float]]:
    raw = {"moodAxes": mood, "sexualAxes": sexual, "affectTraits": traits}
    out: Dict[str, Dict[str, float]] = {"emotion": {}, "sexual": {}}
    for proto in prototypes:
        out.setdefault(proto.type, {})[proto.id] = compute_gated_intensity(proto, raw)
    return out


def build_context(
    state: SampledState,
    prototypes: Optional[Iterable[Prototype]] = None,
) -> Dict[str, Any]:
    """Context dict for one sampled state.

    With *prototypes*, ``emotions``/``sexualStates`` (and their
    ``previous*`` counterparts) hold gated intensities; otherwise they
    are empty.
    """
    mood = dict(state.current.get("mood", {}))
    sexual = dict(state.current.get("sexual", {}))
    prev_mood = dict(state.previous.get("mood", {}))
    prev_sexual = dict(state.previous.get("sexual", {}))
    traits = dict(state.affect_traits)

    protos = list(prototypes or ())
    current = _intensities(protos, mood, sexual, traits)
    previous = _intensities(protos, prev_mood, prev_sexual, traits)
    return {
        "moodAxes": mood,
        "sexualAxes": sexual,
        "affectTraits": traits,
        "emotions": current["emotion"],
        "sexualStates": current["sexual"],
        "previousMoodAxes": prev_mood,
        "previousSexualAxes": prev_sexual,
        "previousEmotions": previous["emotion"],
        "previousSexualStates": previous["sexual"],
    }


def generate_contexts(
    generator: RandomStateGenerator,
    count: int,
    prototypes: Optional[Iterable[Prototype]] = None,
) -> List[Dict[str, Any]]:
    """*count* contexts from *generator*."""
    protos = list(prototypes or ())
    return [build_context(generator.generate(), protos) for _ in range(count)]
