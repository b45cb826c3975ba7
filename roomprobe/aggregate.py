# roomprobe/aggregate.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Hashable, List, Optional, Sequence
import numpy as np

from .config import ACOUSTIC, AcousticVariant
from .logs import get_logger
from .physics import inverse_penalty, lerp
from .sampling import AcousticSampler, RayStats, effective_directions

logger = get_logger(__name__)


class ListenerContext:
    """Smoothing cell for one listener; lives from attach to detach."""

    def __init__(self, listener: Hashable):
        self.listener = listener
        self.previous_magnitude: Optional[float] = None

    def smooth(self, raw: float, factor: float) -> float:
        value = float(raw)
        if self.previous_magnitude is not None:
            value = lerp(self.previous_magnitude, value, factor)
        self.previous_magnitude = value
        return value

    def reset(self) -> None:
        self.previous_magnitude = None

    def __repr__(self) -> str:
        return f"ListenerContext({self.listener!r}, previous={self.previous_magnitude!r})"


@dataclass
class AggregateSample:
    rays: int
    avg_range: float
    avg_absorption: float
    escapes: float
    avg_bounces: float
    smoothed_range: float
    absorption_factor: float
    escape_factor: float
    roof_factor: float
    magnitude: float


def aggregate(stats: Sequence[RayStats], variant: AcousticVariant = ACOUSTIC,
              context: Optional[ListenerContext] = None, uncovered: bool = False) -> AggregateSample:
    """Reduce per-ray statistics into one non-negative magnitude."""
    if not stats:
        raise ValueError("aggregate() needs at least one ray")
    n = len(stats)
    avg_range = float(np.mean([s.total_range for s in stats]))
    avg_absorption = float(np.mean([s.total_absorption for s in stats]))
    avg_bounces = float(np.mean([s.bounces for s in stats]))
    escaped = [s.escapes for s in stats]
    escapes = float(np.sum(escaped)) if variant.escape_mode == "sum" else float(np.mean(escaped))

    # damp frame-to-frame jitter from the random direction offsets
    smoothed = context.smooth(avg_range, variant.smoothing) if context is not None else avg_range

    absorption_factor = inverse_penalty(avg_absorption, variant.absorption_scale,
                                        variant.absorption_floor, variant.absorption_ceiling)
    escape_scale = float(n) if variant.escape_scale is None else float(variant.escape_scale)
    escape_factor = inverse_penalty(escapes, escape_scale, variant.escape_floor, 1.0)
    roof_factor = float(variant.no_roof_penalty) if uncovered else 1.0

    magnitude = max(0.0, smoothed * absorption_factor * escape_factor * roof_factor)

    sample = AggregateSample(
        rays=n,
        avg_range=avg_range,
        avg_absorption=avg_absorption,
        escapes=escapes,
        avg_bounces=avg_bounces,
        smoothed_range=smoothed,
        absorption_factor=absorption_factor,
        escape_factor=escape_factor,
        roof_factor=roof_factor,
        magnitude=magnitude,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "aggregate[%s]: rays=%d range=%.2f smoothed=%.2f absorb=%.3f (x%.3f) escapes=%.2f (x%.3f) roof x%.2f -> %.2f",
            variant.name, n, avg_range, smoothed, avg_absorption, absorption_factor,
            escapes, escape_factor, roof_factor, magnitude,
        )
    return sample


@dataclass
class ProbeResult:
    sample: AggregateSample
    rays: List[RayStats]
    preset: str

    @property
    def magnitude(self) -> float:
        return self.sample.magnitude


class AcousticProbe:
    """
    Samples the environment around listeners and turns it into a magnitude.

    One ListenerContext per listener holds the smoothing state; call attach()
    when a listener appears and detach() when it goes away.
    """

    def __init__(self, world, attributes, variant: AcousticVariant = ACOUSTIC,
                 rng: Optional[np.random.Generator] = None,
                 sampler: Optional[AcousticSampler] = None):
        self.world = world
        self.variant = variant
        self.sampler = sampler if sampler is not None else AcousticSampler(world, attributes, variant, rng=rng)
        self.contexts: Dict[Hashable, ListenerContext] = {}

    # ---- listener lifecycle ----

    def attach(self, listener: Hashable) -> ListenerContext:
        ctx = self.contexts.get(listener)
        if ctx is None:
            ctx = ListenerContext(listener)
            self.contexts[listener] = ctx
        return ctx

    def detach(self, listener: Hashable) -> None:
        self.contexts.pop(listener, None)

    # ---- queries ----

    def is_uncovered(self, listener: Hashable) -> bool:
        """True only when the listener's tile resolves and reports no roof."""
        map_id = self.world.map_of(listener)
        if map_id is None:
            return False
        tile = self.world.tile_ref(map_id, self.world.entity_position(listener))
        if tile is None:
            return False
        return self.world.is_rooved(tile) is False

    def try_compute(self, listener: Hashable, max_range: Optional[float] = None, max_bounces: int = 6,
                    directions: Optional[Sequence[float]] = None) -> Optional[ProbeResult]:
        max_range = self.variant.max_range if max_range is None else float(max_range)
        directions = effective_directions(False) if directions is None else directions

        rays = self.sampler.try_sample(listener, max_range, max_bounces, directions)
        if rays is None:
            logger.debug("no acoustic data for listener %r", listener)
            return None

        sample = aggregate(rays, self.variant, self.attach(listener), self.is_uncovered(listener))
        return ProbeResult(sample=sample, rays=rays, preset=self.classify(sample.magnitude))

    def try_compute_magnitude(self, listener: Hashable, max_range: Optional[float] = None,
                              max_bounces: int = 6, directions: Optional[Sequence[float]] = None) -> Optional[float]:
        result = self.try_compute(listener, max_range, max_bounces, directions)
        return None if result is None else result.magnitude

    def classify(self, magnitude: float) -> str:
        return self.variant.presets.classify(magnitude)
