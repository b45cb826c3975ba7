# roomprobe/sampling.py
from __future__ import annotations
from dataclasses import dataclass, field
from itertools import chain
from typing import Hashable, Iterable, List, Optional, Sequence, Tuple
import numpy as np

from .config import ACOUSTIC, MIN_HIT_SEGMENT, AcousticVariant
from .geometry import Hit, path_filter, probe_filter
from .logs import get_logger
from .physics import ALL_ANGLES, CARDINAL_ANGLES, angle_to_vec, distance, jitter_angle, pick_falloff_fn
from .tracing import RayState, ReflectiveRaycaster

logger = get_logger(__name__)


@dataclass
class RayStats:
    """What one bounced ray saw."""
    total_range: float = 0.0
    total_absorption: float = 0.0
    bounces: int = 0
    escapes: int = 0
    # polyline of the ray, for debugging and plots
    path: List[np.ndarray] = field(default_factory=list)


def effective_directions(high_resolution: bool) -> Tuple[float, ...]:
    return ALL_ANGLES if high_resolution else CARDINAL_ANGLES


class DirectionCache:
    """Compass angles, recomputed only when the resolution flag flips."""

    def __init__(self, high_resolution: bool = False):
        self._high_resolution = bool(high_resolution)
        self._angles = effective_directions(self._high_resolution)

    def get(self, high_resolution: Optional[bool] = None) -> Tuple[float, ...]:
        if high_resolution is not None and bool(high_resolution) != self._high_resolution:
            self._high_resolution = bool(high_resolution)
            self._angles = effective_directions(self._high_resolution)
        return self._angles

    def bind(self, setting):
        """Follow a live high-resolution setting; returns its unsubscribe handle."""
        return setting.subscribe(lambda v: self.get(v), invoke_immediately=True)

    @property
    def high_resolution(self) -> bool:
        return self._high_resolution


class AcousticSampler:
    def __init__(self, world, attributes, variant: AcousticVariant = ACOUSTIC,
                 rng: Optional[np.random.Generator] = None,
                 raycaster: Optional[ReflectiveRaycaster] = None):
        self.world = world
        self.attributes = attributes
        self.variant = variant
        self.rng = rng if rng is not None else np.random.default_rng()
        self.raycaster = raycaster if raycaster is not None else ReflectiveRaycaster(world)
        self._falloff = pick_falloff_fn(variant.falloff)

    def reseed(self, seed: int) -> None:
        self.rng = np.random.default_rng(int(seed))

    # -----------------------------
    # One ray
    # -----------------------------

    def absorption(self, hit: Hit, attrs, listener_pos: np.ndarray, max_range: float) -> float:
        d = distance(self.world.entity_position(hit.entity), listener_pos)
        return float(attrs.absorption) * self._falloff(d, max_range)

    def bounce_ray(self, state: RayState, listener_pos: np.ndarray, max_bounces: int) -> RayStats:
        stats = RayStats(path=[state.current_pos.copy()])
        escape_at = state.max_range * self.variant.escape_fraction

        for _ in range(max(int(max_bounces), 0) + 1):
            if state.remaining_distance <= MIN_HIT_SEGMENT:
                break
            step = self.raycaster.step(state)

            stats.total_range += state.segment_distance
            stats.path.append(state.current_pos.copy())
            if step.bounced:
                stats.bounces += 1

            # the surface we bounced off absorbs too; count each entity once per segment
            seen = set()
            for hit in chain(step.path, step.probe[:1] if step.bounced else ()):
                if hit.entity in seen:
                    continue
                seen.add(hit.entity)
                attrs = self.attributes.try_get(hit.entity)
                if attrs is None:
                    continue
                stats.total_absorption += self.absorption(hit, attrs, listener_pos, state.max_range)

            # long enough to be considered out in the open
            if state.segment_distance >= escape_at:
                stats.escapes += 1
                break

            if stats.total_range >= state.max_range:
                break

        return stats

    # -----------------------------
    # Many rays
    # -----------------------------

    def cast_many(self, origin, map_id: Hashable, max_range: float, max_bounces: int,
                  directions: Sequence[float], exclude: Iterable[Hashable] = ()) -> List[RayStats]:
        origin = np.asarray(origin, dtype=float)
        exclude = tuple(exclude)
        probe = probe_filter(self.variant.probe_mask, exclude)
        path = path_filter(self.variant.path_mask, exclude)

        results: List[RayStats] = []
        for angle in directions:
            offset = jitter_angle(angle, self.variant.jitter, self.rng)
            state = RayState(
                probe_filter=probe,
                path_filter=path,
                map_id=map_id,
                max_range=max_range,
                current_pos=origin,
                direction=angle_to_vec(offset),
                surface_offset=self.variant.surface_offset,
            )
            results.append(self.bounce_ray(state, origin, max_bounces))
        return results

    def try_sample(self, listener, max_range: float, max_bounces: int,
                   directions: Sequence[float]) -> Optional[List[RayStats]]:
        """All rays for one listener, or None if the listener can't be sampled."""
        if not self.world.is_valid(listener):
            return None
        map_id = self.world.map_of(listener)
        if map_id is None:
            return None
        pos = self.world.entity_position(listener)

        # in space nobody can hear your acoustics
        tile = self.world.tile_ref(map_id, pos)
        if tile is None or self.world.is_vacuum(tile):
            return None

        # the listener doesn't stand in the way of its own rays
        results = self.cast_many(pos, map_id, max_range, max_bounces, directions, exclude=(listener,))
        if not results:
            return None
        return results
