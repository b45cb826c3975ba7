# roomprobe/tracing.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional
import numpy as np

from .config import DEFAULT_SURFACE_OFFSET, MIN_FORWARD_SEGMENT, MIN_HIT_SEGMENT
from .geometry import Hit, QueryFilter
from .logs import get_logger
from .physics import distance, reflect, unit

logger = get_logger(__name__)


@dataclass
class RayState:
    """
    Mutable state of one in-flight bouncing ray.

    Owned by a single computation and fed back into
    ReflectiveRaycaster.step() once per bounce. Never share one between
    rays that are in flight at the same time.
    """
    probe_filter: QueryFilter
    path_filter: QueryFilter
    map_id: Hashable
    max_range: float
    current_pos: np.ndarray
    direction: np.ndarray
    old_pos: np.ndarray = None
    remaining_distance: float = None
    segment_distance: float = 0.0
    translation: np.ndarray = None
    probe_translation: np.ndarray = None
    hit_normal: Optional[np.ndarray] = None
    surface_offset: float = DEFAULT_SURFACE_OFFSET

    def __post_init__(self):
        self.max_range = float(self.max_range)
        if self.max_range <= 0:
            raise ValueError("max_range must be positive")
        self.reset(self.current_pos, self.direction)

    def reset(self, origin, direction) -> None:
        """Re-arm the state for a fresh ray from origin."""
        self.current_pos = np.asarray(origin, dtype=float).copy()
        self.old_pos = self.current_pos.copy()
        self.direction = unit(direction)
        self.remaining_distance = self.max_range
        self.segment_distance = 0.0
        self.hit_normal = None
        self.translation = self.direction * self.max_range
        self.probe_translation = self.translation.copy()

    def as_dict(self) -> Dict[str, str]:
        return {
            "current_pos": f"{self.current_pos}",
            "old_pos": f"{self.old_pos}",
            "direction": f"{self.direction}",
            "max_range": f"{self.max_range}",
            "remaining_distance": f"{self.remaining_distance}",
            "segment_distance": f"{self.segment_distance}",
            "map_id": f"{self.map_id}",
            "translation": f"{self.translation}",
            "probe_translation": f"{self.probe_translation}",
            "hit_normal": f"{self.hit_normal}",
        }


@dataclass
class StepResult:
    probe: List[Hit] = field(default_factory=list)
    path: List[Hit] = field(default_factory=list)
    bounced: bool = False


class ReflectiveRaycaster:
    """
    Probe-then-path ray stepping over a spatial query backend.

    Each step casts a probe to find the nearest reflective obstacle within the
    remaining budget, then a path ray over the resolved segment to collect
    everything the filter lets through. A probe hit reflects the ray.
    """

    def __init__(self, world):
        self.world = world

    def step(self, state: RayState) -> StepResult:
        reach = max(float(state.remaining_distance), 0.0)
        # budget spent; leave the state alone
        if reach <= MIN_HIT_SEGMENT:
            return StepResult()
        state.probe_translation = state.direction * reach
        probe = self.world.cast(state.map_id, state.current_pos, state.probe_translation, state.probe_filter)

        if probe:
            normal = self._world_normal(probe[0])
            if normal is not None:
                self.update_to_pos(state, probe[0].point)
                path = self.world.cast(state.map_id, state.old_pos, state.translation, state.path_filter)
                state.hit_normal = normal
                self.update_reflect(state)
                return StepResult(probe=probe, path=path, bounced=True)

        state.translation = state.direction * reach
        path = self.world.cast(state.map_id, state.current_pos, state.translation, state.path_filter)
        self.update_forward(state)
        return StepResult(probe=probe, path=path, bounced=False)

    def cast(self, state: RayState, max_iterations: int, use_range_budget: bool = True) -> List[StepResult]:
        """
        Step repeatedly; with use_range_budget, stop once the travelled range
        reaches max_range or the remaining budget is spent. Without it, steps
        past the budget are empty and leave the state unchanged.
        """
        total = 0.0
        results: List[StepResult] = []
        for _ in range(int(max_iterations)):
            if use_range_budget and state.remaining_distance <= MIN_HIT_SEGMENT:
                break
            results.append(self.step(state))
            total += state.segment_distance
            if use_range_budget and total >= state.max_range:
                break
        return results

    def _world_normal(self, hit: Hit) -> Optional[np.ndarray]:
        if hit.local_normal is None:
            if __debug__:
                raise AssertionError(f"probe hit on {hit.entity!r} carries no surface normal")
            logger.warning("probe hit on %r carries no surface normal; continuing forward", hit.entity)
            return None
        return unit(self.world.normal_to_world(hit.entity, hit.local_normal))

    # -----------------------------
    # State updates
    # -----------------------------

    @staticmethod
    def update_to_pos(state: RayState, world_hit_pos) -> None:
        state.old_pos = state.current_pos
        state.current_pos = np.asarray(world_hit_pos, dtype=float).copy()

        state.segment_distance = max(MIN_HIT_SEGMENT, distance(state.old_pos, state.current_pos))
        state.remaining_distance -= state.segment_distance

        state.translation = state.direction * state.segment_distance

    @staticmethod
    def update_forward(state: RayState) -> None:
        state.old_pos = state.current_pos
        state.current_pos = state.old_pos + state.translation

        state.segment_distance = max(MIN_FORWARD_SEGMENT, distance(state.old_pos, state.current_pos))
        state.remaining_distance -= state.segment_distance

        state.translation = state.direction * state.segment_distance

    @staticmethod
    def update_reflect(state: RayState) -> None:
        n = state.hit_normal
        assert n is not None, "can't reflect without a surface normal"
        # face the normal back toward where the ray came from
        if float(np.dot(state.direction, n)) > 0:
            n = -n
            state.hit_normal = n

        state.current_pos = state.current_pos + n * state.surface_offset
        state.direction = reflect(state.direction, n)

        state.translation = state.direction * state.segment_distance
        state.probe_translation = state.direction * max(float(state.remaining_distance), 0.0)
