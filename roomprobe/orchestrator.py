# roomprobe/orchestrator.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, List, Optional, Protocol, Tuple
import numpy as np

from .aggregate import AcousticProbe
from .config import ProbeSettings
from .logs import get_logger
from .physics import distance
from .sampling import DirectionCache

logger = get_logger(__name__)


@dataclass
class AudioInstance:
    """
    A positional sound the orchestrator may treat with a reverb preset.

    ``treatment`` is None while untreated, otherwise the applied preset id.
    ``position`` is None when the sound has no resolvable parent (e.g. the
    listener is its source), which skips the range check.
    """
    id: Hashable
    position: Optional[np.ndarray] = None
    max_distance: float = 20.0
    is_global: bool = False
    loaded: bool = True
    stopped: bool = False
    terminating: bool = False
    treatment: Optional[str] = None

    @property
    def treated(self) -> bool:
        return self.treatment is not None


class AudioEffects(Protocol):
    def apply_preset(self, instance: AudioInstance, preset: str) -> None: ...
    def remove_preset(self, instance: AudioInstance) -> None: ...


@dataclass
class EffectLog:
    """In-memory audio subsystem: remembers what was asked of it."""
    active: Dict[Hashable, str] = field(default_factory=dict)
    calls: List[Tuple[str, Hashable, Optional[str]]] = field(default_factory=list)

    def apply_preset(self, instance: AudioInstance, preset: str) -> None:
        self.calls.append(("apply", instance.id, preset))
        self.active[instance.id] = preset

    def remove_preset(self, instance: AudioInstance) -> None:
        self.calls.append(("remove", instance.id, None))
        self.active.pop(instance.id, None)


class AcousticsOrchestrator:
    """
    Decides when to resample the listener's surroundings and which preset each
    audio instance gets.

    Nothing here subscribes to world events. The host calls attach_listener /
    detach_listener when the local listener changes, on_parent_changed when an
    instance moves between parents, and update(now) every tick.
    """

    def __init__(self, probe: AcousticProbe, effects: AudioEffects, settings: Optional[ProbeSettings] = None):
        self.probe = probe
        self.world = probe.world
        self.effects = effects
        self.settings = settings if settings is not None else ProbeSettings()
        self.listener: Optional[Hashable] = None
        self.instances: Dict[Hashable, AudioInstance] = {}
        self._directions = DirectionCache()
        self._last_update: Optional[float] = None
        self._unsubscribe: List[Callable[[], None]] = [
            self._directions.bind(self.settings.high_resolution),
            self.settings.enabled.subscribe(self._on_enabled_changed, invoke_immediately=False),
        ]

    def close(self) -> None:
        for unsub in self._unsubscribe:
            unsub()
        self._unsubscribe = []

    def _on_enabled_changed(self, enabled: bool) -> None:
        logger.info("acoustics %s", "enabled" if enabled else "disabled")

    @property
    def directions(self):
        return self._directions.get()

    # ---- listener ----

    def attach_listener(self, entity: Hashable) -> None:
        if self.listener is not None and self.listener != entity:
            self.probe.detach(self.listener)
        self.listener = entity
        self.probe.attach(entity)
        logger.info("listener attached: %r", entity)
        self.recompute_all()

    def detach_listener(self) -> None:
        if self.listener is None:
            return
        self.probe.detach(self.listener)
        logger.info("listener detached: %r", self.listener)
        self.listener = None

    # ---- instances ----

    def add_instance(self, instance: AudioInstance) -> AudioInstance:
        self.instances[instance.id] = instance
        return instance

    def remove_instance(self, instance_id: Hashable) -> Optional[AudioInstance]:
        return self.instances.pop(instance_id, None)

    # ---- triggers ----

    def update(self, now: float) -> int:
        """Periodic tick; recomputes every eligible instance once per interval."""
        interval = self.settings.recalculation_interval.value
        if self._last_update is not None and now - self._last_update < interval:
            return 0
        self._last_update = float(now)
        return self.recompute_all()

    def on_parent_changed(self, instance: AudioInstance) -> Optional[str]:
        if not self.can_process(instance):
            return instance.treatment
        return self.process(instance)

    def recompute_all(self) -> int:
        """One aggregation pass for the listener, shared by every eligible instance."""
        eligible = [inst for inst in self.instances.values() if self.can_process(inst)]
        if not eligible:
            return 0
        magnitude = self._magnitude()
        for inst in eligible:
            self._apply(inst, magnitude)
        return len(eligible)

    # ---- gate + pipeline ----

    def can_process(self, instance: AudioInstance) -> bool:
        if not self.settings.enabled.value:
            return False
        # rays are cast from the listener
        if self.listener is None or not self.world.is_valid(self.listener):
            return False
        if instance.terminating:
            return False
        if not instance.loaded or instance.is_global or instance.stopped:
            return False
        if instance.position is None:
            return True

        d = distance(instance.position, self.world.entity_position(self.listener))
        if d <= 1e-7:
            return False
        return d <= instance.max_distance

    def process(self, instance: AudioInstance) -> Optional[str]:
        return self._apply(instance, self._magnitude())

    def _magnitude(self) -> float:
        magnitude = self.probe.try_compute_magnitude(
            self.listener,
            max_range=self.probe.variant.max_range,
            max_bounces=self.settings.reflection_count.value,
            directions=self.directions,
        )
        # no data counts as a dead room
        return 0.0 if magnitude is None else magnitude

    def _apply(self, instance: AudioInstance, magnitude: float) -> Optional[str]:
        if magnitude > self.probe.variant.min_magnitude:
            preset = self.probe.classify(magnitude)
            self.effects.apply_preset(instance, preset)
            if instance.treatment != preset:
                logger.info("instance %r: %s -> %s (magnitude %.2f)",
                            instance.id, instance.treatment or "untreated", preset, magnitude)
            instance.treatment = preset
        else:
            self.effects.remove_preset(instance)
            if instance.treatment is not None:
                logger.info("instance %r: %s -> untreated (magnitude %.2f)",
                            instance.id, instance.treatment, magnitude)
            instance.treatment = None
        return instance.treatment
