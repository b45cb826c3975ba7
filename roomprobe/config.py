# roomprobe/config.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from .physics import pick_falloff_fn
from .presets import PresetTable, REVERB_PRESETS, ECHO_PRESETS

T = TypeVar("T")


# -----------------------------
# Collision layers
# -----------------------------

class Layer(IntFlag):
    NONE = 0
    IMPASSABLE = 1 << 0       # walls, windows, closed doors
    MID_IMPASSABLE = 1 << 1   # tables, racks, machines
    LOW_IMPASSABLE = 1 << 2   # crates, low furniture
    OPAQUE = 1 << 3
    ITEM = 1 << 4
    MOB = 1 << 5


ALL_MASK = int(Layer.IMPASSABLE | Layer.MID_IMPASSABLE | Layer.LOW_IMPASSABLE
               | Layer.OPAQUE | Layer.ITEM | Layer.MOB)
# what a ray passing through an open doorway still runs into
DOOR_PASSABLE_MASK = int(Layer.MID_IMPASSABLE | Layer.LOW_IMPASSABLE | Layer.ITEM)

# Stepper numerics
MIN_HIT_SEGMENT = 1e-4
MIN_FORWARD_SEGMENT = 0.05
DEFAULT_SURFACE_OFFSET = 0.05


# -----------------------------
# Tuning variants
# -----------------------------

@dataclass(frozen=True)
class AcousticVariant:
    """
    Tuning for one flavour of the bounce/aggregate pipeline.

    Both shipped variants share the kernel and differ only in these numbers:
    how far a single segment must run before the ray counts as escaped, how
    absorption decays with distance from the listener, and how hard the
    aggregate is penalised for absorption, escapes and a missing roof.
    """
    name: str
    presets: PresetTable
    escape_fraction: float
    falloff: str                          # "linear" | "inverse_square"
    jitter: float                         # radians, uniform +-jitter per ray
    escape_mode: str                      # "sum" | "mean"
    escape_scale: Optional[float]         # None -> number of rays cast
    escape_floor: float
    no_roof_penalty: float
    absorption_scale: float = 100.0
    absorption_floor: float = 0.01
    absorption_ceiling: float = 1.0
    smoothing: float = 0.25
    surface_offset: float = DEFAULT_SURFACE_OFFSET
    probe_mask: int = int(Layer.IMPASSABLE)
    path_mask: int = ALL_MASK

    def __post_init__(self):
        pick_falloff_fn(self.falloff)
        if self.escape_mode not in ("sum", "mean"):
            raise ValueError(f"escape_mode must be 'sum' or 'mean', got {self.escape_mode!r}")
        if not 0.0 < self.escape_fraction <= 1.0:
            raise ValueError("escape_fraction must be in (0, 1]")
        if not 0.0 < self.smoothing <= 1.0:
            raise ValueError("smoothing must be in (0, 1]")
        if self.absorption_floor <= 0.0 or self.escape_floor < 0.0:
            raise ValueError("penalty floors must be positive")

    @property
    def max_range(self) -> float:
        return self.presets.maximum

    @property
    def min_magnitude(self) -> float:
        return self.presets.minimum


ACOUSTIC = AcousticVariant(
    name="acoustic",
    presets=REVERB_PRESETS,
    escape_fraction=0.30,
    falloff="inverse_square",
    jitter=0.3,
    escape_mode="sum",
    escape_scale=None,
    escape_floor=0.10,
    no_roof_penalty=0.10,
    absorption_ceiling=1.3,
    probe_mask=ALL_MASK,
    path_mask=ALL_MASK,
)

ECHO = AcousticVariant(
    name="echo",
    presets=ECHO_PRESETS,
    escape_fraction=0.45,
    falloff="linear",
    jitter=1.0,
    escape_mode="mean",
    escape_scale=100.0,
    escape_floor=0.01,
    no_roof_penalty=0.3,
    probe_mask=int(Layer.IMPASSABLE),
    path_mask=DOOR_PASSABLE_MASK,
)

VARIANTS: Dict[str, AcousticVariant] = {v.name: v for v in (ACOUSTIC, ECHO)}


def get_variant(name: str) -> AcousticVariant:
    try:
        return VARIANTS[str(name).lower()]
    except KeyError:
        raise ValueError(f"Unknown variant {name!r}; expected one of {sorted(VARIANTS)}") from None


# -----------------------------
# Live settings
# -----------------------------

class Setting(Generic[T]):
    """A named value that tells its subscribers when it changes."""

    def __init__(self, name: str, default: T, coerce: Optional[Callable[[Any], T]] = None):
        self.name = name
        self._coerce = coerce
        self._value: T = self._apply(default)
        self._subscribers: List[Callable[[T], None]] = []

    def _apply(self, value: Any) -> T:
        return self._coerce(value) if self._coerce is not None else value

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: Any) -> None:
        new = self._apply(value)
        if new == self._value:
            return
        self._value = new
        for cb in list(self._subscribers):
            cb(new)

    def subscribe(self, callback: Callable[[T], None], invoke_immediately: bool = True) -> Callable[[], None]:
        self._subscribers.append(callback)
        if invoke_immediately:
            callback(self._value)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def __repr__(self) -> str:
        return f"Setting({self.name}={self._value!r})"


REFLECTION_COUNT_MIN = 1
REFLECTION_COUNT_MAX = 16


def _reflection_count(v: Any) -> int:
    return max(REFLECTION_COUNT_MIN, min(REFLECTION_COUNT_MAX, int(v)))


def _interval(v: Any) -> float:
    v = float(v)
    if v <= 0:
        raise ValueError("recalculation_interval must be positive")
    return v


@dataclass
class ProbeSettings:
    enabled: Setting[bool] = field(
        default_factory=lambda: Setting("acoustics.enable", True, bool))
    # 8 compass directions instead of 4
    high_resolution: Setting[bool] = field(
        default_factory=lambda: Setting("acoustics.high_resolution", False, bool))
    reflection_count: Setting[int] = field(
        default_factory=lambda: Setting("acoustics.reflection_count", 6, _reflection_count))
    # seconds between periodic recomputes
    recalculation_interval: Setting[float] = field(
        default_factory=lambda: Setting("acoustics.recalculation_interval", 15.0, _interval))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProbeSettings":
        s = cls()
        known = s.as_dict()
        for key, value in data.items():
            if key not in known:
                raise KeyError(f"Unknown setting {key!r}")
            getattr(s, key).set(value)
        return s

    def as_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled.value,
            "high_resolution": self.high_resolution.value,
            "reflection_count": self.reflection_count.value,
            "recalculation_interval": self.recalculation_interval.value,
        }
