# roomprobe/__init__.py
from __future__ import annotations

# ---- Public config / constants ----
from .config import (
    Layer,
    ALL_MASK,
    DOOR_PASSABLE_MASK,
    AcousticVariant,
    ACOUSTIC,
    ECHO,
    VARIANTS,
    get_variant,
    Setting,
    ProbeSettings,
)

# ---- Logging ----
from .logs import get_logger, setup_logging

# ---- Physics helpers (vectors, compass, penalties, falloff) ----
from .physics import (
    unit,
    reflect,
    rotate,
    angle_to_vec,
    jitter_angle,
    lerp,
    inverse_penalty,
    linear_falloff,
    inverse_square_falloff,
    pick_falloff_fn,
    CARDINAL_ANGLES,
    ALL_ANGLES,
)

# ---- Presets ----
from .presets import (
    PresetThreshold,
    PresetTable,
    REVERB_PRESETS,
    ECHO_PRESETS,
    classify,
)

# ---- Materials ----
from .materials import (
    AcousticAttributes,
    AttributeTable,
    builtin_library,
    load_library,
    merge_libraries,
)

# ---- Geometry / spatial queries ----
from .geometry import (
    Hit,
    IgnoreRule,
    QueryFilter,
    TileRef,
    TileMap,
    MeshScene,
)

# ---- Tracing core ----
from .tracing import (
    RayState,
    StepResult,
    ReflectiveRaycaster,
)

# ---- Sampling / aggregation ----
from .sampling import (
    RayStats,
    AcousticSampler,
    DirectionCache,
    effective_directions,
)
from .aggregate import (
    ListenerContext,
    AggregateSample,
    ProbeResult,
    AcousticProbe,
    aggregate,
)

# ---- Orchestration ----
from .orchestrator import (
    AudioInstance,
    EffectLog,
    AcousticsOrchestrator,
)

# ---- Visualization ----
from .viz import (
    make_fig,
    add_listener,
    add_ray_paths,
)

__all__ = [
    # Config
    "Layer", "ALL_MASK", "DOOR_PASSABLE_MASK",
    "AcousticVariant", "ACOUSTIC", "ECHO", "VARIANTS", "get_variant",
    "Setting", "ProbeSettings",
    # Logging
    "get_logger", "setup_logging",
    # Physics
    "unit", "reflect", "rotate", "angle_to_vec", "jitter_angle", "lerp",
    "inverse_penalty", "linear_falloff", "inverse_square_falloff",
    "pick_falloff_fn", "CARDINAL_ANGLES", "ALL_ANGLES",
    # Presets
    "PresetThreshold", "PresetTable", "REVERB_PRESETS", "ECHO_PRESETS", "classify",
    # Materials
    "AcousticAttributes", "AttributeTable", "builtin_library",
    "load_library", "merge_libraries",
    # Geometry
    "Hit", "IgnoreRule", "QueryFilter", "TileRef", "TileMap", "MeshScene",
    # Tracing
    "RayState", "StepResult", "ReflectiveRaycaster",
    # Sampling / aggregation
    "RayStats", "AcousticSampler", "DirectionCache", "effective_directions",
    "ListenerContext", "AggregateSample", "ProbeResult", "AcousticProbe", "aggregate",
    # Orchestration
    "AudioInstance", "EffectLog", "AcousticsOrchestrator",
    # Viz
    "make_fig", "add_listener", "add_ray_paths",
]
