# roomprobe/physics.py
from __future__ import annotations
import math
import numpy as np

# -----------------------------
# Vector math helpers
# -----------------------------

def unit(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=float)
    n = np.linalg.norm(v, axis=-1, keepdims=True)
    n = np.where(n == 0, 1.0, n)
    return v / n

def reflect(dir_in: np.ndarray, n: np.ndarray) -> np.ndarray:
    """Mirror a direction about a surface normal: d - 2 (d·n) n, renormalized."""
    d = np.asarray(dir_in, dtype=float)
    n = unit(n)
    return unit(d - 2.0 * float(np.dot(d, n)) * n)

def rotate(v: np.ndarray, angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    x, y = float(v[0]), float(v[1])
    return np.array([c * x - s * y, s * x + c * y], dtype=float)

def angle_to_vec(angle: float) -> np.ndarray:
    return np.array([math.cos(angle), math.sin(angle)], dtype=float)

def distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))

# -----------------------------
# Compass directions
# -----------------------------

# East, North, West, South
CARDINAL_ANGLES = tuple(i * math.pi / 2.0 for i in range(4))
# East, NE, North, NW, West, SW, South, SE
ALL_ANGLES = tuple(i * math.pi / 4.0 for i in range(8))

def jitter_angle(angle: float, spread: float, rng: np.random.Generator) -> float:
    if spread <= 0:
        return float(angle)
    return float(angle) + float(rng.uniform(-spread, spread))

# -----------------------------
# Scalar helpers
# -----------------------------

def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))

def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t

def inverse_penalty(value: float, scale: float, floor: float, ceiling: float = 1.0) -> float:
    """
    Penalty factor that is 1 at value == 0 and shrinks linearly to `floor`
    as value approaches `scale`: clamp((scale - value) / scale, floor, ceiling).
    """
    if scale <= 0:
        return floor
    return clamp((scale - value) / scale, floor, ceiling)

# -----------------------------
# Absorption falloff with distance to the listener
# -----------------------------

def linear_falloff(dist: float, max_range: float) -> float:
    # 1 - (d - R)/R, i.e. 2 at the listener, 1 at R, 0 at 2R
    r = max(float(max_range), 1e-6)
    return clamp(1.0 - (float(dist) - r) / r, 0.0, 100.0)

def inverse_square_falloff(dist: float, max_range: float = 0.0) -> float:
    d = max(float(dist), 1.0)
    return 5.0 / (5.0 + d * d)

FALLOFFS = {
    "linear": linear_falloff,
    "inverse_square": inverse_square_falloff,
}

def pick_falloff_fn(name: str):
    try:
        return FALLOFFS[str(name).lower()]
    except KeyError:
        raise ValueError(f"Unknown falloff {name!r}; expected one of {sorted(FALLOFFS)}") from None
