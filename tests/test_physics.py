import math

import numpy as np
import pytest

from roomprobe.physics import (
    ALL_ANGLES, CARDINAL_ANGLES, angle_to_vec, clamp, inverse_penalty, inverse_square_falloff, jitter_angle,
    lerp, linear_falloff, pick_falloff_fn, reflect, rotate, unit,
)


def test_reflection_law_holds_for_random_vectors():
    rng = np.random.default_rng(7)
    for _ in range(200):
        d = unit(rng.normal(size=2))
        n = unit(rng.normal(size=2))
        r = reflect(d, n)
        assert np.dot(r, n) == pytest.approx(-np.dot(d, n), abs=1e-9)
        assert np.linalg.norm(r) == pytest.approx(1.0, abs=1e-9)


def test_reflect_head_on():
    assert np.allclose(reflect([-1.0, 0.0], [1.0, 0.0]), [1.0, 0.0])


def test_reflect_normalizes_normal():
    assert np.allclose(reflect([0.0, -1.0], [0.0, 3.0]), [0.0, 1.0])


def test_unit_guards_zero_vector():
    assert np.allclose(unit([0.0, 0.0]), [0.0, 0.0])


def test_rotate_quarter_turn():
    assert np.allclose(rotate([1.0, 0.0], math.pi / 2), [0.0, 1.0])


def test_compass_sets():
    assert len(CARDINAL_ANGLES) == 4
    assert len(ALL_ANGLES) == 8
    assert np.allclose(angle_to_vec(CARDINAL_ANGLES[1]), [0.0, 1.0], atol=1e-12)
    assert set(CARDINAL_ANGLES) <= set(ALL_ANGLES)


def test_jitter_stays_in_band():
    rng = np.random.default_rng(0)
    vals = [jitter_angle(1.0, 0.3, rng) for _ in range(500)]
    assert min(vals) >= 0.7 and max(vals) <= 1.3
    assert jitter_angle(1.0, 0.0, rng) == 1.0


def test_scalar_helpers():
    assert clamp(5, 0, 1) == 1
    assert lerp(0.0, 40.0, 0.25) == pytest.approx(10.0)
    assert inverse_penalty(0.0, 100.0, 0.01) == 1.0
    assert inverse_penalty(50.0, 100.0, 0.01) == pytest.approx(0.5)
    assert inverse_penalty(500.0, 100.0, 0.01) == pytest.approx(0.01)
    # negative input may exceed 1 up to the ceiling
    assert inverse_penalty(-50.0, 100.0, 0.01, ceiling=1.3) == pytest.approx(1.3)


def test_linear_falloff_shape():
    assert linear_falloff(50.0, 50.0) == pytest.approx(1.0)
    assert linear_falloff(0.0, 50.0) == pytest.approx(2.0)
    assert linear_falloff(100.0, 50.0) == pytest.approx(0.0)
    assert linear_falloff(500.0, 50.0) == 0.0


def test_inverse_square_falloff_shape():
    assert inverse_square_falloff(0.0) == pytest.approx(5.0 / 6.0)
    assert inverse_square_falloff(1.0) == pytest.approx(5.0 / 6.0)
    assert inverse_square_falloff(3.0) == pytest.approx(5.0 / 14.0)


def test_pick_falloff_fn():
    assert pick_falloff_fn("LINEAR") is linear_falloff
    with pytest.raises(ValueError):
        pick_falloff_fn("cubic")
