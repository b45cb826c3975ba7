"""
Shared pytest fixtures: small tile worlds, deterministic variants, seeded RNGs.
"""

import dataclasses
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from roomprobe import (
    ACOUSTIC, ECHO, AcousticProbe, AttributeTable, TileMap, builtin_library, get_logger, setup_logging,
)

SMALL_ROOM = """\
#######
#.....#
#..@..#
#.....#
#######
"""

OPEN_FIELD = """\
...
.@.
...
"""


# =============================================================================
# Logging
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    setup_logging(level="DEBUG")
    logger = get_logger("test")
    logger.info("=== test session start ===")
    yield
    logger.info("=== test session end ===")


# =============================================================================
# Worlds
# =============================================================================

def build_map(text, **kwargs) -> TileMap:
    tm = TileMap.from_ascii(text, **kwargs)
    tm.attributes = AttributeTable.from_tile_map(tm, builtin_library())
    return tm


@pytest.fixture
def small_room() -> TileMap:
    """5x3 interior enclosed by walls, listener at (3.5, 2.5)."""
    return build_map(SMALL_ROOM)


@pytest.fixture
def open_field() -> TileMap:
    """Roofed floor with nothing to bounce off."""
    return build_map(OPEN_FIELD)


# =============================================================================
# Variants / RNG
# =============================================================================

@pytest.fixture
def steady_acoustic():
    """ACOUSTIC without direction jitter, so rays run exactly along the compass."""
    return dataclasses.replace(ACOUSTIC, jitter=0.0)


@pytest.fixture
def steady_echo():
    return dataclasses.replace(ECHO, jitter=0.0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def room_probe(small_room, steady_acoustic):
    return AcousticProbe(small_room, small_room.attributes, steady_acoustic)
