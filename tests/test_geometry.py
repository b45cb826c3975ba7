import math

import numpy as np
import pytest

from roomprobe.config import ALL_MASK, Layer
from roomprobe.geometry import (
    SPACE, IgnoreRule, QueryFilter, TileMap, TileRef, path_filter, probe_filter,
)
from roomprobe.materials import AcousticAttributes, AttributeTable


def _corridor():
    """Boxes along y=1.5 on a 10x3 grid; the ghost has no acoustic data."""
    tm = TileMap(10, 3)
    wall = tm.add_entity(8.5, 1.5, layer=int(Layer.IMPASSABLE), material="Wall")
    crate = tm.add_entity(4.5, 1.5, layer=int(Layer.LOW_IMPASSABLE), material="Crate",
                          half_extents=(0.25, 0.25))
    ghost = tm.add_entity(6.5, 1.5, layer=int(Layer.IMPASSABLE), material=None)
    tm.attributes = AttributeTable({
        wall: AcousticAttributes(0.05, True),
        crate: AcousticAttributes(0.4, False),
    })
    return tm, wall, crate, ghost


def test_from_ascii_layout(small_room):
    assert (small_room.width, small_room.height) == (7, 5)
    assert np.allclose(small_room.entity_position(small_room.listener), [3.5, 2.5])
    # ring of walls plus the listener
    assert len(small_room.entities) == 2 * 7 + 2 * 3 + 1


def test_from_ascii_first_row_is_top():
    tm = TileMap.from_ascii("#..\n...\n..@")
    top_left = [e for e in tm.entities.values() if e.material == "Wall"][0]
    assert np.allclose(top_left.center, [0.5, 2.5])
    assert np.allclose(tm.entity_position(tm.listener), [2.5, 0.5])


def test_from_ascii_tiles_and_roofs():
    tm = TileMap.from_ascii(" ,@")
    assert tm.is_vacuum(TileRef("grid", 0, 0))
    assert tm.is_rooved(TileRef("grid", 1, 0)) is False
    assert tm.is_rooved(TileRef("grid", 2, 0)) is True
    assert int(tm.tiles[0, 0]) == SPACE


def test_from_ascii_rejects_bad_input():
    with pytest.raises(ValueError):
        TileMap.from_ascii("..?..")
    with pytest.raises(ValueError):
        TileMap.from_ascii("@.@")
    with pytest.raises(ValueError):
        TileMap.from_ascii("\n\n")


def test_no_roof_data():
    tm = TileMap(2, 2, with_roofs=False)
    assert tm.is_rooved(TileRef("grid", 0, 0)) is None


def test_tile_ref_bounds(small_room):
    assert small_room.tile_ref(0, [3.5, 2.5]) == TileRef("grid", 3, 2)
    assert small_room.tile_ref(0, [-0.1, 2.5]) is None
    assert small_room.tile_ref(0, [7.0, 2.5]) is None
    assert small_room.tile_ref("other-map", [3.5, 2.5]) is None


def test_map_of_and_detach(small_room):
    lid = small_room.listener
    assert small_room.map_of(lid) == 0
    small_room.detach(lid)
    assert small_room.is_valid(lid)
    assert small_room.map_of(lid) is None
    assert not small_room.is_valid(9999)
    assert not small_room.is_valid(None)


def test_cast_orders_hits_and_reports_normal():
    tm, wall, crate, ghost = _corridor()
    hits = tm.cast(0, [0.5, 1.5], [9.0, 0.0], QueryFilter(ALL_MASK))
    assert [h.entity for h in hits] == [crate, ghost, wall]
    assert np.allclose(hits[0].point, [4.25, 1.5])
    assert hits[0].fraction == pytest.approx(3.75 / 9.0)
    assert np.allclose(hits[2].local_normal, [-1.0, 0.0])


def test_cast_is_limited_to_segment():
    tm, wall, crate, _ = _corridor()
    hits = tm.cast(0, [0.5, 1.5], [2.0, 0.0], QueryFilter(ALL_MASK))
    assert hits == []
    assert tm.cast(0, [0.5, 1.5], [0.0, 0.0], QueryFilter(ALL_MASK)) == []
    assert tm.cast("elsewhere", [0.5, 1.5], [9.0, 0.0], QueryFilter(ALL_MASK)) == []


def test_probe_filter_skips_non_reflective_but_not_unknown():
    tm, wall, crate, ghost = _corridor()
    hits = tm.cast(0, [0.5, 1.5], [9.0, 0.0], probe_filter(ALL_MASK))
    # the crate doesn't reflect; the attribute-less ghost still blocks
    assert [h.entity for h in hits] == [ghost, wall]


def test_path_filter_keeps_only_attributed():
    tm, wall, crate, ghost = _corridor()
    hits = tm.cast(0, [0.5, 1.5], [9.0, 0.0], path_filter(ALL_MASK))
    assert [h.entity for h in hits] == [crate, wall]


def test_mask_and_exclude():
    tm, wall, crate, ghost = _corridor()
    hits = tm.cast(0, [0.5, 1.5], [9.0, 0.0], QueryFilter(int(Layer.IMPASSABLE), exclude=frozenset({ghost})))
    assert [h.entity for h in hits] == [wall]
    assert QueryFilter(int(Layer.MOB)).accepts(wall, int(Layer.IMPASSABLE), tm.attributes) is False
    assert QueryFilter(ALL_MASK, IgnoreRule.NONE).accepts(ghost, int(Layer.IMPASSABLE), None)


def test_box_containing_origin_is_ignored():
    tm, wall, crate, _ = _corridor()
    hits = tm.cast(0, [4.5, 1.5], [4.5, 0.0], path_filter(ALL_MASK))
    assert [h.entity for h in hits] == [wall]


def test_rotated_grid_frames():
    tm = TileMap(4, 4, angle=math.pi / 2)
    wall = tm.add_entity(2.5, 0.5, layer=int(Layer.IMPASSABLE), material="Wall")
    assert np.allclose(tm.entity_position(wall), [-0.5, 2.5])

    hits = tm.cast(0, [-0.5, 0.0], [0.0, 5.0], QueryFilter(ALL_MASK))
    assert len(hits) == 1
    assert np.allclose(hits[0].point, [-0.5, 2.0])
    assert np.allclose(hits[0].local_normal, [-1.0, 0.0])
    assert np.allclose(tm.normal_to_world(wall, hits[0].local_normal), [0.0, -1.0])


def test_remove_entity_clears_listener(small_room):
    lid = small_room.listener
    small_room.remove_entity(lid)
    assert small_room.listener is None
    assert not small_room.is_valid(lid)
