import numpy as np
import pytest

from roomprobe.config import ALL_MASK
from roomprobe.geometry import MeshScene, QueryFilter, probe_filter
from roomprobe.sampling import AcousticSampler, effective_directions


@pytest.fixture
def scene(small_room):
    return MeshScene(small_room)


def test_scene_builds_one_box_per_wall(scene, small_room):
    walls = len(small_room.entities) - 1
    # 12 triangles per box
    assert len(scene.mesh.faces) == 12 * walls
    assert scene.backend in ("embree", "triangle")


def test_cast_hits_near_face(scene, small_room):
    hits = scene.cast(0, [3.5, 2.5], [10.0, 0.0], QueryFilter(ALL_MASK))
    assert hits
    first = hits[0]
    assert np.allclose(first.point, [6.0, 2.5], atol=1e-6)
    assert np.allclose(first.local_normal, [-1.0, 0.0], atol=1e-6)
    assert first.fraction == pytest.approx(0.25, abs=1e-6)
    assert np.allclose(small_room.entity_position(first.entity), [6.5, 2.5])


def test_cast_respects_length(scene):
    assert scene.cast(0, [3.5, 2.5], [1.0, 0.0], probe_filter(ALL_MASK)) == []
    assert scene.cast(0, [3.5, 2.5], [0.0, 0.0], probe_filter(ALL_MASK)) == []
    assert scene.cast(1, [3.5, 2.5], [10.0, 0.0], probe_filter(ALL_MASK)) == []


def test_scene_delegates_tiles(scene, small_room):
    lid = small_room.listener
    assert scene.is_valid(lid)
    assert scene.map_of(lid) == small_room.map_of(lid)
    tile = scene.tile_ref(0, scene.entity_position(lid))
    assert not scene.is_vacuum(tile)
    assert scene.is_rooved(tile) is True


def test_mesh_and_tiles_agree(scene, small_room, steady_acoustic):
    dirs = effective_directions(False)
    on_tiles = AcousticSampler(small_room, small_room.attributes, steady_acoustic)
    on_mesh = AcousticSampler(scene, small_room.attributes, steady_acoustic)
    a = on_tiles.try_sample(small_room.listener, 70.0, 6, dirs)
    b = on_mesh.try_sample(small_room.listener, 70.0, 6, dirs)
    assert [r.bounces for r in a] == [r.bounces for r in b]
    assert [r.total_range for r in a] == pytest.approx([r.total_range for r in b], abs=1e-4)


def test_ear_height_validation(small_room):
    with pytest.raises(ValueError):
        MeshScene(small_room, wall_height=1.0, ear_height=1.5)


def test_scene_follows_entity_changes(scene, small_room):
    walls = len(small_room.entities) - 1
    east = scene.cast(0, [3.5, 2.5], [10.0, 0.0], QueryFilter(ALL_MASK))[0].entity

    small_room.detach(east)
    on_mesh = scene.cast(0, [3.5, 2.5], [10.0, 0.0], QueryFilter(ALL_MASK))
    on_tiles = small_room.cast(0, [3.5, 2.5], [10.0, 0.0], QueryFilter(ALL_MASK))
    assert east not in [h.entity for h in on_mesh]
    assert [h.entity for h in on_mesh] == [h.entity for h in on_tiles]
    assert len(scene.mesh.faces) == 12 * (walls - 1)

    small_room.remove_entity(east)
    assert scene.cast(0, [3.5, 2.5], [10.0, 0.0], QueryFilter(ALL_MASK)) == []
