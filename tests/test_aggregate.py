import pytest

from roomprobe.aggregate import AcousticProbe, ListenerContext, aggregate
from roomprobe.config import ACOUSTIC, ECHO
from roomprobe.geometry import FLOOR, TileMap
from roomprobe.materials import AttributeTable
from roomprobe.sampling import RayStats


def _rays(n=4, total_range=20.0, absorption=0.0, escaped=0):
    return [RayStats(total_range=total_range, total_absorption=absorption, escapes=int(i < escaped))
            for i in range(n)]


def test_plain_room_magnitude_is_mean_range():
    s = aggregate(_rays(), ACOUSTIC)
    assert s.magnitude == pytest.approx(20.0)
    assert s.absorption_factor == 1.0
    assert s.escape_factor == 1.0
    assert s.roof_factor == 1.0


def test_summed_escapes_scale_with_ray_count():
    assert aggregate(_rays(escaped=2), ACOUSTIC).magnitude == pytest.approx(10.0)
    # all four escaped -> floor
    assert aggregate(_rays(escaped=4), ACOUSTIC).escape_factor == pytest.approx(ACOUSTIC.escape_floor)


def test_averaged_escapes_barely_move_echo():
    s = aggregate(_rays(escaped=2), ECHO)
    assert s.escapes == pytest.approx(0.5)
    assert s.escape_factor == pytest.approx(0.995)


def test_absorption_penalty():
    assert aggregate(_rays(absorption=50.0), ACOUSTIC).absorption_factor == pytest.approx(0.5)
    assert aggregate(_rays(absorption=500.0), ACOUSTIC).absorption_factor == pytest.approx(0.01)


def test_no_roof_penalty():
    covered = aggregate(_rays(), ACOUSTIC, uncovered=False)
    open_sky = aggregate(_rays(), ACOUSTIC, uncovered=True)
    assert open_sky.magnitude == pytest.approx(covered.magnitude * ACOUSTIC.no_roof_penalty)
    assert aggregate(_rays(), ECHO, uncovered=True).roof_factor == pytest.approx(0.3)


def test_magnitude_never_negative():
    assert aggregate(_rays(total_range=-5.0), ACOUSTIC).magnitude == 0.0


def test_empty_input_is_rejected():
    with pytest.raises(ValueError):
        aggregate([], ACOUSTIC)


def test_smoothing_converges_geometrically():
    ctx = ListenerContext("me")
    assert ctx.smooth(0.0, 0.25) == 0.0
    target = 40.0
    for k in range(1, 30):
        value = ctx.smooth(target, 0.25)
        assert target - value == pytest.approx(target * 0.75 ** k)
    ctx.reset()
    assert ctx.previous_magnitude is None


def test_first_pass_is_unsmoothed():
    ctx = ListenerContext("me")
    s = aggregate(_rays(total_range=33.0), ACOUSTIC, ctx)
    assert s.smoothed_range == pytest.approx(33.0)
    s = aggregate(_rays(total_range=13.0), ACOUSTIC, ctx)
    assert s.smoothed_range == pytest.approx(28.0)


def test_probe_end_to_end(room_probe, small_room):
    res = room_probe.try_compute(small_room.listener)
    assert res is not None
    assert len(res.rays) == 4
    assert res.sample.avg_range == pytest.approx((2 * 32.2 + 2 * 19.2) / 4)
    assert res.sample.escapes == 0
    assert 23.0 < res.magnitude < 28.0
    assert res.preset == "SpaceStationHall"
    assert room_probe.try_compute_magnitude(small_room.listener) == pytest.approx(res.magnitude)


def test_probe_contexts_follow_listener_lifecycle(room_probe, small_room):
    lid = small_room.listener
    room_probe.try_compute_magnitude(lid)
    assert room_probe.contexts[lid].previous_magnitude is not None
    room_probe.detach(lid)
    assert lid not in room_probe.contexts
    assert room_probe.attach(lid).previous_magnitude is None


def test_probe_reports_no_data(room_probe, small_room):
    small_room.detach(small_room.listener)
    assert room_probe.try_compute_magnitude(small_room.listener) is None
    assert room_probe.try_compute(small_room.listener) is None


def test_probe_roof_lookup(small_room, steady_acoustic):
    probe = AcousticProbe(small_room, small_room.attributes, steady_acoustic)
    lid = small_room.listener
    assert not probe.is_uncovered(lid)
    covered = probe.try_compute_magnitude(lid)

    small_room.set_tile(3, 2, FLOOR, roofed=False)
    fresh = AcousticProbe(small_room, small_room.attributes, steady_acoustic)
    assert fresh.is_uncovered(lid)
    assert fresh.try_compute_magnitude(lid) == pytest.approx(covered * steady_acoustic.no_roof_penalty)


def test_probe_without_roof_data_is_not_penalized(steady_acoustic):
    tm = TileMap.from_ascii("###\n#@#\n###", with_roofs=False)
    tm.attributes = AttributeTable.from_tile_map(tm)
    probe = AcousticProbe(tm, tm.attributes, steady_acoustic)
    assert not probe.is_uncovered(tm.listener)


def test_probe_classifies_with_its_variant_table(small_room):
    probe = AcousticProbe(small_room, small_room.attributes, ECHO)
    assert probe.classify(20.0) == "Auditorium"
    assert probe.classify(5.0) == "Hallway"
