import numpy as np
import pytest

from collision import CollisionWorld, OracleQueryError
from geometry import vec_distance
from mesh_asset import Triangle
from scene_loader import ObserverPoint
from visibility import (
    CullSettings, DebugPointBuffer, VisibilityPass, biased_target,
    classify_triangle, is_point_visible,
)

from mesh_fixtures import (
    PLUS_X, ExplodingOracle, FakeOracle, RecordingReporter, cube_mesh, strip_mesh,
)

# Faces +z, centroid (1/3, 1/3, 0)
TRI = Triangle(0, (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0))
FRONT = ObserverPoint("front", (0.3, 0.3, 5.0))
BEHIND = ObserverPoint("behind", (0.3, 0.3, -5.0))


def _ends_near(point, radius=0.1):
    return lambda start, end: vec_distance(end, point) > radius


# ─── Settings ────────────────────────────────────────────────────────────────

def test_settings_defaults():
    s = CullSettings()
    assert s.surface_bias == pytest.approx(0.02)
    assert s.multi_sample is True
    assert s.dilate is True
    assert s.debug_capacity == 2000


def test_settings_reject_negative_bias():
    with pytest.raises(ValueError):
        CullSettings(surface_bias=-0.1)


def test_settings_from_dict_precedence():
    s = CullSettings.from_dict(
        {'surface_bias': 0.1, 'dilate': False, 'unknown_key': 7},
        surface_bias=0.5, dilate=None, multi_sample=False)
    assert s.surface_bias == pytest.approx(0.5)
    assert s.dilate is False
    assert s.multi_sample is False


def test_resolved_workers_auto_is_at_least_one():
    assert CullSettings(num_workers=0).resolved_workers() >= 1
    assert CullSettings(num_workers=3).resolved_workers() == 3


# ─── Point visibility ────────────────────────────────────────────────────────

def test_biased_target_pulls_toward_eye():
    end = biased_target((0.0, 0.0, 10.0), (0.0, 0.0, 0.0), 0.02)
    assert end == pytest.approx((0.0, 0.0, 0.02))


def test_biased_target_falls_back_when_bias_overshoots_eye():
    eye = (0.0, 0.0, 0.005)
    target = (0.0, 0.0, 0.0)
    assert biased_target(eye, target, 0.02) == target


def test_zero_bias_keeps_target():
    assert biased_target((1.0, 2.0, 3.0), (4.0, 5.0, 6.0), 0.0) == (4.0, 5.0, 6.0)


def test_visible_point_is_recorded_unbiased():
    debug = DebugPointBuffer(10)
    oracle = FakeOracle()
    assert is_point_visible(oracle, (0.0, 0.0, 10.0), (0.0, 0.0, 0.0), 0.02, debug)
    assert debug.points == [(0.0, 0.0, 0.0)]
    # The query itself used the biased end point
    assert oracle.calls[0][1] == pytest.approx((0.0, 0.0, 0.02))


def test_blocked_point_is_not_recorded():
    debug = DebugPointBuffer(10)
    oracle = FakeOracle(lambda s, e: True)
    assert not is_point_visible(oracle, (0.0, 0.0, 10.0), (0.0, 0.0, 0.0), 0.02, debug)
    assert len(debug) == 0


def test_debug_buffer_stops_when_full():
    debug = DebugPointBuffer(3)
    for i in range(5):
        debug.add((float(i), 0.0, 0.0))
    assert len(debug) == 3
    assert debug.is_full
    assert [p[0] for p in debug.points] == [0.0, 1.0, 2.0]


def test_oracle_exception_becomes_query_error():
    with pytest.raises(OracleQueryError):
        is_point_visible(ExplodingOracle(), (0.0, 0.0, 1.0), (0.0, 0.0, 0.0), 0.02)


# ─── Triangle classifier ─────────────────────────────────────────────────────

def test_backfacing_triangle_never_queries_oracle():
    oracle = ExplodingOracle()
    assert not classify_triangle(TRI, [BEHIND], oracle, CullSettings())
    assert oracle.calls == 0


def test_visible_centroid_short_circuits():
    oracle = FakeOracle()
    assert classify_triangle(TRI, [FRONT], oracle, CullSettings())
    assert len(oracle.calls) == 1


def test_multi_sample_finds_visible_corner():
    v1 = TRI.v1
    centroid_only = FakeOracle(_ends_near(v1))
    assert not classify_triangle(TRI, [FRONT], centroid_only,
                                 CullSettings(multi_sample=False))
    assert len(centroid_only.calls) == 1

    multi = FakeOracle(_ends_near(v1))
    assert classify_triangle(TRI, [FRONT], multi, CullSettings(multi_sample=True))
    # centroid, v0, then v1 succeeds
    assert len(multi.calls) == 3


def test_multi_sample_never_drops_a_centroid_visible_triangle():
    sees_centroid = _ends_near(TRI.centroid)
    for multi_sample in (False, True):
        oracle = FakeOracle(sees_centroid)
        assert classify_triangle(TRI, [FRONT], oracle,
                                 CullSettings(multi_sample=multi_sample))


def test_backface_check_is_per_observer():
    oracle = FakeOracle()
    assert classify_triangle(TRI, [BEHIND, FRONT], oracle, CullSettings())
    assert len(oracle.calls) == 1
    assert oracle.calls[0][0] == FRONT.position


def test_fully_blocked_triangle_is_occluded():
    oracle = FakeOracle(lambda s, e: True)
    assert not classify_triangle(TRI, [FRONT, FRONT], oracle, CullSettings())
    assert len(oracle.calls) == 8


# ─── Mesh-wide pass ──────────────────────────────────────────────────────────

def test_pass_keeps_only_the_facing_cube_side():
    mesh = cube_mesh()
    reporter = RecordingReporter()
    observers = [ObserverPoint("cam", (5.0, 0.0, 0.0))]
    vis = VisibilityPass(FakeOracle(), observers, CullSettings(), reporter)
    assert vis.run("cube", mesh, np.eye(4)) == PLUS_X
    assert reporter.progress_calls[0] == ("cube", 0, 12)


def test_pass_against_the_targets_own_collider():
    mesh = cube_mesh()
    world = CollisionWorld()
    world.add_collider("cube", mesh, np.eye(4))
    observers = [ObserverPoint("cam", (5.0, 0.0, 0.0))]
    vis = VisibilityPass(world, observers, CullSettings())
    assert vis.run("cube", mesh, np.eye(4)) == PLUS_X


def test_pass_uses_world_transform():
    mesh = cube_mesh()
    # Rotate 180 degrees about y: the original -X side now faces +X
    m = np.diag([-1.0, 1.0, -1.0, 1.0])
    observers = [ObserverPoint("cam", (5.0, 0.0, 0.0))]
    vis = VisibilityPass(FakeOracle(), observers, CullSettings())
    assert vis.run("cube", mesh, m) == {2, 3}


def test_pass_progress_interval():
    mesh = strip_mesh(10)
    reporter = RecordingReporter()
    observers = [ObserverPoint("cam", (5.0, 0.5, 5.0))]
    vis = VisibilityPass(FakeOracle(), observers,
                         CullSettings(progress_interval=5), reporter)
    vis.run("strip", mesh, np.eye(4))
    assert [c for _, c, _ in reporter.progress_calls] == [0, 5, 10, 15]


def test_parallel_pass_matches_serial():
    mesh = strip_mesh(40)
    world = CollisionWorld()
    world.add_collider("strip", mesh, np.eye(4))
    observers = [ObserverPoint("cam", (20.0, 0.5, 10.0))]

    serial = VisibilityPass(world, observers, CullSettings(num_workers=1))
    debug = DebugPointBuffer(1000)
    parallel = VisibilityPass(world, observers, CullSettings(num_workers=2), debug=debug)

    expected = serial.run("strip", mesh, np.eye(4))
    assert expected == set(range(80))
    assert parallel.run("strip", mesh, np.eye(4)) == expected
    assert len(debug) == 80


def test_settings_from_scene_json_strings():
    s = CullSettings.from_dict({'num_workers': '2', 'multi_sample': 'false',
                                'dilate': 'yes', 'surface_bias': '0.05'})
    assert s.num_workers == 2
    assert s.multi_sample is False
    assert s.dilate is True
    assert s.surface_bias == pytest.approx(0.05)


@pytest.mark.parametrize('values', [
    {'num_workers': 'many'},
    {'num_workers': 2.5},
    {'multi_sample': 'maybe'},
    {'dilate': 2},
    {'surface_bias': 'far'},
    {'surface_bias': True},
    {'progress_interval': None},
])
def test_settings_reject_badly_typed_values(values):
    with pytest.raises(ValueError):
        CullSettings.from_dict(values)
