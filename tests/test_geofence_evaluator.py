import pytest
from pydantic import ValidationError as PydanticValidationError

from safetrip.Schemas.geofence import Geofence_def
from safetrip.Services.geofence_evaluator import GeofenceEvaluator, calculate_haversine_distance

from conftest import MADRID_SQUARE

INSIDE = (40.42, -3.705)     # lat, lon
OUTSIDE = (40.45, -3.60)


@pytest.fixture
def evaluator():
    return GeofenceEvaluator()


def circle(kind, radius=500.0, center=(-3.7038, 40.4168), name="Plaza"):
    return {"name": name, "type": kind, "geometry": {"type": "Point", "coordinates": list(center)}, "radius": radius}


def polygon(kind, geometry=MADRID_SQUARE, name="Centro"):
    return {"name": name, "type": kind, "geometry": geometry, "radius": None}


def test_haversine_madrid_barcelona():
    distance = calculate_haversine_distance(40.4168, -3.7038, 41.3874, 2.1686)
    assert distance == pytest.approx(505_000, rel=0.01)


def test_haversine_same_point_is_zero():
    assert calculate_haversine_distance(10.0, 20.0, 10.0, 20.0) == 0


def test_circle_safe_zone(evaluator):
    fence = circle("safe_zone", radius=500)
    assert evaluator.evaluate(40.4170, -3.7040, fence) is False
    # ~1.1 km north of the center
    assert evaluator.evaluate(40.4268, -3.7038, fence) is True


def test_circle_restricted_area(evaluator):
    fence = circle("restricted_area", radius=500)
    assert evaluator.evaluate(40.4170, -3.7040, fence) is True
    assert evaluator.evaluate(40.4268, -3.7038, fence) is False


def test_circle_radius_boundary_counts_as_inside(evaluator):
    fence = circle("restricted_area", radius=1000)
    point_lat = 40.4168 + 1000 / 111_195  # one km due north
    distance = calculate_haversine_distance(point_lat, -3.7038, 40.4168, -3.7038)
    fence["radius"] = distance
    assert evaluator.evaluate(point_lat, -3.7038, fence) is True


def test_polygon_safe_zone(evaluator):
    fence = polygon("safe_zone")
    assert evaluator.evaluate(*INSIDE, fence) is False
    assert evaluator.evaluate(*OUTSIDE, fence) is True


def test_polygon_restricted_area(evaluator):
    fence = polygon("restricted_area")
    assert evaluator.evaluate(*INSIDE, fence) is True
    assert evaluator.evaluate(*OUTSIDE, fence) is False


def test_polygon_edge_counts_as_inside(evaluator):
    fence = polygon("restricted_area")
    assert evaluator.evaluate(40.41, -3.70, fence) is True
    assert evaluator.evaluate(40.41, -3.72, fence) is True


def test_polygon_hole_is_outside(evaluator):
    with_hole = {
        "type": "Polygon",
        "coordinates": [
            MADRID_SQUARE["coordinates"][0],
            [[-3.71, 40.415], [-3.70, 40.415], [-3.70, 40.425], [-3.71, 40.425], [-3.71, 40.415]],
        ],
    }
    fence = polygon("restricted_area", geometry=with_hole)
    assert evaluator.evaluate(40.42, -3.705, fence) is False
    assert evaluator.evaluate(40.412, -3.715, fence) is True


def test_concave_polygon(evaluator):
    # U shape: the notch between the arms is outside
    u_shape = {
        "type": "Polygon",
        "coordinates": [[
            [0, 0], [3, 0], [3, 3], [2, 3], [2, 1], [1, 1], [1, 3], [0, 3], [0, 0]
        ]],
    }
    fence = polygon("restricted_area", geometry=u_shape)
    assert evaluator.evaluate(2.0, 1.5, fence) is False   # in the notch (lon 1.5, lat 2)
    assert evaluator.evaluate(2.0, 0.5, fence) is True    # left arm
    assert evaluator.evaluate(0.5, 1.5, fence) is True    # base


def test_check_all_returns_only_violations(evaluator):
    fences = [
        polygon("safe_zone", name="Centro"),
        polygon("restricted_area", name="Zona cerrada"),
        circle("restricted_area", radius=100, center=(-3.60, 40.45), name="Far away"),
    ]
    violations = evaluator.check_all(*INSIDE, fences)

    assert [v.fence_name for v in violations] == ["Zona cerrada"]
    assert violations[0].kind == "restricted_area"
    assert violations[0].is_violated is True


def test_check_all_is_order_independent(evaluator):
    fences = [
        polygon("restricted_area", name="A"),
        circle("safe_zone", radius=100, center=(-3.60, 40.45), name="B"),
        circle("restricted_area", radius=5000, center=(-3.705, 40.42), name="C"),
    ]
    forward = {v.fence_name for v in evaluator.check_all(*INSIDE, fences)}
    backward = {v.fence_name for v in evaluator.check_all(*INSIDE, list(reversed(fences)))}

    assert forward == backward == {"A", "B", "C"}


def test_check_all_without_fences(evaluator):
    assert evaluator.check_all(*INSIDE, []) == []
    assert evaluator.check_all(*INSIDE, None) == []


def test_unsupported_geometry_raises(evaluator):
    fence = {"name": "x", "type": "safe_zone", "geometry": {"type": "LineString", "coordinates": []}}
    with pytest.raises(ValueError):
        evaluator.evaluate(0, 0, fence)


# ==========================================================
# FENCE DEFINITIONS
# ==========================================================

def test_fence_definition_accepts_valid_shapes():
    Geofence_def(**polygon("safe_zone"))
    Geofence_def(**circle("restricted_area"))


@pytest.mark.parametrize("fence", [
    circle("safe_zone", radius=None),
    circle("safe_zone", center=(-200.0, 40.0)),
    polygon("safe_zone", geometry={"type": "Polygon", "coordinates": [[[-3.7, 40.4], [-3.6, 40.4]]]}),
    # Self-intersecting bow tie
    polygon("safe_zone", geometry={"type": "Polygon", "coordinates": [[
        [0, 0], [1, 1], [1, 0], [0, 1], [0, 0]
    ]]}),
    polygon("safe_zone", geometry={"type": "LineString", "coordinates": [[0, 0], [1, 1]]}),
    {**circle("safe_zone"), "type": "danger_zone"},
])
def test_fence_definition_rejects_bad_shapes(fence):
    with pytest.raises(PydanticValidationError):
        Geofence_def(**fence)
