import pytest

from quickcommerce.domain import geofence
from quickcommerce.domain.entities import Coordinates, Hub

SQUARE = [Coordinates(0, 0), Coordinates(0, 1), Coordinates(1, 1), Coordinates(1, 0)]
CENTER = Coordinates(27.7172, 85.3240)


def test_point_inside_and_outside_polygon():
    assert geofence.point_in_polygon(Coordinates(0.5, 0.5), SQUARE)
    assert not geofence.point_in_polygon(Coordinates(1.5, 0.5), SQUARE)
    assert not geofence.point_in_polygon(Coordinates(0.5, -0.1), SQUARE)


def test_edge_and_vertex_count_as_inside():
    assert geofence.point_in_polygon(Coordinates(0, 0.5), SQUARE)
    assert geofence.point_in_polygon(Coordinates(0.5, 1), SQUARE)
    assert geofence.point_in_polygon(Coordinates(1, 1), SQUARE)
    assert geofence.point_in_polygon(Coordinates(0, 0), SQUARE)


def test_concave_polygon():
    # Forma de "U": la muesca central queda fuera
    u_shape = [
        Coordinates(0, 0), Coordinates(3, 0), Coordinates(3, 1), Coordinates(1, 1),
        Coordinates(1, 2), Coordinates(3, 2), Coordinates(3, 3), Coordinates(0, 3),
    ]
    assert geofence.point_in_polygon(Coordinates(0.5, 1.5), u_shape)
    assert not geofence.point_in_polygon(Coordinates(2, 1.5), u_shape)


def test_degenerate_polygon():
    assert not geofence.point_in_polygon(Coordinates(0, 0), SQUARE[:2])


def test_haversine_one_degree_at_equator():
    assert geofence.haversine_km(Coordinates(0, 0), Coordinates(0, 1)) == pytest.approx(111.195, abs=0.01)
    assert geofence.haversine_km(CENTER, CENTER) == 0


def test_exact_radius_boundary_is_serviceable():
    point = Coordinates(27.7272, 85.3240)
    distance = geofence.haversine_km(point, CENTER)
    assert geofence.within_radius(point, CENTER, distance)
    assert not geofence.within_radius(point, CENTER, distance - 1e-6)


def test_polygon_takes_precedence_over_radius():
    hub = Hub(id="h1", name="Centro", polygon=SQUARE, center=CENTER, radius_km=5.0)
    assert not geofence.is_serviceable(Coordinates(27.7173, 85.3241), hub)
    assert geofence.is_serviceable(Coordinates(0.5, 0.5), hub)


def test_check_reasons():
    inactive = Hub(id="h1", name="Norte", center=CENTER, radius_km=3.0, is_active=False)
    result = geofence.check(CENTER, inactive)
    assert not result.serviceable
    assert "no está operando" in result.reason

    unconfigured = Hub(id="h2", name="Sur")
    assert "no tiene zona" in geofence.check(CENTER, unconfigured).reason

    hub = Hub(id="h3", name="Centro", center=CENTER, radius_km=3.0)
    assert geofence.check(CENTER, hub) == geofence.ServiceabilityResult(True, None, "h3")
    assert not geofence.check(Coordinates(28.5, 85.3), hub).serviceable


def test_find_serving_hub_first_active_match():
    inactive = Hub(id="h0", name="Cerrado", center=CENTER, radius_km=10.0, is_active=False)
    far = Hub(id="h1", name="Lejano", center=Coordinates(28.2, 83.98), radius_km=3.0)
    near = Hub(id="h2", name="Centro", center=CENTER, radius_km=3.0)
    wide = Hub(id="h3", name="Amplio", center=CENTER, radius_km=20.0)

    assert geofence.find_serving_hub(CENTER, [inactive, far, near, wide]).id == "h2"
    assert geofence.find_serving_hub(Coordinates(0, 0), [inactive, far, near]) is None
