"""
Tests for the zone algebra engine.

Geometry is built in the projected CRS with feet offsets from an origin in
the Chicago Loop (see conftest.Grid).
"""

import pytest
from shapely.geometry import Polygon

from src.zoning.algebra import (
    BOUNDARY_LABEL,
    ZoneAlgebraEngine,
    ZoneInputs,
    check_invariants,
    resolve_overlaps,
)
from src.zoning.buffers import build_station_buffer
from src.zoning.errors import ZoneConsistencyError
from src.zoning.models import (
    ZONE_ORDER,
    Agency,
    CorridorPolygon,
    EngineConfig,
    Zone,
    ZoneCategory,
    ZoneSet,
    ZoningDistrict,
)
from src.zoning.statistics import compute_stats

RADIUS_FT = 2640
MILE_FT = 5280
AREA_TOL = 1.0


@pytest.fixture
def engine(projection):
    return ZoneAlgebraEngine(EngineConfig(), projection)


@pytest.fixture
def rail_at_origin(projection, grid):
    return build_station_buffer([grid.station("r1", Agency.RAIL)], RADIUS_FT, projection)


def secondary_buffer(projection, grid, dx_ft, dy_ft=0.0):
    return build_station_buffer(
        [grid.station("s1", Agency.SECONDARY, dx_ft, dy_ft)], RADIUS_FT, projection
    )


def assert_same_area(a, b, tol=AREA_TOL):
    assert a.symmetric_difference(b).area <= tol


def assert_disjoint(zones):
    for i, first in enumerate(zones):
        for second in list(zones)[i + 1:]:
            assert first.geometry.intersection(second.geometry).area <= AREA_TOL


# =============================================================================
# CONCRETE SCENARIOS
# =============================================================================


class TestScenarios:
    """End-to-end algebra on small hand-built inputs."""

    def test_rail_station_with_disjoint_downtown(self, engine, projection, grid, rail_at_origin):
        # 1-mile square centered on the station; D sits in its corner, outside the disc
        boundary = grid.box(-MILE_FT / 2, -MILE_FT / 2, MILE_FT / 2, MILE_FT / 2)
        downtown = grid.box(2300, 2300, 2600, 2600)
        assert not downtown.intersects(rail_at_origin)

        zones = engine.compute(
            ZoneInputs(
                rail_buffer=rail_at_origin,
                secondary_buffer=Polygon(),
                corridors=[],
                districts=[ZoningDistrict("d1", "D-CE-3", downtown)],
                boundary=boundary,
            )
        )

        assert_same_area(zones.no_parking.geometry, rail_at_origin.intersection(boundary))
        assert zones.transit_adjustment.is_empty
        assert zones.transit_adjustment.area == 0.0
        assert_same_area(zones.downtown_adjustment.geometry, downtown)

        stats = compute_stats(zones, boundary, projection)
        expected = (
            (rail_at_origin.intersection(boundary).area + downtown.area) / boundary.area * 100
        )
        assert stats.classified_percentage == pytest.approx(expected, rel=1e-6)

    def test_secondary_station_away_from_rail(self, engine, projection, grid, rail_at_origin):
        # Station 3000 ft beyond the edge of rail coverage
        secondary = secondary_buffer(projection, grid, RADIUS_FT + 3000)
        assert secondary.distance(rail_at_origin) > 0
        boundary = grid.box(-20000, -20000, 20000, 20000)

        with_secondary = engine.compute(
            ZoneInputs(rail_at_origin, secondary, boundary=boundary)
        )
        without_secondary = engine.compute(
            ZoneInputs(rail_at_origin, Polygon(), boundary=boundary)
        )

        assert_same_area(with_secondary.transit_adjustment.geometry, secondary)
        assert (
            with_secondary.no_parking.geometry.wkb == without_secondary.no_parking.geometry.wkb
        )


# =============================================================================
# STEPS
# =============================================================================


class TestSteps:
    """Individual algebra steps."""

    def test_transit_served_includes_corridors(self, engine, grid, rail_at_origin):
        corridor = grid.box(3000, -200, 8000, 200)
        served = engine.transit_served_area(rail_at_origin, [CorridorPolygon("c1", corridor)])
        assert served.covers(corridor)
        assert served.covers(rail_at_origin)

    def test_secondary_fully_covered_is_empty(self, engine, projection, grid, rail_at_origin):
        secondary = secondary_buffer(projection, grid, 0)
        assert engine.secondary_only_area(secondary, rail_at_origin).is_empty

    def test_secondary_subtracts_transit_served(self, engine, projection, grid, rail_at_origin):
        secondary = secondary_buffer(projection, grid, 2000)
        only = engine.secondary_only_area(secondary, rail_at_origin)
        assert only.intersection(rail_at_origin).area <= AREA_TOL
        assert only.area < secondary.area

    def test_secondary_subtracts_corridors(self, engine, projection, grid):
        secondary = secondary_buffer(projection, grid, 0)
        corridor = grid.box(-500, -5000, 500, 5000)
        served = engine.transit_served_area(Polygon(), [CorridorPolygon("c1", corridor)])
        only = engine.secondary_only_area(secondary, served)
        assert only.intersection(corridor).area <= AREA_TOL

    def test_downtown_prefix_filter(self, engine, grid):
        districts = [
            ZoningDistrict("a", "D-CE", grid.box(0, 0, 100, 100)),
            ZoningDistrict("b", "R-1", grid.box(200, 0, 300, 100)),
            ZoningDistrict("c", " D-LM", grid.box(400, 0, 500, 100)),
        ]
        downtown = engine.downtown_area(districts)
        assert downtown.covers(districts[0].geometry)
        assert not downtown.intersects(districts[1].geometry)
        assert downtown.covers(districts[2].geometry)

    def test_custom_prefix(self, projection, grid):
        engine = ZoneAlgebraEngine(EngineConfig(downtown_class_prefix="CBD"), projection)
        districts = [
            ZoningDistrict("a", "CBD-1", grid.box(0, 0, 100, 100)),
            ZoningDistrict("b", "D-CE", grid.box(200, 0, 300, 100)),
        ]
        downtown = engine.downtown_area(districts)
        assert downtown.equals(districts[0].geometry.normalize())

    def test_no_parking_excludes_downtown(self, engine, grid, rail_at_origin):
        downtown = grid.box(-500, -500, 500, 500)
        no_parking = engine.no_parking_area(rail_at_origin, downtown)
        assert no_parking.intersection(downtown).area <= AREA_TOL
        assert no_parking.area == pytest.approx(rail_at_origin.area - downtown.area, rel=1e-6)

    def test_steps_are_clipped_last(self, engine, projection, grid, rail_at_origin):
        boundary = grid.box(-1000, -1000, 1000, 1000)
        secondary = secondary_buffer(projection, grid, 2000)
        steps = engine.compute_steps(ZoneInputs(rail_at_origin, secondary, boundary=boundary))

        # Unclipped intermediates extend past the boundary
        assert not boundary.covers(steps.transit_served)
        for geom in steps.clipped.values():
            assert geom.difference(boundary).area <= AREA_TOL

    def test_sliver_dropped(self, projection, grid):
        engine = ZoneAlgebraEngine(EngineConfig(sliver_tolerance=100.0), projection)
        corridors = [
            CorridorPolygon("big", grid.box(0, 0, 1000, 1000)),
            CorridorPolygon("tiny", grid.box(5000, 5000, 5005, 5005)),
        ]
        served = engine.transit_served_area(Polygon(), corridors)
        assert served.geom_type == "Polygon"


# =============================================================================
# INVARIANTS
# =============================================================================


class TestInvariants:
    """Mutual exclusivity and containment."""

    def test_zones_disjoint_and_contained(self, engine, projection, grid, rail_at_origin):
        boundary = grid.box(-6000, -6000, 6000, 6000)
        inputs = ZoneInputs(
            rail_buffer=rail_at_origin,
            secondary_buffer=secondary_buffer(projection, grid, -4000),
            corridors=[CorridorPolygon("c1", grid.box(2000, -300, 9000, 300))],
            districts=[ZoningDistrict("d1", "D-1", grid.box(-1000, 500, 1000, 2000))],
            boundary=boundary,
        )
        zones = engine.compute(inputs)

        assert_disjoint(zones)
        for zone in zones:
            assert zone.geometry.difference(boundary).area <= AREA_TOL
            assert zone.geometry.is_valid
            assert zone.crs == "EPSG:3435"

        total = sum(zone.geometry.area for zone in zones)
        assert total <= boundary.area

    def test_areas_in_square_feet(self, engine, projection, grid, rail_at_origin):
        boundary = grid.box(-10000, -10000, 10000, 10000)
        zones = engine.compute(ZoneInputs(rail_at_origin, Polygon(), boundary=boundary))
        assert zones.no_parking.area == pytest.approx(
            projection.area_to_square_feet(zones.no_parking.geometry.area)
        )

    def test_idempotent(self, engine, projection, grid, rail_at_origin):
        inputs = ZoneInputs(
            rail_buffer=rail_at_origin,
            secondary_buffer=secondary_buffer(projection, grid, 3000),
            corridors=[CorridorPolygon("c1", grid.box(0, -300, 9000, 300))],
            districts=[ZoningDistrict("d1", "D-1", grid.box(-9000, -9000, -7000, -7000))],
            boundary=grid.box(-10000, -10000, 10000, 10000),
        )
        first = engine.compute(inputs)
        second = engine.compute(inputs)
        for a, b in zip(first, second):
            assert a.geometry.wkb == b.geometry.wkb
            assert a.area == b.area

    def test_secondary_over_downtown_raises(self, engine, projection, grid):
        secondary = secondary_buffer(projection, grid, 0)
        downtown = grid.box(-500, -500, 500, 500)
        inputs = ZoneInputs(
            rail_buffer=Polygon(),
            secondary_buffer=secondary,
            districts=[ZoningDistrict("d1", "D-1", downtown)],
            boundary=grid.box(-10000, -10000, 10000, 10000),
        )
        with pytest.raises(ZoneConsistencyError) as exc_info:
            engine.compute(inputs)

        assert exc_info.value.categories == (
            ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT.value,
            ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN.value,
        )
        assert exc_info.value.overlap_area == pytest.approx(downtown.area, rel=1e-6)

    def test_check_invariants_containment(self, grid):
        boundary = grid.box(0, 0, 1000, 1000)
        zones = ZoneSet.from_zones(
            {
                category: Zone(category, Polygon(), 0.0, "EPSG:3435")
                for category in ZONE_ORDER
            }
        )
        check_invariants(zones, boundary)

        outside = ZoneSet(
            Zone(ZoneCategory.NO_PARKING_REQUIRED, grid.box(500, 500, 1500, 1500), 0.0, "EPSG:3435"),
            zones.transit_adjustment,
            zones.downtown_adjustment,
        )
        with pytest.raises(ZoneConsistencyError) as exc_info:
            check_invariants(outside, boundary)
        assert exc_info.value.categories == ("NoParkingRequired", BOUNDARY_LABEL)

    def test_tolerance_accepts_tiny_overlap(self, grid):
        boundary = grid.box(0, 0, 1000, 1000)
        zones = ZoneSet(
            Zone(ZoneCategory.NO_PARKING_REQUIRED, grid.box(0, 0, 500.5, 1000), 0.0, "EPSG:3435"),
            Zone(ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT, grid.box(500, 0, 1000, 1000), 0.0, "EPSG:3435"),
            Zone(ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN, Polygon(), 0.0, "EPSG:3435"),
        )
        with pytest.raises(ZoneConsistencyError):
            check_invariants(zones, boundary, tolerance=1.0)
        check_invariants(zones, boundary, tolerance=1000.0)


class TestResolveOverlaps:
    """Caller-side repair of overlapping zones."""

    def test_downtown_wins_by_default(self, projection, grid):
        downtown = grid.box(-500, -500, 500, 500)
        transit = grid.box(-2000, -2000, 2000, 2000)
        zones = ZoneSet(
            Zone(ZoneCategory.NO_PARKING_REQUIRED, Polygon(), 0.0, "EPSG:3435"),
            Zone(ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT, transit, 100.0, "EPSG:3435"),
            Zone(ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN, downtown, 10.0, "EPSG:3435"),
        )
        resolved = resolve_overlaps(zones, area_to_square_feet=projection.area_to_square_feet)

        assert_disjoint(resolved)
        assert resolved.downtown_adjustment.geometry.equals(downtown)
        assert resolved.transit_adjustment.area == pytest.approx(
            projection.area_to_square_feet(transit.area - downtown.area)
        )
        # Inputs untouched
        assert zones.transit_adjustment.geometry.equals(transit)

    def test_scales_area_without_converter(self, grid):
        transit = grid.box(0, 0, 1000, 1000)
        zones = ZoneSet(
            Zone(ZoneCategory.NO_PARKING_REQUIRED, grid.box(0, 0, 500, 1000), 50.0, "EPSG:3435"),
            Zone(ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT, transit, 100.0, "EPSG:3435"),
            Zone(ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN, Polygon(), 0.0, "EPSG:3435"),
        )
        resolved = resolve_overlaps(zones)
        assert resolved.transit_adjustment.area == pytest.approx(50.0)

    def test_precedence_must_be_complete(self):
        with pytest.raises(ValueError, match="precedence"):
            resolve_overlaps(None, precedence=(ZoneCategory.NO_PARKING_REQUIRED,))
