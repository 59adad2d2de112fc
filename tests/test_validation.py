"""
Tests for geometry validation and repair.
"""

import math

import geopandas as gpd
import pytest
from shapely.geometry import LineString, MultiPolygon, Point, Polygon, box

from src.zoning.errors import GeometryError
from src.zoning.models import Agency, HierarchyMethod, Station, StationSet
from src.zoning.validation import GeometryValidator, repair_geometry

BOWTIE = Polygon([(0, 0), (2, 2), (2, 0), (0, 2), (0, 0)])


class TestRepairGeometry:
    """Single-geometry repair."""

    def test_valid_polygon_unchanged_in_shape(self):
        square = box(0, 0, 10, 10)
        result = repair_geometry(square)
        assert result.is_valid
        assert result.equals(square)

    def test_bowtie_is_repaired(self):
        assert not BOWTIE.is_valid
        result = repair_geometry(BOWTIE)
        assert result.is_valid
        assert result.geom_type == "MultiPolygon"
        assert result.area == pytest.approx(2.0)

    def test_slivers_dropped(self):
        geom = MultiPolygon([box(0, 0, 100, 100), box(200, 200, 200.5, 200.5)])
        result = repair_geometry(geom, min_area=1.0)
        assert result.geom_type == "Polygon"
        assert result.area == pytest.approx(10000.0)

    def test_all_slivers_gives_empty(self):
        result = repair_geometry(box(0, 0, 0.5, 0.5), min_area=1.0)
        assert result.is_empty

    def test_empty_input_gives_empty_polygon(self):
        result = repair_geometry(Polygon())
        assert result.is_empty
        assert result.geom_type == "Polygon"

    def test_none_raises(self):
        with pytest.raises(GeometryError, match="null geometry") as exc_info:
            repair_geometry(None, feature_id="f1", dataset="zoning")
        assert exc_info.value.feature_id == "f1"
        assert exc_info.value.dataset == "zoning"

    def test_non_finite_raises(self):
        geom = Polygon([(0, 0), (float("nan"), 0), (1, 1), (0, 0)])
        with pytest.raises(GeometryError, match="non-finite"):
            repair_geometry(geom)

    def test_non_polygonal_raises(self):
        with pytest.raises(GeometryError, match="no polygonal area"):
            repair_geometry(LineString([(0, 0), (1, 1)]))

    def test_deterministic(self):
        first = repair_geometry(BOWTIE)
        second = repair_geometry(Polygon(BOWTIE.exterior.coords))
        assert first.wkb == second.wkb

    def test_input_not_modified(self):
        before = BOWTIE.wkb
        repair_geometry(BOWTIE)
        assert BOWTIE.wkb == before


class TestGeometryValidator:
    """Collection-level validation."""

    @pytest.fixture
    def frame(self):
        return gpd.GeoDataFrame(
            {"id": ["a", "b", "c"], "class_code": ["D-1", "R-1", "C-2"]},
            geometry=[box(0, 0, 10, 10), None, BOWTIE],
            crs="EPSG:3435",
        )

    def test_excludes_and_reports_unrepairable(self, frame):
        validator = GeometryValidator()
        result = validator.validate(frame, dataset="zoning")

        assert list(result["id"]) == ["a", "c"]
        assert len(validator.errors) == 1
        error = validator.errors[0]
        assert error.feature_id == "b"
        assert error.dataset == "zoning"
        assert "zoning" in str(error)

    def test_repairs_invalid_features(self, frame):
        result = GeometryValidator().validate(frame, dataset="zoning")
        assert result.geometry.is_valid.all()
        assert result.crs == frame.crs

    def test_does_not_mutate_input(self, frame):
        GeometryValidator().validate(frame)
        assert len(frame) == 3
        assert frame.geometry.iloc[1] is None
        assert not frame.geometry.iloc[2].is_valid

    def test_keeps_attribute_columns(self, frame):
        result = GeometryValidator().validate(frame)
        assert list(result["class_code"]) == ["D-1", "C-2"]

    def test_sliver_feature_reported(self):
        frame = gpd.GeoDataFrame({"id": [1]}, geometry=[box(0, 0, 0.1, 0.1)], crs="EPSG:3435")
        validator = GeometryValidator(min_area=1.0)
        result = validator.validate(frame)
        assert len(result) == 0
        assert "sliver" in validator.errors[0].reason

    def test_index_used_without_id_column(self):
        frame = gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1), None], crs="EPSG:3435")
        validator = GeometryValidator()
        validator.validate(frame)
        assert validator.errors[0].feature_id == 1

    def test_points(self):
        frame = gpd.GeoDataFrame(
            {"id": ["p1", "p2"]}, geometry=[Point(0, 0), Point()], crs="EPSG:4326"
        )
        validator = GeometryValidator()
        result = validator.validate(frame, kind="point")
        assert list(result["id"]) == ["p1"]
        assert validator.errors[0].feature_id == "p2"

    def test_unknown_kind(self, frame):
        with pytest.raises(ValueError, match="kind"):
            GeometryValidator().validate(frame, kind="line")

    def test_negative_min_area(self):
        with pytest.raises(ValueError):
            GeometryValidator(min_area=-1)


class TestValidateStations:
    """Station coordinate checks."""

    def test_excludes_non_finite(self):
        station_set = StationSet(
            Agency.RAIL,
            frozenset(
                {
                    Station("ok", Agency.RAIL, -87.63, 41.88),
                    Station("bad", Agency.RAIL, math.nan, 41.88),
                }
            ),
            HierarchyMethod.ROUTE_INFERENCE,
        )
        validator = GeometryValidator()
        result = validator.validate_stations(station_set, dataset="rail_stations")

        assert [s.id for s in result] == ["ok"]
        assert result.method == HierarchyMethod.ROUTE_INFERENCE
        assert validator.errors[0].feature_id == "bad"
        assert len(station_set) == 2
