"""
Geometry validation and repair.

Every geometry entering or leaving a stage passes through here:
- repair_geometry: make a single polygonal geometry valid, drop slivers
- GeometryValidator: repair a GeoDataFrame feature by feature, excluding and
  reporting features that cannot be repaired
- validate_stations: the same contract for station points

Repairs are deterministic: results are normalized with shapely, so the same
input always yields a byte-identical geometry.

Usage:
    from src.zoning.validation import GeometryValidator

    validator = GeometryValidator(min_area=1.0)
    clean = validator.validate(districts, dataset="zoning", id_column="id")
    for error in validator.errors:
        print(error.feature_id, error.reason)
"""

import logging
import math
from typing import Any, List, Optional

import geopandas as gpd
import numpy as np
import shapely
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity, make_valid

from src.zoning.errors import GeometryError
from src.zoning.models import StationSet

logger = logging.getLogger(__name__)

EMPTY_POLYGON = Polygon()


def _polygon_parts(geom: BaseGeometry) -> List[Polygon]:
    """Flatten any geometry into its non-empty Polygon parts."""
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    if isinstance(geom, (MultiPolygon, GeometryCollection)):
        parts = []
        for part in geom.geoms:
            parts.extend(_polygon_parts(part))
        return parts
    return []


def _has_finite_coordinates(geom: BaseGeometry) -> bool:
    coords = shapely.get_coordinates(geom)
    return bool(np.all(np.isfinite(coords)))


def repair_geometry(
    geom: Optional[BaseGeometry],
    min_area: float = 0.0,
    feature_id: Any = None,
    dataset: Optional[str] = None,
) -> BaseGeometry:
    """
    Repair a polygonal geometry and drop sliver parts.

    Args:
        geom: Input geometry (Polygon, MultiPolygon or a collection holding them)
        min_area: Polygon parts with area below this value are dropped
        feature_id: Identifier used in error reports
        dataset: Dataset name used in error reports

    Returns:
        Valid, normalized Polygon or MultiPolygon. An empty input returns an
        empty Polygon.

    Raises:
        GeometryError: If the geometry is null, has non-finite coordinates,
            or contains no polygonal area after repair.
    """
    if geom is None:
        raise GeometryError(feature_id, "null geometry", dataset)
    if geom.is_empty:
        return EMPTY_POLYGON
    if not _has_finite_coordinates(geom):
        raise GeometryError(feature_id, "non-finite coordinates", dataset)

    if not geom.is_valid:
        logger.debug("Repairing %s: %s", feature_id, explain_validity(geom))
        geom = make_valid(geom)

    parts = _polygon_parts(geom)
    if not parts:
        raise GeometryError(
            feature_id, f"no polygonal area in {geom.geom_type} geometry", dataset
        )

    kept = [part for part in parts if part.area >= min_area] if min_area > 0 else parts
    if not kept:
        return EMPTY_POLYGON

    if len(kept) == 1:
        result = kept[0]
    else:
        # Parts from make_valid may touch along edges; union dissolves them
        result = shapely.union_all(kept)

    if not result.is_valid:
        raise GeometryError(feature_id, f"repair failed: {explain_validity(result)}", dataset)

    return shapely.normalize(result)


def _check_point(geom: Optional[BaseGeometry], feature_id: Any, dataset: Optional[str]):
    if geom is None:
        raise GeometryError(feature_id, "null geometry", dataset)
    if geom.is_empty:
        raise GeometryError(feature_id, "empty point", dataset)
    if geom.geom_type != "Point":
        raise GeometryError(feature_id, f"expected Point, got {geom.geom_type}", dataset)
    if not _has_finite_coordinates(geom):
        raise GeometryError(feature_id, "non-finite coordinates", dataset)
    return geom


class GeometryValidator:
    """
    Validates and repairs geometry collections.

    Unrepairable features are excluded from the returned collection and
    recorded in ``errors`` (one GeometryError per feature, with its id).

    Attributes:
        min_area: Sliver threshold in the units of the geometries being checked
        errors: GeometryErrors reported since construction
    """

    def __init__(self, min_area: float = 0.0):
        if min_area < 0:
            raise ValueError(f"min_area must be non-negative, got {min_area}")
        self.min_area = min_area
        self.errors: List[GeometryError] = []

    def _report(self, error: GeometryError) -> None:
        logger.warning("Excluding feature: %s", error)
        self.errors.append(error)

    def validate(
        self,
        frame,
        dataset: Optional[str] = None,
        id_column: str = "id",
        kind: str = "polygon",
    ):
        """
        Repair every feature of a GeoDataFrame.

        Args:
            frame: geopandas.GeoDataFrame to validate (not modified)
            dataset: Dataset name for error reports
            id_column: Column holding feature identifiers; the row index is
                used when the column is missing
            kind: "polygon" to repair polygon features, "point" to check points

        Returns:
            New GeoDataFrame with repaired geometries and without the features
            that could not be repaired.
        """
        if kind not in ("polygon", "point"):
            raise ValueError(f"Unknown geometry kind: {kind}")

        ids = frame[id_column] if id_column in frame.columns else frame.index.to_series()
        repaired = []
        keep = []
        n_repaired = 0

        for feature_id, geom in zip(ids, frame.geometry):
            try:
                if kind == "point":
                    fixed = _check_point(geom, feature_id, dataset)
                else:
                    fixed = repair_geometry(geom, self.min_area, feature_id, dataset)
                    if fixed.is_empty and not (geom is None or geom.is_empty):
                        raise GeometryError(
                            feature_id, "geometry collapsed below sliver tolerance", dataset
                        )
                    if fixed.is_empty:
                        raise GeometryError(feature_id, "empty geometry", dataset)
            except GeometryError as e:
                self._report(e)
                keep.append(False)
                continue

            if kind == "polygon" and not geom.is_valid:
                n_repaired += 1
            repaired.append(fixed)
            keep.append(True)

        result = frame.loc[keep].copy()
        result[frame.geometry.name] = gpd.GeoSeries(repaired, index=result.index, crs=frame.crs)

        logger.info(
            "Validated %s: %d features kept, %d repaired, %d excluded",
            dataset or "collection",
            len(result),
            n_repaired,
            keep.count(False),
        )
        return result

    def validate_stations(self, station_set: StationSet, dataset: Optional[str] = None) -> StationSet:
        """
        Check station coordinates, excluding and reporting invalid stations.

        Returns:
            New StationSet with only valid stations (method preserved).
        """
        valid = set()
        for station in station_set.sorted():
            if not (math.isfinite(station.lon) and math.isfinite(station.lat)):
                self._report(GeometryError(station.id, "non-finite coordinates", dataset))
                continue
            valid.add(station)

        logger.info(
            "Validated %s: %d of %d stations kept",
            dataset or station_set.agency.value,
            len(valid),
            len(station_set),
        )
        return StationSet(
            agency=station_set.agency,
            stations=frozenset(valid),
            method=station_set.method,
        )
