"""
Projection between the interchange (geographic) CRS and the planar CRS.

All distance-sensitive work (buffering, area measurement) happens in the
projected CRS. Geometries travel in the geographic CRS everywhere else.

IMPORTANT: The projected CRS may use US survey feet, international feet or
meters. Distances given in feet are converted through the CRS's own axis unit
factor; they are never applied to degrees.

Usage:
    from src.zoning.projection import ProjectionService

    projection = ProjectionService("EPSG:3435", "EPSG:4326")
    planar = projection.to_projected(point)
    radius = projection.feet_to_units(2640)
    back = projection.to_geographic(planar.buffer(radius))
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np
import shapely
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError
from shapely.geometry.base import BaseGeometry

from src.zoning.errors import ProjectionError

logger = logging.getLogger(__name__)

METERS_PER_FOOT = 0.3048
ROUNDTRIP_TOLERANCE_DEG = 1e-6


def _parse_crs(crs_id: str) -> CRS:
    try:
        return CRS.from_user_input(crs_id)
    except CRSError as e:
        raise ProjectionError(f"Unparseable CRS: {e}", crs=str(crs_id)) from e


def _transform_coords(transformer: Transformer, geom: BaseGeometry) -> BaseGeometry:
    """Apply a transformer to every (x, y) pair of a geometry in one call."""

    def apply(coords: np.ndarray) -> np.ndarray:
        x, y = transformer.transform(coords[:, 0], coords[:, 1], errcheck=True)
        return np.column_stack([x, y])

    return shapely.transform(geom, apply)


class ProjectionService:
    """
    Converts geometries between a geographic and a projected CRS.

    Transformers are built once per service with ``always_xy=True`` so
    geographic coordinates are always (lon, lat).

    Attributes:
        projected_crs: pyproj CRS used for metric work
        geographic_crs: pyproj CRS used for interchange
        domain: (west, south, east, north) area of use of the projected CRS in
            degrees, or None when pyproj does not define one
    """

    def __init__(self, projected_crs: str, geographic_crs: str = "EPSG:4326"):
        self.projected_crs = _parse_crs(projected_crs)
        self.geographic_crs = _parse_crs(geographic_crs)

        if not self.projected_crs.is_projected:
            raise ProjectionError("Projected CRS is not a projected system", crs=str(projected_crs))
        if not self.geographic_crs.is_geographic:
            raise ProjectionError(
                "Geographic CRS is not a geographic system", crs=str(geographic_crs)
            )

        self.projected_id = str(projected_crs)
        self.geographic_id = str(geographic_crs)

        try:
            self._forward = Transformer.from_crs(
                self.geographic_crs, self.projected_crs, always_xy=True
            )
            self._inverse = Transformer.from_crs(
                self.projected_crs, self.geographic_crs, always_xy=True
            )
        except ProjError as e:
            raise ProjectionError(f"Cannot build transformer: {e}", crs=self.projected_id) from e

        area = self.projected_crs.area_of_use
        self.domain: Optional[Tuple[float, float, float, float]] = (
            (area.west, area.south, area.east, area.north) if area is not None else None
        )

        logger.debug(
            "Projection %s <-> %s (unit: %.10f m, domain: %s)",
            self.geographic_id,
            self.projected_id,
            self.linear_unit_meters,
            self.domain,
        )

    # ===== Units =====

    @property
    def linear_unit_meters(self) -> float:
        """Length of one projected CRS unit in meters."""
        return float(self.projected_crs.axis_info[0].unit_conversion_factor)

    def feet_to_units(self, feet: float) -> float:
        """Convert international feet to projected CRS units."""
        return feet * METERS_PER_FOOT / self.linear_unit_meters

    def area_to_square_meters(self, area: float) -> float:
        """Convert an area in squared projected units to square meters."""
        return area * self.linear_unit_meters ** 2

    def area_to_square_feet(self, area: float) -> float:
        """Convert an area in squared projected units to square (international) feet."""
        return self.area_to_square_meters(area) / METERS_PER_FOOT ** 2

    # ===== Domain checks =====

    def _check_geographic_domain(self, geom: BaseGeometry, context: str) -> None:
        if geom.is_empty:
            return
        coords = shapely.get_coordinates(geom)
        if not np.all(np.isfinite(coords)):
            raise ProjectionError(f"{context}: non-finite coordinates", crs=self.projected_id)

        west, south, east, north = geom.bounds
        if west < -180 or east > 180 or south < -90 or north > 90:
            raise ProjectionError(
                f"{context}: coordinates outside lon/lat range "
                f"(bounds={geom.bounds})",
                crs=self.geographic_id,
            )
        if self.domain is not None:
            d_west, d_south, d_east, d_north = self.domain
            if west < d_west or east > d_east or south < d_south or north > d_north:
                raise ProjectionError(
                    f"{context}: bounds {geom.bounds} outside CRS area of use {self.domain}",
                    crs=self.projected_id,
                )

    # ===== Geometry transforms =====

    def to_projected(self, geom: BaseGeometry) -> BaseGeometry:
        """
        Transform a geographic geometry into the projected CRS.

        Raises:
            ProjectionError: If coordinates fall outside the projected CRS's
                area of use or the transform fails.
        """
        self._check_geographic_domain(geom, "to_projected")
        if geom.is_empty:
            return geom
        try:
            result = _transform_coords(self._forward, geom)
        except ProjError as e:
            raise ProjectionError(f"to_projected failed: {e}", crs=self.projected_id) from e
        if not np.all(np.isfinite(shapely.get_coordinates(result))):
            raise ProjectionError("to_projected produced non-finite coordinates", crs=self.projected_id)
        return result

    def to_geographic(self, geom: BaseGeometry) -> BaseGeometry:
        """
        Transform a projected geometry back into the geographic CRS.

        Raises:
            ProjectionError: If the result lies outside the projected CRS's
                area of use or the transform fails.
        """
        if geom.is_empty:
            return geom
        try:
            result = _transform_coords(self._inverse, geom)
        except ProjError as e:
            raise ProjectionError(f"to_geographic failed: {e}", crs=self.projected_id) from e
        self._check_geographic_domain(result, "to_geographic")
        return result

    def roundtrip_error(self, geom: BaseGeometry) -> float:
        """Largest coordinate deviation (degrees) of geographic -> projected -> geographic."""
        if geom.is_empty:
            return 0.0
        back = self.to_geographic(self.to_projected(geom))
        original = shapely.get_coordinates(geom)
        restored = shapely.get_coordinates(back)
        return float(np.max(np.abs(original - restored)))

    # ===== GeoDataFrame transforms =====

    def project_frame(self, frame):
        """Reproject a GeoDataFrame into the projected CRS after a domain check."""
        geographic = self.geographic_frame(frame)
        if len(geographic):
            bounds = shapely.box(*geographic.total_bounds)
            self._check_geographic_domain(bounds, "project_frame")
        return geographic.to_crs(self.projected_crs)

    def geographic_frame(self, frame):
        """Reproject a GeoDataFrame into the geographic CRS."""
        if frame.crs is None:
            raise ProjectionError("GeoDataFrame has no CRS")
        if frame.crs == self.geographic_crs:
            return frame
        try:
            return frame.to_crs(self.geographic_crs)
        except (CRSError, ProjError) as e:
            raise ProjectionError(f"Cannot reproject frame: {e}", crs=str(frame.crs)) from e


def check_roundtrip(projection: ProjectionService, geom: BaseGeometry) -> None:
    """Raise ProjectionError when a round trip drifts beyond ROUNDTRIP_TOLERANCE_DEG."""
    error = projection.roundtrip_error(geom)
    if not math.isfinite(error) or error >= ROUNDTRIP_TOLERANCE_DEG:
        raise ProjectionError(
            f"Round trip drift {error:.3e} deg exceeds {ROUNDTRIP_TOLERANCE_DEG}",
            crs=projection.projected_id,
        )
