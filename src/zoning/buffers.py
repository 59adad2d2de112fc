"""
Station buffering.

Expands a set of stations into the unioned region within a fixed radius of
any of them, computed in the projected CRS.

Closed-disc semantics: a point exactly ``radius_feet`` from a station is
inside the buffer. A polygonal circle whose vertices lie on the true circle
cuts chords inside it, so the polygon is built on the circumscribed radius
``r / cos(pi / (4 * segments))`` instead. With 64 segments per quarter circle
the overshoot at the vertices is under 0.1 per mille of the radius.

The boundary is therefore not sharp: along a vertex direction the buffer
reaches ``r * 7.6e-5`` past the radius, about 0.2 ft at 2640 ft. Points are
only guaranteed to be excluded beyond that margin.
"""

import logging
import math
from typing import Iterable, List

from shapely.geometry import Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from src.zoning.models import Station
from src.zoning.projection import ProjectionService
from src.zoning.validation import repair_geometry

logger = logging.getLogger(__name__)


def circumscribed_radius(radius: float, segments: int) -> float:
    """Vertex radius of a polygon whose edges stay outside a circle of ``radius``."""
    return radius / math.cos(math.pi / (4 * segments))


def unique_projected_points(
    stations: Iterable[Station], projection: ProjectionService
) -> List[Point]:
    """
    Project stations, collapsing those at identical coordinates.

    Returns:
        Points in the projected CRS sorted by (x, y) for deterministic unions.
    """
    seen = set()
    points = []
    for station in stations:
        projected = projection.to_projected(station.location)
        key = (projected.x, projected.y)
        if key in seen:
            logger.debug("Station %s duplicates an existing location, skipped", station.id)
            continue
        seen.add(key)
        points.append(projected)
    points.sort(key=lambda p: (p.x, p.y))
    return points


def build_station_buffer(
    stations: Iterable[Station],
    radius_feet: float,
    projection: ProjectionService,
    segments: int = 64,
    min_area: float = 0.0,
) -> BaseGeometry:
    """
    Union of closed discs of ``radius_feet`` around every station.

    Args:
        stations: Stations in the geographic CRS (not modified)
        radius_feet: Disc radius in feet
        projection: Service providing the projected CRS
        segments: Segments per quarter circle
        min_area: Sliver threshold (squared projected units) for the repair pass

    Returns:
        Valid Polygon/MultiPolygon in the projected CRS; an empty Polygon when
        there are no stations.

    Raises:
        ValueError: If ``radius_feet`` is not positive.
    """
    if radius_feet <= 0:
        raise ValueError(f"radius_feet must be positive, got {radius_feet}")

    points = unique_projected_points(stations, projection)
    if not points:
        logger.info("No stations to buffer")
        return Polygon()

    radius = circumscribed_radius(projection.feet_to_units(radius_feet), segments)
    discs = [point.buffer(radius, quad_segs=segments) for point in points]
    merged = unary_union(discs)

    result = repair_geometry(merged, min_area=min_area, feature_id="station_buffer")
    logger.info(
        "Buffered %d station locations at %.0f ft -> %s (%.1f sq units)",
        len(points),
        radius_feet,
        result.geom_type,
        result.area,
    )
    return result
