"""
Zone area statistics.

Areas are measured on projected geometries only, converted to square meters
through the projected CRS's unit, then to the requested unit. Values stay at
full precision; CoverageStats.rounded() is the presentation step.
"""

import logging
from typing import Dict

from shapely.geometry.base import BaseGeometry

from src.zoning.models import CoverageStats, ZoneCategory, ZoneSet
from src.zoning.projection import ProjectionService

logger = logging.getLogger(__name__)

# Square meters per unit
AREA_UNITS: Dict[str, float] = {
    "square_meters": 1.0,
    "square_feet": 0.09290304,
    "acres": 4046.8564224,
    "hectares": 10000.0,
    "square_miles": 2589988.110336,
}


def convert_area(square_meters: float, unit: str) -> float:
    """Convert square meters to ``unit`` (one of AREA_UNITS)."""
    if unit not in AREA_UNITS:
        raise ValueError(f"Unknown area unit '{unit}'. Available: {list(AREA_UNITS.keys())}")
    return square_meters / AREA_UNITS[unit]


def compute_stats(
    zones: ZoneSet,
    boundary: BaseGeometry,
    projection: ProjectionService,
    unit: str = "acres",
) -> CoverageStats:
    """
    Measure zone areas and their share of the boundary.

    Args:
        zones: Zones in the projected CRS
        boundary: Boundary in the projected CRS
        projection: Service describing the projected CRS unit
        unit: Output area unit (see AREA_UNITS)

    Returns:
        CoverageStats at full precision.

    Raises:
        ValueError: If the unit is unknown, the zones are not in the projected
            CRS, or the boundary has no area.
    """
    if unit not in AREA_UNITS:
        raise ValueError(f"Unknown area unit '{unit}'. Available: {list(AREA_UNITS.keys())}")

    total_area = convert_area(projection.area_to_square_meters(boundary.area), unit)
    if total_area <= 0:
        raise ValueError("Boundary has zero area; percentages are undefined")

    zone_areas: Dict[ZoneCategory, float] = {}
    percentages: Dict[ZoneCategory, float] = {}
    for zone in zones:
        if zone.crs != projection.projected_id:
            raise ValueError(
                f"Zone {zone.category.value} is in {zone.crs}; areas must be measured "
                f"in {projection.projected_id}"
            )
        area = convert_area(projection.area_to_square_meters(zone.geometry.area), unit)
        zone_areas[zone.category] = area
        percentages[zone.category] = area / total_area * 100.0

    stats = CoverageStats(
        unit=unit,
        zone_areas=zone_areas,
        total_area=total_area,
        percentages=percentages,
    )
    logger.info(
        "Coverage: %.1f%% of %.1f %s classified",
        stats.classified_percentage,
        total_area,
        unit,
    )
    return stats
