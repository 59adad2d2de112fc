"""
Zone algebra: derives the three disjoint regulatory zones.

Steps (fixed order, each output re-validated):
1. transit_served = rail_buffer ∪ corridors
2. secondary_only = secondary_buffer − transit_served
3. downtown       = ∪ districts whose class code has the downtown prefix
4. no_parking     = transit_served − downtown
5. clip each of no_parking, secondary_only, downtown to the boundary
6. check mutual exclusivity and boundary containment

Step 2 must subtract the transit-served area. The secondary buffer on its own
re-includes every overlap with rail/corridor coverage.

The engine reports invariant violations as ZoneConsistencyError and never
fixes them itself; ``resolve_overlaps`` is available to callers who choose to
re-subtract.

Example:
    from src.zoning.algebra import ZoneAlgebraEngine, ZoneInputs

    engine = ZoneAlgebraEngine(EngineConfig(), projection)
    zones = engine.compute(ZoneInputs(rail, secondary, corridors, districts, boundary))
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple

from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from src.zoning.errors import ZoneConsistencyError
from src.zoning.models import (
    ZONE_ORDER,
    CorridorPolygon,
    EngineConfig,
    Zone,
    ZoneCategory,
    ZoneSet,
    ZoningDistrict,
)
from src.zoning.projection import ProjectionService
from src.zoning.validation import repair_geometry

logger = logging.getLogger(__name__)

BOUNDARY_LABEL = "Boundary"

# Higher-precedence zones keep contested area in resolve_overlaps
DEFAULT_PRECEDENCE = (
    ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN,
    ZoneCategory.NO_PARKING_REQUIRED,
    ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT,
)


@dataclass(frozen=True)
class ZoneInputs:
    """Validated inputs in the projected CRS."""

    rail_buffer: BaseGeometry
    secondary_buffer: BaseGeometry
    corridors: Sequence[CorridorPolygon] = field(default_factory=tuple)
    districts: Sequence[ZoningDistrict] = field(default_factory=tuple)
    boundary: BaseGeometry = field(default_factory=Polygon)


@dataclass(frozen=True)
class ZoneSteps:
    """Intermediate results of one computation, kept for diagnostics."""

    transit_served: BaseGeometry
    secondary_only: BaseGeometry
    downtown: BaseGeometry
    no_parking: BaseGeometry
    clipped: Dict[ZoneCategory, BaseGeometry]


class ZoneAlgebraEngine:
    """
    Computes the three zones from buffers, corridors, districts and boundary.

    Attributes:
        config: Engine configuration (prefix, tolerances)
        projection: Used to express tolerances and areas in feet
    """

    def __init__(self, config: EngineConfig, projection: ProjectionService):
        self.config = config
        self.projection = projection
        # Tolerances are configured in square feet; geometries are in CRS units
        sq_ft_per_unit = projection.area_to_square_feet(1.0)
        self.sliver_area_units = config.sliver_tolerance / sq_ft_per_unit
        self.overlap_area_units = config.overlap_tolerance / sq_ft_per_unit

    def _clean(self, geom: BaseGeometry, step: str) -> BaseGeometry:
        return repair_geometry(geom, min_area=self.sliver_area_units, feature_id=step)

    @staticmethod
    def _union(geoms: Sequence[BaseGeometry]) -> BaseGeometry:
        geoms = [g for g in geoms if g is not None and not g.is_empty]
        if not geoms:
            return Polygon()
        return unary_union(geoms)

    # ===== Steps =====

    def transit_served_area(
        self, rail_buffer: BaseGeometry, corridors: Sequence[CorridorPolygon]
    ) -> BaseGeometry:
        """Step 1: rail buffer united with every corridor polygon."""
        ordered = sorted(corridors, key=lambda c: str(c.id))
        corridor_union = self._clean(self._union([c.geometry for c in ordered]), "corridor_union")
        return self._clean(self._union([rail_buffer, corridor_union]), "transit_served")

    def secondary_only_area(
        self, secondary_buffer: BaseGeometry, transit_served: BaseGeometry
    ) -> BaseGeometry:
        """Step 2: secondary coverage not already transit-served."""
        if secondary_buffer.is_empty:
            return Polygon()
        return self._clean(secondary_buffer.difference(transit_served), "secondary_only")

    def downtown_area(self, districts: Sequence[ZoningDistrict]) -> BaseGeometry:
        """Step 3: union of districts with the downtown class prefix."""
        prefix = self.config.downtown_class_prefix
        downtown = sorted(
            (d for d in districts if d.is_downtown(prefix)), key=lambda d: str(d.id)
        )
        logger.info(
            "%d of %d zoning districts match downtown prefix '%s'",
            len(downtown),
            len(districts),
            prefix,
        )
        return self._clean(self._union([d.geometry for d in downtown]), "downtown")

    def no_parking_area(self, transit_served: BaseGeometry, downtown: BaseGeometry) -> BaseGeometry:
        """Step 4: transit-served area outside the downtown carve-out."""
        if downtown.is_empty:
            return transit_served
        return self._clean(transit_served.difference(downtown), "no_parking")

    def clip(self, geom: BaseGeometry, boundary: BaseGeometry, category: ZoneCategory) -> BaseGeometry:
        """Step 5: intersect a zone with the boundary."""
        if geom.is_empty or boundary.is_empty:
            return Polygon()
        return self._clean(geom.intersection(boundary), category.value)

    # ===== Public API =====

    def compute_steps(self, inputs: ZoneInputs) -> ZoneSteps:
        """Run steps 1-5 and return every intermediate geometry."""
        transit_served = self.transit_served_area(inputs.rail_buffer, inputs.corridors)
        secondary_only = self.secondary_only_area(inputs.secondary_buffer, transit_served)
        downtown = self.downtown_area(inputs.districts)
        no_parking = self.no_parking_area(transit_served, downtown)

        unclipped = {
            ZoneCategory.NO_PARKING_REQUIRED: no_parking,
            ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT: secondary_only,
            ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN: downtown,
        }
        clipped = {
            category: self.clip(geom, inputs.boundary, category)
            for category, geom in unclipped.items()
        }
        return ZoneSteps(
            transit_served=transit_served,
            secondary_only=secondary_only,
            downtown=downtown,
            no_parking=no_parking,
            clipped=clipped,
        )

    def compute(self, inputs: ZoneInputs) -> ZoneSet:
        """
        Compute the three zones.

        Returns:
            ZoneSet in the projected CRS with areas in square feet.

        Raises:
            ZoneConsistencyError: If the zones overlap each other or extend
                beyond the boundary by more than the overlap tolerance.
        """
        steps = self.compute_steps(inputs)
        zones = ZoneSet.from_zones(
            {
                category: Zone(
                    category=category,
                    geometry=steps.clipped[category],
                    area=self.projection.area_to_square_feet(steps.clipped[category].area),
                    crs=self.projection.projected_id,
                )
                for category in ZONE_ORDER
            }
        )
        check_invariants(zones, inputs.boundary, self.overlap_area_units)

        for zone in zones:
            logger.info("%s: %.1f sq ft", zone.category.value, zone.area)
        return zones


def check_invariants(zones: ZoneSet, boundary: BaseGeometry, tolerance: float = 0.0) -> None:
    """
    Assert mutual exclusivity and boundary containment.

    Args:
        zones: Zones to check (same CRS as ``boundary``)
        boundary: Jurisdiction boundary
        tolerance: Largest accepted overlap area in squared CRS units

    Raises:
        ZoneConsistencyError: With the first offending pair and its overlap.
    """
    for first, second in itertools.combinations(zones, 2):
        if first.is_empty or second.is_empty:
            continue
        overlap = first.geometry.intersection(second.geometry)
        if overlap.area > tolerance:
            logger.error(
                "Zones %s and %s overlap by %.3f",
                first.category.value,
                second.category.value,
                overlap.area,
            )
            raise ZoneConsistencyError((first.category.value, second.category.value), overlap)

    for zone in zones:
        if zone.is_empty:
            continue
        outside = zone.geometry.difference(boundary)
        if outside.area > tolerance:
            logger.error("Zone %s extends %.3f beyond the boundary", zone.category.value, outside.area)
            raise ZoneConsistencyError((zone.category.value, BOUNDARY_LABEL), outside)


def resolve_overlaps(
    zones: ZoneSet,
    precedence: Tuple[ZoneCategory, ...] = DEFAULT_PRECEDENCE,
    area_to_square_feet=None,
) -> ZoneSet:
    """
    Re-subtract higher-precedence zones from lower ones.

    For callers that prefer to repair a ZoneConsistencyError instead of
    aborting. Areas are recomputed with ``area_to_square_feet`` when given,
    otherwise scaled from the original zone area.

    Returns:
        New ZoneSet whose zones are pairwise disjoint.
    """
    if sorted(c.value for c in precedence) != sorted(c.value for c in ZONE_ORDER):
        raise ValueError("precedence must list every zone category exactly once")

    claimed: BaseGeometry = Polygon()
    resolved: Dict[ZoneCategory, Zone] = {}
    for category in precedence:
        zone = zones.by_category(category)
        geom = zone.geometry
        if not claimed.is_empty and not geom.is_empty:
            geom = repair_geometry(geom.difference(claimed), feature_id=f"resolved_{category.value}")
        if area_to_square_feet is not None:
            area = area_to_square_feet(geom.area)
        elif zone.geometry.area > 0:
            area = zone.area * geom.area / zone.geometry.area
        else:
            area = 0.0
        resolved[category] = Zone(category=category, geometry=geom, area=area, crs=zone.crs)
        claimed = unary_union([claimed, geom]) if not geom.is_empty else claimed
    return ZoneSet.from_zones(resolved)
