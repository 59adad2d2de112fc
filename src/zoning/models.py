"""
Domain types for the parking-zone engine.

Provides:
- Station / StationSet: transit stations resolved to one record per location
- CorridorPolygon, ZoningDistrict, Boundary: polygon inputs
- Zone / ZoneSet: the three regulatory zones produced by the algebra engine
- CoverageStats: area statistics for a zone set
- EngineConfig: distances, CRS identifiers and tolerances for one run

All types are frozen dataclasses. Stages hand new values forward instead of
modifying existing ones.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterator, Optional

from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from src import config


class Agency(str, Enum):
    """Transit agency class a station belongs to."""

    RAIL = "rail"
    SECONDARY = "secondary"


class HierarchyMethod(str, Enum):
    """How a station feed collapsed stops into one station per location."""

    EXPLICIT_HIERARCHY = "explicit_hierarchy"
    ROUTE_INFERENCE = "route_inference"


class ZoneCategory(str, Enum):
    """Regulatory classification of a zone."""

    NO_PARKING_REQUIRED = "NoParkingRequired"
    ADMIN_ADJUSTMENT_TRANSIT = "AdminAdjustmentRequired_Transit"
    ADMIN_ADJUSTMENT_DOWNTOWN = "AdminAdjustmentRequired_Downtown"


ZONE_ORDER = (
    ZoneCategory.NO_PARKING_REQUIRED,
    ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT,
    ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN,
)


# =============================================================================
# INPUTS
# =============================================================================


@dataclass(frozen=True)
class Station:
    """
    A physical transit station.

    Attributes:
        id: Station identifier from the feed
        agency: Agency class (rail or secondary)
        lon: Longitude in the geographic CRS
        lat: Latitude in the geographic CRS
    """

    id: str
    agency: Agency
    lon: float
    lat: float

    @property
    def location(self) -> Point:
        return Point(self.lon, self.lat)


@dataclass(frozen=True)
class StationSet:
    """Canonical stations for one agency plus the method used to resolve them."""

    agency: Agency
    stations: FrozenSet[Station] = frozenset()
    method: HierarchyMethod = HierarchyMethod.EXPLICIT_HIERARCHY

    def __iter__(self) -> Iterator[Station]:
        return iter(self.sorted())

    def __len__(self) -> int:
        return len(self.stations)

    def sorted(self) -> list:
        """Stations in deterministic (id, lon, lat) order."""
        return sorted(self.stations, key=lambda s: (s.id, s.lon, s.lat))


@dataclass(frozen=True)
class CorridorPolygon:
    """Pre-buffered bus corridor coverage region."""

    id: str
    geometry: BaseGeometry


@dataclass(frozen=True)
class ZoningDistrict:
    """A zoning district with its class code."""

    id: str
    class_code: str
    geometry: BaseGeometry

    def is_downtown(self, prefix: str) -> bool:
        return str(self.class_code).strip().startswith(prefix)


@dataclass(frozen=True)
class Boundary:
    """Jurisdiction boundary; every zone is clipped to it."""

    geometry: BaseGeometry


# =============================================================================
# OUTPUTS
# =============================================================================


@dataclass(frozen=True)
class Zone:
    """
    One regulatory zone.

    Attributes:
        category: Zone classification
        geometry: Polygon, MultiPolygon or empty geometry
        area: Area in square feet, measured in the projected CRS
        crs: CRS identifier of ``geometry``
    """

    category: ZoneCategory
    geometry: BaseGeometry
    area: float
    crs: str

    @property
    def is_empty(self) -> bool:
        return self.geometry.is_empty


@dataclass(frozen=True)
class ZoneSet:
    """The three zones of one run, one per category."""

    no_parking: Zone
    transit_adjustment: Zone
    downtown_adjustment: Zone

    def __post_init__(self):
        expected = dict(
            zip(("no_parking", "transit_adjustment", "downtown_adjustment"), ZONE_ORDER)
        )
        for attr, category in expected.items():
            zone = getattr(self, attr)
            if zone.category != category:
                raise ValueError(
                    f"ZoneSet.{attr} must have category {category.value}, "
                    f"got {zone.category.value}"
                )

    def __iter__(self) -> Iterator[Zone]:
        return iter((self.no_parking, self.transit_adjustment, self.downtown_adjustment))

    def __len__(self) -> int:
        return 3

    def by_category(self, category: ZoneCategory) -> Zone:
        for zone in self:
            if zone.category == ZoneCategory(category):
                return zone
        raise KeyError(category)

    def with_geometries(self, fn: Callable[[BaseGeometry], BaseGeometry], crs: str) -> "ZoneSet":
        """Return a new set with ``fn`` applied to every geometry (areas unchanged)."""
        return ZoneSet(*(replace(zone, geometry=fn(zone.geometry), crs=crs) for zone in self))

    @classmethod
    def from_zones(cls, zones: Dict[ZoneCategory, Zone]) -> "ZoneSet":
        return cls(*(zones[category] for category in ZONE_ORDER))


@dataclass(frozen=True)
class CoverageStats:
    """
    Zone area statistics at full precision.

    Attributes:
        unit: Area unit of ``zone_areas`` and ``total_area``
        zone_areas: Area per zone category
        total_area: Area of the jurisdiction boundary
        percentages: Zone area as a percentage of ``total_area``
    """

    unit: str
    zone_areas: Dict[ZoneCategory, float]
    total_area: float
    percentages: Dict[ZoneCategory, float]

    @property
    def classified_area(self) -> float:
        return sum(self.zone_areas.values())

    @property
    def classified_percentage(self) -> float:
        return sum(self.percentages.values())

    def rounded(self, ndigits: int = 1) -> "CoverageStats":
        """Presentation copy with areas and percentages rounded."""
        return CoverageStats(
            unit=self.unit,
            zone_areas={k: round(v, ndigits) for k, v in self.zone_areas.items()},
            total_area=round(self.total_area, ndigits),
            percentages={k: round(v, ndigits) for k, v in self.percentages.items()},
        )

    def to_dict(self, ndigits: Optional[int] = 1) -> Dict[str, Any]:
        """Serialize to dictionary, rounded unless ``ndigits`` is None."""
        stats = self if ndigits is None else self.rounded(ndigits)
        return {
            "unit": stats.unit,
            "total_area": stats.total_area,
            "zones": {
                category.value: {
                    "area": stats.zone_areas[category],
                    "percentage": stats.percentages[category],
                }
                for category in ZONE_ORDER
            },
        }


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class EngineConfig:
    """
    Per-run engine configuration.

    Attributes:
        rail_buffer_feet: Radius around rail stations
        secondary_buffer_feet: Radius around secondary-agency stations
        projected_crs: Planar CRS used for buffering and area measurement
        geographic_crs: Geographic CRS used for interchange
        downtown_class_prefix: Class-code prefix of downtown districts
        sliver_tolerance: Polygon parts below this area (sq ft) are dropped
        overlap_tolerance: Largest overlap area (sq ft) accepted between zones
        circle_segments: Segments per quarter circle when buffering points
    """

    rail_buffer_feet: float = config.RAIL_BUFFER_FEET
    secondary_buffer_feet: float = config.SECONDARY_BUFFER_FEET
    projected_crs: str = config.PROJECTED_CRS
    geographic_crs: str = config.GEOGRAPHIC_CRS
    downtown_class_prefix: str = config.DOWNTOWN_CLASS_PREFIX
    sliver_tolerance: float = config.SLIVER_TOLERANCE_SQ_FT
    overlap_tolerance: float = config.OVERLAP_TOLERANCE_SQ_FT
    circle_segments: int = config.CIRCLE_SEGMENTS

    def __post_init__(self):
        """Validate the configuration."""
        for name in ("rail_buffer_feet", "secondary_buffer_feet"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("sliver_tolerance", "overlap_tolerance"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if not self.downtown_class_prefix:
            raise ValueError("downtown_class_prefix must not be empty")
        if self.circle_segments < 1:
            raise ValueError(f"circle_segments must be >= 1, got {self.circle_segments}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "rail_buffer_feet": self.rail_buffer_feet,
            "secondary_buffer_feet": self.secondary_buffer_feet,
            "projected_crs": self.projected_crs,
            "geographic_crs": self.geographic_crs,
            "downtown_class_prefix": self.downtown_class_prefix,
            "sliver_tolerance": self.sliver_tolerance,
            "overlap_tolerance": self.overlap_tolerance,
            "circle_segments": self.circle_segments,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Deserialize from dictionary; missing keys keep their defaults."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
