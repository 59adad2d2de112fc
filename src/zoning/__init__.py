"""
Parking-requirement zone engine.

Core functionality:
- ZonePipeline to fetch inputs, buffer stations and compute the three zones
- ZoneAlgebraEngine for the union/difference/clip steps and invariant checks
- build_station_buffer for closed-disc station coverage in a planar CRS
- compute_stats for zone areas and coverage percentages
- Source, station-feed and consumer adapters (ArcGIS REST, GeoJSON, GTFS)
"""

from .algebra import ZoneAlgebraEngine, ZoneInputs, check_invariants, resolve_overlaps
from .buffers import build_station_buffer
from .consumers import GeoJSONZoneWriter, ZoneConsumer, ZonePlotter
from .errors import (
    GeometryError,
    ProjectionError,
    SourceUnavailableError,
    ZoneConsistencyError,
    ZoningError,
)
from .gtfs import GTFSStationFeed, StationFeed
from .models import (
    Agency,
    CoverageStats,
    EngineConfig,
    HierarchyMethod,
    Station,
    StationSet,
    Zone,
    ZoneCategory,
    ZoneSet,
)
from .pipeline import PipelineSources, ZonePipeline
from .projection import ProjectionService
from .sources import ArcGISFeatureSource, DataSource, GeoJSONFileSource
from .statistics import compute_stats
from .validation import GeometryValidator, repair_geometry

__all__ = [
    "Agency",
    "ArcGISFeatureSource",
    "CoverageStats",
    "DataSource",
    "EngineConfig",
    "GeoJSONFileSource",
    "GeoJSONZoneWriter",
    "GeometryError",
    "GeometryValidator",
    "GTFSStationFeed",
    "HierarchyMethod",
    "PipelineSources",
    "ProjectionError",
    "ProjectionService",
    "SourceUnavailableError",
    "Station",
    "StationFeed",
    "StationSet",
    "Zone",
    "ZoneAlgebraEngine",
    "ZoneCategory",
    "ZoneConsistencyError",
    "ZoneConsumer",
    "ZoneInputs",
    "ZonePipeline",
    "ZonePlotter",
    "ZoneSet",
    "ZoningError",
    "build_station_buffer",
    "check_invariants",
    "compute_stats",
    "repair_geometry",
    "resolve_overlaps",
]
