"""
Station feeds: resolve transit stops into one station per physical location.

GTFSStationFeed reads static GTFS feeds (directory or .zip) and picks one of
two resolution methods per feed:

- EXPLICIT_HIERARCHY: stops.txt carries ``location_type``/``parent_station``
  with at least one station row (location_type=1). Platforms collapse into
  their parent station. Stops without a known parent (bus stops in a mixed
  feed) are kept only when a rail-class route serves them, and dropped when
  the feed has no route tables to tell.
- ROUTE_INFERENCE: no hierarchy metadata. Keeps only stops served by
  rail-class routes (routes.txt -> trips.txt -> stop_times.txt).

Either way, stations at identical coordinates collapse into one. The method
used is recorded on the returned StationSet.

Usage:
    from src.zoning.gtfs import GTFSStationFeed
    from src.zoning.models import Agency

    feed = GTFSStationFeed({
        Agency.RAIL: "data/gtfs/cta.zip",
        Agency.SECONDARY: "data/gtfs/metra",
    })
    rail = feed.raw_stations(Agency.RAIL)
    print(len(rail), rail.method)
"""

import io
import logging
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Set, Union

import pandas as pd

from src.zoning.errors import SourceUnavailableError
from src.zoning.models import Agency, HierarchyMethod, Station, StationSet

logger = logging.getLogger(__name__)

# GTFS route_type values treated as rail (basic + extended)
RAIL_ROUTE_TYPES = {0, 1, 2, 5, 7, 12}
RAIL_ROUTE_TYPE_RANGES = ((100, 200), (400, 500), (900, 1000))

COORD_DECIMALS = 6

_ROUTE_TABLES = {
    "routes.txt": ("route_id", "route_type"),
    "trips.txt": ("route_id", "trip_id"),
    "stop_times.txt": ("trip_id", "stop_id"),
}


def is_rail_route_type(value) -> bool:
    """True for GTFS route types describing rail service."""
    try:
        code = int(str(value).strip())
    except ValueError:
        return False
    if code in RAIL_ROUTE_TYPES:
        return True
    return any(low <= code < high for low, high in RAIL_ROUTE_TYPE_RANGES)


class StationFeed(ABC):
    """Provides canonical stations per agency."""

    @abstractmethod
    def raw_stations(self, agency: Agency) -> StationSet:
        """
        Stations for ``agency``, one per physical location.

        Raises:
            SourceUnavailableError: If the feed cannot be read.
        """


def read_gtfs_table(feed_path: Union[str, Path], filename: str, required: bool = True) -> Optional[pd.DataFrame]:
    """
    Read one GTFS table as strings.

    Args:
        feed_path: Feed directory or .zip archive
        filename: Table file name (e.g. "stops.txt")
        required: Raise when the table is missing instead of returning None

    Returns:
        DataFrame with every column as str (blank for missing values), or None.
    """
    feed_path = Path(feed_path)
    read_kwargs = dict(dtype=str, keep_default_na=False)

    try:
        if feed_path.is_dir():
            table = feed_path / filename
            if table.exists():
                return pd.read_csv(table, **read_kwargs)
        elif zipfile.is_zipfile(feed_path):
            with zipfile.ZipFile(feed_path) as archive:
                # Some feeds nest the tables in a top-level folder
                members = [n for n in archive.namelist() if n == filename or n.endswith("/" + filename)]
                if members:
                    with archive.open(sorted(members, key=len)[0]) as handle:
                        return pd.read_csv(io.TextIOWrapper(handle, encoding="utf-8-sig"), **read_kwargs)
        else:
            raise SourceUnavailableError(str(feed_path), "not a GTFS directory or zip archive")
    except (OSError, zipfile.BadZipFile, pd.errors.ParserError, UnicodeDecodeError) as e:
        raise SourceUnavailableError(str(feed_path), f"cannot read {filename}: {e}") from e

    if required:
        raise SourceUnavailableError(str(feed_path), f"missing {filename}")
    return None


def _check_columns(feed_path: Path, filename: str, table: pd.DataFrame, columns) -> pd.DataFrame:
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise SourceUnavailableError(str(feed_path), f"{filename} lacks {', '.join(missing)}")
    return table


def _require_columns(feed_path: Path, filename: str, columns) -> pd.DataFrame:
    return _check_columns(feed_path, filename, read_gtfs_table(feed_path, filename), columns)


def has_explicit_hierarchy(stops: pd.DataFrame) -> bool:
    """True when stops.txt declares parent stations."""
    if "location_type" not in stops.columns or "parent_station" not in stops.columns:
        return False
    return bool((stops["location_type"].str.strip() == "1").any())


def _stop_locations(stops: pd.DataFrame) -> pd.DataFrame:
    """Stops and platforms (location_type 0 or blank)."""
    if "location_type" not in stops.columns:
        return stops
    return stops.loc[stops["location_type"].str.strip().isin(["", "0"])]


def _to_stations(rows: pd.DataFrame, agency: Agency) -> Set[Station]:
    """Build stations, collapsing identical coordinates onto the smallest stop_id."""
    lons = pd.to_numeric(rows["stop_lon"], errors="coerce")
    lats = pd.to_numeric(rows["stop_lat"], errors="coerce")

    by_location: Dict[tuple, Station] = {}
    unlocated = set()
    for stop_id, lon, lat in sorted(zip(rows["stop_id"].str.strip(), lons, lats)):
        station = Station(id=stop_id, agency=agency, lon=float(lon), lat=float(lat))
        if pd.isna(lon) or pd.isna(lat):
            # Kept so the validator reports it
            unlocated.add(station)
            continue
        key = (round(float(lon), COORD_DECIMALS), round(float(lat), COORD_DECIMALS))
        if key in by_location:
            logger.debug("Stop %s shares a location with %s", stop_id, by_location[key].id)
            continue
        by_location[key] = station
    return set(by_location.values()) | unlocated


def rail_served_stop_ids(routes: pd.DataFrame, trips: pd.DataFrame, stop_times: pd.DataFrame) -> Set[str]:
    """Ids of stops visited by at least one trip on a rail-class route."""
    rail_routes = set(routes.loc[routes["route_type"].apply(is_rail_route_type), "route_id"].str.strip())
    rail_trips = set(trips.loc[trips["route_id"].str.strip().isin(rail_routes), "trip_id"].str.strip())
    served = set(stop_times.loc[stop_times["trip_id"].str.strip().isin(rail_trips), "stop_id"].str.strip())

    logger.debug(
        "Rail service: %d routes, %d trips, %d served stops",
        len(rail_routes),
        len(rail_trips),
        len(served),
    )
    return served


def resolve_explicit_hierarchy(
    stops: pd.DataFrame,
    agency: Agency,
    rail_served: Optional[Set[str]] = None,
) -> Set[Station]:
    """
    Parent stations plus rail-served stops that have no known parent.

    Args:
        stops: stops.txt table
        agency: Agency the stations belong to
        rail_served: Stop ids served by rail-class routes. None when the feed
            has no route tables, in which case parentless stops are dropped.
    """
    location_type = stops["location_type"].str.strip()
    parents = stops.loc[location_type == "1"]
    parent_ids = set(parents["stop_id"].str.strip())

    platforms = _stop_locations(stops)
    orphans = platforms.loc[~platforms["parent_station"].str.strip().isin(parent_ids)]
    if rail_served is None:
        kept = orphans.iloc[0:0]
    else:
        kept = orphans.loc[orphans["stop_id"].str.strip().isin(rail_served)]
    if len(orphans) > len(kept):
        logger.debug(
            "Dropped %d of %d stops without a parent station (no rail service)",
            len(orphans) - len(kept),
            len(orphans),
        )

    return _to_stations(pd.concat([parents, kept]), agency)


def resolve_route_inference(
    stops: pd.DataFrame,
    routes: pd.DataFrame,
    trips: pd.DataFrame,
    stop_times: pd.DataFrame,
    agency: Agency,
) -> Set[Station]:
    """Stops visited by at least one trip on a rail-class route."""
    served = rail_served_stop_ids(routes, trips, stop_times)
    candidates = _stop_locations(stops)
    return _to_stations(candidates.loc[candidates["stop_id"].str.strip().isin(served)], agency)


def _optional_rail_service(feed_path: Path) -> Optional[Set[str]]:
    """Rail-served stop ids, or None when any route table is absent."""
    tables = [read_gtfs_table(feed_path, name, required=False) for name in _ROUTE_TABLES]
    if any(table is None for table in tables):
        return None
    checked = [
        _check_columns(feed_path, name, table, columns)
        for table, (name, columns) in zip(tables, _ROUTE_TABLES.items())
    ]
    return rail_served_stop_ids(*checked)


class GTFSStationFeed(StationFeed):
    """
    Station feed backed by one GTFS feed per agency.

    Attributes:
        feeds: Mapping of agency to GTFS directory or zip path
    """

    def __init__(self, feeds: Dict[Agency, Union[str, Path]]):
        self.feeds = {Agency(k): Path(v) for k, v in feeds.items()}

    def raw_stations(self, agency: Agency) -> StationSet:
        agency = Agency(agency)
        if agency not in self.feeds:
            logger.info("No GTFS feed configured for %s", agency.value)
            return StationSet(agency=agency, stations=frozenset())

        feed_path = self.feeds[agency]
        if not feed_path.exists():
            raise SourceUnavailableError(str(feed_path), "GTFS feed not found")

        stops = _require_columns(feed_path, "stops.txt", ("stop_id", "stop_lat", "stop_lon"))

        if has_explicit_hierarchy(stops):
            method = HierarchyMethod.EXPLICIT_HIERARCHY
            stations = resolve_explicit_hierarchy(stops, agency, _optional_rail_service(feed_path))
        else:
            method = HierarchyMethod.ROUTE_INFERENCE
            stations = resolve_route_inference(
                stops,
                *(_require_columns(feed_path, name, columns) for name, columns in _ROUTE_TABLES.items()),
                agency,
            )

        logger.info(
            "Resolved %d %s stations from %s using %s",
            len(stations),
            agency.value,
            feed_path.name,
            method.value,
        )
        return StationSet(agency=agency, stations=frozenset(stations), method=method)
