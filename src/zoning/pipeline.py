"""
Zone pipeline: fetch, validate, buffer, compute, measure, deliver.

Task graph:
    fetch_rail_stations ──> buffer_rail ──────┐
    fetch_secondary_stations ──> buffer_secondary ─┤
    fetch_corridors ──────────────────────────┤
    fetch_zoning ─────────────────────────────┼──> compute_zones ──> compute_stats ──> deliver
    fetch_boundary ───────────────────────────┘

The five fetch tasks run concurrently and all join before zone algebra starts.
The two buffer tasks also run concurrently. The first failing task cancels the
tasks that have not started yet, and its error propagates unchanged. The
consumer only ever sees a complete result.

Usage:
    from src.zoning.pipeline import PipelineSources, ZonePipeline

    pipeline = ZonePipeline(EngineConfig())
    zones, stats = pipeline.run(PipelineSources(
        station_feed=feed,
        data_source=source,
        corridor_dataset="corridors",
        zoning_dataset="zoning",
        boundary_dataset="boundary",
        consumer=GeoJSONZoneWriter("output/zones.geojson"),
    ))
    pipeline.explain()
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from src import config
from src.zoning.algebra import ZoneAlgebraEngine, ZoneInputs
from src.zoning.buffers import build_station_buffer
from src.zoning.consumers import ZoneConsumer
from src.zoning.errors import GeometryError, SourceUnavailableError
from src.zoning.gtfs import StationFeed
from src.zoning.models import (
    Agency,
    CorridorPolygon,
    CoverageStats,
    EngineConfig,
    HierarchyMethod,
    StationSet,
    ZoneSet,
    ZoningDistrict,
)
from src.zoning.projection import ProjectionService, check_roundtrip
from src.zoning.sources import DataSource
from src.zoning.statistics import compute_stats
from src.zoning.validation import GeometryValidator, repair_geometry

logger = logging.getLogger(__name__)


@dataclass
class TaskState:
    """Execution state of one pipeline task."""

    name: str
    depends_on: List[str] = field(default_factory=list)
    status: str = "pending"  # pending, running, done, failed, cancelled, skipped
    duration_s: float = 0.0
    detail: str = ""


@dataclass(frozen=True)
class PipelineSources:
    """
    Collaborators and dataset identifiers for one run.

    Attributes:
        station_feed: Provides rail and secondary stations
        data_source: Provides the polygon datasets below
        corridor_dataset: Dataset id of pre-buffered corridor polygons
        zoning_dataset: Dataset id of zoning districts
        boundary_dataset: Dataset id of the jurisdiction boundary
        consumer: Receives the final zones (optional)
        id_column: Feature identifier column in every polygon dataset
        class_column: Zoning class-code column
        stats_unit: Area unit of the coverage statistics
    """

    station_feed: StationFeed
    data_source: DataSource
    corridor_dataset: str
    zoning_dataset: str
    boundary_dataset: str
    consumer: Optional[ZoneConsumer] = None
    id_column: str = "id"
    class_column: str = "class_code"
    stats_unit: str = config.DEFAULT_STATS_UNIT


class ZonePipeline:
    """
    Runs the zone computation end to end.

    Attributes:
        config: Engine configuration
        projection: Projection service built from the configuration
        engine: Zone algebra engine
        max_workers: Thread pool size for the concurrent stages
        strict: Abort on any feature the validator had to exclude
        deliver_geographic: Convert zones to the geographic CRS before
            returning and delivering them
        tasks: TaskState per task of the last run
    """

    def __init__(
        self,
        engine_config: Optional[EngineConfig] = None,
        max_workers: int = 5,
        strict: bool = True,
        deliver_geographic: bool = True,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.config = engine_config or EngineConfig()
        self.projection = ProjectionService(self.config.projected_crs, self.config.geographic_crs)
        self.engine = ZoneAlgebraEngine(self.config, self.projection)
        self.max_workers = max_workers
        self.strict = strict
        self.deliver_geographic = deliver_geographic

        self.tasks: Dict[str, TaskState] = {}
        self.station_methods: Dict[Agency, HierarchyMethod] = {}

        self._task_graph = {
            "fetch_rail_stations": {
                "depends_on": [],
                "description": "Resolve and validate rail stations",
            },
            "fetch_secondary_stations": {
                "depends_on": [],
                "description": "Resolve and validate secondary-agency stations",
            },
            "fetch_corridors": {
                "depends_on": [],
                "description": "Fetch, validate and project corridor polygons",
            },
            "fetch_zoning": {
                "depends_on": [],
                "description": "Fetch, validate and project zoning districts",
            },
            "fetch_boundary": {
                "depends_on": [],
                "description": "Fetch, validate and project the boundary",
            },
            "buffer_rail": {
                "depends_on": ["fetch_rail_stations"],
                "description": "Buffer rail stations",
            },
            "buffer_secondary": {
                "depends_on": ["fetch_secondary_stations"],
                "description": "Buffer secondary-agency stations",
            },
            "compute_zones": {
                "depends_on": [
                    "buffer_rail",
                    "buffer_secondary",
                    "fetch_corridors",
                    "fetch_zoning",
                    "fetch_boundary",
                ],
                "description": "Zone algebra and invariant checks",
            },
            "compute_stats": {
                "depends_on": ["compute_zones"],
                "description": "Measure zone areas and percentages",
            },
            "deliver": {
                "depends_on": ["compute_stats"],
                "description": "Hand zones and statistics to the consumer",
            },
        }

    # ===== Task execution =====

    def _run_task(self, name: str, fn: Callable[[], Any]) -> Any:
        state = self.tasks[name]
        state.status = "running"
        start = time.perf_counter()
        try:
            result = fn()
        except Exception as e:
            state.status = "failed"
            state.detail = str(e)
            state.duration_s = time.perf_counter() - start
            logger.error("Task %s failed: %s", name, e)
            raise
        state.status = "done"
        state.duration_s = time.perf_counter() - start
        logger.debug("Task %s done in %.2fs", name, state.duration_s)
        return result

    def _run_concurrently(self, jobs: Dict[str, Callable[[], Any]]) -> Dict[str, Any]:
        """Run independent tasks on a thread pool; the first error cancels the rest."""
        results: Dict[str, Any] = {}
        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(jobs)))
        futures = {executor.submit(self._run_task, name, fn): name for name, fn in jobs.items()}
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except Exception:
            for future, name in futures.items():
                if future.cancel():
                    self.tasks[name].status = "cancelled"
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
        return results

    # ===== Inputs =====

    def _abort_on_errors(self, validator: GeometryValidator) -> None:
        if self.strict and validator.errors:
            raise validator.errors[0]

    def _load_stations(self, feed: StationFeed, agency: Agency) -> StationSet:
        station_set = feed.raw_stations(agency)
        validator = GeometryValidator()
        stations = validator.validate_stations(station_set, dataset=f"{agency.value}_stations")
        self._abort_on_errors(validator)

        self.tasks[f"fetch_{agency.value}_stations"].detail = (
            f"{len(stations)} stations via {stations.method.value}"
        )
        return stations

    def _load_polygons(self, sources: PipelineSources, dataset: str) -> List[Tuple[str, Any, BaseGeometry]]:
        """
        Fetch, repair and project one polygon dataset.

        Returns:
            (id, row, projected geometry) per kept feature, sorted by id.
        """
        frame = sources.data_source.fetch(dataset)
        validator = GeometryValidator()
        valid = validator.validate(frame, dataset=dataset, id_column=sources.id_column)
        self._abort_on_errors(validator)

        projected = self.projection.project_frame(valid)
        ids = (
            projected[sources.id_column]
            if sources.id_column in projected.columns
            else projected.index.to_series()
        )

        features = []
        rows = (row for _, row in projected.iterrows())
        for feature_id, raw, row in zip(ids, projected.geometry, rows):
            geom = repair_geometry(
                raw,
                min_area=self.engine.sliver_area_units,
                feature_id=feature_id,
                dataset=dataset,
            )
            if geom.is_empty:
                error = GeometryError(feature_id, "geometry collapsed below sliver tolerance", dataset)
                if self.strict:
                    raise error
                logger.warning("Excluding feature: %s", error)
                continue
            features.append((str(feature_id), row, geom))

        features.sort(key=lambda f: f[0])
        return features

    def _load_corridors(self, sources: PipelineSources) -> List[CorridorPolygon]:
        features = self._load_polygons(sources, sources.corridor_dataset)
        self.tasks["fetch_corridors"].detail = f"{len(features)} corridor polygons"
        return [CorridorPolygon(id=fid, geometry=geom) for fid, _, geom in features]

    def _load_districts(self, sources: PipelineSources) -> List[ZoningDistrict]:
        features = self._load_polygons(sources, sources.zoning_dataset)
        if features and sources.class_column not in features[0][1].index:
            raise SourceUnavailableError(
                sources.zoning_dataset, f"missing class code column '{sources.class_column}'"
            )
        self.tasks["fetch_zoning"].detail = f"{len(features)} zoning districts"
        return [
            ZoningDistrict(id=fid, class_code=str(row[sources.class_column]), geometry=geom)
            for fid, row, geom in features
        ]

    def _load_boundary(self, sources: PipelineSources) -> BaseGeometry:
        features = self._load_polygons(sources, sources.boundary_dataset)
        if not features:
            raise GeometryError("boundary", "boundary dataset has no polygons", sources.boundary_dataset)

        boundary = repair_geometry(
            unary_union([geom for _, _, geom in features]),
            min_area=self.engine.sliver_area_units,
            feature_id="boundary",
            dataset=sources.boundary_dataset,
        )
        check_roundtrip(self.projection, self.projection.to_geographic(boundary))
        self.tasks["fetch_boundary"].detail = f"{len(features)} parts"
        return boundary

    # ===== Public API =====

    def run(self, sources: PipelineSources) -> Tuple[ZoneSet, CoverageStats]:
        """
        Compute the zones and their statistics.

        Returns:
            (zones, stats). Zones are in the geographic CRS when
            ``deliver_geographic`` is set, otherwise in the projected CRS.
            Areas are always measured in the projected CRS.

        Raises:
            SourceUnavailableError, GeometryError, ProjectionError,
            ZoneConsistencyError: The first error of any task, unchanged.
        """
        self.tasks = {
            name: TaskState(name=name, depends_on=list(info["depends_on"]))
            for name, info in self._task_graph.items()
        }
        self.station_methods = {}
        cfg = self.config
        logger.info(
            "Computing zones in %s (rail %.0f ft, secondary %.0f ft, downtown prefix '%s')",
            cfg.projected_crs,
            cfg.rail_buffer_feet,
            cfg.secondary_buffer_feet,
            cfg.downtown_class_prefix,
        )

        inputs = self._run_concurrently(
            {
                "fetch_rail_stations": lambda: self._load_stations(sources.station_feed, Agency.RAIL),
                "fetch_secondary_stations": lambda: self._load_stations(
                    sources.station_feed, Agency.SECONDARY
                ),
                "fetch_corridors": lambda: self._load_corridors(sources),
                "fetch_zoning": lambda: self._load_districts(sources),
                "fetch_boundary": lambda: self._load_boundary(sources),
            }
        )
        rail, secondary = inputs["fetch_rail_stations"], inputs["fetch_secondary_stations"]
        self.station_methods = {Agency.RAIL: rail.method, Agency.SECONDARY: secondary.method}

        buffers = self._run_concurrently(
            {
                "buffer_rail": lambda: build_station_buffer(
                    rail,
                    cfg.rail_buffer_feet,
                    self.projection,
                    segments=cfg.circle_segments,
                    min_area=self.engine.sliver_area_units,
                ),
                "buffer_secondary": lambda: build_station_buffer(
                    secondary,
                    cfg.secondary_buffer_feet,
                    self.projection,
                    segments=cfg.circle_segments,
                    min_area=self.engine.sliver_area_units,
                ),
            }
        )

        boundary = inputs["fetch_boundary"]
        zones = self._run_task(
            "compute_zones",
            lambda: self.engine.compute(
                ZoneInputs(
                    rail_buffer=buffers["buffer_rail"],
                    secondary_buffer=buffers["buffer_secondary"],
                    corridors=inputs["fetch_corridors"],
                    districts=inputs["fetch_zoning"],
                    boundary=boundary,
                )
            ),
        )
        stats = self._run_task(
            "compute_stats",
            lambda: compute_stats(zones, boundary, self.projection, sources.stats_unit),
        )

        if self.deliver_geographic:
            zones = zones.with_geometries(self.projection.to_geographic, self.projection.geographic_id)

        if sources.consumer is not None:
            self._run_task("deliver", lambda: sources.consumer.accept(zones, stats))
        else:
            self.tasks["deliver"].status = "skipped"

        logger.info("Zone computation complete: %.1f%% classified", stats.classified_percentage)
        return zones, stats

    def explain(self, task_name: str = "deliver") -> List[str]:
        """
        Describe the tasks needed to build ``task_name`` in execution order.

        Returns:
            One line per task, also written to the log.
        """
        if task_name not in self._task_graph:
            raise KeyError(
                f"Unknown task '{task_name}'. Available: {', '.join(self._task_graph.keys())}"
            )

        lines = []
        for i, name in enumerate(self._compute_execution_order(task_name), 1):
            info = self._task_graph[name]
            line = f"{i}. {name}: {info['description']}"
            if info["depends_on"]:
                line += f" (after {', '.join(info['depends_on'])})"
            state = self.tasks.get(name)
            if state is not None and state.status != "pending":
                line += f" [{state.status}, {state.duration_s:.2f}s]"
                if state.detail:
                    line += f" {state.detail}"
            lines.append(line)

        for line in lines:
            logger.info(line)
        return lines

    def _compute_execution_order(self, task_name: str) -> List[str]:
        """Topologically sort tasks by dependency."""
        visited = set()
        order = []

        def visit(task: str):
            if task in visited:
                return
            visited.add(task)
            for dep in self._task_graph[task]["depends_on"]:
                visit(dep)
            order.append(task)

        visit(task_name)
        return order
