#!/usr/bin/env python3
"""
Parking Requirement Zones Example.

Computes the three parking-requirement zones for Chicago from the CTA (rail)
and Metra (secondary) GTFS feeds and three polygon datasets, then writes them
as GeoJSON (plus statistics JSON and an optional PNG preview).

Pipeline:
1. Resolve rail and secondary-agency stations from GTFS
2. Fetch corridor, zoning and boundary polygons (local files or ArcGIS REST)
3. Buffer stations and compute NoParkingRequired / AdminAdjustment zones
4. Measure zone areas and coverage percentages
5. Write outputs

Usage:
    python examples/compute_parking_zones.py \\
        --rail-gtfs data/gtfs/cta.zip \\
        --secondary-gtfs data/gtfs/metra.zip \\
        --corridors data/sources/corridors.geojson \\
        --zoning data/sources/zoning.geojson \\
        --boundary data/sources/boundary.geojson \\
        --plot

    # Polygon datasets can also be ArcGIS REST layer URLs
    python examples/compute_parking_zones.py --zoning https://.../FeatureServer/0 ...

    python examples/compute_parking_zones.py --help
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src import config
from src.zoning.consumers import GeoJSONZoneWriter, ZoneConsumer, ZonePlotter
from src.zoning.errors import ZoningError
from src.zoning.gtfs import GTFSStationFeed
from src.zoning.models import Agency, EngineConfig
from src.zoning.pipeline import PipelineSources, ZonePipeline
from src.zoning.sources import ArcGISFeatureSource, GeoJSONFileSource
from src.zoning.statistics import AREA_UNITS

logger = logging.getLogger(__name__)


class MultiConsumer(ZoneConsumer):
    """Forwards one result to several consumers in order."""

    def __init__(self, consumers):
        self.consumers = list(consumers)

    def accept(self, zones, stats):
        for consumer in self.consumers:
            consumer.accept(zones, stats)


def is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def build_data_source(datasets: dict, id_column: str, show_progress: bool):
    """ArcGIS source when every dataset is a URL, file source when none is."""
    urls = [is_url(v) for v in datasets.values()]
    if all(urls):
        return ArcGISFeatureSource(datasets, id_column=id_column, show_progress=show_progress)
    if not any(urls):
        return GeoJSONFileSource(datasets, id_column=id_column)
    raise ValueError("Polygon datasets must be either all URLs or all local files")


def load_engine_config(path):
    if path is None:
        return EngineConfig()
    with open(path) as f:
        return EngineConfig.from_dict(json.load(f))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Compute parking-requirement zones",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Local files
  python examples/compute_parking_zones.py --rail-gtfs cta.zip --secondary-gtfs metra.zip \\
      --corridors corridors.geojson --zoning zoning.geojson --boundary city.geojson

  # Custom distances / CRS from JSON
  python examples/compute_parking_zones.py --config engine.json ...
        """,
    )
    parser.add_argument("--rail-gtfs", type=Path, required=True, help="Rail agency GTFS (dir or zip)")
    parser.add_argument("--secondary-gtfs", type=Path, help="Secondary agency GTFS (dir or zip)")
    parser.add_argument("--corridors", required=True, help="Corridor polygons (file or ArcGIS URL)")
    parser.add_argument("--zoning", required=True, help="Zoning districts (file or ArcGIS URL)")
    parser.add_argument("--boundary", required=True, help="City boundary (file or ArcGIS URL)")
    parser.add_argument("--id-column", default="id", help="Feature id column (default: id)")
    parser.add_argument(
        "--class-column", default="class_code", help="Zoning class column (default: class_code)"
    )
    parser.add_argument(
        "--unit",
        choices=sorted(AREA_UNITS.keys()),
        default=config.DEFAULT_STATS_UNIT,
        help=f"Statistics area unit (default: {config.DEFAULT_STATS_UNIT})",
    )
    parser.add_argument("--config", type=Path, help="JSON file with EngineConfig overrides")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=config.OUTPUT_DIR,
        help=f"Output directory (default: {config.OUTPUT_DIR})",
    )
    parser.add_argument("--plot", action="store_true", help="Also render a PNG preview")
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="Exclude unrepairable features instead of aborting",
    )
    parser.add_argument("--log-level", default=config.DEFAULT_LOG_LEVEL, help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s: %(message)s",
    )

    feeds = {Agency.RAIL: args.rail_gtfs}
    if args.secondary_gtfs:
        feeds[Agency.SECONDARY] = args.secondary_gtfs

    datasets = {"corridors": args.corridors, "zoning": args.zoning, "boundary": args.boundary}
    try:
        data_source = build_data_source(datasets, args.id_column, show_progress=True)
        engine_config = load_engine_config(args.config)
    except (ValueError, OSError) as e:
        parser.error(str(e))

    consumers = [
        GeoJSONZoneWriter(
            args.output_dir / "parking_zones.geojson",
            stats_path=args.output_dir / "parking_zones_stats.json",
        )
    ]
    if args.plot:
        consumers.append(ZonePlotter(args.output_dir / "parking_zones.png"))

    logger.info("=" * 70)
    logger.info("Parking requirement zones")
    logger.info("=" * 70)
    logger.info("Engine config: %s", engine_config.to_dict())

    pipeline = ZonePipeline(engine_config, strict=not args.lenient)
    try:
        _, stats = pipeline.run(
            PipelineSources(
                station_feed=GTFSStationFeed(feeds),
                data_source=data_source,
                corridor_dataset="corridors",
                zoning_dataset="zoning",
                boundary_dataset="boundary",
                consumer=MultiConsumer(consumers),
                id_column=args.id_column,
                class_column=args.class_column,
                stats_unit=args.unit,
            )
        )
    except ZoningError as e:
        logger.error("Zone computation failed: %s", e)
        pipeline.explain()
        return 1

    pipeline.explain()
    rounded = stats.rounded()
    for category, area in rounded.zone_areas.items():
        logger.info(
            "%-34s %10.1f %s  (%.1f%%)",
            category.value,
            area,
            stats.unit,
            rounded.percentages[category],
        )
    logger.info("Outputs saved to: %s", args.output_dir)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
