"""
Zone consumers: the only way computed zones leave the engine.

- ZoneConsumer: interface receiving the zone set and its statistics
- GeoJSONZoneWriter: one GeoJSON feature per zone category, plus stats JSON
- ZonePlotter: quick-look PNG map rendered with matplotlib
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple, Union

import geopandas as gpd

from src.zoning.models import CoverageStats, ZoneCategory, ZoneSet

logger = logging.getLogger(__name__)

ZONE_COLORS = {
    ZoneCategory.NO_PARKING_REQUIRED: "#1b9e77",
    ZoneCategory.ADMIN_ADJUSTMENT_TRANSIT: "#7570b3",
    ZoneCategory.ADMIN_ADJUSTMENT_DOWNTOWN: "#d95f02",
}


class ZoneConsumer(ABC):
    """Receives the final zones of a successful run."""

    @abstractmethod
    def accept(self, zones: ZoneSet, stats: CoverageStats) -> None:
        """Handle one complete result."""


def zones_to_frame(zones: ZoneSet, stats: CoverageStats) -> gpd.GeoDataFrame:
    """One row per category with full-precision area and percentage."""
    crs = {zone.crs for zone in zones}
    if len(crs) != 1:
        raise ValueError(f"Zones must share one CRS, got {sorted(crs)}")

    rows = [
        {
            "category": zone.category.value,
            "area_sq_ft": zone.area,
            f"area_{stats.unit}": stats.zone_areas[zone.category],
            "percentage": stats.percentages[zone.category],
        }
        for zone in zones
    ]
    return gpd.GeoDataFrame(rows, geometry=[zone.geometry for zone in zones], crs=crs.pop())


class GeoJSONZoneWriter(ZoneConsumer):
    """
    Writes zones to a GeoJSON file.

    Args:
        path: Output GeoJSON path
        stats_path: Optional JSON path for rounded statistics
    """

    def __init__(self, path: Union[str, Path], stats_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.stats_path = Path(stats_path) if stats_path else None

    def accept(self, zones: ZoneSet, stats: CoverageStats) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        frame = zones_to_frame(zones, stats)
        frame.to_file(self.path, driver="GeoJSON")
        logger.info("Wrote %d zones to %s", len(frame), self.path)

        if self.stats_path is not None:
            self.stats_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.stats_path, "w") as f:
                json.dump(stats.to_dict(), f, indent=2)
            logger.info("Wrote coverage statistics to %s", self.stats_path)


class ZonePlotter(ZoneConsumer):
    """
    Renders a PNG preview of the zones.

    Args:
        path: Output PNG path
        figsize: Figure size in inches
        dpi: Output resolution
    """

    def __init__(self, path: Union[str, Path], figsize: Tuple[float, float] = (10, 10), dpi: int = 150):
        self.path = Path(path)
        self.figsize = figsize
        self.dpi = dpi

    def accept(self, zones: ZoneSet, stats: CoverageStats) -> None:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        from matplotlib.patches import Patch

        rounded = stats.rounded()
        frame = zones_to_frame(zones, stats)
        fig, ax = plt.subplots(figsize=self.figsize)
        try:
            handles = []
            for zone in zones:
                color = ZONE_COLORS[zone.category]
                label = f"{zone.category.value} ({rounded.percentages[zone.category]}%)"
                handles.append(Patch(facecolor=color, label=label))
                if not zone.is_empty:
                    frame.loc[frame["category"] == zone.category.value].plot(
                        ax=ax, color=color, edgecolor="none", alpha=0.8
                    )
            ax.legend(handles=handles, loc="lower left", fontsize=8)
            ax.set_title(f"Parking requirement zones ({rounded.total_area} {stats.unit})")
            ax.set_axis_off()

            self.path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(self.path, dpi=self.dpi, bbox_inches="tight")
            logger.info("Saved zone preview to %s", self.path)
        finally:
            plt.close(fig)
