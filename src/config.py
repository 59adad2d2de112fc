"""Configuration module for the parking-zones project.

Centralizes data paths and engine defaults. Every value can be overridden
through an environment variable of the same name prefixed with ``PARKING_``.
"""
import os
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = Path(os.getenv("PARKING_DATA_DIR", PROJECT_ROOT / "data"))
GTFS_DIR = DATA_DIR / "gtfs"
SOURCES_DIR = DATA_DIR / "sources"
OUTPUT_DIR = Path(os.getenv("PARKING_OUTPUT_DIR", DATA_DIR / "output"))

# Coordinate reference systems
# NAD83 / Illinois East (US survey feet), covering Chicago
PROJECTED_CRS = os.getenv("PARKING_PROJECTED_CRS", "EPSG:3435")
GEOGRAPHIC_CRS = os.getenv("PARKING_GEOGRAPHIC_CRS", "EPSG:4326")

# Buffer distances (feet, applied in the projected CRS)
RAIL_BUFFER_FEET = float(os.getenv("PARKING_RAIL_BUFFER_FEET", "2640"))
SECONDARY_BUFFER_FEET = float(os.getenv("PARKING_SECONDARY_BUFFER_FEET", "2640"))

# Zoning
DOWNTOWN_CLASS_PREFIX = os.getenv("PARKING_DOWNTOWN_CLASS_PREFIX", "D")

# Geometry tolerances (square feet)
SLIVER_TOLERANCE_SQ_FT = float(os.getenv("PARKING_SLIVER_TOLERANCE_SQ_FT", "1.0"))
OVERLAP_TOLERANCE_SQ_FT = float(os.getenv("PARKING_OVERLAP_TOLERANCE_SQ_FT", "1.0"))
CIRCLE_SEGMENTS = int(os.getenv("PARKING_CIRCLE_SEGMENTS", "64"))

# Fetching
FETCH_TIMEOUT_S = float(os.getenv("PARKING_FETCH_TIMEOUT_S", "60"))
FETCH_MAX_RETRIES = int(os.getenv("PARKING_FETCH_MAX_RETRIES", "3"))
FETCH_PAGE_SIZE = int(os.getenv("PARKING_FETCH_PAGE_SIZE", "2000"))

# Default settings
DEFAULT_STATS_UNIT = "acres"
DEFAULT_LOG_LEVEL = os.getenv("PARKING_LOG_LEVEL", "INFO")
