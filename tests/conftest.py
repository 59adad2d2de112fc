"""Pytest configuration and fixtures for parking-zones tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest
import shapely
from shapely.geometry import Point

from src.zoning.models import Agency, Station
from src.zoning.projection import ProjectionService

# The Loop, Chicago, inside the EPSG:3435 area of use
ORIGIN_LON = -87.63
ORIGIN_LAT = 41.88


class Grid:
    """
    Builds test geometry from offsets in feet around a projected origin.

    Attributes:
        projection: EPSG:3435 <-> EPSG:4326 service
        x0, y0: Projected coordinates of the origin
    """

    def __init__(self, projection: ProjectionService):
        self.projection = projection
        origin = projection.to_projected(Point(ORIGIN_LON, ORIGIN_LAT))
        self.x0 = origin.x
        self.y0 = origin.y

    def ft(self, feet: float) -> float:
        """Feet to projected units."""
        return self.projection.feet_to_units(feet)

    def point(self, dx_ft: float = 0.0, dy_ft: float = 0.0) -> Point:
        """Projected point offset from the origin."""
        return Point(self.x0 + self.ft(dx_ft), self.y0 + self.ft(dy_ft))

    def box(self, x0_ft: float, y0_ft: float, x1_ft: float, y1_ft: float):
        """Projected rectangle with corners given as feet offsets."""
        return shapely.box(
            self.x0 + self.ft(x0_ft),
            self.y0 + self.ft(y0_ft),
            self.x0 + self.ft(x1_ft),
            self.y0 + self.ft(y1_ft),
        )

    def geo_box(self, x0_ft, y0_ft, x1_ft, y1_ft):
        """Same rectangle in the geographic CRS."""
        return self.projection.to_geographic(self.box(x0_ft, y0_ft, x1_ft, y1_ft))

    def station(self, station_id: str, agency: Agency, dx_ft: float = 0.0, dy_ft: float = 0.0) -> Station:
        """Station (lon/lat) at a feet offset from the origin."""
        geo = self.projection.to_geographic(self.point(dx_ft, dy_ft))
        return Station(id=station_id, agency=agency, lon=geo.x, lat=geo.y)


@pytest.fixture(scope="session")
def projection():
    """Projection service for the default Illinois East CRS."""
    return ProjectionService("EPSG:3435", "EPSG:4326")


@pytest.fixture(scope="session")
def grid(projection):
    """Feet-offset geometry builder around the Chicago Loop."""
    return Grid(projection)


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent
