"""
Error taxonomy for zone computation.

- SourceUnavailableError: a dataset could not be fetched or parsed (raised by
  source adapters after their own bounded retries)
- GeometryError: a feature could not be repaired into valid geometry
- ProjectionError: CRS could not be parsed or coordinates fall outside its domain
- ZoneConsistencyError: computed zones overlap or leave the boundary

Everything except SourceUnavailableError is raised by the core and is never
retried.
"""

from typing import Any, Optional, Tuple


class ZoningError(Exception):
    """Base class for all zone-engine errors."""


class SourceUnavailableError(ZoningError):
    """A dataset could not be fetched or parsed."""

    def __init__(self, dataset_id: str, message: str):
        self.dataset_id = dataset_id
        self.message = message
        super().__init__(f"Dataset '{dataset_id}' unavailable: {message}")


class GeometryError(ZoningError):
    """A feature's geometry is missing or cannot be repaired."""

    def __init__(self, feature_id: Any, reason: str, dataset: Optional[str] = None):
        self.feature_id = feature_id
        self.reason = reason
        self.dataset = dataset
        where = f" in dataset '{dataset}'" if dataset else ""
        super().__init__(f"Feature {feature_id!r}{where}: {reason}")


class ProjectionError(ZoningError):
    """A CRS is invalid or a geometry lies outside its valid domain."""

    def __init__(self, message: str, crs: Optional[str] = None):
        self.crs = crs
        super().__init__(f"{message} (crs={crs})" if crs else message)


class ZoneConsistencyError(ZoningError):
    """
    Computed zones violate mutual exclusivity or boundary containment.

    Attributes:
        categories: The offending pair. For containment violations the second
            element is ``"Boundary"``.
        overlap: Geometry of the overlapping (or out-of-boundary) region.
    """

    def __init__(self, categories: Tuple[str, str], overlap: Any):
        self.categories = tuple(categories)
        self.overlap = overlap
        super().__init__(
            f"Zones {self.categories[0]} and {self.categories[1]} overlap "
            f"by {self.overlap_area:.3f} square units"
        )

    @property
    def overlap_area(self) -> float:
        return float(getattr(self.overlap, "area", 0.0))
