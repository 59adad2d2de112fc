"""
Dataset sources for corridor, zoning and boundary polygons.

A DataSource returns one dataset as a GeoDataFrame in EPSG:4326, deduplicated
and possibly (explicitly) empty. Fetch failures surface as
SourceUnavailableError once the adapter's own retries are exhausted.

Adapters:
- ArcGISFeatureSource: ArcGIS REST FeatureServer/MapServer layers, paged
- GeoJSONFileSource: local GeoJSON/Shapefile/GeoPackage files

Usage:
    from src.zoning.sources import ArcGISFeatureSource

    source = ArcGISFeatureSource({
        "zoning": "https://services.arcgis.com/.../FeatureServer/0",
    })
    districts = source.fetch("zoning")
"""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import geopandas as gpd
import requests
from tqdm import tqdm

from src import config
from src.zoning.errors import SourceUnavailableError

logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def empty_frame(crs: str = WGS84) -> gpd.GeoDataFrame:
    """An explicitly empty dataset."""
    return gpd.GeoDataFrame(geometry=[], crs=crs)


def deduplicate(frame: gpd.GeoDataFrame, id_column: Optional[str] = "id") -> gpd.GeoDataFrame:
    """Drop repeated features by id, or by geometry when there is no id column."""
    if len(frame) == 0:
        return frame
    if id_column and id_column in frame.columns:
        deduped = frame.drop_duplicates(subset=[id_column], keep="first")
    else:
        wkb = frame.geometry.apply(lambda g: g.wkb if g is not None else None)
        deduped = frame.loc[~wkb.duplicated(keep="first")]
    dropped = len(frame) - len(deduped)
    if dropped:
        logger.debug("Dropped %d duplicate features", dropped)
    return deduped.reset_index(drop=True)


class DataSource(ABC):
    """Provides geometry datasets by identifier."""

    @abstractmethod
    def fetch(self, dataset_id: str) -> gpd.GeoDataFrame:
        """
        Fetch one dataset.

        Raises:
            SourceUnavailableError: If the dataset cannot be fetched or parsed.
        """


class ArcGISFeatureSource(DataSource):
    """
    Pages through ArcGIS REST layer queries.

    Attributes:
        datasets: Mapping of dataset id to layer URL (without ``/query``)
        page_size: Records requested per page
        timeout: Per-request timeout in seconds
        max_retries: Attempts per page before giving up
        retry_delay: Seconds between attempts (doubled after each failure)
        id_column: Column used for deduplication
        where: Attribute filter applied to every query
    """

    def __init__(
        self,
        datasets: Dict[str, str],
        page_size: int = config.FETCH_PAGE_SIZE,
        timeout: float = config.FETCH_TIMEOUT_S,
        max_retries: int = config.FETCH_MAX_RETRIES,
        retry_delay: float = 2.0,
        id_column: str = "id",
        where: str = "1=1",
        session: Optional[requests.Session] = None,
        show_progress: bool = False,
    ):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.datasets = dict(datasets)
        self.page_size = page_size
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.id_column = id_column
        self.where = where
        self.session = session or requests.Session()
        self.show_progress = show_progress

    def _query_params(self, offset: int) -> Dict[str, Any]:
        return {
            "where": self.where,
            "outFields": "*",
            "outSR": "4326",
            "f": "geojson",
            "resultOffset": offset,
            "resultRecordCount": self.page_size,
        }

    def _get_page(self, dataset_id: str, url: str, offset: int) -> Dict[str, Any]:
        """Fetch one page, retrying timeouts, connection errors and 429/5xx."""
        delay = self.retry_delay
        last_error = "unknown error"

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.get(
                    f"{url.rstrip('/')}/query",
                    params=self._query_params(offset),
                    timeout=self.timeout,
                )
                if response.status_code in RETRYABLE_STATUS:
                    last_error = f"HTTP {response.status_code}"
                else:
                    response.raise_for_status()
                    data = response.json()
                    if "error" in data:
                        # ArcGIS reports query errors with HTTP 200
                        raise SourceUnavailableError(dataset_id, f"server error: {data['error']}")
                    return data
            except requests.exceptions.Timeout:
                last_error = f"timeout after {self.timeout}s"
            except requests.exceptions.ConnectionError as e:
                last_error = f"connection error: {e}"
            except requests.exceptions.HTTPError as e:
                raise SourceUnavailableError(dataset_id, f"HTTP error: {e}") from e
            except ValueError as e:
                raise SourceUnavailableError(dataset_id, f"invalid JSON: {e}") from e

            logger.warning(
                "Fetch %s (offset %d) attempt %d/%d failed: %s",
                dataset_id,
                offset,
                attempt,
                self.max_retries,
                last_error,
            )
            if attempt < self.max_retries:
                time.sleep(delay)
                delay *= 2

        raise SourceUnavailableError(
            dataset_id, f"failed after {self.max_retries} attempts: {last_error}"
        )

    def fetch(self, dataset_id: str) -> gpd.GeoDataFrame:
        if dataset_id not in self.datasets:
            raise SourceUnavailableError(dataset_id, "no URL configured")
        url = self.datasets[dataset_id]

        logger.info("Fetching %s from %s", dataset_id, url)
        features: List[Dict[str, Any]] = []
        offset = 0
        with tqdm(desc=f"Fetching {dataset_id}", unit="features", disable=not self.show_progress) as pbar:
            while True:
                page = self._get_page(dataset_id, url, offset)
                page_features = page.get("features", [])
                features.extend(page_features)
                pbar.update(len(page_features))

                exceeded = page.get("exceededTransferLimit") or (page.get("properties") or {}).get(
                    "exceededTransferLimit"
                )
                if not page_features or not (exceeded or len(page_features) >= self.page_size):
                    break
                offset += len(page_features)

        if not features:
            logger.info("Dataset %s is empty", dataset_id)
            return empty_frame()

        try:
            frame = gpd.GeoDataFrame.from_features(features, crs=WGS84)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SourceUnavailableError(dataset_id, f"cannot parse features: {e}") from e

        frame = deduplicate(frame, self.id_column)
        logger.info("Fetched %d features for %s", len(frame), dataset_id)
        return frame


class GeoJSONFileSource(DataSource):
    """
    Reads datasets from local vector files.

    Attributes:
        datasets: Mapping of dataset id to file path
        id_column: Column used for deduplication
    """

    def __init__(self, datasets: Dict[str, Union[str, Path]], id_column: str = "id"):
        self.datasets = {k: Path(v) for k, v in datasets.items()}
        self.id_column = id_column

    def fetch(self, dataset_id: str) -> gpd.GeoDataFrame:
        if dataset_id not in self.datasets:
            raise SourceUnavailableError(dataset_id, "no file configured")
        path = self.datasets[dataset_id]
        if not path.exists():
            raise SourceUnavailableError(dataset_id, f"file not found: {path}")

        logger.info("Reading %s from %s", dataset_id, path)
        try:
            frame = gpd.read_file(path)
        except Exception as e:  # pyogrio/fiona raise driver-specific errors
            raise SourceUnavailableError(dataset_id, f"cannot read {path}: {e}") from e

        if len(frame) == 0:
            return empty_frame()
        if frame.crs is None:
            logger.warning("%s has no CRS; assuming %s", path, WGS84)
            frame = frame.set_crs(WGS84)
        elif frame.crs.to_epsg() != 4326:
            frame = frame.to_crs(WGS84)

        return deduplicate(frame, self.id_column)
