from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Protocol

from pyproj import CRS
from pyproj.exceptions import CRSError

from geo.aoi import BBox

logger = logging.getLogger(__name__)

GEODETIC = "EPSG:4326"
WEB_MERCATOR = "EPSG:3857"
SUPPORTED_CRS: tuple[str, ...] = (GEODETIC, WEB_MERCATOR)

# Half the Web-Mercator world width in meters (the value QGIS writes into project extents).
MERCATOR_RADIUS = 20037508.34

_MAX_MERCATOR_LAT = 85.05112878


class UnsupportedCRS(ValueError):
    """
    The source CRS is neither geodetic lon/lat nor spherical Web-Mercator.

    Callers treat this as "no fit-to-extent possible", never as a user-facing failure.
    """

    def __init__(self, crs: str | None):
        self.crs = crs
        super().__init__(f"Unsupported CRS for reprojection: {crs!r}")


class ExtentLike(Protocol):
    xMin: float
    yMin: float
    xMax: float
    yMax: float


@lru_cache(maxsize=64)
def canonical_crs(tag: str | None) -> str:
    """
    Resolve a CRS tag to one of `SUPPORTED_CRS`.

    Exact tags take the fast path; aliases (lowercase, OGC URNs, "WGS84", ...) go through pyproj.
    """
    raw = (tag or "").strip()
    if raw in SUPPORTED_CRS:
        return raw
    if not raw:
        raise UnsupportedCRS(tag)
    try:
        code = CRS.from_user_input(raw).to_epsg()
    except CRSError:
        raise UnsupportedCRS(tag) from None
    if code == 4326:
        return GEODETIC
    if code == 3857:
        return WEB_MERCATOR
    raise UnsupportedCRS(tag)


def is_supported_crs(tag: str | None) -> bool:
    try:
        canonical_crs(tag)
    except UnsupportedCRS:
        return False
    return True


def mercator_to_lonlat(x: float, y: float) -> tuple[float, float]:
    lon = (float(x) / MERCATOR_RADIUS) * 180.0
    lat_lin = (float(y) / MERCATOR_RADIUS) * 180.0
    lat = (180.0 / math.pi) * (
        2.0 * math.atan(math.exp(lat_lin * math.pi / 180.0)) - math.pi / 2.0
    )
    return lon, lat


def lonlat_to_mercator(lon: float, lat: float) -> tuple[float, float]:
    # Clamp to WebMercator-supported latitudes.
    lat = max(-_MAX_MERCATOR_LAT, min(_MAX_MERCATOR_LAT, float(lat)))
    x = float(lon) / 180.0 * MERCATOR_RADIUS
    y = math.log(math.tan((90.0 + lat) * math.pi / 360.0)) / (math.pi / 180.0)
    return x, y / 180.0 * MERCATOR_RADIUS


def to_geodetic(extent: ExtentLike, crs: str | None) -> BBox:
    """
    Express a project extent (in `crs`) as a WGS84 lon/lat box.

    Corners are transformed independently: (xMin, yMin) -> SW, (xMax, yMax) -> NE.
    Raises `UnsupportedCRS` for anything other than EPSG:4326 / EPSG:3857.
    """
    src = canonical_crs(crs)
    if src == GEODETIC:
        return BBox(
            min_lon=float(extent.xMin),
            min_lat=float(extent.yMin),
            max_lon=float(extent.xMax),
            max_lat=float(extent.yMax),
        )

    min_lon, min_lat = mercator_to_lonlat(extent.xMin, extent.yMin)
    max_lon, max_lat = mercator_to_lonlat(extent.xMax, extent.yMax)
    return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)


def from_geodetic(box: BBox, crs: str | None) -> tuple[float, float, float, float]:
    """
    Inverse of `to_geodetic`: (xMin, yMin, xMax, yMax) in `crs`.
    """
    dst = canonical_crs(crs)
    if dst == GEODETIC:
        return (box.min_lon, box.min_lat, box.max_lon, box.max_lat)
    x0, y0 = lonlat_to_mercator(box.min_lon, box.min_lat)
    x1, y1 = lonlat_to_mercator(box.max_lon, box.max_lat)
    return (x0, y0, x1, y1)


def try_to_geodetic(extent: ExtentLike | None, crs: str | None) -> BBox | None:
    """
    `to_geodetic` for callers that only want a framing if one is possible.
    """
    if extent is None:
        return None
    try:
        return to_geodetic(extent, crs)
    except UnsupportedCRS:
        logger.info("extent in %r cannot be reprojected; skipping fit-to-extent", crs)
        return None
