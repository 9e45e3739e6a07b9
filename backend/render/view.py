from __future__ import annotations

import math

from geo.aoi import BBox


MIN_ZOOM = 0.0
MAX_ZOOM = 22.0


def camera_for_bounds(
    box: BBox,
    *,
    width: int,
    height: int,
    padding: int = 0,
    max_zoom: float = MAX_ZOOM,
) -> tuple[dict[str, float], float]:
    """
    Center + Mapbox zoom that fits `box` into a `width` x `height` viewport with `padding`
    pixels kept free on every side.
    """
    b = box.normalized()
    # Never let padding eat the whole viewport.
    inner_w = max(32, int(width) - 2 * int(padding))
    inner_h = max(32, int(height) - 2 * int(padding))
    zoom = bbox_to_zoom(
        b.min_lon, b.min_lat, b.max_lon, b.max_lat, width=inner_w, height=inner_h
    )
    zoom = max(MIN_ZOOM, min(float(max_zoom), zoom))
    return b.center(), zoom


def bbox_to_zoom(
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
    *,
    width: int,
    height: int,
) -> float:
    # WebMercator bbox -> zoom heuristic.

    def lat_to_rad(lat: float) -> float:
        # Clamp away from the poles (log blows up at +-90).
        lat = max(-89.9, min(89.9, lat))
        s = math.sin(lat * math.pi / 180.0)
        return math.log((1 + s) / (1 - s)) / 2.0

    lat_rad_min = lat_to_rad(min_lat)
    lat_rad_max = lat_to_rad(max_lat)
    lon_delta = max_lon - min_lon
    lat_delta = (lat_rad_max - lat_rad_min) * 180.0 / math.pi

    # avoid division by zero
    lon_delta = max(lon_delta, 1e-6)
    lat_delta = max(lat_delta, 1e-6)

    # 256px tiles
    zoom_x = math.log2((width * 360.0) / (256.0 * lon_delta))
    zoom_y = math.log2((height * 170.0) / (256.0 * lat_delta))
    return float(min(zoom_x, zoom_y))
