from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat
    - a box may be degenerate (a point or a line); callers that frame a camera pad it
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    @property
    def is_degenerate(self) -> bool:
        return self.min_lon == self.max_lon or self.min_lat == self.max_lat

    def center(self) -> dict[str, float]:
        return {
            "lon": (self.min_lon + self.max_lon) / 2.0,
            "lat": (self.min_lat + self.max_lat) / 2.0,
        }

    def with_min_span(self, min_span: float) -> "BBox":
        """
        Grow each axis symmetrically until it spans at least `min_span` degrees.
        """
        b = self.normalized()
        min_lon, max_lon = b.min_lon, b.max_lon
        min_lat, max_lat = b.min_lat, b.max_lat
        if max_lon - min_lon < min_span:
            mid = (min_lon + max_lon) / 2.0
            min_lon, max_lon = mid - min_span / 2.0, mid + min_span / 2.0
        if max_lat - min_lat < min_span:
            mid = (min_lat + max_lat) / 2.0
            min_lat, max_lat = mid - min_span / 2.0, mid + min_span / 2.0
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def rounded_key(self, decimals: int = 6) -> tuple[float, float, float, float]:
        """
        A stable, hashable key (used for comparing camera framings in tests/telemetry).
        """
        b = self.normalized()
        return (
            round(b.min_lon, decimals),
            round(b.min_lat, decimals),
            round(b.max_lon, decimals),
            round(b.max_lat, decimals),
        )
