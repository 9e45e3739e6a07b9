from __future__ import annotations

from typing import Callable

from geo.aoi import BBox
from geo.reproject import try_to_geodetic
from preview.engine import FitOptions, MapEngine, MapHandle
from projects.types import Extent

# Minimum span (degrees) used to frame a point- or line-shaped extent.
MIN_FIT_SPAN_DEG = 0.003


class ViewportController:
    """
    Camera framing for one engine instance.

    The extent and CRS are captured at load time; `reset_view()` always returns to that
    framing regardless of how the camera moved since.
    """

    def __init__(
        self,
        engine: MapEngine,
        handle: MapHandle,
        *,
        extent: Extent | None,
        crs: str | None,
        padding: int = 50,
        is_ready: Callable[[], bool] = lambda: True,
    ):
        self.engine = engine
        self.handle = handle
        self.extent = extent
        self.crs = crs
        self.options = FitOptions(padding=int(padding))
        self._is_ready = is_ready
        self._target = try_to_geodetic(extent, crs)

    @property
    def target(self) -> BBox | None:
        """Geodetic framing box (already padded if degenerate), or None if unframeable."""
        if self._target is None:
            return None
        if self._target.is_degenerate:
            return self._target.with_min_span(MIN_FIT_SPAN_DEG)
        return self._target

    def fit_to_extent(self) -> bool:
        target = self.target
        if target is None or not self._is_ready():
            return False
        self.engine.fit_bounds(self.handle, target, self.options)
        return True

    def reset_view(self) -> bool:
        return self.fit_to_extent()

    def zoom_in(self) -> bool:
        if not self._is_ready():
            return False
        self.engine.zoom_in(self.handle)
        return True

    def zoom_out(self) -> bool:
        if not self._is_ready():
            return False
        self.engine.zoom_out(self.handle)
        return True
