from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable

from geo.aoi import BBox
from preview.engine import EngineEvent, FitOptions, MapContainer, MapHandle
from preview.errors import EngineLoadError, EngineStateError
from render.view import MAX_ZOOM, MIN_ZOOM, camera_for_bounds

logger = logging.getLogger(__name__)

DEFAULT_CENTER = {"lon": 0.0, "lat": 0.0}
DEFAULT_ZOOM = 2.0

_TILE_PLACEHOLDERS = ("{z}", "{x}", "{y}")


def tile_template_problem(template: str) -> str | None:
    """
    Why a raster tile template cannot be loaded, or None if it looks usable.
    """
    t = (template or "").strip()
    if not t.lower().startswith(("http://", "https://")):
        return f"Unsupported tile URL (expected http/https): {t or '<empty>'}"
    missing = [p for p in _TILE_PLACEHOLDERS if p not in t and p.upper() not in t]
    if missing:
        return f"Tile URL is missing {', '.join(missing)}: {t}"
    return None


class PlotlyMapEngine:
    """
    Map engine that renders into a Plotly `scattermapbox` figure.

    Raster sources/layers become `layout.mapbox.layers` entries in install order
    (later entries draw on top). Like a browser map library it only accepts
    source/layer calls after its asynchronous `ready` notification.
    """

    def __init__(self, *, auto_ready: bool = True):
        # auto_ready=False leaves `load()` to the caller (tests drive readiness by hand).
        self.auto_ready = auto_ready
        self._ids = itertools.count(1)
        self._live: dict[int, MapHandle] = {}

    # -- lifecycle ---------------------------------------------------------------------

    def create(self, container: MapContainer, style: str) -> MapHandle:
        handle = MapHandle(
            handle_id=next(self._ids),
            container=container,
            style=style,
            state={
                "ready": False,
                "destroyed": False,
                "listeners": {"ready": [], "error": []},
                "sources": {},
                "layers": {},
                "layer_order": [],
                "center": dict(DEFAULT_CENTER),
                "zoom": DEFAULT_ZOOM,
                "bounds": None,
                "loop": None,
            },
        )
        self._live[handle.handle_id] = handle
        if self.auto_ready:
            loop = asyncio.get_running_loop()
            handle.state["loop"] = loop
            loop.call_soon(self.load, handle)
        return handle

    def load(self, handle: MapHandle) -> None:
        """
        Finish initialization and fire `ready` (no-op for destroyed or already-ready handles).
        """
        st = handle.state
        if st["destroyed"] or st["ready"]:
            return
        st["ready"] = True
        self._emit(handle, "ready")

    def on(self, handle: MapHandle, event: EngineEvent, cb: Callable[..., None]) -> None:
        st = handle.state
        if st["destroyed"]:
            raise EngineStateError(f"Map {handle.handle_id} is destroyed")
        if event not in st["listeners"]:
            raise ValueError(f"Unknown engine event: {event}")
        st["listeners"][event].append(cb)

    def destroy(self, handle: MapHandle) -> None:
        st = handle.state
        if st["destroyed"]:
            return
        st["destroyed"] = True
        st["ready"] = False
        for cbs in st["listeners"].values():
            cbs.clear()
        st["sources"].clear()
        st["layers"].clear()
        st["layer_order"].clear()
        self._live.pop(handle.handle_id, None)

    # -- sources / layers --------------------------------------------------------------

    def add_source(self, handle: MapHandle, source_id: str, spec: dict[str, Any]) -> None:
        st = self._require_ready(handle)
        if source_id in st["sources"]:
            raise EngineStateError(f"Source already exists: {source_id}")
        st["sources"][source_id] = dict(spec)

        if spec.get("type") == "raster":
            for template in spec.get("tiles") or []:
                problem = tile_template_problem(template)
                if problem:
                    logger.warning("map %s source %s: %s", handle.handle_id, source_id, problem)
                    # Tile failures show up after the fact, like a real map library.
                    self._schedule(handle, self._emit, handle, "error", EngineLoadError(problem))
                    break

    def add_layer(self, handle: MapHandle, layer_id: str, spec: dict[str, Any]) -> None:
        st = self._require_ready(handle)
        if layer_id in st["layers"]:
            raise EngineStateError(f"Layer already exists: {layer_id}")
        source_id = spec.get("source")
        if source_id not in st["sources"]:
            raise EngineStateError(f"Layer {layer_id} references unknown source: {source_id}")
        st["layers"][layer_id] = {
            "type": spec.get("type") or "raster",
            "source": source_id,
            "visible": (spec.get("layout") or {}).get("visibility", "visible") != "none",
        }
        st["layer_order"].append(layer_id)

    def set_layer_visibility(self, handle: MapHandle, layer_id: str, visible: bool) -> None:
        st = self._require_ready(handle)
        layer = st["layers"].get(layer_id)
        if layer is None:
            raise EngineStateError(f"Unknown layer: {layer_id}")
        layer["visible"] = bool(visible)

    # -- camera ------------------------------------------------------------------------

    def fit_bounds(self, handle: MapHandle, box: BBox, opts: FitOptions) -> None:
        st = self._require_alive(handle)
        center, zoom = camera_for_bounds(
            box,
            width=handle.container.width,
            height=handle.container.height,
            padding=opts.padding,
            max_zoom=opts.max_zoom,
        )
        st["center"] = center
        st["zoom"] = zoom
        st["bounds"] = box.normalized()

    def zoom_in(self, handle: MapHandle) -> None:
        st = self._require_alive(handle)
        st["zoom"] = min(MAX_ZOOM, float(st["zoom"]) + 1.0)

    def zoom_out(self, handle: MapHandle) -> None:
        st = self._require_alive(handle)
        st["zoom"] = max(MIN_ZOOM, float(st["zoom"]) - 1.0)

    def pan_to(self, handle: MapHandle, lon: float, lat: float) -> None:
        st = self._require_alive(handle)
        st["center"] = {"lon": float(lon), "lat": float(lat)}

    def camera(self, handle: MapHandle) -> dict[str, Any]:
        st = handle.state
        return {"center": dict(st["center"]), "zoom": float(st["zoom"])}

    # -- output ------------------------------------------------------------------------

    def figure(self, handle: MapHandle) -> dict[str, Any]:
        """
        Plotly figure for the current engine state.
        """
        st = handle.state
        mapbox_layers: list[dict[str, Any]] = []
        for layer_id in st["layer_order"]:
            layer = st["layers"][layer_id]
            source = st["sources"].get(layer["source"]) or {}
            mapbox_layers.append(
                {
                    "name": layer_id,
                    "sourcetype": "raster",
                    "source": list(source.get("tiles") or []),
                    "sourceattribution": source.get("attribution") or "",
                    "below": "traces",
                    "visible": bool(layer["visible"]),
                }
            )

        return {
            "data": [
                {
                    # Mapbox figures need at least one trace to draw the base map.
                    "type": "scattermapbox",
                    "lat": [],
                    "lon": [],
                    "mode": "markers",
                    "hoverinfo": "skip",
                    "showlegend": False,
                }
            ],
            "layout": {
                "mapbox": {
                    "style": handle.style,
                    "center": dict(st["center"]),
                    "zoom": float(st["zoom"]),
                    "layers": mapbox_layers,
                },
                "margin": {"l": 0, "r": 0, "t": 0, "b": 0},
                "showlegend": False,
                "meta": {"mapId": handle.handle_id},
            },
        }

    # -- introspection (tests, telemetry) ----------------------------------------------

    @property
    def live_count(self) -> int:
        return len(self._live)

    def listener_count(self, handle: MapHandle) -> int:
        return sum(len(cbs) for cbs in handle.state["listeners"].values())

    # -- internals ---------------------------------------------------------------------

    def _require_alive(self, handle: MapHandle) -> dict[str, Any]:
        st = handle.state
        if st["destroyed"]:
            raise EngineStateError(f"Map {handle.handle_id} is destroyed")
        return st

    def _require_ready(self, handle: MapHandle) -> dict[str, Any]:
        st = self._require_alive(handle)
        if not st["ready"]:
            raise EngineStateError(f"Map {handle.handle_id} is not loaded yet")
        return st

    def _emit(self, handle: MapHandle, event: EngineEvent, *args: Any) -> None:
        if handle.state["destroyed"]:
            return
        for cb in list(handle.state["listeners"][event]):
            cb(*args)

    def _schedule(self, handle: MapHandle, fn: Callable[..., None], *args: Any) -> None:
        loop = handle.state.get("loop")
        if loop is None:
            fn(*args)
        else:
            loop.call_soon(fn, *args)
