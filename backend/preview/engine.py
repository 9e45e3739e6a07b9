"""
Map rendering engine interface.

The preview never draws anything itself: it drives an engine through this capability set.
`render.engine.PlotlyMapEngine` is the engine used by the HTTP host.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol

from geo.aoi import BBox


EngineEvent = Literal["ready", "error"]


@dataclass(frozen=True)
class MapContainer:
    """
    The rendering surface an engine is mounted into (pixel size of the map viewport).
    """

    width: int = 900
    height: int = 600


@dataclass(frozen=True)
class FitOptions:
    padding: int = 50
    # Upper bound for the resulting zoom (tiny extents would otherwise zoom in forever).
    max_zoom: float = 18.0


@dataclass
class MapHandle:
    """
    Opaque ownership of one live engine instance.

    Engines keep their per-instance state here; the preview only passes it back.
    """

    handle_id: int
    container: MapContainer
    style: str
    state: dict[str, Any] = field(default_factory=dict, repr=False)


class MapEngine(Protocol):
    def create(self, container: MapContainer, style: str) -> MapHandle: ...

    def on(self, handle: MapHandle, event: EngineEvent, cb: Callable[..., None]) -> None: ...

    def add_source(self, handle: MapHandle, source_id: str, spec: dict[str, Any]) -> None: ...

    def add_layer(self, handle: MapHandle, layer_id: str, spec: dict[str, Any]) -> None: ...

    def set_layer_visibility(self, handle: MapHandle, layer_id: str, visible: bool) -> None: ...

    def fit_bounds(self, handle: MapHandle, box: BBox, opts: FitOptions) -> None: ...

    def zoom_in(self, handle: MapHandle) -> None: ...

    def zoom_out(self, handle: MapHandle) -> None: ...

    def destroy(self, handle: MapHandle) -> None: ...

    def figure(self, handle: MapHandle) -> dict[str, Any]: ...
