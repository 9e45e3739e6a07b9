from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Extent(BaseModel):
    """
    Project extent in the project's declared CRS (not necessarily lon/lat).
    """

    model_config = ConfigDict(frozen=True)

    xMin: float
    yMin: float
    xMax: float
    yMax: float

    @model_validator(mode="after")
    def _check_order(self) -> "Extent":
        if self.xMin > self.xMax or self.yMin > self.yMax:
            raise ValueError(
                f"Invalid extent: ({self.xMin}, {self.yMin}, {self.xMax}, {self.yMax})"
            )
        return self


class LayerDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    # QGIS `maplayer` type as sent (xyz, wms, raster, vector, mesh, vector-tile, ...).
    # Anything the engine cannot draw is listed but display-only.
    type: str
    visible: bool = True
    tileUrl: str | None = None

    # Display-only details carried by the metadata API.
    provider: str | None = None
    source: str | None = None
    wmsUrl: str | None = None
    wmsLayers: str | None = None

    @property
    def renderable(self) -> bool:
        # Only tiled XYZ sources can be drawn by the map engine.
        return self.type == "xyz" and bool((self.tileUrl or "").strip())


class ProjectDescription(BaseModel):
    """
    A loaded QGIS project as the preview sees it.

    Immutable: a reload replaces the whole description, it is never patched in place.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    version: str = ""
    crs: str = ""
    extent: Extent | None = None
    layers: list[LayerDescriptor] = Field(default_factory=list)
    saveUser: str | None = None
    saveDate: str | None = None

    @field_validator("layers")
    @classmethod
    def _unique_layer_ids(cls, layers: list[LayerDescriptor]) -> list[LayerDescriptor]:
        seen: set[str] = set()
        for layer in layers:
            if layer.id in seen:
                raise ValueError(f"Duplicate layer id: {layer.id}")
            seen.add(layer.id)
        return layers

    def get(self, layer_id: str) -> LayerDescriptor | None:
        lid = (layer_id or "").strip()
        for layer in self.layers:
            if layer.id == lid:
                return layer
        return None

    def renderable_layers(self) -> list[LayerDescriptor]:
        return [layer for layer in self.layers if layer.renderable]

    @property
    def has_renderable_layers(self) -> bool:
        return any(layer.renderable for layer in self.layers)


def parse_project_description(data: dict, *, project_id: str) -> ProjectDescription:
    """
    Validate a metadata payload; the API omits `id`, so the requested id fills it in.
    """
    payload = dict(data or {})
    payload.setdefault("id", project_id)
    return ProjectDescription.model_validate(payload)
