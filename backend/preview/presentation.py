from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from preview.visibility import LayerVisibilityState
from projects.types import LayerDescriptor, ProjectDescription


PreviewStatus = Literal[
    "idle",
    "loading",
    "ready-with-map",
    "ready-no-renderable-layers",
    "error",
]

DEFAULT_TITLE = "QGIS Project"


class PreviewErrorInfo(BaseModel):
    # "metadata": the project could not be loaded (no map shown).
    # "engine": the map failed; refresh re-creates it.
    kind: Literal["metadata", "engine"]
    message: str


class LayerRow(BaseModel):
    id: str
    name: str
    type: str
    visible: bool
    toggleable: bool
    note: str | None = None


class ProjectInfo(BaseModel):
    version: str = ""
    saveUser: str | None = None
    saveDate: str | None = None


class Presentation(BaseModel):
    """
    Everything the host UI needs to draw the preview panel.
    """

    projectId: str | None = None
    status: PreviewStatus
    title: str = DEFAULT_TITLE
    crs: str | None = None
    layers: list[LayerRow] = Field(default_factory=list)
    layerCount: int = 0
    info: ProjectInfo | None = None
    error: PreviewErrorInfo | None = None
    noRenderableMessage: str | None = None
    engineState: str | None = None
    figure: dict[str, Any] | None = None


def layer_row(layer: LayerDescriptor, visibility: LayerVisibilityState) -> LayerRow:
    note = None
    if not layer.renderable:
        if layer.type == "xyz":
            note = "xyz layer has no tile URL and cannot be rendered in the map preview"
        else:
            note = f"{layer.type} layers cannot be rendered in the map preview"
    return LayerRow(
        id=layer.id,
        name=layer.name,
        type=layer.type,
        visible=visibility.is_visible(layer.id),
        toggleable=layer.renderable,
        note=note,
    )


def layer_rows(
    project: ProjectDescription, visibility: LayerVisibilityState
) -> list[LayerRow]:
    return [layer_row(layer, visibility) for layer in project.layers]


def no_renderable_message(project: ProjectDescription) -> str:
    n = len(project.layers)
    return (
        f"This project contains {n} layers, but none are XYZ tile layers that can be "
        "displayed in the web preview. Supported: XYZ/TMS tile layers. "
        "Not supported: local raster/vector files, WMS."
    )


def display_title(project: ProjectDescription | None, project_name: str | None) -> str:
    if project is not None and project.title:
        return project.title
    return project_name or DEFAULT_TITLE
