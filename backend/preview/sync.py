from __future__ import annotations

import logging
from typing import Any

from preview.engine import MapEngine, MapHandle
from preview.installed import InstalledLayers, engine_ids_for
from preview.visibility import LayerVisibilityState
from projects.types import LayerDescriptor, ProjectDescription

logger = logging.getLogger(__name__)

TILE_SIZE = 256


def source_spec(layer: LayerDescriptor) -> dict[str, Any]:
    return {
        "type": "raster",
        "tiles": [layer.tileUrl],
        "tileSize": TILE_SIZE,
        "attribution": layer.name,
    }


def layer_spec(source_id: str, visible: bool) -> dict[str, Any]:
    return {
        "type": "raster",
        "source": source_id,
        "layout": {"visibility": "visible" if visible else "none"},
    }


class MapLayerSynchronizer:
    """
    Mirrors a project's renderable layers onto one ready engine instance.

    `install()` runs once per engine `ready`; afterwards only visibility changes are
    forwarded (no source is ever re-created).
    """

    def __init__(self, engine: MapEngine, handle: MapHandle):
        self.engine = engine
        self.handle = handle
        self.installed = InstalledLayers()

    def install(
        self, project: ProjectDescription, visibility: LayerVisibilityState
    ) -> InstalledLayers:
        renderable = project.renderable_layers()
        if not renderable:
            logger.info("project %s has no renderable layers; nothing to install", project.id)
            return self.installed

        for index, layer in enumerate(renderable):
            ids = engine_ids_for(index)
            visible = (
                visibility.is_visible(layer.id) if layer.id in visibility else layer.visible
            )
            self.engine.add_source(self.handle, ids.source_id, source_spec(layer))
            self.engine.add_layer(self.handle, ids.layer_id, layer_spec(ids.source_id, visible))
            self.installed.add(layer.id, ids)

        logger.debug("installed %d layers for project %s", len(self.installed), project.id)
        return self.installed

    def apply_visibility(self, layer_id: str, visible: bool) -> bool:
        """
        Forward one visibility change; returns False when the layer has no engine layer.
        """
        ids = self.installed.get(layer_id)
        if ids is None:
            return False
        self.engine.set_layer_visibility(self.handle, ids.layer_id, visible)
        return True
