from __future__ import annotations

from dataclasses import dataclass, field


SOURCE_PREFIX = "qgis-source-"
LAYER_PREFIX = "qgis-layer-"


@dataclass(frozen=True)
class EngineIds:
    source_id: str
    layer_id: str
    # Position among the project's renderable layers (also the z-order).
    index: int


def engine_ids_for(index: int) -> EngineIds:
    return EngineIds(
        source_id=f"{SOURCE_PREFIX}{index}",
        layer_id=f"{LAYER_PREFIX}{index}",
        index=index,
    )


@dataclass
class InstalledLayers:
    """
    Explicit project layer id <-> engine source/layer id mapping for one engine instance.

    Only holds layers that were actually installed, so lookups never point at a
    source that does not exist on the current engine.
    """

    _by_project: dict[str, EngineIds] = field(default_factory=dict)
    _by_engine_layer: dict[str, str] = field(default_factory=dict)

    def add(self, project_layer_id: str, ids: EngineIds) -> None:
        if project_layer_id in self._by_project:
            raise ValueError(f"Layer already installed: {project_layer_id}")
        self._by_project[project_layer_id] = ids
        self._by_engine_layer[ids.layer_id] = project_layer_id

    def get(self, project_layer_id: str) -> EngineIds | None:
        return self._by_project.get(project_layer_id)

    def project_layer_for(self, engine_layer_id: str) -> str | None:
        return self._by_engine_layer.get(engine_layer_id)

    def __contains__(self, project_layer_id: object) -> bool:
        return project_layer_id in self._by_project

    def __len__(self) -> int:
        return len(self._by_project)

    def project_layer_ids(self) -> list[str]:
        # Insertion order == install order == z-order.
        return list(self._by_project.keys())
