from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from projects.types import LayerDescriptor


@dataclass(frozen=True)
class LayerVisibilityState:
    """
    Per-project layer id -> visible flag, owned by the preview.

    Absence of an entry means visible; only an explicit False hides a layer.
    Never written back to the `ProjectDescription`.
    """

    flags: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))

    def is_visible(self, layer_id: str) -> bool:
        return self.flags.get(layer_id) is not False

    def __contains__(self, layer_id: object) -> bool:
        return layer_id in self.flags

    def as_dict(self) -> dict[str, bool]:
        return dict(self.flags)


def seed(layers: Iterable[LayerDescriptor]) -> LayerVisibilityState:
    return LayerVisibilityState(
        flags=MappingProxyType({layer.id: bool(layer.visible) for layer in layers})
    )


def toggle(
    state: LayerVisibilityState, layer_id: str, *, default: bool = True
) -> LayerVisibilityState:
    """
    Flip `layer_id`; an unset id starts from `default` (the descriptor's own flag).

    Unknown ids are simply inserted.
    """
    prior = state.flags.get(layer_id, default)
    flags = dict(state.flags)
    flags[layer_id] = not prior
    return LayerVisibilityState(flags=MappingProxyType(flags))

