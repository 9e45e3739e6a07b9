import asyncio
import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `preview.*`, `geo.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from preview.errors import MetadataFetchError  # noqa: E402
from projects.types import ProjectDescription  # noqa: E402
from render.engine import PlotlyMapEngine  # noqa: E402


class StaticLoader:
    """
    In-memory metadata source. `hold()` makes the next fetches wait until `release()`.
    """

    def __init__(self, projects: dict[str, ProjectDescription] | None = None):
        self.projects = dict(projects or {})
        self.calls: list[str] = []
        self._gates: dict[str, asyncio.Future] = {}

    def hold(self, project_id: str) -> None:
        self._gates[project_id] = asyncio.get_running_loop().create_future()

    def release(self, project_id: str) -> None:
        gate = self._gates.pop(project_id)
        if not gate.done():
            gate.set_result(None)

    async def fetch(self, project_id: str) -> ProjectDescription:
        self.calls.append(project_id)
        gate = self._gates.get(project_id)
        if gate is not None:
            # Shielded so a cancelled fetch still lets the test resolve the gate later.
            await asyncio.shield(gate)
        project = self.projects.get(project_id)
        if project is None:
            raise MetadataFetchError(project_id, "Project not found")
        return project


def make_project(project_id: str = "p1", **overrides) -> ProjectDescription:
    data = {
        "id": project_id,
        "title": f"Project {project_id}",
        "version": "3.34.2",
        "crs": "EPSG:3857",
        "extent": {"xMin": 0.0, "yMin": 0.0, "xMax": 20037508.34, "yMax": 20037508.34},
        "layers": [
            {"id": "a", "name": "Parcels", "type": "vector", "visible": True},
            {
                "id": "b",
                "name": "Tiles",
                "type": "xyz",
                "tileUrl": "http://t/{z}/{x}/{y}.png",
                "visible": False,
            },
        ],
    }
    data.update(overrides)
    return ProjectDescription.model_validate(data)


@pytest.fixture
def loader() -> StaticLoader:
    return StaticLoader({"p1": make_project("p1")})


class RecordingEngine(PlotlyMapEngine):
    """
    Plotly engine that also logs every source/layer/camera call it receives.
    """

    def __init__(self, *, auto_ready: bool = False):
        super().__init__(auto_ready=auto_ready)
        self.calls: list[tuple] = []

    def add_source(self, handle, source_id, spec):
        self.calls.append(("add_source", source_id))
        super().add_source(handle, source_id, spec)

    def add_layer(self, handle, layer_id, spec):
        self.calls.append(("add_layer", layer_id, spec["layout"]["visibility"]))
        super().add_layer(handle, layer_id, spec)

    def set_layer_visibility(self, handle, layer_id, visible):
        self.calls.append(("set_layer_visibility", layer_id, visible))
        super().set_layer_visibility(handle, layer_id, visible)

    def fit_bounds(self, handle, box, opts):
        self.calls.append(("fit_bounds", box.rounded_key()))
        super().fit_bounds(handle, box, opts)
