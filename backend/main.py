from __future__ import annotations

import time
import uuid
from functools import lru_cache
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from preview.config import max_sessions, metadata_url, session_ttl_s
from preview.engine import MapContainer
from preview.presentation import Presentation
from preview.view import MapPreview
from projects.http_loader import HttpMetadataLoader
from projects.loader import ProjectMetadataLoader
from projects.registry import ProjectRegistry, list_projects
from render.engine import PlotlyMapEngine
from telemetry.singleton import get_store, reset_store

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ApiViewport(BaseModel):
    width: int = 900
    height: int = 600


class ApiPreviewCreate(BaseModel):
    projectId: str
    projectName: str | None = None
    viewport: ApiViewport | None = None


class ApiProjectSwitch(BaseModel):
    projectId: str
    projectName: str | None = None


class ApiEngineError(BaseModel):
    message: str


class ApiPreview(BaseModel):
    previewId: str
    presentation: Presentation
    # Whether the action reached the map (toggle/zoom/reset); None for plain reads.
    applied: bool | None = None


@lru_cache(maxsize=1)
def _loader() -> ProjectMetadataLoader:
    url = metadata_url()
    if url:
        return HttpMetadataLoader(url)
    return ProjectRegistry()


# Preview endpoints are async so every engine call runs on the event loop thread.
_engine = PlotlyMapEngine()
_previews: dict[str, MapPreview] = {}
# preview id -> last request time; clients that never DELETE (closed tabs) are evicted.
_last_seen: dict[str, float] = {}
_clock = time.monotonic


def _drop_preview(preview_id: str) -> None:
    preview = _previews.pop(preview_id, None)
    _last_seen.pop(preview_id, None)
    if preview is not None:
        preview.unmount()


def _evict_sessions() -> None:
    """
    Drop idle sessions, then the least recently used ones until a new session fits.
    """
    now = _clock()
    ttl = session_ttl_s()
    for preview_id, seen in list(_last_seen.items()):
        if now - seen > ttl:
            _drop_preview(preview_id)
    by_age = sorted(_last_seen, key=_last_seen.__getitem__)
    while by_age and len(_previews) >= max_sessions():
        _drop_preview(by_age.pop(0))


def _get_preview(preview_id: str) -> MapPreview:
    preview = _previews.get(preview_id)
    if preview is None:
        raise HTTPException(status_code=404, detail=f"Unknown preview: {preview_id}")
    _last_seen[preview_id] = _clock()
    return preview


def _response(preview_id: str, preview: MapPreview, applied: bool | None = None) -> ApiPreview:
    return ApiPreview(
        previewId=preview_id, presentation=preview.presentation(), applied=applied
    )


@app.get("/projects")
def get_projects() -> list[dict[str, Any]]:
    return [
        {
            "id": p.id,
            "title": p.title,
            "crs": p.crs,
            "layerCount": len(p.layers),
            "renderableLayerCount": len(p.renderable_layers()),
        }
        for p in list_projects()
    ]


@app.post("/previews")
async def create_preview(body: ApiPreviewCreate) -> ApiPreview:
    _evict_sessions()
    preview_id = uuid.uuid4().hex
    preview = MapPreview(_loader(), _engine, telemetry=get_store())
    vp = body.viewport or ApiViewport()
    preview.mount(MapContainer(width=vp.width, height=vp.height))
    preview.select(body.projectId, project_name=body.projectName)
    _previews[preview_id] = preview
    _last_seen[preview_id] = _clock()
    await preview.settled()
    return _response(preview_id, preview)


@app.get("/previews/{preview_id}")
async def get_preview(preview_id: str) -> ApiPreview:
    return _response(preview_id, _get_preview(preview_id))


@app.put("/previews/{preview_id}/project")
async def switch_project(preview_id: str, body: ApiProjectSwitch) -> ApiPreview:
    preview = _get_preview(preview_id)
    preview.select(body.projectId, project_name=body.projectName)
    await preview.settled()
    return _response(preview_id, preview)


@app.post("/previews/{preview_id}/layers/{layer_id}/toggle")
async def toggle_layer(preview_id: str, layer_id: str) -> ApiPreview:
    preview = _get_preview(preview_id)
    applied = preview.toggle_layer(layer_id)
    return _response(preview_id, preview, applied)


@app.post("/previews/{preview_id}/zoom-in")
async def zoom_in(preview_id: str) -> ApiPreview:
    preview = _get_preview(preview_id)
    return _response(preview_id, preview, preview.zoom_in())


@app.post("/previews/{preview_id}/zoom-out")
async def zoom_out(preview_id: str) -> ApiPreview:
    preview = _get_preview(preview_id)
    return _response(preview_id, preview, preview.zoom_out())


@app.post("/previews/{preview_id}/reset-view")
async def reset_view(preview_id: str) -> ApiPreview:
    preview = _get_preview(preview_id)
    return _response(preview_id, preview, preview.reset_view())


@app.post("/previews/{preview_id}/refresh")
async def refresh(preview_id: str) -> ApiPreview:
    preview = _get_preview(preview_id)
    preview.refresh()
    await preview.settled()
    return _response(preview_id, preview)


@app.post("/previews/{preview_id}/engine-error")
async def engine_error(preview_id: str, body: ApiEngineError) -> ApiPreview:
    preview = _get_preview(preview_id)
    applied = preview.report_engine_error(body.message)
    return _response(preview_id, preview, applied)


@app.delete("/previews/{preview_id}")
async def delete_preview(preview_id: str) -> dict[str, Any]:
    _get_preview(preview_id)
    _drop_preview(preview_id)
    return {"ok": True, "previewId": preview_id}


@app.get("/telemetry/summary")
def telemetry_summary(projectId: str | None = None) -> list[dict[str, Any]]:
    store = get_store()
    if store is None:
        return []
    return store.summary(project_id=projectId)


@app.get("/telemetry/recent")
def telemetry_recent(event: str | None = None, limit: int = 25) -> list[dict[str, Any]]:
    store = get_store()
    if store is None:
        return []
    store.flush(timeout_s=2.0)
    return store.recent(event=event, limit=limit)


@app.post("/telemetry/reset")
async def telemetry_reset() -> dict[str, Any]:
    reset_store()
    store = get_store()
    for preview in _previews.values():
        preview.telemetry = store
    return {"ok": True}
