from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from preview import config
from preview.engine import MapContainer, MapEngine, MapHandle
from preview.errors import EngineLoadError, MetadataFetchError
from preview.lifecycle import LifecycleState, MapLifecycleController
from preview.presentation import (
    PreviewErrorInfo,
    PreviewStatus,
    Presentation,
    ProjectInfo,
    display_title,
    layer_rows,
    no_renderable_message,
)
from preview.sync import MapLayerSynchronizer
from preview.viewport import ViewportController
from preview.visibility import LayerVisibilityState, seed, toggle
from projects.loader import ProjectMetadataLoader
from projects.types import ProjectDescription
from telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

_SETTLE_TURNS = 20


class MapPreview:
    """
    One mounted preview panel: keeps a live map consistent with a selected project.

    Must be driven from a single asyncio event loop. Two suspension points exist: the
    metadata fetch and the engine's `ready` notification. Every completion is checked
    against `generation` (bumped on each project change/unmount) so a superseded
    response never touches state for a newer selection.
    """

    def __init__(
        self,
        loader: ProjectMetadataLoader,
        engine: MapEngine,
        *,
        telemetry: TelemetryStore | None = None,
        style: str | None = None,
        padding: int | None = None,
    ):
        self.loader = loader
        self.engine = engine
        self.telemetry = telemetry
        self.style = style or config.map_style()
        self.padding = config.fit_padding_px() if padding is None else int(padding)

        self.generation = 0
        self.container: MapContainer | None = None
        self.project_id: str | None = None
        self.project_name: str | None = None
        self.project: ProjectDescription | None = None
        self.visibility = LayerVisibilityState()
        self.metadata_error: MetadataFetchError | None = None

        self.lifecycle: MapLifecycleController | None = None
        self.sync: MapLayerSynchronizer | None = None
        self.viewport: ViewportController | None = None
        self._fetch_task: asyncio.Task | None = None

    # -- mounting ----------------------------------------------------------------------

    def mount(self, container: MapContainer) -> None:
        self.container = container
        self._ensure_engine()

    def unmount(self) -> None:
        self.generation += 1
        self._cancel_fetch()
        self._teardown_engine()
        self.container = None
        self.project_id = None
        self.project_name = None
        self.project = None
        self.visibility = LayerVisibilityState()
        self.metadata_error = None

    # -- project selection -------------------------------------------------------------

    def select(self, project_id: str, *, project_name: str | None = None) -> asyncio.Task:
        """
        Switch to `project_id`: drop everything from the previous selection and start a fetch.
        """
        self.generation += 1
        gen = self.generation
        self._cancel_fetch()
        self._teardown_engine()

        self.project_id = (project_id or "").strip()
        self.project_name = project_name
        self.project = None
        self.visibility = LayerVisibilityState()
        self.metadata_error = None

        task = asyncio.get_running_loop().create_task(self._fetch(gen, self.project_id))
        self._fetch_task = task
        return task

    def refresh(self) -> asyncio.Task | None:
        """
        Retry after a failure: re-fetch if metadata never loaded, otherwise re-create the map.
        """
        if self.project_id is None:
            return None
        if self.project is None:
            return self.select(self.project_id, project_name=self.project_name)
        self._teardown_engine()
        self._ensure_engine()
        return None

    async def settled(self, *, timeout_s: float = 5.0) -> None:
        """
        Wait for the outstanding fetch and for a just-created engine to report in.
        """
        task = self._fetch_task
        if task is not None and not task.done():
            await asyncio.wait({task}, timeout=timeout_s)
        # Engine readiness is delivered through the loop; give it a few turns.
        for _ in range(_SETTLE_TURNS):
            if self.lifecycle is None or self.lifecycle.state != LifecycleState.creating:
                break
            await asyncio.sleep(0)

    async def _fetch(self, gen: int, project_id: str) -> None:
        started = time.perf_counter()
        try:
            project = await self.loader.fetch(project_id)
        except MetadataFetchError as e:
            self._on_metadata_failed(gen, e, started)
            return
        self._on_metadata_loaded(gen, project, started)

    def _on_metadata_loaded(self, gen: int, project: ProjectDescription, started: float) -> None:
        if gen != self.generation:
            self._discard_stale("metadata_loaded", gen)
            return
        self._fetch_task = None
        self.project = project
        self.visibility = seed(project.layers)
        self._record(
            "metadata_loaded",
            elapsedMs=_elapsed_ms(started),
            layers=len(project.layers),
            renderable=len(project.renderable_layers()),
        )
        self._ensure_engine()

    def _on_metadata_failed(self, gen: int, err: MetadataFetchError, started: float) -> None:
        if gen != self.generation:
            self._discard_stale("metadata_failed", gen)
            return
        self._fetch_task = None
        self.metadata_error = err
        logger.warning("metadata fetch for %s failed: %s", err.project_id, err.message)
        self._record("metadata_failed", elapsedMs=_elapsed_ms(started), message=err.message)

    # -- engine ------------------------------------------------------------------------

    def _ensure_engine(self) -> None:
        if self.project is None or self.container is None or self.lifecycle is not None:
            return
        if not self.project.has_renderable_layers:
            # Nothing to draw: no engine, the panel shows the "no renderable layers" state.
            return

        gen = self.generation
        lc = MapLifecycleController(
            self.engine,
            self.container,
            style=self.style,
            on_ready=lambda handle: self._on_engine_ready(gen, lc, handle),
            on_error=lambda err: self._on_engine_error(gen, lc, err),
        )
        self.lifecycle = lc
        lc.create()

    def _on_engine_ready(self, gen: int, lc: MapLifecycleController, handle: MapHandle) -> None:
        if gen != self.generation or lc is not self.lifecycle or self.project is None:
            self._discard_stale("engine_ready", gen)
            return
        project = self.project
        self.sync = MapLayerSynchronizer(self.engine, handle)
        installed = self.sync.install(project, self.visibility)
        self._record("layers_installed", installed=len(installed))

        self.viewport = ViewportController(
            self.engine,
            handle,
            extent=project.extent,
            crs=project.crs,
            padding=self.padding,
            is_ready=lambda: lc.is_ready,
        )
        if not self.viewport.fit_to_extent():
            self._record(
                "fit_skipped", crs=project.crs, hasExtent=project.extent is not None
            )
        self._record("engine_ready", mapId=handle.handle_id)

    def _on_engine_error(self, gen: int, lc: MapLifecycleController, err: EngineLoadError) -> None:
        if gen != self.generation or lc is not self.lifecycle:
            self._discard_stale("engine_error", gen)
            return
        self._record("engine_error", message=err.message)

    def report_engine_error(self, message: str) -> bool:
        """
        Host-reported map failure (e.g. the browser could not load tiles).
        """
        if self.lifecycle is None or not self.lifecycle.is_live:
            return False
        self.lifecycle.report_error(EngineLoadError(message))
        return True

    def _teardown_engine(self) -> None:
        if self.lifecycle is not None:
            self.lifecycle.destroy()
        self.lifecycle = None
        self.sync = None
        self.viewport = None

    def _cancel_fetch(self) -> None:
        task = self._fetch_task
        self._fetch_task = None
        if task is not None and not task.done():
            task.cancel()

    # -- user actions ------------------------------------------------------------------

    def toggle_layer(self, layer_id: str) -> bool:
        """
        Flip a layer's visibility; returns True if the map was updated.

        Non-renderable or unknown layers only change the stored flag.
        """
        layer = self.project.get(layer_id) if self.project is not None else None
        default = layer.visible if layer is not None else True
        self.visibility = toggle(self.visibility, layer_id, default=default)
        visible = self.visibility.is_visible(layer_id)

        applied = False
        if self.sync is not None and self.lifecycle is not None and self.lifecycle.is_ready:
            applied = self.sync.apply_visibility(layer_id, visible)
        self._record("visibility_toggled", layerId=layer_id, visible=visible, applied=applied)
        return applied

    def zoom_in(self) -> bool:
        return self.viewport.zoom_in() if self.viewport is not None else False

    def zoom_out(self) -> bool:
        return self.viewport.zoom_out() if self.viewport is not None else False

    def reset_view(self) -> bool:
        return self.viewport.reset_view() if self.viewport is not None else False

    # -- presentation ------------------------------------------------------------------

    @property
    def status(self) -> PreviewStatus:
        if self.project_id is None:
            return "idle"
        if self.metadata_error is not None:
            return "error"
        if self.project is None:
            return "loading"
        if not self.project.has_renderable_layers:
            return "ready-no-renderable-layers"
        if self.lifecycle is not None and self.lifecycle.state == LifecycleState.error:
            return "error"
        if self.lifecycle is not None and self.lifecycle.is_ready:
            return "ready-with-map"
        return "loading"

    def presentation(self) -> Presentation:
        status = self.status
        project = self.project

        error = None
        if self.metadata_error is not None:
            error = PreviewErrorInfo(kind="metadata", message=self.metadata_error.message)
        elif status == "error" and self.lifecycle is not None and self.lifecycle.error:
            error = PreviewErrorInfo(kind="engine", message=self.lifecycle.error.message)

        figure = None
        if status == "ready-with-map" and self.lifecycle is not None and self.lifecycle.handle:
            figure = self.engine.figure(self.lifecycle.handle)

        return Presentation(
            projectId=self.project_id,
            status=status,
            title=display_title(project, self.project_name),
            crs=project.crs if project is not None else None,
            layers=layer_rows(project, self.visibility) if project is not None else [],
            layerCount=len(project.layers) if project is not None else 0,
            info=(
                ProjectInfo(
                    version=project.version,
                    saveUser=project.saveUser,
                    saveDate=project.saveDate,
                )
                if project is not None
                else None
            ),
            error=error,
            noRenderableMessage=(
                no_renderable_message(project)
                if status == "ready-no-renderable-layers" and project is not None
                else None
            ),
            engineState=self.lifecycle.state.value if self.lifecycle is not None else None,
            figure=figure,
        )

    # -- telemetry ---------------------------------------------------------------------

    def _discard_stale(self, event: str, gen: int) -> None:
        logger.debug("discarding stale %s (generation %d, current %d)", event, gen, self.generation)
        self._record("stale_discarded", completion=event, staleGeneration=gen)

    def _record(self, event: str, **stats: Any) -> None:
        if self.telemetry is None:
            return
        self.telemetry.record(
            event=event,
            project_id=self.project_id,
            generation=self.generation,
            status=self.status,
            stats=stats,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)
