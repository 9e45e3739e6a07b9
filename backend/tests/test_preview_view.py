from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingEngine, StaticLoader, make_project
from preview.engine import MapContainer
from preview.lifecycle import LifecycleState
from preview.view import MapPreview


class EventLog:
    def __init__(self):
        self.rows: list[dict] = []

    def record(self, **row) -> None:
        self.rows.append(row)

    def events(self) -> list[str]:
        return [r["event"] for r in self.rows]


def _preview(loader, engine, **kw) -> MapPreview:
    return MapPreview(loader, engine, style="white-bg", padding=50, **kw)


def _xyz_project(project_id: str = "osm", url: str = "https://tile.example/{z}/{x}/{y}.png"):
    return make_project(
        project_id,
        layers=[{"id": "base", "name": "OSM", "type": "xyz", "tileUrl": url, "visible": True}],
    )


def test_select_loads_metadata_and_builds_map():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        return preview, engine

    preview, engine = asyncio.run(run())
    assert preview.status == "ready-with-map"
    assert engine.live_count == 1
    assert [c[0] for c in engine.calls] == ["add_source", "add_layer", "fit_bounds"]

    p = preview.presentation()
    assert p.title == "Project p1"
    assert p.crs == "EPSG:3857"
    assert p.layerCount == 2
    assert [row.toggleable for row in p.layers] == [False, True]
    assert p.layers[0].note == "vector layers cannot be rendered in the map preview"
    assert p.figure is not None
    assert [lyr["visible"] for lyr in p.figure["layout"]["mapbox"]["layers"]] == [False]
    assert p.engineState == "ready"


def test_metadata_failure_shows_error_and_creates_no_map():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader(), engine)
        preview.mount(MapContainer())
        preview.select("missing")
        await preview.settled()
        return preview, engine

    preview, engine = asyncio.run(run())
    assert preview.status == "error"
    assert preview.lifecycle is None
    assert engine.live_count == 0
    p = preview.presentation()
    assert p.error is not None
    assert p.error.kind == "metadata"
    assert p.error.message == "Project not found"
    assert p.figure is None


def test_switching_project_cancels_pending_fetch():
    async def run():
        loader = StaticLoader({"p1": make_project("p1"), "p2": make_project("p2", title="Second")})
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(loader, engine)
        preview.mount(MapContainer())

        loader.hold("p1")
        first = preview.select("p1")
        await asyncio.sleep(0)
        assert loader.calls == ["p1"]

        preview.select("p2")
        await preview.settled()
        # The superseded fetch now resolves; nothing may change.
        loader.release("p1")
        for _ in range(5):
            await asyncio.sleep(0)
        return preview, engine, first

    preview, engine, first = asyncio.run(run())
    assert first.cancelled()
    assert preview.project_id == "p2"
    assert preview.project is not None and preview.project.id == "p2"
    assert preview.presentation().title == "Second"
    assert engine.live_count == 1
    assert [c[0] for c in engine.calls].count("add_source") == 1


def test_superseded_metadata_completion_is_discarded():
    async def run():
        log = EventLog()
        loader = StaticLoader({"p1": make_project("p1"), "p2": make_project("p2")})
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(loader, engine, telemetry=log)
        preview.mount(MapContainer())
        preview.select("p1")
        stale_gen = preview.generation
        preview.select("p2")
        await preview.settled()

        preview._on_metadata_loaded(stale_gen, make_project("p1", title="Stale"), 0.0)
        return preview, log

    preview, log = asyncio.run(run())
    assert preview.project.id == "p2"
    assert preview.presentation().title == "Project p2"
    assert log.events().count("stale_discarded") == 1


def test_ready_from_a_torn_down_map_is_ignored():
    async def run():
        loader = StaticLoader({"p1": make_project("p1"), "p2": _xyz_project("p2")})
        engine = RecordingEngine(auto_ready=False)
        preview = _preview(loader, engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        old = preview.lifecycle.handle

        preview.select("p2")
        await preview.settled()
        engine.load(old)
        engine.load(preview.lifecycle.handle)
        return preview, engine, old

    preview, engine, old = asyncio.run(run())
    assert old.state["destroyed"] is True
    assert engine.listener_count(old) == 0
    assert engine.live_count == 1
    assert preview.status == "ready-with-map"
    assert ("add_layer", "qgis-layer-0", "visible") in engine.calls
    assert ("add_layer", "qgis-layer-0", "none") not in engine.calls


def test_toggle_only_touches_installed_layers():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        engine.calls.clear()

        applied_a = preview.toggle_layer("a")
        calls_after_a = list(engine.calls)
        applied_b = preview.toggle_layer("b")
        return preview, engine, applied_a, calls_after_a, applied_b

    preview, engine, applied_a, calls_after_a, applied_b = asyncio.run(run())
    assert applied_a is False
    assert calls_after_a == []
    assert applied_b is True
    assert engine.calls == [("set_layer_visibility", "qgis-layer-0", True)]

    rows = {row.id: row for row in preview.presentation().layers}
    assert rows["a"].visible is False
    assert rows["b"].visible is True
    # Stored descriptors are never modified.
    assert preview.project.get("b").visible is False


def test_unknown_layer_toggle_is_harmless():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        engine.calls.clear()
        return preview, engine, preview.toggle_layer("nope")

    preview, engine, applied = asyncio.run(run())
    assert applied is False
    assert engine.calls == []
    assert preview.visibility.is_visible("nope") is False
    assert preview.status == "ready-with-map"


def test_project_without_renderable_layers_has_no_map():
    async def run():
        project = make_project("v", layers=[{"id": "a", "name": "Parcels", "type": "vector"}])
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"v": project}), engine)
        preview.mount(MapContainer())
        preview.select("v")
        await preview.settled()
        return preview, engine

    preview, engine = asyncio.run(run())
    assert preview.status == "ready-no-renderable-layers"
    assert engine.live_count == 0
    p = preview.presentation()
    assert p.noRenderableMessage is not None
    assert "1 layers" in p.noRenderableMessage
    assert p.figure is None
    assert preview.toggle_layer("a") is False


def test_bad_tile_url_surfaces_engine_error():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        loader = StaticLoader({"bad": _xyz_project("bad", url="file:///tiles/{z}/{x}/{y}.png")})
        preview = _preview(loader, engine)
        preview.mount(MapContainer())
        preview.select("bad")
        await preview.settled()
        # The tile error is delivered one loop turn after install.
        await asyncio.sleep(0)
        return preview

    preview = asyncio.run(run())
    assert preview.status == "error"
    p = preview.presentation()
    assert p.error is not None
    assert p.error.kind == "engine"
    assert "http" in p.error.message
    assert p.figure is None


def test_refresh_after_engine_error_recreates_map_and_keeps_toggles():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        preview.toggle_layer("b")
        first = preview.lifecycle.handle

        assert preview.report_engine_error("tiles returned 404") is True
        assert preview.status == "error"
        assert preview.presentation().error.message == "tiles returned 404"

        engine.calls.clear()
        assert preview.refresh() is None
        await preview.settled()
        return preview, engine, first

    preview, engine, first = asyncio.run(run())
    assert preview.status == "ready-with-map"
    assert preview.lifecycle.handle is not first
    assert engine.live_count == 1
    assert ("add_layer", "qgis-layer-0", "visible") in engine.calls


def test_refresh_after_metadata_error_fetches_again():
    async def run():
        loader = StaticLoader()
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(loader, engine)
        preview.mount(MapContainer())
        preview.select("late", project_name="Late project")
        await preview.settled()
        assert preview.status == "error"

        loader.projects["late"] = _xyz_project("late")
        assert preview.refresh() is not None
        await preview.settled()
        return preview, loader

    preview, loader = asyncio.run(run())
    assert loader.calls == ["late", "late"]
    assert preview.status == "ready-with-map"
    assert preview.project_name == "Late project"


def test_reset_view_restores_initial_fit():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        handle = preview.lifecycle.handle
        initial = engine.camera(handle)

        assert preview.zoom_in() is True
        assert preview.zoom_in() is True
        zoomed = engine.camera(handle)
        assert preview.reset_view() is True
        return initial, zoomed, engine.camera(handle)

    initial, zoomed, after = asyncio.run(run())
    assert zoomed["zoom"] == pytest.approx(initial["zoom"] + 2.0)
    assert after == initial


def test_zoom_before_ready_does_nothing():
    async def run():
        engine = RecordingEngine(auto_ready=False)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        handle = preview.lifecycle.handle
        z0 = engine.camera(handle)["zoom"]
        result = (preview.zoom_in(), preview.zoom_out(), preview.reset_view())
        return preview, engine, handle, z0, result

    preview, engine, handle, z0, result = asyncio.run(run())
    assert result == (False, False, False)
    assert preview.status == "loading"
    assert preview.lifecycle.state == LifecycleState.creating
    assert engine.camera(handle)["zoom"] == z0


def test_mount_after_metadata_creates_the_map():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.select("p1")
        await preview.settled()
        assert preview.lifecycle is None
        assert preview.status == "loading"

        preview.mount(MapContainer(width=640, height=480))
        await preview.settled()
        return preview

    preview = asyncio.run(run())
    assert preview.status == "ready-with-map"
    assert preview.lifecycle.handle.container.width == 640


def test_unmount_releases_the_engine():
    async def run():
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        handle = preview.lifecycle.handle
        preview.unmount()
        return preview, engine, handle

    preview, engine, handle = asyncio.run(run())
    assert engine.live_count == 0
    assert engine.listener_count(handle) == 0
    assert preview.status == "idle"
    assert preview.lifecycle is None
    assert preview.zoom_in() is False


def test_title_falls_back_to_host_name_then_default():
    async def run():
        untitled = make_project("u", title="")
        loader = StaticLoader({"u": untitled})
        preview = _preview(loader, RecordingEngine(auto_ready=True))
        preview.mount(MapContainer())

        preview.select("u", project_name="From the project list")
        await preview.settled()
        named = preview.presentation().title

        preview.select("u")
        await preview.settled()
        return named, preview.presentation().title

    named, unnamed = asyncio.run(run())
    assert named == "From the project list"
    assert unnamed == "QGIS Project"


def test_telemetry_events_follow_the_flow():
    async def run():
        log = EventLog()
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"p1": make_project("p1")}), engine, telemetry=log)
        preview.mount(MapContainer())
        preview.select("p1")
        await preview.settled()
        preview.toggle_layer("b")
        return log

    log = asyncio.run(run())
    assert log.events() == [
        "metadata_loaded",
        "layers_installed",
        "engine_ready",
        "visibility_toggled",
    ]
    loaded = log.rows[0]
    assert loaded["project_id"] == "p1"
    assert loaded["stats"]["renderable"] == 1
    assert loaded["stats"]["layers"] == 2
    assert log.rows[-1]["stats"] == {"layerId": "b", "visible": True, "applied": True}


def test_unsupported_crs_skips_fit_but_still_shows_map():
    async def run():
        log = EventLog()
        project = make_project(
            "utm",
            crs="EPSG:32633",
            extent={"xMin": 450000, "yMin": 5530000, "xMax": 470000, "yMax": 5550000},
        )
        engine = RecordingEngine(auto_ready=True)
        preview = _preview(StaticLoader({"utm": project}), engine, telemetry=log)
        preview.mount(MapContainer())
        preview.select("utm")
        await preview.settled()
        return preview, engine, log

    preview, engine, log = asyncio.run(run())
    assert preview.status == "ready-with-map"
    assert not any(c[0] == "fit_bounds" for c in engine.calls)
    assert "fit_skipped" in log.events()
    assert preview.reset_view() is False
