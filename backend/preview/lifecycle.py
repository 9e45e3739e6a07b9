from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from preview.engine import MapContainer, MapEngine, MapHandle
from preview.errors import EngineLoadError, EngineStateError, PreviewError

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    uninitialized = "uninitialized"
    creating = "creating"
    ready = "ready"
    error = "error"
    destroyed = "destroyed"


class MapLifecycleController:
    """
    Owns exactly one engine instance for a mounted preview.

    uninitialized -> creating -> ready -> destroyed, with `error` reachable from
    creating/ready. A controller is single-use: a new engine means a new controller,
    so callbacks from a previous engine can never reach the current one.
    """

    def __init__(
        self,
        engine: MapEngine,
        container: MapContainer,
        *,
        style: str,
        on_ready: Callable[[MapHandle], None],
        on_error: Callable[[EngineLoadError], None],
    ):
        self.engine = engine
        self.container = container
        self.style = style
        self._on_ready = on_ready
        self._on_error = on_error
        self.state = LifecycleState.uninitialized
        self.handle: MapHandle | None = None
        self.error: EngineLoadError | None = None

    @property
    def is_ready(self) -> bool:
        return self.state == LifecycleState.ready

    @property
    def is_live(self) -> bool:
        return self.state in {LifecycleState.creating, LifecycleState.ready, LifecycleState.error}

    def create(self) -> MapHandle:
        if self.state != LifecycleState.uninitialized:
            raise EngineStateError(f"Cannot create map in state {self.state.value}")
        self.state = LifecycleState.creating
        handle = self.engine.create(self.container, self.style)
        self.handle = handle
        self.engine.on(handle, "ready", self._handle_ready)
        self.engine.on(handle, "error", self._handle_error)
        logger.debug("map %s creating", handle.handle_id)
        return handle

    def destroy(self) -> None:
        """
        Release the engine and its listeners. Safe to call in any state, any number of times.
        """
        if self.state == LifecycleState.destroyed:
            return
        handle = self.handle
        self.state = LifecycleState.destroyed
        self.handle = None
        if handle is not None:
            self.engine.destroy(handle)
            logger.debug("map %s destroyed", handle.handle_id)

    def report_error(self, err: BaseException | str) -> None:
        """
        Surface a failure observed outside the engine (e.g. tiles failing in the browser).
        """
        self._handle_error(err)

    def _handle_ready(self, *_args) -> None:
        # Only the first ready of a creating engine counts.
        if self.state != LifecycleState.creating or self.handle is None:
            return
        self.state = LifecycleState.ready
        logger.debug("map %s ready", self.handle.handle_id)
        try:
            self._on_ready(self.handle)
        except PreviewError as e:
            self._fail(e)

    def _handle_error(self, err: BaseException | str | None = None) -> None:
        if self.state not in {LifecycleState.creating, LifecycleState.ready}:
            return
        self._fail(err)

    def _fail(self, err: BaseException | str | None) -> None:
        if isinstance(err, EngineLoadError):
            error = err
        else:
            error = EngineLoadError(str(err or "") or "Map failed to load")
        self.state = LifecycleState.error
        self.error = error
        logger.warning("map engine error: %s", error.message)
        self._on_error(error)
