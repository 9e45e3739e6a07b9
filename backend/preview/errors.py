from __future__ import annotations


class PreviewError(Exception):
    """Base class for failures surfaced by the map preview."""


class MetadataFetchError(PreviewError):
    """
    Project metadata could not be loaded (network, HTTP status, or invalid payload).
    """

    def __init__(self, project_id: str, message: str):
        self.project_id = project_id
        self.message = message
        super().__init__(f"Failed to load project '{project_id}': {message}")


class EngineLoadError(PreviewError):
    """The map engine failed to initialize or to render its sources."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EngineStateError(PreviewError):
    """An engine call was made while the engine could not accept it (not ready / destroyed)."""
