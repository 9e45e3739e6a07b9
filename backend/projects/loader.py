from __future__ import annotations

from typing import Protocol

from projects.types import ProjectDescription


class ProjectMetadataLoader(Protocol):
    """
    Source of project metadata.

    - ProjectRegistry: local `projects/*/project.yaml` files
    - HttpMetadataLoader: the GeoServer manager `/api/qgis/projects/{id}/metadata` endpoint

    Implementations raise `preview.errors.MetadataFetchError`; retries are the caller's business.
    """

    async def fetch(self, project_id: str) -> ProjectDescription: ...
