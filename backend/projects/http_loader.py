from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from preview.config import http_timeout_s
from preview.errors import MetadataFetchError
from projects.types import ProjectDescription, parse_project_description

logger = logging.getLogger(__name__)


def metadata_path(project_id: str) -> str:
    # Ids come from user selection; keep them a single path segment.
    return f"/api/qgis/projects/{quote(project_id, safe='')}/metadata"


def _error_message(resp: httpx.Response) -> str:
    """
    The API answers failures with `{"error": "..."}` when it can, plain text otherwise.
    """
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    text = (resp.text or "").strip()
    return text or f"HTTP {resp.status_code}"


class HttpMetadataLoader:
    """
    Fetch project metadata from a GeoServer manager instance.

    No retry/backoff: a failed fetch is reported once and the user decides to refresh.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s if timeout_s is not None else http_timeout_s())
        # Injected in tests (httpx.MockTransport).
        self._transport = transport

    async def fetch(self, project_id: str) -> ProjectDescription:
        pid = (project_id or "").strip()
        url = self.base_url + metadata_path(pid)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, transport=self._transport
            ) as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("metadata request for %s failed: %s", pid, e)
            raise MetadataFetchError(pid, str(e) or type(e).__name__) from e

        if resp.status_code >= 400:
            raise MetadataFetchError(pid, _error_message(resp))

        try:
            data: Any = resp.json()
        except ValueError as e:
            raise MetadataFetchError(pid, "Invalid JSON in metadata response") from e
        if not isinstance(data, dict):
            raise MetadataFetchError(pid, "Unexpected metadata payload")

        try:
            return parse_project_description(data, project_id=pid)
        except ValidationError as e:
            raise MetadataFetchError(pid, f"Invalid project metadata: {e}") from e
