from __future__ import annotations

import os
from pathlib import Path


DEFAULT_FIT_PADDING_PX = 50
DEFAULT_MAP_STYLE = "white-bg"
DEFAULT_HTTP_TIMEOUT_S = 10.0
DEFAULT_SESSION_TTL_S = 1800.0
DEFAULT_MAX_SESSIONS = 64


def _repo_root() -> Path:
    # .../backend/preview/config.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def projects_dir() -> Path:
    return Path(os.getenv("QGIS_PREVIEW_PROJECTS_DIR") or (_repo_root() / "projects"))


def metadata_url() -> str | None:
    """
    Base URL of a GeoServer manager instance; when set, metadata is fetched over HTTP.
    """
    v = (os.getenv("QGIS_PREVIEW_METADATA_URL") or "").strip()
    return v.rstrip("/") or None


def http_timeout_s() -> float:
    return _env_float("QGIS_PREVIEW_HTTP_TIMEOUT_S", DEFAULT_HTTP_TIMEOUT_S)


def fit_padding_px() -> int:
    return max(0, int(_env_float("QGIS_PREVIEW_FIT_PADDING_PX", DEFAULT_FIT_PADDING_PX)))


def map_style() -> str:
    return (os.getenv("QGIS_PREVIEW_MAP_STYLE") or DEFAULT_MAP_STYLE).strip()


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def session_ttl_s() -> float:
    """
    Idle time after which the HTTP host drops a preview session (and its engine).
    """
    return _env_float("QGIS_PREVIEW_SESSION_TTL_S", DEFAULT_SESSION_TTL_S)


def max_sessions() -> int:
    return max(1, int(_env_float("QGIS_PREVIEW_MAX_SESSIONS", DEFAULT_MAX_SESSIONS)))
