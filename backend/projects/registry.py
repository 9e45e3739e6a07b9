from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from preview.config import projects_dir
from preview.errors import MetadataFetchError
from projects.types import ProjectDescription, parse_project_description


@dataclass(frozen=True)
class ProjectEntry:
    project: ProjectDescription
    # Absolute path to project.yaml on disk (useful for debugging).
    path: Path


def _iter_project_yaml_files(root: Path) -> Iterable[Path]:
    if not root.exists():
        return []
    # Convention: projects/*/project.yaml
    return root.glob("*/project.yaml")


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid project yaml root: {path}")
    return data


@lru_cache(maxsize=4)
def _registry_for(root: Path) -> dict[str, ProjectEntry]:
    out: dict[str, ProjectEntry] = {}
    for p in sorted(_iter_project_yaml_files(root), key=lambda x: str(x)):
        # Directory name is the project id unless the YAML says otherwise.
        project = parse_project_description(_load_yaml(p), project_id=p.parent.name)
        out[project.id] = ProjectEntry(project=project, path=p)
    return out


def get_registry() -> dict[str, ProjectEntry]:
    return _registry_for(projects_dir().resolve())


def list_projects() -> list[ProjectDescription]:
    return [e.project for e in get_registry().values()]


def clear_registry_cache() -> None:
    """
    Clear in-memory project registry cache.

    Useful during development: project YAML changes are otherwise not picked up until
    the backend process restarts.
    """
    _registry_for.cache_clear()


class ProjectRegistry:
    """
    `ProjectMetadataLoader` backed by the local YAML registry.
    """

    async def fetch(self, project_id: str) -> ProjectDescription:
        pid = (project_id or "").strip()
        try:
            reg = get_registry()
        except (OSError, ValueError, ValidationError, yaml.YAMLError) as e:
            raise MetadataFetchError(pid, str(e)) from e
        entry = reg.get(pid)
        if entry is None:
            raise MetadataFetchError(pid, "Project not found")
        return entry.project
