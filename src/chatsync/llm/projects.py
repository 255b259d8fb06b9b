from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from chatsync.conversation.models import Project

logger = logging.getLogger(__name__)

_PROJECT_TAG = re.compile(r"\[PROJECT:([^\]]+)\]")


class ProjectCatalog:
    """Known projects that assistant replies may reference by name."""

    def __init__(self, projects: Iterable[Project] = ()) -> None:
        self._by_name = {project.name.lower(): project for project in projects}

    def __len__(self) -> int:
        return len(self._by_name)

    def find(self, name: str) -> Optional[Project]:
        return self._by_name.get(name.strip().lower())

    @classmethod
    def from_file(cls, path: str | Path) -> "ProjectCatalog":
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read project catalog %s: %s", path, exc)
            return cls()
        items = data.get("projects", []) if isinstance(data, dict) else data
        return cls(Project.from_dict(item) for item in items if isinstance(item, dict) and "name" in item)


def extract_project_tags(text: str, catalog: ProjectCatalog) -> tuple[str, list[Project]]:
    """Strip ``[PROJECT:name]`` tags, returning the cleaned text and matched projects.

    Unknown names are removed from the text but produce no annotation.
    """
    projects: list[Project] = []
    for match in _PROJECT_TAG.finditer(text):
        project = catalog.find(match.group(1))
        if project is not None and project not in projects:
            projects.append(project)
    cleaned = _PROJECT_TAG.sub("", text).strip()
    return cleaned, projects
