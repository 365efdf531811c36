"""
Versioning for published workflow definitions.

Running instances pin a (definition_id, version) pair, so a published
snapshot is never modified; edits become a new version.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from hrflow.errors import DefinitionNotPublishedError
from hrflow.ir.schema import PublishedDefinition, WorkflowStructure
from hrflow.ir.validators import Violation, ensure_publishable

if TYPE_CHECKING:  # pragma: no cover
    from hrflow.runtime.conditions import ConditionRegistry
    from hrflow.runtime.directory import ApproverDirectory

LOGGER = logging.getLogger(__name__)

SEMVER_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


def parse_semver(version: str) -> Tuple[int, int, int]:
    match = SEMVER_PATTERN.match(version.strip())
    if not match:
        raise ValueError(f"Invalid semantic version: {version}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def bump_semver(version: str, part: str = "patch") -> str:
    major, minor, patch = parse_semver(version)
    if part == "major":
        return f"{major + 1}.0.0"
    if part == "minor":
        return f"{major}.{minor + 1}.0"
    if part == "patch":
        return f"{major}.{minor}.{patch + 1}"
    raise ValueError(f"Unknown version part '{part}'. Use major/minor/patch.")


def normalize_definition_id(definition_id: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9_-]+", "_", definition_id.strip()).strip("_")
    return sanitized or "workflow"


class DefinitionVersionManager:
    """
    Registry of published definition snapshots.

    Kept in memory; with a root_dir each definition is also mirrored to
      <root_dir>/<definition_id>.json
    """

    def __init__(self, root_dir: Optional[str] = None) -> None:
        self.root_dir = Path(root_dir) if root_dir else None
        if self.root_dir is not None:
            self.root_dir.mkdir(parents=True, exist_ok=True)
        self._records: Dict[str, List[PublishedDefinition]] = {}
        self._lock = threading.Lock()

    def _registry_path(self, definition_id: str) -> Optional[Path]:
        if self.root_dir is None:
            return None
        return self.root_dir / f"{normalize_definition_id(definition_id)}.json"

    def _load(self, definition_id: str) -> List[PublishedDefinition]:
        if definition_id in self._records:
            return self._records[definition_id]
        records: List[PublishedDefinition] = []
        path = self._registry_path(definition_id)
        if path is not None and path.exists():
            raw = json.loads(path.read_text(encoding="utf-8"))
            records = [PublishedDefinition.model_validate(row) for row in raw]
        records.sort(key=lambda item: parse_semver(item.version))
        self._records[definition_id] = records
        return records

    def _write(self, definition_id: str, records: List[PublishedDefinition]) -> None:
        path = self._registry_path(definition_id)
        if path is None:
            return
        serialized = [row.model_dump(mode="json", by_alias=True) for row in records]
        path.write_text(json.dumps(serialized, indent=2, sort_keys=True), encoding="utf-8")

    def list_versions(self, definition_id: str) -> List[PublishedDefinition]:
        with self._lock:
            return list(self._load(definition_id))

    def latest_version(self, definition_id: str) -> Optional[str]:
        records = self.list_versions(definition_id)
        if not records:
            return None
        return records[-1].version

    def next_version(self, definition_id: str, part: str = "patch") -> str:
        latest = self.latest_version(definition_id)
        if latest is None:
            return "1.0.0"
        return bump_semver(latest, part=part)

    def publish(
        self,
        structure: WorkflowStructure,
        *,
        bump_part: str = "patch",
        directory: Optional["ApproverDirectory"] = None,
        registry: Optional["ConditionRegistry"] = None,
    ) -> Tuple[PublishedDefinition, List[Violation]]:
        """Validate and freeze a structure; returns the record and any warnings."""

        warnings = ensure_publishable(structure, directory, registry)
        definition_id = structure.definition.id
        with self._lock:
            records = self._load(definition_id)
            version = "1.0.0" if not records else bump_semver(records[-1].version, part=bump_part)
            record = PublishedDefinition(
                definition_id=definition_id,
                version=version,
                structure=structure.model_copy(deep=True),
            )
            updated = records + [record]
            self._write(definition_id, updated)
            self._records[definition_id] = updated
        LOGGER.info(
            "Published workflow %s version %s (%d warnings)",
            definition_id,
            version,
            len(warnings),
        )
        return record, warnings

    def get(self, definition_id: str, version: Optional[str] = None) -> PublishedDefinition:
        records = self.list_versions(definition_id)
        if not records:
            raise DefinitionNotPublishedError(
                f"Workflow '{definition_id}' has no published version."
            )
        if version is None:
            return records[-1]
        for item in records:
            if item.version == version:
                return item
        raise DefinitionNotPublishedError(
            f"Version '{version}' not found for workflow '{definition_id}'."
        )
