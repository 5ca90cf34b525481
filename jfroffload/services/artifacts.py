from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jfroffload.errors import StructuralPathError

DISCOVERED_BY_EVENT = "event"
DISCOVERED_BY_SCAN = "scan"


@dataclass(frozen=True)
class ArtifactCandidate:
    path: Path
    source_id: str
    discovered_by: str = DISCOVERED_BY_SCAN

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def object_key(self) -> str:
        return f"{self.source_id}/{self.filename}"


def is_artifact(path: Path, extension: str) -> bool:
    return path.name.lower().endswith(extension.lower()) and not path.name.startswith(".")


def resolve_candidate(root: Path, path: Path, discovered_by: str = DISCOVERED_BY_SCAN) -> ArtifactCandidate:
    """
    Map `<root>/<source_id>/.../<file>` to a candidate.

    Raises StructuralPathError when the file sits directly under the root or
    outside it, since there is no source id to namespace the remote key with.
    """
    try:
        rel = Path(path).relative_to(root)
    except ValueError as exc:
        raise StructuralPathError(f"Path is outside watch root {root}: {path}") from exc
    parts = rel.parts
    if len(parts) < 2 or parts[0] in {"", ".", ".."}:
        raise StructuralPathError(f"Invalid file path structure (expected <source_id>/<file>): {path}")
    return ArtifactCandidate(path=Path(path), source_id=parts[0], discovered_by=discovered_by)
