from pathlib import Path

import pytest

from jfroffload.errors import StructuralPathError
from jfroffload.services.artifacts import DISCOVERED_BY_EVENT, is_artifact, resolve_candidate


def test_resolve_candidate_uses_first_segment_as_source_id(tmp_path: Path) -> None:
    candidate = resolve_candidate(tmp_path, tmp_path / "pod-7" / "run1.jfr", DISCOVERED_BY_EVENT)
    assert candidate.source_id == "pod-7"
    assert candidate.object_key == "pod-7/run1.jfr"
    assert candidate.discovered_by == DISCOVERED_BY_EVENT


def test_deeper_paths_keep_only_the_filename_in_the_key(tmp_path: Path) -> None:
    candidate = resolve_candidate(tmp_path, tmp_path / "pod-7" / "2024" / "run1.jfr")
    assert candidate.object_key == "pod-7/run1.jfr"


def test_file_directly_under_root_is_structural_error(tmp_path: Path) -> None:
    with pytest.raises(StructuralPathError):
        resolve_candidate(tmp_path, tmp_path / "run1.jfr")


def test_file_outside_root_is_structural_error(tmp_path: Path) -> None:
    with pytest.raises(StructuralPathError):
        resolve_candidate(tmp_path / "root", tmp_path / "elsewhere" / "pod" / "run1.jfr")


def test_is_artifact_matches_extension_case_insensitively() -> None:
    assert is_artifact(Path("/x/pod/a.jfr"), ".jfr")
    assert is_artifact(Path("/x/pod/A.JFR"), ".jfr")
    assert not is_artifact(Path("/x/pod/a.jfr.tmp"), ".jfr")
    assert not is_artifact(Path("/x/pod/.a.jfr"), ".jfr")
