from pathlib import Path

import pytest

from jfroffload.errors import ArtifactNotReadyError
from jfroffload.services.artifacts import ArtifactCandidate
from jfroffload.services.uploader import ArtifactUploader


def _candidate(tmp_path: Path, data: bytes = b"recording") -> ArtifactCandidate:
    path = tmp_path / "pod-9" / "r.jfr"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return ArtifactCandidate(path=path, source_id="pod-9")


def test_upload_streams_file_to_source_key(tmp_path: Path, fake_sink) -> None:
    candidate = _candidate(tmp_path)

    result = ArtifactUploader(fake_sink, recheck_interval=0.0, sleep=lambda _s: None).upload(candidate, 9)

    assert result.key == "pod-9/r.jfr"
    assert result.location == "fake://bucket/pod-9/r.jfr"
    assert result.size_bytes == 9
    assert result.elapsed_seconds > 0
    assert fake_sink.objects["pod-9/r.jfr"] == b"recording"
    assert candidate.path.exists()


def test_upload_waits_recheck_interval(tmp_path: Path, fake_sink) -> None:
    waits = []
    ArtifactUploader(fake_sink, recheck_interval=2.0, sleep=waits.append).upload(_candidate(tmp_path))
    assert waits == [2.0]


def test_size_differing_from_probe_is_not_ready(tmp_path: Path, fake_sink) -> None:
    candidate = _candidate(tmp_path, b"twelve bytes")

    with pytest.raises(ArtifactNotReadyError):
        ArtifactUploader(fake_sink, sleep=lambda _s: None).upload(candidate, expected_size=4)
    assert fake_sink.puts == []


def test_growth_on_open_handle_is_not_ready(tmp_path: Path, fake_sink) -> None:
    candidate = _candidate(tmp_path)

    def grow(_seconds: float) -> None:
        with candidate.path.open("ab") as handle:
            handle.write(b"+")

    with pytest.raises(ArtifactNotReadyError):
        ArtifactUploader(fake_sink, sleep=grow).upload(candidate)
    assert fake_sink.puts == []


def test_empty_file_is_not_ready(tmp_path: Path, fake_sink) -> None:
    candidate = _candidate(tmp_path, b"")
    with pytest.raises(ArtifactNotReadyError):
        ArtifactUploader(fake_sink, sleep=lambda _s: None).upload(candidate)


def test_missing_file_raises_file_not_found(tmp_path: Path, fake_sink) -> None:
    candidate = ArtifactCandidate(path=tmp_path / "pod-1" / "gone.jfr", source_id="pod-1")
    with pytest.raises(FileNotFoundError):
        ArtifactUploader(fake_sink, sleep=lambda _s: None).upload(candidate)
