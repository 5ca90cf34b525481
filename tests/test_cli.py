from pathlib import Path

import pytest
from click.testing import CliRunner

from jfroffload import cli
from jfroffload.services.s3_storage import S3ArtifactStorage


def test_scan_command_offloads_existing_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_s3_client) -> None:
    artifact = tmp_path / "pod-7" / "run1.jfr"
    artifact.parent.mkdir()
    artifact.write_bytes(b"r" * 1000)
    monkeypatch.setenv("JFROFFLOAD_S3_BUCKET", "profiles")
    monkeypatch.setenv("JFROFFLOAD_ROOT", str(tmp_path))
    monkeypatch.setenv("JFROFFLOAD_SETTLE_INTERVAL", "0s")
    monkeypatch.setenv("JFROFFLOAD_UPLOAD_RECHECK_INTERVAL", "0s")
    monkeypatch.setattr(cli, "S3ArtifactStorage", lambda cfg: S3ArtifactStorage(cfg, client=fake_s3_client))

    result = CliRunner().invoke(cli.main, ["scan"])

    assert result.exit_code == 0, result.output
    assert fake_s3_client.objects[("profiles", "pod-7/run1.jfr")] == b"r" * 1000
    assert not artifact.exists()


def test_daemon_without_bucket_exits_nonzero() -> None:
    result = CliRunner().invoke(cli.main, ["daemon"])
    assert result.exit_code == 1
