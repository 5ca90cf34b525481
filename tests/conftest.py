import threading
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional

import pytest

from jfroffload.config_loader import CONFIG_PATH_VAR, ENV_OVERRIDES
from jfroffload.env_loader import ENV_FILE_VAR
from jfroffload.errors import UploadError
from jfroffload.services.pipeline import PipelineCoordinator
from jfroffload.services.scanner import ReconciliationScanner
from jfroffload.services.stability import StabilityProber
from jfroffload.services.uploader import ArtifactUploader
from jfroffload.services.watcher import DirectoryWatcher


class FakeSink:
    """In-memory object store; flip `fail` to make every put raise."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.puts: List[str] = []
        self.fail = False
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()

    def put_stream(self, relative_key: str, stream: BinaryIO, size: int) -> str:
        with self._lock:
            self.puts.append(relative_key)
        if self.error is not None:
            raise self.error
        if self.fail:
            raise UploadError(f"injected failure for {relative_key}")
        data = stream.read()
        assert len(data) == size
        with self._lock:
            self.objects[relative_key] = data
        return relative_key

    def format_location(self, key: str) -> str:
        return f"fake://bucket/{key}"


class FakeS3Client:
    """Just enough of the boto3 S3 client surface for upload_fileobj + head_object."""

    def __init__(self) -> None:
        self.objects: Dict[tuple, bytes] = {}
        self.upload_calls: List[dict] = []
        self.upload_error: Optional[Exception] = None
        self.size_override: Optional[int] = None

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None, Config=None) -> None:  # noqa: N803
        self.upload_calls.append({"bucket": bucket, "key": key, "extra_args": ExtraArgs, "config": Config})
        if self.upload_error is not None:
            raise self.upload_error
        self.objects[(bucket, key)] = fileobj.read()

    def head_object(self, Bucket, Key) -> dict:  # noqa: N803
        data = self.objects[(Bucket, Key)]
        size = len(data) if self.size_override is None else self.size_override
        return {"ContentLength": size}


def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in list(ENV_OVERRIDES) + [CONFIG_PATH_VAR, ENV_FILE_VAR, "POD_NAME"]:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def fake_s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def make_pipeline(tmp_path: Path) -> Callable[..., PipelineCoordinator]:
    def _make(
        sink: FakeSink,
        root: Optional[Path] = None,
        probe_sleep: Callable[[float], None] = _no_sleep,
        upload_sleep: Callable[[float], None] = _no_sleep,
        watcher: Optional[DirectoryWatcher] = None,
        upload_workers: int = 0,
        scan_interval: float = 30.0,
    ) -> PipelineCoordinator:
        root = root or tmp_path
        return PipelineCoordinator(
            root=root,
            extension=".jfr",
            prober=StabilityProber(settle_interval=0.0, sleep=probe_sleep),
            uploader=ArtifactUploader(sink, recheck_interval=0.0, sleep=upload_sleep),
            scanner=ReconciliationScanner(root, ".jfr", interval=scan_interval),
            watcher=watcher,
            upload_workers=upload_workers,
        )

    return _make
