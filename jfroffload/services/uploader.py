from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional, Protocol

from jfroffload.errors import ArtifactNotReadyError, UploadError
from jfroffload.services.artifacts import ArtifactCandidate

LOGGER = logging.getLogger(__name__)


class ArtifactSink(Protocol):
    def put_stream(self, relative_key: str, stream: BinaryIO, size: int) -> str: ...

    def format_location(self, key: str) -> str: ...


@dataclass(frozen=True)
class UploadResult:
    key: str
    location: str
    size_bytes: int
    elapsed_seconds: float


class ArtifactUploader:
    def __init__(
        self,
        sink: ArtifactSink,
        recheck_interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sink = sink
        self._recheck_interval = max(0.0, float(recheck_interval))
        self._sleep = sleep

    def upload(self, candidate: ArtifactCandidate, expected_size: Optional[int] = None) -> UploadResult:
        """
        Stream one stable artifact to `<source_id>/<filename>`.

        Re-checks the size on the open handle first; drift raises
        ArtifactNotReadyError. Everything else that goes wrong raises UploadError.
        Neither path touches the local file.
        """
        try:
            handle = open(candidate.path, "rb")
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise UploadError(f"Failed to open {candidate.path}: {exc}") from exc
        with handle:
            size = self._stable_size(candidate, handle, expected_size)
            LOGGER.info(
                "Uploading artifact path=%s source_id=%s size_bytes=%s target=%s",
                candidate.path,
                candidate.source_id,
                size,
                self._sink.format_location(candidate.object_key),
                extra={"category": "UPLOAD"},
            )
            started = time.monotonic()
            key = self._sink.put_stream(candidate.object_key, handle, size)
            elapsed = max(0.001, time.monotonic() - started)
        return UploadResult(
            key=key,
            location=self._sink.format_location(key),
            size_bytes=size,
            elapsed_seconds=elapsed,
        )

    def _stable_size(self, candidate: ArtifactCandidate, handle: BinaryIO, expected_size: Optional[int]) -> int:
        try:
            before = os.fstat(handle.fileno()).st_size
            if expected_size is not None and before != expected_size:
                raise ArtifactNotReadyError(
                    f"Size changed since stability check: {candidate.path} expected={expected_size} now={before}"
                )
            self._sleep(self._recheck_interval)
            after = os.fstat(handle.fileno()).st_size
        except OSError as exc:
            raise UploadError(f"Failed to stat {candidate.path}: {exc}") from exc
        if after != before:
            raise ArtifactNotReadyError(f"File is still being written (size changed): {candidate.path}")
        if after == 0:
            raise ArtifactNotReadyError(f"File is empty: {candidate.path}")
        return int(after)
