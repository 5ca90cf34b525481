from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Set

from jfroffload.errors import ArtifactNotReadyError, StructuralPathError, UploadError
from jfroffload.logging_setup import correlation_context
from jfroffload.services.artifacts import (
    DISCOVERED_BY_EVENT,
    DISCOVERED_BY_SCAN,
    is_artifact,
    resolve_candidate,
)
from jfroffload.services.scanner import ReconciliationScanner
from jfroffload.services.stability import NOT_READY_EMPTY, NOT_READY_MISSING, NOT_READY_UNREADABLE, StabilityProber
from jfroffload.services.uploader import ArtifactUploader
from jfroffload.services.watcher import KIND_CREATE, KIND_REMOVE, KIND_WRITE, DirectoryWatcher, WatchEvent

LOGGER = logging.getLogger(__name__)

OUTCOME_DELETED = "deleted"
OUTCOME_NOT_READY = "not_ready"
OUTCOME_EMPTY = "empty"
OUTCOME_MISSING = "missing"
OUTCOME_STRUCTURAL = "structural"
OUTCOME_UPLOAD_FAILED = "upload_failed"
OUTCOME_DELETE_FAILED = "delete_failed"
OUTCOME_IN_FLIGHT = "in_flight"
OUTCOME_UNREADABLE = "unreadable"
OUTCOME_ERROR = "error"

# Upper bound on one wait, so stop() is noticed promptly.
LOOP_SLICE_SECONDS = 1.0


@dataclass
class PipelineStats:
    outcomes: Dict[str, int] = field(default_factory=dict)
    bytes_uploaded: int = 0
    scans: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: str, size_bytes: int = 0) -> None:
        with self._lock:
            self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1
            self.bytes_uploaded += size_bytes

    def record_scan(self) -> None:
        with self._lock:
            self.scans += 1

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            data = dict(self.outcomes)
            data["bytes_uploaded"] = self.bytes_uploaded
            data["scans"] = self.scans
            return data


class PipelineCoordinator:
    """
    Merges watcher events and scan ticks into one stream of candidates and
    drives each through probe -> upload -> local delete.

    The filesystem is the only queue: a file that is not deleted is simply
    found again by the next scan, which is the whole retry story.
    """

    def __init__(
        self,
        root: Path,
        extension: str,
        prober: StabilityProber,
        uploader: ArtifactUploader,
        scanner: ReconciliationScanner,
        watcher: Optional[DirectoryWatcher] = None,
        upload_workers: int = 0,
    ) -> None:
        self._root = Path(root)
        self._extension = extension
        self._prober = prober
        self._uploader = uploader
        self._scanner = scanner
        self._watcher = watcher
        self._upload_workers = max(0, int(upload_workers))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight: Set[Path] = set()
        self._in_flight_lock = threading.Lock()
        self._stop_event = threading.Event()
        self.stats = PipelineStats()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        """Block until stop(). WatchSetupError from the watcher propagates: no root watch, no pipeline."""
        if self._watcher is not None:
            self._watcher.start()
        if self._upload_workers > 0:
            self._executor = ThreadPoolExecutor(max_workers=self._upload_workers, thread_name_prefix="jfr-upload")
        LOGGER.info(
            "Pipeline started root=%s extension=%s scan_interval_s=%s upload_workers=%s watcher=%s",
            self._root,
            self._extension,
            self._scanner.interval,
            self._upload_workers,
            "on" if self._watcher is not None else "off",
            extra={"category": "PIPELINE"},
        )
        try:
            while not self._stop_event.is_set():
                if self._scanner.due():
                    self.run_scan()
                timeout = min(self._scanner.seconds_until_due(), LOOP_SLICE_SECONDS)
                if self._watcher is None:
                    self._stop_event.wait(timeout)
                    continue
                event = self._watcher.poll(timeout)
                if event is not None:
                    self.handle_event(event)
        finally:
            executor, self._executor = self._executor, None
            if executor is not None:
                # Running uploads finish; queued ones are dropped and rediscovered next start.
                executor.shutdown(wait=True, cancel_futures=True)
            if self._watcher is not None:
                self._watcher.stop()
            LOGGER.info("Pipeline stopped stats=%s", self.stats.snapshot(), extra={"category": "PIPELINE"})

    def run_scan(self) -> int:
        self._scanner.mark_ran()
        self.stats.record_scan()
        dispatched = 0
        for path in self._scanner.scan():
            self.dispatch(path, DISCOVERED_BY_SCAN)
            dispatched += 1
        return dispatched

    def handle_event(self, event: WatchEvent) -> None:
        if event.is_directory or not is_artifact(event.path, self._extension):
            return
        if event.kind == KIND_REMOVE:
            LOGGER.info("Detected file removed path=%s", event.path, extra={"category": "WATCH"})
            return
        if event.kind in {KIND_CREATE, KIND_WRITE}:
            LOGGER.info("Detected new/modified file path=%s kind=%s", event.path, event.kind, extra={"category": "WATCH"})
            self.dispatch(event.path, DISCOVERED_BY_EVENT)

    def dispatch(self, path: Path, discovered_by: str) -> None:
        path = Path(path)
        with self._in_flight_lock:
            if path in self._in_flight:
                LOGGER.debug("Transfer already in flight path=%s via=%s", path, discovered_by, extra={"category": "PIPELINE"})
                self.stats.record(OUTCOME_IN_FLIGHT)
                return
            self._in_flight.add(path)
        if self._executor is None:
            self._process_guarded(path, discovered_by)
            return
        self._executor.submit(self._process_guarded, path, discovered_by)

    def _process_guarded(self, path: Path, discovered_by: str) -> None:
        # Inline this is the loop thread; pooled, nobody reads the future.
        try:
            self.process(path, discovered_by)
        except Exception:
            LOGGER.exception("Unexpected error processing path=%s (kept for retry)", path, extra={"category": "ERRORS"})
            self.stats.record(OUTCOME_ERROR)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(path)

    def process(self, path: Path, discovered_by: str) -> str:
        """One attempt for one path. The local file is removed only after a verified upload."""
        with correlation_context():
            outcome, size = self._attempt(Path(path), discovered_by)
        self.stats.record(outcome, size)
        return outcome

    def _attempt(self, path: Path, discovered_by: str) -> tuple[str, int]:
        LOGGER.info("Processing artifact path=%s via=%s", path, discovered_by, extra={"category": "PIPELINE"})
        try:
            candidate = resolve_candidate(self._root, path, discovered_by)
        except StructuralPathError as exc:
            LOGGER.warning("Skipping file reason=structural-path-error detail=%s", exc, extra={"category": "PIPELINE"})
            return OUTCOME_STRUCTURAL, 0

        probe = self._prober.probe(path)
        if not probe.ready:
            if probe.reason == NOT_READY_MISSING:
                LOGGER.debug("File vanished before transfer path=%s", path, extra={"category": "STABILITY"})
                return OUTCOME_MISSING, 0
            if probe.reason == NOT_READY_UNREADABLE:
                LOGGER.warning("Skipping file reason=unreadable path=%s", path, extra={"category": "STABILITY"})
                return OUTCOME_UNREADABLE, 0
            if probe.reason == NOT_READY_EMPTY:
                LOGGER.info("Skipping file reason=empty-file path=%s", path, extra={"category": "STABILITY"})
                return OUTCOME_EMPTY, 0
            LOGGER.info(
                "Skipping file reason=not-ready path=%s size_bytes=%s",
                path,
                probe.size,
                extra={"category": "STABILITY"},
            )
            return OUTCOME_NOT_READY, 0

        try:
            result = self._uploader.upload(candidate, expected_size=probe.size)
        except FileNotFoundError:
            LOGGER.debug("File vanished before upload path=%s", path, extra={"category": "UPLOAD"})
            return OUTCOME_MISSING, 0
        except ArtifactNotReadyError as exc:
            LOGGER.info("Skipping file reason=not-ready detail=%s", exc, extra={"category": "UPLOAD"})
            return OUTCOME_NOT_READY, 0
        except UploadError as exc:
            LOGGER.error("Upload failed path=%s error=%s (kept for retry)", path, exc, extra={"category": "UPLOAD"})
            return OUTCOME_UPLOAD_FAILED, 0
        except Exception:
            LOGGER.exception("Unexpected upload error path=%s (kept for retry)", path, extra={"category": "ERRORS"})
            return OUTCOME_UPLOAD_FAILED, 0

        mib_s = (result.size_bytes / 1024 / 1024) / result.elapsed_seconds
        LOGGER.info(
            "Upload successful path=%s target=%s bytes_written=%s upload_seconds=%.3f upload_MiBps=%.3f",
            path,
            result.location,
            result.size_bytes,
            result.elapsed_seconds,
            mib_s,
            extra={"category": "UPLOAD"},
        )

        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.error("Failed to delete local file path=%s error=%s", path, exc, extra={"category": "FILES"})
            return OUTCOME_DELETE_FAILED, result.size_bytes
        LOGGER.info("Successfully processed and deleted path=%s", path, extra={"category": "FILES"})
        return OUTCOME_DELETED, result.size_bytes

