from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Iterator, Optional

from jfroffload.services.artifacts import is_artifact

LOGGER = logging.getLogger(__name__)


class ReconciliationScanner:
    """Full-tree walk that re-finds whatever the watcher missed."""

    def __init__(self, root: Path, extension: str, interval: float = 30.0) -> None:
        self._root = Path(root)
        self._extension = extension
        self._interval = max(0.001, float(interval))
        self._next_due: Optional[float] = None

    @property
    def interval(self) -> float:
        return self._interval

    def seconds_until_due(self, now: Optional[float] = None) -> float:
        if self._next_due is None:
            return 0.0
        now = time.monotonic() if now is None else now
        return max(0.0, self._next_due - now)

    def due(self, now: Optional[float] = None) -> bool:
        return self.seconds_until_due(now) <= 0.0

    def mark_ran(self, now: Optional[float] = None) -> None:
        now = time.monotonic() if now is None else now
        self._next_due = now + self._interval

    def _on_walk_error(self, exc: OSError) -> None:
        LOGGER.warning(
            "Error accessing path during scan path=%s reason=%s",
            getattr(exc, "filename", "-"),
            exc,
            extra={"category": "SCAN"},
        )

    def scan(self) -> Iterator[Path]:
        """
        Yield every artifact file currently under the root.

        Entries that vanish or fail to stat mid-walk are logged and skipped;
        the walk itself never aborts on a single bad entry.
        """
        if not self._root.is_dir():
            LOGGER.warning("Scan root is missing or not a directory root=%s", self._root, extra={"category": "SCAN"})
            return
        LOGGER.debug("Scanning for existing %s files root=%s", self._extension, self._root, extra={"category": "SCAN"})
        found = 0
        for dirpath, dirnames, filenames in os.walk(self._root, onerror=self._on_walk_error):
            dirnames.sort()
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if not is_artifact(path, self._extension):
                    continue
                try:
                    if not path.is_file():
                        continue
                except OSError as exc:
                    self._on_walk_error(exc)
                    continue
                found += 1
                LOGGER.info("Found existing file path=%s", path, extra={"category": "SCAN"})
                yield path
        LOGGER.debug("Scan finished root=%s artifacts=%s", self._root, found, extra={"category": "SCAN"})
