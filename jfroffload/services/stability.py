from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

READY_STABLE = "stable"
NOT_READY_EMPTY = "empty"
NOT_READY_GROWING = "growing"
NOT_READY_MISSING = "missing"
NOT_READY_UNREADABLE = "unreadable"


@dataclass(frozen=True)
class StabilityResult:
    path: Path
    ready: bool
    size: int
    reason: str


def _file_size(path: Path) -> Optional[int]:
    """None when the file is gone; any other stat error propagates."""
    try:
        return int(os.stat(path).st_size)
    except FileNotFoundError:
        return None


class StabilityProber:
    """
    Size-unchanged-over-an-interval check.

    A producer that pauses for exactly the settle interval can fool it; that is
    the accepted price of not needing a rename-on-completion protocol.
    """

    def __init__(self, settle_interval: float = 5.0, sleep: Callable[[float], None] = time.sleep) -> None:
        self._settle_interval = max(0.0, float(settle_interval))
        self._sleep = sleep

    @property
    def settle_interval(self) -> float:
        return self._settle_interval

    def probe(self, path: Path) -> StabilityResult:
        try:
            return self._probe(path)
        except OSError as exc:
            # EACCES, ELOOP and friends: the file stays put for the next scan.
            LOGGER.warning("Cannot stat file path=%s reason=%s", path, exc, extra={"category": "STABILITY"})
            return StabilityResult(path, False, 0, NOT_READY_UNREADABLE)

    def _probe(self, path: Path) -> StabilityResult:
        first = _file_size(path)
        if first is None:
            return StabilityResult(path, False, 0, NOT_READY_MISSING)
        if first == 0:
            # Allocated by the JVM but not populated yet.
            return StabilityResult(path, False, 0, NOT_READY_EMPTY)
        self._sleep(self._settle_interval)
        second = _file_size(path)
        if second is None:
            return StabilityResult(path, False, first, NOT_READY_MISSING)
        if second != first:
            LOGGER.debug(
                "File still growing path=%s size_before=%s size_after=%s settle_s=%s",
                path,
                first,
                second,
                self._settle_interval,
                extra={"category": "STABILITY"},
            )
            return StabilityResult(path, False, second, NOT_READY_GROWING)
        return StabilityResult(path, True, second, READY_STABLE)
