#!/usr/bin/env python3
"""Write fake recordings into `<root>/<pod>/` at a fixed rate, to exercise a running daemon."""
from __future__ import annotations

import argparse
import os
import time
from pathlib import Path


class RateLimiter:
    def __init__(self, rate_bytes_per_sec: float) -> None:
        self.rate_bps = max(0.0, float(rate_bytes_per_sec))
        self._start = time.perf_counter()
        self._scheduled_bytes = 0.0

    def wait_for(self, byte_count: int) -> None:
        if self.rate_bps <= 0:
            return
        self._scheduled_bytes += float(max(0, byte_count))
        target_elapsed = self._scheduled_bytes / self.rate_bps
        elapsed = time.perf_counter() - self._start
        if target_elapsed > elapsed:
            time.sleep(target_elapsed - elapsed)


def write_recording(path: Path, size_bytes: int, chunk_bytes: int, limiter: RateLimiter) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Like the JVM: create empty first, then append.
    path.touch()
    written = 0
    with path.open("ab") as handle:
        while written < size_bytes:
            chunk = os.urandom(min(chunk_bytes, size_bytes - written))
            limiter.wait_for(len(chunk))
            handle.write(chunk)
            handle.flush()
            written += len(chunk)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--root", type=Path, default=Path(os.environ.get("JFROFFLOAD_ROOT", "/tmp/jfr")))
    parser.add_argument("--pods", type=int, default=3, help="Number of pod directories")
    parser.add_argument("--files-per-pod", type=int, default=2)
    parser.add_argument("--size-mb", type=float, default=8.0, help="Size of each recording")
    parser.add_argument("--chunk-kb", type=int, default=256)
    parser.add_argument("--rate-mbps", type=float, default=4.0, help="Write rate per file, 0 for unlimited")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    size_bytes = int(args.size_mb * 1024 * 1024)
    started = time.perf_counter()
    total = 0
    for pod in range(args.pods):
        for index in range(args.files_per_pod):
            path = args.root / f"pod-{pod}" / f"recording-{index}.jfr"
            write_recording(path, size_bytes, args.chunk_kb * 1024, RateLimiter(args.rate_mbps * 1024 * 1024))
            total += size_bytes
            print(f"wrote path={path} size_bytes={size_bytes}")
    elapsed = time.perf_counter() - started
    print(f"done files={args.pods * args.files_per_pod} bytes={total} elapsed_s={elapsed:.1f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
