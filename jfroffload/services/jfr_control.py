from __future__ import annotations

import datetime as dt
import logging
import os
import re
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from jfroffload.errors import JfrCommandError
from jfroffload.services.artifacts import is_artifact
from jfroffload.units import parse_duration_seconds
from jfroffload.utils import run_subprocess

LOGGER = logging.getLogger(__name__)

DEFAULT_DURATION = "60s"
_RECORDING_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

Runner = Callable[[List[str]], "subprocess.CompletedProcess[str]"]


def default_recording_name(now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    # RFC3339 with ':' swapped out so the name is a safe filename.
    return "jfr_" + now.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")


def normalize_duration(raw: Optional[str]) -> str:
    text = (raw or "").strip() or DEFAULT_DURATION
    parse_duration_seconds(text)
    # jcmd wants a unit; a bare number means seconds here.
    return f"{text}s" if text.replace(".", "", 1).isdigit() else text


class JfrController:
    """
    Starts and stops JFR recordings in the local JVM through jcmd.

    Recordings are written to `<root>/<source_id>/<name><ext>`, the layout the
    offload pipeline expects.
    """

    def __init__(
        self,
        root: Path,
        source_id: str,
        extension: str = ".jfr",
        jcmd_binary: str = "jcmd",
        runner: Runner = run_subprocess,
    ) -> None:
        self._root = Path(root)
        self._output_dir = self._root / source_id
        self._extension = extension
        self._jcmd_binary = jcmd_binary
        self._runner = runner
        self._started: set[str] = set()
        self._lock = threading.Lock()

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def find_java_pid(self) -> int:
        # -x matches the exact process name, skipping "sh -c java ..." wrappers.
        proc = self._runner(["pgrep", "-x", "java"])
        pids = [line.strip() for line in (proc.stdout or "").splitlines() if line.strip()]
        LOGGER.debug("pgrep result returncode=%s pids=%s", proc.returncode, pids, extra={"category": "JFR"})
        if proc.returncode != 0 or not pids:
            raise JfrCommandError("No Java process found")
        if len(pids) > 1:
            LOGGER.warning("Multiple Java processes found pids=%s using=%s", pids, pids[0], extra={"category": "JFR"})
        try:
            return int(pids[0])
        except ValueError as exc:
            raise JfrCommandError(f"Invalid PID: {pids[0]!r}") from exc

    def _run_jcmd(self, pid: int, *args: str) -> str:
        cmd = [self._jcmd_binary, str(pid), *args]
        proc = self._runner(cmd)
        output = proc.stdout or ""
        if proc.returncode != 0:
            raise JfrCommandError(f"{args[0]} failed exit_code={proc.returncode} output={output.strip()}")
        return output

    def start_recording(self, name: Optional[str] = None, duration: Optional[str] = None) -> Dict[str, str]:
        """Raises ValueError for a bad name or duration, JfrCommandError when jcmd fails."""
        duration = normalize_duration(duration)
        name = (name or "").strip() or default_recording_name()
        if not _RECORDING_NAME_RE.match(name):
            raise ValueError(f"Invalid recording name: {name!r}")
        filename = f"{name}{self._extension}"
        output_path = self._output_dir / filename
        pid = self.find_java_pid()
        self._output_dir.mkdir(parents=True, exist_ok=True)
        LOGGER.info(
            "Starting JFR recording pid=%s name=%s duration=%s path=%s",
            pid,
            name,
            duration,
            output_path,
            extra={"category": "JFR"},
        )
        output = self._run_jcmd(pid, "JFR.start", f"name={name}", f"duration={duration}", f"filename={output_path}")
        with self._lock:
            self._started.add(name)
        return {
            "pid": str(pid),
            "name": name,
            "duration": duration,
            "filename": filename,
            "output": output,
        }

    def stop_recording(self, name: str) -> Dict[str, str]:
        name = (name or "").strip()
        if not name:
            raise ValueError("Recording name is required")
        pid = self.find_java_pid()
        output = self._run_jcmd(pid, "JFR.stop", f"name={name}")
        with self._lock:
            self._started.discard(name)
        LOGGER.info("Successfully stopped JFR recording pid=%s name=%s", pid, name, extra={"category": "JFR"})
        return {"pid": str(pid), "name": name, "output": output}

    def check_recordings(self) -> Dict[str, str]:
        pid = self.find_java_pid()
        return {"pid": str(pid), "output": self._run_jcmd(pid, "JFR.check")}

    def list_artifacts(self) -> List[Dict[str, Any]]:
        files: List[Dict[str, Any]] = []
        if not self._root.is_dir():
            return files
        for dirpath, _dirnames, filenames in os.walk(self._root):
            for name in sorted(filenames):
                path = Path(dirpath) / name
                if not is_artifact(path, self._extension):
                    continue
                try:
                    st = path.stat()
                except OSError:
                    # Uploaded and deleted between listing and stat.
                    continue
                files.append(
                    {
                        "name": name,
                        "path": str(path),
                        "size": int(st.st_size),
                        "modified": dt.datetime.fromtimestamp(st.st_mtime, tz=dt.timezone.utc).isoformat(timespec="seconds"),
                    }
                )
        return files

    def stop_started_recordings(self) -> int:
        """Stop every recording this process started, so the JVM flushes the files before shutdown."""
        with self._lock:
            names = sorted(self._started)
        stopped = 0
        for name in names:
            try:
                self.stop_recording(name)
                stopped += 1
            except JfrCommandError as exc:
                LOGGER.warning("Failed to stop JFR recording name=%s error=%s", name, exc, extra={"category": "JFR"})
        return stopped
