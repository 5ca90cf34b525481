from __future__ import annotations

import logging
import shutil
import subprocess
from typing import List, Optional

from jfroffload.errors import JfrCommandError

LOGGER = logging.getLogger(__name__)


def missing_binaries(required: List[str]) -> List[str]:
    missing = [binary for binary in required if shutil.which(binary) is None]
    if missing:
        LOGGER.warning("Missing required binaries=%s", missing, extra={"category": "CONFIG"})
    return missing


def run_subprocess(cmd: List[str], timeout: Optional[float] = 30.0) -> subprocess.CompletedProcess[str]:
    """Run a command with merged stdout/stderr, the way jcmd output is reported back to callers."""
    LOGGER.debug("Executing subprocess cmd=%s", cmd, extra={"category": "JFR"})
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, timeout=timeout)
    except FileNotFoundError as exc:
        raise JfrCommandError(f"Command not found: {cmd[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise JfrCommandError(f"Command timed out after {timeout}s: {' '.join(cmd)}") from exc
    LOGGER.debug(
        "Subprocess completed cmd=%s returncode=%s output_len=%s",
        cmd,
        proc.returncode,
        len(proc.stdout or ""),
        extra={"category": "JFR"},
    )
    return proc
