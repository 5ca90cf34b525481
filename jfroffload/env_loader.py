from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict

LOGGER = logging.getLogger(__name__)

ENV_FILE_VAR = "JFROFFLOAD_ENV_FILE"


def _parse_env_line(line: str) -> tuple[str, str] | None:
    text = line.strip()
    if not text or text.startswith("#"):
        return None
    text = text.removeprefix("export ").strip()
    key, sep, value = text.partition("=")
    key = key.strip()
    if not sep or not key:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        value = value[1:-1]
    return key, value


def read_env_file(path: Path) -> Dict[str, str]:
    if not path.is_file():
        return {}
    values: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_env_line(raw_line)
        if parsed:
            values[parsed[0]] = parsed[1]
    return values


def load_env_file(path: Path | None = None, override: bool = False) -> int:
    """Copy KEY=VALUE pairs from a dotenv-style file into os.environ.

    Existing variables win unless override is set, so a Kubernetes-injected
    env always beats a file baked into the image.
    """
    if path is None:
        raw = os.environ.get(ENV_FILE_VAR, "").strip()
        if not raw:
            return 0
        path = Path(raw).expanduser()
    loaded = 0
    for key, value in read_env_file(path).items():
        if override or key not in os.environ:
            os.environ[key] = value
            loaded += 1
    LOGGER.info("Loaded env file path=%s keys=%s", path, loaded, extra={"category": "CONFIG"})
    return loaded
