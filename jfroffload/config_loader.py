from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from jfroffload.errors import ConfigError
from jfroffload.units import parse_duration_seconds, parse_size_bytes

LOGGER = logging.getLogger(__name__)

CONFIG_PATH_VAR = "JFROFFLOAD_CONFIG"
DEFAULT_ROOT = Path("/tmp/jfr")
DEFAULT_EXTENSION = ".jfr"
_SIZE_DEFAULTS = {"multipart_threshold": 200 * 1000 * 1000, "multipart_chunksize": 100 * 1000 * 1000}

# env var -> (section, field); env always beats the YAML file.
ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "JFROFFLOAD_S3_BUCKET": ("s3", "bucket"),
    "JFROFFLOAD_S3_PREFIX": ("s3", "prefix"),
    "JFROFFLOAD_S3_ENDPOINT": ("s3", "endpoint_url"),
    "JFROFFLOAD_S3_REGION": ("s3", "region"),
    "JFROFFLOAD_S3_MAX_POOL_CONNECTIONS": ("s3", "max_pool_connections"),
    "JFROFFLOAD_S3_MULTIPART_THRESHOLD_BYTES": ("s3", "multipart_threshold"),
    "JFROFFLOAD_S3_MULTIPART_CHUNKSIZE_BYTES": ("s3", "multipart_chunksize"),
    "JFROFFLOAD_S3_MAX_CONCURRENCY": ("s3", "max_concurrency"),
    "AWS_ACCESS_KEY_ID": ("s3", "access_key_id"),
    "AWS_SECRET_ACCESS_KEY": ("s3", "secret_access_key"),
    "AWS_SESSION_TOKEN": ("s3", "session_token"),
    "JFROFFLOAD_ROOT": ("pipeline", "root"),
    "JFROFFLOAD_EXTENSION": ("pipeline", "extension"),
    "JFROFFLOAD_SETTLE_INTERVAL": ("pipeline", "settle_interval"),
    "JFROFFLOAD_UPLOAD_RECHECK_INTERVAL": ("pipeline", "upload_recheck_interval"),
    "JFROFFLOAD_SCAN_INTERVAL": ("pipeline", "scan_interval"),
    "JFROFFLOAD_UPLOAD_WORKERS": ("pipeline", "upload_workers"),
    "JFROFFLOAD_WATCH_POLLING": ("pipeline", "use_polling_observer"),
    "JFROFFLOAD_API_HOST": ("api", "host"),
    "JFROFFLOAD_API_PORT": ("api", "port"),
    "JFROFFLOAD_SOURCE_ID": ("api", "source_id"),
    "JFROFFLOAD_JCMD": ("api", "jcmd_binary"),
}


def _default_source_id() -> str:
    for var in ("POD_NAME", "HOSTNAME"):
        value = os.environ.get(var, "").strip()
        if value:
            return value
    return "local"


class S3Settings(BaseModel):
    bucket: str = ""
    prefix: str = ""
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    access_key_id: str = ""
    secret_access_key: str = ""
    session_token: str = ""
    max_pool_connections: int = Field(default=10, ge=1)
    multipart_threshold: int = _SIZE_DEFAULTS["multipart_threshold"]
    multipart_chunksize: int = _SIZE_DEFAULTS["multipart_chunksize"]
    max_concurrency: int = Field(default=10, ge=1)

    @field_validator("bucket", "prefix", mode="before")
    @classmethod
    def strip_slashes(cls, value: object) -> str:
        return str(value or "").strip().strip("/")

    @field_validator("endpoint_url", "region", mode="before")
    @classmethod
    def empty_to_none(cls, value: object) -> Optional[str]:
        text = str(value or "").strip()
        if not text:
            return None
        return text

    @field_validator("endpoint_url")
    @classmethod
    def normalize_endpoint(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value.startswith(("http://", "https://")):
            return value
        return f"https://{value}"

    @field_validator("multipart_threshold", "multipart_chunksize", mode="before")
    @classmethod
    def parse_size(cls, value: object, info: ValidationInfo) -> int:
        default = _SIZE_DEFAULTS[info.field_name]
        # S3 rejects multipart parts under 5 MiB.
        return max(5 * 1024 * 1024, parse_size_bytes(value if isinstance(value, (int, str)) else None, default))


class PipelineSettings(BaseModel):
    root: Path = DEFAULT_ROOT
    extension: str = DEFAULT_EXTENSION
    settle_interval: float = 5.0
    upload_recheck_interval: float = 2.0
    scan_interval: float = 30.0
    upload_workers: int = Field(default=4, ge=0)
    use_polling_observer: bool = False

    @field_validator("root", mode="before")
    @classmethod
    def normalize_root(cls, value: object) -> Path:
        text = str(value or "").strip()
        if not text:
            return DEFAULT_ROOT
        return Path(text).expanduser()

    @field_validator("extension", mode="before")
    @classmethod
    def normalize_extension(cls, value: object) -> str:
        text = str(value or "").strip().lower()
        if not text:
            return DEFAULT_EXTENSION
        return text if text.startswith(".") else f".{text}"

    @field_validator("settle_interval", "upload_recheck_interval", "scan_interval", mode="before")
    @classmethod
    def parse_interval(cls, value: object) -> float:
        return parse_duration_seconds(value)  # type: ignore[arg-type]

    @field_validator("scan_interval")
    @classmethod
    def validate_scan_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("scan_interval must be greater than zero")
        return value


class ApiSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8081, ge=1, le=65535)
    source_id: str = Field(default_factory=_default_source_id)
    jcmd_binary: str = "jcmd"

    @field_validator("source_id")
    @classmethod
    def validate_source_id(cls, value: str) -> str:
        clean = value.strip()
        if not clean or "/" in clean or clean in {".", ".."}:
            raise ValueError("source_id must be a single path segment")
        return clean


class OffloadConfig(BaseModel):
    s3: S3Settings = Field(default_factory=S3Settings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    def require_bucket(self) -> None:
        if not self.s3.bucket:
            raise ConfigError("JFROFFLOAD_S3_BUCKET (or s3.bucket in the config file) is required")


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    LOGGER.info("Loading config path=%s", config_path, extra={"category": "CONFIG"})
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigError("Configuration root must be a YAML object")
    return parsed


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}
    for var, (section, field) in ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or not raw.strip():
            continue
        target = merged.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        target[field] = raw.strip()
    return merged


def load_config(config_path: Path | None = None, require_bucket: bool = True) -> OffloadConfig:
    """Build the effective config: defaults, then the YAML file, then JFROFFLOAD_* env vars."""
    if config_path is None:
        raw = os.environ.get(CONFIG_PATH_VAR, "").strip()
        config_path = Path(raw).expanduser() if raw else None
    data = _read_yaml(config_path) if config_path is not None else {}
    try:
        cfg = OffloadConfig.model_validate(_apply_env_overrides(data))
    except ValidationError as exc:
        LOGGER.error("Config validation failed error=%s", exc, extra={"category": "ERRORS"})
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    if require_bucket:
        cfg.require_bucket()
    LOGGER.info(
        "Config loaded bucket=%s root=%s extension=%s settle_s=%s scan_s=%s workers=%s",
        cfg.s3.bucket or "-",
        cfg.pipeline.root,
        cfg.pipeline.extension,
        cfg.pipeline.settle_interval,
        cfg.pipeline.scan_interval,
        cfg.pipeline.upload_workers,
        extra={"category": "CONFIG"},
    )
    return cfg
