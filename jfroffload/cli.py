from __future__ import annotations

import logging
import os
import signal
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
import uvicorn

from jfroffload.config_loader import CONFIG_PATH_VAR, OffloadConfig, load_config
from jfroffload.env_loader import load_env_file
from jfroffload.errors import ConfigError, StorageSetupError, WatchSetupError
from jfroffload.logging_setup import setup_logging
from jfroffload.services.pipeline import PipelineCoordinator
from jfroffload.services.s3_storage import S3ArtifactStorage
from jfroffload.services.scanner import ReconciliationScanner
from jfroffload.services.stability import StabilityProber
from jfroffload.services.uploader import ArtifactUploader
from jfroffload.services.watcher import DirectoryWatcher

LOGGER = logging.getLogger(__name__)

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (env JFROFFLOAD_CONFIG). JFROFFLOAD_* env vars override it.",
)


def _fatal(message: str, exc: Exception) -> NoReturn:
    LOGGER.error("%s: %s", message, exc, extra={"category": "ERRORS"})
    sys.exit(1)


def build_pipeline(cfg: OffloadConfig, with_watcher: bool = True) -> PipelineCoordinator:
    storage = S3ArtifactStorage(cfg.s3)
    storage.connect()
    pipeline_cfg = cfg.pipeline
    return PipelineCoordinator(
        root=pipeline_cfg.root,
        extension=pipeline_cfg.extension,
        prober=StabilityProber(pipeline_cfg.settle_interval),
        uploader=ArtifactUploader(storage, pipeline_cfg.upload_recheck_interval),
        scanner=ReconciliationScanner(pipeline_cfg.root, pipeline_cfg.extension, pipeline_cfg.scan_interval),
        watcher=DirectoryWatcher(pipeline_cfg.root, pipeline_cfg.use_polling_observer) if with_watcher else None,
        upload_workers=pipeline_cfg.upload_workers,
    )


def _load_pipeline(config_path: Optional[Path], with_watcher: bool) -> PipelineCoordinator:
    try:
        return build_pipeline(load_config(config_path), with_watcher=with_watcher)
    except ConfigError as exc:
        _fatal("Invalid configuration", exc)
    except StorageSetupError as exc:
        _fatal("Failed to initialize S3 uploader", exc)


@click.group()
def main() -> None:
    """JFR artifact offloader."""
    load_env_file()
    setup_logging()


@main.command()
@config_option
def daemon(config_path: Optional[Path]) -> None:
    """Watch the artifact tree and offload finished recordings until SIGTERM."""
    LOGGER.info("Starting in daemon mode (file offloader)", extra={"category": "CONFIG"})
    coordinator = _load_pipeline(config_path, with_watcher=True)

    def _stop(signum, _frame) -> None:
        LOGGER.info("Received signal=%s, stopping pipeline", signal.Signals(signum).name, extra={"category": "PIPELINE"})
        coordinator.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    try:
        coordinator.run()
    except WatchSetupError as exc:
        _fatal("Failed to watch directory", exc)


@main.command()
@config_option
def scan(config_path: Optional[Path]) -> None:
    """Run a single reconciliation pass and exit."""
    coordinator = _load_pipeline(config_path, with_watcher=False)
    found = coordinator.run_scan()
    LOGGER.info("Scan pass finished files=%s stats=%s", found, coordinator.stats.snapshot(), extra={"category": "SCAN"})


@main.command()
@config_option
@click.option("--host", default=None, help="Bind address (default from config, 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default from config, 8081).")
def sidecar(config_path: Optional[Path], host: Optional[str], port: Optional[int]) -> None:
    """Start the JFR control API."""
    if config_path is not None:
        # build_app runs inside uvicorn and reads the path from the environment.
        os.environ[CONFIG_PATH_VAR] = str(config_path)
    try:
        cfg = load_config(require_bucket=False)
    except ConfigError as exc:
        _fatal("Invalid configuration", exc)
    bind_host = host or cfg.api.host
    bind_port = port or cfg.api.port
    LOGGER.info("Starting in sidecar mode (API server) host=%s port=%s", bind_host, bind_port, extra={"category": "CONFIG"})
    uvicorn.run("jfroffload.web.app:build_app", factory=True, host=bind_host, port=bind_port, log_config=None)


if __name__ == "__main__":
    main()
