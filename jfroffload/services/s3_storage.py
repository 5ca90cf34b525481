from __future__ import annotations

import logging
from typing import Any, BinaryIO

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import BotoCoreError, ClientError

from jfroffload.config_loader import S3Settings
from jfroffload.errors import StorageSetupError, UploadError

LOGGER = logging.getLogger(__name__)

CONTENT_TYPE = "application/octet-stream"


class S3ArtifactStorage:
    """
    Remote sink for artifacts.

    One boto3 client per process, shared by every upload thread (boto3 clients
    are thread-safe; sessions and resources are not, so neither is kept).
    """

    def __init__(self, cfg: S3Settings, client: Any = None) -> None:
        self._cfg = cfg
        self._client = client
        self._transfer_config = TransferConfig(
            multipart_threshold=cfg.multipart_threshold,
            multipart_chunksize=cfg.multipart_chunksize,
            max_concurrency=cfg.max_concurrency,
            use_threads=True,
        )

    @property
    def bucket(self) -> str:
        return self._cfg.bucket

    @property
    def prefix(self) -> str:
        return self._cfg.prefix

    def connect(self) -> None:
        """Build the client eagerly so credential/endpoint problems fail at startup."""
        if self._client is not None:
            return
        try:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._cfg.endpoint_url,
                region_name=self._cfg.region,
                aws_access_key_id=self._cfg.access_key_id or None,
                aws_secret_access_key=self._cfg.secret_access_key or None,
                aws_session_token=self._cfg.session_token or None,
                config=BotocoreConfig(
                    max_pool_connections=self._cfg.max_pool_connections,
                    retries={"max_attempts": 5, "mode": "standard"},
                ),
            )
        except (BotoCoreError, ValueError) as exc:
            raise StorageSetupError(f"Failed to create S3 client: {exc}") from exc
        LOGGER.info(
            "S3 client ready bucket=%s prefix=%s endpoint=%s region=%s",
            self._cfg.bucket,
            self._cfg.prefix or "-",
            self._cfg.endpoint_url or "default",
            self._cfg.region or "default",
            extra={"category": "CONFIG"},
        )

    def _require_client(self) -> Any:
        if self._client is None:
            self.connect()
        return self._client

    def to_s3_key(self, relative_key: str) -> str:
        rel = relative_key.strip().lstrip("/")
        if not self._cfg.prefix:
            return rel
        return f"{self._cfg.prefix}/{rel}"

    def format_location(self, key: str) -> str:
        return f"s3://{self._cfg.bucket}/{key.lstrip('/')}"

    def put_stream(self, relative_key: str, stream: BinaryIO, size: int) -> str:
        """
        Create or overwrite `relative_key` from `stream`, returning the full key.

        Success is reported only after the transfer manager completed the put (or
        the multipart completion call) and head_object shows the expected size.
        A failed multipart transfer is aborted by s3transfer, so no partial object
        is ever left as the committed one.
        """
        key = self.to_s3_key(relative_key)
        client = self._require_client()
        try:
            client.upload_fileobj(
                stream,
                self._cfg.bucket,
                key,
                ExtraArgs={"ContentType": CONTENT_TYPE},
                Config=self._transfer_config,
            )
            head = client.head_object(Bucket=self._cfg.bucket, Key=key)
        except (Boto3Error, BotoCoreError, ClientError, OSError) as exc:
            raise UploadError(f"Failed to upload to {self.format_location(key)}: {exc}") from exc
        remote_size = int(head.get("ContentLength") or 0)
        if remote_size != size:
            raise UploadError(f"S3 size mismatch for {key}: local={size} remote={remote_size}")
        return key

