import io

import pytest
from botocore.exceptions import ClientError

from jfroffload.config_loader import S3Settings
from jfroffload.errors import UploadError
from jfroffload.services.s3_storage import CONTENT_TYPE, S3ArtifactStorage


def test_put_stream_uploads_under_prefix_and_verifies_size(fake_s3_client) -> None:
    storage = S3ArtifactStorage(S3Settings(bucket="profiles", prefix="jfr/prod"), client=fake_s3_client)

    key = storage.put_stream("pod-7/run1.jfr", io.BytesIO(b"x" * 1000), 1000)

    assert key == "jfr/prod/pod-7/run1.jfr"
    assert fake_s3_client.objects[("profiles", key)] == b"x" * 1000
    call = fake_s3_client.upload_calls[0]
    assert call["extra_args"] == {"ContentType": CONTENT_TYPE}
    assert call["config"] is not None
    assert storage.format_location(key) == "s3://profiles/jfr/prod/pod-7/run1.jfr"


def test_to_s3_key_without_prefix() -> None:
    storage = S3ArtifactStorage(S3Settings(bucket="profiles"), client=object())
    assert storage.to_s3_key("/pod-1/a.jfr") == "pod-1/a.jfr"


def test_client_error_becomes_upload_error(fake_s3_client) -> None:
    fake_s3_client.upload_error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    storage = S3ArtifactStorage(S3Settings(bucket="profiles"), client=fake_s3_client)

    with pytest.raises(UploadError):
        storage.put_stream("pod-1/a.jfr", io.BytesIO(b"abc"), 3)


def test_size_mismatch_after_upload_is_upload_error(fake_s3_client) -> None:
    fake_s3_client.size_override = 1
    storage = S3ArtifactStorage(S3Settings(bucket="profiles"), client=fake_s3_client)

    with pytest.raises(UploadError):
        storage.put_stream("pod-1/a.jfr", io.BytesIO(b"abc"), 3)


def test_connect_builds_client_for_custom_endpoint() -> None:
    storage = S3ArtifactStorage(
        S3Settings(
            bucket="profiles",
            endpoint_url="http://localhost:9000",
            region="us-east-1",
            access_key_id="test",
            secret_access_key="test",
        )
    )
    storage.connect()
    assert storage._require_client().meta.endpoint_url == "http://localhost:9000"
