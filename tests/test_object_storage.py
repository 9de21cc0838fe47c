from __future__ import annotations

import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from publisher.config import settings
from publisher.services.object_storage import (
    IMMUTABLE_CACHE_CONTROL,
    ObjectNotFound,
    ObjectStorage,
    ObjectStorageError,
)


@pytest.fixture()
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )


def test_list_recursive_follows_pagination(s3_client):
    storage = ObjectStorage(client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "list_objects_v2",
            {
                "IsTruncated": True,
                "NextContinuationToken": "page-2",
                "Contents": [{"Key": "u/p/src/main.tsx"}, {"Key": "u/p/src/"}],
            },
            {"Bucket": "project-files", "Prefix": "u/p/", "MaxKeys": ANY},
        )
        stubber.add_response(
            "list_objects_v2",
            {"IsTruncated": False, "Contents": [{"Key": "u/p/public/logo.png"}]},
            {"Bucket": "project-files", "Prefix": "u/p/", "MaxKeys": ANY, "ContinuationToken": "page-2"},
        )

        keys = storage.list_recursive(bucket="project-files", prefix="/u/p/")

    assert keys == ["u/p/src/main.tsx", "u/p/public/logo.png"]


def test_download_returns_body_bytes(s3_client):
    storage = ObjectStorage(client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(b"hello"), 5)},
            {"Bucket": "project-files", "Key": "u/p/src/main.tsx"},
        )
        assert storage.download(bucket="project-files", key="u/p/src/main.tsx") == b"hello"


def test_download_missing_key_raises_not_found(s3_client):
    storage = ObjectStorage(client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        with pytest.raises(ObjectNotFound):
            storage.download(bucket="published-games", key="u/p/latest.json")


def test_upload_sends_content_type_and_cache_control(s3_client):
    storage = ObjectStorage(client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "published-games",
                "Key": "u/p/versions/1/main.js",
                "Body": b"js",
                "ContentType": "application/javascript",
                "CacheControl": IMMUTABLE_CACHE_CONTROL,
            },
        )
        storage.upload(
            bucket="published-games",
            key="u/p/versions/1/main.js",
            data=b"js",
            content_type="application/javascript",
            cache_control=IMMUTABLE_CACHE_CONTROL,
        )
        stubber.assert_no_pending_responses()


def test_upload_error_is_wrapped(s3_client):
    storage = ObjectStorage(client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(ObjectStorageError) as exc_info:
            storage.upload(bucket="published-games", key="u/p/x", data=b"x")

    assert exc_info.value.key == "u/p/x"
    assert not isinstance(exc_info.value, ObjectNotFound)



def test_public_url_quotes_key(s3_client):
    storage = ObjectStorage(client=s3_client)
    url = storage.public_url(bucket="published-games", key="u/p/logs/1 2.txt")
    assert url == f"{settings.storage_public_base_url}/published-games/u/p/logs/1%202.txt"
