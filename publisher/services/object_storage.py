from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from publisher.config import settings

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"
NO_CACHE_CONTROL = "no-cache, must-revalidate"

_MISSING_KEY_CODES = ("404", "NoSuchKey", "NotFound")


class ObjectStorageConfigurationError(RuntimeError):
    pass


class ObjectStorageError(RuntimeError):
    def __init__(self, message: str, *, bucket: str, key: str | None = None) -> None:
        super().__init__(message)
        self.bucket = bucket
        self.key = key


class ObjectNotFound(ObjectStorageError):
    pass


class ObjectStorage:
    """
    Bucket-addressed blob store on S3-compatible storage.

    Keys are plain "/"-separated paths; "folders" only exist as key prefixes.
    Uploads always overwrite (upsert), which keeps re-uploads of the same
    artifact idempotent.
    """

    def __init__(self, client=None) -> None:
        if client is None:
            if not settings.STORAGE_ACCESS_KEY or not settings.STORAGE_SECRET_KEY:
                raise ObjectStorageConfigurationError("STORAGE_ACCESS_KEY and STORAGE_SECRET_KEY are required")
            addressing_style = "path" if settings.STORAGE_FORCE_PATH_STYLE else "auto"
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=settings.STORAGE_ENDPOINT,
                aws_access_key_id=settings.STORAGE_ACCESS_KEY,
                aws_secret_access_key=settings.STORAGE_SECRET_KEY,
                region_name=settings.STORAGE_REGION or "us-east-1",
                use_ssl=bool(settings.STORAGE_USE_SSL),
                config=Config(
                    s3={"addressing_style": addressing_style},
                    signature_version="s3v4",
                ),
            )
        self.client = client
        self.page_size = int(settings.STORAGE_LIST_PAGE_SIZE or 1000)

    def list_recursive(self, *, bucket: str, prefix: str) -> list[str]:
        """Every object key under `prefix/`, depth-first order as returned by the store."""
        normalized = prefix.strip("/") + "/"
        keys: list[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(
                Bucket=bucket,
                Prefix=normalized,
                PaginationConfig={"PageSize": self.page_size},
            ):
                for item in page.get("Contents") or []:
                    key = item.get("Key")
                    if isinstance(key, str) and key and not key.endswith("/"):
                        keys.append(key)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStorageError(f"List failed for {bucket}/{normalized}: {exc}", bucket=bucket) from exc
        return keys

    def download(self, *, bucket: str, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code") if hasattr(exc, "response") else None
            if code in _MISSING_KEY_CODES:
                raise ObjectNotFound(f"Object not found: {bucket}/{key}", bucket=bucket, key=key) from exc
            raise ObjectStorageError(f"Download failed for {bucket}/{key}: {exc}", bucket=bucket, key=key) from exc
        except BotoCoreError as exc:
            raise ObjectStorageError(f"Download failed for {bucket}/{key}: {exc}", bucket=bucket, key=key) from exc
        body = obj.get("Body")
        return body.read() if body else b""

    def upload(
        self,
        *,
        bucket: str,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None,
    ) -> None:
        kwargs = {
            "Bucket": bucket,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if cache_control:
            kwargs["CacheControl"] = cache_control
        try:
            self.client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStorageError(f"Upload failed for {bucket}/{key}: {exc}", bucket=bucket, key=key) from exc

    def public_url(self, *, bucket: str, key: str) -> str:
        base = settings.storage_public_base_url
        if not base:
            raise ObjectStorageConfigurationError("STORAGE_PUBLIC_BASE_URL or STORAGE_ENDPOINT is required")
        return f"{base}/{bucket}/{quote(key)}"
