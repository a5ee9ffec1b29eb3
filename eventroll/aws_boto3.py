from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .media import Blob
from .store import SortBy, StoreEntry, StoreError, StoreErrorKind, check_object_size, sort_and_page

if TYPE_CHECKING:
    from botocore.client import BaseClient

LISTING_TTL_SECONDS = 30.0


def make_s3_client(*, region: str | None = None, endpoint_url: str | None = None) -> BaseClient:
    """Create an S3 client with connection pooling and adaptive retries."""
    config = Config(
        max_pool_connections=10,
        retries={
            "max_attempts": 3,
            "mode": "adaptive",
        },
    )
    return boto3.client("s3", region_name=region, endpoint_url=endpoint_url, config=config)


def _classify_client_error(error: ClientError) -> tuple[StoreErrorKind | None, str]:
    """Map a boto3 ClientError to a store error kind plus actionable guidance."""
    error_code = error.response.get("Error", {}).get("Code", "")
    error_message = error.response.get("Error", {}).get("Message", str(error))
    error_message_lower = error_message.lower()

    if error_code == "EntityTooLarge":
        return StoreErrorKind.SIZE_LIMIT, "Object exceeds the bucket's maximum object size."
    if error_code in ("InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken") or "credentials" in error_message_lower:
        return StoreErrorKind.AUTH, (
            "AWS credentials not configured or invalid.\n"
            "  Run: aws configure\n"
            "  Or set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables."
        )
    if error_code == "AccessDenied" or "access denied" in error_message_lower or "forbidden" in error_message_lower:
        return StoreErrorKind.AUTH, (
            "Access denied. Check your AWS IAM permissions:\n"
            "  - s3:PutObject for uploading photos\n"
            "  - s3:ListBucket for listing the gallery"
        )
    if error_code == "NoSuchBucket" or "does not exist" in error_message_lower:
        return StoreErrorKind.NOT_FOUND, (
            "S3 bucket does not exist or is not accessible.\n"
            "  Verify the bucket name and your access permissions."
        )
    if "timeout" in error_message_lower or "connection" in error_message_lower:
        return StoreErrorKind.NETWORK, "Network error connecting to AWS."
    return None, f"Error code: {error_code}"


class S3Store:
    """Store adapter backed by an S3 (or S3-compatible) bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        public_base_url: str | None = None,
        presign_expiry_seconds: int | None = None,
        max_object_bytes: int | None = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.presign_expiry_seconds = presign_expiry_seconds
        self.max_object_bytes = max_object_bytes
        self._client = client if client is not None else make_s3_client(region=region, endpoint_url=endpoint_url)
        self._listing: tuple[str, SortBy, float, list[StoreEntry]] | None = None

    async def upload(self, key: str, blob: Blob) -> None:
        check_object_size(key, blob, self.max_object_bytes)
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=blob.data,
                ContentType=blob.content_type,
            )
        except ClientError as e:
            kind, guidance = _classify_client_error(e)
            raise StoreError(
                f"Failed to upload {blob.name} to s3://{self.bucket}/{key}\n\n{guidance}\n\nError: {e}",
                kind=kind or StoreErrorKind.UPLOAD,
                key=key,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to upload {blob.name} to s3://{self.bucket}/{key}: {e}",
                kind=StoreErrorKind.NETWORK,
                key=key,
            ) from e
        if self._listing is not None and key.startswith(self._listing[0]):
            self._listing = None

    def get_public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        if self.presign_expiry_seconds:
            # Presigning is a local signature computation, no request is made.
            url = self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presign_expiry_seconds,
            )
            if not url:
                raise StoreError(
                    f"boto3 generate_presigned_url returned empty URL for s3://{self.bucket}/{key}",
                    kind=StoreErrorKind.AUTH,
                    key=key,
                )
            return url
        if self.region and self.region != "us-east-1":
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"
        return f"https://{self.bucket}.s3.amazonaws.com/{quote(key)}"

    async def list(
        self,
        prefix: str,
        *,
        sort_by: SortBy = SortBy(),
        limit: int,
        offset: int = 0,
    ) -> list[StoreEntry]:
        # S3 lists lexicographically, so the full prefix is read and sorted client-side.
        # Later pages reuse the listing read for offset 0.
        folder = prefix if prefix.endswith("/") else prefix + "/"
        entries = self._cached_listing(folder, sort_by) if offset else None
        if entries is None:
            try:
                found = await asyncio.to_thread(self._list_all, folder)
            except ClientError as e:
                kind, guidance = _classify_client_error(e)
                raise StoreError(
                    f"Failed to list s3://{self.bucket}/{folder}\n\n{guidance}\n\nError: {e}",
                    kind=kind or StoreErrorKind.LIST,
                    key=folder,
                ) from e
            except BotoCoreError as e:
                raise StoreError(
                    f"Failed to list s3://{self.bucket}/{folder}: {e}",
                    kind=StoreErrorKind.NETWORK,
                    key=folder,
                ) from e
            entries = sort_and_page(found, sort_by=sort_by, limit=len(found), offset=0)
            self._listing = (folder, sort_by, time.monotonic(), entries)
        return entries[offset : offset + limit]

    def _cached_listing(self, folder: str, sort_by: SortBy) -> list[StoreEntry] | None:
        if self._listing is None:
            return None
        cached_folder, cached_sort, read_at, entries = self._listing
        if cached_folder != folder or cached_sort != sort_by:
            return None
        if time.monotonic() - read_at > LISTING_TTL_SECONDS:
            return None
        return entries

    def _list_all(self, folder: str) -> list[StoreEntry]:
        paginator = self._client.get_paginator("list_objects_v2")
        entries: list[StoreEntry] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=folder, Delimiter="/"):
            for obj in page.get("Contents", []):
                name = obj["Key"][len(folder):]
                if not name:
                    continue
                entries.append(StoreEntry(name=name, created_at=obj["LastModified"]))
        return entries
