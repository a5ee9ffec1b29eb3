from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from eventroll.aws_boto3 import LISTING_TTL_SECONDS, S3Store
from eventroll.gallery import GallerySynchronizer
from eventroll.media import Blob
from eventroll.store import StoreError, StoreErrorKind


def _client_error(code: str, message: str = "boom", op: str = "PutObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, op)


def _listing_client(pages: list[list[tuple[str, datetime]]]) -> MagicMock:
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Contents": [{"Key": k, "LastModified": ts} for k, ts in page]} for page in pages
    ]
    client.get_paginator.return_value = paginator
    return client


def test_upload_puts_object_with_content_type():
    client = MagicMock()
    store = S3Store(bucket="event-photos", client=client)

    asyncio.run(store.upload("party/abc.jpg", Blob("a.jpg", b"data", "image/jpeg")))

    client.put_object.assert_called_once_with(
        Bucket="event-photos", Key="party/abc.jpg", Body=b"data", ContentType="image/jpeg"
    )


@pytest.mark.parametrize(
    "code,kind",
    [
        ("AccessDenied", StoreErrorKind.AUTH),
        ("NoSuchBucket", StoreErrorKind.NOT_FOUND),
        ("EntityTooLarge", StoreErrorKind.SIZE_LIMIT),
        ("InternalError", StoreErrorKind.UPLOAD),
    ],
)
def test_upload_maps_client_errors(code, kind):
    client = MagicMock()
    client.put_object.side_effect = _client_error(code)
    store = S3Store(bucket="event-photos", client=client)

    with pytest.raises(StoreError) as exc:
        asyncio.run(store.upload("party/abc.jpg", Blob("a.jpg", b"data", "image/jpeg")))

    assert exc.value.kind is kind
    assert exc.value.key == "party/abc.jpg"
    assert "s3://event-photos/party/abc.jpg" in str(exc.value)


def test_upload_network_error():
    client = MagicMock()
    client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example")
    store = S3Store(bucket="event-photos", client=client)

    with pytest.raises(StoreError) as exc:
        asyncio.run(store.upload("party/abc.jpg", Blob("a.jpg", b"data", "image/jpeg")))
    assert exc.value.kind is StoreErrorKind.NETWORK


def test_upload_enforces_store_limit_before_request():
    client = MagicMock()
    store = S3Store(bucket="event-photos", client=client, max_object_bytes=3)

    with pytest.raises(StoreError) as exc:
        asyncio.run(store.upload("party/abc.jpg", Blob("a.jpg", b"data", "image/jpeg")))

    assert exc.value.kind is StoreErrorKind.SIZE_LIMIT
    client.put_object.assert_not_called()


def test_public_url_variants():
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://signed.example/party/a.jpg?X-Amz-Signature=fake"

    assert (
        S3Store(bucket="b", client=client, public_base_url="https://cdn.example/").get_public_url("party/a b.jpg")
        == "https://cdn.example/party/a%20b.jpg"
    )
    assert S3Store(bucket="b", client=client).get_public_url("party/a.jpg") == "https://b.s3.amazonaws.com/party/a.jpg"
    assert (
        S3Store(bucket="b", client=client, region="eu-west-1").get_public_url("party/a.jpg")
        == "https://b.s3.eu-west-1.amazonaws.com/party/a.jpg"
    )

    signed = S3Store(bucket="b", client=client, presign_expiry_seconds=3600).get_public_url("party/a.jpg")
    assert "X-Amz-Signature=fake" in signed
    client.generate_presigned_url.assert_called_once_with(
        "get_object", Params={"Bucket": "b", "Key": "party/a.jpg"}, ExpiresIn=3600
    )


def test_list_sorts_newest_first_across_pages():
    base = datetime(2024, 6, 1, tzinfo=timezone.utc)
    client = _listing_client(
        [
            [("party/a.jpg", base), ("party/c.jpg", base + timedelta(minutes=2))],
            [("party/b.jpg", base + timedelta(minutes=1))],
        ]
    )
    store = S3Store(bucket="event-photos", client=client)

    first = asyncio.run(store.list("party/", limit=2))
    rest = asyncio.run(store.list("party/", limit=2, offset=2))

    assert [e.name for e in first] == ["c.jpg", "b.jpg"]
    assert [e.name for e in rest] == ["a.jpg"]
    client.get_paginator.assert_called_with("list_objects_v2")
    client.get_paginator.return_value.paginate.assert_called_with(
        Bucket="event-photos", Prefix="party/", Delimiter="/"
    )


def test_list_error_becomes_store_error():
    client = MagicMock()
    client.get_paginator.return_value.paginate.side_effect = _client_error("AccessDenied", op="ListObjectsV2")
    store = S3Store(bucket="event-photos", client=client)

    with pytest.raises(StoreError) as exc:
        asyncio.run(store.list("party", limit=10))
    assert exc.value.kind is StoreErrorKind.AUTH
    assert exc.value.key == "party/"


def test_gallery_refresh_reads_prefix_once():
    base = datetime(2024, 6, 1, tzinfo=timezone.utc)
    client = _listing_client(
        [[(f"party/p{i:02d}.jpg", base + timedelta(seconds=i)) for i in range(25)]]
    )
    store = S3Store(bucket="event-photos", client=client, public_base_url="https://cdn.example")
    gallery = GallerySynchronizer(store, "party")
    published = []
    gallery.subscribe(published.append)

    asyncio.run(gallery.refresh())

    assert [len(p) for p in published] == [10, 20, 25]
    assert gallery.photos[0].public_url == "https://cdn.example/party/p24.jpg"
    assert client.get_paginator.return_value.paginate.call_count == 1

    # the next refresh starts at offset 0 and reads the prefix again
    asyncio.run(gallery.refresh())
    assert client.get_paginator.return_value.paginate.call_count == 2


def test_cached_listing_dropped_by_upload_and_expiry():
    base = datetime(2024, 6, 1, tzinfo=timezone.utc)
    client = _listing_client([[(f"party/p{i}.jpg", base + timedelta(seconds=i)) for i in range(4)]])
    store = S3Store(bucket="event-photos", client=client)
    paginate = client.get_paginator.return_value.paginate

    asyncio.run(store.list("party/", limit=2))
    asyncio.run(store.list("party/", limit=2, offset=2))
    assert paginate.call_count == 1

    asyncio.run(store.upload("party/new.jpg", Blob("new.jpg", b"data", "image/jpeg")))
    asyncio.run(store.list("party/", limit=2, offset=2))
    assert paginate.call_count == 2

    folder, sort_by, read_at, entries = store._listing
    store._listing = (folder, sort_by, read_at - LISTING_TTL_SECONDS - 1, entries)
    asyncio.run(store.list("party/", limit=2, offset=2))
    assert paginate.call_count == 3

    # a different prefix never reuses another prefix's listing
    asyncio.run(store.list("other/", limit=2, offset=2))
    assert paginate.call_count == 4
