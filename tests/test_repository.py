from datetime import datetime, timedelta, timezone

import boto3
import pytest

from image_ingest.exceptions import TenantNotFound
from image_ingest.image_service.models import ImageRecord, Tenant
from image_ingest.repository import InMemoryImageRepository, StaticTenantResolver
from image_ingest.storage.dynamodb import DynamoDBImageRepository, DynamoDBTenantResolver


@pytest.fixture(params=["memory", "dynamodb"])
def repo(request, settings):
    if request.param == "memory":
        return InMemoryImageRepository()
    request.getfixturevalue("aws")
    return DynamoDBImageRepository(settings)


def make_record(user="u1", tenant="t1", **overrides):
    fields = dict(
        owner_user_id=user,
        owner_tenant_id=tenant,
        original_file_name="cat.png",
        content_type="image/png",
        storage_key="original_1.png",
        thumbnail_storage_key="thumb_1.png",
        file_size_bytes=123,
        width=10,
        height=10,
        thumbnail_width=10,
        thumbnail_height=10,
        description="a cat",
        tags="pets,cats",
    )
    fields.update(overrides)
    return ImageRecord(**fields)


def test_add_then_get_owned(repo):
    record = make_record(original_url="http://x/o", thumbnail_url="http://x/t")
    repo.add(record)

    found = repo.get_owned(record.image_id, "u1", "t1")
    assert found == record


def test_get_owned_is_scoped_to_owner(repo):
    record = make_record()
    repo.add(record)

    assert repo.get_owned(record.image_id, "u2", "t1") is None
    assert repo.get_owned(record.image_id, "u1", "t2") is None
    assert repo.get_owned("missing", "u1", "t1") is None


def test_list_owned_newest_first(repo):
    now = datetime.now(timezone.utc)
    old = make_record(uploaded_at=now - timedelta(hours=2))
    mid = make_record(uploaded_at=now - timedelta(hours=1))
    new = make_record(uploaded_at=now)
    for r in (mid, old, new):
        repo.add(r)
    repo.add(make_record(user="u2"))
    repo.add(make_record(tenant="t2"))

    listed = repo.list_owned("u1", "t1")
    assert [r.image_id for r in listed] == [new.image_id, mid.image_id, old.image_id]


def test_mark_deleted_hides_record(repo):
    record = make_record()
    repo.add(record)

    assert repo.mark_deleted(record.image_id, "u1", "t1") is True
    assert repo.get_owned(record.image_id, "u1", "t1") is None
    assert repo.list_owned("u1", "t1") == []
    assert repo.get_deleted(record.image_id, "u1", "t1").is_deleted is True
    # already deleted
    assert repo.mark_deleted(record.image_id, "u1", "t1") is False


def test_mark_deleted_foreign_or_missing(repo):
    record = make_record()
    repo.add(record)

    assert repo.mark_deleted(record.image_id, "u2", "t1") is False
    assert repo.mark_deleted(record.image_id, "u1", "t2") is False
    assert repo.mark_deleted("missing", "u1", "t1") is False
    assert repo.get_owned(record.image_id, "u1", "t1") is not None


def test_get_deleted_ignores_live_records(repo):
    record = make_record()
    repo.add(record)
    assert repo.get_deleted(record.image_id, "u1", "t1") is None


def test_fill_urls_only_fills_absent(repo):
    record = make_record(original_url="http://x/original")
    repo.add(record)

    repo.fill_urls(record.image_id, "u1", "t1", original_url="http://y/original", thumbnail_url="http://y/thumb")
    found = repo.get_owned(record.image_id, "u1", "t1")
    assert found.original_url == "http://x/original"
    assert found.thumbnail_url == "http://y/thumb"

    repo.fill_urls(record.image_id, "u1", "t1", thumbnail_url="http://z/thumb")
    assert repo.get_owned(record.image_id, "u1", "t1").thumbnail_url == "http://y/thumb"


def test_fill_urls_and_delete_commute(repo):
    record = make_record()
    repo.add(record)

    repo.mark_deleted(record.image_id, "u1", "t1")
    repo.fill_urls(record.image_id, "u1", "t1", thumbnail_url="http://y/thumb")
    deleted = repo.get_deleted(record.image_id, "u1", "t1")
    assert deleted.is_deleted is True
    assert deleted.thumbnail_url == "http://y/thumb"


def test_fill_urls_never_creates_records(repo):
    repo.fill_urls("missing", "u1", "t1", thumbnail_url="http://y/thumb")
    assert repo.get_owned("missing", "u1", "t1") is None
    assert repo.list_owned("u1", "t1") == []


# ------------------------------
# tenant resolvers
# ------------------------------

def test_static_tenant_resolver():
    resolver = StaticTenantResolver({"t1": "tenant-one"})
    assert resolver.get_storage_container("t1") == "tenant-one"
    with pytest.raises(TenantNotFound):
        resolver.get_storage_container("t9")

    resolver.add(Tenant(tenant_id="t3", storage_container="tenant-three", is_active=False))
    with pytest.raises(TenantNotFound):
        resolver.get_storage_container("t3")


def test_dynamodb_tenant_resolver(aws, settings):
    resolver = DynamoDBTenantResolver(settings)
    table = boto3.resource("dynamodb", region_name="us-east-1").Table(settings.tenants_table)
    table.put_item(Item={"tenant_id": "t1", "name": "One", "subdomain": "one", "storage_container": "tenant-one", "is_active": True})
    table.put_item(Item={"tenant_id": "t2", "name": "Two", "subdomain": "two", "storage_container": "tenant-two", "is_active": False})

    assert resolver.get_storage_container("t1") == "tenant-one"
    with pytest.raises(TenantNotFound):
        resolver.get_storage_container("t2")
    with pytest.raises(TenantNotFound):
        resolver.get_storage_container("t9")


def test_dynamodb_repository_creates_table(aws, settings):
    DynamoDBImageRepository(settings)
    tables = boto3.client("dynamodb", region_name="us-east-1").list_tables()["TableNames"]
    assert settings.images_table in tables
