import boto3
from typing import Any, Dict, List, Optional
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError
import logging

from image_ingest.exceptions import MetadataStoreException, TenantNotFound
from image_ingest.image_service.models import ImageRecord, owner_key
from image_ingest.repository import ImageRepository, TenantResolver
from image_ingest.settings import Settings

log = logging.getLogger(__name__)

UPLOADED_AT_INDEX = "UploadedAtIndex"

def dynamodb_resource(settings: Settings):
    session = boto3.session.Session(region_name=settings.aws_region)
    kwargs = {
        "aws_access_key_id": settings.aws_access_key_id,
        "aws_secret_access_key": settings.aws_secret_access_key,
    }
    if settings.aws_endpoint_url:
        kwargs["endpoint_url"] = settings.aws_endpoint_url
    return session.resource("dynamodb", **kwargs)

def _is_conditional_failure(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"

# -------------------------
# DynamoDB Image Repository
# -------------------------
class DynamoDBImageRepository(ImageRepository):
    """
        Images table keyed by (owner_key, image_id).

        The owner pair is the partition key, so every read and write names
        its owner in the key itself; a local secondary index on
        ``uploaded_at`` serves newest-first listing.
    """

    def __init__(self, settings: Settings, resource=None):
        self.table_name = settings.images_table
        self.resource = resource or dynamodb_resource(settings)
        log.info("Initialized DynamoDB resource")

        # Ensure table exists at initialization
        self.ensure_table()
        self.table = self.resource.Table(self.table_name)

    # Refer here: https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/dynamodb/client/create_table.html
    def ensure_table(self):
        try:
            table = self.resource.Table(self.table_name)
            table.load()
        except ClientError:
            table = self.resource.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {"AttributeName": "owner_key", "KeyType": "HASH"},
                    {"AttributeName": "image_id", "KeyType": "RANGE"},
                ],
                AttributeDefinitions=[
                    {"AttributeName": "owner_key", "AttributeType": "S"},
                    {"AttributeName": "image_id", "AttributeType": "S"},
                    {"AttributeName": "uploaded_at", "AttributeType": "S"},
                ],
                LocalSecondaryIndexes=[
                    {
                        "IndexName": UPLOADED_AT_INDEX,
                        "KeySchema": [
                            {"AttributeName": "owner_key", "KeyType": "HASH"},
                            {"AttributeName": "uploaded_at", "KeyType": "RANGE"},
                        ],
                        "Projection": {"ProjectionType": "ALL"},
                    }
                ],
                BillingMode="PAY_PER_REQUEST",
            )
            table.wait_until_exists()
            log.info("Created table %s", self.table_name)

    def _key(self, image_id: str, user_id: str, tenant_id: str) -> Dict[str, str]:
        return {"owner_key": owner_key(user_id, tenant_id), "image_id": image_id}

    def add(self, record: ImageRecord) -> None:
        try:
            self.table.put_item(
                Item=record.to_item(),
                ConditionExpression="attribute_not_exists(image_id)",
            )
        except (BotoCoreError, ClientError) as e:
            log.error(f"DynamoDB put_item failed: {e}")
            raise MetadataStoreException(f"Failed to save image metadata: {e}") from e
        log.debug("Inserted metadata %s", record.image_id)

    def _get_item(self, image_id: str, user_id: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        try:
            resp = self.table.get_item(Key=self._key(image_id, user_id, tenant_id), ConsistentRead=True)
        except (BotoCoreError, ClientError) as e:
            log.error(f"DynamoDB get_item failed: {e}")
            raise MetadataStoreException(f"Failed to get image metadata: {e}") from e
        return resp.get("Item")

    def get_owned(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        item = self._get_item(image_id, user_id, tenant_id)
        if not item or item.get("is_deleted"):
            return None
        return ImageRecord.from_item(item)

    def get_deleted(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        item = self._get_item(image_id, user_id, tenant_id)
        if not item or not item.get("is_deleted"):
            return None
        return ImageRecord.from_item(item)

    def list_owned(self, user_id: str, tenant_id: str) -> List[ImageRecord]:
        query_kwargs = {
            "IndexName": UPLOADED_AT_INDEX,
            "KeyConditionExpression": Key("owner_key").eq(owner_key(user_id, tenant_id)),
            "FilterExpression": Attr("is_deleted").eq(False),
            "ScanIndexForward": False,
        }
        items = []
        try:
            while True:
                resp = self.table.query(**query_kwargs)
                items.extend(resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as e:
            log.error(f"DynamoDB query failed: {e}")
            raise MetadataStoreException(f"Failed to list images: {e}") from e
        return [ImageRecord.from_item(it) for it in items]

    def mark_deleted(self, image_id: str, user_id: str, tenant_id: str) -> bool:
        try:
            self.table.update_item(
                Key=self._key(image_id, user_id, tenant_id),
                UpdateExpression="SET is_deleted = :t",
                ConditionExpression="attribute_exists(image_id) AND is_deleted = :f",
                ExpressionAttributeValues={":t": True, ":f": False},
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            log.error(f"DynamoDB update_item failed: {e}")
            raise MetadataStoreException(f"Failed to delete image metadata: {e}") from e
        except BotoCoreError as e:
            log.error(f"DynamoDB update_item failed: {e}")
            raise MetadataStoreException(f"Failed to delete image metadata: {e}") from e
        log.debug("Soft-deleted metadata %s", image_id)
        return True

    def fill_urls(self, image_id, user_id, tenant_id, original_url=None, thumbnail_url=None) -> None:
        for attribute, value in (("original_url", original_url), ("thumbnail_url", thumbnail_url)):
            if not value:
                continue
            try:
                self.table.update_item(
                    Key=self._key(image_id, user_id, tenant_id),
                    UpdateExpression=f"SET {attribute} = :u",
                    ConditionExpression=f"attribute_exists(image_id) AND attribute_not_exists({attribute})",
                    ExpressionAttributeValues={":u": value},
                )
            except ClientError as e:
                # already filled by someone else
                if _is_conditional_failure(e):
                    continue
                log.error(f"DynamoDB update_item failed: {e}")
                raise MetadataStoreException(f"Failed to update image URLs: {e}") from e
            except BotoCoreError as e:
                log.error(f"DynamoDB update_item failed: {e}")
                raise MetadataStoreException(f"Failed to update image URLs: {e}") from e

    def close(self):
        log.info("Closed DynamoDB resource")

# -------------------------
# DynamoDB Tenant Directory
# -------------------------
class DynamoDBTenantResolver(TenantResolver):
    """Reads tenants from a table keyed by ``tenant_id``."""

    def __init__(self, settings: Settings, resource=None):
        self.table_name = settings.tenants_table
        self.resource = resource or dynamodb_resource(settings)
        self.ensure_table()
        self.table = self.resource.Table(self.table_name)

    def ensure_table(self):
        try:
            table = self.resource.Table(self.table_name)
            table.load()
        except ClientError:
            table = self.resource.create_table(
                TableName=self.table_name,
                KeySchema=[{"AttributeName": "tenant_id", "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": "tenant_id", "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
            )
            table.wait_until_exists()
            log.info("Created table %s", self.table_name)

    def get_storage_container(self, tenant_id: str) -> str:
        try:
            resp = self.table.get_item(Key={"tenant_id": tenant_id})
        except (BotoCoreError, ClientError) as e:
            log.error(f"DynamoDB tenant lookup failed: {e}")
            raise MetadataStoreException(f"Failed to look up tenant: {e}") from e
        item = resp.get("Item")
        if not item or not item.get("is_active", True) or not item.get("storage_container"):
            raise TenantNotFound(tenant_id)
        return item["storage_container"]

    def close(self):
        log.info("Closed DynamoDB resource")
