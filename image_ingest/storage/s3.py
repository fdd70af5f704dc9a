import threading
from io import BytesIO
from typing import Optional, Set
import logging

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from image_ingest.exceptions import NotFound, StorageFailure
from image_ingest.settings import Settings
from image_ingest.storage.base import Blob, BlobStore

log = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"
_MISSING_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}
_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}

def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))

# -------------------------
# S3 Blob Store
# -------------------------
class S3BlobStore(BlobStore):
    """One bucket per container; content type is kept as object metadata."""

    def __init__(self, settings: Settings, client=None):
        self.region = settings.aws_region
        if client is None:
            session = boto3.session.Session(region_name=settings.aws_region)
            kwargs = {
                "aws_access_key_id": settings.aws_access_key_id,
                "aws_secret_access_key": settings.aws_secret_access_key,
            }
            if settings.aws_endpoint_url:
                kwargs["endpoint_url"] = settings.aws_endpoint_url
            client = session.client("s3", **kwargs)
        self.client = client
        self.public_endpoint = (settings.s3_public_endpoint or self.client.meta.endpoint_url).rstrip("/")
        self._known: Set[str] = set()
        self._lock = threading.Lock()
        log.info("Initialized S3 client")

    def locator(self, container: str, key: str) -> str:
        return f"{self.public_endpoint}/{container}/{key}"

    def ensure_container(self, container: str) -> None:
        with self._lock:
            if container in self._known:
                return
        try:
            self.client.head_bucket(Bucket=container)
            log.debug("Bucket %s already exists", container)
        except ClientError as e:
            if _error_code(e) not in _MISSING_CODES:
                log.error("Failed to check bucket %s: %s", container, e)
                raise StorageFailure(f"Failed to check container '{container}': {e}") from e
            self._create_bucket(container)
        except BotoCoreError as e:
            log.error("Failed to check bucket %s: %s", container, e)
            raise StorageFailure(f"Failed to check container '{container}': {e}") from e
        with self._lock:
            self._known.add(container)

    def _create_bucket(self, container: str) -> None:
        kwargs = {"Bucket": container}
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**kwargs)
            log.info("Created bucket %s", container)
        except ClientError as e:
            # lost a creation race with another first upload
            if _error_code(e) in _EXISTS_CODES:
                log.debug("Bucket %s created concurrently", container)
                return
            log.error("Failed to create bucket %s: %s", container, e)
            raise StorageFailure(f"Failed to create container '{container}': {e}") from e
        except BotoCoreError as e:
            log.error("Failed to create bucket %s: %s", container, e)
            raise StorageFailure(f"Failed to create container '{container}': {e}") from e

    def put(self, container: str, key: str, data: bytes, content_type: str) -> str:
        self.ensure_container(container)
        try:
            self.client.upload_fileobj(
                Fileobj=BytesIO(data),
                Bucket=container,
                Key=key,
                ExtraArgs={"ContentType": content_type, "CacheControl": CACHE_CONTROL},
            )
        except (BotoCoreError, ClientError, S3UploadFailedError) as e:
            log.error("S3 upload of %s/%s failed: %s", container, key, e)
            raise StorageFailure(f"Failed to upload '{key}' to container '{container}': {e}") from e
        log.debug("Uploaded %s to s3://%s/%s", key, container, key)
        return self.locator(container, key)

    def _exists(self, container: str, key: str) -> bool:
        try:
            self.client.head_object(Bucket=container, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            log.error("S3 head_object %s/%s failed: %s", container, key, e)
            raise StorageFailure(f"Failed to look up '{key}' in container '{container}': {e}") from e
        except BotoCoreError as e:
            log.error("S3 head_object %s/%s failed: %s", container, key, e)
            raise StorageFailure(f"Failed to look up '{key}' in container '{container}': {e}") from e

    def resolve(self, container: str, key: str) -> str:
        if not self._exists(container, key):
            raise NotFound(container, key)
        return self.locator(container, key)

    def delete(self, container: str, key: str) -> bool:
        # delete_object succeeds on missing keys, so check first to report it
        if not self._exists(container, key):
            return False
        try:
            self.client.delete_object(Bucket=container, Key=key)
        except (BotoCoreError, ClientError) as e:
            log.error("S3 delete of %s/%s failed: %s", container, key, e)
            raise StorageFailure(f"Failed to delete '{key}' from container '{container}': {e}") from e
        log.debug("Deleted s3://%s/%s", container, key)
        return True

    def get(self, container: str, key: str) -> Optional[Blob]:
        try:
            resp = self.client.get_object(Bucket=container, Key=key)
            data = resp["Body"].read()
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return None
            log.error("S3 get_object %s/%s failed: %s", container, key, e)
            raise StorageFailure(f"Failed to read '{key}' from container '{container}': {e}") from e
        except BotoCoreError as e:
            log.error("S3 get_object %s/%s failed: %s", container, key, e)
            raise StorageFailure(f"Failed to read '{key}' from container '{container}': {e}") from e
        return data, resp.get("ContentType") or "application/octet-stream"

    def close(self):
        log.info("Closed S3 client")
