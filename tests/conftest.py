import io
import json
import os
import pytest
from moto import mock_aws
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment variables BEFORE importing app modules
os.environ["BLOB_BACKEND"] = "memory"
os.environ["METADATA_BACKEND"] = "memory"
os.environ["STATIC_TENANTS"] = json.dumps({"t1": "tenant-one", "t2": "tenant-two"})

# Dummy AWS credentials for moto
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
# Clear the AWS_ENDPOINT_URL so moto mocks are used instead of localstack
os.environ.pop("AWS_ENDPOINT_URL", None)

from image_ingest.main import app
from image_ingest.image_service.service import ImageService
from image_ingest.repository import InMemoryImageRepository, StaticTenantResolver
from image_ingest.settings import Settings
from image_ingest.storage.memory import InMemoryBlobStore

TENANTS = {"t1": "tenant-one", "t2": "tenant-two"}


def make_image_bytes(size=(10, 10), fmt="PNG", mode="RGB", color="red"):
    """Generate a simple valid image in-memory."""
    img = Image.new(mode, size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_bytes():
    return make_image_bytes


@pytest.fixture
def settings(tmp_path):
    return Settings(
        blob_backend="memory",
        metadata_backend="memory",
        storage_base_path=str(tmp_path / "uploads"),
        blob_base_url="http://testserver/api/v1/images/blob",
        static_tenants=TENANTS,
        aws_endpoint_url=None,
        s3_public_endpoint=None,
    )


@pytest.fixture
def service(settings):
    return ImageService(
        blobs=InMemoryBlobStore(settings),
        repository=InMemoryImageRepository(),
        tenants=StaticTenantResolver(settings.static_tenants),
        settings=settings,
    )


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(scope="function")
def aws(aws_credentials):
    with mock_aws():
        yield


@pytest.fixture(scope="function")
def test_client():
    # lifespan wires a fresh in-memory service for every client
    with TestClient(app) as client:
        yield client
