import pytest

from storagekit.core.config import StorageSettings
from storagekit.core.exceptions import StorageError
from storagekit.core.exceptions import UploadFailedError
from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import UploadResult
from storagekit.services.storage_service import StorageService


class FakeProvider:
    """In-memory provider recording every upload and delete."""

    name = "fake"

    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_uploads = set()
        self.fail_deletes = set()

    async def upload(self, file, options):
        if file.name in self.fail_uploads:
            raise UploadFailedError(f"cannot upload {file.name}")
        self.uploaded.append({"name": file.name, "folder": options.folder, "metadata": dict(options.metadata)})
        key = f"{options.folder}/{file.name}"
        return UploadResult(
            url=f"https://files.test/{key}",
            key=key,
            name=file.name,
            size=file.size,
            mime_type=file.mime_type,
            provider=self.name,
        )

    async def delete(self, url):
        if url in self.fail_deletes:
            raise StorageError(f"cannot delete {url}")
        self.deleted.append(url)


# Fixture factory to create in-memory files with name, type and content
@pytest.fixture
def make_file():
    def _make_file(name: str = "photo.png", mime_type: str = "image/png", content: bytes = b"data", size: int | None = None):
        return FileDescriptor(name=name, mime_type=mime_type, content=content, size=len(content) if size is None else size)

    return _make_file


@pytest.fixture
def storage_settings():
    return StorageSettings(_env_file=None, provider="s3", aws_s3_bucket="test-bucket", max_file_size="1MB")


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def storage(storage_settings, fake_provider):
    return StorageService(storage_settings, provider=fake_provider)
