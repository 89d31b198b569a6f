# storagekit/services/storage/s3_provider.py
import asyncio
import logging
from typing import Any
from urllib.parse import urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError

from storagekit.core.config import StorageSettings
from storagekit.core.exceptions import ConfigurationMissingError
from storagekit.core.exceptions import StorageError
from storagekit.core.exceptions import UploadFailedError
from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import UploadOptions
from storagekit.models.file_models import UploadResult
from storagekit.services.storage.base import timestamped_name

logger = logging.getLogger(__name__)

_S3_HOST_MARKER = ".s3.amazonaws.com/"


class S3Provider:
    """Uploads to an S3 bucket, optionally served through a CDN.

    boto3 is blocking, so every client call runs in a worker thread.
    """

    name = "s3"

    def __init__(self, settings: StorageSettings, client: Any | None = None) -> None:
        if not settings.aws_s3_bucket:
            raise ConfigurationMissingError("AWS S3 bucket not configured (set AWS_S3_BUCKET or s3.bucket).")

        self.bucket = settings.aws_s3_bucket
        self.cdn_url = settings.aws_cdn_url
        self.default_folder = settings.default_folder

        if client is None:
            session = boto3.session.Session(
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                region_name=settings.aws_region,
            )
            client = session.client("s3", endpoint_url=settings.aws_endpoint_url, config=Config(signature_version="s3v4"))
        self._s3 = client
        logger.info("S3 provider initialized for bucket: %s in region: %s", self.bucket, settings.aws_region)

    def url_for(self, key: str) -> str:
        if self.cdn_url:
            return f"{self.cdn_url}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def key_from_url(self, url: str) -> str:
        """Extract the object key from a bucket, CDN or arbitrary URL."""
        if _S3_HOST_MARKER in url:
            key = url.split(_S3_HOST_MARKER, 1)[1]
        elif self.cdn_url and url.startswith(f"{self.cdn_url}/"):
            key = url[len(self.cdn_url) + 1 :]
        else:
            key = urlparse(url).path.lstrip("/")

        if not key:
            raise StorageError(f"Could not extract key from URL: {url}")
        return key

    async def upload(self, file: FileDescriptor, options: UploadOptions) -> UploadResult:
        folder = options.folder or self.default_folder
        key = f"{folder}/{timestamped_name(file.name)}"
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=file.content,
                ContentType=file.mime_type,
                Metadata={str(k): str(v) for k, v in options.metadata.items()},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Error uploading %s to S3 key %s: %s", file.name, key, e, exc_info=True)
            raise UploadFailedError(f"S3 upload failed for {file.name}") from e

        logger.info("Uploaded %s to S3 bucket %s as %s", file.name, self.bucket, key)
        return UploadResult(
            url=self.url_for(key),
            key=key,
            name=file.name,
            size=file.size,
            mime_type=file.mime_type,
            provider=self.name,
        )

    async def delete(self, url: str) -> None:
        key = self.key_from_url(url)
        try:
            await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error("Error deleting S3 object %s: %s", key, e)
            raise StorageError(f"S3 delete failed for {key}") from e
        logger.info("Deleted S3 object: %s", key)
