import hashlib
import logging
import re
import time
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlparse

import httpx

from storagekit.core.config import StorageSettings
from storagekit.core.exceptions import ConfigurationMissingError
from storagekit.core.exceptions import StorageError
from storagekit.core.exceptions import UploadFailedError
from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import UploadOptions
from storagekit.models.file_models import UploadResult
from storagekit.services.storage.base import timestamped_name

logger = logging.getLogger(__name__)

API_URL = "https://api.cloudinary.com/v1_1"

_VERSION_SEGMENT = re.compile(r"^v\d+/")

timeout_config = httpx.Timeout(10.0, read=120.0)


def _escape_context(value: Any) -> str:
    return str(value).replace("|", r"\|").replace("=", r"\=")


class CloudinaryProvider:
    """Media CDN provider using Cloudinary's signed upload and destroy endpoints."""

    name = "cloudinary"

    def __init__(self, settings: StorageSettings, client: httpx.AsyncClient | None = None) -> None:
        self.cloud_name = settings.cloudinary_cloud_name
        self.api_key = settings.cloudinary_api_key
        self.api_secret = settings.cloudinary_api_secret
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise ConfigurationMissingError("Cloudinary credentials not configured")

        self.default_folder = settings.default_folder
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_config)
        logger.info("Cloudinary provider initialized for cloud: %s", self.cloud_name)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def sign(self, params: dict[str, Any]) -> str:
        """SHA-1 over the sorted ``key=value`` pairs followed by the API secret."""
        to_sign = "&".join(f"{k}={v}" for k, v in sorted(params.items()) if v not in (None, ""))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode()).hexdigest()

    def _signed(self, params: dict[str, Any]) -> dict[str, Any]:
        return {**params, "api_key": self.api_key, "signature": self.sign(params)}

    def parse_url(self, url: str) -> tuple[str, str]:
        """Return ``(resource_type, public_id)`` for a Cloudinary delivery URL."""
        head, sep, tail = urlparse(url).path.partition("/upload/")
        if not sep or not tail:
            raise StorageError(f"Invalid Cloudinary URL: {url}")

        resource_type = head.rstrip("/").rsplit("/", 1)[-1] or "image"
        tail = _VERSION_SEGMENT.sub("", tail)
        # raw assets keep their extension as part of the public id
        public_id = tail if resource_type == "raw" else str(PurePosixPath(tail).with_suffix(""))
        return resource_type, public_id

    async def upload(self, file: FileDescriptor, options: UploadOptions) -> UploadResult:
        folder = options.folder or self.default_folder
        public_id = f"{folder}/{timestamped_name(file.name, keep_extension=False)}"
        params: dict[str, Any] = {"public_id": public_id, "timestamp": int(time.time())}
        if options.metadata:
            params["context"] = "|".join(f"{k}={_escape_context(v)}" for k, v in options.metadata.items())

        try:
            rsp = await self._client.post(
                f"{API_URL}/{self.cloud_name}/auto/upload",
                data=self._signed(params),
                files={"file": (file.name, file.content, file.mime_type)},
            )
            rsp.raise_for_status()
            body = rsp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Cloudinary upload failed for %s: %s", file.name, e, exc_info=True)
            raise UploadFailedError(f"Cloudinary upload failed for {file.name}") from e

        url = body.get("secure_url") or body.get("url")
        if not url:
            raise UploadFailedError("Upload failed: No URL returned")

        logger.info("Uploaded %s to Cloudinary as %s", file.name, body.get("public_id", public_id))
        return UploadResult(
            url=url,
            key=body.get("public_id", public_id),
            name=file.name,
            size=file.size,
            mime_type=file.mime_type,
            provider=self.name,
        )

    async def delete(self, url: str) -> None:
        resource_type, public_id = self.parse_url(url)
        params = {"public_id": public_id, "timestamp": int(time.time())}
        try:
            rsp = await self._client.post(f"{API_URL}/{self.cloud_name}/{resource_type}/destroy", data=self._signed(params))
            rsp.raise_for_status()
            result = rsp.json().get("result")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Cloudinary delete failed for %s: %s", public_id, e)
            raise StorageError(f"Cloudinary delete failed for {public_id}") from e

        if result != "ok":
            raise StorageError(f"Cloudinary could not delete {public_id}: {result}")
        logger.info("Deleted Cloudinary asset: %s", public_id)
