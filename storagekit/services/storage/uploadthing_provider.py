import base64
import binascii
import json
import logging
from typing import Any

import httpx

from storagekit.core.config import StorageSettings
from storagekit.core.exceptions import ConfigurationMissingError
from storagekit.core.exceptions import StorageError
from storagekit.core.exceptions import UploadFailedError
from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import UploadOptions
from storagekit.models.file_models import UploadResult

logger = logging.getLogger(__name__)

API_URL = "https://api.uploadthing.com"
FILE_URL = "https://utfs.io/f"

timeout_config = httpx.Timeout(10.0, read=120.0)


def _api_key_from_token(token: str) -> str | None:
    """Decode the base64 JSON UploadThing token and return its ``apiKey``."""
    try:
        payload = json.loads(base64.b64decode(token + "=" * (-len(token) % 4)))
    except (binascii.Error, ValueError):
        logger.error("UploadThing token is not valid base64 JSON")
        return None
    return payload.get("apiKey") if isinstance(payload, dict) else None


class UploadThingProvider:
    """Managed upload service: requests a presigned target, then sends the bytes to it."""

    name = "uploadthing"

    def __init__(self, settings: StorageSettings, client: httpx.AsyncClient | None = None) -> None:
        api_key = settings.uploadthing_secret or (_api_key_from_token(settings.uploadthing_token) if settings.uploadthing_token else None)
        if not api_key:
            raise ConfigurationMissingError("UploadThing credentials not configured (set UPLOADTHING_TOKEN or UPLOADTHING_SECRET).")

        self.default_folder = settings.default_folder
        self._headers = {"x-uploadthing-api-key": api_key}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_config)
        logger.info("UploadThing provider initialized")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send_to_target(self, target: dict[str, Any], file: FileDescriptor) -> None:
        upload_url = target.get("url")
        if not upload_url:
            raise UploadFailedError("Upload failed: No upload target returned")

        fields = target.get("fields")
        if fields:
            # Presigned POST: form fields first, file part last
            rsp = await self._client.post(upload_url, data=fields, files={"file": (file.name, file.content, file.mime_type)})
        else:
            rsp = await self._client.put(upload_url, content=file.content, headers={"Content-Type": file.mime_type})
        rsp.raise_for_status()

    async def upload(self, file: FileDescriptor, options: UploadOptions) -> UploadResult:
        folder = options.folder or self.default_folder
        payload = {
            "files": [{"name": file.name, "size": file.size, "type": file.mime_type}],
            "metadata": {"folder": folder, **options.metadata},
            "contentDisposition": "inline",
        }
        try:
            rsp = await self._client.post(f"{API_URL}/v6/uploadFiles", json=payload, headers=self._headers)
            rsp.raise_for_status()
            data = rsp.json().get("data") or []
            if not data:
                raise UploadFailedError("Upload failed: No URL returned")
            target = data[0]
            await self._send_to_target(target, file)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("UploadThing upload failed for %s: %s", file.name, e, exc_info=True)
            raise UploadFailedError(f"UploadThing upload failed for {file.name}") from e

        key = target.get("key")
        url = target.get("fileUrl") or (f"{FILE_URL}/{key}" if key else None)
        if not url:
            raise UploadFailedError("Upload failed: No URL returned")

        logger.info("Uploaded %s to UploadThing as %s", file.name, key)
        return UploadResult(url=url, key=key, name=file.name, size=file.size, mime_type=file.mime_type, provider=self.name)

    async def delete(self, url: str) -> None:
        _, sep, key = url.partition("/f/")
        if not sep or not key:
            raise StorageError(f"Invalid UploadThing URL: {url}")

        try:
            rsp = await self._client.post(f"{API_URL}/v6/deleteFiles", json={"fileKeys": [key]}, headers=self._headers)
            rsp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("UploadThing delete failed for %s: %s", key, e)
            raise StorageError(f"UploadThing delete failed for {key}") from e
        logger.info("Deleted UploadThing file: %s", key)
