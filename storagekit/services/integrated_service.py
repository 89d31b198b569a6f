"""Wraps an async CRUD service with file upload and cleanup."""

import logging
from collections.abc import Mapping
from typing import Any

from storagekit.models.file_models import ModelFileConfig
from storagekit.services.model_file_service import ModelFileService
from storagekit.services.model_file_service import create_model_file_service

logger = logging.getLogger(__name__)

NEW_RECORD_ID = "new"


class StorageIntegratedService:
    """CRUD service whose writes upload files and whose deletes remove them.

    ``base_service`` must provide async ``create``, ``get_by_id``, ``update``
    and ``delete``. Any other attribute is looked up on ``base_service``.
    """

    def __init__(self, base_service: Any, file_service: ModelFileService) -> None:
        self.base_service = base_service
        self.file_service = file_service

    def __getattr__(self, name: str) -> Any:
        return getattr(self.base_service, name)

    async def create(self, data: Mapping[str, Any], files: Any = None) -> Any:
        file_urls: dict[str, Any] = {}
        if files:
            file_urls = await self.file_service.process_files(files, {"id": NEW_RECORD_ID})
        return await self.base_service.create({**data, **file_urls})

    async def update(self, record_id: Any, data: Mapping[str, Any], files: Any = None) -> Any:
        existing = await self.base_service.get_by_id(record_id)

        file_urls: dict[str, Any] = {}
        if files:
            file_urls = await self.file_service.process_files(files, {"id": record_id})
            if existing is not None:
                await self.file_service.cleanup_replaced_files(existing, file_urls)

        return await self.base_service.update(record_id, {**data, **file_urls})

    async def delete(self, record_id: Any) -> Any:
        record = await self.base_service.get_by_id(record_id)
        if record is not None:
            await self.file_service.delete_files(record)
        else:
            logger.warning("Record %s not found; no files to delete", record_id)
        return await self.base_service.delete(record_id)

    def get_upload_middleware(self) -> Any:
        return self.file_service.get_upload_middleware()

    async def process_files(self, request: Any, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return await self.file_service.process_files(request, context)

    async def delete_files(self, record: Any) -> None:
        await self.file_service.delete_files(record)


def create_storage_integrated_service(
    base_service: Any,
    model_name: str,
    model_file_config: ModelFileConfig | Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> StorageIntegratedService:
    """Wrap ``base_service`` with a ModelFileService for ``model_name``."""
    file_service = create_model_file_service(model_name, model_file_config, **kwargs)
    return StorageIntegratedService(base_service, file_service)
