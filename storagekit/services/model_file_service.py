# storagekit/services/model_file_service.py
import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from storagekit.api.middleware import UploadFieldSpec
from storagekit.api.middleware import UploadMiddleware
from storagekit.api.middleware import UploadMiddlewareConfig
from storagekit.api.middleware import create_upload_middleware
from storagekit.core.config import DEFAULT_MAX_FILE_SIZE
from storagekit.core.config import StorageSettings
from storagekit.core.config import load_settings
from storagekit.core.exceptions import TooManyFilesError
from storagekit.core.folders import resolve_folder_path
from storagekit.core.validation import validate_file
from storagekit.models.file_models import FieldDefinition
from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import ModelFileConfig
from storagekit.models.file_models import UploadOptions
from storagekit.services.storage_service import StorageService
from storagekit.services.storage_service import as_file_list

logger = logging.getLogger(__name__)


def _field_value(record: Any, field_name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(field_name)
    return getattr(record, field_name, None)


def _url_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [url for url in value if url]


class ModelFileService:
    """File handling for one entity type.

    Maps each configured file field to its validation rules and a folder
    under the model's folder template, uploads request files, and deletes
    files that a record no longer references.

    The storage backend is initialized lazily: the first operation starts a
    single shared initialization task that every concurrent caller awaits.
    """

    def __init__(
        self,
        model_name: str,
        model_file_config: ModelFileConfig | Mapping[str, Any] | None = None,
        project_root: str | Path | None = None,
        storage: StorageService | None = None,
        settings: StorageSettings | None = None,
    ) -> None:
        self.model_name = model_name
        self.model_file_config = self.normalize_model_config(model_file_config)
        self.project_root = Path(project_root) if project_root else Path.cwd()

        self.storage = storage
        self.storage_settings = settings or (storage.settings if storage else None)
        self._init_task: asyncio.Future[StorageService] | None = None

    @staticmethod
    def normalize_model_config(config: ModelFileConfig | Mapping[str, Any] | None) -> ModelFileConfig:
        if config is None:
            return ModelFileConfig()
        if isinstance(config, ModelFileConfig):
            return config
        return ModelFileConfig.model_validate(dict(config))

    @property
    def file_fields(self) -> dict[str, FieldDefinition]:
        return self.model_file_config.file_fields

    async def _initialize_storage(self) -> StorageService:
        try:
            if self.storage is None:
                if self.storage_settings is None:
                    self.storage_settings = await asyncio.to_thread(load_settings, self.project_root)
                self.storage = StorageService(self.storage_settings)
            logger.info("ModelFileService initialized for %s", self.model_name)
            return self.storage
        except Exception as e:
            logger.error("Failed to initialize storage for %s: %s", self.model_name, e)
            raise

    async def _get_storage(self) -> StorageService:
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize_storage())
        return await self._init_task

    def get_upload_middleware_config(self) -> UploadMiddlewareConfig | None:
        """Multipart settings for this model: one part per field, the largest field size limit."""
        if not self.file_fields:
            return None

        field_limits = [definition.max_size for definition in self.file_fields.values() if definition.max_size is not None]
        if field_limits:
            max_file_size = max(field_limits)
        elif self.model_file_config.max_file_size is not None:
            max_file_size = self.model_file_config.max_file_size
        elif self.storage_settings is not None:
            max_file_size = self.storage_settings.max_file_size
        else:
            max_file_size = DEFAULT_MAX_FILE_SIZE

        allowed_types: list[str] = []
        allowed_categories: list[str] = []
        # A field without an allow list accepts any type, so no early type check applies
        if all(definition.allowed_types or definition.allowed_categories for definition in self.file_fields.values()):
            for definition in self.file_fields.values():
                allowed_types.extend(t for t in definition.allowed_types if t not in allowed_types)
                allowed_categories.extend(c for c in definition.allowed_categories if c not in allowed_categories)

        limits: dict[str, Any] = {}
        if self.storage_settings is not None:
            limits["max_files"] = self.storage_settings.max_files

        return UploadMiddlewareConfig(
            fields=[UploadFieldSpec(name=name, max_count=definition.max_count) for name, definition in self.file_fields.items()],
            max_file_size=max_file_size,
            allowed_types=allowed_types,
            allowed_categories=allowed_categories,
            **limits,
        )

    def get_upload_middleware(self) -> UploadMiddleware | None:
        """FastAPI dependency that receives this model's multipart uploads, or None without file fields."""
        config = self.get_upload_middleware_config()
        return create_upload_middleware(config) if config else None

    @staticmethod
    def _uploaded_files(request: Any) -> Mapping[str, Any]:
        # Starlette requests are Mappings over the ASGI scope, so check state first
        state = getattr(request, "state", None)
        if state is not None:
            return getattr(state, "uploaded_files", None) or {}
        if isinstance(request, Mapping):
            return request
        return getattr(request, "uploaded_files", None) or {}

    async def process_files(self, request: Any, context: Mapping[str, Any] | None = None) -> dict[str, str | list[str]]:
        """Validate and upload the request's files field by field.

        Args:
            request: A mapping of field name to file(s), or a request carrying
                ``state.uploaded_files`` as populated by the upload middleware.
            context: Folder template values, e.g. ``{"id": 123}``.

        Returns:
            Field name to URL for single-file fields (``max_count == 1``), or to
            a list of URLs otherwise. Fields without files are omitted.

        Raises:
            TooManyFilesError: A field holds more files than its ``max_count``.
            FileValidationError: A file fails its field's constraints.
            FolderTemplateError: The folder template needs a value missing from ``context``.
        """
        context = dict(context or {})
        uploaded = self._uploaded_files(request)

        # Validate every field before any upload is sent
        pending: dict[str, list[FileDescriptor]] = {}
        for field_name, definition in self.file_fields.items():
            files = as_file_list(uploaded.get(field_name))
            if not files:
                continue
            if definition.max_count and len(files) > definition.max_count:
                logger.warning("Rejected %s.%s: %d files, max %d", self.model_name, field_name, len(files), definition.max_count)
                raise TooManyFilesError(f"Too many files for {field_name}. Max: {definition.max_count}")
            constraints = definition.constraints()
            for file in files:
                validate_file(file, constraints)
            pending[field_name] = files

        if not pending:
            return {}

        base_folder = resolve_folder_path(self.model_file_config.folder_template, {"model": self.model_name.lower(), **context})
        storage = await self._get_storage()

        async def _upload_field(field_name: str, files: list[FileDescriptor]) -> tuple[str, str | list[str]]:
            definition = self.file_fields[field_name]
            options = UploadOptions(
                folder=f"{base_folder}/{field_name}",
                allowed_types=definition.allowed_types,
                allowed_categories=definition.allowed_categories,
                max_file_size=definition.max_size,
                metadata={"model": self.model_name, "field": field_name, **context, **definition.metadata},
            )
            uploaded_results = await storage.upload(files, options)
            urls = [result.url for result in uploaded_results]
            return field_name, urls[0] if definition.is_single else urls

        results = await asyncio.gather(*(_upload_field(name, files) for name, files in pending.items()))
        logger.info("Uploaded %d field(s) for %s", len(results), self.model_name)
        return dict(results)

    async def _delete_best_effort(self, storage: StorageService, urls: list[str], label: str) -> None:
        async def _delete(url: str) -> None:
            try:
                await storage.delete(url)
            except Exception as e:
                logger.warning("Failed to delete %s %s: %s", label, url, e)

        await asyncio.gather(*(_delete(url) for url in urls))

    async def delete_files(self, record: Any) -> None:
        """Delete every file URL the record holds in a configured field. Failures are logged, not raised."""
        storage = await self._get_storage()
        urls = [url for field_name in self.file_fields for url in _url_list(_field_value(record, field_name))]
        await self._delete_best_effort(storage, urls, "file")

    async def cleanup_replaced_files(self, existing_record: Any, new_file_urls: Mapping[str, Any]) -> None:
        """Delete URLs present in the existing record but absent from the new URLs, per field."""
        storage = await self._get_storage()
        to_delete: list[str] = []
        for field_name in self.file_fields:
            existing_urls = _url_list(_field_value(existing_record, field_name))
            new_urls = _url_list(_field_value(new_file_urls, field_name))
            if not existing_urls or not new_urls:
                continue
            to_delete.extend(url for url in existing_urls if url not in new_urls)

        await self._delete_best_effort(storage, to_delete, "old file")


def create_model_file_service(
    model_name: str,
    model_file_config: ModelFileConfig | Mapping[str, Any] | None = None,
    project_root: str | Path | None = None,
    **kwargs: Any,
) -> ModelFileService:
    """Helper function to create a ModelFileService."""
    return ModelFileService(model_name, model_file_config, project_root, **kwargs)
