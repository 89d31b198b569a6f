"""Provider-agnostic upload/delete service.

Selects a provider by configured name, validates files against size and type
constraints before any network call, and fans uploads out concurrently.
"""

import asyncio
import logging
from collections.abc import Mapping
from collections.abc import Sequence
from typing import Any
from typing import overload

from storagekit.core.config import StorageSettings
from storagekit.core.config import normalize_config
from storagekit.core.exceptions import TooManyFilesError
from storagekit.core.validation import validate_file
from storagekit.models.file_models import FieldDefinition
from storagekit.models.file_models import FileConstraints
from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import UploadOptions
from storagekit.models.file_models import UploadResult
from storagekit.services.storage.base import StorageProvider
from storagekit.services.storage.registry import create_provider

logger = logging.getLogger(__name__)

FileInput = FileDescriptor | Sequence[FileDescriptor]


def as_file_list(files: FileDescriptor | Sequence[FileDescriptor] | None) -> list[FileDescriptor]:
    if files is None:
        return []
    if isinstance(files, FileDescriptor):
        return [files]
    return list(files)


def _as_options(options: UploadOptions | Mapping[str, Any] | None) -> UploadOptions:
    if options is None:
        return UploadOptions()
    if isinstance(options, UploadOptions):
        return options
    return UploadOptions.model_validate(dict(options))


class StorageService:
    """Uniform ``upload``/``delete`` over the configured storage provider."""

    def __init__(self, settings: StorageSettings | None = None, provider: StorageProvider | None = None) -> None:
        self.settings = settings or StorageSettings()
        self.provider = provider or create_provider(self.settings)
        logger.info("Storage service ready with provider: %s", self.provider.name)

    def _constraints(self, options: UploadOptions) -> FileConstraints:
        return FileConstraints(
            max_size=options.max_file_size if options.max_file_size is not None else self.settings.max_file_size,
            allowed_types=options.allowed_types,
            allowed_categories=options.allowed_categories,
        )

    @overload
    async def upload(self, files: FileDescriptor, options: UploadOptions | Mapping[str, Any] | None = None) -> UploadResult: ...

    @overload
    async def upload(self, files: Sequence[FileDescriptor], options: UploadOptions | Mapping[str, Any] | None = None) -> list[UploadResult]: ...

    async def upload(self, files: FileInput, options: UploadOptions | Mapping[str, Any] | None = None) -> UploadResult | list[UploadResult]:
        """Upload one file or a sequence of files.

        Every file is validated before anything is sent. Uploads then run
        concurrently; the first failure propagates and uploads that already
        completed are left in place.

        Returns:
            A single result for a single file, a list for a sequence.
        """
        opts = _as_options(options)
        is_single = isinstance(files, FileDescriptor)
        file_list = as_file_list(files)

        constraints = self._constraints(opts)
        for file in file_list:
            validate_file(file, constraints)

        try:
            results = await asyncio.gather(*(self.provider.upload(file, opts) for file in file_list))
        except Exception:
            logger.error("Upload of %d file(s) to %s failed; completed uploads are not rolled back", len(file_list), opts.folder or self.settings.default_folder)
            raise

        return results[0] if is_single else list(results)

    async def delete(self, url: str) -> None:
        """Delete a previously uploaded file by URL."""
        await self.provider.delete(url)

    async def process(
        self,
        file_fields: Mapping[str, FileInput | None],
        options: UploadOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, UploadResult | list[UploadResult]]:
        """Upload several fields concurrently, each into ``<folder>/<field>``.

        Empty fields are skipped; a failure in any field fails the whole call.
        """
        opts = _as_options(options)
        results: dict[str, UploadResult | list[UploadResult]] = {}

        async def _upload_field(field_name: str, files: FileInput) -> None:
            folder = f"{opts.folder}/{field_name}" if opts.folder else field_name
            results[field_name] = await self.upload(files, opts.model_copy(update={"folder": folder}))

        await asyncio.gather(*(_upload_field(name, files) for name, files in file_fields.items() if files))
        return results

    def extract_files(
        self,
        uploaded: Mapping[str, FileInput],
        field_config: Mapping[str, FieldDefinition] | None = None,
    ) -> dict[str, list[FileDescriptor]]:
        """Pick the configured fields out of an uploaded-files mapping.

        With no field config every uploaded field is returned. Otherwise each
        configured field is normalized to a list and checked against ``max_count``.

        Raises:
            TooManyFilesError: A field holds more files than its ``max_count``.
        """
        if not field_config:
            return {name: as_file_list(files) for name, files in uploaded.items()}

        files: dict[str, list[FileDescriptor]] = {}
        for field_name, definition in field_config.items():
            field_files = as_file_list(uploaded.get(field_name))
            if not field_files:
                continue
            if definition.max_count and len(field_files) > definition.max_count:
                raise TooManyFilesError(f"Too many files for {field_name}. Max: {definition.max_count}")
            files[field_name] = field_files
        return files

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()


def create_storage(config: StorageSettings | Mapping[str, Any] | None = None) -> StorageService:
    """Factory for a StorageService from settings or a raw configuration mapping."""
    if config is None or isinstance(config, StorageSettings):
        return StorageService(config)

    return StorageService(normalize_config(config))
