"""Receives multipart uploads in FastAPI and buffers them as FileDescriptors.

Use the middleware as a route dependency::

    upload = create_upload_middleware(UploadMiddlewareConfig(fields=[UploadFieldSpec(name="avatar")]))

    @router.post("/users/{user_id}")
    async def update_user(user_id: int, files=Depends(upload)): ...

The parsed mapping is returned and also stored on ``request.state.uploaded_files``.
"""

import asyncio
import logging

import magic
from fastapi import HTTPException
from fastapi import Request
from pydantic import BaseModel
from pydantic import ByteSize
from pydantic import Field
from starlette.datastructures import UploadFile

from storagekit.core.config import DEFAULT_MAX_FILE_SIZE
from storagekit.core.exceptions import FileValidationError
from storagekit.core.validation import validate_file
from storagekit.models.file_models import FileDescriptor

logger = logging.getLogger(__name__)

DEFAULT_FIELD = "file"
GENERIC_MIME = "application/octet-stream"


class UploadFieldSpec(BaseModel):
    """A file part name and how many parts may carry it; None leaves only the total limit."""

    name: str
    max_count: int | None = Field(default=1, ge=1)


class UploadMiddlewareConfig(BaseModel):
    """Multipart limits: accepted file parts, per-file size, total file count and accepted types."""

    fields: list[UploadFieldSpec] = Field(default_factory=list)
    max_file_size: ByteSize = ByteSize(DEFAULT_MAX_FILE_SIZE)
    max_files: int = 10
    allowed_types: list[str] = Field(default_factory=list)
    allowed_categories: list[str] = Field(default_factory=list)


async def _detect_mime_type(upload: UploadFile, contents: bytes) -> str:
    declared = upload.content_type
    if declared and declared != GENERIC_MIME:
        return declared
    if not contents:
        return declared or GENERIC_MIME
    try:
        return await asyncio.to_thread(magic.from_buffer, contents, mime=True)
    except Exception as mime_err:
        logger.warning("Failed to detect MIME type for %s: %s", upload.filename, mime_err)
        return declared or GENERIC_MIME


async def to_file_descriptor(upload: UploadFile) -> FileDescriptor:
    """Read an UploadFile fully into memory."""
    await upload.seek(0)
    contents = await upload.read()
    return FileDescriptor(
        name=upload.filename or "unknown_file",
        mime_type=await _detect_mime_type(upload, contents),
        size=len(contents),
        content=contents,
    )


class UploadMiddleware:
    """FastAPI dependency enforcing the configured multipart limits."""

    def __init__(self, config: UploadMiddlewareConfig) -> None:
        self.config = config
        # No configured fields: accept a single part named "file"
        self.field_limits = {spec.name: spec.max_count for spec in config.fields} or {DEFAULT_FIELD: 1}

    def _check_type(self, descriptor: FileDescriptor) -> None:
        if not (self.config.allowed_types or self.config.allowed_categories):
            return
        try:
            validate_file(descriptor, {"allowed_types": self.config.allowed_types, "allowed_categories": self.config.allowed_categories})
        except FileValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    async def __call__(self, request: Request) -> dict[str, list[FileDescriptor]]:
        form = await request.form()
        uploaded: dict[str, list[FileDescriptor]] = {}
        total = 0

        for name, value in form.multi_items():
            if not isinstance(value, UploadFile):
                continue
            if name not in self.field_limits:
                logger.warning("Rejected upload for unexpected field: %s", name)
                raise HTTPException(status_code=400, detail=f"Unexpected file field '{name}'.")

            total += 1
            if total > self.config.max_files:
                logger.warning("Rejected upload: more than %d files", self.config.max_files)
                raise HTTPException(status_code=413, detail=f"Too many files. Max: {self.config.max_files}")

            field_files = uploaded.setdefault(name, [])
            field_limit = self.field_limits[name]
            if field_limit is not None and len(field_files) >= field_limit:
                logger.warning("Rejected upload: too many files for %s", name)
                raise HTTPException(status_code=400, detail=f"Too many files for {name}. Max: {field_limit}")

            descriptor = await to_file_descriptor(value)
            if descriptor.size > self.config.max_file_size:
                logger.warning("Rejected file exceeding size limit: %s (%d bytes)", descriptor.name, descriptor.size)
                raise HTTPException(
                    status_code=413,
                    detail=f"File '{descriptor.name}' too large. Max size: {self.config.max_file_size.human_readable()}",
                )
            self._check_type(descriptor)
            field_files.append(descriptor)

        request.state.uploaded_files = uploaded
        logger.debug("Received %d file(s) across %d field(s)", total, len(uploaded))
        return uploaded


def create_upload_middleware(config: UploadMiddlewareConfig | None = None) -> UploadMiddleware:
    """Create the upload dependency; with no config a single ``file`` part is accepted."""
    return UploadMiddleware(config or UploadMiddlewareConfig())
