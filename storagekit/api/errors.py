"""Maps storage exceptions to JSON responses for FastAPI applications."""

import logging

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse

from storagekit.core.exceptions import FileValidationError
from storagekit.core.exceptions import SizeExceededError
from storagekit.core.exceptions import StorageError
from storagekit.core.exceptions import UploadFailedError

logger = logging.getLogger(__name__)


def status_code_for(exc: StorageError) -> int:
    """413 for size, 400 for other rejections, 502 for provider failures, 500 otherwise."""
    if isinstance(exc, SizeExceededError):
        return 413
    if isinstance(exc, FileValidationError):
        return 400
    if isinstance(exc, UploadFailedError):
        return 502
    return 500


async def storage_exception_handler(_request: Request, exc: StorageError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("Storage error: %s", exc)
    else:
        logger.warning("Upload rejected: %s", exc)
    return JSONResponse({"error": str(exc), "type": type(exc).__name__}, status_code=status_code)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the storage exception handler on a FastAPI app."""
    app.add_exception_handler(StorageError, storage_exception_handler)  # type: ignore[arg-type]
