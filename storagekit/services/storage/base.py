"""Contract shared by every storage provider."""

import re
import time
from pathlib import PurePosixPath
from typing import Protocol
from typing import runtime_checkable

from storagekit.models.file_models import FileDescriptor
from storagekit.models.file_models import UploadOptions
from storagekit.models.file_models import UploadResult

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@runtime_checkable
class StorageProvider(Protocol):
    """A backend adapter that can upload a buffered file and delete it again by URL.

    Providers parse their own key scheme back out of URLs they returned earlier.
    """

    name: str

    async def upload(self, file: FileDescriptor, options: UploadOptions) -> UploadResult: ...

    async def delete(self, url: str) -> None: ...


def safe_filename(filename: str) -> str:
    """Replace characters outside ``[A-Za-z0-9.-]`` with underscores."""
    return _UNSAFE_CHARS.sub("_", filename)


def timestamped_name(filename: str, keep_extension: bool = True) -> str:
    """Prefix a sanitized filename with the current epoch in milliseconds."""
    name = safe_filename(filename) if keep_extension else safe_filename(PurePosixPath(filename).stem)
    return f"{int(time.time() * 1000)}-{name}"
