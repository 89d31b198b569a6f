"""MIME categories, category expansion and file validation rules."""

import logging
from collections.abc import Iterable
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import ByteSize
from pydantic import TypeAdapter
from pydantic import ValidationError

from storagekit.core.exceptions import ConfigurationError
from storagekit.core.exceptions import SizeExceededError
from storagekit.core.exceptions import TypeDisallowedError
from storagekit.core.exceptions import TypeNotAllowedError
from storagekit.models.file_models import FileConstraints
from storagekit.models.file_models import FileDescriptor

logger = logging.getLogger(__name__)

WILDCARD = "*"
ANY_MIME = "*/*"

MIME_CATEGORIES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "image": (
            "image/jpeg",
            "image/png",
            "image/webp",
            "image/gif",
            "image/svg+xml",
            "image/bmp",
            "image/tiff",
        ),
        "audio": ("audio/mpeg", "audio/wav", "audio/ogg", "audio/midi", "audio/x-wav", "audio/x-m4a"),
        "video": (
            "video/mp4",
            "video/webm",
            "video/ogg",
            "video/quicktime",
            "video/x-msvideo",
            "video/x-matroska",
        ),
        "document": (
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/rtf",
            "text/plain",
        ),
        "spreadsheet": (
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "application/vnd.oasis.opendocument.spreadsheet",
            "text/csv",
        ),
        "presentation": (
            "application/vnd.ms-powerpoint",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
            "application/vnd.oasis.opendocument.presentation",
        ),
        "archive": (
            "application/zip",
            "application/x-rar-compressed",
            "application/x-tar",
            "application/gzip",
            "application/x-7z-compressed",
        ),
        "code": (
            "text/javascript",
            "application/javascript",
            "text/x-python",
            "text/x-java-source",
            "text/x-c",
            "text/x-c++",
            "text/x-php",
            "application/json",
            "application/xml",
            "text/html",
            "text/css",
        ),
    }
)

_BYTE_SIZE = TypeAdapter(ByteSize)


def all_known_mime_types() -> set[str]:
    return {mime for types in MIME_CATEGORIES.values() for mime in types}


def get_mime_types_for_category(category: str) -> list[str]:
    """Return the MIME types of a category, or an empty list for unknown names."""
    return list(MIME_CATEGORIES.get(category, ()))


def expand_categories(categories: Iterable[str] | None = None) -> set[str]:
    """Expand category names, ``prefix/*`` patterns and literal MIME types.

    Each entry is classified in order: the catch-all ``*`` adds every known
    MIME type, a category name adds that category's types, ``prefix/*`` adds
    every known type under ``prefix/``, and anything else is kept verbatim as
    a literal MIME type.
    """
    mime_types: set[str] = set()
    for category in categories or ():
        if category == WILDCARD:
            mime_types.update(all_known_mime_types())
        elif category in MIME_CATEGORIES:
            mime_types.update(MIME_CATEGORIES[category])
        elif category.endswith("/*"):
            prefix = category[: -len("/*")]
            mime_types.update(mime for mime in all_known_mime_types() if mime.startswith(f"{prefix}/"))
        else:
            mime_types.add(category)
    return mime_types


def parse_size(value: int | str) -> int:
    """Parse a byte count such as ``1048576``, ``"10MB"`` or ``"1.5 GiB"``."""
    try:
        return int(_BYTE_SIZE.validate_python(value))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid size value: {value!r}") from e


def mime_matches(mime_type: str, pattern: str) -> bool:
    """Match a MIME type against an exact type, ``*/*`` or ``prefix/*``."""
    if pattern == ANY_MIME:
        return True
    if pattern.endswith("/*"):
        return mime_type.startswith(pattern.split("/")[0] + "/")
    return mime_type == pattern


def _as_constraints(constraints: FileConstraints | Mapping[str, Any] | None) -> FileConstraints:
    if constraints is None:
        return FileConstraints()
    if isinstance(constraints, FileConstraints):
        return constraints
    return FileConstraints.model_validate({k: v for k, v in constraints.items() if v is not None})


def validate_file(file: FileDescriptor, constraints: FileConstraints | Mapping[str, Any] | None = None) -> bool:
    """Check a file against size and type constraints.

    Rules are evaluated most restrictive first and the first failing rule
    raises: size, disallowed types, disallowed categories, then the combined
    allow list (explicit types plus expanded allowed categories).

    Returns:
        True when the file passes every applicable rule.

    Raises:
        SizeExceededError: The file is larger than ``max_size``.
        TypeDisallowedError: The MIME type is explicitly blocked.
        TypeNotAllowedError: An allow list exists and the MIME type is not on it.
    """
    rules = _as_constraints(constraints)
    mime_type = file.mime_type

    if rules.max_size is not None and file.size > rules.max_size:
        logger.warning("Rejected %s: %d bytes exceeds limit of %d bytes", file.name, file.size, rules.max_size)
        raise SizeExceededError(f"File {file.name} exceeds maximum size of {rules.max_size.human_readable()}")

    allowed_mime_types = list(rules.allowed_types)
    if rules.allowed_categories:
        allowed_mime_types.extend(sorted(expand_categories(rules.allowed_categories)))

    if not allowed_mime_types and not rules.disallowed_types and not rules.disallowed_categories:
        return True

    if any(mime_matches(mime_type, pattern) for pattern in rules.disallowed_types):
        logger.warning("Rejected %s: type %s is disallowed", file.name, mime_type)
        raise TypeDisallowedError(f"File type {mime_type} is not allowed")

    if rules.disallowed_categories and mime_type in expand_categories(rules.disallowed_categories):
        logger.warning("Rejected %s: type %s is in a disallowed category", file.name, mime_type)
        raise TypeDisallowedError(f"File type {mime_type} is in disallowed category")

    if allowed_mime_types and not any(mime_matches(mime_type, pattern) for pattern in allowed_mime_types):
        logger.warning("Rejected %s: type %s is not in the allow list", file.name, mime_type)
        raise TypeNotAllowedError(f"File type {mime_type} not allowed. Allowed: {', '.join(allowed_mime_types)}")

    return True
