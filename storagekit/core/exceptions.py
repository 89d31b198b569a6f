"""Core custom exceptions for the storage layer."""


class StorageError(Exception):
    """Base exception for storage-related errors."""


class FileValidationError(StorageError):
    """Raised when an uploaded file violates its constraints."""


class SizeExceededError(FileValidationError):
    """File is larger than the configured maximum size."""


class TypeDisallowedError(FileValidationError):
    """File MIME type matches a disallowed type or category."""


class TypeNotAllowedError(FileValidationError):
    """File MIME type matches none of the allowed types."""


class TooManyFilesError(FileValidationError):
    """A field received more files than its max count."""


class UnsupportedProviderError(StorageError):
    """Configured provider name has no registered implementation."""


class UploadFailedError(StorageError):
    """Provider did not return a usable upload result."""


class ConfigurationError(StorageError):
    """Exception for configuration-related errors (e.g., invalid sizes, unreadable config)."""


class ConfigurationMissingError(ConfigurationError):
    """Required provider credentials are absent."""


class FolderTemplateError(StorageError):
    """Folder template references a placeholder missing from the context."""
