"""Provider-agnostic file uploads for async web backends.

Upload/delete over S3, UploadThing or Cloudinary, MIME-category validation,
a FastAPI multipart dependency, and per-model file fields with cleanup of
replaced or deleted files.
"""

from .api.errors import register_exception_handlers  # noqa: F401
from .api.middleware import UploadFieldSpec  # noqa: F401
from .api.middleware import UploadMiddlewareConfig  # noqa: F401
from .api.middleware import create_upload_middleware  # noqa: F401
from .core.config import StorageSettings  # noqa: F401
from .core.config import load_settings  # noqa: F401
from .core.exceptions import ConfigurationError  # noqa: F401
from .core.exceptions import ConfigurationMissingError  # noqa: F401
from .core.exceptions import FileValidationError  # noqa: F401
from .core.exceptions import FolderTemplateError  # noqa: F401
from .core.exceptions import SizeExceededError  # noqa: F401
from .core.exceptions import StorageError  # noqa: F401
from .core.exceptions import TooManyFilesError  # noqa: F401
from .core.exceptions import TypeDisallowedError  # noqa: F401
from .core.exceptions import TypeNotAllowedError  # noqa: F401
from .core.exceptions import UnsupportedProviderError  # noqa: F401
from .core.exceptions import UploadFailedError  # noqa: F401
from .core.folders import resolve_folder_path  # noqa: F401
from .core.logging import setup_logging  # noqa: F401
from .core.validation import MIME_CATEGORIES  # noqa: F401
from .core.validation import expand_categories  # noqa: F401
from .core.validation import validate_file  # noqa: F401
from .models.file_models import FieldDefinition  # noqa: F401
from .models.file_models import FileDescriptor  # noqa: F401
from .models.file_models import ModelFileConfig  # noqa: F401
from .models.file_models import UploadResult  # noqa: F401
from .models.file_models import define_file_fields  # noqa: F401
from .services.integrated_service import create_storage_integrated_service  # noqa: F401
from .services.model_file_service import ModelFileService  # noqa: F401
from .services.model_file_service import create_model_file_service  # noqa: F401
from .services.storage.registry import PROVIDERS  # noqa: F401
from .services.storage_service import StorageService  # noqa: F401
from .services.storage_service import create_storage  # noqa: F401
