"""Storage configuration settings.

This module defines the storage settings using Pydantic's BaseSettings.
Values are loaded from keyword arguments, environment variables and an .env
file, and can also be read from a ``storage.config.json`` file in the
project root through :func:`load_settings`.
"""

import json
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import AliasChoices
from pydantic import ByteSize
from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "storage.config.json"
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MiB

# Nested provider sections of a config file, keyed by snake_case option name
_PROVIDER_SECTIONS: dict[str, dict[str, str]] = {
    "s3": {
        "region": "aws_region",
        "bucket": "aws_s3_bucket",
        "access_key_id": "aws_access_key_id",
        "secret_access_key": "aws_secret_access_key",
        "cdn_url": "aws_cdn_url",
        "endpoint_url": "aws_endpoint_url",
    },
    "uploadthing": {
        "token": "uploadthing_token",
        "secret": "uploadthing_secret",
        "api_key": "uploadthing_secret",
    },
    "cloudinary": {
        "cloud_name": "cloudinary_cloud_name",
        "api_key": "cloudinary_api_key",
        "api_secret": "cloudinary_api_secret",
    },
}

_TOP_LEVEL_KEYS = {"provider", "max_file_size", "max_files", "default_folder"}


class StorageSettings(BaseSettings):
    """Manages storage settings, loading them from environment variables or an .env file.

    Attributes:
        provider: Name of the registered provider to upload with.
        max_file_size: Default per-file size limit in bytes; accepts strings like "10MB".
        max_files: Maximum number of files accepted in one request.
        default_folder: Folder used when an upload does not specify one.
        aws_*: Credentials, bucket and URL settings for the S3 provider.
        uploadthing_token: Base64 UploadThing token (carries the API key).
        uploadthing_secret: UploadThing API key, used instead of the token when set.
        cloudinary_*: Cloud name and API credentials for the Cloudinary provider.
    """

    provider: str = Field(default="uploadthing", validation_alias=AliasChoices("provider", "storage_provider"))
    max_file_size: ByteSize = Field(
        default=ByteSize(DEFAULT_MAX_FILE_SIZE),
        validation_alias=AliasChoices("max_file_size", "storage_max_file_size"),
    )
    max_files: int = Field(default=20, validation_alias=AliasChoices("max_files", "storage_max_files"))
    default_folder: str = Field(default="uploads", validation_alias=AliasChoices("default_folder", "storage_default_folder"))

    aws_region: str = Field(default="us-east-1")
    aws_s3_bucket: str | None = Field(default=None)
    aws_access_key_id: str | None = Field(default=None)
    aws_secret_access_key: str | None = Field(default=None)
    aws_cdn_url: str | None = Field(default=None)
    aws_endpoint_url: str | None = Field(default=None)

    uploadthing_token: str | None = Field(default=None)
    uploadthing_secret: str | None = Field(default=None)

    cloudinary_cloud_name: str | None = Field(default=None)
    cloudinary_api_key: str | None = Field(default=None)
    cloudinary_api_secret: str | None = Field(default=None)

    model_config = {
        "env_file": ".env",
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @field_validator("provider", mode="before")  # type: ignore
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("aws_cdn_url", mode="after")  # type: ignore
    @classmethod
    def strip_cdn_slash(cls, v: str | None) -> str | None:
        return v.rstrip("/") if v else v


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _present(value: Any) -> bool:
    return value is not None and value != ""


def normalize_config(raw: Mapping[str, Any], env_file: str | Path | None = ".env") -> StorageSettings:
    """Build StorageSettings from a nested configuration mapping.

    Accepts camelCase or snake_case keys, e.g.::

        {"provider": "s3", "maxFileSize": "10MB", "s3": {"bucket": "media", "cdnUrl": "https://cdn"}}

    Empty values fall back to environment variables and defaults; unknown keys are ignored.
    """
    values: dict[str, Any] = {}
    for key, value in raw.items():
        name = _snake(key)
        if name in _PROVIDER_SECTIONS and isinstance(value, Mapping):
            for option, option_value in value.items():
                target = _PROVIDER_SECTIONS[name].get(_snake(option))
                if target and _present(option_value):
                    values[target] = option_value
        elif name in _TOP_LEVEL_KEYS and _present(value):
            values[name] = value

    settings = StorageSettings(_env_file=env_file, **values)
    logger.info("Storage provider: %s", settings.provider)
    return settings


def load_settings(project_root: str | Path | None = None) -> StorageSettings:
    """Load storage settings for a project.

    Reads ``storage.config.json`` from ``project_root`` (its ``storage`` section
    when present) and the project's ``.env``. A missing, unreadable or invalid
    config file falls back to environment variables and defaults.
    """
    root = Path(project_root) if project_root else Path.cwd()
    config_path = root / CONFIG_FILENAME
    env_file = root / ".env"
    logger.info("Loading storage config from project root: %s", root)

    if not config_path.exists():
        logger.info("%s not found in %s, using environment configuration", CONFIG_FILENAME, root)
        return normalize_config({}, env_file=env_file)

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"{CONFIG_FILENAME} must contain a JSON object")
        section = raw.get("storage", raw)
        if not isinstance(section, dict):
            raise ValueError("'storage' section must be a JSON object")
        settings = normalize_config(section, env_file=env_file)
        logger.info("Loaded storage config from: %s", config_path)
        return settings
    except (OSError, ValueError) as e:
        logger.warning("Storage config loading failed: %s. Using default storage configuration.", e)
        return StorageSettings(_env_file=env_file)
