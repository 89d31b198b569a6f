"""Static mapping from configured provider name to provider class."""

import logging
from collections.abc import Mapping
from types import MappingProxyType

from storagekit.core.config import StorageSettings
from storagekit.core.exceptions import UnsupportedProviderError
from storagekit.services.storage.base import StorageProvider
from storagekit.services.storage.cloudinary_provider import CloudinaryProvider
from storagekit.services.storage.s3_provider import S3Provider
from storagekit.services.storage.uploadthing_provider import UploadThingProvider

logger = logging.getLogger(__name__)

PROVIDERS: Mapping[str, type[StorageProvider]] = MappingProxyType(
    {
        S3Provider.name: S3Provider,
        UploadThingProvider.name: UploadThingProvider,
        CloudinaryProvider.name: CloudinaryProvider,
    }
)


def create_provider(settings: StorageSettings) -> StorageProvider:
    """Instantiate the provider named by ``settings.provider``."""
    provider_cls = PROVIDERS.get(settings.provider)
    if provider_cls is None:
        logger.error("Unsupported storage provider requested: %s", settings.provider)
        raise UnsupportedProviderError(f'Provider "{settings.provider}" not supported. Available: {", ".join(PROVIDERS)}')
    return provider_cls(settings)
