from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from pydantic import ByteSize
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator


class FileDescriptor(BaseModel):
    """An uploaded file buffered in memory, ready to be sent to a provider."""

    name: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    content: bytes = b""

    @model_validator(mode="before")
    @classmethod
    def _default_size_from_content(cls, data: Any) -> Any:
        if isinstance(data, dict) and "size" not in data and "content" in data:
            return {**data, "size": len(data["content"] or b"")}
        return data


class UploadResult(BaseModel):
    """Canonical record returned by every provider after a successful upload."""

    url: str
    key: str | None = None
    name: str
    size: int
    mime_type: str
    provider: str


class FileConstraints(BaseModel):
    """Size and type rules applied to a single file."""

    model_config = ConfigDict(frozen=True)

    max_size: ByteSize | None = None
    allowed_types: list[str] = Field(default_factory=list)
    disallowed_types: list[str] = Field(default_factory=list)
    allowed_categories: list[str] = Field(default_factory=list)
    disallowed_categories: list[str] = Field(default_factory=list)


class UploadOptions(BaseModel):
    """Per-call options for StorageService.upload."""

    folder: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    allowed_types: list[str] = Field(default_factory=list)
    allowed_categories: list[str] = Field(default_factory=list)
    max_file_size: ByteSize | None = None


class FieldDefinition(BaseModel):
    """Upload slot of a model: validation rules, cardinality and extra metadata."""

    model_config = ConfigDict(frozen=True)

    allowed_types: list[str] = Field(default_factory=list)
    allowed_categories: list[str] = Field(default_factory=list)
    disallowed_types: list[str] = Field(default_factory=list)
    disallowed_categories: list[str] = Field(default_factory=list)
    max_count: int | None = Field(default=None, ge=1)
    max_size: ByteSize | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    def constraints(self) -> FileConstraints:
        return FileConstraints(
            max_size=self.max_size,
            allowed_types=self.allowed_types,
            disallowed_types=self.disallowed_types,
            allowed_categories=self.allowed_categories,
            disallowed_categories=self.disallowed_categories,
        )

    @property
    def is_single(self) -> bool:
        return self.max_count == 1


class ModelFileConfig(BaseModel):
    """File fields of one entity type plus the folder template they upload under."""

    file_fields: dict[str, FieldDefinition] = Field(default_factory=dict)
    folder_template: str = "{model}/{id}"
    max_file_size: ByteSize | None = None


def define_file_fields(**fields: FieldDefinition | Mapping[str, Any]) -> dict[str, FieldDefinition]:
    """Build a ``file_fields`` mapping from keyword arguments.

    Example::

        define_file_fields(avatar={"allowed_categories": ["image"], "max_count": 1})
    """
    return {name: definition if isinstance(definition, FieldDefinition) else FieldDefinition.model_validate(definition) for name, definition in fields.items()}
