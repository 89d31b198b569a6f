"""Folder path templating for storage keys."""

import re
from collections.abc import Mapping
from typing import Any

from storagekit.core.exceptions import FolderTemplateError

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def resolve_folder_path(template: str, context: Mapping[str, Any]) -> str:
    """Replace every ``{key}`` in ``template`` with ``context[key]``.

    Raises:
        FolderTemplateError: A placeholder has no entry (or a ``None`` entry) in ``context``.
    """

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        value = context.get(key)
        if value is None:
            raise FolderTemplateError(f"Folder template '{template}' needs '{key}' but the context only has: {', '.join(sorted(context)) or 'nothing'}")
        return str(value)

    return _PLACEHOLDER.sub(_substitute, template).strip("/")
