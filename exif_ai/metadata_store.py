"""
Image metadata access through ExifTool.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
from exiftool import ExifToolHelper
from exiftool.exceptions import ExifToolException
from .models import MetadataDocument
from .logging import get_logger


PathLike = Union[str, Path]


class PersistError(Exception):
    """Raised when image metadata cannot be read or written."""
    pass


class MetadataStore:
    """Base class for metadata stores."""

    def read(self, path: PathLike, fields: Sequence[str]) -> MetadataDocument:
        """Read the current values of ``fields``. Must be implemented by subclasses."""
        raise NotImplementedError

    def write(self, path: PathLike, values: Dict[str, str], extra_args: Sequence[str] = ()) -> None:
        """Write field values. Must be implemented by subclasses."""
        raise NotImplementedError


def _format_value(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


class ExifToolStore(MetadataStore):
    """Reads and writes metadata with a short-lived ExifTool process per call.

    ExifTool keeps its ``<file>_original`` backup on write unless the extra
    arguments say otherwise (for example ``-overwrite_original``).
    """

    # Group prefixes off so keys match the requested tag names
    common_args: List[str] = ["-n", "-charset", "filename=utf8"]

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable
        self.logger = get_logger("metadata_store")

    def _helper(self) -> ExifToolHelper:
        kwargs = {"common_args": list(self.common_args)}
        if self.executable:
            kwargs["executable"] = self.executable
        return ExifToolHelper(**kwargs)

    def read(self, path: PathLike, fields: Sequence[str]) -> MetadataDocument:
        fields = list(dict.fromkeys(fields))
        if not fields:
            return MetadataDocument()

        try:
            with self._helper() as et:
                blocks = et.get_tags([str(path)], tags=fields)
        except (ValueError, TypeError, OSError, ExifToolException) as e:
            raise PersistError(f"Failed to read metadata from {path}: {e}") from e

        block = blocks[0] if blocks else {}
        values = {field: _format_value(block.get(field)) for field in fields}
        self.logger.debug(f"Read {sum(v is not None for v in values.values())}/{len(fields)} fields from {path}")
        return MetadataDocument(values=values)

    def write(self, path: PathLike, values: Dict[str, str], extra_args: Sequence[str] = ()) -> None:
        if not values:
            return

        try:
            with self._helper() as et:
                et.set_tags([str(path)], tags=dict(values), params=list(extra_args))
        except (ValueError, TypeError, OSError, ExifToolException) as e:
            raise PersistError(f"Failed to write metadata to {path}: {e}") from e

        self.logger.debug(f"Wrote {len(values)} fields to {path}")
