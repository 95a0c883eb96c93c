"""
Policy for merging generated text into existing image metadata.
"""

from typing import Dict, List, Optional, Sequence
from pydantic import BaseModel
from .models import MetadataDocument


class MergeResult(BaseModel):
    """Merged document plus the field values a write would persist."""
    document: MetadataDocument
    changes: Dict[str, str] = {}

    @property
    def updated_fields(self) -> List[str]:
        return list(self.changes)


def _apply(values: Dict[str, Optional[str]], changes: Dict[str, str], document: MetadataDocument,
           fields: Sequence[str], generated: str, avoid_overwrite: bool) -> None:
    for field in fields:
        if avoid_overwrite and document.has_value(field):
            continue
        values[field] = generated
        changes[field] = generated


def merge_metadata(
    document: MetadataDocument,
    description: Optional[str],
    tags: Optional[Sequence[str]] = None,
    *,
    avoid_overwrite: bool = False,
    description_fields: Sequence[str] = (),
    tag_fields: Sequence[str] = (),
    tag_delimiter: str = ";",
) -> MergeResult:
    """Merge a generated description and tags into ``document``.

    The input document is left untouched. Without ``avoid_overwrite`` every
    targeted field takes the generated value; with it, fields that already
    hold a non-empty value keep it. Fields whose task produced nothing keep
    their current value, blank or not.
    """
    values = dict(document.values)
    changes: Dict[str, str] = {}

    if description:
        _apply(values, changes, document, description_fields, description, avoid_overwrite)

    if tags:
        _apply(values, changes, document, tag_fields, tag_delimiter.join(tags), avoid_overwrite)

    return MergeResult(document=MetadataDocument(values=values), changes=changes)
