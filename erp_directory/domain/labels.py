"""
domain/labels.py
----------------
Pure helpers shared by the schema registry, the entity store and the
relation resolver: field ordering, label-field choice, and locating a
record's stored text for a field when the value's field link was nulled.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from erp_directory.domain.metadata import DirectoryMetadata, FieldMetadata, decode_metadata
from erp_directory.models.directory import DirectoryField
from erp_directory.models.record import DirectoryRecord, DirectoryValue


def field_sort_key(field: DirectoryField) -> Tuple[int, int, int]:
    """fieldOrder ascending (unordered fields last), then creation order."""
    order = decode_metadata(FieldMetadata, field.meta).field_order
    return (0 if order is not None else 1, order or 0, field.position)


def order_fields(fields: Iterable[DirectoryField]) -> List[DirectoryField]:
    return sorted(fields, key=field_sort_key)


def pick_label_field(
    directory_meta: DirectoryMetadata,
    ordered_fields: Sequence[DirectoryField],
) -> Optional[DirectoryField]:
    """Field whose value labels a record in dropdowns.

    Precedence:
      1. metadata selectDisplayField, when it names an existing field
         (by name or id)
      2. the field flagged isVisibleOnTable
      3. the first field in display order
    None means the caller falls back to the record id.
    """
    wanted = directory_meta.select_display_field
    if wanted:
        for field in ordered_fields:
            if field.name == wanted or field.id == wanted:
                return field
    for field in ordered_fields:
        if decode_metadata(FieldMetadata, field.meta).is_visible_on_table:
            return field
    return ordered_fields[0] if ordered_fields else None


def find_value(record: DirectoryRecord, field: DirectoryField) -> Optional[DirectoryValue]:
    """The record's value row for a field.

    Rows whose field link was nulled (the field was deleted and re-created)
    are matched on their field_name snapshot.
    """
    orphan = None
    for value in record.values:
        if value.field_id == field.id:
            return value
        if value.field_id is None and orphan is None and value.field_name == field.name:
            orphan = value
    return orphan
