"""
services/relation_resolver.py
-----------------------------
Candidate records for relation fields, and the labels users see for them.

Label precedence (every relation dropdown in the system depends on it):
  1. the target directory's metadata selectDisplayField, if it names a field
  2. the field flagged isVisibleOnTable
  3. the first field in display order
  4. the record id

When the label field is itself a relation, the label is the label of the
record it points at. Relation chains may loop (A -> B -> A), so the walk
carries the ids it has visited and stops at LABEL_MAX_DEPTH.

Options are produced lazily (async generator) in batches, filtered by a
case-insensitive substring match on the label, and capped at
OPTIONS_PAGE_SIZE.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.config import settings
from erp_directory.core.errors import InvalidReference, InvalidSelfReference
from erp_directory.core.logging import get_logger
from erp_directory.domain.field_types import FieldType
from erp_directory.domain.labels import find_value, order_fields, pick_label_field
from erp_directory.domain.metadata import DirectoryMetadata, RecordMetadata, decode_metadata
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.models.directory import Directory, DirectoryField
from erp_directory.models.record import DirectoryRecord
from erp_directory.services.schema_registry import SchemaRegistry
from erp_directory.services.tenant_binding import TenantBinding

logger = get_logger(__name__)

_BATCH_SIZE = 100


@dataclass(frozen=True)
class Option:
    id: str
    label: str
    # What dependent records reference in their parentValue metadata
    value: str


class RecordLabeler:
    """Per-call cache of label fields and tenant-scoped record lookups."""

    def __init__(self, db: AsyncSession, company_id: str) -> None:
        self._db = db
        self._company_id = company_id
        self._label_fields: Dict[str, Optional[DirectoryField]] = {}
        self._bindings: Dict[str, Optional[CompanyDirectory]] = {}

    async def label_field(self, directory_id: str) -> Optional[DirectoryField]:
        if directory_id not in self._label_fields:
            directory = await self._db.get(Directory, directory_id)
            if directory is None:
                self._label_fields[directory_id] = None
            else:
                result = await self._db.execute(
                    select(DirectoryField).where(DirectoryField.directory_id == directory_id)
                )
                fields = order_fields(result.scalars().all())
                meta = decode_metadata(DirectoryMetadata, directory.meta)
                self._label_fields[directory_id] = pick_label_field(meta, fields)
        return self._label_fields[directory_id]

    async def _binding(self, binding_id: str) -> Optional[CompanyDirectory]:
        if binding_id not in self._bindings:
            self._bindings[binding_id] = await self._db.get(CompanyDirectory, binding_id)
        return self._bindings[binding_id]

    async def load_record(self, directory_id: str, record_id: str) -> Optional[DirectoryRecord]:
        """A record of directory_id owned by this company, or None."""
        record = await self._db.get(DirectoryRecord, record_id)
        if record is None:
            return None
        binding = await self._binding(record.company_directory_id)
        if (
            binding is None
            or binding.company_id != self._company_id
            or binding.directory_id != directory_id
        ):
            return None
        return record

    async def label(
        self,
        record: DirectoryRecord,
        directory_id: str,
        depth: int = 0,
        trail: FrozenSet[str] = frozenset(),
    ) -> str:
        field = await self.label_field(directory_id)
        if field is None:
            return record.id
        value = find_value(record, field)
        if value is None:
            return record.id

        field_type = FieldType.of(field)
        if not field_type.is_relation or field_type.relation_id is None:
            return value.value
        if depth >= settings.LABEL_MAX_DEPTH or record.id in trail:
            return value.value
        target = await self.load_record(field_type.relation_id, value.value)
        if target is None:
            return value.value
        return await self.label(
            target, field_type.relation_id, depth + 1, trail | {record.id}
        )


class RelationResolver:

    @staticmethod
    async def resolve_options(
        db: AsyncSession,
        directory_id: str,
        company_id: str,
        search: Optional[str] = None,
        *,
        editing_directory_id: Optional[str] = None,
        parent_value: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Option]:
        """
        Lazily yield selectable records of directory_id for a company.

        Args:
            editing_directory_id: directory of the form being edited; equal
                to directory_id means a field pointing at its own directory.
            parent_value: only records whose metadata parentValue equals it
                (dependent cascading fields).
            limit: cap on yielded options; defaults to OPTIONS_PAGE_SIZE.

        Raises:
            InvalidSelfReference: editing_directory_id == directory_id.
            NotFound: the directory does not exist.
        """
        if editing_directory_id is not None and editing_directory_id == directory_id:
            raise InvalidSelfReference(
                "A relation field cannot point at the directory being edited",
                directory_id=directory_id,
            )
        await SchemaRegistry.get_directory(db, directory_id)
        bindings = await TenantBinding.enabled_bindings_for(db, company_id, directory_id)
        if not bindings:
            return

        cap = limit or settings.OPTIONS_PAGE_SIZE
        term = (search or "").strip().lower()
        labeler = RecordLabeler(db, company_id)
        binding_ids = [b.id for b in bindings]
        emitted = 0
        offset = 0
        while emitted < cap:
            result = await db.execute(
                select(DirectoryRecord)
                .where(DirectoryRecord.company_directory_id.in_(binding_ids))
                .order_by(DirectoryRecord.created_at, DirectoryRecord.id)
                .offset(offset)
                .limit(_BATCH_SIZE)
            )
            batch = list(result.scalars().all())
            if not batch:
                break
            offset += len(batch)
            for record in batch:
                meta = decode_metadata(RecordMetadata, record.meta)
                if parent_value is not None and meta.parent_value != parent_value:
                    continue
                label = await labeler.label(record, directory_id)
                if term and term not in label.lower():
                    continue
                yield Option(id=record.id, label=label, value=meta.value or record.id)
                emitted += 1
                if emitted >= cap:
                    return

    @staticmethod
    async def resolve_field_options(
        db: AsyncSession,
        field_id: str,
        company_id: str,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        directory_id: Optional[str] = None,
    ) -> AsyncIterator[Option]:
        """Options for a relation field, refusing fields that target their own directory."""
        field = await SchemaRegistry.get_field(db, field_id, directory_id)
        field_type = FieldType.of(field)
        if not field_type.is_relation:
            raise InvalidReference(f"Field '{field.name}' is not a relation", field_id=field_id)
        if field_type.relation_id is None:
            raise InvalidReference(
                f"Relation field '{field.name}' has no target directory",
                field_id=field_id,
            )
        async for option in RelationResolver.resolve_options(
            db,
            field_type.relation_id,
            company_id,
            search,
            editing_directory_id=field.directory_id,
            limit=limit,
        ):
            yield option

    @staticmethod
    async def collect(options: AsyncIterator[Option]) -> List[Option]:
        return [option async for option in options]

    @staticmethod
    async def render_relation(
        db: AsyncSession,
        directory_id: Optional[str],
        record_id: str,
        company_id: str,
        labeler: Optional[RecordLabeler] = None,
    ) -> Tuple[Optional[str], bool]:
        """
        Label for a stored relation value.

        Returns (label, resolved). A value whose target record is gone, or
        belongs to another tenant or directory, is unresolved; the caller
        shows the gap instead of failing the read.
        """
        if directory_id is None:
            return None, False
        labeler = labeler or RecordLabeler(db, company_id)
        target = await labeler.load_record(directory_id, record_id)
        if target is None:
            logger.warning(
                "Unresolved relation",
                directory_id=directory_id,
                record_id=record_id,
            )
            return None, False
        return await labeler.label(target, directory_id), True
